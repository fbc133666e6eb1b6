"""
Centralized path configuration for PodWrt
Keeps log and state files in one writable location on the router
"""

import os

# On OpenWrt the overlay is small; /var/lib lives in tmpfs unless overridden
DATA_DIR = os.getenv('PODWRT_DATA_DIR', '/var/lib/podwrt')

LOG_DIR = os.path.join(DATA_DIR, 'logs')
LOG_FILE = os.path.join(LOG_DIR, 'podwrt.log')


def ensure_data_dirs():
    """Create data directories if they don't exist"""
    for directory in [DATA_DIR, LOG_DIR]:
        os.makedirs(directory, exist_ok=True)
        try:
            os.chmod(directory, 0o700)
        except OSError:
            pass  # May not have permission in some environments


# For development/testing off the router
if 'PODWRT_DATA_DIR' not in os.environ and not os.path.exists('/var/lib'):
    DATA_DIR = './data'
    LOG_DIR = os.path.join(DATA_DIR, 'logs')
    LOG_FILE = os.path.join(LOG_DIR, 'podwrt.log')
