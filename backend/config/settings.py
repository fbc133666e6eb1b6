"""
Configuration Management for PodWrt
Centralizes all environment-based configuration and settings
"""

import os
import logging
from logging.handlers import RotatingFileHandler


class PollingRequestFilter(logging.Filter):
    """Filter out health checks and integration status polling to reduce log noise"""
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()

        # For uvicorn access logs, the message format is:
        # 'IP:PORT - "METHOD /path HTTP/1.1" STATUS'
        if '200' in message:
            if '/health' in message:
                return False
            # The network list checks every network's integration on refresh
            if '"GET /api/networks/' in message and '/integration' in message:
                return False
        return True


def setup_logging():
    """Configure application logging with rotation"""
    from . import paths

    paths.ensure_data_dirs()

    root_logger = logging.getLogger()

    # Close and clear any existing handlers to prevent file descriptor leaks
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)

    level = getattr(logging, AppConfig.LOG_LEVEL.upper(), logging.INFO)
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # Router flash is small: 5 x 10MB at most
    file_handler = RotatingFileHandler(
        paths.LOG_FILE,
        maxBytes=10*1024*1024,
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(console_formatter)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    uvicorn_access = logging.getLogger("uvicorn.access")
    uvicorn_access.addFilter(PollingRequestFilter())

    # httpx logs every ubus call at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


class AppConfig:
    """Main application configuration"""

    # Server settings
    HOST = os.getenv('PODWRT_HOST', '0.0.0.0')
    PORT = int(os.getenv('PODWRT_PORT', 8080))

    # ubus JSON-RPC endpoint exposed by uhttpd/rpcd
    UBUS_URL = os.getenv('PODWRT_UBUS_URL', 'http://127.0.0.1/ubus')
    UBUS_USERNAME = os.getenv('PODWRT_UBUS_USERNAME', 'root')
    UBUS_PASSWORD = os.getenv('PODWRT_UBUS_PASSWORD', '')
    UBUS_TIMEOUT = float(os.getenv('PODWRT_UBUS_TIMEOUT', 30))

    # Image pull session polling (seconds)
    PULL_POLL_INTERVAL = float(os.getenv('PODWRT_PULL_POLL_INTERVAL', 1.0))

    # Rollback window handed to `uci apply`
    UCI_APPLY_TIMEOUT = int(os.getenv('PODWRT_UCI_APPLY_TIMEOUT', 90))

    # Shared firewall objects for all Podman networks
    FIREWALL_ZONE_NAME = 'podman'
    DNS_RULE_NAME = 'Allow-Podman-DNS'

    # Logging
    LOG_LEVEL = os.getenv('PODWRT_LOG_LEVEL', 'INFO')

    @classmethod
    def validate(cls):
        """Validate configuration"""
        if cls.PORT < 1 or cls.PORT > 65535:
            raise ValueError(f"Invalid port: {cls.PORT}")

        if not cls.UBUS_URL.startswith(('http://', 'https://')):
            raise ValueError(f"ubus URL must be http(s): {cls.UBUS_URL}")

        if cls.PULL_POLL_INTERVAL <= 0:
            raise ValueError(f"Pull poll interval must be positive: {cls.PULL_POLL_INTERVAL}")

        if cls.UCI_APPLY_TIMEOUT < 0:
            raise ValueError(f"UCI apply timeout cannot be negative: {cls.UCI_APPLY_TIMEOUT}")

        return True
