"""
Updates Module

Auto-update of containers labelled io.containers.autoupdate.

Architecture:
- AutoUpdater: candidate discovery, no-pull digest checks, sequential updates
- PullSessionClient: polls server-side streaming pull sessions to completion
"""

from updates.auto_update import AutoUpdater, extract_digest, find_arch_digest, has_update
from updates.pull_session import PullSessionClient, PullSession, PullState
from updates.types import (
    AutoUpdateCandidate,
    AutoUpdateError,
    BatchUpdateResult,
    CleanupResult,
    InvalidImageError,
    MissingCreateCommandError,
    PullFailedError,
    PullStartError,
    RecreateFailedError,
    UpdateCheckResult,
    UpdateResult,
    UpdateStep,
)

__all__ = [
    'AutoUpdater',
    'extract_digest',
    'find_arch_digest',
    'has_update',
    'PullSessionClient',
    'PullSession',
    'PullState',
    'AutoUpdateCandidate',
    'AutoUpdateError',
    'BatchUpdateResult',
    'CleanupResult',
    'InvalidImageError',
    'MissingCreateCommandError',
    'PullFailedError',
    'PullStartError',
    'RecreateFailedError',
    'UpdateCheckResult',
    'UpdateResult',
    'UpdateStep',
]
