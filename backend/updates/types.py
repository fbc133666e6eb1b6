"""
Shared types for the auto-update orchestrator and the pull session client.

Results are plain dataclasses so the API layer can serialize them with
dataclasses.asdict() and tests can compare them directly.
"""

import inspect
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

# Label whose presence marks a container for auto-update
AUTO_UPDATE_LABEL = "io.containers.autoupdate"


class AutoUpdateError(Exception):
    """Base class for auto-update precondition and step failures."""

    pass


class InvalidImageError(AutoUpdateError):
    """Image reference is empty."""

    pass


class PullStartError(AutoUpdateError):
    """Pull session could not be started (no session_id returned)."""

    def __init__(self, message: str = "Failed to start image pull"):
        super().__init__(message)


class PullFailedError(AutoUpdateError):
    """Pull session completed but reported failure."""

    def __init__(self, message: str = "Failed to pull image"):
        super().__init__(message)


class MissingCreateCommandError(AutoUpdateError):
    """Container has no recorded CreateCommand and cannot be recreated."""

    def __init__(self, message: str = "Container does not have CreateCommand"):
        super().__init__(message)


class RecreateFailedError(AutoUpdateError):
    """Recreate call returned an error field."""

    def __init__(self, error: str, details: Optional[str] = None):
        super().__init__(f"{error}: {details}" if details else str(error))
        self.error = error
        self.details = details


class UpdateStep(IntEnum):
    """Phases of a single container update, in execution order."""
    CONFIGURATION = 1
    PULL = 2
    STOP = 3
    REMOVE = 4
    CREATE = 5
    START = 6
    CLEANUP = 7
    COMPLETE = 8

    @property
    def message(self) -> str:
        return _STEP_MESSAGES[self]


_STEP_MESSAGES = {
    UpdateStep.CONFIGURATION: "Getting container configuration...",
    UpdateStep.PULL: "Pulling new image...",
    UpdateStep.STOP: "Stopping container...",
    UpdateStep.REMOVE: "Removing old container...",
    UpdateStep.CREATE: "Creating new container...",
    UpdateStep.START: "Starting container...",
    UpdateStep.CLEANUP: "Cleaning up old image...",
    UpdateStep.COMPLETE: "Update complete",
}


@dataclass
class AutoUpdateCandidate:
    """A container carrying the auto-update label."""
    id: str
    name: str
    image: str
    image_id: Optional[str]
    running: bool
    auto_update_policy: str


@dataclass
class UpdateCheckResult:
    """Outcome of a no-pull digest comparison for one container."""
    name: str
    image: str
    running: bool
    current_image_id: Optional[str] = None
    has_update: bool = False
    current_digest: Optional[str] = None
    remote_digest: Optional[str] = None
    error: Optional[str] = None


@dataclass
class UpdateResult:
    """
    Outcome of updating one container.

    create_command is kept on failures too: it is the only recovery aid
    when the old container was removed but recreation failed.
    """
    success: bool
    name: str
    create_command: Optional[List[str]] = None
    error: Optional[str] = None

    @classmethod
    def success_result(cls, name: str, create_command: List[str]) -> 'UpdateResult':
        return cls(success=True, name=name, create_command=create_command)

    @classmethod
    def failure_result(cls, name: str, error: str, create_command: Optional[List[str]] = None) -> 'UpdateResult':
        return cls(success=False, name=name, error=error, create_command=create_command)


@dataclass
class BatchUpdateResult:
    """Aggregated outcome of a sequential batch update."""
    successes: List[UpdateResult] = field(default_factory=list)
    failures: List[UpdateResult] = field(default_factory=list)
    total: int = 0


@dataclass
class CleanupResult:
    """
    Result of a best-effort cleanup call (pull stop, old image removal).

    Callers log and discard failures; the value keeps the discarded error
    visible to tests.
    """
    ok: bool
    error: Optional[str] = None

    @classmethod
    def success(cls) -> 'CleanupResult':
        return cls(ok=True)

    @classmethod
    def failure(cls, error: Union[Exception, str]) -> 'CleanupResult':
        return cls(ok=False, error=str(error))


# Callbacks may be plain functions or coroutine functions
PullProgressCallback = Callable[[str], Union[None, Awaitable[None]]]
CheckProgressCallback = Callable[[Any, int, int, Optional[str]], Union[None, Awaitable[None]]]
StepCallback = Callable[[int, str], Union[None, Awaitable[None]]]


async def invoke_callback(callback: Optional[Callable], *args) -> None:
    """Call an optional sync or async callback."""
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


def candidate_from_container(container: Dict[str, Any]) -> AutoUpdateCandidate:
    """Project a containers_list entry to an AutoUpdateCandidate."""
    container_id = container.get("Id", "")
    names = container.get("Names") or []
    labels = container.get("Labels") or {}

    return AutoUpdateCandidate(
        id=container_id,
        name=names[0] if names else container_id[:12],
        image=container.get("Image", ""),
        image_id=container.get("ImageID"),
        running=container.get("State") == "running",
        auto_update_policy=labels.get(AUTO_UPDATE_LABEL),
    )
