"""
Streaming image pull client.

A pull of a large image can outlive any single HTTP request, so rpcd runs
the pull in the background and hands out a session id. The client polls
image_pull_status(session_id, offset) until the session reports complete,
forwarding only the output appended since the previous poll.

Every failure that ends the poll loop stops the server-side session once,
otherwise the podman pull process would keep running orphaned.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from config.settings import AppConfig
from rpc.podman import PodmanRPC
from updates.types import (
    CleanupResult,
    InvalidImageError,
    PullProgressCallback,
    PullStartError,
    invoke_callback,
)

logger = logging.getLogger(__name__)


class PullState(Enum):
    """Client-side lifecycle of a pull session."""
    PENDING = "pending"
    POLLING = "polling"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class PullSession:
    """Client-side view of a server-side pull session."""
    session_id: str
    offset: int = 0
    state: PullState = PullState.PENDING
    success: Optional[bool] = None


class PullSessionClient:
    """
    Drives server-side pull sessions to completion.

    Polls are strictly sequential per session: the next poll is issued only
    after the previous reply was handled and the poll interval elapsed.
    There is no retry; a failed poll is terminal for its session.
    """

    def __init__(self, rpc: PodmanRPC, poll_interval: Optional[float] = None):
        """
        Initialize pull session client.

        Args:
            rpc: luci.podman RPC wrapper
            poll_interval: Seconds between polls (default AppConfig.PULL_POLL_INTERVAL)
        """
        self.rpc = rpc
        self.poll_interval = AppConfig.PULL_POLL_INTERVAL if poll_interval is None else poll_interval
        self._active: Dict[str, PullSession] = {}

    @property
    def active_sessions(self) -> Dict[str, PullSession]:
        """Sessions currently being polled, keyed by session id."""
        return dict(self._active)

    async def pull_image_streaming(self, image: str, on_progress: Optional[PullProgressCallback] = None) -> bool:
        """
        Pull an image through a streaming session.

        Args:
            image: Image reference to pull
            on_progress: Optional callback receiving each new chunk of pull output

        Returns:
            True if the pull succeeded

        Raises:
            InvalidImageError: Empty image reference
            PullStartError: Server returned no session id
        """
        if not image or not image.strip():
            raise InvalidImageError("Image name is required")

        result = await self.rpc.image_pull_stream(image)
        if not result or not result.get("session_id"):
            raise PullStartError()

        logger.info(f"Started pull session {result['session_id']} for {image}")
        return await self.wait_for_pull_complete(result["session_id"], on_progress)

    async def wait_for_pull_complete(self, session_id: str, on_progress: Optional[PullProgressCallback] = None) -> bool:
        """
        Poll a pull session until it completes.

        Args:
            session_id: Server-side pull session id
            on_progress: Optional callback receiving each new chunk of pull output

        Returns:
            The session's success flag

        Raises:
            Whatever the status poll (or progress callback) raised, after the
            session was stopped
        """
        session = PullSession(session_id=session_id)
        self._active[session_id] = session
        session.state = PullState.POLLING

        try:
            while True:
                try:
                    status = await self.rpc.image_pull_status(session_id, session.offset)

                    output = status.get("output")
                    if output:
                        session.offset += len(output)
                        await invoke_callback(on_progress, output)
                except Exception as e:
                    session.state = PullState.FAILED
                    logger.error(f"Pull session {session_id} failed at offset {session.offset}: {e}")
                    cleanup = await self.stop_session(session_id)
                    if not cleanup.ok:
                        logger.warning(f"Ignoring failure to stop pull session {session_id}: {cleanup.error}")
                    raise

                if status.get("complete"):
                    session.state = PullState.COMPLETE
                    session.success = bool(status.get("success"))
                    logger.info(f"Pull session {session_id} complete (success={session.success}, {session.offset} bytes of output)")
                    return session.success

                logger.debug(f"Pull session {session_id} still running, offset {session.offset}")
                await asyncio.sleep(self.poll_interval)
        finally:
            self._active.pop(session_id, None)

    async def stop_session(self, session_id: str) -> CleanupResult:
        """Stop a server-side pull session. Never raises."""
        try:
            await self.rpc.image_pull_stop(session_id)
            return CleanupResult.success()
        except Exception as e:
            return CleanupResult.failure(e)

    async def stop_all(self) -> None:
        """Stop every session still being polled (used on shutdown)."""
        for session_id in list(self._active):
            cleanup = await self.stop_session(session_id)
            if not cleanup.ok:
                logger.warning(f"Ignoring failure to stop pull session {session_id}: {cleanup.error}")
