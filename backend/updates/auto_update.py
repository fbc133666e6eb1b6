"""
Auto-update for containers labelled io.containers.autoupdate.

Podman's own `podman auto-update` needs systemd units, which OpenWrt does
not have, so updates are done here:

1. Discover labelled containers
2. Compare the local image digest with the remote manifest digest for the
   same architecture/OS (no layers are pulled)
3. Update: pull, stop, remove, recreate from the recorded CreateCommand,
   start, clean up the old image

Containers are always processed one at a time. Routers have little CPU,
bandwidth and flash, and parallel pulls or container churn can starve the
daemon.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from rpc.podman import PodmanRPC
from updates.pull_session import PullSessionClient
from updates.types import (
    AUTO_UPDATE_LABEL,
    AutoUpdateCandidate,
    BatchUpdateResult,
    CheckProgressCallback,
    CleanupResult,
    MissingCreateCommandError,
    PullFailedError,
    PullProgressCallback,
    RecreateFailedError,
    StepCallback,
    UpdateCheckResult,
    UpdateResult,
    UpdateStep,
    candidate_from_container,
    invoke_callback,
)

logger = logging.getLogger(__name__)

# Used when image inspect does not report a platform
DEFAULT_ARCHITECTURE = "amd64"
DEFAULT_OS = "linux"


def extract_digest(image_data: Dict[str, Any]) -> Optional[str]:
    """
    Extract the manifest digest of a local image.

    The Digest field is authoritative; RepoDigests ("repo@sha256:...") is
    only a fallback.

    Args:
        image_data: image_inspect reply

    Returns:
        Digest string (e.g. "sha256:abc...") or None
    """
    if image_data.get("Digest"):
        return image_data["Digest"]

    for repo_digest in image_data.get("RepoDigests") or []:
        if "@sha256:" in repo_digest:
            return repo_digest.split("@", 1)[1]

    return None


def find_arch_digest(manifest: Optional[Dict[str, Any]], arch: str, os: str) -> Optional[str]:
    """
    Find the remote digest matching a platform.

    Args:
        manifest: image_manifest_inspect reply (single manifest or manifest list)
        arch: Architecture to match (e.g. "arm64")
        os: OS to match (e.g. "linux")

    Returns:
        The single-arch manifest's own digest, the matching manifest list
        entry's digest, or None when no platform matches

    Examples:
        >>> find_arch_digest({"digest": "sha256:a"}, "riscv64", "linux")
        'sha256:a'
        >>> find_arch_digest({"digest": "sha256:list", "manifests": []}, "arm64", "linux") is None
        True
    """
    manifest = manifest or {}
    if manifest.get("manifests") is None:
        return manifest.get("digest")

    for entry in manifest["manifests"]:
        platform = entry.get("platform") or {}
        if platform.get("architecture") == arch and platform.get("os") == os:
            return entry.get("digest")

    return None


def has_update(local_digest: Optional[str], remote_digest: Optional[str]) -> bool:
    """An update exists only when both digests are known and differ."""
    return bool(local_digest and remote_digest and local_digest != remote_digest)


class AutoUpdater:
    """
    Checks and updates auto-update containers over luci.podman.

    Update steps are not transactional: if recreation fails after the old
    container was removed, no container is left. The failure result keeps
    the captured CreateCommand so the container can be recreated by hand.
    """

    def __init__(self, rpc: PodmanRPC, pull_client: Optional[PullSessionClient] = None):
        """
        Initialize auto-updater.

        Args:
            rpc: luci.podman RPC wrapper
            pull_client: Pull session client (default: one built on rpc)
        """
        self.rpc = rpc
        self.pull_client = pull_client or PullSessionClient(rpc)

    async def get_auto_update_containers(self) -> List[AutoUpdateCandidate]:
        """List all containers (including stopped) carrying the auto-update label."""
        containers = await self.rpc.container_list(all=True)

        return [
            candidate_from_container(c)
            for c in containers
            if (c.get("Labels") or {}).get(AUTO_UPDATE_LABEL)
        ]

    async def check_for_updates(
        self,
        containers: Sequence[AutoUpdateCandidate],
        on_progress: Optional[CheckProgressCallback] = None,
    ) -> List[UpdateCheckResult]:
        """
        Check containers for newer images without pulling.

        Args:
            containers: Candidates to check, in order
            on_progress: Optional callback(container, index, total, None),
                fired before each check with a 1-based index

        Returns:
            One UpdateCheckResult per container, in input order. A failed
            check yields has_update=False with the error message.
        """
        results = []
        total = len(containers)

        for idx, container in enumerate(containers):
            await invoke_callback(on_progress, container, idx + 1, total, None)

            try:
                local_image = await self.rpc.image_inspect(container.image)
                local_digest = extract_digest(local_image)
                local_arch = local_image.get("Architecture") or DEFAULT_ARCHITECTURE
                local_os = local_image.get("Os") or DEFAULT_OS

                manifest = await self.rpc.image_manifest_inspect(container.image)
                remote_digest = find_arch_digest(manifest, local_arch, local_os)

                result = UpdateCheckResult(
                    name=container.name,
                    image=container.image,
                    running=container.running,
                    current_image_id=container.image_id,
                    has_update=has_update(local_digest, remote_digest),
                    current_digest=local_digest,
                    remote_digest=remote_digest,
                )

                if result.has_update:
                    logger.info(f"Update available for {container.name}: {local_digest[:19]} -> {remote_digest[:19]}")
                elif not remote_digest or not local_digest:
                    logger.info(f"Cannot determine update for {container.name} ({local_os}/{local_arch})")
                else:
                    logger.debug(f"{container.name} is up to date")

            except Exception as e:
                logger.error(f"Error checking {container.name} for updates: {e}")
                result = UpdateCheckResult(
                    name=container.name,
                    image=container.image,
                    running=container.running,
                    has_update=False,
                    error=str(e),
                )

            results.append(result)

        return results

    async def check_all(self, on_progress: Optional[CheckProgressCallback] = None) -> List[UpdateCheckResult]:
        """Discover candidates and check them all."""
        containers = await self.get_auto_update_containers()
        logger.info(f"Checking {len(containers)} auto-update container(s)")
        return await self.check_for_updates(containers, on_progress)

    @staticmethod
    def updates_available(results: Sequence[UpdateCheckResult]) -> List[UpdateCheckResult]:
        """Select check results that have an update."""
        return [r for r in results if r.has_update]

    async def update_container(
        self,
        name: str,
        image: str,
        was_running: bool,
        old_image_id: Optional[str] = None,
        on_step: Optional[StepCallback] = None,
        on_pull_progress: Optional[PullProgressCallback] = None,
    ) -> UpdateResult:
        """
        Update a single container in place.

        Args:
            name: Container name
            image: Image reference to pull
            was_running: Whether the container ran before the update
            old_image_id: Image id to remove after a successful update
            on_step: Optional callback(step, message) fired before each phase
            on_pull_progress: Optional callback receiving pull output chunks

        Returns:
            UpdateResult; never raises for step failures
        """
        create_command = None

        async def step(update_step: UpdateStep):
            await invoke_callback(on_step, int(update_step), update_step.message)

        try:
            # Step 1: capture the recreation spec before anything destructive
            await step(UpdateStep.CONFIGURATION)
            inspect_data = await self.rpc.container_inspect(name)
            create_command = ((inspect_data or {}).get("Config") or {}).get("CreateCommand")
            if not create_command:
                create_command = None
                raise MissingCreateCommandError()

            # Step 2: pull
            await step(UpdateStep.PULL)
            logger.info(f"Pulling {image} for {name}")
            if not await self.pull_client.pull_image_streaming(image, on_pull_progress):
                raise PullFailedError()

            # Step 3: stop (skipped for stopped containers)
            if was_running:
                await step(UpdateStep.STOP)
                self._log_reply_error(name, "stop", await self.rpc.container_stop(name))

            # Step 4: remove old container
            await step(UpdateStep.REMOVE)
            self._log_reply_error(name, "remove", await self.rpc.container_remove(name, force=True, depend=True))

            # Step 5: recreate from the exact original command
            await step(UpdateStep.CREATE)
            result = await self.rpc.container_recreate(json.dumps(create_command, separators=(",", ":")))
            if result and result.get("error"):
                raise RecreateFailedError(result["error"], result.get("details"))

            # Step 6: start (only if it ran before)
            if was_running:
                await step(UpdateStep.START)
                self._log_reply_error(name, "start", await self.rpc.container_start(name))

            # Step 7: old image may still be used by other containers
            if old_image_id:
                await step(UpdateStep.CLEANUP)
                cleanup = await self._remove_old_image(old_image_id)
                if not cleanup.ok:
                    logger.warning(f"Ignoring failure to remove old image {old_image_id[:12]}: {cleanup.error}")

            await step(UpdateStep.COMPLETE)
            logger.info(f"Updated container {name} to {image}")
            return UpdateResult.success_result(name, create_command)

        except Exception as e:
            logger.error(f"Update of {name} failed: {e}")
            return UpdateResult.failure_result(name, str(e), create_command)

    async def update_containers(
        self,
        containers: Sequence[Any],
        on_container_start=None,
        on_container_step=None,
        on_container_complete=None,
        on_pull_progress: Optional[PullProgressCallback] = None,
    ) -> BatchUpdateResult:
        """
        Update containers one after another, in input order.

        Args:
            containers: Items with name, image, running and current_image_id
                (e.g. UpdateCheckResult)
            on_container_start: Optional callback(container, index, total), 1-based index
            on_container_step: Optional callback(container, step, message)
            on_container_complete: Optional callback(container, result)
            on_pull_progress: Optional callback receiving pull output chunks

        Returns:
            BatchUpdateResult with successes and failures in input order
        """
        batch = BatchUpdateResult(total=len(containers))

        for idx, container in enumerate(containers, start=1):
            await invoke_callback(on_container_start, container, idx, batch.total)

            async def relay_step(step_num, message, container=container):
                await invoke_callback(on_container_step, container, step_num, message)

            try:
                result = await self.update_container(
                    container.name,
                    container.image,
                    container.running,
                    container.current_image_id,
                    relay_step,
                    on_pull_progress,
                )
            except Exception as e:
                logger.error(f"Unexpected error updating {container.name}: {e}", exc_info=True)
                result = UpdateResult.failure_result(container.name, str(e))

            if result.success:
                batch.successes.append(result)
            else:
                batch.failures.append(result)

            await invoke_callback(on_container_complete, container, result)

        logger.info(f"Batch update finished: {len(batch.successes)} succeeded, {len(batch.failures)} failed")
        return batch

    async def _remove_old_image(self, image_id: str) -> CleanupResult:
        try:
            reply = await self.rpc.image_remove(image_id, force=False)
        except Exception as e:
            return CleanupResult.failure(e)
        if reply and reply.get("error"):
            return CleanupResult.failure(reply["error"])
        return CleanupResult.success()

    @staticmethod
    def _log_reply_error(name: str, action: str, reply: Optional[Dict[str, Any]]):
        if reply and reply.get("error"):
            logger.warning(f"{action} of {name} reported: {reply['error']}")
