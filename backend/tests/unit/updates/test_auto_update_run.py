"""
Unit tests for AutoUpdater.update_container and update_containers.

Verifies step ordering, skipped steps for stopped containers, failure
reporting (with the CreateCommand preserved) and sequential batches.
"""

import json
import pytest
from unittest.mock import AsyncMock, MagicMock

from updates.auto_update import AutoUpdater
from updates.types import UpdateCheckResult, UpdateResult, UpdateStep

CREATE_COMMAND = ["podman", "run", "-d", "--name", "web", "--label", "io.containers.autoupdate=registry", "nginx:latest"]


@pytest.fixture
def pull_client():
    """Mock PullSessionClient whose pulls succeed"""
    client = MagicMock()
    client.pull_image_streaming = AsyncMock(return_value=True)
    return client


@pytest.fixture
def updater(mock_rpc, pull_client):
    mock_rpc.container_inspect.return_value = {"Config": {"CreateCommand": CREATE_COMMAND}}
    mock_rpc.container_recreate.return_value = {"Id": "new-container-id"}
    return AutoUpdater(mock_rpc, pull_client=pull_client)


def record_steps():
    steps = []

    def on_step(step, message):
        steps.append((step, message))

    return steps, on_step


class TestUpdateContainer:
    """Test single-container updates"""

    @pytest.mark.asyncio
    async def test_running_container_all_steps(self, updater, mock_rpc):
        """Should run steps 1-8 in order for a running container with an old image"""
        steps, on_step = record_steps()

        result = await updater.update_container("web", "nginx:latest", True, "sha256:oldimage", on_step)

        assert result.success is True
        assert result.create_command == CREATE_COMMAND
        assert [s for s, _ in steps] == [1, 2, 3, 4, 5, 6, 7, 8]
        assert steps[0][1] == "Getting container configuration..."
        assert steps[-1][1] == "Update complete"
        mock_rpc.container_stop.assert_awaited_once_with("web")
        mock_rpc.container_start.assert_awaited_once_with("web")
        mock_rpc.image_remove.assert_awaited_once_with("sha256:oldimage", force=False)

    @pytest.mark.asyncio
    async def test_stopped_container_skips_stop_and_start(self, updater, mock_rpc):
        """Should skip steps 3, 6 and 7 for a stopped container without old image id"""
        steps, on_step = record_steps()

        result = await updater.update_container("web", "nginx:latest", False, None, on_step)

        assert result.success is True
        assert [s for s, _ in steps] == [1, 2, 4, 5, 8]
        mock_rpc.container_stop.assert_not_awaited()
        mock_rpc.container_start.assert_not_awaited()
        mock_rpc.image_remove.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remove_and_recreate_arguments(self, updater, mock_rpc):
        """Should force-remove with dependents and recreate from compact JSON"""
        await updater.update_container("web", "nginx:latest", True)

        mock_rpc.container_remove.assert_awaited_once_with("web", force=True, depend=True)
        mock_rpc.container_recreate.assert_awaited_once_with(json.dumps(CREATE_COMMAND, separators=(",", ":")))
        assert " " not in mock_rpc.container_recreate.await_args.args[0]

    @pytest.mark.asyncio
    async def test_pull_happens_before_stop(self, updater, mock_rpc, pull_client):
        """The container should keep running until the new image is present"""
        order = []
        pull_client.pull_image_streaming.side_effect = lambda image, cb: order.append("pull") or True
        mock_rpc.container_stop.side_effect = lambda name: order.append("stop") or {}

        await updater.update_container("web", "nginx:latest", True)

        assert order == ["pull", "stop"]

    @pytest.mark.asyncio
    async def test_missing_create_command(self, updater, mock_rpc, pull_client):
        """Should fail at step 1 without touching the container"""
        mock_rpc.container_inspect.return_value = {"Config": {}}
        steps, on_step = record_steps()

        result = await updater.update_container("web", "nginx:latest", True, on_step=on_step)

        assert result.success is False
        assert result.error == "Container does not have CreateCommand"
        assert result.create_command is None
        assert [s for s, _ in steps] == [1]
        pull_client.pull_image_streaming.assert_not_awaited()
        mock_rpc.container_stop.assert_not_awaited()
        mock_rpc.container_remove.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pull_failure(self, updater, mock_rpc, pull_client):
        """Should stop before any destructive step when the pull fails"""
        pull_client.pull_image_streaming.return_value = False

        result = await updater.update_container("web", "nginx:latest", True)

        assert result.success is False
        assert result.error == "Failed to pull image"
        assert result.create_command == CREATE_COMMAND
        mock_rpc.container_stop.assert_not_awaited()
        mock_rpc.container_remove.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_pull_exception(self, updater, mock_rpc, pull_client):
        """Should report a pull session error as a failure result"""
        pull_client.pull_image_streaming.side_effect = ConnectionError("poll failed")

        result = await updater.update_container("web", "nginx:latest", True)

        assert result.success is False
        assert result.error == "poll failed"
        mock_rpc.container_remove.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_recreate_failure_keeps_create_command(self, updater, mock_rpc):
        """Should report error: details and keep the command for manual recovery"""
        mock_rpc.container_recreate.return_value = {"error": "Failed to create container", "details": "port 80 in use"}
        steps, on_step = record_steps()

        result = await updater.update_container("web", "nginx:latest", True, "sha256:old", on_step)

        assert result.success is False
        assert result.error == "Failed to create container: port 80 in use"
        assert result.create_command == CREATE_COMMAND
        assert [s for s, _ in steps] == [1, 2, 3, 4, 5]
        mock_rpc.container_start.assert_not_awaited()
        mock_rpc.image_remove.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_old_image_removal_failure_ignored(self, updater, mock_rpc):
        """Should succeed even when the old image cannot be removed"""
        mock_rpc.image_remove.side_effect = RuntimeError("image is in use by a container")

        result = await updater.update_container("web", "nginx:latest", True, "sha256:old")

        assert result.success is True

    @pytest.mark.asyncio
    async def test_old_image_removal_error_reply_ignored(self, updater, mock_rpc):
        """Should succeed when image remove replies with an error field"""
        mock_rpc.image_remove.return_value = {"error": "image in use"}

        result = await updater.update_container("web", "nginx:latest", True, "sha256:old")

        assert result.success is True

    @pytest.mark.asyncio
    async def test_pull_progress_forwarded(self, updater, pull_client):
        """Should hand the pull progress callback to the pull client"""
        on_pull_progress = MagicMock()

        await updater.update_container("web", "nginx:latest", True, on_pull_progress=on_pull_progress)

        pull_client.pull_image_streaming.assert_awaited_once_with("nginx:latest", on_pull_progress)


class TestUpdateContainers:
    """Test sequential batch updates"""

    @pytest.fixture
    def containers(self):
        return [
            UpdateCheckResult(name="A", image="a:latest", running=True, current_image_id="sha256:a", has_update=True),
            UpdateCheckResult(name="B", image="b:latest", running=True, current_image_id="sha256:b", has_update=True),
            UpdateCheckResult(name="C", image="c:latest", running=False, current_image_id=None, has_update=True),
        ]

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_batch(self, updater, mock_rpc, containers):
        """B failing should leave A and C updated"""
        async def inspect(name):
            if name == "B":
                return {"Config": {}}
            return {"Config": {"CreateCommand": ["podman", "run", "--name", name]}}

        mock_rpc.container_inspect.side_effect = inspect
        started, completed = [], []

        batch = await updater.update_containers(
            containers,
            on_container_start=lambda c, idx, total: started.append((c.name, idx, total)),
            on_container_complete=lambda c, result: completed.append((c.name, result.success)),
        )

        assert batch.total == 3
        assert [r.name for r in batch.successes] == ["A", "C"]
        assert [r.name for r in batch.failures] == ["B"]
        assert started == [("A", 1, 3), ("B", 2, 3), ("C", 3, 3)]
        assert completed == [("A", True), ("B", False), ("C", True)]

    @pytest.mark.asyncio
    async def test_step_callback_carries_container(self, updater, containers):
        """Should relay every step with the container it belongs to"""
        on_step = AsyncMock()

        await updater.update_containers(containers[:1], on_container_step=on_step)

        relayed = [(c.args[0].name, c.args[1]) for c in on_step.await_args_list]
        assert relayed == [("A", step) for step in range(1, 9)]

    @pytest.mark.asyncio
    async def test_containers_processed_one_at_a_time(self, updater, mock_rpc, containers):
        """Each update should finish before the next one starts"""
        events = []

        original = updater.update_container

        async def tracked(name, *args, **kwargs):
            events.append(("start", name))
            result = await original(name, *args, **kwargs)
            events.append(("end", name))
            return result

        updater.update_container = tracked

        await updater.update_containers(containers)

        assert events == [
            ("start", "A"), ("end", "A"),
            ("start", "B"), ("end", "B"),
            ("start", "C"), ("end", "C"),
        ]

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_failure(self, updater, containers):
        """An exception escaping update_container should be recorded as a failure"""
        async def update_container(name, *args, **kwargs):
            if name == "B":
                raise RuntimeError("boom")
            return UpdateResult.success_result(name, ["podman", "run"])

        updater.update_container = update_container

        batch = await updater.update_containers(containers)

        assert [r.name for r in batch.successes] == ["A", "C"]
        assert batch.failures[0].error == "boom"

    @pytest.mark.asyncio
    async def test_empty_batch(self, updater):
        """Should return an empty result without callbacks"""
        on_start = MagicMock()

        batch = await updater.update_containers([], on_container_start=on_start)

        assert batch.total == 0
        assert batch.successes == [] and batch.failures == []
        on_start.assert_not_called()


def test_step_numbers():
    """Step numbers are fixed for UI progress bars"""
    assert [int(s) for s in UpdateStep] == list(range(1, 9))
    assert UpdateStep.CLEANUP.message == "Cleaning up old image..."
