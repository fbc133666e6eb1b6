"""
Centralized interface to Podman operations via the luci.podman ubus object.

The rpcd plugin wraps the Podman REST API; replies are either the Podman
payload itself or {"error": ..., "details": ...} when the API call failed.
List methods wrap their array in {"data": [...]} because ubus replies must
be objects.
"""

import logging
from typing import Any, Dict, List, Optional

from rpc.ubus import UbusClient

logger = logging.getLogger(__name__)

PODMAN_OBJECT = "luci.podman"


class PodmanRPCError(Exception):
    """luci.podman reply carried an error field."""

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(f"{message}: {details}" if details else message)
        self.message = message
        self.details = details


def raise_for_error(result: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Raise PodmanRPCError if an RPC reply reports an error, else return it."""
    if result and result.get("error"):
        raise PodmanRPCError(str(result["error"]), result.get("details"))
    return result or {}


class PodmanRPC:
    """Typed wrappers for the luci.podman methods used by the backend."""

    def __init__(self, ubus: UbusClient):
        self.ubus = ubus

    async def _call(self, method: str, **params) -> Dict[str, Any]:
        return await self.ubus.call(PODMAN_OBJECT, method, params)

    # ==================== Containers ====================

    async def container_list(self, all: bool = True) -> List[Dict[str, Any]]:
        """List containers (including stopped ones when all=True)."""
        result = await self._call("containers_list", query="all=true" if all else "")
        return result.get("data") or []

    async def container_inspect(self, id: str) -> Dict[str, Any]:
        return await self._call("container_inspect", id=id)

    async def container_start(self, id: str) -> Dict[str, Any]:
        return await self._call("container_start", id=id)

    async def container_stop(self, id: str) -> Dict[str, Any]:
        return await self._call("container_stop", id=id)

    async def container_remove(self, id: str, force: bool = False, depend: bool = False) -> Dict[str, Any]:
        return await self._call("container_remove", id=id, force=force, depend=depend)

    async def container_recreate(self, data: str) -> Dict[str, Any]:
        """
        Recreate a container from its recorded CreateCommand.

        Args:
            data: JSON-serialized CreateCommand argv list

        Returns:
            {"Id": ...} or {"error": ..., "details": ...}
        """
        return await self._call("container_recreate", data=data)

    # ==================== Images ====================

    async def image_inspect(self, id: str) -> Dict[str, Any]:
        return await self._call("image_inspect", id=id)

    async def image_manifest_inspect(self, image: str) -> Dict[str, Any]:
        """Fetch the remote manifest (or manifest list) without pulling layers."""
        return await self._call("image_manifest_inspect", image=image)

    async def image_remove(self, id: str, force: bool = False) -> Dict[str, Any]:
        return await self._call("image_remove", id=id, force=force)

    async def image_pull_stream(self, image: str) -> Dict[str, Any]:
        """Start a server-side pull session; returns {"session_id": ...}."""
        return await self._call("image_pull_stream", image=image)

    async def image_pull_status(self, session_id: str, offset: int) -> Dict[str, Any]:
        """Poll a pull session; output is incremental from offset."""
        return await self._call("image_pull_status", session_id=session_id, offset=offset)

    async def image_pull_stop(self, session_id: str) -> Dict[str, Any]:
        return await self._call("image_pull_stop", session_id=session_id)

    # ==================== Networks ====================

    async def network_inspect(self, name: str) -> Dict[str, Any]:
        return raise_for_error(await self._call("network_inspect", name=name))
