"""
Cached runtime state of OpenWrt network interfaces (netifd).
"""

import logging
from typing import Any, Dict, List, Optional

from rpc.ubus import UbusClient

logger = logging.getLogger(__name__)


class NetworkState:
    """
    Cache of `network.interface dump`.

    After a config change the reconciler calls flush_cache() so readers see
    the interfaces netifd brought up (or tore down).
    """

    def __init__(self, ubus: UbusClient):
        self.ubus = ubus
        self._interfaces: Optional[List[Dict[str, Any]]] = None

    async def interfaces(self) -> List[Dict[str, Any]]:
        if self._interfaces is None:
            data = await self.ubus.call("network.interface", "dump", {})
            self._interfaces = data.get("interface") or []
        return self._interfaces

    async def get_interface(self, name: str) -> Optional[Dict[str, Any]]:
        for iface in await self.interfaces():
            if iface.get("interface") == name:
                return iface
        return None

    async def flush_cache(self) -> None:
        """Discard and refetch the interface dump."""
        self._interfaces = None
        interfaces = await self.interfaces()
        logger.debug(f"Network state refreshed ({len(interfaces)} interfaces)")
