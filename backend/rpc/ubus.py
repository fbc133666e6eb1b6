"""
Python client for the OpenWrt ubus JSON-RPC endpoint.

rpcd exposes every ubus object (luci.podman, uci, network, session) through
uhttpd at /ubus. Each request is a JSON-RPC 2.0 "call" whose params are
[session_id, object, method, args]; the reply carries [status, data].

This client is used by:
- PodmanRPC (luci.podman object, wraps the Podman REST API)
- UciSession (uci object, network/firewall configuration)
- NetworkState (network.interface object)
"""

import itertools
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

# Session id used before login (rpcd ACL "unauthenticated")
NULL_SESSION = "00000000000000000000000000000000"

# ubus status codes (libubus UBUS_STATUS_*)
UBUS_STATUS_OK = 0
UBUS_STATUS_INVALID_COMMAND = 1
UBUS_STATUS_INVALID_ARGUMENT = 2
UBUS_STATUS_METHOD_NOT_FOUND = 3
UBUS_STATUS_NOT_FOUND = 4
UBUS_STATUS_NO_DATA = 5
UBUS_STATUS_PERMISSION_DENIED = 6
UBUS_STATUS_TIMEOUT = 7
UBUS_STATUS_NOT_SUPPORTED = 8

# uhttpd-mod-ubus JSON-RPC error for an unknown or expired session
JSONRPC_ACCESS_DENIED = -32002

UBUS_STATUS_NAMES = {
    UBUS_STATUS_INVALID_COMMAND: "Invalid command",
    UBUS_STATUS_INVALID_ARGUMENT: "Invalid argument",
    UBUS_STATUS_METHOD_NOT_FOUND: "Method not found",
    UBUS_STATUS_NOT_FOUND: "Not found",
    UBUS_STATUS_NO_DATA: "No data",
    UBUS_STATUS_PERMISSION_DENIED: "Permission denied",
    UBUS_STATUS_TIMEOUT: "Request timed out",
    UBUS_STATUS_NOT_SUPPORTED: "Operation not supported",
}


class UbusError(Exception):
    """Error reply from ubus (non-zero status or JSON-RPC error)."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code


class UbusAuthError(UbusError):
    """Login to rpcd failed."""

    pass


class UbusUnavailable(Exception):
    """ubus HTTP endpoint is not reachable."""

    pass


class UbusClient:
    """
    Async client for the ubus JSON-RPC endpoint.

    Logs in lazily on the first call and transparently logs in again once
    when the session is rejected, either as ubus status 6 or as the
    JSON-RPC "Access denied" error uhttpd sends for expired sessions.
    """

    def __init__(
        self,
        url: str,
        username: str = "root",
        password: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize ubus client.

        Args:
            url: ubus endpoint (e.g. http://192.168.1.1/ubus)
            username: rpcd login user
            password: rpcd login password
            timeout: Per-request HTTP timeout in seconds
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.url = url
        self.username = username
        self.password = password
        self.session_id: Optional[str] = None
        self._ids = itertools.count(1)
        self._client = httpx.AsyncClient(
            transport=transport,
            timeout=httpx.Timeout(timeout, connect=10.0),
        )

    async def close(self):
        await self._client.aclose()

    async def login(self) -> str:
        """Create an rpcd session and remember its id."""
        try:
            data = await self._request(NULL_SESSION, "session", "login", {
                "username": self.username,
                "password": self.password,
            })
        except UbusError as e:
            raise UbusAuthError(f"ubus login failed for '{self.username}': {e.message}", e.code)

        session_id = data.get("ubus_rpc_session")
        if not session_id:
            raise UbusAuthError(f"ubus login for '{self.username}' returned no session")

        self.session_id = session_id
        logger.info(f"Logged in to ubus at {self.url} as {self.username}")
        return session_id

    async def call(self, obj: str, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Call a ubus method.

        Args:
            obj: ubus object path (e.g. "luci.podman")
            method: Method name (e.g. "container_inspect")
            params: Method arguments

        Returns:
            Reply data (empty dict when the method returns nothing)

        Raises:
            UbusError: Non-zero ubus status or JSON-RPC error
            UbusUnavailable: Endpoint unreachable
        """
        if self.session_id is None:
            await self.login()

        try:
            return await self._request(self.session_id, obj, method, params or {})
        except UbusError as e:
            if e.code not in (UBUS_STATUS_PERMISSION_DENIED, JSONRPC_ACCESS_DENIED):
                raise
            logger.info(f"ubus session rejected for {obj}.{method}, logging in again")

        await self.login()
        return await self._request(self.session_id, obj, method, params or {})

    async def _request(self, session_id: str, obj: str, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        request = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "call",
            "params": [session_id, obj, method, params],
        }

        try:
            response = await self._client.post(self.url, json=request)
        except httpx.TransportError as e:
            raise UbusUnavailable(f"Cannot reach ubus at {self.url}: {e}")

        if response.status_code != 200:
            raise UbusError(f"ubus HTTP error {response.status_code} for {obj}.{method}")

        reply = response.json()

        if reply.get("error"):
            error = reply["error"]
            raise UbusError(
                f"{obj}.{method}: {error.get('message', 'JSON-RPC error')}",
                error.get("code"),
            )

        result = reply.get("result") or []
        status = result[0] if result else UBUS_STATUS_NO_DATA

        if status != UBUS_STATUS_OK:
            name = UBUS_STATUS_NAMES.get(status, f"status {status}")
            raise UbusError(f"{obj}.{method}: {name}", status)

        return result[1] if len(result) > 1 else {}
