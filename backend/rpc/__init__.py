"""
RPC Module

Transport and typed wrappers for the router's ubus JSON-RPC endpoint.

Architecture:
- UbusClient: JSON-RPC 2.0 over HTTP with rpcd session handling
- PodmanRPC: luci.podman methods (containers, images, pull sessions, networks)
"""

from rpc.ubus import UbusClient, UbusError, UbusAuthError, UbusUnavailable
from rpc.podman import PodmanRPC, PodmanRPCError, raise_for_error

__all__ = [
    'UbusClient',
    'UbusError',
    'UbusAuthError',
    'UbusUnavailable',
    'PodmanRPC',
    'PodmanRPCError',
    'raise_for_error',
]
