"""
OpenWrt Module

Keeps OpenWrt's network and firewall configuration in step with Podman networks.

Architecture:
- UciSession: staged UCI editing over rpcd (load/save/apply)
- NetworkState: netifd interface cache, flushed after changes
- SharedZoneRepository: the single "podman" firewall zone and its DNS rule
- OpenWrtNetworkIntegration: bridge/interface/zone reconciliation per network
"""

from openwrt.uci import UciSession, as_list
from openwrt.network_state import NetworkState
from openwrt.firewall_zone import SharedZone, SharedZoneRepository
from openwrt.integration import (
    IntegrationOptions,
    IntegrationSetupError,
    IntegrationStatus,
    NetworkIntegration,
    OpenWrtNetworkIntegration,
    ValidationResult,
)

__all__ = [
    'UciSession',
    'as_list',
    'NetworkState',
    'SharedZone',
    'SharedZoneRepository',
    'IntegrationOptions',
    'IntegrationSetupError',
    'IntegrationStatus',
    'NetworkIntegration',
    'OpenWrtNetworkIntegration',
    'ValidationResult',
]
