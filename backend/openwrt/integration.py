"""
OpenWrt network integration for Podman networks.

A Podman network needs matching OpenWrt configuration before the router
routes and firewalls it:
1. Bridge device in /etc/config/network
2. Static interface bound to the bridge, holding the gateway address
3. Membership in the shared "podman" firewall zone (zone + DNS rule are
   created with the first member and removed with the last)

Create and remove are idempotent. Status and validation queries never raise;
they report what is missing or wrong as data.

Calls hold a lock for the whole load -> edit -> save -> apply -> flush
pipeline, so reconciliations started from this process do not interleave.
Edits made concurrently by other UCI clients are not guarded against.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from config.settings import AppConfig
from openwrt.firewall_zone import SharedZoneRepository
from openwrt.network_state import NetworkState
from openwrt.uci import UciSession
from rpc.podman import PodmanRPC
from utils.network_helpers import (
    bridge_name_for,
    cidr_to_netmask,
    derive_ula_from_ipv4,
    extract_ipv6_subnet_gateway,
    extract_subnet_gateway,
    is_ipv4_address,
    is_ipv4_cidr,
)

logger = logging.getLogger(__name__)

NETWORK = 'network'
FIREWALL = 'firewall'

# Components reported by is_integration_complete()
MISSING_DEVICE = 'device'
MISSING_INTERFACE = 'interface'
MISSING_ZONE = 'zone'
MISSING_ZONE_MEMBERSHIP = 'zone_membership'
MISSING_UNKNOWN = 'unknown'


class IntegrationSetupError(Exception):
    """A Podman network cannot be integrated."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


@dataclass
class IntegrationOptions:
    """Addressing for one integrated network."""
    bridge_name: Optional[str] = None
    subnet: Optional[str] = None
    gateway: Optional[str] = None
    ipv6subnet: Optional[str] = None
    ipv6gateway: Optional[str] = None


@dataclass
class NetworkIntegration:
    """Persisted interface fields of an integrated network."""
    network_name: str
    bridge_name: Optional[str]
    gateway: Optional[str]
    netmask: Optional[str]
    proto: Optional[str]


@dataclass
class IntegrationStatus:
    complete: bool
    missing: List[str] = field(default_factory=list)


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


def _blank(value: Optional[str]) -> bool:
    return not value or not value.strip()


class OpenWrtNetworkIntegration:
    """Reconciles OpenWrt network/firewall config with Podman networks."""

    def __init__(
        self,
        uci: UciSession,
        network_state: NetworkState,
        rpc: Optional[PodmanRPC] = None,
        apply_timeout: Optional[int] = None,
    ):
        """
        Initialize the reconciler.

        Args:
            uci: UCI session used for network and firewall configs
            network_state: Interface cache flushed after every change
            rpc: luci.podman wrapper, needed only by setup_for_network()
            apply_timeout: Rollback window for `uci apply` (default AppConfig.UCI_APPLY_TIMEOUT)
        """
        self.uci = uci
        self.network_state = network_state
        self.rpc = rpc
        self.apply_timeout = AppConfig.UCI_APPLY_TIMEOUT if apply_timeout is None else apply_timeout
        self.zones = SharedZoneRepository(uci)
        self._lock = asyncio.Lock()

    async def _commit(self):
        await self.uci.save()
        await self.uci.apply(self.apply_timeout)
        await self.network_state.flush_cache()

    @asynccontextmanager
    async def _transaction(self):
        """Load, let the caller stage edits, then save, apply and flush."""
        async with self._lock:
            await self.uci.load(NETWORK, FIREWALL)
            try:
                yield
                await self._commit()
            except Exception:
                # Drop staged edits so the next load starts from the router state
                self.uci.unload(NETWORK, FIREWALL)
                raise

    def _interface(self, network_name: str) -> Optional[Dict]:
        section = self.uci.get(NETWORK, network_name)
        if section is None or section.get('.type') != 'interface':
            return None
        return section

    def _interfaces_using(self, bridge_name: str, exclude: str) -> List[str]:
        return [
            s['.name'] for s in self.uci.sections(NETWORK, 'interface')
            if s.get('device') == bridge_name and s['.name'] != exclude
        ]

    # ==================== Reconciliation ====================

    async def create_integration(self, network_name: str, options: IntegrationOptions) -> None:
        """
        Create the bridge, interface and zone membership for a network.

        Each component is created only if absent, so calling this again
        with the same arguments changes nothing.

        Raises:
            ValueError: bridge_name, subnet or gateway missing, bad prefix, or
                the network name is taken by a non-interface section
        """
        if _blank(options.bridge_name) or _blank(options.subnet) or _blank(options.gateway):
            raise ValueError("bridge_name, subnet and gateway are required")

        bridge_name = options.bridge_name
        netmask = cidr_to_netmask(options.subnet)

        async with self._transaction():
            if self.uci.get(NETWORK, bridge_name) is None:
                self.uci.add(NETWORK, 'device', bridge_name)
                self.uci.set(NETWORK, bridge_name, 'type', 'bridge')
                self.uci.set(NETWORK, bridge_name, 'name', bridge_name)
                self.uci.set(NETWORK, bridge_name, 'bridge_empty', '1')
                self.uci.set(NETWORK, bridge_name, 'ipv6', '0')

                if options.ipv6subnet:
                    self.uci.set(NETWORK, bridge_name, 'ipv6', '1')
                    self.uci.set(NETWORK, bridge_name, 'ip6assign', '64')

                logger.info(f"Adding bridge device {bridge_name}")

            existing = self.uci.get(NETWORK, network_name)
            if existing is not None and existing.get('.type') != 'interface':
                raise ValueError(f'Network section "{network_name}" is a {existing.get(".type")}, not an interface')

            if existing is None:
                self.uci.add(NETWORK, 'interface', network_name)
                self.uci.set(NETWORK, network_name, 'proto', 'static')
                self.uci.set(NETWORK, network_name, 'device', bridge_name)
                self.uci.set(NETWORK, network_name, 'ipaddr', options.gateway)
                self.uci.set(NETWORK, network_name, 'netmask', netmask)

                if options.ipv6subnet and options.ipv6gateway:
                    self.uci.set(NETWORK, network_name, 'ip6addr', f'{options.ipv6gateway}/64')

                logger.info(f"Adding interface {network_name} ({options.gateway}/{netmask} on {bridge_name})")

            self.zones.join(network_name)

        logger.info(f"OpenWrt integration for network {network_name} is in place")

    async def remove_integration(self, network_name: str, bridge_name: str) -> None:
        """
        Remove a network's zone membership, interface and (unshared) bridge.

        The bridge device is kept while any other interface still uses it.
        """
        async with self._transaction():
            self.zones.leave(network_name)

            if self.uci.get(NETWORK, network_name) is not None:
                self.uci.remove(NETWORK, network_name)
                logger.info(f"Removing interface {network_name}")

            users = self._interfaces_using(bridge_name, exclude=network_name)
            if not users:
                if self.uci.get(NETWORK, bridge_name) is not None:
                    self.uci.remove(NETWORK, bridge_name)
                    logger.info(f"Removing bridge device {bridge_name}")
            else:
                logger.info(f"Keeping bridge {bridge_name}, still used by {', '.join(users)}")

        logger.info(f"OpenWrt integration for network {network_name} removed")

    # ==================== Queries ====================

    async def has_integration(self, network_name: str) -> bool:
        """True if an interface named after the network exists. Never raises."""
        try:
            await self.uci.load(NETWORK)
            return self._interface(network_name) is not None
        except Exception as e:
            logger.debug(f"Integration lookup for {network_name} failed: {e}")
            return False

    async def is_integration_complete(self, network_name: str) -> IntegrationStatus:
        """
        Report which integration components are missing. Never raises.

        Without the interface nothing else is checked and only "interface"
        is reported.
        """
        try:
            await self.uci.load(NETWORK, FIREWALL)

            iface = self._interface(network_name)
            if iface is None:
                return IntegrationStatus(complete=False, missing=[MISSING_INTERFACE])

            missing = []

            bridge_name = iface.get('device')
            if not bridge_name or self.uci.get(NETWORK, bridge_name) is None:
                missing.append(MISSING_DEVICE)

            zone = self.zones.load_zone()
            if zone is None:
                missing.append(MISSING_ZONE)
            elif network_name not in zone.networks:
                missing.append(MISSING_ZONE_MEMBERSHIP)

            return IntegrationStatus(complete=not missing, missing=missing)

        except Exception as e:
            logger.error(f"Cannot determine integration status of {network_name}: {e}", exc_info=True)
            return IntegrationStatus(complete=False, missing=[MISSING_UNKNOWN])

    async def get_integration(self, network_name: str) -> Optional[NetworkIntegration]:
        """Persisted interface fields, or None if absent. Never raises."""
        try:
            await self.uci.load(NETWORK)
            iface = self._interface(network_name)
        except Exception as e:
            logger.debug(f"Integration lookup for {network_name} failed: {e}")
            return None

        if iface is None:
            return None

        return NetworkIntegration(
            network_name=network_name,
            bridge_name=iface.get('device'),
            gateway=iface.get('ipaddr'),
            netmask=iface.get('netmask'),
            proto=iface.get('proto'),
        )

    async def validate_integration(self, network_name: str, options: IntegrationOptions) -> ValidationResult:
        """
        Pre-flight checks before create_integration(). Never raises.

        Checks required fields, IPv4 CIDR/address shape, and conflicts with
        existing configuration.
        """
        errors = []

        if _blank(network_name):
            errors.append('Network name is required')
        if _blank(options.bridge_name):
            errors.append('Bridge name is required')
        if _blank(options.subnet):
            errors.append('Subnet is required')
        if _blank(options.gateway):
            errors.append('Gateway is required')

        if options.subnet and not is_ipv4_cidr(options.subnet):
            errors.append('Subnet must be in CIDR notation (e.g., 10.129.0.0/24)')

        if options.gateway and not is_ipv4_address(options.gateway):
            errors.append('Gateway must be a valid IP address')

        if errors:
            return ValidationResult(valid=False, errors=errors)

        try:
            await self.uci.load(NETWORK, FIREWALL)

            existing = self.uci.get(NETWORK, network_name)
            if existing is not None and existing.get('.type') != 'interface':
                errors.append(f'Network section "{network_name}" already exists as a {existing.get(".type")} section')
            elif existing is not None:
                proto = existing.get('proto')
                # A static interface is most likely an earlier integration
                if proto != 'static':
                    errors.append(f'Network interface "{network_name}" already exists with proto "{proto}"')

            users = self._interfaces_using(options.bridge_name, exclude=network_name)
            if users:
                errors.append(f'Bridge "{options.bridge_name}" is already used by interface "{users[0]}"')

        except Exception as e:
            errors.append(f'Failed to validate: {e}')

        return ValidationResult(valid=not errors, errors=errors)

    # ==================== Podman network helpers ====================

    async def ula_prefix(self) -> Optional[str]:
        """The router's ULA prefix from network.globals, if one is set."""
        await self.uci.load(NETWORK)
        for section in self.uci.sections(NETWORK, 'globals'):
            if section.get('ula_prefix'):
                return section['ula_prefix']
        return None

    async def options_for_network(
        self,
        network_name: str,
        bridge_name: Optional[str] = None,
        ipv6: bool = False,
    ) -> IntegrationOptions:
        """
        Build integration options from a Podman network's inspect output.

        An IPv4-only network that is IPv6-enabled (or when ipv6 is requested)
        gets a /64 derived from the router's ULA prefix.

        Args:
            network_name: Podman network name
            bridge_name: Bridge device override (default "<name>0")
            ipv6: Require IPv6 addressing

        Raises:
            IntegrationSetupError: The network has no subnet/gateway, or IPv6
                was requested and the router has no ULA prefix
        """
        if self.rpc is None:
            raise IntegrationSetupError("Podman RPC is not configured")

        network = await self.rpc.network_inspect(network_name)
        subnet, gateway = extract_subnet_gateway(network)
        if not subnet or not gateway:
            raise IntegrationSetupError(
                f'Network "{network_name}" does not have subnet and gateway configured'
            )

        ipv6subnet, ipv6gateway = extract_ipv6_subnet_gateway(network)
        if ipv6subnet == subnet:
            ipv6subnet, ipv6gateway = None, None

        wants_ipv6 = ipv6 or network.get('ipv6_enabled') or network.get('EnableIPv6')
        if ipv6subnet is None and wants_ipv6:
            prefix = await self.ula_prefix()
            if prefix:
                derived = derive_ula_from_ipv4(subnet, prefix)
                ipv6subnet, ipv6gateway = derived['ipv6subnet'], derived['ipv6gateway']
                logger.info(f"Derived IPv6 subnet {ipv6subnet} for {network_name} from ULA prefix {prefix}")
            elif ipv6:
                raise IntegrationSetupError(
                    f'Cannot derive IPv6 subnet for "{network_name}": no ULA prefix configured'
                )
            else:
                logger.warning(f"No ULA prefix configured, {network_name} stays IPv4-only")

        return IntegrationOptions(
            bridge_name=bridge_name or bridge_name_for(network_name),
            subnet=subnet,
            gateway=gateway,
            ipv6subnet=ipv6subnet,
            ipv6gateway=ipv6gateway,
        )

    async def setup_for_network(
        self,
        network_name: str,
        options: Optional[IntegrationOptions] = None,
        bridge_name: Optional[str] = None,
        ipv6: bool = False,
    ) -> IntegrationOptions:
        """
        Validate and create the integration for a Podman network.

        Args:
            network_name: Podman network name
            options: Explicit addressing; derived from network inspect when omitted
            bridge_name: Bridge override used when deriving from inspect
            ipv6: Require IPv6 addressing when deriving from inspect

        Returns:
            The options the integration was created with

        Raises:
            IntegrationSetupError: Missing addressing or validation errors
        """
        if options is None:
            options = await self.options_for_network(network_name, bridge_name, ipv6)

        validation = await self.validate_integration(network_name, options)
        if not validation.valid:
            raise IntegrationSetupError(
                f'Cannot set up OpenWrt integration for "{network_name}"',
                validation.errors,
            )

        await self.create_integration(network_name, options)
        return options

    async def remove_integrations(self, network_names: List[str]) -> Dict[str, list]:
        """
        Remove integrations for several networks, one at a time.

        Networks without an integration are skipped; a failure for one
        network does not stop the others.

        Returns:
            {"removed": [names], "failures": [{"name", "error"}]}
        """
        removed = []
        failures = []

        for name in network_names:
            if not await self.has_integration(name):
                continue
            try:
                await self.remove_integration(name, bridge_name_for(name))
                removed.append(name)
            except Exception as e:
                logger.error(f"Failed to remove OpenWrt integration for {name}: {e}")
                failures.append({'name': name, 'error': str(e)})

        return {'removed': removed, 'failures': failures}
