"""
Shared firewall zone for all Podman networks.

Every integrated Podman network joins one zone named "podman" instead of
getting a zone of its own. The zone exists while it has at least one member
network; the DNS allow rule lives and dies with the zone.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from config.settings import AppConfig
from openwrt.uci import UciSession

logger = logging.getLogger(__name__)

FIREWALL = 'firewall'

# Section names used when the zone and rule are first created
ZONE_SECTION = 'podman_zone'
DNS_RULE_SECTION = 'podman_dns'


@dataclass
class SharedZone:
    """The shared zone section and its member networks."""
    section_id: str
    networks: List[str] = field(default_factory=list)

    def add_member(self, network_name: str) -> bool:
        """Add a network; returns False if it already was a member."""
        if network_name in self.networks:
            return False
        self.networks.append(network_name)
        return True

    def remove_member(self, network_name: str) -> bool:
        """Remove a network; returns False if it was not a member."""
        if network_name not in self.networks:
            return False
        self.networks = [n for n in self.networks if n != network_name]
        return True


class SharedZoneRepository:
    """
    Load/save access to the shared zone in a loaded firewall config.

    All methods work on the staged UciSession state; persisting is left to
    the caller's save/apply.
    """

    def __init__(self, uci: UciSession, zone_name: str = None, dns_rule_name: str = None):
        self.uci = uci
        self.zone_name = zone_name or AppConfig.FIREWALL_ZONE_NAME
        self.dns_rule_name = dns_rule_name or AppConfig.DNS_RULE_NAME

    def _find_section(self, section_type: str, name: str) -> Optional[str]:
        for section in self.uci.sections(FIREWALL, section_type):
            if section.get('name') == name:
                return section['.name']
        return None

    def load_zone(self) -> Optional[SharedZone]:
        """Find the zone by its name option; None if it does not exist."""
        sid = self._find_section('zone', self.zone_name)
        if sid is None:
            return None
        return SharedZone(section_id=sid, networks=self.uci.get_list(FIREWALL, sid, 'network'))

    def create_zone(self, network_name: str) -> SharedZone:
        """Create the zone seeded with one network, plus its DNS rule."""
        sid = self.uci.add(FIREWALL, 'zone', ZONE_SECTION)
        self.uci.set(FIREWALL, sid, 'name', self.zone_name)
        self.uci.set(FIREWALL, sid, 'input', 'DROP')
        self.uci.set(FIREWALL, sid, 'output', 'ACCEPT')
        self.uci.set(FIREWALL, sid, 'forward', 'REJECT')
        self.uci.set(FIREWALL, sid, 'network', [network_name])

        rule = self.uci.add(FIREWALL, 'rule', DNS_RULE_SECTION)
        self.uci.set(FIREWALL, rule, 'name', self.dns_rule_name)
        self.uci.set(FIREWALL, rule, 'src', self.zone_name)
        self.uci.set(FIREWALL, rule, 'dest_port', '53')
        self.uci.set(FIREWALL, rule, 'target', 'ACCEPT')

        logger.info(f"Created firewall zone '{self.zone_name}' for network {network_name}")
        return SharedZone(section_id=sid, networks=[network_name])

    def save_zone(self, zone: SharedZone) -> None:
        """Write back the membership list."""
        self.uci.set(FIREWALL, zone.section_id, 'network', list(zone.networks))

    def delete_zone(self, zone: SharedZone) -> None:
        """Delete the zone and its DNS rule."""
        self.uci.remove(FIREWALL, zone.section_id)

        rule = self._find_section('rule', self.dns_rule_name)
        if rule:
            self.uci.remove(FIREWALL, rule)

        logger.info(f"Removed firewall zone '{self.zone_name}' (no member networks left)")

    def join(self, network_name: str) -> SharedZone:
        """Add a network to the zone, creating the zone on first use."""
        zone = self.load_zone()
        if zone is None:
            return self.create_zone(network_name)

        if zone.add_member(network_name):
            self.save_zone(zone)
        return zone

    def leave(self, network_name: str) -> Optional[SharedZone]:
        """
        Remove a network from the zone, deleting the zone with its last member.

        Returns:
            The remaining zone, or None if it no longer exists
        """
        zone = self.load_zone()
        if zone is None:
            return None

        zone.remove_member(network_name)
        if zone.networks:
            self.save_zone(zone)
            return zone

        self.delete_zone(zone)
        return None
