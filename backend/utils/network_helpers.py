"""
Network helper utilities for PodWrt.

Address arithmetic shared by the OpenWrt integration and the API:
- prefix/netmask conversion for UCI interface sections
- ULA IPv6 subnet derivation from an IPv4 subnet (dual-stack networks)
- subnet/gateway extraction from Podman network inspect output
"""

import ipaddress
import logging
import re
from typing import Any, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_NETMASK = '255.255.255.0'

_IPV4_CIDR_RE = re.compile(r'\d+\.\d+\.\d+\.\d+/\d+')
_IPV4_ADDRESS_RE = re.compile(r'\d+\.\d+\.\d+\.\d+')


def is_ipv4_cidr(value: str) -> bool:
    """Check the shape a.b.c.d/n (no range checks)."""
    return bool(_IPV4_CIDR_RE.fullmatch(value))


def is_ipv4_address(value: str) -> bool:
    """Check the shape a.b.c.d (no range checks)."""
    return bool(_IPV4_ADDRESS_RE.fullmatch(value))


def prefix_to_mask(prefix: int) -> str:
    """
    Convert an IPv4 prefix length to a dotted netmask.

    Examples:
        >>> prefix_to_mask(24)
        '255.255.255.0'
        >>> prefix_to_mask(16)
        '255.255.0.0'

    Raises:
        ValueError: prefix outside 0..32
    """
    if not 0 <= prefix <= 32:
        raise ValueError(f"Invalid IPv4 prefix length: {prefix}")
    return str(ipaddress.IPv4Network(f'0.0.0.0/{prefix}').netmask)


def cidr_to_netmask(cidr: str) -> str:
    """
    Netmask for a CIDR subnet ('10.129.0.0/24' -> '255.255.255.0').

    Falls back to /24 when the value has no prefix part.
    """
    parts = cidr.split('/')
    if len(parts) != 2:
        return DEFAULT_NETMASK
    return prefix_to_mask(int(parts[1]))


def cidr_to_ip(cidr: str) -> str:
    """Address part of a CIDR value ('10.129.0.0/24' -> '10.129.0.0')."""
    return cidr.split('/')[0]


def derive_ula_from_ipv4(ipv4: str, ula_prefix: str) -> Dict[str, str]:
    """
    Derive a ULA /64 subnet and gateway from an IPv4 subnet.

    The 3rd and 4th IPv4 octets become the 16-bit IPv6 subnet id, so the
    same IPv4 network always maps to the same IPv6 network.

    Args:
        ipv4: IPv4 subnet in CIDR notation (e.g. "192.168.20.0/24")
        ula_prefix: OpenWrt ULA prefix (e.g. "fd52:425:78eb::/48")

    Returns:
        {"ipv6subnet": "<base>:<id>::/64", "ipv6gateway": "<base>:<id>::1"}

    Examples:
        >>> derive_ula_from_ipv4("192.168.20.0/24", "fd52:425:78eb::/48")
        {'ipv6subnet': 'fd52:425:78eb:1400::/64', 'ipv6gateway': 'fd52:425:78eb:1400::1'}
        >>> derive_ula_from_ipv4("10.89.5.0/24", "fd52:425::/48")
        {'ipv6subnet': 'fd52:425:0:0500::/64', 'ipv6gateway': 'fd52:425:0:0500::1'}
    """
    octets = [int(o) for o in cidr_to_ip(ipv4).split('.')]
    subnet_id = format((octets[2] << 8) | octets[3], '04x')

    ula_base = ula_prefix.split('/')[0].split('::')[0]
    hextets = ula_base.split(':') if ula_base else []

    while len(hextets) < 3:
        hextets.append('0')

    subnet_address = f"{':'.join(hextets[:3])}:{subnet_id}::"

    return {
        'ipv6subnet': f'{subnet_address}/64',
        'ipv6gateway': f'{subnet_address}1',
    }


def _subnet_entries(network: Dict[str, Any]):
    """Yield (subnet, gateway) pairs from libpod or compat inspect output."""
    for entry in network.get('subnets') or []:
        yield entry.get('subnet'), entry.get('gateway')

    ipam_configs = (network.get('IPAM') or {}).get('Config') or []
    for entry in ipam_configs:
        yield entry.get('Subnet'), entry.get('Gateway')


def extract_subnet_gateway(network: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    """
    First subnet and gateway of a Podman network.

    Podman's libpod API reports `subnets: [{subnet, gateway}]`, the Docker
    compatible API `IPAM.Config: [{Subnet, Gateway}]`.

    Returns:
        (subnet, gateway); either may be None
    """
    for subnet, gateway in _subnet_entries(network):
        return subnet, gateway
    return None, None


def extract_ipv6_subnet_gateway(network: Dict[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    """First IPv6 subnet and gateway of a dual-stack Podman network."""
    for subnet, gateway in _subnet_entries(network):
        if subnet and ':' in subnet:
            return subnet, gateway
    return None, None


def bridge_name_for(network_name: str) -> str:
    """Bridge device name used for a Podman network ('mynet' -> 'mynet0')."""
    return f'{network_name}0'
