"""
Shared pytest fixtures for PodWrt tests.

Fixtures provided:
- fake_ubus: In-memory ubus with a working `uci` object and `network.interface dump`
- uci_session / network_state: Real UciSession/NetworkState on top of fake_ubus
- mock_rpc: AsyncMock PodmanRPC
- integration: OpenWrtNetworkIntegration wired to fake_ubus and mock_rpc

The fake keeps config state as plain dicts so tests can seed and inspect
the "router" directly.
"""

import copy
import os
import sys
from unittest.mock import AsyncMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from openwrt.integration import OpenWrtNetworkIntegration
from openwrt.network_state import NetworkState
from openwrt.uci import UciSession
from rpc.podman import PodmanRPC
from rpc.ubus import UBUS_STATUS_NO_DATA, UBUS_STATUS_NOT_FOUND, UbusError


def _section(index, section_type, sid, anonymous=False, **options):
    section = {'.index': index, '.type': section_type, '.name': sid, '.anonymous': anonymous}
    section.update(options)
    return section


def default_configs():
    """A stock OpenWrt network/firewall config"""
    return {
        'network': {
            'loopback': _section(0, 'interface', 'loopback', proto='static', device='lo', ipaddr='127.0.0.1', netmask='255.0.0.0'),
            'globals': _section(1, 'globals', 'globals', ula_prefix='fd52:425:78eb::/48'),
            'cfg030f15': _section(2, 'device', 'cfg030f15', anonymous=True, name='br-lan', type='bridge', ports=['lan1', 'lan2']),
            'lan': _section(3, 'interface', 'lan', proto='static', device='br-lan', ipaddr='192.168.1.1', netmask='255.255.255.0'),
            'wan': _section(4, 'interface', 'wan', proto='dhcp', device='wan'),
        },
        'firewall': {
            'cfg01e63d': _section(0, 'defaults', 'cfg01e63d', anonymous=True, input='REJECT', output='ACCEPT', forward='REJECT'),
            'cfg02dc81': _section(1, 'zone', 'cfg02dc81', anonymous=True, name='lan', network=['lan'], input='ACCEPT', output='ACCEPT', forward='ACCEPT'),
            'cfg03dc81': _section(2, 'zone', 'cfg03dc81', anonymous=True, name='wan', network=['wan', 'wan6'], input='REJECT', output='ACCEPT', forward='REJECT'),
        },
    }


class FakeUbus:
    """
    In-memory stand-in for UbusClient.

    Implements the rpcd `uci` object semantics the reconciler relies on
    (get/add/set/delete/apply/confirm) plus `network.interface dump`.
    Other objects are served from `responses[(obj, method)]`.
    """

    def __init__(self, configs=None):
        self.configs = configs if configs is not None else default_configs()
        self.calls = []
        self.pending = False
        self.applied = 0
        self.apply_timeouts = []
        self.responses = {}
        self.fail_on = {}

    def _next_index(self, config):
        return max((s['.index'] for s in self.configs[config].values()), default=-1) + 1

    async def call(self, obj, method, params=None):
        params = params or {}
        self.calls.append((obj, method, copy.deepcopy(params)))

        if (obj, method) in self.fail_on:
            raise self.fail_on[(obj, method)]

        if obj == 'uci':
            return getattr(self, f'_uci_{method}')(params)

        if (obj, method) == ('network.interface', 'dump'):
            return {'interface': [
                {'interface': sid, 'up': True, 'device': s.get('device')}
                for sid, s in self.configs.get('network', {}).items()
                if s['.type'] == 'interface'
            ]}

        return copy.deepcopy(self.responses.get((obj, method), {}))

    def _config(self, params):
        if params['config'] not in self.configs:
            raise UbusError(f"uci: config {params['config']} not found", UBUS_STATUS_NOT_FOUND)
        return self.configs[params['config']]

    def _uci_get(self, params):
        return {'values': copy.deepcopy(self._config(params))}

    def _uci_add(self, params):
        config = self._config(params)
        index = self._next_index(params['config'])
        name = params.get('name') or f"cfg{index:02x}a1b2"
        section = _section(index, params['type'], name, anonymous='name' not in params)
        section.update(copy.deepcopy(params.get('values') or {}))
        config[name] = section
        self.pending = True
        return {'section': name}

    def _uci_set(self, params):
        config = self._config(params)
        if params['section'] not in config:
            raise UbusError('uci.set: Not found', UBUS_STATUS_NOT_FOUND)
        config[params['section']].update(copy.deepcopy(params['values']))
        self.pending = True
        return {}

    def _uci_delete(self, params):
        config = self._config(params)
        if params['section'] not in config:
            raise UbusError('uci.delete: Not found', UBUS_STATUS_NOT_FOUND)
        if 'option' in params:
            config[params['section']].pop(params['option'], None)
        else:
            del config[params['section']]
        self.pending = True
        return {}

    def _uci_apply(self, params):
        if not self.pending:
            raise UbusError('uci.apply: No data', UBUS_STATUS_NO_DATA)
        self.pending = False
        self.applied += 1
        self.apply_timeouts.append(params.get('timeout'))
        return {}

    def _uci_confirm(self, params):
        return {}

    # ==================== Test helpers ====================

    def sections_of(self, config, section_type):
        return [s for s in self.configs[config].values() if s['.type'] == section_type]

    def zone(self, name='podman'):
        for s in self.sections_of('firewall', 'zone'):
            if s.get('name') == name:
                return s
        return None

    def rule(self, name='Allow-Podman-DNS'):
        for s in self.sections_of('firewall', 'rule'):
            if s.get('name') == name:
                return s
        return None

    def methods_called(self, obj='uci'):
        return [m for o, m, _ in self.calls if o == obj]


@pytest.fixture
def fake_ubus():
    """In-memory ubus seeded with a stock OpenWrt config"""
    return FakeUbus()


@pytest.fixture
def uci_session(fake_ubus):
    return UciSession(fake_ubus)


@pytest.fixture
def network_state(fake_ubus):
    return NetworkState(fake_ubus)


@pytest.fixture
def mock_rpc():
    """
    Mock PodmanRPC.

    Every luci.podman wrapper is an AsyncMock returning an empty reply
    unless the test configures it.
    """
    rpc = AsyncMock(spec=PodmanRPC)
    for method in (
        'container_inspect', 'container_start', 'container_stop', 'container_remove',
        'container_recreate', 'image_inspect', 'image_manifest_inspect', 'image_remove',
        'image_pull_stream', 'image_pull_status', 'image_pull_stop', 'network_inspect',
    ):
        getattr(rpc, method).return_value = {}
    rpc.container_list.return_value = []
    return rpc


@pytest.fixture
def integration(uci_session, network_state, mock_rpc):
    """Reconciler against the fake router"""
    return OpenWrtNetworkIntegration(uci_session, network_state, mock_rpc, apply_timeout=90)
