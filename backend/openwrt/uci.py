"""
UCI configuration session over ubus.

Mirrors the LuCI uci client: configs are loaded into a local copy, edits are
staged locally (creates, option changes, deletes) and pushed to rpcd with
save(). apply() then commits the staged changes with a rollback window and
confirms them; if the router becomes unreachable the change is reverted by
rpcd when the window expires.

Operations are strictly ordered per caller: load before get/set/add/remove,
save before apply.
"""

import logging
import secrets
from typing import Any, Dict, List, Optional, Set

from rpc.ubus import UBUS_STATUS_NO_DATA, UbusClient, UbusError

logger = logging.getLogger(__name__)

UCI_OBJECT = "uci"


def as_list(value: Any) -> List[str]:
    """
    Normalize a UCI option to a list.

    A list option may come back absent, as a single string or as a list
    depending on how it was written.
    """
    if value is None or value == '':
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class UciSession:
    """Staged UCI editing session backed by the rpcd uci object."""

    def __init__(self, ubus: UbusClient):
        self.ubus = ubus
        self._values: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._creates: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._changes: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._deletes: Dict[str, Set[str]] = {}

    # ==================== Loading ====================

    def has_changes(self, config: str) -> bool:
        return bool(self._creates.get(config) or self._changes.get(config) or self._deletes.get(config))

    async def load(self, *configs: str) -> None:
        """
        Load configs from rpcd.

        Configs with staged, unsaved edits are kept as they are; everything
        else is refetched so edits made by other clients become visible.
        """
        for config in configs:
            if self.has_changes(config):
                continue
            data = await self.ubus.call(UCI_OBJECT, "get", {"config": config})
            self._values[config] = data.get("values") or {}
            logger.debug(f"Loaded UCI config '{config}' ({len(self._values[config])} sections)")

    def unload(self, *configs: str) -> None:
        """Drop local state, including staged edits, for configs."""
        for config in configs:
            self._values.pop(config, None)
            self._creates.pop(config, None)
            self._changes.pop(config, None)
            self._deletes.pop(config, None)

    # ==================== Reading ====================

    def get(self, config: str, sid: str, option: Optional[str] = None) -> Any:
        """
        Read a section or option from merged (loaded + staged) state.

        Returns:
            Section dict when option is None, the option value otherwise;
            None when the section or option does not exist
        """
        section = self._merged_section(config, sid)
        if section is None:
            return None
        if option is None:
            return section
        return section.get(option)

    def get_list(self, config: str, sid: str, option: str) -> List[str]:
        """Read a list option, normalized to a list."""
        return as_list(self.get(config, sid, option))

    def sections(self, config: str, section_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """Sections of a config in file order, staged creates last."""
        loaded = sorted(
            (sid for sid in self._values.get(config, {}) if sid not in self._deletes.get(config, set())),
            key=lambda sid: self._values[config][sid].get('.index', 0),
        )
        created = list(self._creates.get(config, {}))

        result = []
        for sid in loaded + created:
            section = self._merged_section(config, sid)
            if section is not None and (section_type is None or section.get('.type') == section_type):
                result.append(section)
        return result

    def _merged_section(self, config: str, sid: str) -> Optional[Dict[str, Any]]:
        if sid in self._deletes.get(config, set()):
            return None

        if sid in self._creates.get(config, {}):
            return dict(self._creates[config][sid])

        base = self._values.get(config, {}).get(sid)
        if base is None:
            return None

        section = dict(base)
        for option, value in self._changes.get(config, {}).get(sid, {}).items():
            if value is None:
                section.pop(option, None)
            else:
                section[option] = value
        return section

    # ==================== Staging ====================

    def add(self, config: str, section_type: str, name: Optional[str] = None) -> str:
        """
        Stage a new section.

        Args:
            config: Config name (e.g. "network")
            section_type: Section type (e.g. "interface")
            name: Section name; an anonymous id is generated when omitted

        Returns:
            Section id
        """
        sid = name or f"new{secrets.token_hex(3)}"
        self._creates.setdefault(config, {})[sid] = {
            '.type': section_type,
            '.name': sid,
            '.anonymous': name is None,
        }
        return sid

    def set(self, config: str, sid: str, option: str, value: Any) -> None:
        """Stage an option value; None deletes the option."""
        if sid in self._creates.get(config, {}):
            if value is None:
                self._creates[config][sid].pop(option, None)
            else:
                self._creates[config][sid][option] = value
            return

        if self._merged_section(config, sid) is None:
            logger.debug(f"Ignoring set on missing UCI section {config}.{sid}")
            return

        self._changes.setdefault(config, {}).setdefault(sid, {})[option] = value

    def remove(self, config: str, sid: str) -> None:
        """Stage deletion of a section."""
        if sid in self._creates.get(config, {}):
            del self._creates[config][sid]
            return

        self._changes.get(config, {}).pop(sid, None)
        if sid in self._values.get(config, {}):
            self._deletes.setdefault(config, set()).add(sid)

    # ==================== Persisting ====================

    async def save(self) -> List[str]:
        """
        Push staged edits to rpcd and reload the touched configs.

        Returns:
            Names of the configs that had edits
        """
        configs = sorted(
            set(self._creates) | set(self._changes) | set(self._deletes)
        )
        configs = [c for c in configs if self.has_changes(c)]

        for config in configs:
            for sid in sorted(self._deletes.get(config, set())):
                await self.ubus.call(UCI_OBJECT, "delete", {"config": config, "section": sid})

            for sid, section in self._creates.get(config, {}).items():
                params = {
                    "config": config,
                    "type": section['.type'],
                    "values": {k: v for k, v in section.items() if not k.startswith('.')},
                }
                if not section['.anonymous']:
                    params["name"] = sid
                await self.ubus.call(UCI_OBJECT, "add", params)

            for sid, options in self._changes.get(config, {}).items():
                values = {k: v for k, v in options.items() if v is not None}
                if values:
                    await self.ubus.call(UCI_OBJECT, "set", {"config": config, "section": sid, "values": values})
                for option in (k for k, v in options.items() if v is None):
                    await self.ubus.call(UCI_OBJECT, "delete", {"config": config, "section": sid, "option": option})

            self._creates.pop(config, None)
            self._changes.pop(config, None)
            self._deletes.pop(config, None)

        if configs:
            logger.info(f"Saved UCI changes for {', '.join(configs)}")
            await self.load(*configs)

        return configs

    async def apply(self, timeout: int = 90) -> bool:
        """
        Commit saved changes with a rollback window and confirm them.

        Args:
            timeout: Seconds rpcd waits for confirmation before rolling back

        Returns:
            False when there was nothing to apply
        """
        try:
            await self.ubus.call(UCI_OBJECT, "apply", {"rollback": True, "timeout": timeout})
        except UbusError as e:
            if e.code == UBUS_STATUS_NO_DATA:
                logger.debug("No pending UCI changes to apply")
                return False
            raise

        await self.ubus.call(UCI_OBJECT, "confirm", {})
        logger.info(f"Applied and confirmed UCI changes (rollback window {timeout}s)")
        return True
