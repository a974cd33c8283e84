from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Iterable, Optional
from .interfaces import GroupSwitch, Switch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    switch: Optional[Switch]
    via: str  # "id" | "name" | "registry" | "unresolved"

    @property
    def found(self) -> bool:
        return self.switch is not None


UNRESOLVED = Resolution(switch=None, via="unresolved")


class SwitchRegistry:
    """Known switches, and which of them are monitored.

    Lookup order for ``resolve``: monitored switch by id, monitored switch by
    display name, then a scan over every known switch (monitored or not).
    """

    def __init__(
        self,
        switches: Iterable[Switch] = (),
        monitored_ids: Optional[Iterable[str]] = None,
        groups: Iterable[GroupSwitch] = (),
    ) -> None:
        self._switches: dict[str, Switch] = {}
        for sw in switches:
            self.add(sw)
        self._monitored: Optional[set[str]] = (
            {str(i) for i in monitored_ids} if monitored_ids else None
        )
        self._groups: dict[str, GroupSwitch] = {g.device_id: g for g in groups}

    def add(self, switch: Switch) -> None:
        self._switches[str(switch.device_id)] = switch

    def remove(self, device_id: str) -> Optional[Switch]:
        return self._switches.pop(str(device_id), None)

    def add_group(self, group: GroupSwitch) -> None:
        self._groups[group.device_id] = group

    def get_group(self, group_id: str) -> Optional[GroupSwitch]:
        return self._groups.get(str(group_id))

    def groups(self) -> list[GroupSwitch]:
        return list(self._groups.values())

    def set_monitored(self, monitored_ids: Optional[Iterable[str]]) -> None:
        self._monitored = {str(i) for i in monitored_ids} if monitored_ids else None

    def is_monitored(self, device_id: str) -> bool:
        if self._monitored is None:
            return str(device_id) in self._switches
        return str(device_id) in self._monitored

    def all(self) -> list[Switch]:
        return list(self._switches.values())

    def monitored(self) -> list[Switch]:
        return [sw for sw in self._switches.values() if self.is_monitored(sw.device_id)]

    def get(self, device_id: str) -> Optional[Switch]:
        return self._switches.get(str(device_id))

    def resolve(self, device_id: str, name: Optional[str] = None) -> Resolution:
        device_id = str(device_id)

        sw = self._switches.get(device_id)
        if sw is not None and self.is_monitored(device_id):
            return Resolution(sw, "id")

        if name:
            for candidate in self.monitored():
                if candidate.name == name:
                    logger.debug("Resolved %s by name %r -> %s", device_id, name, candidate.device_id)
                    return Resolution(candidate, "name")

        for candidate in self._switches.values():
            if str(candidate.device_id) == device_id:
                logger.debug("Resolved %s from full registry scan", device_id)
                return Resolution(candidate, "registry")

        return UNRESOLVED
