from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Optional

from ..domain.interfaces import Switch
from ..domain.registry import SwitchRegistry
from .actuator_sonoff import SonoffSwitch
from .actuators_sim import SimulatedSwitch
from .group import SwitchGroup

logger = logging.getLogger(__name__)

DEFAULT_DEVICES_PATH = Path(__file__).resolve().parent.parent / "config" / "devices.json"


def build_switch(entry: dict[str, Any], sonoff_timeout: float = 5.0) -> Switch:
    driver = str(entry.get("driver", "sim")).lower()
    device_id = str(entry["id"])
    name = entry.get("name") or device_id
    if driver == "sonoff":
        return SonoffSwitch(
            device_id=device_id,
            name=name,
            ip=entry["ip"],
            port=int(entry.get("port", 8081)),
            sonoff_device_id=entry.get("device_id", ""),
            timeout=sonoff_timeout,
        )
    if driver == "sim":
        return SimulatedSwitch(device_id=device_id, name=name, on=bool(entry.get("on", False)))
    raise ValueError(f"Unsupported driver {driver!r} for device {device_id}")


def build_registry(
    data: dict[str, Any],
    monitored_ids: Optional[Iterable[str]] = None,
    sonoff_timeout: float = 5.0,
) -> SwitchRegistry:
    switches = [build_switch(e, sonoff_timeout) for e in data.get("devices", [])]
    by_id = {sw.device_id: sw for sw in switches}

    groups = []
    for g in data.get("groups", []):
        members = []
        for member_id in g.get("members", []):
            sw = by_id.get(str(member_id))
            if sw is None:
                logger.warning("Group %s references unknown device %s", g.get("id"), member_id)
                continue
            members.append(sw)
        groups.append(SwitchGroup(group_id=g["id"], name=g.get("name") or g["id"], members=members))

    return SwitchRegistry(switches, monitored_ids=monitored_ids, groups=groups)


def load_registry(
    path: str = "",
    monitored_ids: Optional[Iterable[str]] = None,
    sonoff_timeout: float = 5.0,
) -> SwitchRegistry:
    devices_path = Path(path) if path else DEFAULT_DEVICES_PATH
    try:
        data = json.loads(devices_path.read_text())
    except Exception as e:
        logger.warning("Failed to load %s, starting with no devices: %s", devices_path, e)
        data = {}
    registry = build_registry(data, monitored_ids=monitored_ids, sonoff_timeout=sonoff_timeout)
    logger.info(
        "Loaded %d device(s), %d monitored, %d group(s) from %s",
        len(registry.all()), len(registry.monitored()), len(registry.groups()), devices_path,
    )
    return registry
