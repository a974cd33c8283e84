from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import Annotated, Optional, get_origin

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import TypeAdapter

from ..core.config import MonitorConfig, Settings, settings
from ..core.timeutil import now_local, now_utc
from ..domain.models import SwitchEvent, SwitchState
from ..domain.monitor import LightMonitor
from ..domain.registry import SwitchRegistry
from ..drivers.actuators_sim import SimFaults, SimulatedSwitch
from ..storage.sqlite_repo import SQLiteRepository
from .schemas import MonitorRequest, SettingsUpdateRequest, SimFaultsRequest, SwitchEventIn

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Dependency getters ---
# main.py points these at the real singletons via app.dependency_overrides.
def get_monitor() -> LightMonitor:  # overridden in main
    raise RuntimeError("Monitor dependency not configured")

def get_registry() -> SwitchRegistry:  # overridden in main
    raise RuntimeError("Registry dependency not configured")

def get_repo() -> SQLiteRepository:  # overridden in main
    raise RuntimeError("Repo dependency not configured")


@router.get("/status")
async def get_status(monitor: LightMonitor = Depends(get_monitor)):
    cfg = monitor.config
    sessions = monitor.get_monitoring_status()
    return {
        "app": settings.app_name,
        "now_local": now_local().isoformat(),
        "config": {
            "check_interval_s": cfg.check_interval,
            "refresh_wait_s": cfg.refresh_wait,
            "max_retries": cfg.max_retries,
            "command_timeout_s": cfg.command_timeout,
            "cooldown_s": cfg.cooldown_period,
            "group_command_mode": cfg.group_command_mode,
        },
        "active_sessions": len(sessions),
        "sessions": sessions,
    }


@router.post("/events")
async def post_event(req: SwitchEventIn, monitor: LightMonitor = Depends(get_monitor)):
    event = SwitchEvent(
        device_id=req.device_id,
        value=SwitchState.parse(req.value),
        device_name=req.name,
        source=req.source,
        description=req.description,
        ts_utc=now_utc(),
    )
    started = await monitor.handle_event(event)
    return {"ok": True, "monitoring_started": started}


@router.post("/devices/{device_id}/monitor")
async def monitor_device(
    device_id: str,
    req: MonitorRequest,
    monitor: LightMonitor = Depends(get_monitor),
    registry: SwitchRegistry = Depends(get_registry),
):
    if registry.get(device_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown device: {device_id}")
    if not await monitor.start_monitoring(device_id, req.state):
        raise HTTPException(
            status_code=409,
            detail="Monitoring request rejected (already monitoring, cooldown, or command failed)",
        )
    return {"ok": True, "session": monitor.get_monitoring_status().get(device_id)}


@router.get("/devices/{device_id}/check")
async def check_device(
    device_id: str,
    refresh: bool = True,
    wait_s: float = Query(default=0.0, ge=0.0, le=60.0),
    monitor: LightMonitor = Depends(get_monitor),
):
    result = await monitor.check_device(device_id, refresh=refresh, wait_s=wait_s)
    if result is None:
        raise HTTPException(status_code=404, detail=f"Unknown device: {device_id}")
    return {
        "device_id": result.device_id,
        "name": result.device_name,
        "state": result.state.value,
        "refreshed": result.refreshed,
        "resolved_via": result.resolved_via,
        "ts_utc": result.ts_utc.isoformat(),
    }


@router.post("/groups/{group_id}/monitor")
async def monitor_group(
    group_id: str,
    req: MonitorRequest,
    monitor: LightMonitor = Depends(get_monitor),
    registry: SwitchRegistry = Depends(get_registry),
):
    group = registry.get_group(group_id)
    if group is None:
        raise HTTPException(status_code=404, detail=f"Unknown group: {group_id}")
    accepted = await monitor.start_group_monitoring(group, req.state)
    status = monitor.get_monitoring_status()
    return {
        "ok": accepted,
        "sessions": {m.device_id: status.get(m.device_id) for m in group.members},
    }


@router.post("/sessions/clear-stuck")
async def clear_stuck(monitor: LightMonitor = Depends(get_monitor)):
    cleared = await monitor.clear_stuck_sessions()
    return {"ok": True, "cleared": cleared}


@router.get("/history")
async def history(
    minutes: int = 1440,
    limit: int = 500,
    device_id: Optional[str] = None,
    repo: SQLiteRepository = Depends(get_repo),
):
    end = now_utc()
    start = end - timedelta(minutes=max(1, minutes))
    rows = await repo.query_outcomes(
        start.isoformat(), end.isoformat(), limit=min(limit, 5000), device_id=device_id,
    )
    return {
        "start_utc": start.isoformat(),
        "end_utc": end.isoformat(),
        "rows": [
            {
                "ts_utc": o.ts_utc.isoformat(),
                "device_id": o.device_id,
                "device_name": o.device_name,
                "status": o.status.value,
                "desired_state": o.desired_state.value,
                "final_state": o.final_state.value,
                "origin": o.origin.value,
                "check_count": o.check_count,
                "refresh_count": o.refresh_count,
                "elapsed_s": round(o.elapsed_s, 1),
                "failure": o.failure.value if o.failure else None,
                "detail": o.detail,
            }
            for o in rows
        ],
    }


# --- Simulation endpoints ---
def _sim_switch(registry: SwitchRegistry, device_id: str) -> SimulatedSwitch:
    sw = registry.get(device_id)
    if not isinstance(sw, SimulatedSwitch):
        raise HTTPException(status_code=404, detail=f"No simulated device: {device_id}")
    return sw


@router.get("/sim/{device_id}")
async def sim_status(device_id: str, registry: SwitchRegistry = Depends(get_registry)):
    return _sim_switch(registry, device_id).status()


@router.post("/sim/{device_id}/faults")
async def sim_faults(
    device_id: str,
    req: SimFaultsRequest,
    registry: SwitchRegistry = Depends(get_registry),
):
    sw = _sim_switch(registry, device_id)
    sw.set_faults(SimFaults(**req.model_dump()))
    return {"ok": True, "faults": sw.faults.__dict__}


@router.post("/sim/{device_id}/press")
async def sim_press(
    device_id: str,
    req: MonitorRequest,
    monitor: LightMonitor = Depends(get_monitor),
    registry: SwitchRegistry = Depends(get_registry),
):
    event = _sim_switch(registry, device_id).press(SwitchState(req.state))
    started = await monitor.handle_event(event)
    return {"ok": True, "monitoring_started": started}


# --- Settings endpoints ---

# Read once at startup; set these in the environment or .env instead.
RESTART_REQUIRED_KEYS = frozenset({
    "devices_path", "sonoff_timeout_seconds", "sqlite_path", "log_path",
    "notification_timeout_seconds",
})

# All Settings field names (for validation)
_SETTINGS_FIELDS = {name: field for name, field in Settings.model_fields.items()}


# BaseSettings does not validate on assignment, so updates are checked here
# against each field's type and bounds.
def _field_adapter(field) -> TypeAdapter:
    if field.metadata:
        return TypeAdapter(Annotated[(field.annotation, *field.metadata)])
    return TypeAdapter(field.annotation)


_SETTINGS_ADAPTERS = {name: _field_adapter(field) for name, field in _SETTINGS_FIELDS.items()}


def _cast_setting_value(key: str, raw: object) -> object:
    """Cast a raw value to the type expected by the Settings field."""
    field = _SETTINGS_FIELDS.get(key)
    if field is None:
        raise HTTPException(status_code=400, detail=f"Unknown setting key: {key}")
    annotation = field.annotation
    try:
        if annotation is bool and isinstance(raw, str):
            raw = raw.lower() in ("true", "1", "yes")
        elif annotation is str:
            raw = str(raw)
        elif get_origin(annotation) is list:
            if isinstance(raw, str):
                raw = json.loads(raw) if raw.strip().startswith("[") else [
                    s.strip() for s in raw.split(",") if s.strip()
                ]
            raw = [str(v) for v in raw]
        return _SETTINGS_ADAPTERS[key].validate_python(raw)
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid value for {key}: {e}")


def apply_runtime_settings(monitor: LightMonitor, registry: SwitchRegistry) -> None:
    monitor.reconfigure(MonitorConfig.from_settings(settings))
    registry.set_monitored(settings.monitored_device_ids)


@router.get("/settings")
async def get_settings():
    current = {}
    for key in _SETTINGS_FIELDS:
        current[key] = getattr(settings, key)
    return {
        "settings": current,
        "restart_required_keys": sorted(RESTART_REQUIRED_KEYS),
    }


@router.put("/settings")
async def update_settings(
    req: SettingsUpdateRequest,
    repo: SQLiteRepository = Depends(get_repo),
    monitor: LightMonitor = Depends(get_monitor),
    registry: SwitchRegistry = Depends(get_registry),
):
    startup_only = sorted(RESTART_REQUIRED_KEYS.intersection(req.updates))
    if startup_only:
        raise HTTPException(
            status_code=400,
            detail=f"Read at startup only, set in the environment or .env: {', '.join(startup_only)}",
        )

    typed = {key: _cast_setting_value(key, raw) for key, raw in req.updates.items()}
    db_updates: dict[str, str] = {}
    for key, typed_value in typed.items():
        setattr(settings, key, typed_value)
        db_updates[key] = json.dumps(typed_value)

    if typed:
        apply_runtime_settings(monitor, registry)
        await repo.set_settings_batch(db_updates)

    return {"ok": True, "updated_keys": list(typed)}
