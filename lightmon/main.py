from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .core.config import MonitorConfig, settings
from .core.log import configure_logging

from .api.routes import router as api_router
import lightmon.api.routes as routes_module

from .domain.monitor import LightMonitor
from .domain.registry import SwitchRegistry
from .drivers.loader import load_registry
from .services.notifier import WebhookNotifier
from .services.scheduler import AsyncioScheduler
from .storage.sqlite_repo import SQLiteRepository


logger = logging.getLogger(__name__)


# --- Singletons ---
registry = load_registry(
    settings.devices_path,
    monitored_ids=settings.monitored_device_ids,
    sonoff_timeout=settings.sonoff_timeout_seconds,
)
scheduler = AsyncioScheduler()
repo = SQLiteRepository(settings.sqlite_path)
monitor = LightMonitor(
    registry=registry,
    scheduler=scheduler,
    notifier=WebhookNotifier(settings.app_name, timeout=settings.notification_timeout_seconds),
    config=MonitorConfig.from_settings(settings),
    history=repo,
)


def get_monitor() -> LightMonitor:
    return monitor


def get_registry() -> SwitchRegistry:
    return registry


def get_repo() -> SQLiteRepository:
    return repo


async def _restore_persisted_settings() -> None:
    stored = await repo.get_all_settings()
    applied = []
    for key, raw in stored.items():
        if key not in routes_module._SETTINGS_FIELDS or key in routes_module.RESTART_REQUIRED_KEYS:
            continue
        try:
            setattr(settings, key, routes_module._cast_setting_value(key, json.loads(raw)))
            applied.append(key)
        except Exception as e:
            logger.warning("Ignoring stored setting %s=%r: %s", key, raw, e)
    if applied:
        routes_module.apply_runtime_settings(monitor, registry)
        logger.info("Restored settings from database: %s", ", ".join(sorted(applied)))


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_path, debug=settings.debug)
    logger.info(
        "Starting %s (%d monitored device(s))", settings.app_name, len(registry.monitored()),
    )

    await repo.init()
    await _restore_persisted_settings()

    try:
        yield
    finally:
        await scheduler.shutdown()
        logger.info("Shutdown complete (%d session(s) dropped)", monitor.active_count)


app = FastAPI(title=settings.app_name, lifespan=lifespan)

# Make the dependency functions in routes resolve to the real ones
app.dependency_overrides[routes_module.get_monitor] = get_monitor
app.dependency_overrides[routes_module.get_registry] = get_registry
app.dependency_overrides[routes_module.get_repo] = get_repo

app.include_router(api_router, prefix="/api")
