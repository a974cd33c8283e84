from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "Light Monitor"
    timezone: str = "UTC"

    # Verify cycle
    check_interval_seconds: int = Field(default=30, ge=1)
    refresh_wait_seconds: int = Field(default=30, ge=0)
    max_retries: int = Field(default=5, ge=0)
    command_timeout_seconds: int = Field(default=240, ge=1)

    # Event suppression
    cooldown_seconds: int = Field(default=60, ge=0)
    self_echo_seconds: int = Field(default=10, ge=0)

    # Empty = every device in the devices file
    monitored_device_ids: list[str] = Field(default_factory=list)

    # "member": each group member gets its own command
    # "group": one group command, members are only verified
    group_command_mode: Literal["member", "group"] = "member"

    # Notifications (webhook URLs)
    notifications_enabled: bool = False
    notification_targets: list[str] = Field(default_factory=list)
    notification_timeout_seconds: float = Field(default=5.0, gt=0)

    # Devices
    devices_path: str = ""
    sonoff_timeout_seconds: float = Field(default=5.0, gt=0)

    # Storage / logging
    sqlite_path: str = Field(default="lightmon.db")
    log_path: str = "lightmon.log"
    debug: bool = False


@dataclass(frozen=True)
class MonitorConfig:
    """Timing and retry policy consumed by the monitor.

    ``command_timeout`` is the effective watchdog delay. It is derived from
    the configured value so the watchdog cannot fire before the retry budget
    can be used up.
    """

    check_interval: float = 30.0
    refresh_wait: float = 30.0
    max_retries: int = 5
    command_timeout: float = 420.0
    cooldown_period: float = 60.0
    self_echo_window: float = 10.0
    group_command_mode: str = "member"
    notifications_enabled: bool = False
    notification_targets: tuple[str, ...] = ()

    @staticmethod
    def required_timeout(max_retries: int, check_interval: float, refresh_wait: float) -> float:
        return (max_retries + 1) * (check_interval + refresh_wait)

    @classmethod
    def derive_command_timeout(
        cls,
        configured: float,
        max_retries: int,
        check_interval: float,
        refresh_wait: float,
    ) -> float:
        required = cls.required_timeout(max_retries, check_interval, refresh_wait)
        if configured > required:
            return float(configured)
        derived = required + check_interval + refresh_wait
        logger.warning(
            "command timeout %.0fs is too short for %d retries at %.0fs+%.0fs per cycle "
            "(needs > %.0fs); using %.0fs",
            configured, max_retries, check_interval, refresh_wait, required, derived,
        )
        return derived

    @classmethod
    def from_settings(cls, s: Settings) -> "MonitorConfig":
        return cls(
            check_interval=float(s.check_interval_seconds),
            refresh_wait=float(s.refresh_wait_seconds),
            max_retries=int(s.max_retries),
            command_timeout=cls.derive_command_timeout(
                float(s.command_timeout_seconds),
                int(s.max_retries),
                float(s.check_interval_seconds),
                float(s.refresh_wait_seconds),
            ),
            cooldown_period=float(s.cooldown_seconds),
            self_echo_window=float(s.self_echo_seconds),
            group_command_mode=s.group_command_mode,
            notifications_enabled=bool(s.notifications_enabled),
            notification_targets=tuple(s.notification_targets),
        )


settings = Settings()
