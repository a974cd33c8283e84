from __future__ import annotations
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class SwitchState(str, Enum):
    ON = "on"
    OFF = "off"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: object) -> "SwitchState":
        if isinstance(value, SwitchState):
            return value
        if isinstance(value, bool):
            return cls.ON if value else cls.OFF
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_known(self) -> bool:
        return self is not SwitchState.UNKNOWN


class SessionOrigin(str, Enum):
    EXTERNAL_EVENT = "external_event"
    MANUAL = "manual"
    GROUP_MEMBER = "group_member"


class FailureKind(str, Enum):
    DEVICE_UNRESOLVED = "device_unresolved"
    COMMAND_SEND_FAILURE = "command_send_failure"
    READ_FAILURE = "read_failure"
    RETRY_EXHAUSTED = "retry_exhausted"
    ABANDONED = "abandoned"
    WATCHDOG_TIMEOUT = "watchdog_timeout"


class OutcomeStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABANDONED = "abandoned"
    TIMED_OUT = "timed_out"
    FORCE_CLEARED = "force_cleared"
    CLEARED = "cleared"


@dataclass(frozen=True)
class CommandResult:
    ok: bool
    error: Optional[str] = None

    @classmethod
    def success(cls) -> "CommandResult":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: str) -> "CommandResult":
        return cls(ok=False, error=error)


@dataclass(frozen=True)
class SwitchEvent:
    """A state change reported by the hub, not caused by a verify read."""

    device_id: str
    value: SwitchState
    device_name: Optional[str] = None
    source: Optional[str] = None
    description: Optional[str] = None
    ts_utc: Optional[datetime] = None


@dataclass
class MonitoringSession:
    device_id: str
    device_name: str
    desired_state: SwitchState
    origin: SessionOrigin
    start_time: datetime
    last_check_time: datetime
    initial_state: SwitchState = SwitchState.UNKNOWN
    check_count: int = 0
    refresh_count: int = 0
    waiting_for_refresh: bool = False
    refresh_sent: bool = False
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def elapsed(self, now: datetime) -> float:
        return (now - self.start_time).total_seconds()

    def to_dict(self, now: datetime) -> dict:
        return {
            "session_id": self.session_id,
            "device_id": self.device_id,
            "device_name": self.device_name,
            "desired_state": self.desired_state.value,
            "initial_state": self.initial_state.value,
            "origin": self.origin.value,
            "check_count": self.check_count,
            "refresh_count": self.refresh_count,
            "waiting_for_refresh": self.waiting_for_refresh,
            "refresh_sent": self.refresh_sent,
            "start_time": self.start_time.isoformat(),
            "last_check_time": self.last_check_time.isoformat(),
            "elapsed_s": round(self.elapsed(now), 1),
        }


@dataclass(frozen=True)
class SessionOutcome:
    ts_utc: datetime
    device_id: str
    device_name: str
    status: OutcomeStatus
    desired_state: SwitchState
    final_state: SwitchState
    origin: SessionOrigin
    check_count: int
    refresh_count: int
    elapsed_s: float
    failure: Optional[FailureKind] = None
    detail: Optional[str] = None


@dataclass(frozen=True)
class StatusCheck:
    device_id: str
    device_name: str
    state: SwitchState
    refreshed: bool
    resolved_via: str
    ts_utc: datetime
