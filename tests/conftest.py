"""Shared fixtures for monitor tests.

Time is virtual: ``FakeScheduler.advance`` moves ``FakeClock`` forward and
fires due callbacks in order, so multi-minute retry scenarios run instantly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import pytest

from lightmon.core.config import MonitorConfig
from lightmon.domain.models import CommandResult, SwitchState
from lightmon.domain.monitor import LightMonitor
from lightmon.domain.registry import SwitchRegistry

logger = logging.getLogger(__name__)

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def elapsed(self) -> float:
        return (self.now - T0).total_seconds()


@dataclass
class FakeTimer:
    when: datetime
    seq: int
    callback: Callable
    args: tuple
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def name(self) -> str:
        return getattr(self.callback, "__name__", "callback")


class FakeScheduler:
    """Virtual-time stand-in for AsyncioScheduler."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.timers: list[FakeTimer] = []
        self.errors: list[Exception] = []
        self._seq = 0

    def run_in(self, delay_s: float, callback: Callable, *args: Any) -> FakeTimer:
        self._seq += 1
        timer = FakeTimer(self.clock.now + timedelta(seconds=delay_s), self._seq, callback, args)
        self.timers.append(timer)
        return timer

    def pending(self, name: Optional[str] = None) -> list[FakeTimer]:
        return [
            t for t in self.timers
            if not t.cancelled and (name is None or t.name == name)
        ]

    def drop(self, name: str) -> int:
        """Lose every pending callback with this name (a crashed timer)."""
        lost = self.pending(name)
        for t in lost:
            t.cancel()
        return len(lost)

    async def advance(self, seconds: float) -> None:
        target = self.clock.now + timedelta(seconds=seconds)
        while True:
            due = [t for t in self.pending() if t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t.when, t.seq))
            self.timers.remove(timer)
            self.clock.now = timer.when
            try:
                await timer.callback(*timer.args)
            except Exception as e:
                logger.error("scheduled %s failed: %s", timer.name, e)
                self.errors.append(e)
        self.clock.now = target


class FakeSwitch:
    """Switch whose reported state and I/O results are set by the test."""

    def __init__(self, device_id: str, name: str, state: SwitchState = SwitchState.OFF) -> None:
        self.device_id = device_id
        self.name = name
        self.state = state
        self.follow_commands = True
        self.set_result = CommandResult.success()
        self.refresh_result = CommandResult.success()
        self.refresh_raises: Optional[Exception] = None
        self.set_calls: list[SwitchState] = []
        self.refresh_calls = 0
        self.read_calls = 0

    async def set_state(self, state: SwitchState) -> CommandResult:
        self.set_calls.append(state)
        if self.set_result.ok and self.follow_commands:
            self.state = state
        return self.set_result

    async def refresh(self) -> CommandResult:
        self.refresh_calls += 1
        if self.refresh_raises is not None:
            raise self.refresh_raises
        return self.refresh_result

    async def current_state(self) -> SwitchState:
        self.read_calls += 1
        return self.state


class FakeGroup:
    def __init__(self, group_id: str, name: str, members: list) -> None:
        self.device_id = group_id
        self.name = name
        self.members = members
        self.set_calls: list[SwitchState] = []
        self.set_result = CommandResult.success()

    async def set_state(self, state: SwitchState) -> CommandResult:
        self.set_calls.append(state)
        if self.set_result.ok:
            for m in self.members:
                m.state = state
        return self.set_result

    async def refresh(self) -> CommandResult:
        return CommandResult.success()

    async def current_state(self) -> SwitchState:
        return SwitchState.UNKNOWN


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[tuple[str, ...], str]] = []

    async def notify(self, targets, message: str) -> None:
        self.sent.append((tuple(targets), message))

    @property
    def messages(self) -> list[str]:
        return [m for _, m in self.sent]


class MemoryHistory:
    def __init__(self) -> None:
        self.outcomes: list = []

    async def insert_outcome(self, outcome) -> None:
        self.outcomes.append(outcome)

    @property
    def last(self):
        return self.outcomes[-1]


@dataclass
class Harness:
    monitor: LightMonitor
    clock: FakeClock
    scheduler: FakeScheduler
    registry: SwitchRegistry
    notifier: RecordingNotifier
    history: MemoryHistory
    switches: dict[str, FakeSwitch] = field(default_factory=dict)

    def switch(self, device_id: str) -> FakeSwitch:
        return self.switches[device_id]


def default_config(**overrides: Any) -> MonitorConfig:
    values = dict(
        check_interval=30.0,
        refresh_wait=30.0,
        max_retries=5,
        command_timeout=400.0,
        cooldown_period=60.0,
        self_echo_window=10.0,
        notifications_enabled=True,
        notification_targets=("phone",),
    )
    values.update(overrides)
    return MonitorConfig(**values)


@pytest.fixture
def make_harness():
    """Build a monitor over fake switches ``"1"``..``"n"``."""

    def _make(
        config: Optional[MonitorConfig] = None,
        devices: int = 3,
        monitored_ids: Optional[list[str]] = None,
    ) -> Harness:
        clock = FakeClock()
        scheduler = FakeScheduler(clock)
        switches = {
            str(i): FakeSwitch(str(i), f"Light {i}") for i in range(1, devices + 1)
        }
        registry = SwitchRegistry(switches.values(), monitored_ids=monitored_ids)
        notifier = RecordingNotifier()
        history = MemoryHistory()
        monitor = LightMonitor(
            registry=registry,
            scheduler=scheduler,
            notifier=notifier,
            config=config or default_config(),
            history=history,
            clock=clock,
        )
        return Harness(monitor, clock, scheduler, registry, notifier, history, switches)

    return _make


@pytest.fixture
def harness(make_harness) -> Harness:
    return make_harness()
