from __future__ import annotations
from typing import Any, Awaitable, Callable, Protocol, Sequence, runtime_checkable
from .models import CommandResult, SessionOutcome, SwitchState


@runtime_checkable
class Switch(Protocol):
    device_id: str
    name: str

    async def set_state(self, state: SwitchState) -> CommandResult:
        ...

    async def refresh(self) -> CommandResult:
        ...

    async def current_state(self) -> SwitchState:
        ...


@runtime_checkable
class GroupSwitch(Switch, Protocol):
    """A composite switch whose members can be verified one by one."""

    members: list[Switch]


@runtime_checkable
class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


@runtime_checkable
class Scheduler(Protocol):
    def run_in(
        self,
        delay_s: float,
        callback: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> TimerHandle:
        ...


@runtime_checkable
class Notifier(Protocol):
    async def notify(self, targets: Sequence[str], message: str) -> None:
        ...


@runtime_checkable
class OutcomeRepository(Protocol):
    async def insert_outcome(self, outcome: SessionOutcome) -> None:
        ...
