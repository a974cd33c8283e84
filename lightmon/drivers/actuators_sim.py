from __future__ import annotations
import logging
from dataclasses import dataclass

from ..core.timeutil import now_utc
from ..domain.models import CommandResult, SwitchEvent, SwitchState

logger = logging.getLogger(__name__)


@dataclass
class SimFaults:
    drop_commands: int = 0      # accept the next N commands but ignore them
    fail_commands: int = 0      # reject the next N commands with an error
    fail_refresh: bool = False
    fail_read: bool = False


class SimulatedSwitch:
    """In-memory light switch with a lossy link.

    The reported state only catches up with the real one on refresh, or on
    a command that was actually applied.
    """

    def __init__(self, device_id: str, name: str, on: bool = False) -> None:
        self.device_id = str(device_id)
        self.name = name
        self._actual = SwitchState.ON if on else SwitchState.OFF
        self._reported = self._actual
        self.faults = SimFaults()
        self.commands_received = 0
        self.refreshes_received = 0

    def set_faults(self, faults: SimFaults) -> None:
        self.faults = faults

    def status(self) -> dict:
        return {
            "device_id": self.device_id,
            "name": self.name,
            "actual": self._actual.value,
            "reported": self._reported.value,
            "commands_received": self.commands_received,
            "refreshes_received": self.refreshes_received,
            "faults": self.faults.__dict__,
        }

    def press(self, state: SwitchState) -> SwitchEvent:
        """Physical toggle at the wall; returns the event the hub would emit."""
        self._actual = self._reported = SwitchState.parse(state)
        return SwitchEvent(
            device_id=self.device_id,
            value=self._actual,
            device_name=self.name,
            source="DEVICE",
            description=f"{self.name} was turned {self._actual.value}",
            ts_utc=now_utc(),
        )

    async def set_state(self, state: SwitchState) -> CommandResult:
        self.commands_received += 1
        state = SwitchState.parse(state)
        if self.faults.fail_commands > 0:
            self.faults.fail_commands -= 1
            logger.info("SIM %s rejected command %s", self.name, state.value)
            return CommandResult.failure("simulated transport error")
        if self.faults.drop_commands > 0:
            self.faults.drop_commands -= 1
            logger.info("SIM %s silently dropped command %s", self.name, state.value)
            return CommandResult.success()
        self._actual = self._reported = state
        logger.info("SIM %s set_state=%s", self.name, state.value)
        return CommandResult.success()

    async def refresh(self) -> CommandResult:
        self.refreshes_received += 1
        if self.faults.fail_refresh:
            return CommandResult.failure("simulated refresh timeout")
        self._reported = self._actual
        return CommandResult.success()

    async def current_state(self) -> SwitchState:
        if self.faults.fail_read:
            return SwitchState.UNKNOWN
        return self._reported
