from __future__ import annotations
import logging
from typing import Iterable

from ..domain.interfaces import Switch
from ..domain.models import CommandResult, SwitchState

logger = logging.getLogger(__name__)


class SwitchGroup:
    """Named set of switches commanded together."""

    def __init__(self, group_id: str, name: str, members: Iterable[Switch]) -> None:
        self.device_id = str(group_id)
        self.name = name
        self.members: list[Switch] = list(members)

    async def set_state(self, state: SwitchState) -> CommandResult:
        errors = []
        for m in self.members:
            result = await m.set_state(state)
            if not result.ok:
                errors.append(f"{m.name}: {result.error}")
        if errors:
            logger.warning("Group %s set_state(%s) partial failure: %s", self.name, state.value, errors)
            return CommandResult.failure("; ".join(errors))
        return CommandResult.success()

    async def refresh(self) -> CommandResult:
        failed = [m.name for m in self.members if not (await m.refresh()).ok]
        if failed:
            return CommandResult.failure(f"refresh failed for {', '.join(failed)}")
        return CommandResult.success()

    async def current_state(self) -> SwitchState:
        states = {await m.current_state() for m in self.members}
        if len(states) == 1:
            return states.pop()
        return SwitchState.UNKNOWN
