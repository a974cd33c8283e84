from __future__ import annotations
import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional, Union

from ..core.config import MonitorConfig
from ..core.timeutil import now_utc
from .interfaces import GroupSwitch, Notifier, OutcomeRepository, Scheduler, Switch
from .models import (
    FailureKind,
    MonitoringSession,
    OutcomeStatus,
    SessionOrigin,
    SessionOutcome,
    StatusCheck,
    SwitchEvent,
    SwitchState,
)
from .registry import SwitchRegistry
from .sessions import SessionStore

logger = logging.getLogger(__name__)


class LightMonitor:
    """Verifies that switches reach the state they were asked to reach.

    One session per device. A session starts from an external state-change
    event (``handle_event``) or from a caller (``start_monitoring``), then
    alternates ``start_refresh`` -> ``check_status`` until the device reports
    the desired state, the retry budget runs out, or the device stays
    unreachable. ``watchdog_check`` fires once per session and reclaims
    sessions whose cycle stopped making progress.

    Public handlers are serialized on one lock: each runs to completion
    before the next starts, including across awaits on device I/O. Scheduled
    callbacks carry the session id that armed them and do nothing once that
    session is gone or replaced.
    """

    def __init__(
        self,
        registry: SwitchRegistry,
        scheduler: Scheduler,
        notifier: Optional[Notifier] = None,
        config: Optional[MonitorConfig] = None,
        history: Optional[OutcomeRepository] = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._registry = registry
        self._scheduler = scheduler
        self._notifier = notifier
        self._history = history
        self._clock = clock
        self.config = config or MonitorConfig()
        self._sessions = SessionStore()
        self._lock = asyncio.Lock()

    # ---- Read-only views ----

    def session(self, device_id: str) -> Optional[MonitoringSession]:
        return self._sessions.get(str(device_id))

    def last_command_time(self, device_id: str) -> Optional[datetime]:
        return self._sessions.last_command_time(str(device_id))

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    def get_monitoring_status(self) -> dict[str, dict]:
        now = self._clock()
        return {s.device_id: s.to_dict(now) for s in self._sessions}

    def reconfigure(self, config: MonitorConfig) -> None:
        self.config = config
        logger.info(
            "Monitor reconfigured: check=%.0fs refresh_wait=%.0fs retries=%d timeout=%.0fs cooldown=%.0fs",
            config.check_interval, config.refresh_wait, config.max_retries,
            config.command_timeout, config.cooldown_period,
        )

    # ---- Event gate ----

    async def handle_event(self, event: SwitchEvent) -> bool:
        """Start a session for an externally observed state change.

        Returns True when a session was created.
        """
        async with self._lock:
            return await self._handle_event(event)

    async def _handle_event(self, event: SwitchEvent) -> bool:
        cfg = self.config
        desired = SwitchState.parse(event.value)
        if not desired.is_known:
            logger.debug("Ignoring event with value %r for device %s", event.value, event.device_id)
            return False

        res = self._registry.resolve(event.device_id, event.device_name)
        if not res.found:
            logger.warning(
                "Could not find device %s (%s) in configuration - ignoring event",
                event.device_id, event.device_name,
            )
            return False
        if res.via != "id":
            logger.warning(
                "Device %s (%s) not found directly, resolved by %s",
                event.device_id, event.device_name, res.via,
            )

        switch = res.switch
        device_id = str(switch.device_id)
        device_name = switch.name or event.device_name or device_id
        if not self._registry.is_monitored(device_id):
            logger.debug("Ignoring event from %s (%s) - not monitored", device_name, device_id)
            return False
        now = self._clock()

        since = self._sessions.seconds_since_command(device_id, now)
        if since is not None and since < cfg.self_echo_window:
            logger.debug(
                "Ignoring self-echo from %s (%.1fs after our command)", device_name, since,
            )
            return False
        if since is not None and since < cfg.cooldown_period:
            logger.debug(
                "Ignoring event due to cooldown - %s, %.0fs since last command, cooldown %.0fs",
                device_name, since, cfg.cooldown_period,
            )
            return False

        stale = self._sessions.remove(device_id)
        if stale is not None:
            logger.warning(
                "Force-clearing session for %s (wanted %s, %d checks) - newer event wants %s",
                device_name, stale.desired_state.value, stale.check_count, desired.value,
            )
            await self._finish(
                stale, OutcomeStatus.FORCE_CLEARED, SwitchState.UNKNOWN,
                detail=f"superseded by event for {desired.value}",
            )

        logger.debug(
            "Event details - %s: value=%s source=%s description=%s",
            device_name, desired.value, event.source, event.description,
        )
        initial = await switch.current_state()
        session = MonitoringSession(
            device_id=device_id,
            device_name=device_name,
            desired_state=desired,
            origin=SessionOrigin.EXTERNAL_EVENT,
            start_time=now,
            last_check_time=now,
            initial_state=SwitchState.parse(initial),
        )
        self._sessions.add(session)
        logger.info(
            "MONITORING STARTED - %s (%s) changing to %s", device_name, device_id, desired.value,
        )
        self._arm(session)
        return True

    # ---- Manual trigger ----

    async def start_monitoring(
        self, device: Union[Switch, str], desired_state: Union[SwitchState, str]
    ) -> bool:
        """Command a device and verify it. Never displaces a live session."""
        async with self._lock:
            switch = self._switch_for(device)
            if switch is None:
                logger.error("start_monitoring called for unknown device %r", device)
                return False
            desired = SwitchState.parse(desired_state)
            if not desired.is_known:
                logger.error(
                    "start_monitoring called with invalid state %r for %s", desired_state, switch.name,
                )
                return False
            return await self._start_session(switch, desired, SessionOrigin.MANUAL)

    async def start_group_monitoring(
        self, group: Union[GroupSwitch, str], desired_state: Union[SwitchState, str]
    ) -> bool:
        """Fan ``start_monitoring`` out over a group's monitored members.

        In ``group`` command mode the group receives one command and members
        are only verified. True only if every eligible member was accepted.
        """
        async with self._lock:
            if isinstance(group, str):
                found = self._registry.get_group(group)
                if found is None:
                    logger.error("start_group_monitoring called for unknown group %r", group)
                    return False
                group = found
            desired = SwitchState.parse(desired_state)
            if not desired.is_known:
                logger.error("Invalid state %r for group %s", desired_state, group.name)
                return False

            members = []
            for member in group.members:
                if self._registry.is_monitored(member.device_id):
                    members.append(member)
                else:
                    logger.debug("Skipping %s in group %s - not monitored", member.name, group.name)
            if not members:
                logger.warning("Group %s has no monitored members", group.name)
                return False

            if self.config.group_command_mode != "group":
                results = [
                    await self._start_session(m, desired, SessionOrigin.GROUP_MEMBER)
                    for m in members
                ]
                return all(results)

            accepted = []
            for m in members:
                if await self._start_session(
                    m, desired, SessionOrigin.GROUP_MEMBER, send_command=False, arm=False
                ):
                    accepted.append(m)
            if not accepted:
                return False

            result = await group.set_state(desired)
            if not result.ok:
                logger.error("Error sending %s to group %s: %s", desired.value, group.name, result.error)
                for m in accepted:
                    self._sessions.remove(str(m.device_id))
                return False

            now = self._clock()
            for m in accepted:
                self._sessions.record_command(str(m.device_id), now)
                self._arm(self._sessions.get(str(m.device_id)))
            logger.info(
                "GROUP MONITORING STARTED - %s to %s, verifying %d of %d members",
                group.name, desired.value, len(accepted), len(group.members),
            )
            return len(accepted) == len(members)

    async def _start_session(
        self,
        switch: Switch,
        desired: SwitchState,
        origin: SessionOrigin,
        send_command: bool = True,
        arm: bool = True,
    ) -> bool:
        cfg = self.config
        device_id = str(switch.device_id)
        now = self._clock()

        if device_id in self._sessions:
            logger.debug("Already monitoring %s - ignoring start request", switch.name)
            return False

        since = self._sessions.seconds_since_command(device_id, now)
        if since is not None and since < cfg.cooldown_period:
            logger.debug(
                "Cannot start monitoring %s - %.0fs since last command, cooldown %.0fs",
                switch.name, since, cfg.cooldown_period,
            )
            return False

        logger.info(
            "%s MONITORING STARTED - %s (%s) to be set to %s",
            origin.value.upper(), switch.name, device_id, desired.value,
        )
        initial = await switch.current_state()
        session = MonitoringSession(
            device_id=device_id,
            device_name=switch.name or device_id,
            desired_state=desired,
            origin=origin,
            start_time=now,
            last_check_time=now,
            initial_state=SwitchState.parse(initial),
        )
        self._sessions.add(session)

        if send_command:
            result = await switch.set_state(desired)
            if not result.ok:
                logger.error(
                    "Error sending initial command to %s: %s", switch.name, result.error,
                )
                self._sessions.remove(device_id)
                return False
            self._sessions.record_command(device_id, self._clock())

        if arm:
            self._arm(session)
        return True

    # ---- Verify cycle ----

    async def start_refresh(self, device_id: str, session_id: Optional[str] = None) -> None:
        async with self._lock:
            await self._start_refresh(str(device_id), session_id)

    async def _start_refresh(self, device_id: str, session_id: Optional[str]) -> None:
        session = self._sessions.get(device_id, session_id)
        if session is None:
            logger.debug("No session for %s - monitoring may have completed", device_id)
            return

        res = self._registry.resolve(device_id, session.device_name)
        if not res.found:
            await self._device_unreachable(session)
            return

        logger.info("Sending refresh to %s", session.device_name)
        result = await res.switch.refresh()
        if result.ok:
            session.refresh_sent = True
            session.waiting_for_refresh = True
            session.refresh_count += 1
            logger.debug(
                "Waiting %.0fs after refresh before checking %s",
                self.config.refresh_wait, session.device_name,
            )
            self._scheduler.run_in(
                self.config.refresh_wait, self.check_status, device_id, session.session_id,
            )
            return

        logger.warning(
            "Refresh failed for %s (%s: %s) - checking status directly",
            session.device_name, FailureKind.COMMAND_SEND_FAILURE.value, result.error,
        )
        await self._check_status(device_id, session.session_id)

    async def check_status(self, device_id: str, session_id: Optional[str] = None) -> None:
        async with self._lock:
            await self._check_status(str(device_id), session_id)

    async def _check_status(self, device_id: str, session_id: Optional[str]) -> None:
        cfg = self.config
        session = self._sessions.get(device_id, session_id)
        if session is None:
            logger.debug("No session for %s - monitoring may have completed", device_id)
            return

        res = self._registry.resolve(device_id, session.device_name)
        if not res.found:
            await self._device_unreachable(session)
            return
        switch = res.switch

        session.waiting_for_refresh = False
        current = SwitchState.parse(await switch.current_state())
        now = self._clock()
        session.last_check_time = now
        elapsed = session.elapsed(now)

        if not current.is_known:
            logger.warning(
                "Unable to determine current state for %s (%s) - device may be offline",
                session.device_name, FailureKind.READ_FAILURE.value,
            )
        else:
            logger.debug(
                "Checking %s after refresh - current %s, desired %s, elapsed %.0fs",
                session.device_name, current.value, session.desired_state.value, elapsed,
            )

        if current == session.desired_state:
            self._sessions.remove(device_id)
            logger.info(
                "MONITORING COMPLETED - %s reached %s after %.0fs and %d retries",
                session.device_name, session.desired_state.value, elapsed, session.check_count,
            )
            await self._finish(session, OutcomeStatus.SUCCEEDED, current)
            return

        if session.check_count >= cfg.max_retries:
            self._sessions.remove(device_id)
            logger.warning(
                "MONITORING FAILED - %s did not reach %s after %d attempts and %.0fs "
                "(final state %s, %d refreshes)",
                session.device_name, session.desired_state.value, session.check_count,
                elapsed, current.value, session.refresh_count,
            )
            await self._finish(
                session, OutcomeStatus.FAILED, current,
                failure=FailureKind.RETRY_EXHAUSTED,
                message=(
                    f"Warning: Light {session.device_name} failed to change to "
                    f"{session.desired_state.value} after {cfg.max_retries} attempts"
                ),
            )
            return

        session.check_count += 1
        logger.info(
            "%s not in desired state %s (current %s) - retry attempt %d",
            session.device_name, session.desired_state.value, current.value, session.check_count,
        )
        result = await switch.set_state(session.desired_state)
        if result.ok:
            self._sessions.record_command(device_id, self._clock())
        else:
            logger.error(
                "Error sending %s to %s: %s",
                session.desired_state.value, session.device_name, result.error,
            )
        self._scheduler.run_in(cfg.check_interval, self.start_refresh, device_id, session.session_id)

    async def _device_unreachable(self, session: MonitoringSession) -> None:
        cfg = self.config
        logger.warning(
            "Device %s (%s) not found - it may have been removed or is inaccessible",
            session.device_id, session.device_name,
        )
        if session.check_count >= cfg.max_retries / 2:
            self._sessions.remove(session.device_id)
            logger.warning(
                "MONITORING ABANDONED - could not reach %s after %d attempts",
                session.device_name, session.check_count,
            )
            await self._finish(
                session, OutcomeStatus.ABANDONED, SwitchState.UNKNOWN,
                failure=FailureKind.ABANDONED,
                message=(
                    f"Light {session.device_name} monitoring abandoned: device unreachable "
                    f"after {session.check_count} attempts"
                ),
            )
            return

        session.check_count += 1
        self._scheduler.run_in(
            cfg.check_interval, self.start_refresh, session.device_id, session.session_id,
        )

    # ---- Watchdog ----

    async def watchdog_check(self, device_id: str, session_id: Optional[str] = None) -> None:
        async with self._lock:
            await self._watchdog_check(str(device_id), session_id)

    async def _watchdog_check(self, device_id: str, session_id: Optional[str]) -> None:
        cfg = self.config
        session = self._sessions.get(device_id, session_id)
        if session is None:
            logger.debug("Timeout check - %s no longer monitored", device_id)
            return

        now = self._clock()
        staleness = (now - session.last_check_time).total_seconds()
        logger.debug(
            "Timeout check for %s - desired %s, checks %d, refreshes %d, last check %.0fs ago",
            session.device_name, session.desired_state.value, session.check_count,
            session.refresh_count, staleness,
        )
        if staleness <= 2 * cfg.check_interval:
            logger.debug("Timeout check passed - %s is still being checked", session.device_name)
            return

        self._sessions.remove(device_id)
        logger.warning(
            "MONITORING TIMEOUT - %s timed out after %.0fs, last check %.0fs ago",
            session.device_name, cfg.command_timeout, staleness,
        )
        res = self._registry.resolve(device_id, session.device_name)
        if res.found:
            final = SwitchState.parse(await res.switch.current_state())
            logger.warning("Final state of %s at timeout: %s", session.device_name, final.value)
        else:
            final = SwitchState.UNKNOWN
            logger.warning("Device %s not found at timeout check", session.device_name)
        await self._finish(
            session, OutcomeStatus.TIMED_OUT, final,
            failure=FailureKind.WATCHDOG_TIMEOUT,
            message=(
                f"Light {session.device_name} command timed out while attempting to "
                f"change to {session.desired_state.value}"
            ),
        )

    # ---- Administrative ----

    async def clear_stuck_sessions(self) -> int:
        """Drop every session that is mid-cycle. Returns how many were dropped."""
        async with self._lock:
            stuck = [s for s in self._sessions if s.waiting_for_refresh or s.refresh_sent]
            for s in stuck:
                self._sessions.remove(s.device_id)
                logger.warning(
                    "Cleared stuck session for %s (wanted %s, %d checks)",
                    s.device_name, s.desired_state.value, s.check_count,
                )
                await self._finish(s, OutcomeStatus.CLEARED, SwitchState.UNKNOWN, detail="cleared by operator")
            logger.info("Cleared %d stuck session(s)", len(stuck))
            return len(stuck)

    async def check_device(
        self, device_id: str, refresh: bool = True, wait_s: float = 0.0
    ) -> Optional[StatusCheck]:
        """One-off status read. Creates no session and records no command."""
        res = self._registry.resolve(str(device_id))
        if not res.found:
            return None
        switch = res.switch
        refreshed = False
        if refresh:
            refreshed = (await switch.refresh()).ok
            if refreshed and wait_s > 0:
                await asyncio.sleep(wait_s)
        state = SwitchState.parse(await switch.current_state())
        return StatusCheck(
            device_id=str(switch.device_id),
            device_name=switch.name,
            state=state,
            refreshed=refreshed,
            resolved_via=res.via,
            ts_utc=self._clock(),
        )

    # ---- Helpers ----

    def _switch_for(self, device: Union[Switch, str]) -> Optional[Switch]:
        if isinstance(device, str):
            return self._registry.resolve(device).switch
        return device

    def _arm(self, session: MonitoringSession) -> None:
        cfg = self.config
        self._scheduler.run_in(
            cfg.check_interval, self.start_refresh, session.device_id, session.session_id,
        )
        self._scheduler.run_in(
            cfg.command_timeout, self.watchdog_check, session.device_id, session.session_id,
        )

    async def _finish(
        self,
        session: MonitoringSession,
        status: OutcomeStatus,
        final_state: SwitchState,
        failure: Optional[FailureKind] = None,
        message: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> None:
        now = self._clock()
        if message:
            await self._notify(message)
        if self._history is None:
            return
        outcome = SessionOutcome(
            ts_utc=now,
            device_id=session.device_id,
            device_name=session.device_name,
            status=status,
            desired_state=session.desired_state,
            final_state=final_state,
            origin=session.origin,
            check_count=session.check_count,
            refresh_count=session.refresh_count,
            elapsed_s=session.elapsed(now),
            failure=failure,
            detail=detail or message,
        )
        try:
            await self._history.insert_outcome(outcome)
        except Exception:
            logger.exception("Failed to record outcome for %s", session.device_name)

    async def _notify(self, message: str) -> None:
        cfg = self.config
        if not cfg.notifications_enabled or not cfg.notification_targets or self._notifier is None:
            return
        logger.debug("Sending notification to %d target(s)", len(cfg.notification_targets))
        await self._notifier.notify(cfg.notification_targets, message)
