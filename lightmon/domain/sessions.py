from __future__ import annotations
from datetime import datetime
from typing import Iterator, Optional
from .models import MonitoringSession


class SessionStore:
    """Device id -> live session, plus device id -> last command we sent.

    Owned by a single ``LightMonitor``; nothing else holds a reference to
    the underlying dicts.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, MonitoringSession] = {}
        self._last_command: dict[str, datetime] = {}

    def __contains__(self, device_id: str) -> bool:
        return device_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[MonitoringSession]:
        return iter(list(self._sessions.values()))

    def get(self, device_id: str, session_id: Optional[str] = None) -> Optional[MonitoringSession]:
        """Return the live session, or None if absent or superseded."""
        session = self._sessions.get(device_id)
        if session is None:
            return None
        if session_id is not None and session.session_id != session_id:
            return None
        return session

    def add(self, session: MonitoringSession) -> None:
        if session.device_id in self._sessions:
            raise ValueError(f"Session already exists for device {session.device_id}")
        self._sessions[session.device_id] = session

    def remove(self, device_id: str) -> Optional[MonitoringSession]:
        return self._sessions.pop(device_id, None)

    def last_command_time(self, device_id: str) -> Optional[datetime]:
        return self._last_command.get(device_id)

    def record_command(self, device_id: str, ts: datetime) -> None:
        self._last_command[device_id] = ts

    def seconds_since_command(self, device_id: str, now: datetime) -> Optional[float]:
        ts = self._last_command.get(device_id)
        if ts is None:
            return None
        return (now - ts).total_seconds()
