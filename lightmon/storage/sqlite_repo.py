from __future__ import annotations
import aiosqlite
from datetime import datetime, timezone
from typing import Dict, List
from ..domain.models import (
    FailureKind,
    OutcomeStatus,
    SessionOrigin,
    SessionOutcome,
    SwitchState,
)


class SQLiteRepository:
    def __init__(self, path: str) -> None:
        self._path = path

    async def init(self) -> None:
        async with aiosqlite.connect(self._path) as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS outcomes (
                    ts_utc TEXT NOT NULL,
                    device_id TEXT NOT NULL,
                    device_name TEXT NOT NULL,
                    status TEXT NOT NULL,
                    desired_state TEXT NOT NULL,
                    final_state TEXT NOT NULL,
                    origin TEXT NOT NULL,
                    check_count INTEGER NOT NULL,
                    refresh_count INTEGER NOT NULL,
                    elapsed_s REAL NOT NULL,
                    failure TEXT,
                    detail TEXT
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            await db.execute("CREATE INDEX IF NOT EXISTS idx_outcomes_ts ON outcomes(ts_utc)")
            await db.execute("CREATE INDEX IF NOT EXISTS idx_outcomes_device ON outcomes(device_id)")
            await db.commit()

    async def insert_outcome(self, o: SessionOutcome) -> None:
        async with aiosqlite.connect(self._path) as db:
            await db.execute(
                "INSERT INTO outcomes(ts_utc,device_id,device_name,status,desired_state,final_state,"
                "origin,check_count,refresh_count,elapsed_s,failure,detail) VALUES (?,?,?,?,?,?,?,?,?,?,?,?)",
                (
                    o.ts_utc.isoformat(),
                    o.device_id,
                    o.device_name,
                    o.status.value,
                    o.desired_state.value,
                    o.final_state.value,
                    o.origin.value,
                    o.check_count,
                    o.refresh_count,
                    float(o.elapsed_s),
                    o.failure.value if o.failure else None,
                    o.detail,
                ),
            )
            await db.commit()

    async def query_outcomes(
        self, start_ts: str, end_ts: str, limit: int, device_id: str | None = None
    ) -> List[SessionOutcome]:
        sql = """
            SELECT ts_utc,device_id,device_name,status,desired_state,final_state,
                   origin,check_count,refresh_count,elapsed_s,failure,detail
            FROM outcomes
            WHERE ts_utc >= ? AND ts_utc <= ?
        """
        params: list = [start_ts, end_ts]
        if device_id is not None:
            sql += " AND device_id = ?"
            params.append(device_id)
        sql += " ORDER BY ts_utc DESC LIMIT ?"
        params.append(limit)

        async with aiosqlite.connect(self._path) as db:
            cur = await db.execute(sql, params)
            rows = await cur.fetchall()
        out: list[SessionOutcome] = []
        for ts, did, name, status, desired, final, origin, checks, refreshes, elapsed, failure, detail in rows:
            out.append(
                SessionOutcome(
                    ts_utc=datetime.fromisoformat(ts),
                    device_id=did,
                    device_name=name,
                    status=OutcomeStatus(status),
                    desired_state=SwitchState(desired),
                    final_state=SwitchState(final),
                    origin=SessionOrigin(origin),
                    check_count=int(checks),
                    refresh_count=int(refreshes),
                    elapsed_s=float(elapsed),
                    failure=FailureKind(failure) if failure else None,
                    detail=detail,
                )
            )
        return list(reversed(out))

    async def get_all_settings(self) -> Dict[str, str]:
        async with aiosqlite.connect(self._path) as db:
            cur = await db.execute("SELECT key, value FROM settings")
            rows = await cur.fetchall()
        return {k: v for k, v in rows}

    async def set_settings_batch(self, updates: Dict[str, str]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        async with aiosqlite.connect(self._path) as db:
            for key, value in updates.items():
                await db.execute(
                    "INSERT INTO settings(key, value, updated_at) VALUES (?, ?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at",
                    (key, value, now),
                )
            await db.commit()
