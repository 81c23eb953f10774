"""SQLite storage for availability windows and appointments.

Appointment times are stored as clinic wall-clock text with a fixed width, so
string comparison in SQL orders them the same way the engine does. The start's
``fold`` is kept next to it so the repeated hour after a DST fall-back reads
back with its original offset. Range queries still compare wall-clock text,
which puts both runs of that hour in the same place.

Statements run in a worker thread so a busy database file never stalls the
event loop.
"""

import asyncio
import datetime as dt
import sqlite3
import threading
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

from loguru import logger

from medibook.domain.exceptions import InfrastructureError
from medibook.domain.models import Appointment, AppointmentStatus, AvailabilityWindow
from medibook.scheduling.datetime_helpers import to_clinic_time

_SCHEMA = """
CREATE TABLE IF NOT EXISTS availability_windows (
    id TEXT PRIMARY KEY,
    provider_id TEXT NOT NULL,
    day_of_week INTEGER NOT NULL CHECK(day_of_week BETWEEN 1 AND 7),
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    CHECK(start_time < end_time)
);
CREATE INDEX IF NOT EXISTS idx_windows_provider_day
    ON availability_windows(provider_id, day_of_week, start_time);

CREATE TABLE IF NOT EXISTS appointments (
    id TEXT PRIMARY KEY,
    provider_id TEXT NOT NULL,
    patient_id TEXT NOT NULL,
    start_local TEXT NOT NULL,
    start_fold INTEGER NOT NULL DEFAULT 0 CHECK(start_fold IN (0, 1)),
    end_local TEXT NOT NULL,
    duration_minutes INTEGER NOT NULL CHECK(duration_minutes > 0),
    status TEXT NOT NULL
        CHECK(status IN ('pending', 'confirmed', 'cancelled', 'completed', 'no_show')),
    patient_notes TEXT,
    provider_notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_appointments_provider_status_start
    ON appointments(provider_id, status, start_local);
CREATE INDEX IF NOT EXISTS idx_appointments_patient_start
    ON appointments(patient_id, start_local);
"""


class SQLiteStorage:
    """SQLite implementation of the SchedulingStorage protocol.

    ``hold`` opens a ``BEGIN IMMEDIATE`` transaction, which takes SQLite's
    write lock, so check-then-write sequences are serialized both inside this
    process and against other processes sharing the file.
    """

    def __init__(self, db_path: str, tz: dt.tzinfo, *, busy_timeout: float = 5.0) -> None:
        """Open (and if needed create) the database.

        Args:
            db_path: Path to the SQLite file, or ``":memory:"``.
            tz: Clinic timezone used to interpret stored wall-clock times.
            busy_timeout: Seconds to wait for another connection's write lock
                before failing with ``InfrastructureError``.
        """
        self.db_path = db_path
        self._tz = tz
        # One transaction per connection; in-process writers queue here.
        self._write_lock = asyncio.Lock()
        # The connection is shared by worker threads, one statement at a time.
        self._statement_lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(
                db_path, timeout=busy_timeout, isolation_level=None, check_same_thread=False
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as exc:
            raise InfrastructureError(f"Cannot open scheduling database {db_path}: {exc}") from exc
        logger.info("SQLite scheduling storage ready at {}", db_path)

    def _run(self, sql: str, params: Sequence[Any]) -> list[sqlite3.Row]:
        with self._statement_lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                logger.error("SQLite statement failed: {}", exc)
                raise InfrastructureError(f"Scheduling database error: {exc}") from exc

    async def _execute(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        return await asyncio.to_thread(self._run, sql, params)

    @asynccontextmanager
    async def hold(self, provider_id: str) -> AsyncIterator[None]:
        async with self._write_lock:
            await self._execute("BEGIN IMMEDIATE")
            try:
                yield
                await self._execute("COMMIT")
            except BaseException:
                if self._conn.in_transaction:
                    await self._execute("ROLLBACK")
                raise

    # ------------------------------------------------------------------
    # Windows
    # ------------------------------------------------------------------

    def _row_to_window(self, row: sqlite3.Row) -> AvailabilityWindow:
        return AvailabilityWindow(
            window_id=row["id"],
            provider_id=row["provider_id"],
            day_of_week=row["day_of_week"],
            start_time=dt.time.fromisoformat(row["start_time"]),
            end_time=dt.time.fromisoformat(row["end_time"]),
            active=bool(row["active"]),
            created_at=dt.datetime.fromisoformat(row["created_at"]),
        )

    async def list_windows(
        self, provider_id: str, day_of_week: int | None = None, *, include_inactive: bool = False
    ) -> list[AvailabilityWindow]:
        sql = "SELECT * FROM availability_windows WHERE provider_id = ?"
        params: list[Any] = [provider_id]
        if day_of_week is not None:
            sql += " AND day_of_week = ?"
            params.append(day_of_week)
        if not include_inactive:
            sql += " AND active = 1"
        sql += " ORDER BY day_of_week, start_time"
        return [self._row_to_window(row) for row in await self._execute(sql, params)]

    async def get_window(self, window_id: str) -> AvailabilityWindow | None:
        rows = await self._execute("SELECT * FROM availability_windows WHERE id = ?", (window_id,))
        return self._row_to_window(rows[0]) if rows else None

    async def save_window(self, window: AvailabilityWindow) -> None:
        await self._execute(
            """
            INSERT OR REPLACE INTO availability_windows
                (id, provider_id, day_of_week, start_time, end_time, active, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                window.window_id,
                window.provider_id,
                window.day_of_week,
                window.start_time.strftime("%H:%M"),
                window.end_time.strftime("%H:%M"),
                int(window.active),
                window.created_at.isoformat(),
            ),
        )

    async def delete_window(self, window_id: str) -> None:
        await self._execute("DELETE FROM availability_windows WHERE id = ?", (window_id,))

    # ------------------------------------------------------------------
    # Appointments
    # ------------------------------------------------------------------

    def _wall(self, value: dt.datetime) -> str:
        """Fixed-width clinic wall-clock text for ``value``."""
        local = to_clinic_time(value, self._tz).replace(tzinfo=None)
        return local.isoformat(timespec="microseconds")

    def _row_to_appointment(self, row: sqlite3.Row) -> Appointment:
        return Appointment(
            appointment_id=row["id"],
            provider_id=row["provider_id"],
            patient_id=row["patient_id"],
            start=dt.datetime.fromisoformat(row["start_local"]).replace(
                tzinfo=self._tz, fold=row["start_fold"]
            ),
            duration_minutes=row["duration_minutes"],
            status=AppointmentStatus(row["status"]),
            patient_notes=row["patient_notes"],
            provider_notes=row["provider_notes"],
            created_at=dt.datetime.fromisoformat(row["created_at"]),
            updated_at=dt.datetime.fromisoformat(row["updated_at"]),
        )

    async def get_appointment(self, appointment_id: str) -> Appointment | None:
        rows = await self._execute("SELECT * FROM appointments WHERE id = ?", (appointment_id,))
        return self._row_to_appointment(rows[0]) if rows else None

    async def save_appointment(self, appointment: Appointment) -> None:
        await self._execute(
            """
            INSERT OR REPLACE INTO appointments
                (id, provider_id, patient_id, start_local, start_fold, end_local,
                 duration_minutes, status, patient_notes, provider_notes, created_at,
                 updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                appointment.appointment_id,
                appointment.provider_id,
                appointment.patient_id,
                self._wall(appointment.start),
                to_clinic_time(appointment.start, self._tz).fold,
                self._wall(appointment.end),
                appointment.duration_minutes,
                appointment.status.value,
                appointment.patient_notes,
                appointment.provider_notes,
                appointment.created_at.isoformat(),
                appointment.updated_at.isoformat(),
            ),
        )

    async def list_by_provider(
        self,
        provider_id: str,
        *,
        start: dt.datetime | None = None,
        end: dt.datetime | None = None,
        statuses: frozenset[AppointmentStatus] | None = None,
    ) -> list[Appointment]:
        sql = "SELECT * FROM appointments WHERE provider_id = ?"
        params: list[Any] = [provider_id]
        if statuses is not None:
            ordered = sorted(s.value for s in statuses)
            sql += f" AND status IN ({', '.join('?' for _ in ordered)})"
            params.extend(ordered)
        if start is not None and end is not None:
            # Half-open overlap: existing.start < end AND start < existing.end
            sql += " AND start_local < ? AND end_local > ?"
            params.extend([self._wall(end), self._wall(start)])
        sql += " ORDER BY start_local"
        return [self._row_to_appointment(row) for row in await self._execute(sql, params)]

    async def list_by_patient(self, patient_id: str) -> list[Appointment]:
        rows = await self._execute(
            "SELECT * FROM appointments WHERE patient_id = ? ORDER BY start_local",
            (patient_id,),
        )
        return [self._row_to_appointment(row) for row in rows]

    async def health_check(self) -> bool:
        try:
            await self._execute("SELECT 1")
            return True
        except InfrastructureError as exc:
            logger.warning("SQLite health check failed: {}", exc)
            return False

    def _close(self) -> None:
        with self._statement_lock:
            self._conn.close()

    async def close(self) -> None:
        await asyncio.to_thread(self._close)
        logger.info("SQLite scheduling storage closed")
