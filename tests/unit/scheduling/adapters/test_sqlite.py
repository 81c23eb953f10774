import asyncio
import datetime as dt
import sqlite3
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest
import pytest_asyncio

from medibook.config import SchedulingConfig
from medibook.domain.exceptions import ConflictError, InfrastructureError
from medibook.domain.models import (
    Actor,
    Appointment,
    AppointmentStatus,
    AvailabilityWindow,
    Role,
)
from medibook.scheduling.adapters.memory import InMemoryDirectory
from medibook.scheduling.adapters.sqlite import SQLiteStorage
from medibook.scheduling.engine import SchedulingEngine

NY = ZoneInfo("America/New_York")
CREATED = dt.datetime(2026, 3, 1, 8, 0, tzinfo=NY)
MONDAY = dt.date(2026, 3, 2)


def _monday(hhmm: str) -> dt.datetime:
    return dt.datetime.combine(MONDAY, dt.time.fromisoformat(hhmm), tzinfo=NY)


def _window(
    window_id: str, day: int, start: str, end: str, active: bool = True
) -> AvailabilityWindow:
    return AvailabilityWindow(
        window_id=window_id,
        provider_id="prov-1",
        day_of_week=day,
        start_time=dt.time.fromisoformat(start),
        end_time=dt.time.fromisoformat(end),
        active=active,
        created_at=CREATED,
    )


def _appointment(
    appointment_id: str,
    hhmm: str,
    *,
    patient_id: str = "pat-1",
    status: AppointmentStatus = AppointmentStatus.PENDING,
    duration: int = 30,
) -> Appointment:
    return Appointment(
        appointment_id=appointment_id,
        provider_id="prov-1",
        patient_id=patient_id,
        start=_monday(hhmm),
        duration_minutes=duration,
        status=status,
        patient_notes="Knee pain",
        created_at=CREATED,
        updated_at=CREATED,
    )


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "scheduling.db")


@pytest_asyncio.fixture
async def sqlite_storage(db_path: str):
    storage = SQLiteStorage(db_path, NY)
    yield storage
    await storage.close()


class TestWindows:
    @pytest.mark.asyncio
    async def test_round_trip(self, sqlite_storage: SQLiteStorage) -> None:
        window = _window("w-1", 1, "09:00", "12:00")

        await sqlite_storage.save_window(window)

        assert await sqlite_storage.get_window("w-1") == window
        assert await sqlite_storage.get_window("missing") is None

    @pytest.mark.asyncio
    async def test_listing_order_and_filters(self, sqlite_storage: SQLiteStorage) -> None:
        await sqlite_storage.save_window(_window("w-3", 2, "08:00", "09:00"))
        await sqlite_storage.save_window(_window("w-2", 1, "14:00", "15:00"))
        await sqlite_storage.save_window(_window("w-1", 1, "09:00", "10:00"))
        await sqlite_storage.save_window(_window("w-4", 1, "16:00", "17:00", active=False))

        everything = await sqlite_storage.list_windows("prov-1", include_inactive=True)
        active_monday = await sqlite_storage.list_windows("prov-1", 1)

        assert [w.window_id for w in everything] == ["w-1", "w-2", "w-4", "w-3"]
        assert [w.window_id for w in active_monday] == ["w-1", "w-2"]
        assert await sqlite_storage.list_windows("prov-2") == []

    @pytest.mark.asyncio
    async def test_save_replaces_and_delete_removes(self, sqlite_storage: SQLiteStorage) -> None:
        await sqlite_storage.save_window(_window("w-1", 1, "09:00", "10:00"))
        await sqlite_storage.save_window(_window("w-1", 1, "09:00", "11:00"))

        stored = await sqlite_storage.get_window("w-1")
        assert stored is not None and stored.time_range == "09:00-11:00"

        await sqlite_storage.delete_window("w-1")
        assert await sqlite_storage.get_window("w-1") is None


class TestAppointments:
    @pytest.mark.asyncio
    async def test_round_trip_keeps_clinic_time(self, sqlite_storage: SQLiteStorage) -> None:
        appointment = _appointment("a-1", "10:00")

        await sqlite_storage.save_appointment(appointment)
        stored = await sqlite_storage.get_appointment("a-1")

        assert stored == appointment
        assert stored is not None and stored.start.tzinfo == NY

    @pytest.mark.asyncio
    async def test_range_query_is_half_open(self, sqlite_storage: SQLiteStorage) -> None:
        await sqlite_storage.save_appointment(_appointment("a-1", "10:00"))

        touching = await sqlite_storage.list_by_provider(
            "prov-1", start=_monday("10:30"), end=_monday("11:00")
        )
        before = await sqlite_storage.list_by_provider(
            "prov-1", start=_monday("09:30"), end=_monday("10:00")
        )
        inside = await sqlite_storage.list_by_provider(
            "prov-1", start=_monday("10:15"), end=_monday("10:45")
        )

        assert touching == []
        assert before == []
        assert [a.appointment_id for a in inside] == ["a-1"]

    @pytest.mark.asyncio
    async def test_status_filter_and_order(self, sqlite_storage: SQLiteStorage) -> None:
        await sqlite_storage.save_appointment(_appointment("late", "15:00"))
        await sqlite_storage.save_appointment(
            _appointment("gone", "11:00", status=AppointmentStatus.CANCELLED)
        )
        await sqlite_storage.save_appointment(
            _appointment("early", "09:00", status=AppointmentStatus.CONFIRMED)
        )

        occupying = await sqlite_storage.list_by_provider(
            "prov-1",
            statuses=frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED}),
        )
        everything = await sqlite_storage.list_by_provider("prov-1")

        assert [a.appointment_id for a in occupying] == ["early", "late"]
        assert [a.appointment_id for a in everything] == ["early", "gone", "late"]

    @pytest.mark.asyncio
    async def test_aware_query_bounds_in_other_zone(self, sqlite_storage: SQLiteStorage) -> None:
        await sqlite_storage.save_appointment(_appointment("a-1", "10:00"))
        utc = dt.timezone.utc

        found = await sqlite_storage.list_by_provider(
            "prov-1",
            start=dt.datetime(2026, 3, 2, 15, 0, tzinfo=utc),
            end=dt.datetime(2026, 3, 2, 15, 30, tzinfo=utc),
        )

        assert [a.appointment_id for a in found] == ["a-1"]

    @pytest.mark.asyncio
    async def test_list_by_patient(self, sqlite_storage: SQLiteStorage) -> None:
        await sqlite_storage.save_appointment(_appointment("b", "14:00"))
        await sqlite_storage.save_appointment(_appointment("a", "09:00"))
        await sqlite_storage.save_appointment(_appointment("other", "10:00", patient_id="pat-2"))

        listed = await sqlite_storage.list_by_patient("pat-1")

        assert [a.appointment_id for a in listed] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_repeated_fall_back_hour_keeps_offset(
        self, sqlite_storage: SQLiteStorage
    ) -> None:
        # 2026-11-01 01:30 happens twice in New York; this is the EST one.
        second_run = dt.datetime(2026, 11, 1, 6, 30, tzinfo=dt.timezone.utc).astimezone(NY)
        appointment = _appointment("a-1", "10:00").model_copy(update={"start": second_run})

        await sqlite_storage.save_appointment(appointment)
        stored = await sqlite_storage.get_appointment("a-1")

        assert stored is not None
        assert stored.start.fold == 1
        assert stored.start.utcoffset() == dt.timedelta(hours=-5)
        assert stored.end.utcoffset() == dt.timedelta(hours=-5)


class TestTransactions:
    @pytest.mark.asyncio
    async def test_hold_commits(self, sqlite_storage: SQLiteStorage, db_path: str) -> None:
        async with sqlite_storage.hold("prov-1"):
            await sqlite_storage.save_window(_window("w-1", 1, "09:00", "10:00"))

        reader = SQLiteStorage(db_path, NY)
        try:
            assert await reader.get_window("w-1") is not None
        finally:
            await reader.close()

    @pytest.mark.asyncio
    async def test_hold_rolls_back_on_error(self, sqlite_storage: SQLiteStorage) -> None:
        with pytest.raises(ConflictError):
            async with sqlite_storage.hold("prov-1"):
                await sqlite_storage.save_window(_window("w-1", 1, "09:00", "10:00"))
                raise ConflictError("taken")

        assert await sqlite_storage.get_window("w-1") is None

        async with sqlite_storage.hold("prov-1"):
            await sqlite_storage.save_window(_window("w-2", 1, "09:00", "10:00"))
        assert await sqlite_storage.get_window("w-2") is not None

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, db_path: str) -> None:
        first = SQLiteStorage(db_path, NY)
        await first.save_appointment(_appointment("a-1", "10:00"))
        await first.close()

        second = SQLiteStorage(db_path, NY)
        try:
            assert await second.get_appointment("a-1") is not None
        finally:
            await second.close()

    @pytest.mark.asyncio
    async def test_waiting_for_another_writer_leaves_loop_running(
        self, sqlite_storage: SQLiteStorage, db_path: str
    ) -> None:
        blocker = sqlite3.connect(db_path, isolation_level=None)
        blocker.execute("BEGIN IMMEDIATE")
        ticks = 0

        async def ticker() -> None:
            nonlocal ticks
            while True:
                await asyncio.sleep(0.01)
                ticks += 1

        task = asyncio.create_task(ticker())
        asyncio.get_running_loop().call_later(0.3, blocker.execute, "COMMIT")
        try:
            async with sqlite_storage.hold("prov-1"):
                await sqlite_storage.save_window(_window("w-1", 1, "09:00", "10:00"))
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            blocker.close()

        assert ticks >= 5
        assert await sqlite_storage.get_window("w-1") is not None


class TestFailures:
    @pytest.mark.asyncio
    async def test_closed_connection(self, db_path: str) -> None:
        storage = SQLiteStorage(db_path, NY)
        await storage.close()

        with pytest.raises(InfrastructureError):
            await storage.get_window("w-1")
        assert await storage.health_check() is False

    def test_unopenable_path(self, tmp_path: Path) -> None:
        with pytest.raises(InfrastructureError, match="Cannot open"):
            SQLiteStorage(str(tmp_path / "missing" / "dir" / "x.db"), NY)

    @pytest.mark.asyncio
    async def test_healthy(self, sqlite_storage: SQLiteStorage) -> None:
        assert await sqlite_storage.health_check() is True

    @pytest.mark.asyncio
    async def test_busy_timeout(self, sqlite_storage: SQLiteStorage, db_path: str) -> None:
        impatient = SQLiteStorage(db_path, NY, busy_timeout=0.05)
        blocker = sqlite3.connect(db_path, isolation_level=None)
        blocker.execute("BEGIN IMMEDIATE")
        try:
            with pytest.raises(InfrastructureError, match="locked"):
                async with impatient.hold("prov-1"):
                    await impatient.save_window(_window("w-1", 1, "09:00", "10:00"))
        finally:
            blocker.execute("ROLLBACK")
            blocker.close()
            await impatient.close()

        assert await sqlite_storage.get_window("w-1") is None


@pytest_asyncio.fixture
async def engine(
    sqlite_storage: SQLiteStorage,
    directory: InMemoryDirectory,
    config: SchedulingConfig,
    clock,
) -> SchedulingEngine:
    """The engine over SQLite, with prov-1 open Mondays 09:00-12:00."""
    engine = SchedulingEngine(sqlite_storage, directory, config, NY, clock=clock)
    await engine.add_window(
        Actor(actor_id="prov-1", role=Role.PROVIDER), 1, dt.time(9, 0), dt.time(12, 0)
    )
    return engine


class TestEngineOnSQLite:
    @pytest.mark.asyncio
    async def test_book_and_slots(self, engine: SchedulingEngine, patient: Actor) -> None:
        assert len(await engine.get_bookable_slots("prov-1", MONDAY)) == 6

        booked = await engine.book(patient, "prov-1", _monday("10:00"))
        slots = await engine.get_bookable_slots("prov-1", MONDAY)

        assert booked.status is AppointmentStatus.PENDING
        assert [s.start.strftime("%H:%M") for s in slots] == [
            "09:00",
            "09:30",
            "10:30",
            "11:00",
            "11:30",
        ]

    @pytest.mark.asyncio
    async def test_reject_frees_slot(
        self, engine: SchedulingEngine, patient: Actor, provider: Actor
    ) -> None:
        booked = await engine.book(patient, "prov-1", _monday("10:00"))

        rejected = await engine.reject(provider, booked.appointment_id, "unavailable")

        assert rejected.provider_notes == "unavailable"
        assert await engine.is_slot_free("prov-1", MONDAY, dt.time(10, 0)) is True

    @pytest.mark.asyncio
    async def test_concurrent_bookings_admit_exactly_one(self, engine: SchedulingEngine) -> None:
        patients = [Actor(actor_id=f"pat-{i}", role=Role.PATIENT) for i in range(1, 11)]

        results = await asyncio.gather(
            *(engine.book(p, "prov-1", _monday("10:00")) for p in patients),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, Appointment)) == 1
        failures = [r for r in results if not isinstance(r, Appointment)]
        assert all(isinstance(r, ConflictError) for r in failures)

    @pytest.mark.asyncio
    async def test_overlapping_window_conflicts(
        self, engine: SchedulingEngine, provider: Actor
    ) -> None:
        with pytest.raises(ConflictError):
            await engine.add_window(provider, 1, dt.time(8, 0), dt.time(9, 15))

        assert len(await engine.list_windows("prov-1", 1)) == 1
