import asyncio
import datetime as dt
from contextlib import AbstractAsyncContextManager

from medibook.domain.models import (
    Appointment,
    AppointmentStatus,
    AvailabilityWindow,
    Patient,
    Provider,
)
from medibook.scheduling.intervals import overlaps
from medibook.scheduling.locks import ProviderLocks


class InMemoryStorage:
    """Dict-backed implementation of the SchedulingStorage protocol.

    Writes are serialized per provider through a ``ProviderLocks`` registry.
    Set ``latency`` to make every repository call yield to the event loop,
    which lets tests interleave concurrent writers. Set ``error`` to make the
    next repository calls raise it.
    """

    def __init__(self, latency: float = 0.0) -> None:
        self.windows: dict[str, AvailabilityWindow] = {}
        self.appointments: dict[str, Appointment] = {}
        self.latency = latency
        self.error: Exception | None = None
        self.closed: bool = False
        self._locks = ProviderLocks()

    async def _io(self) -> None:
        if self.error:
            raise self.error
        if self.latency:
            await asyncio.sleep(self.latency)

    def hold(self, provider_id: str) -> AbstractAsyncContextManager[None]:
        return self._locks.hold(provider_id)

    async def list_windows(
        self, provider_id: str, day_of_week: int | None = None, *, include_inactive: bool = False
    ) -> list[AvailabilityWindow]:
        await self._io()
        found = [
            w
            for w in self.windows.values()
            if w.provider_id == provider_id
            and (day_of_week is None or w.day_of_week == day_of_week)
            and (include_inactive or w.active)
        ]
        return sorted(found, key=lambda w: (w.day_of_week, w.start_time))

    async def get_window(self, window_id: str) -> AvailabilityWindow | None:
        await self._io()
        return self.windows.get(window_id)

    async def save_window(self, window: AvailabilityWindow) -> None:
        await self._io()
        self.windows[window.window_id] = window

    async def delete_window(self, window_id: str) -> None:
        await self._io()
        self.windows.pop(window_id, None)

    async def get_appointment(self, appointment_id: str) -> Appointment | None:
        await self._io()
        return self.appointments.get(appointment_id)

    async def save_appointment(self, appointment: Appointment) -> None:
        await self._io()
        self.appointments[appointment.appointment_id] = appointment

    async def list_by_provider(
        self,
        provider_id: str,
        *,
        start: dt.datetime | None = None,
        end: dt.datetime | None = None,
        statuses: frozenset[AppointmentStatus] | None = None,
    ) -> list[Appointment]:
        await self._io()
        found = [
            a
            for a in self.appointments.values()
            if a.provider_id == provider_id and (statuses is None or a.status in statuses)
        ]
        if start is not None and end is not None:
            found = [a for a in found if overlaps(a.start, a.end, start, end)]
        return sorted(found, key=lambda a: a.start)

    async def list_by_patient(self, patient_id: str) -> list[Appointment]:
        await self._io()
        found = [a for a in self.appointments.values() if a.patient_id == patient_id]
        return sorted(found, key=lambda a: a.start)

    async def health_check(self) -> bool:
        return self.error is None

    async def close(self) -> None:
        self.closed = True


class InMemoryDirectory:
    """Pre-loaded implementation of the DirectoryProtocol protocol.

    Add records with ``add_provider`` / ``add_patient``. Set ``error`` to make
    lookups raise it.
    """

    def __init__(
        self,
        providers: list[Provider] | None = None,
        patients: list[Patient] | None = None,
    ) -> None:
        self.providers: dict[str, Provider] = {p.provider_id: p for p in providers or []}
        self.patients: dict[str, Patient] = {p.patient_id: p for p in patients or []}
        self.error: Exception | None = None
        self.closed: bool = False

    def add_provider(self, provider: Provider) -> None:
        self.providers[provider.provider_id] = provider

    def add_patient(self, patient: Patient) -> None:
        self.patients[patient.patient_id] = patient

    async def get_provider(self, provider_id: str) -> Provider | None:
        if self.error:
            raise self.error
        return self.providers.get(provider_id)

    async def get_patient(self, patient_id: str) -> Patient | None:
        if self.error:
            raise self.error
        return self.patients.get(patient_id)

    async def health_check(self) -> bool:
        return self.error is None

    async def close(self) -> None:
        self.closed = True
