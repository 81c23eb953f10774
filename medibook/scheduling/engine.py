import datetime as dt

from loguru import logger

from medibook.config import SchedulingConfig
from medibook.domain.exceptions import AuthorizationError, NotFoundError, ValidationError
from medibook.domain.models import (
    Actor,
    Appointment,
    AppointmentRequest,
    AvailabilityWindow,
    Role,
    Slot,
)
from medibook.scheduling.appointments import AppointmentStore
from medibook.scheduling.availability import AvailabilityStore
from medibook.scheduling.datetime_helpers import Clock, at, day_of_week, system_clock
from medibook.scheduling.errors import infrastructure_errors
from medibook.scheduling.intervals import overlaps, partition
from medibook.scheduling.policy import AppointmentEvent
from medibook.scheduling.ports import (
    AbstractSchedulingEngine,
    DirectoryProtocol,
    SchedulingStorage,
)


class SchedulingEngine(AbstractSchedulingEngine):
    """Availability and booking operations over one storage backend."""

    def __init__(
        self,
        storage: SchedulingStorage,
        directory: DirectoryProtocol,
        config: SchedulingConfig,
        tz: dt.tzinfo,
        clock: Clock | None = None,
    ) -> None:
        self._storage = storage
        self._directory = directory
        self._config = config
        self._tz = tz
        self._clock = clock or system_clock(tz)
        self.availability = AvailabilityStore(storage, storage, config, self._clock)
        self.appointments = AppointmentStore(
            storage, storage, directory, config, self._clock, tz
        )

    @property
    def config(self) -> SchedulingConfig:
        return self._config

    def _granule(self, granule_minutes: int | None) -> int:
        if granule_minutes is None:
            return self._config.granule_minutes
        if granule_minutes <= 0:
            raise ValidationError("Granule must be a positive number of minutes", field="granule")
        return granule_minutes

    async def _managed_provider(self, actor: Actor, provider_id: str | None) -> str:
        """Resolve which provider's windows the actor is editing."""
        if actor.role is Role.PROVIDER:
            if provider_id is not None and provider_id != actor.actor_id:
                raise AuthorizationError(
                    "Providers can only manage their own availability", actor_id=actor.actor_id
                )
            target = actor.actor_id
        elif actor.role is Role.ADMIN and provider_id is not None:
            target = provider_id
        elif actor.role is Role.ADMIN:
            raise AuthorizationError("Admins must name the provider", actor_id=actor.actor_id)
        else:
            raise AuthorizationError(
                "Access denied. Provider role required.", actor_id=actor.actor_id
            )

        with infrastructure_errors("resolving provider"):
            provider = await self._directory.get_provider(target)
        if provider is None:
            raise NotFoundError("provider", target)
        return target

    async def add_window(
        self,
        actor: Actor,
        day_of_week: int,
        start_time: dt.time,
        end_time: dt.time,
        *,
        provider_id: str | None = None,
    ) -> AvailabilityWindow:
        target = await self._managed_provider(actor, provider_id)
        return await self.availability.add_window(target, day_of_week, start_time, end_time)

    async def update_window(
        self,
        actor: Actor,
        window_id: str,
        day_of_week: int,
        start_time: dt.time,
        end_time: dt.time,
        *,
        provider_id: str | None = None,
    ) -> AvailabilityWindow:
        target = await self._managed_provider(actor, provider_id)
        return await self.availability.update_window(
            target, window_id, day_of_week, start_time, end_time
        )

    async def set_window_active(
        self, actor: Actor, window_id: str, active: bool, *, provider_id: str | None = None
    ) -> AvailabilityWindow:
        target = await self._managed_provider(actor, provider_id)
        return await self.availability.set_window_active(target, window_id, active)

    async def delete_window(
        self, actor: Actor, window_id: str, *, provider_id: str | None = None
    ) -> None:
        target = await self._managed_provider(actor, provider_id)
        await self.availability.delete_window(target, window_id)

    async def list_windows(
        self, provider_id: str, day_of_week: int | None = None
    ) -> list[AvailabilityWindow]:
        return await self.availability.list_windows(provider_id, day_of_week)

    async def get_bookable_slots(
        self, provider_id: str, date: dt.date, granule_minutes: int | None = None
    ) -> list[Slot]:
        granule = self._granule(granule_minutes)
        windows = await self.availability.list_windows(provider_id, day_of_week(date))
        if not windows:
            logger.debug("No availability for provider {} on {}", provider_id, date)
            return []

        day_start = at(date, dt.time.min, self._tz)
        occupied = await self.appointments.occupying_between(
            provider_id, day_start, day_start + dt.timedelta(days=1)
        )
        now = self._clock()

        slots: list[Slot] = []
        for window in windows:
            granules = partition(
                at(date, window.start_time, self._tz), at(date, window.end_time, self._tz), granule
            )
            for start, end in granules:
                if start < now:
                    continue
                if any(overlaps(start, end, a.start, a.end) for a in occupied):
                    continue
                slots.append(Slot(start=start, end=end))

        slots.sort(key=lambda s: s.start)
        logger.debug(
            "Found {} bookable slots for provider {} on {}", len(slots), provider_id, date
        )
        return slots

    async def is_slot_free(
        self,
        provider_id: str,
        date: dt.date,
        time: dt.time,
        granule_minutes: int | None = None,
    ) -> bool:
        granule = self._granule(granule_minutes)
        start = at(date, time, self._tz)
        end = start + dt.timedelta(minutes=granule)
        if start < self._clock():
            return False
        # The whole granule must fit in one window, the same test booking applies.
        if not await self.availability.covers(provider_id, start, end):
            logger.debug("Provider {} is not working at {} on {}", provider_id, time, date)
            return False

        conflicts = await self.appointments.occupying_between(provider_id, start, end)
        return not conflicts

    async def book(
        self,
        actor: Actor,
        provider_id: str,
        start: dt.datetime,
        duration_minutes: int | None = None,
        notes: str | None = None,
        *,
        patient_id: str | None = None,
    ) -> Appointment:
        if actor.role is Role.PATIENT:
            if patient_id is not None and patient_id != actor.actor_id:
                raise AuthorizationError(
                    "Patients can only book for themselves", actor_id=actor.actor_id
                )
            patient_id = actor.actor_id
        elif actor.role is not Role.ADMIN or patient_id is None:
            raise AuthorizationError(
                "Access denied. Patient role required.", actor_id=actor.actor_id
            )

        request = AppointmentRequest(
            provider_id=provider_id,
            patient_id=patient_id,
            start=start,
            duration_minutes=duration_minutes,
            notes=notes,
        )
        return await self.appointments.create(request, covered_by=self.availability.covers)

    async def confirm(self, actor: Actor, appointment_id: str) -> Appointment:
        return await self.appointments.transition(
            appointment_id, actor, AppointmentEvent.CONFIRM
        )

    async def reject(self, actor: Actor, appointment_id: str, reason: str) -> Appointment:
        return await self.appointments.transition(
            appointment_id, actor, AppointmentEvent.REJECT, reason
        )

    async def cancel(
        self, actor: Actor, appointment_id: str, reason: str | None = None
    ) -> Appointment:
        return await self.appointments.transition(
            appointment_id, actor, AppointmentEvent.CANCEL, reason
        )

    async def mark_completed(self, actor: Actor, appointment_id: str) -> Appointment:
        return await self.appointments.transition(
            appointment_id, actor, AppointmentEvent.COMPLETE
        )

    async def mark_no_show(self, actor: Actor, appointment_id: str) -> Appointment:
        return await self.appointments.transition(
            appointment_id, actor, AppointmentEvent.MARK_NO_SHOW
        )

    async def get_appointment(self, actor: Actor, appointment_id: str) -> Appointment:
        return await self.appointments.get(appointment_id, actor)

    async def list_appointments(self, actor: Actor) -> list[Appointment]:
        if actor.role is Role.PATIENT:
            return await self.appointments.list_for_patient(actor.actor_id)
        if actor.role is Role.PROVIDER:
            return await self.appointments.list_for_provider(actor.actor_id)
        raise AuthorizationError(
            "Only patients and providers have their own appointments", actor_id=actor.actor_id
        )

    async def health_check(self) -> bool:
        storage_ok = await self._storage.health_check()
        directory_ok = await self._directory.health_check()
        if not (storage_ok and directory_ok):
            logger.warning(
                "Scheduling health degraded: storage={}, directory={}", storage_ok, directory_ok
            )
        return storage_ok and directory_ok

    async def close(self) -> None:
        await self._directory.close()
        await self._storage.close()
