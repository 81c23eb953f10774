import datetime as dt
import uuid
from collections.abc import Awaitable, Callable

from loguru import logger

from medibook.config import SchedulingConfig
from medibook.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    SchedulingError,
    ValidationError,
)
from medibook.domain.models import (
    OCCUPYING_STATUSES,
    Actor,
    Appointment,
    AppointmentRequest,
    AppointmentStatus,
    Role,
)
from medibook.scheduling.datetime_helpers import Clock, is_minute_precise, to_clinic_time
from medibook.scheduling.errors import infrastructure_errors
from medibook.scheduling.policy import (
    RULES,
    AppointmentEvent,
    can_transition,
    is_party,
    owns_as,
    target_of,
)
from medibook.scheduling.ports import AppointmentRepository, DirectoryProtocol, ProviderGuard

CoverageCheck = Callable[[str, dt.datetime, dt.datetime], Awaitable[bool]]


def _refusal(actor: Actor, appointment: Appointment, event: AppointmentEvent) -> SchedulingError:
    """Explain why ``can_transition`` said no."""
    allowed_role = actor.role is Role.ADMIN or actor.role in RULES[event].roles
    if owns_as(actor.role, actor.actor_id, appointment) and allowed_role:
        return InvalidTransitionError(
            appointment.status.value, event.value, appointment.appointment_id
        )
    return AuthorizationError(
        f"A {actor.role.value} may not {event.value} this appointment", actor_id=actor.actor_id
    )


class AppointmentStore:
    """Booking records and their lifecycle.

    Creation and every status change run under the provider guard, so the
    overlap check and the write that follows it are never interleaved with
    another writer for the same provider.
    """

    def __init__(
        self,
        repository: AppointmentRepository,
        guard: ProviderGuard,
        directory: DirectoryProtocol,
        config: SchedulingConfig,
        clock: Clock,
        tz: dt.tzinfo,
    ) -> None:
        self._repo = repository
        self._guard = guard
        self._directory = directory
        self._config = config
        self._clock = clock
        self._tz = tz

    async def _resolve_parties(self, provider_id: str, patient_id: str) -> None:
        with infrastructure_errors("resolving booking parties"):
            provider = await self._directory.get_provider(provider_id)
            patient = await self._directory.get_patient(patient_id)
        if provider is None:
            raise NotFoundError("provider", provider_id)
        if patient is None:
            raise NotFoundError("patient", patient_id)
        if not provider.active:
            raise ValidationError("Provider is not active", field="provider_id")

    async def create(
        self, request: AppointmentRequest, *, covered_by: CoverageCheck | None = None
    ) -> Appointment:
        """Book ``request`` in PENDING status.

        ``covered_by`` is awaited inside the provider guard and must confirm
        that the occupied interval lies within declared availability.
        """
        await self._resolve_parties(request.provider_id, request.patient_id)

        duration = request.duration_minutes
        if duration is None:
            duration = self._config.default_duration_minutes
        if duration < self._config.min_duration_minutes:
            raise ValidationError(
                f"Duration must be at least {self._config.min_duration_minutes} minutes",
                field="duration_minutes",
            )

        start = to_clinic_time(request.start, self._tz)
        if not is_minute_precise(start):
            raise ValidationError("Start time must have minute precision", field="start")
        now = self._clock()
        if start < now:
            raise ValidationError("Cannot book appointment in the past", field="start")
        end = start + dt.timedelta(minutes=duration)

        with infrastructure_errors("booking appointment"):
            async with self._guard.hold(request.provider_id):
                if covered_by is not None and not await covered_by(
                    request.provider_id, start, end
                ):
                    raise ValidationError(
                        "Requested time is outside the provider's availability", field="start"
                    )

                overlapping = await self._repo.list_by_provider(
                    request.provider_id, start=start, end=end, statuses=OCCUPYING_STATUSES
                )
                if overlapping:
                    raise ConflictError("Time slot is not available", conflicting=overlapping[0])

                if self._config.one_open_appointment_per_provider:
                    await self._check_no_open_booking(request, now)

                appointment = Appointment(
                    appointment_id=uuid.uuid4().hex,
                    provider_id=request.provider_id,
                    patient_id=request.patient_id,
                    start=start,
                    duration_minutes=duration,
                    status=AppointmentStatus.PENDING,
                    patient_notes=request.notes,
                    created_at=now,
                    updated_at=now,
                )
                await self._repo.save_appointment(appointment)

        logger.info(
            "Appointment booked: id={}, provider={}, start={}",
            appointment.appointment_id,
            appointment.provider_id,
            appointment.start.isoformat(),
        )
        return appointment

    async def _check_no_open_booking(self, request: AppointmentRequest, now: dt.datetime) -> None:
        booked = await self._repo.list_by_provider(
            request.provider_id, statuses=OCCUPYING_STATUSES
        )
        for existing in booked:
            if existing.patient_id == request.patient_id and existing.start > now:
                raise ConflictError(
                    "You already have a pending/confirmed appointment with this provider",
                    conflicting=existing,
                )

    async def get(self, appointment_id: str, actor: Actor) -> Appointment:
        with infrastructure_errors("loading appointment"):
            appointment = await self._repo.get_appointment(appointment_id)
        if appointment is None or not (
            actor.role is Role.ADMIN or is_party(actor.actor_id, appointment)
        ):
            raise NotFoundError("appointment", appointment_id)
        return appointment

    async def transition(
        self,
        appointment_id: str,
        actor: Actor,
        event: AppointmentEvent,
        reason: str | None = None,
    ) -> Appointment:
        """Fire ``event`` on an appointment on behalf of ``actor``.

        A reason given by a provider or admin is stored as the provider note.
        """
        current = await self.get(appointment_id, actor)

        with infrastructure_errors(f"applying {event.value}"):
            async with self._guard.hold(current.provider_id):
                # Re-read under the guard; the status may have moved meanwhile.
                current = await self.get(appointment_id, actor)
                if not can_transition(actor.role, actor.actor_id, current, event):
                    raise _refusal(actor, current, event)

                update: dict[str, object] = {
                    "status": target_of(event),
                    "updated_at": self._clock(),
                }
                if reason and actor.role is not Role.PATIENT:
                    update["provider_notes"] = reason
                updated = current.model_copy(update=update)
                await self._repo.save_appointment(updated)

        logger.info(
            "Appointment {}: {} -> {} by {} {}",
            appointment_id,
            current.status.value,
            updated.status.value,
            actor.role.value,
            actor.actor_id,
        )
        return updated

    async def list_for_patient(self, patient_id: str) -> list[Appointment]:
        """A patient's appointments, most recent first."""
        with infrastructure_errors("listing patient appointments"):
            if await self._directory.get_patient(patient_id) is None:
                raise NotFoundError("patient", patient_id)
            appointments = await self._repo.list_by_patient(patient_id)
        return list(reversed(appointments))

    async def list_for_provider(
        self, provider_id: str, status: AppointmentStatus | None = None
    ) -> list[Appointment]:
        """A provider's appointments, soonest first."""
        with infrastructure_errors("listing provider appointments"):
            if await self._directory.get_provider(provider_id) is None:
                raise NotFoundError("provider", provider_id)
            return await self._repo.list_by_provider(
                provider_id, statuses=frozenset({status}) if status else None
            )

    async def occupying_between(
        self, provider_id: str, start: dt.datetime, end: dt.datetime
    ) -> list[Appointment]:
        with infrastructure_errors("listing occupied intervals"):
            return await self._repo.list_by_provider(
                provider_id, start=start, end=end, statuses=OCCUPYING_STATUSES
            )
