from enum import Enum
from typing import NamedTuple

from medibook.domain.models import Appointment, AppointmentStatus, Role


class AppointmentEvent(Enum):
    CONFIRM = "confirm"
    REJECT = "reject"
    CANCEL = "cancel"
    COMPLETE = "complete"
    MARK_NO_SHOW = "mark_no_show"


class Rule(NamedTuple):
    sources: frozenset[AppointmentStatus]
    target: AppointmentStatus
    roles: frozenset[Role]


_PROVIDER = frozenset({Role.PROVIDER})
_EITHER_PARTY = frozenset({Role.PATIENT, Role.PROVIDER})

RULES: dict[AppointmentEvent, Rule] = {
    AppointmentEvent.CONFIRM: Rule(
        frozenset({AppointmentStatus.PENDING}), AppointmentStatus.CONFIRMED, _PROVIDER
    ),
    AppointmentEvent.REJECT: Rule(
        frozenset({AppointmentStatus.PENDING}), AppointmentStatus.CANCELLED, _PROVIDER
    ),
    AppointmentEvent.CANCEL: Rule(
        frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED}),
        AppointmentStatus.CANCELLED,
        _EITHER_PARTY,
    ),
    # Exposed without a trigger; something outside the engine decides when.
    AppointmentEvent.COMPLETE: Rule(
        frozenset({AppointmentStatus.CONFIRMED}), AppointmentStatus.COMPLETED, _PROVIDER
    ),
    AppointmentEvent.MARK_NO_SHOW: Rule(
        frozenset({AppointmentStatus.CONFIRMED}), AppointmentStatus.NO_SHOW, _PROVIDER
    ),
}


def is_party(actor_id: str, appointment: Appointment) -> bool:
    """True if the actor is the appointment's patient or provider."""
    return actor_id in (appointment.patient_id, appointment.provider_id)


def owns_as(role: Role, actor_id: str, appointment: Appointment) -> bool:
    """True if ``actor_id`` holds ``role`` on this appointment. Admins always do."""
    if role is Role.ADMIN:
        return True
    if role is Role.PATIENT:
        return appointment.patient_id == actor_id
    return appointment.provider_id == actor_id


def is_reachable(current: AppointmentStatus, event: AppointmentEvent) -> bool:
    return current in RULES[event].sources


def target_of(event: AppointmentEvent) -> AppointmentStatus:
    return RULES[event].target


def can_transition(
    role: Role, actor_id: str, appointment: Appointment, event: AppointmentEvent
) -> bool:
    """Decide whether an actor may fire ``event`` on ``appointment`` right now.

    Requires ownership under the given role (admins bypass ownership and role
    checks), a role allowed for the event, and an event reachable from the
    appointment's current status.
    """
    if not owns_as(role, actor_id, appointment):
        return False
    if role is not Role.ADMIN and role not in RULES[event].roles:
        return False
    return is_reachable(appointment.status, event)
