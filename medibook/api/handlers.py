import datetime as dt
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from loguru import logger

from medibook.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    InfrastructureError,
    InvalidTransitionError,
    NotFoundError,
    SchedulingError,
    ValidationError,
)
from medibook.domain.models import Actor, Appointment, AvailabilityWindow, Slot
from medibook.scheduling.ports import AbstractSchedulingEngine


class Operation(Enum):
    ADD_WINDOW = "add_window"
    UPDATE_WINDOW = "update_window"
    DELETE_WINDOW = "delete_window"
    LIST_WINDOWS = "list_windows"
    LIST_SLOTS = "list_slots"
    CHECK_SLOT = "check_slot"
    CREATE_APPOINTMENT = "create_appointment"
    CONFIRM_APPOINTMENT = "confirm_appointment"
    REJECT_APPOINTMENT = "reject_appointment"
    CANCEL_APPOINTMENT = "cancel_appointment"
    LIST_APPOINTMENTS = "list_appointments"


ERROR_CODES: dict[type[SchedulingError], str] = {
    ValidationError: "validation_error",
    NotFoundError: "not_found",
    ConflictError: "conflict",
    AuthorizationError: "unauthorized",
    InvalidTransitionError: "invalid_transition",
    InfrastructureError: "unavailable",
}


class BadArgument(Exception):
    """An argument could not be parsed; reported as a validation error."""


def _failure(code: str, message: str, **extra: Any) -> dict[str, Any]:
    return {"success": False, "error": code, "message": message, **extra}


def _require(arguments: dict[str, Any], *names: str) -> None:
    missing = [n for n in names if arguments.get(n) in (None, "")]
    if missing:
        quoted = ", ".join(f"'{n}'" for n in missing)
        raise BadArgument(f"{quoted} {'is' if len(missing) == 1 else 'are'} required.")


def _parse_iso_date(value: object, field_name: str) -> dt.date:
    if not isinstance(value, str):
        raise BadArgument(f"Invalid date format for '{field_name}': must be a YYYY-MM-DD string.")
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        raise BadArgument(
            f"Invalid date format for '{field_name}': '{value}'. Expected YYYY-MM-DD."
        ) from None


def _parse_iso_time(value: object, field_name: str) -> dt.time:
    if not isinstance(value, str):
        raise BadArgument(f"Invalid time format for '{field_name}': must be an HH:MM string.")
    try:
        return dt.time.fromisoformat(value)
    except ValueError:
        raise BadArgument(
            f"Invalid time format for '{field_name}': '{value}'. Expected HH:MM."
        ) from None


def _parse_iso_datetime(value: object, field_name: str) -> dt.datetime:
    if not isinstance(value, str):
        raise BadArgument(
            f"Invalid datetime format for '{field_name}': must be a YYYY-MM-DDTHH:MM string."
        )
    try:
        return dt.datetime.fromisoformat(value)
    except ValueError:
        raise BadArgument(
            f"Invalid datetime format for '{field_name}': '{value}'. Expected YYYY-MM-DDTHH:MM."
        ) from None


def _parse_int(value: object, field_name: str) -> int:
    if isinstance(value, bool):
        raise BadArgument(f"'{field_name}' must be an integer.")
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        raise BadArgument(f"'{field_name}' must be an integer, got '{value}'.") from None


def _window_payload(window: AvailabilityWindow) -> dict[str, Any]:
    return {
        "window_id": window.window_id,
        "provider_id": window.provider_id,
        "day_of_week": window.day_of_week,
        "day_name": window.day_name,
        "start_time": window.start_time.strftime("%H:%M"),
        "end_time": window.end_time.strftime("%H:%M"),
        "time_range": window.time_range,
        "active": window.active,
    }


def _slot_payload(slot: Slot) -> dict[str, Any]:
    return {"start": slot.start.isoformat(), "end": slot.end.isoformat()}


def _appointment_payload(appointment: Appointment) -> dict[str, Any]:
    return {
        "appointment_id": appointment.appointment_id,
        "provider_id": appointment.provider_id,
        "patient_id": appointment.patient_id,
        "start": appointment.start.isoformat(),
        "end": appointment.end.isoformat(),
        "duration_minutes": appointment.duration_minutes,
        "status": appointment.status.value,
        "patient_notes": appointment.patient_notes,
        "provider_notes": appointment.provider_notes,
    }


def _conflict_detail(conflicting: Any) -> dict[str, Any]:
    if isinstance(conflicting, AvailabilityWindow):
        return {"conflicting_window": _window_payload(conflicting)}
    if isinstance(conflicting, Appointment):
        # Only the occupied interval; the other booking's parties stay private.
        return {
            "conflicting_interval": {
                "start": conflicting.start.isoformat(),
                "end": conflicting.end.isoformat(),
            }
        }
    return {}


class SchedulingHandlers:
    """Request handlers for the public scheduling operations.

    Each handler takes the verified caller and a dict of raw arguments and
    returns a result dict. Business errors become ``success: False`` results
    with a stable ``error`` code; nothing raises to the transport.
    """

    def __init__(self, engine: AbstractSchedulingEngine) -> None:
        self._engine = engine
        self._operations: dict[
            Operation, Callable[[Actor, dict[str, Any]], Awaitable[dict[str, Any]]]
        ] = {
            Operation.ADD_WINDOW: self.handle_add_window,
            Operation.UPDATE_WINDOW: self.handle_update_window,
            Operation.DELETE_WINDOW: self.handle_delete_window,
            Operation.LIST_WINDOWS: self.handle_list_windows,
            Operation.LIST_SLOTS: self.handle_list_slots,
            Operation.CHECK_SLOT: self.handle_check_slot,
            Operation.CREATE_APPOINTMENT: self.handle_create_appointment,
            Operation.CONFIRM_APPOINTMENT: self.handle_confirm_appointment,
            Operation.REJECT_APPOINTMENT: self.handle_reject_appointment,
            Operation.CANCEL_APPOINTMENT: self.handle_cancel_appointment,
            Operation.LIST_APPOINTMENTS: self.handle_list_appointments,
        }

    async def dispatch(
        self, operation: str, actor: Actor, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        """Route a named operation to its handler."""
        try:
            handler = self._operations[Operation(operation)]
        except ValueError:
            return _failure("unknown_operation", f"Unknown operation '{operation}'.")
        return await handler(actor, arguments)

    async def _guarded(
        self, operation: Operation, call: Callable[[], Awaitable[dict[str, Any]]]
    ) -> dict[str, Any]:
        logger.debug("Handling {}", operation.value)
        try:
            return await call()
        except BadArgument as exc:
            return _failure("validation_error", str(exc))
        except ConflictError as exc:
            logger.warning("{} rejected: {}", operation.value, exc)
            return _failure("conflict", str(exc), **_conflict_detail(exc.conflicting))
        except InfrastructureError as exc:
            logger.error("{} failed: {}", operation.value, exc)
            return _failure("unavailable", str(exc), retryable=True)
        except SchedulingError as exc:
            logger.warning("{} rejected: {}", operation.value, exc)
            return _failure(ERROR_CODES.get(type(exc), "error"), str(exc))
        except Exception:
            logger.exception("Unexpected error in {}", operation.value)
            return _failure(
                "internal_error", f"An unexpected error occurred during {operation.value}."
            )

    async def handle_add_window(self, actor: Actor, arguments: dict[str, Any]) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            _require(arguments, "day_of_week", "start_time", "end_time")
            window = await self._engine.add_window(
                actor,
                _parse_int(arguments["day_of_week"], "day_of_week"),
                _parse_iso_time(arguments["start_time"], "start_time"),
                _parse_iso_time(arguments["end_time"], "end_time"),
                provider_id=arguments.get("provider_id"),
            )
            return {
                "success": True,
                "window": _window_payload(window),
                "message": "Availability added successfully.",
            }

        return await self._guarded(Operation.ADD_WINDOW, call)

    async def handle_update_window(
        self, actor: Actor, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            _require(arguments, "window_id", "day_of_week", "start_time", "end_time")
            window = await self._engine.update_window(
                actor,
                str(arguments["window_id"]),
                _parse_int(arguments["day_of_week"], "day_of_week"),
                _parse_iso_time(arguments["start_time"], "start_time"),
                _parse_iso_time(arguments["end_time"], "end_time"),
                provider_id=arguments.get("provider_id"),
            )
            return {
                "success": True,
                "window": _window_payload(window),
                "message": "Availability updated successfully.",
            }

        return await self._guarded(Operation.UPDATE_WINDOW, call)

    async def handle_delete_window(
        self, actor: Actor, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            _require(arguments, "window_id")
            await self._engine.delete_window(
                actor, str(arguments["window_id"]), provider_id=arguments.get("provider_id")
            )
            return {"success": True, "message": "Availability deleted successfully."}

        return await self._guarded(Operation.DELETE_WINDOW, call)

    async def handle_list_windows(
        self, actor: Actor, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            _require(arguments, "provider_id")
            raw_day = arguments.get("day_of_week")
            day = _parse_int(raw_day, "day_of_week") if raw_day not in (None, "") else None
            windows = await self._engine.list_windows(str(arguments["provider_id"]), day)
            return {"success": True, "windows": [_window_payload(w) for w in windows]}

        return await self._guarded(Operation.LIST_WINDOWS, call)

    async def handle_list_slots(self, actor: Actor, arguments: dict[str, Any]) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            _require(arguments, "provider_id", "date")
            date = _parse_iso_date(arguments["date"], "date")
            slots = await self._engine.get_bookable_slots(str(arguments["provider_id"]), date)
            return {
                "success": True,
                "provider_id": arguments["provider_id"],
                "date": date.isoformat(),
                "slots": [_slot_payload(s) for s in slots],
                "total_slots": len(slots),
            }

        return await self._guarded(Operation.LIST_SLOTS, call)

    async def handle_check_slot(self, actor: Actor, arguments: dict[str, Any]) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            _require(arguments, "provider_id", "date", "time")
            date = _parse_iso_date(arguments["date"], "date")
            time = _parse_iso_time(arguments["time"], "time")
            free = await self._engine.is_slot_free(str(arguments["provider_id"]), date, time)
            return {
                "success": True,
                "provider_id": arguments["provider_id"],
                "date": date.isoformat(),
                "time": time.strftime("%H:%M"),
                "is_available": free,
            }

        return await self._guarded(Operation.CHECK_SLOT, call)

    async def handle_create_appointment(
        self, actor: Actor, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            _require(arguments, "provider_id", "start")
            raw_duration = arguments.get("duration_minutes")
            appointment = await self._engine.book(
                actor,
                str(arguments["provider_id"]),
                _parse_iso_datetime(arguments["start"], "start"),
                _parse_int(raw_duration, "duration_minutes")
                if raw_duration not in (None, "")
                else None,
                arguments.get("notes"),
                patient_id=arguments.get("patient_id"),
            )
            return {
                "success": True,
                "appointment": _appointment_payload(appointment),
                "message": "Appointment booked successfully! Waiting for provider approval.",
            }

        return await self._guarded(Operation.CREATE_APPOINTMENT, call)

    async def handle_confirm_appointment(
        self, actor: Actor, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            _require(arguments, "appointment_id")
            appointment = await self._engine.confirm(actor, str(arguments["appointment_id"]))
            return {
                "success": True,
                "appointment": _appointment_payload(appointment),
                "message": "Appointment confirmed successfully.",
            }

        return await self._guarded(Operation.CONFIRM_APPOINTMENT, call)

    async def handle_reject_appointment(
        self, actor: Actor, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            _require(arguments, "appointment_id", "reason")
            appointment = await self._engine.reject(
                actor, str(arguments["appointment_id"]), str(arguments["reason"])
            )
            return {
                "success": True,
                "appointment": _appointment_payload(appointment),
                "message": "Appointment rejected.",
            }

        return await self._guarded(Operation.REJECT_APPOINTMENT, call)

    async def handle_cancel_appointment(
        self, actor: Actor, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            _require(arguments, "appointment_id")
            appointment = await self._engine.cancel(
                actor, str(arguments["appointment_id"]), arguments.get("reason")
            )
            return {
                "success": True,
                "appointment": _appointment_payload(appointment),
                "message": "Appointment cancelled successfully.",
            }

        return await self._guarded(Operation.CANCEL_APPOINTMENT, call)

    async def handle_list_appointments(
        self, actor: Actor, arguments: dict[str, Any]
    ) -> dict[str, Any]:
        async def call() -> dict[str, Any]:
            appointments = await self._engine.list_appointments(actor)
            return {
                "success": True,
                "appointments": [_appointment_payload(a) for a in appointments],
            }

        return await self._guarded(Operation.LIST_APPOINTMENTS, call)
