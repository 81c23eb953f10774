from typing import Any


class SchedulingError(Exception):
    """Base exception for all scheduling errors."""

    retryable: bool = False


class ValidationError(SchedulingError):
    """Raised when input is malformed or outside scheduling policy."""

    def __init__(self, reason: str, field: str | None = None) -> None:
        self.reason = reason
        self.field = field
        super().__init__(reason)


class NotFoundError(SchedulingError):
    """Raised when a record does not exist or is not owned by the caller."""

    def __init__(self, kind: str, identifier: str) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind.capitalize()} not found: {identifier}")


class ConflictError(SchedulingError):
    """Raised when a requested interval overlaps an existing window or booking.

    ``conflicting`` holds the window or appointment that caused the rejection so
    the caller can propose an alternative slot.
    """

    def __init__(self, reason: str, conflicting: Any = None) -> None:
        self.reason = reason
        self.conflicting = conflicting
        super().__init__(reason)


class AuthorizationError(SchedulingError):
    """Raised when the actor's role or ownership does not permit the request."""

    def __init__(self, reason: str, actor_id: str | None = None) -> None:
        self.reason = reason
        self.actor_id = actor_id
        super().__init__(reason)


class InvalidTransitionError(SchedulingError):
    """Raised when an appointment cannot move to the requested state."""

    def __init__(self, current: str, event: str, appointment_id: str | None = None) -> None:
        self.current = current
        self.event = event
        self.appointment_id = appointment_id
        super().__init__(f"Cannot {event} an appointment that is {current}")


class InfrastructureError(SchedulingError):
    """Raised when storage or the directory is unreachable or not responding."""

    retryable = True
