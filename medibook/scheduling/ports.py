import datetime as dt
from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Protocol

from medibook.domain.models import (
    Actor,
    Appointment,
    AppointmentStatus,
    AvailabilityWindow,
    Patient,
    Provider,
    Slot,
)


class AbstractSchedulingEngine(ABC):
    """Abstract base class for the availability and booking operations."""

    @abstractmethod
    async def add_window(
        self,
        actor: Actor,
        day_of_week: int,
        start_time: dt.time,
        end_time: dt.time,
        *,
        provider_id: str | None = None,
    ) -> AvailabilityWindow:
        """Declare a weekly availability window for a provider.

        Args:
            actor: The caller. Providers manage their own windows; admins must
                pass ``provider_id``.
            day_of_week: 1 = Monday … 7 = Sunday.
            start_time: Window start, wall clock, minute precision.
            end_time: Window end (exclusive).
            provider_id: Target provider when acting as admin.

        Returns:
            The stored window with its generated ID.

        Raises:
            ValidationError: If the day or times are out of policy.
            ConflictError: If the window overlaps another active window that day.
            NotFoundError: If the provider does not exist.
            AuthorizationError: If the actor may not manage this provider.
        """

    @abstractmethod
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
        """Replace the day and times of an existing window.

        Raises:
            NotFoundError: If the window does not exist or belongs to someone else.
            ValidationError, ConflictError, AuthorizationError: As for ``add_window``.
        """

    @abstractmethod
    async def delete_window(
        self, actor: Actor, window_id: str, *, provider_id: str | None = None
    ) -> None:
        """Delete a window. Existing appointments are left untouched."""

    @abstractmethod
    async def list_windows(
        self, provider_id: str, day_of_week: int | None = None
    ) -> list[AvailabilityWindow]:
        """List a provider's active windows ordered by day, then start time."""

    @abstractmethod
    async def get_bookable_slots(
        self, provider_id: str, date: dt.date, granule_minutes: int | None = None
    ) -> list[Slot]:
        """List the free granules of a provider's windows on ``date``.

        Returns:
            Slots ordered by start time. Empty if the provider has no window
            that day.
        """

    @abstractmethod
    async def is_slot_free(
        self,
        provider_id: str,
        date: dt.date,
        time: dt.time,
        granule_minutes: int | None = None,
    ) -> bool:
        """Check whether the granule at ``time`` could be booked right now.

        True only if the granule starts in the future and fits inside one
        active window with no occupying appointment overlapping it.
        """

    @abstractmethod
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
        """Book an appointment in PENDING status.

        Raises:
            ValidationError: Past start, short duration, inactive provider, or
                outside the provider's declared availability.
            ConflictError: If the interval overlaps an occupying appointment.
            NotFoundError: If the provider or patient does not exist.
            AuthorizationError: If the actor may not book for this patient.
        """

    @abstractmethod
    async def confirm(self, actor: Actor, appointment_id: str) -> Appointment:
        """Confirm a pending appointment (owning provider)."""

    @abstractmethod
    async def reject(self, actor: Actor, appointment_id: str, reason: str) -> Appointment:
        """Reject a pending appointment, keeping ``reason`` as the provider note."""

    @abstractmethod
    async def cancel(
        self, actor: Actor, appointment_id: str, reason: str | None = None
    ) -> Appointment:
        """Cancel a pending or confirmed appointment (either party)."""

    @abstractmethod
    async def list_appointments(self, actor: Actor) -> list[Appointment]:
        """List the caller's appointments."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if storage and the directory are reachable."""

    @abstractmethod
    async def close(self) -> None:
        """Release resources held by the engine."""


class WindowRepository(Protocol):
    """Persistence for availability windows."""

    async def list_windows(
        self, provider_id: str, day_of_week: int | None = None, *, include_inactive: bool = False
    ) -> list[AvailabilityWindow]:
        """Windows of a provider ordered by (day, start)."""
        ...

    async def get_window(self, window_id: str) -> AvailabilityWindow | None:
        """Fetch one window by ID."""
        ...

    async def save_window(self, window: AvailabilityWindow) -> None:
        """Insert or replace a window."""
        ...

    async def delete_window(self, window_id: str) -> None:
        """Remove a window."""
        ...


class AppointmentRepository(Protocol):
    """Persistence for appointments."""

    async def get_appointment(self, appointment_id: str) -> Appointment | None:
        """Fetch one appointment by ID."""
        ...

    async def save_appointment(self, appointment: Appointment) -> None:
        """Insert or replace an appointment."""
        ...

    async def list_by_provider(
        self,
        provider_id: str,
        *,
        start: dt.datetime | None = None,
        end: dt.datetime | None = None,
        statuses: frozenset[AppointmentStatus] | None = None,
    ) -> list[Appointment]:
        """Appointments of a provider, soonest first.

        With ``start``/``end`` only appointments overlapping ``[start, end)``
        are returned.
        """
        ...

    async def list_by_patient(self, patient_id: str) -> list[Appointment]:
        """Appointments of a patient, soonest first."""
        ...


class ProviderGuard(Protocol):
    """Per-provider exclusivity for check-then-write sequences."""

    def hold(self, provider_id: str) -> AbstractAsyncContextManager[None]:
        """Hold the provider exclusively for the duration of the ``async with`` block."""
        ...


class SchedulingStorage(WindowRepository, AppointmentRepository, ProviderGuard, Protocol):
    """A storage backend providing both repositories and the guard."""

    async def health_check(self) -> bool:
        """Check if the backend is usable."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...


class DirectoryProtocol(Protocol):
    """Read-only lookup of providers and patients."""

    async def get_provider(self, provider_id: str) -> Provider | None:
        """Fetch a provider, or None if unknown."""
        ...

    async def get_patient(self, patient_id: str) -> Patient | None:
        """Fetch a patient, or None if unknown."""
        ...

    async def health_check(self) -> bool:
        """Check if the directory is reachable."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...
