import datetime as dt
import uuid
from collections.abc import Iterable

from loguru import logger

from medibook.config import SchedulingConfig
from medibook.domain.exceptions import ConflictError, NotFoundError, ValidationError
from medibook.domain.models import AvailabilityWindow
from medibook.scheduling.datetime_helpers import (
    Clock,
    at,
    day_of_week,
    is_minute_precise,
    time_to_hhmm,
)
from medibook.scheduling.errors import infrastructure_errors
from medibook.scheduling.intervals import contains, overlaps
from medibook.scheduling.ports import ProviderGuard, WindowRepository


def _first_overlap(
    windows: Iterable[AvailabilityWindow],
    start: dt.time,
    end: dt.time,
    exclude_id: str | None = None,
) -> AvailabilityWindow | None:
    for window in windows:
        if window.window_id == exclude_id:
            continue
        if overlaps(window.start_time, window.end_time, start, end):
            return window
    return None


class AvailabilityStore:
    """Each provider's weekly windows, kept free of overlaps per day."""

    def __init__(
        self,
        repository: WindowRepository,
        guard: ProviderGuard,
        config: SchedulingConfig,
        clock: Clock,
    ) -> None:
        self._repo = repository
        self._guard = guard
        self._config = config
        self._clock = clock

    def validate(self, day: int, start: dt.time, end: dt.time) -> None:
        """Check a window against the day range and working-hour bounds."""
        if not 1 <= day <= 7:
            raise ValidationError("Day of week must be between 1-7", field="day_of_week")
        if not (is_minute_precise(start) and is_minute_precise(end)):
            raise ValidationError("Window times must have minute precision", field="start_time")
        if start >= end:
            raise ValidationError("Start time must be before end time", field="start_time")
        opening, closing = self._config.opening_time, self._config.closing_time
        if start < opening or end > closing:
            raise ValidationError(
                f"Working hours must be between {time_to_hhmm(opening)} - {time_to_hhmm(closing)}",
                field="start_time" if start < opening else "end_time",
            )

    async def _owned(self, provider_id: str, window_id: str) -> AvailabilityWindow:
        window = await self._repo.get_window(window_id)
        # A window owned by someone else is reported exactly like a missing one.
        if window is None or window.provider_id != provider_id:
            raise NotFoundError("window", window_id)
        return window

    async def _check_free(
        self, provider_id: str, day: int, start: dt.time, end: dt.time, exclude_id: str | None
    ) -> None:
        siblings = await self._repo.list_windows(provider_id, day)
        conflicting = _first_overlap(siblings, start, end, exclude_id)
        if conflicting is not None:
            raise ConflictError(
                f"Time slot overlaps with existing availability: "
                f"{conflicting.day_name} {conflicting.time_range}",
                conflicting=conflicting,
            )

    async def add_window(
        self, provider_id: str, day: int, start: dt.time, end: dt.time
    ) -> AvailabilityWindow:
        self.validate(day, start, end)
        with infrastructure_errors("adding availability"):
            async with self._guard.hold(provider_id):
                await self._check_free(provider_id, day, start, end, exclude_id=None)
                window = AvailabilityWindow(
                    window_id=uuid.uuid4().hex,
                    provider_id=provider_id,
                    day_of_week=day,
                    start_time=start,
                    end_time=end,
                    created_at=self._clock(),
                )
                await self._repo.save_window(window)

        logger.info(
            "Availability added for provider {}: {} {}",
            provider_id,
            window.day_name,
            window.time_range,
        )
        return window

    async def update_window(
        self, provider_id: str, window_id: str, day: int, start: dt.time, end: dt.time
    ) -> AvailabilityWindow:
        self.validate(day, start, end)
        with infrastructure_errors("updating availability"):
            async with self._guard.hold(provider_id):
                current = await self._owned(provider_id, window_id)
                if current.active:
                    await self._check_free(provider_id, day, start, end, exclude_id=window_id)
                window = current.model_copy(
                    update={"day_of_week": day, "start_time": start, "end_time": end}
                )
                await self._repo.save_window(window)

        logger.info(
            "Availability updated for provider {}: {} {}",
            provider_id,
            window.day_name,
            window.time_range,
        )
        return window

    async def set_window_active(
        self, provider_id: str, window_id: str, active: bool
    ) -> AvailabilityWindow:
        with infrastructure_errors("toggling availability"):
            async with self._guard.hold(provider_id):
                current = await self._owned(provider_id, window_id)
                if current.active == active:
                    return current
                if active:
                    await self._check_free(
                        provider_id,
                        current.day_of_week,
                        current.start_time,
                        current.end_time,
                        exclude_id=window_id,
                    )
                window = current.model_copy(update={"active": active})
                await self._repo.save_window(window)

        logger.info(
            "Availability {} for provider {}: {} {}",
            "activated" if active else "deactivated",
            provider_id,
            window.day_name,
            window.time_range,
        )
        return window

    async def delete_window(self, provider_id: str, window_id: str) -> None:
        """Hard-delete a window. Appointments booked inside it stay valid."""
        with infrastructure_errors("deleting availability"):
            async with self._guard.hold(provider_id):
                window = await self._owned(provider_id, window_id)
                await self._repo.delete_window(window_id)

        logger.info(
            "Availability deleted for provider {}: {} {}",
            provider_id,
            window.day_name,
            window.time_range,
        )

    async def list_windows(
        self, provider_id: str, day: int | None = None, *, include_inactive: bool = False
    ) -> list[AvailabilityWindow]:
        if day is not None and not 1 <= day <= 7:
            raise ValidationError("Day of week must be between 1-7", field="day_of_week")
        with infrastructure_errors("listing availability"):
            return await self._repo.list_windows(
                provider_id, day, include_inactive=include_inactive
            )

    async def window_at(
        self, provider_id: str, day: int, time: dt.time
    ) -> AvailabilityWindow | None:
        """Return the active window with ``start <= time < end``, if any."""
        for window in await self.list_windows(provider_id, day):
            if window.start_time <= time < window.end_time:
                return window
        return None

    async def covers(self, provider_id: str, start: dt.datetime, end: dt.datetime) -> bool:
        """True if ``[start, end)`` fits inside one active window on ``start``'s date."""
        date = start.date()
        tz = start.tzinfo
        for window in await self.list_windows(provider_id, day_of_week(date)):
            if contains(at(date, window.start_time, tz), at(date, window.end_time, tz), start, end):
                return True
        return False
