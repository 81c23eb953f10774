import datetime as dt
from zoneinfo import ZoneInfo

from medibook.scheduling.datetime_helpers import (
    at,
    day_of_week,
    is_minute_precise,
    resolve_timezone,
    system_clock,
    time_to_hhmm,
    to_clinic_time,
)

NY = ZoneInfo("America/New_York")


class TestResolveTimezone:
    def test_valid_name(self) -> None:
        assert resolve_timezone("America/New_York") == NY

    def test_invalid_name_falls_back_to_utc(self) -> None:
        assert resolve_timezone("Mars/Olympus_Mons") == dt.timezone.utc


class TestToClinicTime:
    def test_naive_is_wall_clock(self) -> None:
        value = to_clinic_time(dt.datetime(2026, 3, 2, 9, 0), NY)

        assert value == dt.datetime(2026, 3, 2, 9, 0, tzinfo=NY)

    def test_aware_is_converted(self) -> None:
        value = to_clinic_time(dt.datetime(2026, 3, 2, 14, 0, tzinfo=dt.timezone.utc), NY)

        assert (value.hour, value.tzinfo) == (9, NY)

    def test_seconds_survive(self) -> None:
        value = to_clinic_time(dt.datetime(2026, 3, 2, 9, 0, 15), NY)

        assert not is_minute_precise(value)


class TestHelpers:
    def test_at_combines_date_and_time(self) -> None:
        assert at(dt.date(2026, 3, 2), dt.time(9, 30), NY) == dt.datetime(
            2026, 3, 2, 9, 30, tzinfo=NY
        )

    def test_day_of_week_is_iso(self) -> None:
        assert day_of_week(dt.date(2026, 3, 2)) == 1
        assert day_of_week(dt.date(2026, 3, 8)) == 7

    def test_time_to_hhmm(self) -> None:
        assert time_to_hhmm(dt.time(9, 5)) == "09:05"

    def test_system_clock_is_aware(self) -> None:
        now = system_clock(NY)()

        assert now.tzinfo == NY
