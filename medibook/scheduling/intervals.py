"""Half-open interval arithmetic.

Every interval is ``[start, end)``: the start is included, the end is not, so
intervals that merely touch do not overlap. The same predicates are used for
window/window, appointment/appointment and slot/appointment checks.
"""

import datetime as dt
from collections.abc import Iterator
from typing import Any, Protocol, TypeVar


class _Comparable(Protocol):
    def __lt__(self, other: Any, /) -> bool: ...

    def __le__(self, other: Any, /) -> bool: ...


T = TypeVar("T", bound=_Comparable)


def overlaps(a_start: T, a_end: T, b_start: T, b_end: T) -> bool:
    """Return True iff ``[a_start, a_end)`` and ``[b_start, b_end)`` intersect."""
    return a_start < b_end and b_start < a_end


def contains(outer_start: T, outer_end: T, inner_start: T, inner_end: T) -> bool:
    """Return True iff ``[inner_start, inner_end)`` lies within ``[outer_start, outer_end)``."""
    return outer_start <= inner_start and inner_end <= outer_end


class Partition:
    """Equal-length granules of a window, produced lazily.

    Iterating twice yields the same granules. A trailing granule that would
    run past the window end is dropped, not truncated.
    """

    def __init__(self, start: dt.datetime, end: dt.datetime, granule_minutes: int) -> None:
        if granule_minutes <= 0:
            raise ValueError(f"granule_minutes must be positive, got {granule_minutes}")
        self.start = start
        self.end = end
        self.granule = dt.timedelta(minutes=granule_minutes)

    def __iter__(self) -> Iterator[tuple[dt.datetime, dt.datetime]]:
        current = self.start
        while current + self.granule <= self.end:
            yield current, current + self.granule
            current += self.granule

    def __len__(self) -> int:
        if self.end <= self.start:
            return 0
        return (self.end - self.start) // self.granule

    def __repr__(self) -> str:
        return f"Partition({self.start.isoformat()}, {self.end.isoformat()}, {self.granule})"


def partition(
    window_start: dt.datetime, window_end: dt.datetime, granule_minutes: int
) -> Partition:
    """Split ``[window_start, window_end)`` into ``granule_minutes``-long slots."""
    return Partition(window_start, window_end, granule_minutes)
