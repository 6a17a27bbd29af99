"""Half-open date intervals used for availability and revenue calculations"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Optional

from ..errors import InvalidRequest


@dataclass(frozen=True)
class DateInterval:
    """
    Half-open interval [start, end) of calendar dates.

    end=None means open-ended. A contract ending on day X does not block a
    booking starting on day X.
    """

    start: date
    end: Optional[date] = None

    def __post_init__(self):
        if self.start is None:
            raise InvalidRequest("Interval start is required")
        if self.end is not None and self.end <= self.start:
            raise InvalidRequest(
                f"Interval end {self.end.isoformat()} must be after start {self.start.isoformat()}"
            )

    @classmethod
    def from_duration(cls, start: date, duration_days: Optional[int]) -> "DateInterval":
        """Build [start, start + duration_days); None duration means open-ended"""
        if duration_days is None:
            return cls(start, None)
        if duration_days <= 0:
            raise InvalidRequest(f"Duration must be a positive number of days, got {duration_days}")
        return cls(start, start + timedelta(days=duration_days))

    @property
    def is_open_ended(self) -> bool:
        return self.end is None

    def overlaps(self, other: "DateInterval") -> bool:
        return overlaps(self, other)

    def contains(self, day: date) -> bool:
        return self.start <= day and (self.end is None or day < self.end)

    def truncate(self, at: date) -> "DateInterval":
        """Cut the interval at `at`; never extends it."""
        if self.end is not None and at >= self.end:
            return self
        if at <= self.start:
            # Collapse to the first day so that end > start still holds
            return DateInterval(self.start, self.start + timedelta(days=1))
        return DateInterval(self.start, at)

    def intersection(self, other: "DateInterval") -> Optional["DateInterval"]:
        if not overlaps(self, other):
            return None
        start = max(self.start, other.start)
        if self.end is None:
            end = other.end
        elif other.end is None:
            end = self.end
        else:
            end = min(self.end, other.end)
        return DateInterval(start, end)


def overlaps(a: DateInterval, b: DateInterval) -> bool:
    """a.start < b.end AND b.start < a.end, with an open end treated as infinity"""
    a_before_b_end = b.end is None or a.start < b.end
    b_before_a_end = a.end is None or b.start < a.end
    return a_before_b_end and b_before_a_end


def span(intervals: Iterable[DateInterval]) -> DateInterval:
    """Smallest interval covering all given intervals (open-ended if any is)"""
    intervals = list(intervals)
    if not intervals:
        raise InvalidRequest("Cannot compute the span of zero intervals")
    start = min(i.start for i in intervals)
    if any(i.end is None for i in intervals):
        return DateInterval(start, None)
    return DateInterval(start, max(i.end for i in intervals))
