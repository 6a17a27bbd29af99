"""Tests for DateInterval and the overlap predicate."""

from datetime import date

import pytest

from shelfrent.errors import InvalidRequest
from shelfrent.shared.intervals import DateInterval, overlaps, span


def d(month, day, year=2025):
    return date(year, month, day)


class TestConstruction:
    def test_end_must_be_after_start(self):
        with pytest.raises(InvalidRequest):
            DateInterval(d(3, 1), d(3, 1))
        with pytest.raises(InvalidRequest):
            DateInterval(d(3, 2), d(3, 1))

    def test_open_ended(self):
        interval = DateInterval(d(3, 1))
        assert interval.is_open_ended
        assert interval.contains(d(12, 31, 2099))

    def test_from_duration(self):
        interval = DateInterval.from_duration(d(1, 30), 30)
        assert interval.end == d(3, 1)
        assert DateInterval.from_duration(d(1, 1), None).is_open_ended

    @pytest.mark.parametrize("days", [0, -5])
    def test_from_duration_rejects_non_positive(self, days):
        with pytest.raises(InvalidRequest):
            DateInterval.from_duration(d(1, 1), days)

    def test_contains_is_half_open(self):
        interval = DateInterval(d(3, 1), d(3, 10))
        assert interval.contains(d(3, 1))
        assert interval.contains(d(3, 9))
        assert not interval.contains(d(3, 10))


class TestOverlap:
    @pytest.mark.parametrize(
        "a,b,expected",
        [
            (DateInterval(d(1, 1), d(2, 1)), DateInterval(d(1, 15), d(3, 1)), True),
            (DateInterval(d(1, 1), d(2, 1)), DateInterval(d(2, 1), d(3, 1)), False),
            (DateInterval(d(1, 1)), DateInterval(d(6, 1), d(7, 1)), True),
            (DateInterval(d(6, 1)), DateInterval(d(1, 1), d(6, 1)), False),
            (DateInterval(d(1, 1)), DateInterval(d(9, 1)), True),
            (DateInterval(d(1, 1), d(12, 1)), DateInterval(d(3, 1), d(4, 1)), True),
        ],
    )
    def test_overlap_is_symmetric(self, a, b, expected):
        assert overlaps(a, b) is expected
        assert overlaps(b, a) is expected

    def test_touching_intervals_do_not_overlap(self):
        booked = DateInterval(d(10, 1), d(12, 1))
        follow_up = DateInterval.from_duration(d(12, 1), 30)
        assert not booked.overlaps(follow_up)


class TestTruncateAndSpan:
    def test_truncate_never_extends(self):
        interval = DateInterval(d(1, 1), d(3, 1))
        assert interval.truncate(d(6, 1)) == interval
        assert interval.truncate(d(2, 1)) == DateInterval(d(1, 1), d(2, 1))

    def test_truncate_open_ended(self):
        assert DateInterval(d(1, 1)).truncate(d(2, 1)).end == d(2, 1)

    def test_truncate_before_start_collapses_to_first_day(self):
        interval = DateInterval(d(5, 1), d(8, 1))
        assert interval.truncate(d(4, 1)) == DateInterval(d(5, 1), d(5, 2))

    def test_intersection(self):
        a = DateInterval(d(1, 1), d(3, 1))
        assert a.intersection(DateInterval(d(2, 1))) == DateInterval(d(2, 1), d(3, 1))
        assert a.intersection(DateInterval(d(3, 1), d(4, 1))) is None

    def test_span(self):
        assert span([DateInterval(d(2, 1), d(3, 1)), DateInterval(d(1, 1), d(2, 15))]) == DateInterval(
            d(1, 1), d(3, 1)
        )
        assert span([DateInterval(d(2, 1), d(3, 1)), DateInterval(d(1, 1))]).is_open_ended
        with pytest.raises(InvalidRequest):
            span([])
