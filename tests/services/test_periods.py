"""Tests for date ranges and presets."""

from datetime import date, datetime

import pytest

from nestfin.services.periods import (
    DateRange,
    label_for,
    month_bounds,
    next_month,
    preset_range,
    previous_month,
)

TODAY = date(2024, 3, 15)


class TestDateRange:
    def test_inclusive_bounds(self):
        window = month_bounds(date(2024, 2, 10))

        assert window.contains(datetime(2024, 2, 1))
        assert window.contains(datetime(2024, 2, 29, 23, 59, 59))
        assert not window.contains(datetime(2024, 3, 1))
        assert not window.contains(datetime(2024, 1, 31, 23, 59))

    def test_missing_timestamp_counts_as_pending_time(self):
        pending_at = datetime(2024, 3, 15, 12, 0)
        assert DateRange.all_time().contains(None, pending_at)
        assert month_bounds(TODAY).contains(None, pending_at)
        assert not month_bounds(date(2024, 2, 1)).contains(None, pending_at)
        assert not DateRange(end=datetime(2024, 1, 1)).contains(None, pending_at)

    def test_missing_timestamp_defaults_to_now(self):
        assert DateRange(start=datetime(2024, 1, 1)).contains(None)
        assert not DateRange(end=datetime(2024, 1, 1)).contains(None)

    def test_open_ended(self):
        window = DateRange.between(date(2024, 1, 1), None)
        assert window.contains(datetime(2030, 1, 1))
        assert not window.contains(datetime(2023, 12, 31))

    def test_end_before_start_rejected(self):
        with pytest.raises(ValueError):
            DateRange(start=datetime(2024, 2, 1), end=datetime(2024, 1, 1))


class TestMonths:
    def test_previous_month_across_year(self):
        assert previous_month(date(2024, 1, 31)) == date(2023, 12, 1)

    def test_next_month_across_year(self):
        assert next_month(date(2023, 12, 31)) == date(2024, 1, 1)


class TestPresets:
    @pytest.mark.parametrize(
        "name, start, end",
        [
            ("this_month", date(2024, 3, 1), date(2024, 3, 31)),
            ("last_month", date(2024, 2, 1), date(2024, 2, 29)),
            ("last_30_days", date(2024, 2, 15), TODAY),
            ("year_to_date", date(2024, 1, 1), TODAY),
        ],
    )
    def test_resolves(self, name, start, end):
        window = preset_range(name, TODAY)
        assert window == DateRange.between(start, end)

    def test_all_time(self):
        assert preset_range("all_time", TODAY).is_unbounded

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown range preset"):
            preset_range("fortnight", TODAY)


class TestLabels:
    def test_whole_month(self):
        assert label_for(month_bounds(TODAY)) == "March 2024"

    def test_same_year(self):
        assert label_for(DateRange.between(date(2024, 3, 3), date(2024, 4, 2))) == "Mar 3 - Apr 2, 2024"

    def test_all_time(self):
        assert label_for(DateRange.all_time()) == "All time"

    def test_open_start(self):
        assert label_for(DateRange.between(date(2024, 1, 5), None)) == "Since Jan 5, 2024"
