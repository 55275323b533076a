"""Unit tests for query_descriptor.py: filter state to request parameters.

Tests cover: date-range expansion (local wall clock, no offset), parameter
omission rules, paging/sort validation, and date-range aliases.
"""

from datetime import datetime

import pytest

from query_descriptor import (
    DateRange,
    FilterState,
    PaginationState,
    build_query_descriptor,
    expand_date_range,
    parse_date_range,
)

NOW = datetime(2024, 3, 15, 14, 30, 45, 123456)


def _build(filters=None, pagination=None):
    return build_query_descriptor(
        filters or FilterState(), pagination or PaginationState(), now=NOW
    )


# =========================================================================
# Date expansion
# =========================================================================

class TestExpandDateRange:
    def test_today_spans_local_calendar_day(self):
        assert expand_date_range(DateRange.TODAY, NOW) == (
            "2024-03-15T00:00:00", "2024-03-15T23:59:59",
        )

    def test_last_7_days_starts_at_midnight(self):
        start, end = expand_date_range(DateRange.LAST_7_DAYS, NOW)
        assert start == "2024-03-08T00:00:00"
        assert end == "2024-03-15T14:30:45"

    def test_last_30_days_crosses_month(self):
        start, end = expand_date_range(DateRange.LAST_30_DAYS, NOW)
        assert start == "2024-02-14T00:00:00"
        assert end == "2024-03-15T14:30:45"

    def test_all_time_has_no_bounds(self):
        assert expand_date_range(DateRange.ALL_TIME, NOW) == (None, None)

    def test_bounds_carry_no_timezone_suffix(self):
        start, end = expand_date_range(DateRange.TODAY, NOW)
        for value in (start, end):
            assert not value.endswith("Z")
            assert "+" not in value
            assert len(value) == 19


# =========================================================================
# Request parameters
# =========================================================================

class TestToParams:
    def test_page_is_one_based(self):
        params = _build(pagination=PaginationState(page_index=2, page_size=50)).to_params()
        assert params["page"] == "3"
        assert params["pageSize"] == "50"

    def test_sort_always_present(self):
        params = _build().to_params()
        assert params["sortBy"] == "timestamp"
        assert params["sortOrder"] == "desc"

    def test_all_filters_omitted(self):
        params = _build().to_params()
        assert "status" not in params
        assert "guardId" not in params
        assert "siteId" not in params

    def test_concrete_filters_included(self):
        filters = FilterState(status="FAILED", guard_id="g7", site_id="s2")
        params = _build(filters=filters).to_params()
        assert params["status"] == "failed"
        assert params["guardId"] == "g7"
        assert params["siteId"] == "s2"

    def test_blank_filter_treated_as_all(self):
        params = _build(filters=FilterState(guard_id="  ")).to_params()
        assert "guardId" not in params

    def test_all_time_omits_date_keys(self):
        params = _build(filters=FilterState(date_range=DateRange.ALL_TIME)).to_params()
        assert "startDate" not in params
        assert "endDate" not in params

    def test_today_includes_date_keys(self):
        params = _build().to_params()
        assert params["startDate"] == "2024-03-15T00:00:00"
        assert params["endDate"] == "2024-03-15T23:59:59"

    def test_clock_used_when_now_not_given(self):
        descriptor = build_query_descriptor(
            FilterState(), PaginationState(), clock=lambda: NOW
        )
        assert descriptor.start_date == "2024-03-15T00:00:00"


# =========================================================================
# Validation
# =========================================================================

class TestValidation:
    @pytest.mark.parametrize("size", [0, -1, 101])
    def test_page_size_out_of_range(self, size):
        with pytest.raises(ValueError, match="page_size"):
            _build(pagination=PaginationState(page_size=size))

    def test_negative_page_index(self):
        with pytest.raises(ValueError, match="page_index"):
            _build(pagination=PaginationState(page_index=-1))

    def test_unknown_sort_field(self):
        with pytest.raises(ValueError, match="sort field"):
            _build(pagination=PaginationState(sort_by="distance"))

    def test_unknown_sort_order(self):
        with pytest.raises(ValueError, match="sort order"):
            _build(pagination=PaginationState(sort_order="sideways"))

    def test_max_page_size_accepted(self):
        assert _build(pagination=PaginationState(page_size=100)).page_size == 100


class TestParseDateRange:
    @pytest.mark.parametrize("raw,expected", [
        ("today", DateRange.TODAY),
        ("last-7-days", DateRange.LAST_7_DAYS),
        ("week", DateRange.LAST_7_DAYS),
        ("month", DateRange.LAST_30_DAYS),
        ("ALL", DateRange.ALL_TIME),
        ("all-time", DateRange.ALL_TIME),
        (None, DateRange.TODAY),
        ("", DateRange.TODAY),
    ])
    def test_known_values(self, raw, expected):
        assert parse_date_range(raw) is expected

    def test_enum_passthrough(self):
        assert parse_date_range(DateRange.LAST_30_DAYS) is DateRange.LAST_30_DAYS

    def test_unknown_raises(self):
        with pytest.raises(ValueError, match="Unknown date range"):
            parse_date_range("fortnight")
