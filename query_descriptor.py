"""
Filter state → Query Descriptor.

Turns the dashboard's filter and pagination state into the normalized
descriptor used both as the literal /records request parameters and as the
Request Cache key source.

Date bounds are local wall-clock strings (YYYY-MM-DDTHH:MM:SS) with NO
timezone suffix.  The check-in service reads unsuffixed timestamps as
facility-local time; adding an offset (or sending UTC) shifts the remote
filter window by the local UTC offset without any error.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from dashboard_config import (
    DEFAULT_CONFIG,
    VALID_SORT_FIELDS,
    VALID_SORT_ORDERS,
)

LOCAL_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Sentinel the UI uses for "no filter" on status/guard/site selects.
ALL = "all"


class DateRange(str, Enum):
    TODAY = "today"
    LAST_7_DAYS = "last-7-days"
    LAST_30_DAYS = "last-30-days"
    ALL_TIME = "all-time"


# Accept the short names the original web UI used as aliases.
_DATE_RANGE_ALIASES = {
    "week": DateRange.LAST_7_DAYS,
    "month": DateRange.LAST_30_DAYS,
    "all": DateRange.ALL_TIME,
}


def parse_date_range(value) -> DateRange:
    """Coerce a wire/UI value into a DateRange; raises ValueError if unknown."""
    if isinstance(value, DateRange):
        return value
    if value is None or value == "":
        return DateRange.TODAY
    text = str(value).strip().lower()
    if text in _DATE_RANGE_ALIASES:
        return _DATE_RANGE_ALIASES[text]
    try:
        return DateRange(text)
    except ValueError:
        raise ValueError(f"Unknown date range: {value!r}")


@dataclass(frozen=True)
class FilterState:
    """Filter selections as the UI holds them ('all' means unfiltered)."""
    status: str = ALL
    guard_id: str = ALL
    site_id: str = ALL
    date_range: DateRange = DateRange.TODAY


@dataclass(frozen=True)
class PaginationState:
    page_index: int = 0  # 0-based, as table widgets count
    page_size: int = DEFAULT_CONFIG.paging.default_page_size
    sort_by: str = "timestamp"
    sort_order: str = "desc"


@dataclass(frozen=True)
class QueryDescriptor:
    """Normalized /records query.

    ``page_index`` is 0-based; ``to_params`` converts to the 1-based page
    number the service expects.  Optional filters are None when unset.
    """
    page_index: int
    page_size: int
    sort_by: str
    sort_order: str
    date_range: DateRange
    status: Optional[str] = None
    guard_id: Optional[str] = None
    site_id: Optional[str] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None

    @property
    def page(self) -> int:
        return self.page_index + 1

    def to_params(self) -> Dict[str, str]:
        """Literal request parameters.  Unset filters and bounds are omitted."""
        params = {
            "page": str(self.page),
            "pageSize": str(self.page_size),
            "sortBy": self.sort_by,
            "sortOrder": self.sort_order,
        }
        if self.start_date is not None and self.end_date is not None:
            params["startDate"] = self.start_date
            params["endDate"] = self.end_date
        if self.status is not None:
            params["status"] = self.status
        if self.guard_id is not None:
            params["guardId"] = self.guard_id
        if self.site_id is not None:
            params["siteId"] = self.site_id
        return params


# =============================================================================
# DATE EXPANSION
# =============================================================================

def format_local_datetime(value: datetime) -> str:
    """Seconds-precision local wall-clock string, no offset suffix."""
    return value.strftime(LOCAL_DATETIME_FORMAT)


def _local_midnight(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def expand_date_range(
    date_range: DateRange, now: datetime
) -> Tuple[Optional[str], Optional[str]]:
    """Return (start, end) bounds for a date range, or (None, None) for all-time.

    ``now`` must be a naive local datetime.
    """
    if date_range == DateRange.TODAY:
        start = _local_midnight(now)
        end = now.replace(hour=23, minute=59, second=59, microsecond=999000)
    elif date_range == DateRange.LAST_7_DAYS:
        start = _local_midnight(now - timedelta(days=7))
        end = now
    elif date_range == DateRange.LAST_30_DAYS:
        start = _local_midnight(now - timedelta(days=30))
        end = now
    else:
        return None, None
    return format_local_datetime(start), format_local_datetime(end)


# =============================================================================
# BUILDER
# =============================================================================

def _optional_filter(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() == ALL:
        return None
    return text


def build_query_descriptor(
    filters: FilterState,
    pagination: PaginationState,
    now: Optional[datetime] = None,
    clock: Callable[[], datetime] = datetime.now,
) -> QueryDescriptor:
    """Build the Query Descriptor for the current filter + pagination state.

    Raises ValueError for out-of-range paging or unknown sort options.
    """
    if pagination.page_index < 0:
        raise ValueError(f"page_index must be >= 0, got {pagination.page_index}")
    max_size = DEFAULT_CONFIG.paging.max_page_size
    if not 1 <= pagination.page_size <= max_size:
        raise ValueError(
            f"page_size must be between 1 and {max_size}, got {pagination.page_size}"
        )
    if pagination.sort_by not in VALID_SORT_FIELDS:
        raise ValueError(f"Unknown sort field: {pagination.sort_by!r}")
    if pagination.sort_order not in VALID_SORT_ORDERS:
        raise ValueError(f"Unknown sort order: {pagination.sort_order!r}")

    date_range = parse_date_range(filters.date_range)
    start_date, end_date = expand_date_range(date_range, now or clock())

    status = _optional_filter(filters.status)
    return QueryDescriptor(
        page_index=pagination.page_index,
        page_size=pagination.page_size,
        sort_by=pagination.sort_by,
        sort_order=pagination.sort_order,
        date_range=date_range,
        status=status.lower() if status else None,
        guard_id=_optional_filter(filters.guard_id),
        site_id=_optional_filter(filters.site_id),
        start_date=start_date,
        end_date=end_date,
    )
