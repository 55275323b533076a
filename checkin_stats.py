"""
Statistics reconciliation for the check-in dashboard.

Three sources can describe the same filtered result set:

  1. a dedicated complete-statistics source (all matching rows),
  2. the ``statistics`` block embedded in the /records envelope,
  3. the rows of the current page.

They are tried in that order by STATISTICS_RESOLVERS; the first that
produces a summary wins.  Every summary carries a provenance flag so the
display layer can disclose when counts cover only the visible page.
Adding a source means adding a resolver to the tuple, nothing else.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from enrichment import CheckinStatus, EnrichedRecord

logger = logging.getLogger(__name__)


class Provenance(str, Enum):
    COMPLETE = "complete"      # counts over every row matching the filter
    PAGE_ONLY = "page-only"    # counts over the current page only (degraded)


PAGE_ONLY_DISCLOSURE = (
    "Statistics reflect only the records on the current page, not every "
    "record matching the filters."
)


@dataclass(frozen=True)
class StatisticsSummary:
    total: int
    successful: int
    failed: int
    pending: int
    success_rate: float        # percent, 0-100
    provenance: Provenance
    source: str                # resolver that produced it

    @property
    def is_complete(self) -> bool:
        return self.provenance == Provenance.COMPLETE

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "pending": self.pending,
            "successRate": self.success_rate,
            "provenance": self.provenance.value,
            "source": self.source,
        }
        if not self.is_complete:
            d["disclosure"] = PAGE_ONLY_DISCLOSURE
        return d


# =============================================================================
# RESOLVERS
# =============================================================================

@dataclass(frozen=True)
class StatisticsInputs:
    complete_stats: Optional[Mapping[str, Any]]
    envelope_stats: Optional[Mapping[str, Any]]
    page_records: Sequence[EnrichedRecord] = field(default_factory=tuple)


def _int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _summary_from_block(
    block: Optional[Mapping[str, Any]], source: str
) -> Optional[StatisticsSummary]:
    """Read a wire statistics block.  Anything that is not a mapping is absent."""
    if not isinstance(block, Mapping):
        return None
    return StatisticsSummary(
        total=_int(block.get("totalRecords")),
        successful=_int(block.get("successCount")),
        failed=_int(block.get("failedCount")),
        pending=_int(block.get("pendingCount")),
        success_rate=_float(block.get("successRate")),
        provenance=Provenance.COMPLETE,
        source=source,
    )


def resolve_complete_source(inputs: StatisticsInputs) -> Optional[StatisticsSummary]:
    return _summary_from_block(inputs.complete_stats, "complete_source")


def resolve_envelope(inputs: StatisticsInputs) -> Optional[StatisticsSummary]:
    return _summary_from_block(inputs.envelope_stats, "envelope")


def resolve_page(inputs: StatisticsInputs) -> Optional[StatisticsSummary]:
    records = inputs.page_records
    successful = sum(1 for r in records if r.status == CheckinStatus.SUCCESS)
    failed = sum(1 for r in records if r.status == CheckinStatus.FAILED)
    pending = sum(1 for r in records if r.status == CheckinStatus.PENDING)
    rate = round(successful / len(records) * 100) if records else 0
    return StatisticsSummary(
        total=len(records),
        successful=successful,
        failed=failed,
        pending=pending,
        success_rate=rate,
        provenance=Provenance.PAGE_ONLY,
        source="page",
    )


STATISTICS_RESOLVERS: Tuple[Callable[[StatisticsInputs], Optional[StatisticsSummary]], ...] = (
    resolve_complete_source,
    resolve_envelope,
    resolve_page,
)


def reconcile(
    complete_stats: Optional[Mapping[str, Any]],
    envelope_stats: Optional[Mapping[str, Any]],
    page_records: Sequence[EnrichedRecord],
) -> StatisticsSummary:
    """Resolve the three statistics sources into one provenance-tagged summary."""
    inputs = StatisticsInputs(
        complete_stats=complete_stats,
        envelope_stats=envelope_stats,
        page_records=tuple(page_records),
    )
    for resolver in STATISTICS_RESOLVERS:
        summary = resolver(inputs)
        if summary is not None:
            if not summary.is_complete:
                logger.info(
                    "No complete statistics available; using current page (%d records)",
                    summary.total,
                )
            return summary
    # resolve_page always answers; reaching here means the tuple was edited.
    raise RuntimeError("No statistics resolver produced a summary")


# =============================================================================
# BREAKDOWNS: per guard / per site over enriched records
# =============================================================================

@dataclass
class GuardBreakdown:
    guard_id: str
    guard_name: str
    total: int = 0
    successful: int = 0
    failed: int = 0
    success_rate: int = 0
    avg_distance_m: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "guardId": self.guard_id,
            "guardName": self.guard_name,
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "successRate": self.success_rate,
            "avgDistance": self.avg_distance_m,
        }


@dataclass
class SiteBreakdown:
    site_id: str
    site_name: str
    total: int = 0
    successful: int = 0
    failed: int = 0
    success_rate: int = 0
    unique_guards: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "siteId": self.site_id,
            "siteName": self.site_name,
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "successRate": self.success_rate,
            "uniqueGuards": self.unique_guards,
        }


def _rate(successful: int, total: int) -> int:
    return round(successful / total * 100) if total else 0


def summarize_by_guard(records: Sequence[EnrichedRecord]) -> List[GuardBreakdown]:
    """Per-guard totals, busiest guard first."""
    rows: Dict[str, GuardBreakdown] = {}
    distances: Dict[str, List[float]] = defaultdict(list)
    for r in records:
        row = rows.get(r.guard_id)
        if row is None:
            row = rows[r.guard_id] = GuardBreakdown(r.guard_id, r.guard_name)
        row.total += 1
        if r.status == CheckinStatus.SUCCESS:
            row.successful += 1
        elif r.status == CheckinStatus.FAILED:
            row.failed += 1
        if r.distance_from_site_m is not None:
            distances[r.guard_id].append(r.distance_from_site_m)

    for guard_id, row in rows.items():
        row.success_rate = _rate(row.successful, row.total)
        if distances[guard_id]:
            row.avg_distance_m = sum(distances[guard_id]) / len(distances[guard_id])
    return sorted(rows.values(), key=lambda row: (-row.total, row.guard_id))


def summarize_by_site(records: Sequence[EnrichedRecord]) -> List[SiteBreakdown]:
    """Per-site totals, busiest site first."""
    rows: Dict[str, SiteBreakdown] = {}
    guards: Dict[str, set] = defaultdict(set)
    for r in records:
        row = rows.get(r.site_id)
        if row is None:
            row = rows[r.site_id] = SiteBreakdown(r.site_id, r.site_name)
        row.total += 1
        if r.status == CheckinStatus.SUCCESS:
            row.successful += 1
        elif r.status == CheckinStatus.FAILED:
            row.failed += 1
        guards[r.site_id].add(r.guard_id)

    for site_id, row in rows.items():
        row.success_rate = _rate(row.successful, row.total)
        row.unique_guards = len(guards[site_id])
    return sorted(rows.values(), key=lambda row: (-row.total, row.site_id))
