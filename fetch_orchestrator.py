"""
Fetch orchestration for the check-in dashboard.

One fetch cycle:

    filters + pagination
        → QueryDescriptor
        → RequestCache lookup
            hit:  replay the cached composite payload
            miss: fetch records, guards, sites (+ optional complete stats)
                  concurrently → cache.put → cache.sweep
        → enrichment.enrich
        → checkin_stats.reconcile
        → DashboardView

Entry points:
  - run()      one synchronous cycle; raises CheckinAPIError on hard failure
  - refresh()  run() + error classification + publication to the shared view
  - trigger()  debounced refresh(); only the last call in a quiet window runs

Hard failures (transport or non-2xx on any of the three resources) clear
records, guards and sites together, so the view never mixes a fresh record
page with stale reference data.  Malformed but successful envelopes degrade
to empty collections.

In-flight cycles are never cancelled.  Each refresh() gets a sequence
number at dispatch; a result older than the last published one is dropped
instead of overwriting newer data (discard_stale_results).
"""

import logging
import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from checkin_api import CheckinAPIClient, CheckinAPIError, CheckinHTTPError
from checkin_models import Guard, Site, WorkSession, parse_many
from checkin_stats import StatisticsSummary, reconcile
from dashboard_config import DEFAULT_CONFIG, DashboardConfig
from enrichment import EnrichedRecord, enrich
from fetch_trace import TraceContext, clear_trace, get_trace, set_trace
from query_descriptor import (
    FilterState,
    PaginationState,
    QueryDescriptor,
    build_query_descriptor,
)
from request_cache import CompositePayload, RequestCache

logger = logging.getLogger(__name__)


# =============================================================================
# ERROR CLASSIFICATION
# =============================================================================

SESSION_EXPIRED_MESSAGE = "Your session has expired. Please sign in again."
NETWORK_ERROR_MESSAGE = "Network connection failed. Check your connection and try again."
GENERIC_ERROR_MESSAGE = "Failed to load check-in records. Please refresh and try again."

_AUTH_PHRASES = ("401", "403", "unauthorized", "forbidden", "authentication", "invalid token")
_NETWORK_PHRASES = ("network", "connection", "timed out", "timeout", "fetch")


def classify_error_message(error: BaseException) -> str:
    """Map a fetch failure to the message shown in the dashboard alert.

    Authentication problems become a session-expired notice, connectivity
    problems a network notice; anything else passes through unchanged.
    """
    message = str(error)
    if isinstance(error, CheckinHTTPError):
        # The status code is authoritative; the wording carries no hints.
        if error.status_code in (401, 403):
            return SESSION_EXPIRED_MESSAGE
        return message or GENERIC_ERROR_MESSAGE
    if not message:
        return GENERIC_ERROR_MESSAGE
    lowered = message.lower()
    if any(phrase in lowered for phrase in _AUTH_PHRASES):
        return SESSION_EXPIRED_MESSAGE
    if any(phrase in lowered for phrase in _NETWORK_PHRASES):
        return NETWORK_ERROR_MESSAGE
    return message


# =============================================================================
# ENVELOPE NORMALIZATION
# =============================================================================

def normalize_records_envelope(body: Any) -> Dict[str, Any]:
    """Reduce a /records response to {success, data, pagination, statistics, message}.

    ``data`` is always a list.  A success=false envelope keeps its message
    but contributes no rows and no statistics.
    """
    if not isinstance(body, Mapping):
        logger.warning("Records response is not an object (%s); treating as empty",
                       type(body).__name__)
        return {"success": False, "data": [], "pagination": None,
                "statistics": None, "message": ""}

    success = bool(body.get("success"))
    data = body.get("data")
    if not success:
        logger.warning("Records envelope reported success=false: %s", body.get("message", ""))
        data = []
    elif not isinstance(data, list):
        logger.warning("Records envelope data is %s, expected list; treating as empty",
                       type(data).__name__)
        data = []

    pagination = body.get("pagination")
    return {
        "success": success,
        "data": data,
        "pagination": pagination if isinstance(pagination, Mapping) else None,
        "statistics": body.get("statistics") if success else None,
        "message": str(body.get("message") or ""),
    }


def normalize_list_envelope(body: Any, resource: str) -> List[Any]:
    """Extract the data list of a /guards or /sites response; [] when malformed."""
    if not isinstance(body, Mapping) or not body.get("success"):
        logger.warning("%s envelope missing or success=false; using empty list", resource)
        return []
    data = body.get("data")
    if not isinstance(data, list):
        logger.warning("%s envelope data is %s, expected list; using empty list",
                       resource, type(data).__name__)
        return []
    return data


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class PaginationMeta:
    total: int
    page: int            # 1-based
    page_size: int
    total_pages: int

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "page": self.page,
            "pageSize": self.page_size,
            "totalPages": self.total_pages,
            "hasNext": self.has_next,
            "hasPrevious": self.has_previous,
        }


def _int_or(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def pagination_meta(
    pagination: Optional[Mapping[str, Any]],
    descriptor: QueryDescriptor,
    row_count: int,
) -> PaginationMeta:
    """Pagination from the envelope, or derived from the current page when absent."""
    if pagination:
        page_size = _int_or(pagination.get("pageSize"), descriptor.page_size) or descriptor.page_size
        total = _int_or(pagination.get("total"), row_count)
        default_pages = math.ceil(total / page_size) if total else 0
        return PaginationMeta(
            total=total,
            page=_int_or(pagination.get("page"), descriptor.page),
            page_size=page_size,
            total_pages=_int_or(pagination.get("totalPages"), default_pages),
        )
    return PaginationMeta(
        total=row_count,
        page=descriptor.page,
        page_size=descriptor.page_size,
        total_pages=math.ceil(row_count / descriptor.page_size) if row_count else 0,
    )


@dataclass(frozen=True)
class FetchResult:
    descriptor: QueryDescriptor
    records: List[EnrichedRecord]
    guards: List[Guard]
    sites: List[Site]
    statistics: StatisticsSummary
    pagination: PaginationMeta
    from_cache: bool = False


@dataclass(frozen=True)
class DashboardView:
    """What the display layer renders: {records, statistics, loading, error}."""
    records: List[EnrichedRecord] = field(default_factory=list)
    statistics: Optional[StatisticsSummary] = None
    loading: bool = False
    error: str = ""
    pagination: Optional[PaginationMeta] = None
    sequence: int = 0
    from_cache: bool = False

    @classmethod
    def from_result(cls, result: FetchResult, sequence: int = 0) -> "DashboardView":
        return cls(
            records=result.records,
            statistics=result.statistics,
            pagination=result.pagination,
            sequence=sequence,
            from_cache=result.from_cache,
        )

    @classmethod
    def failure(cls, message: str, sequence: int = 0) -> "DashboardView":
        return cls(error=message, sequence=sequence)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "records": [r.to_dict() for r in self.records],
            "statistics": self.statistics.to_dict() if self.statistics else None,
            "loading": self.loading,
            "error": self.error,
            "pagination": self.pagination.to_dict() if self.pagination else None,
            "sequence": self.sequence,
            "fromCache": self.from_cache,
        }


# =============================================================================
# ORCHESTRATOR
# =============================================================================

def _in_thread(parent_trace: Optional[TraceContext], fn, *args):
    """Run fn in a pool thread with the parent cycle's trace attached."""
    set_trace(parent_trace)
    try:
        return fn(*args)
    finally:
        clear_trace()


class FetchOrchestrator:
    def __init__(
        self,
        client: CheckinAPIClient,
        cache: Optional[RequestCache] = None,
        config: DashboardConfig = DEFAULT_CONFIG,
        complete_stats_source: Optional[Callable[[QueryDescriptor], Optional[Dict[str, Any]]]] = None,
        clock: Callable[[], datetime] = datetime.now,
        timer_factory: Callable[..., Any] = threading.Timer,
        discard_stale_results: bool = True,
        on_update: Optional[Callable[[DashboardView], None]] = None,
    ):
        self.client = client
        self.config = config
        self.cache = cache if cache is not None else RequestCache(config.cache.ttl_seconds)
        if complete_stats_source is None and config.fetch.complete_stats_path:
            complete_stats_source = client.get_complete_statistics
        self.complete_stats_source = complete_stats_source
        self.clock = clock
        self.debounce_seconds = config.fetch.debounce_seconds
        self.discard_stale_results = discard_stale_results
        self.on_update = on_update
        self._timer_factory = timer_factory

        self._lock = threading.Lock()
        self._timer = None
        self._trigger_gen = 0
        self._dispatched_seq = 0
        self._applied_seq = 0
        self._view = DashboardView()
        self.guards: List[Guard] = []
        self.sites: List[Site] = []

    # ------------------------------------------------------------------
    # Single cycle
    # ------------------------------------------------------------------

    def run(self, filters: FilterState, pagination: PaginationState) -> FetchResult:
        """Execute one fetch cycle (cache-first).

        Raises:
            ValueError: invalid paging or sort options.
            CheckinAPIError: any of records/guards/sites failed.
        """
        descriptor = build_query_descriptor(filters, pagination, clock=self.clock)

        trace = get_trace()
        owns_trace = trace is None
        if owns_trace:
            trace = TraceContext(trace_id=f"page{descriptor.page}-{int(time.time() * 1000)}")
            set_trace(trace)
        try:
            t_lookup = time.time()
            entry = self.cache.get(descriptor)
            trace.record_stage("cache_lookup", t_lookup, time.time())
            if entry is not None:
                trace.cache_hit = True
                logger.info("Request cache hit for page=%d dateRange=%s",
                            descriptor.page, descriptor.date_range.value)
                return self._assemble(descriptor, entry.payload, from_cache=True)

            t0 = time.time()
            try:
                payload = self._fetch_composite(descriptor, trace)
            except CheckinAPIError as e:
                trace.record_stage("fetch", t0, time.time(),
                                   error_class=type(e).__name__, error_message=str(e))
                logger.warning("Check-in fetch failed (%s): %s", e.resource or "unknown", e)
                raise
            trace.record_stage("fetch", t0, time.time())

            self.cache.put(descriptor, payload)
            self.cache.sweep()
            return self._assemble(descriptor, payload, from_cache=False)
        finally:
            if owns_trace:
                trace.log_summary()
                clear_trace()

    def _fetch_composite(self, descriptor: QueryDescriptor, trace: TraceContext) -> CompositePayload:
        """Fetch records, guards, sites (and complete stats) concurrently.

        Every submitted request runs to completion; the executor context
        waits for all of them even when one has already failed.
        """
        stats_future = None
        with ThreadPoolExecutor(max_workers=self.config.fetch.max_workers + 1) as pool:
            records_future = pool.submit(_in_thread, trace, self.client.get_records, descriptor)
            guards_future = pool.submit(_in_thread, trace, self.client.get_guards)
            sites_future = pool.submit(_in_thread, trace, self.client.get_sites)
            if self.complete_stats_source is not None:
                stats_future = pool.submit(_in_thread, trace, self.complete_stats_source, descriptor)

            records_body = records_future.result()
            guards_body = guards_future.result()
            sites_body = sites_future.result()

            complete_stats = None
            if stats_future is not None:
                try:
                    complete_stats = stats_future.result()
                except Exception as e:
                    # Optional tier: any failure falls through to the next resolver.
                    logger.warning("Complete statistics unavailable, falling back: %s", e,
                                   exc_info=True)

        return CompositePayload(
            records_envelope=normalize_records_envelope(records_body),
            guards=normalize_list_envelope(guards_body, "guards"),
            sites=normalize_list_envelope(sites_body, "sites"),
            complete_stats=complete_stats if isinstance(complete_stats, Mapping) else None,
        )

    def _assemble(
        self,
        descriptor: QueryDescriptor,
        payload: CompositePayload,
        from_cache: bool,
    ) -> FetchResult:
        trace = get_trace()
        t0 = time.time()

        envelope = payload.records_envelope
        sessions = parse_many(WorkSession, envelope.get("data"))
        guards = parse_many(Guard, payload.guards)
        sites = parse_many(Site, payload.sites)
        records = enrich(sessions, guards, sites)
        if trace:
            trace.record_stage("enrich", t0, time.time())

        t1 = time.time()
        statistics = reconcile(payload.complete_stats, envelope.get("statistics"), records)
        if trace:
            trace.record_stage("reconcile", t1, time.time())

        return FetchResult(
            descriptor=descriptor,
            records=records,
            guards=guards,
            sites=sites,
            statistics=statistics,
            pagination=pagination_meta(envelope.get("pagination"), descriptor, len(records)),
            from_cache=from_cache,
        )

    # ------------------------------------------------------------------
    # Published view
    # ------------------------------------------------------------------

    @property
    def view(self) -> DashboardView:
        with self._lock:
            return self._view

    def refresh(self, filters: FilterState, pagination: PaginationState) -> DashboardView:
        """Run a cycle and publish its outcome to the shared view."""
        with self._lock:
            self._dispatched_seq += 1
            seq = self._dispatched_seq
            self._view = replace(self._view, loading=True)

        guards: List[Guard] = []
        sites: List[Site] = []
        try:
            result = self.run(filters, pagination)
            view = DashboardView.from_result(result, seq)
            guards, sites = result.guards, result.sites
        except CheckinAPIError as e:
            view = DashboardView.failure(classify_error_message(e), seq)
        except ValueError as e:
            logger.warning("Rejected dashboard query: %s", e)
            view = DashboardView.failure(str(e), seq)
        except Exception:
            # Timer threads have no caller to re-raise to; the view must settle.
            logger.exception("Unexpected failure in fetch cycle seq=%d", seq)
            view = DashboardView.failure(GENERIC_ERROR_MESSAGE, seq)

        self._publish(view, guards, sites)
        return view

    def _publish(self, view: DashboardView, guards: List[Guard], sites: List[Site]) -> bool:
        with self._lock:
            if self.discard_stale_results and view.sequence < self._applied_seq:
                logger.debug(
                    "Discarding stale fetch result seq=%d (published seq=%d)",
                    view.sequence, self._applied_seq,
                )
                return False
            view = replace(view, loading=view.sequence < self._dispatched_seq)
            self._view = view
            self._applied_seq = view.sequence
            # Failure clears all three collections together.
            self.guards = guards
            self.sites = sites
        if self.on_update is not None:
            self.on_update(view)
        return True

    # ------------------------------------------------------------------
    # Debounce
    # ------------------------------------------------------------------

    def trigger(self, filters: FilterState, pagination: PaginationState) -> None:
        """Schedule a refresh after the quiet period, replacing any pending one."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._trigger_gen += 1
            timer = self._timer_factory(
                self.debounce_seconds, self._fire,
                args=(filters, pagination, self._trigger_gen),
            )
            timer.daemon = True
            self._timer = timer
        timer.start()

    def _fire(self, filters: FilterState, pagination: PaginationState, gen: int) -> None:
        with self._lock:
            # A timer already past cancel() when it was replaced must not run.
            if gen != self._trigger_gen:
                return
            self._timer = None
        self.refresh(filters, pagination)

    def cancel_pending(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._trigger_gen += 1
