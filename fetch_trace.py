"""
Per-cycle tracing for check-in fetches.

Provides a thread-local TraceContext that records:
  - Per-stage timing (cache_lookup, fetch, enrich, reconcile)
  - Per-upstream-call timing (resource, elapsed_ms, HTTP status, outcome)
  - End-of-cycle summary (total elapsed, api calls, cache hit, outcome)

Usage:
    from fetch_trace import TraceContext, get_trace, set_trace, clear_trace

    # In the orchestrator, once per cycle:
    ctx = TraceContext(trace_id=f"cycle-{seq}")
    set_trace(ctx)
    ...
    ctx.log_summary()
    clear_trace()

    # In the API client:
    trace = get_trace()
    if trace:
        trace.record_api_call(...)

Pool threads do not inherit thread-locals; the orchestrator calls
set_trace(parent) inside each submitted task.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Data classes for trace records
# =============================================================================

@dataclass
class APICallRecord:
    """One upstream HTTP call."""
    resource: str          # "records" | "guards" | "sites" | "complete_stats"
    elapsed_ms: int
    status_code: int       # 0 when no response was received
    outcome: str = ""      # "ok" | "http_error" | "timeout" | "transport" | "parse_error" | "soft_failure"


@dataclass
class StageRecord:
    stage_name: str
    elapsed_ms: int = 0
    error_class: str = ""
    error_message: str = ""


# =============================================================================
# Trace context
# =============================================================================

@dataclass
class TraceContext:
    """Accumulates timing data for a single fetch cycle."""
    trace_id: str
    cycle_start: float = field(default_factory=time.time)
    stages: List[StageRecord] = field(default_factory=list)
    api_calls: List[APICallRecord] = field(default_factory=list)
    cache_hit: bool = False

    def record_stage(
        self,
        stage_name: str,
        start_ts: float,
        end_ts: float,
        error_class: str = "",
        error_message: str = "",
    ):
        rec = StageRecord(
            stage_name=stage_name,
            elapsed_ms=int((end_ts - start_ts) * 1000),
            error_class=error_class,
            error_message=error_message,
        )
        self.stages.append(rec)
        err_info = f" err={error_class}: {error_message}" if error_class else ""
        logger.debug(
            "  [stage] trace=%s %s %dms%s",
            self.trace_id, stage_name, rec.elapsed_ms, err_info,
        )

    def record_api_call(
        self,
        resource: str,
        elapsed_ms: int,
        status_code: int,
        outcome: str = "ok",
    ):
        # list.append is atomic under the GIL; pool threads share this context.
        self.api_calls.append(APICallRecord(
            resource=resource,
            elapsed_ms=elapsed_ms,
            status_code=status_code,
            outcome=outcome,
        ))
        logger.debug(
            "  [api] trace=%s resource=%s ms=%d http=%d outcome=%s",
            self.trace_id, resource, elapsed_ms, status_code, outcome,
        )

    def summary_dict(self) -> Dict[str, Any]:
        total_elapsed = int((time.time() - self.cycle_start) * 1000)
        errored = [s for s in self.stages if s.error_class]
        if errored:
            outcome = "error"
        elif self.cache_hit:
            outcome = "cache_hit"
        else:
            outcome = "success"
        return {
            "trace_id": self.trace_id,
            "total_elapsed_ms": total_elapsed,
            "total_api_calls": len(self.api_calls),
            "cache_hit": self.cache_hit,
            "final_outcome": outcome,
            "calls": [
                {
                    "resource": c.resource,
                    "elapsed_ms": c.elapsed_ms,
                    "status_code": c.status_code,
                    "outcome": c.outcome,
                }
                for c in self.api_calls
            ],
        }

    def log_summary(self):
        """Emit a single structured summary log line."""
        s = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%s total_ms=%d api_calls=%d cache_hit=%s outcome=%s",
            s["trace_id"],
            s["total_elapsed_ms"],
            s["total_api_calls"],
            s["cache_hit"],
            s["final_outcome"],
        )


# =============================================================================
# Thread-local storage
# =============================================================================

_trace_local = threading.local()


def get_trace() -> Optional[TraceContext]:
    """Get the current thread's trace context, or None."""
    return getattr(_trace_local, "ctx", None)


def set_trace(ctx: Optional[TraceContext]):
    _trace_local.ctx = ctx


def clear_trace():
    _trace_local.ctx = None
