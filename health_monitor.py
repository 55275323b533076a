"""
Passive health tracking for the upstream check-in service.

The API client reports every call it makes (records, guards, sites and the
optional complete-statistics endpoint) via record_call().  Health per
resource is the success rate over the last _WINDOW_SIZE calls:

    >= 0.95  healthy
    >= 0.70  degraded
    <  0.70  down
    no calls unknown

Nothing polls the service on a schedule.  It is only contacted while someone
is looking at the dashboard, so the window simply ages with real traffic.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional

logger = logging.getLogger(__name__)

_WINDOW_SIZE = 50
_HEALTHY_THRESHOLD = 0.95
_DEGRADED_THRESHOLD = 0.70

MONITORED_RESOURCES = ("records", "guards", "sites", "complete_stats")


@dataclass
class HealthCheckResult:
    resource: str
    status: str          # "healthy" | "degraded" | "down" | "unknown"
    latency_ms: int = 0
    last_checked: str = ""
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "status": self.status,
            "latency_ms": self.latency_ms,
            "last_checked": self.last_checked,
        }
        if self.error:
            d["error"] = self.error
        d.update(self.details)
        return d


@dataclass
class _CallRecord:
    timestamp: float
    success: bool
    latency_ms: int
    error: Optional[str] = None


def _status_for_rate(rate: float) -> str:
    if rate >= _HEALTHY_THRESHOLD:
        return "healthy"
    if rate >= _DEGRADED_THRESHOLD:
        return "degraded"
    return "down"


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class HealthMonitor:
    """Rolling call windows per upstream resource.  Safe across threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._passive: Dict[str, Deque[_CallRecord]] = {
            name: deque(maxlen=_WINDOW_SIZE) for name in MONITORED_RESOURCES
        }
        self._last_status: Dict[str, str] = {}

    def record_call(
        self,
        resource: str,
        success: bool,
        latency_ms: int,
        error: Optional[str] = None,
    ) -> None:
        record = _CallRecord(time.time(), success, latency_ms, error)
        with self._lock:
            self._passive.setdefault(resource, deque(maxlen=_WINDOW_SIZE)).append(record)

    def compute_status(self, resource: str) -> HealthCheckResult:
        with self._lock:
            window = list(self._passive.get(resource, ()))

        if not window:
            return HealthCheckResult(
                resource=resource,
                status="unknown",
                last_checked=datetime.now(timezone.utc).isoformat(),
                details={"sample_size": 0},
            )

        failures = [r for r in window if not r.success]
        rate = 1 - len(failures) / len(window)
        status = _status_for_rate(rate)
        last_error = next((r.error for r in reversed(failures) if r.error), None)

        with self._lock:
            previous = self._last_status.get(resource)
            self._last_status[resource] = status
        if previous and previous != status:
            logger.warning(
                "[health] %s status changed: %s -> %s (error=%s)",
                resource, previous, status, last_error,
            )

        return HealthCheckResult(
            resource=resource,
            status=status,
            latency_ms=int(sum(r.latency_ms for r in window) / len(window)),
            last_checked=_iso(window[-1].timestamp),
            error=last_error,
            details={"success_rate": round(rate, 3), "sample_size": len(window)},
        )

    def get_all_status(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            resources = list(self._passive)
        return {name: self.compute_status(name).to_dict() for name in resources}


# Process-wide instance shared by the API client and /healthz.
_monitor = HealthMonitor()


def record_call(
    resource: str,
    success: bool,
    latency_ms: int,
    error: Optional[str] = None,
) -> None:
    _monitor.record_call(resource, success, latency_ms, error)


def get_status() -> Dict[str, Dict[str, Any]]:
    return _monitor.get_all_status()
