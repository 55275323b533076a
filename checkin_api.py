"""
HTTP layer for the upstream check-in service.

All check-in service requests go through CheckinAPIClient.  It provides:
- One fresh requests.Session per request (the orchestrator calls it from
  pool threads; Session is not thread-safe)
- Bearer token injection when CHECKIN_API_TOKEN is configured
- Error classification into HTTP status vs. transport failures
- fetch_trace and health_monitor integration for observability

The client returns parsed JSON bodies unchanged.  Envelope normalization
(success flag, malformed data) is the orchestrator's job, because a
success=false envelope is a soft degradation, not a hard failure.
"""

import logging
import time
from typing import Any, Dict, Optional

import requests

from dashboard_config import FetchConfig
from fetch_trace import get_trace
from health_monitor import record_call
from query_descriptor import QueryDescriptor

logger = logging.getLogger(__name__)


class CheckinAPIError(Exception):
    """Base class for failures that abort a fetch cycle."""

    def __init__(self, message: str, resource: str = ""):
        super().__init__(message)
        self.resource = resource


class CheckinHTTPError(CheckinAPIError):
    """The service answered with a non-2xx status."""

    def __init__(self, message: str, resource: str = "", status_code: int = 0):
        super().__init__(message, resource)
        self.status_code = status_code


class CheckinTransportError(CheckinAPIError):
    """No usable response: timeout, connection failure, or non-JSON body."""

    pass


class CheckinAPIClient:
    def __init__(self, config: Optional[FetchConfig] = None):
        self.config = config or FetchConfig()
        self.base_url = self.config.base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        return headers

    def _get(
        self,
        resource: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
    ) -> Any:
        """GET one resource and return its parsed JSON body.

        Raises:
            CheckinHTTPError: non-2xx status.
            CheckinTransportError: timeout, connection error, or non-JSON body.
        """
        url = f"{self.base_url}{path}"
        trace = get_trace()
        start = time.monotonic()
        try:
            session = requests.Session()
            session.trust_env = False
            resp = session.get(
                url,
                params=params,
                headers=self._headers(),
                timeout=self.config.timeout,
            )
        except requests.exceptions.Timeout:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            if trace:
                trace.record_api_call(resource, elapsed_ms, 0, "timeout")
            record_call(resource, False, elapsed_ms, "timeout")
            raise CheckinTransportError(
                f"Request for {resource} timed out after {self.config.timeout}s",
                resource,
            )
        except requests.exceptions.RequestException as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            if trace:
                trace.record_api_call(resource, elapsed_ms, 0, "transport")
            record_call(resource, False, elapsed_ms, str(e))
            raise CheckinTransportError(
                f"Network error while fetching {resource}: {e}", resource
            ) from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        status_code = resp.status_code

        if not 200 <= status_code < 300:
            if trace:
                trace.record_api_call(resource, elapsed_ms, status_code, "http_error")
            record_call(resource, False, elapsed_ms, f"HTTP {status_code}")
            raise CheckinHTTPError(
                f"Could not load {resource}: HTTP {status_code}",
                resource,
                status_code,
            )

        try:
            body = resp.json()
        except ValueError:
            if trace:
                trace.record_api_call(resource, elapsed_ms, status_code, "parse_error")
            record_call(resource, False, elapsed_ms, "non-JSON body")
            raise CheckinTransportError(
                f"Check-in service returned non-JSON response for {resource} "
                f"(HTTP {status_code})",
                resource,
            )

        if trace:
            # success=false is still a 2xx answer; the orchestrator degrades it.
            soft = isinstance(body, dict) and body.get("success") is False
            trace.record_api_call(
                resource, elapsed_ms, status_code, "soft_failure" if soft else "ok"
            )
        record_call(resource, True, elapsed_ms)
        return body

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    def get_records(self, descriptor: QueryDescriptor) -> Any:
        return self._get("records", self.config.records_path, descriptor.to_params())

    def get_guards(self) -> Any:
        return self._get("guards", self.config.guards_path)

    def get_sites(self) -> Any:
        return self._get("sites", self.config.sites_path)

    def get_complete_statistics(self, descriptor: QueryDescriptor) -> Optional[Dict[str, Any]]:
        """Statistics across all rows matching the descriptor's filters.

        Returns None when the endpoint is not configured or its envelope
        carries no usable statistics block.  Paging and sort params are not
        sent; the counts are page-independent.
        """
        if not self.config.complete_stats_path:
            return None
        params = {
            k: v for k, v in descriptor.to_params().items()
            if k not in ("page", "pageSize", "sortBy", "sortOrder")
        }
        body = self._get("complete_stats", self.config.complete_stats_path, params)
        if not isinstance(body, dict) or not body.get("success"):
            return None
        data = body.get("data")
        return data if isinstance(data, dict) else None
