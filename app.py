import os
import logging
import uuid

from flask import Flask, request, jsonify, g
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.middleware.proxy_fix import ProxyFix
from dotenv import load_dotenv

from checkin_api import CheckinAPIClient, CheckinAPIError
from checkin_stats import summarize_by_guard, summarize_by_site
from dashboard_config import load_config
from fetch_orchestrator import (
    DashboardView,
    FetchOrchestrator,
    classify_error_message,
)
from health_monitor import get_status as get_health_status
from query_descriptor import FilterState, PaginationState, parse_date_range

load_dotenv()

# ---------------------------------------------------------------------------
# Sentry error tracking: gated on SENTRY_DSN; silent when unset (local dev)
# ---------------------------------------------------------------------------
_sentry_dsn = os.environ.get("SENTRY_DSN")
if _sentry_dsn:
    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    import requests.exceptions

    def _sentry_before_send(event, hint):
        """Demote expected upstream failures to breadcrumbs."""
        exc_info = hint.get("exc_info")
        if exc_info:
            exc_type, exc_value, _ = exc_info
            if exc_type is not None and issubclass(
                exc_type, (CheckinAPIError, requests.exceptions.RequestException)
            ):
                sentry_sdk.add_breadcrumb(
                    category="checkin_api",
                    message=str(exc_value),
                    level="warning",
                )
                return None
        return event

    sentry_sdk.init(
        dsn=_sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=0.0,
        release=os.environ.get("GIT_COMMIT_SHA"),
        environment=os.environ.get("DEPLOY_ENVIRONMENT", "production"),
        before_send=_sentry_before_send,
    )

CONFIG = load_config()

app = Flask(__name__)

# Behind a reverse proxy: rewrite remote_addr from X-Forwarded-For so the
# rate limiter keys on the real client.
app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Rate limiting: every /api/checkins call may fan out to three upstream
# requests on a cache miss.  In-memory storage is per-process.
# ---------------------------------------------------------------------------
limiter = Limiter(
    get_remote_address,
    app=app,
    default_limits=[CONFIG.rate_limit_default],
    storage_uri="memory://",
)
logging.getLogger("flask-limiter").setLevel(logging.WARNING)

if not os.environ.get("CHECKIN_API_BASE_URL"):
    logger.warning(
        "CHECKIN_API_BASE_URL is not set; using %s. "
        "For local development, copy .env.example to .env and set it.",
        CONFIG.fetch.base_url,
    )

# One orchestrator (and so one request cache) per process.
orchestrator = FetchOrchestrator(
    client=CheckinAPIClient(CONFIG.fetch),
    config=CONFIG,
)


# ---------------------------------------------------------------------------
# Request ID middleware: every request gets a unique ID for log correlation
# ---------------------------------------------------------------------------
@app.before_request
def _assign_request_id():
    g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:10]


@app.after_request
def _echo_request_id(response):
    response.headers["X-Request-ID"] = g.get("request_id", "")
    return response


# ---------------------------------------------------------------------------
# Query parsing
# ---------------------------------------------------------------------------
def _int_arg(name, default):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _parse_dashboard_query():
    """Build (FilterState, PaginationState) from query params.  Raises ValueError."""
    filters = FilterState(
        status=request.args.get("status", "all"),
        guard_id=request.args.get("guardId", "all"),
        site_id=request.args.get("siteId", "all"),
        date_range=parse_date_range(request.args.get("dateRange", "today")),
    )
    page = _int_arg("page", 1)
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    pagination = PaginationState(
        page_index=page - 1,
        page_size=_int_arg("pageSize", CONFIG.paging.default_page_size),
        sort_by=request.args.get("sortBy", "timestamp"),
        sort_order=request.args.get("sortOrder", "desc"),
    )
    return filters, pagination


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.route("/api/checkins")
def api_checkins():
    """Enriched check-in records for one page plus reconciled statistics."""
    try:
        filters, pagination = _parse_dashboard_query()
        result = orchestrator.run(filters, pagination)
    except ValueError as e:
        return jsonify(DashboardView.failure(str(e)).to_dict()), 400
    except CheckinAPIError as e:
        logger.warning("[%s] /api/checkins upstream failure: %s", g.request_id, e)
        return jsonify(DashboardView.failure(classify_error_message(e)).to_dict()), 502

    return jsonify(DashboardView.from_result(result).to_dict())


@app.route("/api/checkins/breakdown")
def api_checkins_breakdown():
    """Per-guard and per-site summaries of the current page."""
    try:
        filters, pagination = _parse_dashboard_query()
        result = orchestrator.run(filters, pagination)
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except CheckinAPIError as e:
        logger.warning("[%s] /api/checkins/breakdown upstream failure: %s", g.request_id, e)
        return jsonify({"error": classify_error_message(e)}), 502

    return jsonify({
        "guards": [row.to_dict() for row in summarize_by_guard(result.records)],
        "sites": [row.to_dict() for row in summarize_by_site(result.records)],
        "statistics": result.statistics.to_dict(),
    })


@app.route("/healthz")
@limiter.exempt
def healthz():
    """Lightweight health-check endpoint for monitoring."""
    missing = [] if os.environ.get("CHECKIN_API_BASE_URL") else ["CHECKIN_API_BASE_URL"]
    upstream = get_health_status()
    down = [name for name, info in upstream.items() if info["status"] == "down"]
    ok = not missing and not down
    return jsonify({
        "status": "ok" if ok else "degraded",
        "missing_keys": missing,
        "upstream": upstream,
        "cache_entries": len(orchestrator.cache),
    }), 200 if ok else 503


if __name__ == "__main__":
    port = int(os.environ.get("PORT", "5000"))
    app.run(host="0.0.0.0", port=port, debug=os.environ.get("FLASK_DEBUG") == "1")
