"""
Runtime configuration for the guard check-in monitor.

Owns every tunable constant of the retrieval pipeline: upstream endpoints,
cache TTL, debounce window, paging limits, and the geofence fallback radius.

Frozen dataclasses provide type checking and IDE support without
the indirection of YAML/JSON config files.  Environment variables (loaded
from .env via python-dotenv) override the defaults in load_config().
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv


# =============================================================================
# Dataclasses
# =============================================================================

@dataclass(frozen=True)
class CacheConfig:
    """Request cache lifetime."""
    ttl_seconds: float = 300.0  # 5 minutes


@dataclass(frozen=True)
class FetchConfig:
    """Upstream check-in API endpoints and client behaviour."""
    base_url: str = "http://localhost:8080/api"
    token: Optional[str] = None
    timeout: float = 10.0  # seconds
    records_path: str = "/records"
    guards_path: str = "/guards"
    sites_path: str = "/sites"
    # Optional dedicated "all matching rows" statistics endpoint; None disables it.
    complete_stats_path: Optional[str] = None
    debounce_seconds: float = 0.3
    max_workers: int = 3


@dataclass(frozen=True)
class PagingConfig:
    default_page_size: int = 20
    max_page_size: int = 100


@dataclass(frozen=True)
class GeofenceConfig:
    """Distance anomaly policy."""
    default_allowed_radius_m: float = 500.0


@dataclass(frozen=True)
class DashboardConfig:
    cache: CacheConfig = field(default_factory=CacheConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    paging: PagingConfig = field(default_factory=PagingConfig)
    geofence: GeofenceConfig = field(default_factory=GeofenceConfig)
    rate_limit_default: str = "120/minute"


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_CONFIG = DashboardConfig()

VALID_SORT_FIELDS = ("timestamp", "guardId", "siteId", "status")
VALID_SORT_ORDERS = ("asc", "desc")


# =============================================================================
# Environment loading
# =============================================================================

def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def load_config() -> DashboardConfig:
    """Build a DashboardConfig from the environment (and .env, if present).

    Unset variables keep the defaults above.  Malformed numeric values
    raise ValueError at startup rather than failing mid-request.
    """
    load_dotenv()

    fetch_defaults = FetchConfig()
    fetch = FetchConfig(
        base_url=os.environ.get("CHECKIN_API_BASE_URL", fetch_defaults.base_url).rstrip("/"),
        token=os.environ.get("CHECKIN_API_TOKEN") or None,
        timeout=_env_float("CHECKIN_API_TIMEOUT", fetch_defaults.timeout),
        records_path=os.environ.get("CHECKIN_RECORDS_PATH", fetch_defaults.records_path),
        guards_path=os.environ.get("CHECKIN_GUARDS_PATH", fetch_defaults.guards_path),
        sites_path=os.environ.get("CHECKIN_SITES_PATH", fetch_defaults.sites_path),
        complete_stats_path=os.environ.get("CHECKIN_COMPLETE_STATS_PATH") or None,
        debounce_seconds=_env_int("DEBOUNCE_MS", 300) / 1000.0,
    )
    return DashboardConfig(
        cache=CacheConfig(
            ttl_seconds=_env_float("CACHE_TTL_SECONDS", CacheConfig().ttl_seconds),
        ),
        fetch=fetch,
        paging=PagingConfig(
            default_page_size=_env_int("DEFAULT_PAGE_SIZE", PagingConfig().default_page_size),
        ),
        rate_limit_default=os.environ.get(
            "RATE_LIMIT_DEFAULT", DEFAULT_CONFIG.rate_limit_default
        ),
    )
