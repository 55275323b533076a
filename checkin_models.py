"""
Domain types for work sessions, guards, and sites.

Parses the check-in service's camelCase JSON into dataclasses.  Parsing is
lenient: missing optional fields become None, and numeric fields that are
present but unparseable are treated as missing.  Two wire generations are
accepted for work sessions:

  - current:  startTime / startLatitude / startLongitude / endTime / ...
  - legacy:   timestamp / location {lat, lng} / faceImageUrl
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)


class WorkStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    TIMED_OUT = "timed-out"
    LEGACY = "legacy"


_WORK_STATUS_WIRE = {
    "active": WorkStatus.ACTIVE,
    "completed": WorkStatus.COMPLETED,
    "timeout": WorkStatus.TIMED_OUT,
    "timed-out": WorkStatus.TIMED_OUT,
    "timed_out": WorkStatus.TIMED_OUT,
    "legacy": WorkStatus.LEGACY,
}


def parse_work_status(value: Any) -> WorkStatus:
    """Map a wire status onto the lifecycle enum; unknown values become LEGACY."""
    if value is None:
        return WorkStatus.LEGACY
    return _WORK_STATUS_WIRE.get(str(value).strip().lower(), WorkStatus.LEGACY)


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_int(value: Any, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


@dataclass(frozen=True)
class WorkSession:
    """One guard's check-in/check-out episode."""
    id: str
    guard_id: str
    site_id: str
    start_time: Optional[str]
    start_lat: Optional[float]
    start_lng: Optional[float]
    work_status: WorkStatus
    raw_status: str                 # wire value, kept for check-in outcome mapping
    spot_check_total: int = 0
    spot_check_passed: int = 0
    end_time: Optional[str] = None
    end_lat: Optional[float] = None
    end_lng: Optional[float] = None
    duration_minutes: Optional[int] = None
    start_face_image_url: Optional[str] = None
    end_face_image_url: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "WorkSession":
        location = raw.get("location")
        if not isinstance(location, Mapping):
            location = {}

        start_lat = _as_float(raw.get("startLatitude"))
        start_lng = _as_float(raw.get("startLongitude"))
        if start_lat is None or start_lng is None:
            start_lat = _as_float(location.get("lat"))
            start_lng = _as_float(location.get("lng"))

        duration = raw.get("durationMinutes")
        return cls(
            id=str(raw.get("id", "")),
            guard_id=str(raw.get("guardId", "")),
            site_id=str(raw.get("siteId", "")),
            start_time=_as_str(raw.get("startTime") or raw.get("timestamp")),
            start_lat=start_lat,
            start_lng=start_lng,
            work_status=parse_work_status(raw.get("status")),
            raw_status="" if raw.get("status") is None else str(raw.get("status")),
            spot_check_total=_as_int(raw.get("spotCheckTotal")),
            spot_check_passed=_as_int(raw.get("spotCheckPassed")),
            end_time=_as_str(raw.get("endTime")),
            end_lat=_as_float(raw.get("endLatitude")),
            end_lng=_as_float(raw.get("endLongitude")),
            duration_minutes=None if duration is None else _as_int(duration),
            start_face_image_url=_as_str(
                raw.get("startFaceImageUrl") or raw.get("faceImageUrl")
            ),
            end_face_image_url=_as_str(raw.get("endFaceImageUrl")),
            reason=_as_str(raw.get("reason")),
        )

    @property
    def has_start_coordinate(self) -> bool:
        return self.start_lat is not None and self.start_lng is not None


@dataclass(frozen=True)
class Guard:
    id: str
    name: str
    phone_number: str = ""
    site_id: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Guard":
        return cls(
            id=str(raw.get("id", "")),
            name=str(raw.get("name") or ""),
            phone_number=str(raw.get("phoneNumber") or ""),
            site_id=_as_str(raw.get("siteId")),
        )


@dataclass(frozen=True)
class Site:
    id: str
    name: str
    latitude: Optional[float]
    longitude: Optional[float]
    allowed_radius_m: Optional[float] = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Site":
        return cls(
            id=str(raw.get("id", "")),
            name=str(raw.get("name") or ""),
            latitude=_as_float(raw.get("latitude")),
            longitude=_as_float(raw.get("longitude")),
            allowed_radius_m=_as_float(raw.get("allowedRadiusMeters")),
        )

    @property
    def has_coordinate(self) -> bool:
        return self.latitude is not None and self.longitude is not None


def parse_many(cls, items) -> list:
    """Parse a list of wire dicts, skipping (and logging) non-dict entries."""
    parsed = []
    for item in items or []:
        if not isinstance(item, Mapping):
            logger.warning("Skipping malformed %s entry: %r", cls.__name__, item)
            continue
        parsed.append(cls.from_dict(item))
    return parsed
