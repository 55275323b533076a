"""
Enrichment join: work sessions + guards + sites → display records.

Builds id-keyed lookup maps once per pass (O(G + S)) and denormalizes each
session in O(1).  A session whose guard or site is missing from the
reference lists is kept, with a placeholder name that embeds the missing id.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional

from checkin_models import Guard, Site, WorkSession, WorkStatus
from geofence import effective_radius_m, haversine_m, is_distance_anomaly

logger = logging.getLogger(__name__)


class CheckinStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


_VALID_CHECKIN_STATUSES = {s.value: s for s in CheckinStatus}

UNKNOWN_GUARD_TEMPLATE = "Unknown guard (ID: {id})"
UNKNOWN_SITE_TEMPLATE = "Unknown site (ID: {id})"


def normalize_checkin_status(raw_status: Optional[str]) -> CheckinStatus:
    """Lowercase and validate; anything outside success/failed/pending is pending."""
    if raw_status is None:
        return CheckinStatus.PENDING
    return _VALID_CHECKIN_STATUSES.get(str(raw_status).strip().lower(), CheckinStatus.PENDING)


@dataclass(frozen=True)
class EnrichedRecord:
    """A work session joined with its guard and site for display."""
    session: WorkSession
    status: CheckinStatus
    guard_name: str
    guard_phone: str
    site_name: str
    site_lat: Optional[float]
    site_lng: Optional[float]
    site_allowed_radius_m: Optional[float]
    distance_from_site_m: Optional[float]   # None = not computed; 0.0 is a real distance
    distance_anomaly: bool

    @property
    def id(self) -> str:
        return self.session.id

    @property
    def guard_id(self) -> str:
        return self.session.guard_id

    @property
    def site_id(self) -> str:
        return self.session.site_id

    @property
    def work_status(self) -> WorkStatus:
        return self.session.work_status

    def to_dict(self) -> dict:
        s = self.session
        return {
            "id": s.id,
            "guardId": s.guard_id,
            "siteId": s.site_id,
            "startTime": s.start_time,
            "startLatitude": s.start_lat,
            "startLongitude": s.start_lng,
            "endTime": s.end_time,
            "endLatitude": s.end_lat,
            "endLongitude": s.end_lng,
            "durationMinutes": s.duration_minutes,
            "workStatus": s.work_status.value,
            "status": self.status.value,
            "spotCheckTotal": s.spot_check_total,
            "spotCheckPassed": s.spot_check_passed,
            "reason": s.reason,
            "startFaceImageUrl": s.start_face_image_url,
            "endFaceImageUrl": s.end_face_image_url,
            "guardName": self.guard_name,
            "guardPhone": self.guard_phone,
            "siteName": self.site_name,
            "siteCoordinates": (
                {"lat": self.site_lat, "lng": self.site_lng}
                if self.site_lat is not None and self.site_lng is not None
                else None
            ),
            "siteAllowedRadius": effective_radius_m(self.site_allowed_radius_m),
            "distanceFromSite": self.distance_from_site_m,
            "distanceAnomaly": self.distance_anomaly,
        }


def _index_by_id(items: Iterable) -> Dict[str, object]:
    return {item.id: item for item in items}


def enrich_record(
    session: WorkSession,
    guard_map: Dict[str, Guard],
    site_map: Dict[str, Site],
) -> EnrichedRecord:
    guard = guard_map.get(session.guard_id)
    site = site_map.get(session.site_id)

    distance = None
    if site is not None and site.has_coordinate and session.has_start_coordinate:
        distance = haversine_m(
            session.start_lat, session.start_lng,
            site.latitude, site.longitude,
        )

    radius = site.allowed_radius_m if site is not None else None
    return EnrichedRecord(
        session=session,
        status=normalize_checkin_status(session.raw_status),
        guard_name=guard.name if guard and guard.name else UNKNOWN_GUARD_TEMPLATE.format(id=session.guard_id),
        guard_phone=guard.phone_number if guard else "",
        site_name=site.name if site and site.name else UNKNOWN_SITE_TEMPLATE.format(id=session.site_id),
        site_lat=site.latitude if site else None,
        site_lng=site.longitude if site else None,
        site_allowed_radius_m=radius,
        distance_from_site_m=distance,
        distance_anomaly=is_distance_anomaly(distance, radius),
    )


def enrich(
    records: List[WorkSession],
    guards: List[Guard],
    sites: List[Site],
) -> List[EnrichedRecord]:
    """Denormalize every session.  Output length always equals input length."""
    guard_map = _index_by_id(guards)
    site_map = _index_by_id(sites)

    enriched = [enrich_record(r, guard_map, site_map) for r in records]

    missing_guards = sum(1 for r in records if r.guard_id not in guard_map)
    missing_sites = sum(1 for r in records if r.site_id not in site_map)
    if missing_guards or missing_sites:
        logger.warning(
            "Enrichment lookup misses: %d guard(s), %d site(s) across %d records",
            missing_guards, missing_sites, len(records),
        )
    return enriched
