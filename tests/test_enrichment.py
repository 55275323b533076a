"""Unit tests for enrichment.py: joining sessions with guards and sites.

Tests cover: placeholder names on lookup misses, length preservation,
check-in status normalization, distance computation, and anomaly flags.
"""

import pytest

from checkin_models import Guard, Site, WorkSession
from enrichment import (
    CheckinStatus,
    enrich,
    normalize_checkin_status,
)

from conftest import SITE_LAT, SITE_LNG, make_record

GUARDS = [Guard(id="g1", name="Li Wei", phone_number="13800000001")]
SITES = [
    Site(id="s1", name="North Gate", latitude=SITE_LAT, longitude=SITE_LNG,
         allowed_radius_m=100.0),
    Site(id="s2", name="Depot", latitude=SITE_LAT, longitude=SITE_LNG),
    Site(id="s3", name="Rooftop", latitude=None, longitude=None),
]


def _session(**kwargs):
    return WorkSession.from_dict(make_record(**kwargs))


# =========================================================================
# Status normalization
# =========================================================================

class TestNormalizeCheckinStatus:
    @pytest.mark.parametrize("raw,expected", [
        ("success", CheckinStatus.SUCCESS),
        ("SUCCESS", CheckinStatus.SUCCESS),
        ("Failed", CheckinStatus.FAILED),
        ("pending", CheckinStatus.PENDING),
    ])
    def test_known(self, raw, expected):
        assert normalize_checkin_status(raw) is expected

    @pytest.mark.parametrize("raw", [None, "", "completed", "ok"])
    def test_unknown_is_pending(self, raw):
        assert normalize_checkin_status(raw) is CheckinStatus.PENDING


# =========================================================================
# Lookup joins
# =========================================================================

class TestLookups:
    def test_known_guard_and_site(self):
        [rec] = enrich([_session()], GUARDS, SITES)
        assert rec.guard_name == "Li Wei"
        assert rec.guard_phone == "13800000001"
        assert rec.site_name == "North Gate"

    def test_unknown_guard_placeholder_contains_id(self):
        [rec] = enrich([_session(guard_id="g404")], GUARDS, SITES)
        assert "g404" in rec.guard_name
        assert rec.guard_phone == ""

    def test_unknown_site_placeholder_contains_id(self):
        [rec] = enrich([_session(site_id="s404")], GUARDS, SITES)
        assert "s404" in rec.site_name
        assert rec.site_lat is None
        assert rec.distance_from_site_m is None
        assert rec.distance_anomaly is False

    def test_output_length_matches_input(self):
        sessions = [_session(record_id=f"r{i}", guard_id=f"g{i}") for i in range(5)]
        out = enrich(sessions, [], [])
        assert len(out) == 5
        assert [r.id for r in out] == [s.id for s in sessions]

    def test_empty_reference_lists(self):
        [rec] = enrich([_session()], [], [])
        assert rec.guard_name.startswith("Unknown guard")
        assert rec.site_name.startswith("Unknown site")


# =========================================================================
# Distance and anomaly
# =========================================================================

class TestDistance:
    def test_on_site_is_zero_and_not_anomalous(self):
        [rec] = enrich([_session()], GUARDS, SITES)
        assert rec.distance_from_site_m == 0.0
        assert rec.distance_anomaly is False

    def test_beyond_site_radius(self):
        # ~222 m north of a site with a 100 m radius
        [rec] = enrich([_session(lat=SITE_LAT + 0.002)], GUARDS, SITES)
        assert 200 < rec.distance_from_site_m < 240
        assert rec.distance_anomaly is True

    def test_default_radius_when_site_has_none(self):
        # ~600 m away from a site with no configured radius (500 m fallback)
        [rec] = enrich([_session(site_id="s2", lat=SITE_LAT + 0.0054)], GUARDS, SITES)
        assert rec.distance_from_site_m == pytest.approx(600.5, abs=1.0)
        assert rec.distance_anomaly is True

    def test_within_default_radius(self):
        [rec] = enrich([_session(site_id="s2", lat=SITE_LAT + 0.002)], GUARDS, SITES)
        assert rec.distance_anomaly is False

    def test_session_without_coordinates(self):
        [rec] = enrich([_session(lat=None, lng=None)], GUARDS, SITES)
        assert rec.distance_from_site_m is None
        assert rec.distance_anomaly is False

    def test_site_without_coordinates(self):
        [rec] = enrich([_session(site_id="s3")], GUARDS, SITES)
        assert rec.site_name == "Rooftop"
        assert rec.distance_from_site_m is None


class TestToDict:
    def test_display_fields(self):
        [rec] = enrich([_session(status="FAILED")], GUARDS, SITES)
        d = rec.to_dict()
        assert d["status"] == "failed"
        assert d["guardName"] == "Li Wei"
        assert d["siteCoordinates"] == {"lat": SITE_LAT, "lng": SITE_LNG}
        assert d["siteAllowedRadius"] == 100.0
        assert d["distanceFromSite"] == 0.0
        assert d["distanceAnomaly"] is False

    def test_missing_site_serializes_null_coordinates(self):
        [rec] = enrich([_session(site_id="nope")], GUARDS, SITES)
        d = rec.to_dict()
        assert d["siteCoordinates"] is None
        assert d["siteAllowedRadius"] == 500.0
        assert d["distanceFromSite"] is None
