"""Shared fixtures for the check-in monitor test suite.

Provides canned upstream envelopes, a mocked CheckinAPIClient, a manually
fired timer for debounce tests, and a Flask test client.
"""

import os
from datetime import datetime
from unittest.mock import MagicMock

import pytest

# app.py reads configuration at import time.
os.environ.setdefault("CHECKIN_API_BASE_URL", "http://checkin.test/api")
os.environ.pop("CHECKIN_COMPLETE_STATS_PATH", None)

from checkin_api import CheckinAPIClient  # noqa: E402
from request_cache import RequestCache  # noqa: E402

FIXED_NOW = datetime(2024, 3, 15, 14, 30, 45, 123456)

SITE_LAT = 31.2304
SITE_LNG = 121.4737


def make_record(
    record_id="r1",
    guard_id="g1",
    site_id="s1",
    status="success",
    lat=SITE_LAT,
    lng=SITE_LNG,
    **extra,
):
    record = {
        "id": record_id,
        "guardId": guard_id,
        "siteId": site_id,
        "startTime": "2024-03-15T08:00:00",
        "startLatitude": lat,
        "startLongitude": lng,
        "status": status,
        "spotCheckTotal": 2,
        "spotCheckPassed": 1,
    }
    record.update(extra)
    return record


def records_envelope(records, pagination=None, statistics=None, success=True):
    body = {"success": success, "data": records}
    if pagination is not None:
        body["pagination"] = pagination
    if statistics is not None:
        body["statistics"] = statistics
    return body


GUARDS_ENVELOPE = {
    "success": True,
    "data": [
        {"id": "g1", "name": "Li Wei", "phoneNumber": "13800000001", "siteId": "s1"},
        {"id": "g2", "name": "Zhang Min", "phoneNumber": "13800000002", "siteId": None},
    ],
}

SITES_ENVELOPE = {
    "success": True,
    "data": [
        {"id": "s1", "name": "North Gate", "latitude": SITE_LAT,
         "longitude": SITE_LNG, "allowedRadiusMeters": 100},
        {"id": "s2", "name": "Warehouse", "latitude": 31.0, "longitude": 121.0},
    ],
}


class FakeTimer:
    """threading.Timer stand-in that only fires when the test says so."""

    created = []

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.cancelled = False
        self.started = False
        self.daemon = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        # Mirrors a real Timer that was already running when cancel() came in.
        self.function(*self.args, **self.kwargs)


@pytest.fixture(autouse=True)
def _reset_fake_timers():
    FakeTimer.created = []
    yield


@pytest.fixture
def fake_client():
    """CheckinAPIClient mock returning one page of two records."""
    client = MagicMock(spec=CheckinAPIClient)
    client.get_records.return_value = records_envelope(
        [make_record("r1", "g1", "s1", "success"),
         make_record("r2", "g2", "s2", "failed", lat=None, lng=None)],
        pagination={"total": 42, "page": 1, "pageSize": 20, "totalPages": 3},
    )
    client.get_guards.return_value = GUARDS_ENVELOPE
    client.get_sites.return_value = SITES_ENVELOPE
    client.get_complete_statistics.return_value = None
    return client


class FakeClock:
    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return RequestCache(ttl_seconds=300.0, clock=clock)


@pytest.fixture
def flask_client():
    from app import app
    app.config["TESTING"] = True
    with app.test_client() as c:
        yield c
