"""Unit tests for request_cache.py: TTL-bound composite payload cache."""

from datetime import datetime

from query_descriptor import DateRange, FilterState, PaginationState, build_query_descriptor
from request_cache import CompositePayload, RequestCache, cache_key


def _descriptor(now=datetime(2024, 3, 15, 9, 0, 0), **pagination):
    return build_query_descriptor(FilterState(), PaginationState(**pagination), now=now)


PAYLOAD = CompositePayload(records_envelope={"success": True, "data": []})


# =========================================================================
# Key derivation
# =========================================================================

class TestCacheKey:
    def test_deterministic(self):
        assert cache_key(_descriptor()) == cache_key(_descriptor())

    def test_page_changes_key(self):
        assert cache_key(_descriptor(page_index=0)) != cache_key(_descriptor(page_index=1))

    def test_filters_change_key(self):
        now = datetime(2024, 3, 15, 9, 0, 0)
        a = build_query_descriptor(FilterState(guard_id="g1"), PaginationState(), now=now)
        b = build_query_descriptor(FilterState(guard_id="g2"), PaginationState(), now=now)
        c = build_query_descriptor(
            FilterState(date_range=DateRange.ALL_TIME), PaginationState(), now=now
        )
        assert len({cache_key(a), cache_key(b), cache_key(c)}) == 3

    def test_recomputed_bounds_share_slot(self):
        earlier = _descriptor(now=datetime(2024, 3, 15, 9, 0, 0))
        later = build_query_descriptor(
            FilterState(date_range=DateRange.LAST_7_DAYS), PaginationState(),
            now=datetime(2024, 3, 15, 9, 0, 0),
        )
        later2 = build_query_descriptor(
            FilterState(date_range=DateRange.LAST_7_DAYS), PaginationState(),
            now=datetime(2024, 3, 15, 9, 2, 30),
        )
        assert later.end_date != later2.end_date
        assert cache_key(later) == cache_key(later2)
        assert cache_key(earlier) != cache_key(later)

    def test_sort_order_not_in_key(self):
        asc = _descriptor(sort_order="asc")
        desc = _descriptor(sort_order="desc")
        assert cache_key(asc) == cache_key(desc)


# =========================================================================
# TTL behaviour
# =========================================================================

class TestTTL:
    def test_miss_on_empty(self, cache):
        assert cache.get(_descriptor()) is None

    def test_hit_just_before_expiry(self, cache, clock):
        cache.put(_descriptor(), PAYLOAD)
        clock.advance(299.999)
        entry = cache.get(_descriptor())
        assert entry is not None
        assert entry.payload is PAYLOAD
        assert entry.captured_at == 1000.0

    def test_miss_just_after_expiry(self, cache, clock):
        cache.put(_descriptor(), PAYLOAD)
        clock.advance(300.001)
        assert cache.get(_descriptor()) is None

    def test_exactly_ttl_is_expired(self, cache, clock):
        cache.put(_descriptor(), PAYLOAD)
        clock.advance(300.0)
        assert cache.get(_descriptor()) is None

    def test_expired_entry_stays_until_sweep(self, cache, clock):
        cache.put(_descriptor(), PAYLOAD)
        clock.advance(400)
        cache.get(_descriptor())
        assert len(cache) == 1

    def test_put_replaces_entry(self, cache, clock):
        cache.put(_descriptor(), PAYLOAD)
        clock.advance(250)
        newer = CompositePayload(records_envelope={"success": True, "data": [1]})
        cache.put(_descriptor(), newer)
        clock.advance(100)
        assert cache.get(_descriptor()).payload is newer


class TestSweep:
    def test_removes_only_expired(self, cache, clock):
        cache.put(_descriptor(page_index=0), PAYLOAD)
        clock.advance(200)
        cache.put(_descriptor(page_index=1), PAYLOAD)
        clock.advance(150)

        removed = cache.sweep()

        assert removed == 1
        assert len(cache) == 1
        assert cache.get(_descriptor(page_index=1)) is not None

    def test_explicit_now(self, cache):
        cache.put(_descriptor(), PAYLOAD)
        assert cache.sweep(now=1100.0) == 0
        assert cache.sweep(now=1300.0) == 1

    def test_clear(self, cache):
        cache.put(_descriptor(page_index=0), PAYLOAD)
        cache.put(_descriptor(page_index=1), PAYLOAD)
        cache.clear()
        assert len(cache) == 0


def test_custom_ttl(clock):
    short = RequestCache(ttl_seconds=10, clock=clock)
    short.put(_descriptor(), PAYLOAD)
    clock.advance(11)
    assert short.get(_descriptor()) is None


def test_default_ttl_is_five_minutes():
    assert RequestCache().ttl_seconds == 300.0
