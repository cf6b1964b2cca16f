"""Unit tests for the chart data cache and query fingerprinting"""
import pytest
from conftest import FakeClock, sample_data

from chartflow.cache import ChartDataCache, fingerprint, is_fresh, query_configuration


class TestFingerprint:
    """Stable hashing of logical queries"""

    def test_key_order_does_not_matter(self):
        a = fingerprint({"region": "eu", "year": 2024}, "sales")
        b = fingerprint({"year": 2024, "region": "eu"}, "sales")

        assert a == b

    def test_nested_key_order_does_not_matter(self):
        a = fingerprint({"range": {"start": 1, "end": 2}}, "sales")
        b = fingerprint({"range": {"end": 2, "start": 1}}, "sales")

        assert a == b

    def test_different_filters_differ(self):
        assert fingerprint({"region": "eu"}, "sales") != fingerprint({"region": "us"}, "sales")

    def test_dataset_participates(self):
        assert fingerprint({}, "sales") != fingerprint({}, "costs")

    def test_only_query_keys_of_configuration_participate(self):
        base = {"metrics": ["revenue"], "title": "Revenue"}
        restyled = {"metrics": ["revenue"], "title": "Revenue (EUR)", "colors": ["#fff"]}
        requeried = {"metrics": ["revenue", "margin"], "title": "Revenue"}

        assert fingerprint({}, "sales", base) == fingerprint({}, "sales", restyled)
        assert fingerprint({}, "sales", base) != fingerprint({}, "sales", requeried)

    def test_non_string_keys_are_rejected(self):
        with pytest.raises(TypeError):
            fingerprint({1: "eu"}, "sales")
        with pytest.raises(TypeError):
            fingerprint({}, "sales", {"sort": {2: "desc"}})

    def test_none_filters_equal_empty(self):
        assert fingerprint(None, "sales") == fingerprint({}, "sales")

    def test_query_configuration_extracts_known_keys(self):
        config = {"limit": 10, "legend": {"show": False}, "group_by": "region"}

        assert query_configuration(config) == {"limit": 10, "group_by": "region"}
        assert query_configuration(None) == {}


class TestFreshness:
    """is_fresh(now, entry) <=> now - fetched_at < ttl"""

    def test_missing_entry_is_not_fresh(self):
        assert is_fresh(100.0, None) is False

    def test_fresh_boundary(self, clock):
        cache = ChartDataCache(clock=clock)
        entry = cache.put("c1", "fp", sample_data(), ttl_seconds=30)

        assert is_fresh(clock.now + 29.9, entry)
        assert not is_fresh(clock.now + 30, entry)

    def test_zero_ttl_is_never_fresh(self, clock):
        cache = ChartDataCache(clock=clock)
        entry = cache.put("c1", "fp", sample_data(), ttl_seconds=0)

        assert not is_fresh(clock.now, entry)


class TestChartDataCache:
    """get / put / invalidate / latest"""

    def test_put_and_get(self, clock):
        cache = ChartDataCache(clock=clock)
        data = sample_data()

        entry = cache.put("c1", "fp1", data, ttl_seconds=30)

        assert cache.get("c1", "fp1") is entry
        assert entry.data is data
        assert entry.fetched_at == clock.now
        assert entry.chart_id == "c1"
        assert entry.fingerprint == "fp1"

    def test_get_unknown_key(self):
        cache = ChartDataCache()

        assert cache.get("c1", "nope") is None

    def test_put_replaces_entry(self, clock):
        cache = ChartDataCache(clock=clock)
        cache.put("c1", "fp1", sample_data((1,)), ttl_seconds=30)
        newer = sample_data((2,))

        cache.put("c1", "fp1", newer, ttl_seconds=30, fetched_at=clock.now + 5)

        assert cache.get("c1", "fp1").data is newer
        assert len(cache) == 1

    def test_invalidate_drops_all_fingerprints_of_chart(self, clock):
        cache = ChartDataCache(clock=clock)
        cache.put("c1", "fp1", sample_data(), ttl_seconds=30)
        cache.put("c1", "fp2", sample_data(), ttl_seconds=30)
        cache.put("c2", "fp1", sample_data(), ttl_seconds=30)

        removed = cache.invalidate("c1")

        assert removed == 2
        assert cache.get("c1", "fp1") is None
        assert ("c2", "fp1") in cache

    def test_latest_picks_most_recent_fetch(self):
        clock = FakeClock(start=100.0)
        cache = ChartDataCache(clock=clock)
        cache.put("c1", "old", sample_data(), ttl_seconds=30)
        clock.advance(10)
        newest = cache.put("c1", "new", sample_data(), ttl_seconds=30)

        assert cache.latest("c1") is newest
        assert cache.latest("c2") is None

    def test_entry_age(self, clock):
        cache = ChartDataCache(clock=clock)
        entry = cache.put("c1", "fp", sample_data(), ttl_seconds=30)

        assert entry.age(clock.now + 12) == 12

    def test_clear(self, clock):
        cache = ChartDataCache(clock=clock)
        cache.put("c1", "fp", sample_data(), ttl_seconds=30)

        cache.clear()

        assert len(cache) == 0
