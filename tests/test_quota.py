import threading

import pytest

from helpers import day_key, identity_key
from quota import QuotaPolicy
from storage import InMemoryQuotaStore, QuotaStore, UsageRecord


@pytest.fixture
def store():
    return InMemoryQuotaStore()


@pytest.fixture
def policy():
    return QuotaPolicy(daily_limit=5, captcha_after=3, standard_max_variants=3, premium_max_variants=5)


class TestInMemoryQuotaStore:
    def test_unknown_key_is_none(self, store):
        assert store.get("1.2.3.4|2025-01-01") is None

    def test_counters_accumulate(self, store):
        key = identity_key("1.2.3.4", "2025-01-01")
        store.record_attempt(key, "1.2.3.4", "2025-01-01")
        store.record_success(key, "1.2.3.4", "2025-01-01", 0.25)
        store.record_success(key, "1.2.3.4", "2025-01-01", 0.5)
        rec = store.record_limit_hit(key, "1.2.3.4", "2025-01-01")
        assert rec == UsageRecord(ip="1.2.3.4", day="2025-01-01", calls=2, attempts=1, cost_usd=0.75, limit_hits=1)
        assert store.get(key) == rec

    def test_records_for_day_filters(self, store):
        store.record_attempt(identity_key("a", "2025-01-01"), "a", "2025-01-01")
        store.record_attempt(identity_key("b", "2025-01-01"), "b", "2025-01-01")
        store.record_attempt(identity_key("a", "2025-01-02"), "a", "2025-01-02")
        assert {r.ip for r in store.records_for_day("2025-01-01")} == {"a", "b"}
        assert len(store.records_for_day("2025-01-02")) == 1

    def test_concurrent_updates_are_not_lost(self, store):
        key = identity_key("a", "d")

        def hammer():
            for _ in range(500):
                store.record_success(key, "a", "d")

        threads = [threading.Thread(target=hammer) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.get(key).calls == 4000

    def test_reserve_counts_in_flight_against_limit(self, store):
        key = identity_key("a", "d")
        assert store.reserve(key, "a", "d", limit=2).in_flight == 1
        assert store.reserve(key, "a", "d", limit=2).in_flight == 2
        assert store.reserve(key, "a", "d", limit=2) is None

    def test_success_settles_reservation(self, store):
        key = identity_key("a", "d")
        store.reserve(key, "a", "d", limit=1)
        rec = store.record_success(key, "a", "d", 0.1)
        assert (rec.calls, rec.in_flight) == (1, 0)
        assert store.reserve(key, "a", "d", limit=1) is None

    def test_release_frees_slot_without_counting(self, store):
        key = identity_key("a", "d")
        store.reserve(key, "a", "d", limit=1)
        rec = store.release(key, "a", "d")
        assert (rec.calls, rec.in_flight) == (0, 0)
        assert store.reserve(key, "a", "d", limit=1) is not None

    def test_unlimited_reserve(self, store):
        key = identity_key("a", "d")
        for _ in range(20):
            assert store.reserve(key, "a", "d", limit=None) is not None

    def test_concurrent_reservations_respect_limit(self, store):
        key = identity_key("a", "d")
        start = threading.Barrier(20)
        granted = []

        def grab():
            start.wait()
            if store.reserve(key, "a", "d", limit=5) is not None:
                granted.append(1)

        threads = [threading.Thread(target=grab) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(granted) == 5
        assert store.get(key).in_flight == 5


def test_incomplete_store_cannot_be_built():
    class PartialStore(QuotaStore):
        def get(self, key):
            return None

    with pytest.raises(TypeError):
        PartialStore()


class TestQuotaPolicy:
    def test_fresh_identity_is_allowed(self, policy):
        assert not policy.needs_challenge(None, premium=False)

    def test_daily_cap(self, policy):
        assert policy.daily_cap(premium=False) == 5
        assert policy.daily_cap(premium=True) is None

    def test_challenge_threshold(self, policy):
        assert not policy.needs_challenge(UsageRecord("a", "d", calls=2), premium=False)
        assert policy.needs_challenge(UsageRecord("a", "d", calls=3), premium=False)

    def test_premium_skips_challenge(self, policy):
        assert not policy.needs_challenge(UsageRecord("a", "d", calls=50), premium=True)

    @pytest.mark.parametrize("plan, requested, expected", [
        (None, 3, 1),
        ("standard", 5, 3),
        ("standard", 2, 2),
        ("premium", 5, 5),
        ("premium", 0, 1),
    ])
    def test_effective_variants(self, policy, plan, requested, expected):
        assert policy.effective_variants(requested, plan) == expected


def test_day_key_is_utc_calendar_day():
    assert day_key(0) == "1970-01-01"
    assert day_key(86399) == "1970-01-01"
    assert day_key(86400) == "1970-01-02"
