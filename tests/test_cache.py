"""Availability cache: read-through, TTL, invalidation on commit, degraded mode."""

import logging

import pytest

from inventory_service.cache import AvailabilityCache
from inventory_service.catalog import read_availability
from inventory_service.ledger import PENDING_INVALIDATIONS
from inventory_service.schemas import AvailabilitySnapshot
from inventory_service.status import InventoryStatus


def _snapshot(product_id="PROD-A", available=8):
    return AvailabilitySnapshot(
        product_id=product_id,
        available_quantity=available,
        status=InventoryStatus.LOW_STOCK,
        as_of_version=3,
    )


class CountingLoader:
    def __init__(self, snapshot):
        self.snapshot = snapshot
        self.calls = 0

    def __call__(self, product_id):
        self.calls += 1
        return self.snapshot


class TestReadThrough:

    def test_miss_loads_and_caches(self, cache, fake_redis):
        loader = CountingLoader(_snapshot())

        first = cache.get("PROD-A", loader)
        second = cache.get("PROD-A", loader)

        assert first == second == _snapshot()
        assert loader.calls == 1
        assert fake_redis.get("availability:PROD-A") is not None

    def test_entry_expires_after_ttl(self, cache, fake_redis):
        loader = CountingLoader(_snapshot())
        cache.get("PROD-A", loader)

        fake_redis.advance(4)
        cache.get("PROD-A", loader)
        assert loader.calls == 1

        fake_redis.advance(1)
        cache.get("PROD-A", loader)
        assert loader.calls == 2

    def test_unreadable_entry_is_a_miss(self, cache, fake_redis):
        fake_redis.set("availability:PROD-A", "{not json", ex=60)
        loader = CountingLoader(_snapshot())

        assert cache.get("PROD-A", loader) == _snapshot()
        assert loader.calls == 1

    def test_peek_does_not_load(self, cache):
        assert cache.peek("PROD-A") is None


class TestDegradedMode:

    def test_unreachable_redis_falls_back_to_loader(self, cache, fake_redis, caplog):
        fake_redis.fail = True
        loader = CountingLoader(_snapshot())

        with caplog.at_level(logging.WARNING, logger="inventory_service.cache"):
            assert cache.get("PROD-A", loader) == _snapshot()

        assert loader.calls == 1
        assert "unavailable" in caplog.text

    def test_invalidate_with_redis_down_does_not_raise(self, cache, fake_redis):
        fake_redis.fail = True
        cache.invalidate("PROD-A")

    def test_peek_with_redis_down(self, cache, fake_redis):
        fake_redis.fail = True
        assert cache.peek("PROD-A") is None

    def test_store_reads_work_without_redis(self, stock, ledger, fake_redis):
        stock({"PROD-A": 12})
        fake_redis.fail = True

        snapshot = read_availability(ledger, ledger.cache, "PROD-A")

        assert snapshot.available_quantity == 12
        assert snapshot.status is InventoryStatus.SUFFICIENT


class TestInvalidation:

    def test_entry_deleted_after_commit(self, stock, ledger, cache, db):
        stock({"PROD-A": 10})
        assert read_availability(ledger, cache, "PROD-A").available_quantity == 10

        ledger.reserve("PROD-A", 3)
        # Not yet committed: readers may still see the old value
        assert cache.peek("PROD-A").available_quantity == 10

        db.commit()

        assert cache.peek("PROD-A") is None
        assert read_availability(ledger, cache, "PROD-A").available_quantity == 7

    def test_rollback_keeps_entry(self, stock, ledger, cache, db, fake_redis):
        stock({"PROD-A": 10})
        read_availability(ledger, cache, "PROD-A")

        ledger.reserve("PROD-A", 3)
        db.rollback()

        assert fake_redis.deleted == []
        assert PENDING_INVALIDATIONS not in db.info
        assert cache.peek("PROD-A").available_quantity == 10

    def test_one_delete_per_commit(self, stock, ledger, db, fake_redis):
        stock({"PROD-A": 10, "PROD-B": 10})

        ledger.reserve("PROD-A", 1)
        ledger.reserve("PROD-B", 1)
        ledger.reserve("PROD-A", 1)
        db.commit()

        assert sorted(fake_redis.deleted) == ["availability:PROD-A", "availability:PROD-B"]

    def test_each_commit_invalidates_its_own_products(self, stock, ledger, db, fake_redis):
        stock({"PROD-A": 10, "PROD-B": 10})

        ledger.reserve("PROD-A", 1)
        db.commit()
        ledger.reserve("PROD-B", 1)
        db.commit()

        assert fake_redis.deleted == ["availability:PROD-A", "availability:PROD-B"]

    def test_no_cache_configured(self, stock, db):
        from inventory_service.ledger import StockLedger

        stock({"PROD-A": 10})
        ledger = StockLedger(db)
        ledger.reserve("PROD-A", 1)
        db.commit()

        assert PENDING_INVALIDATIONS not in db.info


@pytest.mark.parametrize("ttl", [1, 30])
def test_ttl_is_passed_to_redis(fake_redis, ttl):
    cache = AvailabilityCache(fake_redis, ttl_seconds=ttl)
    cache.get("PROD-A", CountingLoader(_snapshot()))

    fake_redis.advance(ttl - 0.5)
    assert cache.peek("PROD-A") is not None
    fake_redis.advance(1)
    assert cache.peek("PROD-A") is None
