import random

from sqlalchemy import func, select

from inventory_service.ledger import StockLedger
from inventory_service.models import Product
from inventory_service.seed_data import SAMPLE_PRODUCTS, seed_products


def test_seed_creates_products_with_inventory(db):
    created = seed_products(db, low_stock_threshold=5, rng=random.Random(7))

    assert created == len(SAMPLE_PRODUCTS)
    ledger = StockLedger(db)
    for product_id, _, _ in SAMPLE_PRODUCTS:
        summary = ledger.get_summary(product_id)
        assert 10 <= summary.quantity <= 100
        assert summary.reserved_quantity == 0
        assert summary.low_stock_threshold == 5


def test_seed_is_idempotent(db):
    seed_products(db, rng=random.Random(7))

    assert seed_products(db, rng=random.Random(7)) == 0
    assert db.execute(select(func.count()).select_from(Product)).scalar_one() == len(SAMPLE_PRODUCTS)
