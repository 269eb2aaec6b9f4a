import pytest

from inventory_service.catalog import CatalogReader
from inventory_service.errors import InvalidInput, ProductNotFound
from inventory_service.ledger import StockLedger
from inventory_service.models import Product
from inventory_service.status import InventoryStatus


@pytest.fixture
def catalog(db, cache):
    return CatalogReader(db, StockLedger(db, cache), cache)


def _add_product(session_factory, product_id, name="Widget", price=15.0, is_active=True):
    session = session_factory()
    try:
        session.add(Product(product_id=product_id, name=name, price=price, is_active=is_active))
        session.commit()
    finally:
        session.close()


class TestProductDetail:

    def test_product_with_stock(self, stock, catalog):
        stock({"PROD-A": 25}, products=True)

        detail = catalog.product_detail("PROD-A")

        assert detail.product_id == "PROD-A"
        assert detail.available_quantity == 25
        assert detail.status is InventoryStatus.SUFFICIENT

    def test_product_never_stocked_is_out_of_stock(self, session_factory, catalog):
        _add_product(session_factory, "PROD-NEW", name="Unreleased Gadget")

        detail = catalog.product_detail("PROD-NEW")

        assert detail.name == "Unreleased Gadget"
        assert detail.available_quantity == 0
        assert detail.status is InventoryStatus.OUT_OF_STOCK

    def test_unknown_product(self, catalog):
        with pytest.raises(ProductNotFound):
            catalog.product_detail("PROD-MISSING")

    def test_reflects_reservations_after_commit(self, stock, catalog, db):
        stock({"PROD-A": 12}, products=True)
        assert catalog.product_detail("PROD-A").status is InventoryStatus.SUFFICIENT

        catalog.ledger.reserve("PROD-A", 5)
        db.commit()

        detail = catalog.product_detail("PROD-A")
        assert detail.available_quantity == 7
        assert detail.status is InventoryStatus.LOW_STOCK


class TestListProducts:

    def test_sorted_by_product_id(self, stock, catalog):
        stock({"PROD-B": 1, "PROD-A": 50}, products=True)

        products = catalog.list_products()

        assert [p.product_id for p in products] == ["PROD-A", "PROD-B"]
        assert [p.status for p in products] == [InventoryStatus.SUFFICIENT, InventoryStatus.LOW_STOCK]

    def test_active_only(self, stock, session_factory, catalog):
        stock({"PROD-A": 5}, products=True)
        _add_product(session_factory, "PROD-OLD", is_active=False)

        assert [p.product_id for p in catalog.list_products(active_only=True)] == ["PROD-A"]
        assert len(catalog.list_products()) == 2


class TestCheckAvailability:

    def test_without_quantity(self, stock, catalog):
        stock({"PROD-A": 3})

        response = catalog.check_availability("PROD-A")

        assert response.available_quantity == 3
        assert response.requested_quantity is None
        assert response.is_available is None

    @pytest.mark.parametrize("quantity, expected", [(3, True), (4, False)])
    def test_with_quantity(self, stock, catalog, quantity, expected):
        stock({"PROD-A": 3})

        response = catalog.check_availability("PROD-A", quantity)

        assert response.requested_quantity == quantity
        assert response.is_available is expected

    def test_non_positive_quantity(self, stock, catalog):
        stock({"PROD-A": 3})
        with pytest.raises(InvalidInput):
            catalog.check_availability("PROD-A", 0)

    def test_unknown_product(self, catalog):
        with pytest.raises(ProductNotFound):
            catalog.check_availability("PROD-MISSING", 1)

    def test_check_does_not_reserve(self, stock, catalog):
        stock({"PROD-A": 3})

        catalog.check_availability("PROD-A", 3)
        catalog.check_availability("PROD-A", 3)

        assert catalog.ledger.get_summary("PROD-A").reserved_quantity == 0
