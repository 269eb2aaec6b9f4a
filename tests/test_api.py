"""HTTP surface of the inventory service."""

from sqlalchemy.exc import OperationalError

from shared.database import create_db_engine, create_session_factory, session_scope

from inventory_service.dependencies import get_db
from inventory_service.ledger import StockLedger
from inventory_service.models import Product


def _reserve(client, order_id="ORD-1", lines=None):
    lines = lines or [{"product_id": "PROD-A", "quantity": 2}]
    return client.post("/inventory/reservations", json={"order_id": order_id, "line_items": lines})


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["service"] == "inventory-service"


class TestReservations:

    def test_reserve_order(self, stock, client, producer):
        stock({"PROD-A": 20, "PROD-B": 20})

        response = _reserve(
            client,
            lines=[{"product_id": "PROD-A", "quantity": 2}, {"product_id": "PROD-B", "quantity": 1}],
        )

        assert response.status_code == 201
        body = response.json()
        assert body["order_id"] == "ORD-1"
        assert body["created"] is True
        assert [r["product_id"] for r in body["reservations"]] == ["PROD-A", "PROD-B"]
        assert producer.topics() == ["inventory.reserved"]

    def test_low_stock_alert_after_reservation(self, stock, client, producer):
        stock({"PROD-A": 12})

        _reserve(client, lines=[{"product_id": "PROD-A", "quantity": 2}])

        assert producer.topics() == ["inventory.reserved", "inventory.low"]
        low = producer.events("inventory.low")[0]
        assert low.product_id == "PROD-A"
        assert low.current_stock == 10
        assert low.status == "low_stock"

    def test_rejection_is_409_with_details(self, stock, client, producer):
        stock({"PROD-A": 10, "PROD-B": 1})

        response = _reserve(
            client,
            lines=[{"product_id": "PROD-A", "quantity": 5}, {"product_id": "PROD-B", "quantity": 2}],
        )

        assert response.status_code == 409
        assert response.json()["detail"] == {
            "order_id": "ORD-1",
            "product_id": "PROD-B",
            "requested": 2,
            "available": 1,
        }
        assert producer.topics() == ["inventory.depleted"]
        assert client.get("/inventory/PROD-A").json()["reserved_quantity"] == 0

    def test_unknown_product_is_404(self, client):
        response = _reserve(client, lines=[{"product_id": "PROD-MISSING", "quantity": 1}])
        assert response.status_code == 404

    def test_invalid_quantity_is_422(self, stock, client):
        stock({"PROD-A": 10})
        response = _reserve(client, lines=[{"product_id": "PROD-A", "quantity": 0}])
        assert response.status_code == 422

    def test_retry_returns_same_tokens(self, stock, client, producer):
        stock({"PROD-A": 20})

        first = _reserve(client).json()
        second = _reserve(client)

        assert second.status_code == 201
        assert second.json()["created"] is False
        assert second.json()["reservations"] == first["reservations"]
        assert producer.topics().count("inventory.reserved") == 1
        assert client.get("/inventory/PROD-A").json()["reserved_quantity"] == 2

    def test_list_order_reservations(self, stock, client):
        stock({"PROD-A": 20})
        token = _reserve(client).json()["reservations"][0]["token"]

        response = client.get("/inventory/orders/ORD-1/reservations")

        assert response.status_code == 200
        assert [r["token"] for r in response.json()] == [token]

    def test_commit_then_commit_again(self, stock, client, producer):
        stock({"PROD-A": 20})
        token = _reserve(client).json()["reservations"][0]["token"]

        first = client.post(f"/inventory/reservations/{token}/commit")
        second = client.post(f"/inventory/reservations/{token}/commit")

        assert first.status_code == 200
        assert first.json()["changed"] is True
        assert second.status_code == 200
        assert second.json()["changed"] is False
        assert producer.topics().count("inventory.committed") == 1
        assert client.get("/inventory/PROD-A").json()["quantity"] == 18

    def test_release(self, stock, client, producer):
        stock({"PROD-A": 20})
        token = _reserve(client).json()["reservations"][0]["token"]

        response = client.post(f"/inventory/reservations/{token}/release")

        assert response.json()["status"] == "released"
        assert producer.events("inventory.released")[0].tokens == [token]
        assert client.get("/inventory/PROD-A").json()["available_quantity"] == 20

    def test_unknown_token_is_404(self, client):
        assert client.post("/inventory/reservations/nope/commit").status_code == 404

    def test_broker_outage_does_not_fail_reservation(self, stock, client, producer):
        stock({"PROD-A": 20})
        producer.fail = True

        response = _reserve(client)

        assert response.status_code == 201
        assert client.get("/inventory/PROD-A").json()["reserved_quantity"] == 2

    def test_store_error_in_low_stock_check_keeps_reservation(self, stock, client, producer, monkeypatch):
        stock({"PROD-A": 20})

        def unreadable(self, product_id):
            raise OperationalError("SELECT inventories", {}, Exception("disk I/O error"))

        monkeypatch.setattr(StockLedger, "get_summary", unreadable)
        response = _reserve(client)
        monkeypatch.undo()

        assert response.status_code == 201
        assert producer.topics() == ["inventory.reserved"]
        assert client.get("/inventory/PROD-A").json()["reserved_quantity"] == 2

    def test_store_unavailable_is_503(self, tmp_path, client):
        from inventory_service.main import app

        engine = create_db_engine(f"sqlite:///{tmp_path / 'missing' / 'inventory.db'}")
        def unreachable_db():
            yield from session_scope(create_session_factory(engine))

        app.dependency_overrides[get_db] = unreachable_db
        try:
            assert _reserve(client).status_code == 503
            assert client.get("/inventory/orders/ORD-1/reservations").status_code == 503
        finally:
            engine.dispose()


class TestStockAdministration:

    def test_create_inventory(self, client):
        response = client.post("/inventory", json={"product_id": "PROD-NEW", "quantity": 40})

        assert response.status_code == 201
        body = response.json()
        assert body["quantity"] == 40
        assert body["low_stock_threshold"] == 10
        assert body["location"] == "MAIN_WAREHOUSE"
        assert body["status"] == "sufficient"

    def test_create_inventory_twice_is_422(self, stock, client):
        stock({"PROD-A": 1})
        response = client.post("/inventory", json={"product_id": "PROD-A", "quantity": 40})
        assert response.status_code == 422

    def test_get_inventory_unknown_is_404(self, client):
        assert client.get("/inventory/PROD-MISSING").status_code == 404

    def test_restock(self, stock, client, producer):
        stock({"PROD-A": 2})

        response = client.post("/inventory/PROD-A/restock", json={"delta": 30})

        assert response.status_code == 200
        assert response.json()["quantity"] == 32
        assert response.json()["last_restocked_at"] is not None
        event = producer.events("inventory.restocked")[0]
        assert event.delta == 30
        assert event.available_quantity == 32

    def test_restock_requires_positive_delta(self, stock, client):
        stock({"PROD-A": 2})
        assert client.post("/inventory/PROD-A/restock", json={"delta": 0}).status_code == 422

    def test_restock_invalidates_cached_availability(self, stock, client):
        stock({"PROD-A": 2})
        assert client.get("/inventory/PROD-A/availability").json()["available_quantity"] == 2

        client.post("/inventory/PROD-A/restock", json={"delta": 8})

        assert client.get("/inventory/PROD-A/availability").json()["available_quantity"] == 10

    def test_update_threshold(self, stock, client):
        stock({"PROD-A": 15})

        response = client.put("/inventory/PROD-A/threshold", json={"low_stock_threshold": 20})

        assert response.status_code == 200
        assert response.json()["status"] == "low_stock"


class TestAvailability:

    def test_availability(self, stock, client):
        stock({"PROD-A": 10})

        body = client.get("/inventory/PROD-A/availability").json()

        assert body == {"product_id": "PROD-A", "available_quantity": 10, "status": "low_stock"}

    def test_availability_for_quantity(self, stock, client):
        stock({"PROD-A": 10})

        body = client.get("/inventory/PROD-A/availability", params={"quantity": 11}).json()

        assert body["requested_quantity"] == 11
        assert body["is_available"] is False

    def test_availability_with_redis_down(self, stock, client, fake_redis):
        stock({"PROD-A": 10})
        fake_redis.fail = True

        response = client.get("/inventory/PROD-A/availability")

        assert response.status_code == 200
        assert response.json()["available_quantity"] == 10

    def test_availability_unknown_product(self, client):
        assert client.get("/inventory/PROD-MISSING/availability").status_code == 404


class TestProducts:

    def test_create_and_get_product(self, client):
        response = client.post(
            "/products",
            json={"product_id": "PROD-900", "name": "Desk Mat", "price": 19.5, "initial_stock": 7},
        )

        assert response.status_code == 201
        assert response.json()["status"] == "low_stock"

        detail = client.get("/products/PROD-900").json()
        assert detail["name"] == "Desk Mat"
        assert detail["available_quantity"] == 7

    def test_generated_product_id(self, client):
        response = client.post("/products", json={"name": "Desk Mat", "price": 19.5})

        assert response.status_code == 201
        assert response.json()["product_id"].startswith("PROD-")
        assert response.json()["status"] == "out_of_stock"

    def test_product_without_inventory(self, session_factory, client):
        session = session_factory()
        try:
            session.add(Product(product_id="PROD-BARE", name="Bare", price=1.0))
            session.commit()
        finally:
            session.close()

        body = client.get("/products/PROD-BARE").json()

        assert body["available_quantity"] == 0
        assert body["status"] == "out_of_stock"

    def test_unknown_product(self, client):
        assert client.get("/products/PROD-MISSING").status_code == 404

    def test_list_products(self, stock, client):
        stock({"PROD-A": 1, "PROD-B": 50}, products=True)

        products = client.get("/products").json()

        assert [(p["product_id"], p["status"]) for p in products] == [
            ("PROD-A", "low_stock"),
            ("PROD-B", "sufficient"),
        ]
