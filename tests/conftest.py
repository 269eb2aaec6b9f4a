import pytest
from fastapi.testclient import TestClient

from shared.database import create_db_engine, create_session_factory, session_scope

from inventory_service.cache import AvailabilityCache
from inventory_service.dependencies import get_cache, get_db, get_publisher, get_reservation_timeout
from inventory_service.ledger import StockLedger
from inventory_service.models import Base, Product
from inventory_service.publisher import InventoryEventPublisher
from tests.fakes import FakeProducer, FakeRedis


@pytest.fixture
def engine(tmp_path):
    """
    File-backed SQLite database, one per test.

    A file (not :memory:) so that sessions on different threads see the same
    data and serialize on the database lock.
    """
    engine = create_db_engine(f"sqlite:///{tmp_path / 'inventory.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return AvailabilityCache(fake_redis, ttl_seconds=5)


@pytest.fixture
def ledger(db, cache):
    return StockLedger(db, cache)


@pytest.fixture
def producer():
    return FakeProducer()


@pytest.fixture
def stock(session_factory):
    """Provision inventory rows in their own committed session.

    Call it before using the ``db`` fixture so no transaction is left open.
    """

    def _stock(quantities, low_stock_threshold=10, products=False):
        session = session_factory()
        try:
            ledger = StockLedger(session)
            for product_id, quantity in quantities.items():
                if products:
                    session.add(Product(product_id=product_id, name=f"Product {product_id}", price=10.0))
                ledger.create_inventory(product_id, quantity=quantity, low_stock_threshold=low_stock_threshold)
            session.commit()
        finally:
            session.close()

    return _stock


@pytest.fixture
def client(session_factory, cache, producer):
    """TestClient wired to the test database, the fake Redis and the fake producer.

    The app lifespan is not run, so no real Postgres, Redis or Kafka is needed.
    """
    from inventory_service.main import app

    def override_get_db():
        yield from session_scope(session_factory)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_publisher] = lambda: InventoryEventPublisher(producer)
    app.dependency_overrides[get_reservation_timeout] = lambda: 5.0
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
