"""
inventory_service/main.py - Inventory Consistency Microservice

PURPOSE:
    Tracks how many units of each product exist and how many are claimed by
    in-flight orders, serves fast availability reads through Redis, and never
    lets the write path oversell.

RESERVATION WORKFLOW (inventory checked before payment):
    1. order.created arrives (Kafka) or POST /inventory/reservations (HTTP)
    2. Every line item is reserved inside one database transaction
    3. Success: inventory.reserved is published, the order proceeds to payment,
       inventory.low follows for products now at or below their threshold
    4. Any line short of stock: the transaction rolls back, nothing stays
       reserved, inventory.depleted names the product and what is available
    5. order.fulfilled commits the reservations (units leave stock)
    6. order.cancelled releases them (units return to available)

KEY FEATURES:
    - Conditional updates: each stock change is one UPDATE ... WHERE available >= qty
    - All-or-nothing orders: one transaction per order, no compensating releases
    - Idempotent settlement: commit/release per reservation token run once
    - Read-through availability cache: deleted on every committed change, short TTL
    - Cache outages degrade to direct store reads

API ENDPOINTS:
    POST   /inventory/reservations                  - Reserve an order (all or nothing)
    GET    /inventory/orders/{order_id}/reservations - Tokens of an order
    POST   /inventory/reservations/{token}/commit   - Commit a reservation
    POST   /inventory/reservations/{token}/release  - Release a reservation
    POST   /inventory                               - Provision inventory for a product
    GET    /inventory/{product_id}                  - Stock counters (store)
    GET    /inventory/{product_id}/availability     - Availability (cache-backed)
    POST   /inventory/{product_id}/restock          - Add units
    PUT    /inventory/{product_id}/threshold        - Change low stock threshold
    GET    /products                                - Products with availability
    GET    /products/{product_id}                   - Product with availability
    POST   /products                                - Create product and its inventory (admin)
    GET    /health                                  - Health check

KAFKA EVENTS:
    CONSUMED: order.created, order.cancelled, order.fulfilled
    PUBLISHED: inventory.reserved, inventory.depleted, inventory.low,
               inventory.restocked, inventory.committed, inventory.released

DATABASE:
    - products: product_id, name, price, is_active
    - inventories: product_id, quantity, reserved_quantity, low_stock_threshold,
      location, last_restocked_at, version
    - stock_reservations: id (token), order_id, product_id, quantity, status

USAGE:
    Runs on port 8004 in Docker container
    Access: http://localhost:8004/inventory/...
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional
from uuid import uuid4

import redis
from fastapi import Depends, FastAPI, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shared.database import create_db_engine, create_session_factory
from shared.kafka_client import BaseKafkaProducer
from shared.logging_config import setup_logging
from shared.topic_initializer import create_topics

from inventory_service import dependencies
from inventory_service.cache import AvailabilityCache
from inventory_service.catalog import CatalogReader
from inventory_service.config import settings
from inventory_service.consumer import OrderEventHandler, start_consumer
from inventory_service.dependencies import get_cache, get_db
from inventory_service.errors import InventoryError, ProductNotFound
from inventory_service.ledger import StockLedger
from inventory_service.models import Base, Product
from inventory_service.publisher import InventoryEventPublisher
from inventory_service.routes import http_error, router
from inventory_service.schemas import CreateProductRequest, HealthResponse, ProductDetail

setup_logging("inventory-service", level=settings.log_level, timezone=settings.log_timezone)
logger = logging.getLogger(__name__)

SERVICE_VERSION = "1.0.0"


def init_db(engine) -> None:
    """Initialize database tables."""
    logger.info("Initializing database...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database initialized")


def connect_redis() -> redis.Redis:
    """Create the Redis client. An unreachable Redis only costs cache hits."""
    client = redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        decode_responses=True,
        socket_timeout=1,
        socket_connect_timeout=1,
    )
    try:
        client.ping()
        logger.info("Redis connected")
    except redis.RedisError as e:
        logger.warning(f"Redis not reachable, availability reads will go to the database: {e}")
    return client


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage app lifecycle."""
    logger.info("Starting Inventory Service...")

    engine = create_db_engine(settings.sqlalchemy_url())
    dependencies.session_factory = create_session_factory(engine)

    try:
        init_db(engine)
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    if settings.seed_on_startup:
        from inventory_service.seed_data import seed_products

        db = dependencies.session_factory()
        try:
            seed_products(
                db,
                low_stock_threshold=settings.default_low_stock_threshold,
                location=settings.default_location,
            )
            logger.info("Products seeded")
        except SQLAlchemyError as e:
            logger.error(f"Failed to seed products: {e}")
        finally:
            db.close()

    dependencies.redis_client = connect_redis()

    consumer = None
    producer = None
    if settings.kafka_enabled:
        try:
            create_topics(settings.kafka_bootstrap_servers)
            logger.info("Kafka topics initialized")
            producer = BaseKafkaProducer(settings.kafka_bootstrap_servers, client_id="inventory-producer")
            logger.info("Kafka producer initialized")
        except Exception as e:
            logger.error(f"Failed to initialize Kafka: {e}")
            raise

        dependencies.publisher = InventoryEventPublisher(producer)
        handler = OrderEventHandler(
            dependencies.session_factory,
            dependencies.publisher,
            cache_factory=get_cache,
            timeout_seconds=settings.reservation_timeout_seconds,
        )
        consumer, _ = start_consumer(settings.kafka_bootstrap_servers, settings.kafka_group_id, handler)
    else:
        logger.info("Kafka disabled, events will not be published or consumed")

    yield

    logger.info("Shutting down Inventory Service...")
    if consumer:
        consumer.stop()
    if producer:
        producer.flush()
    if dependencies.redis_client:
        dependencies.redis_client.close()
    engine.dispose()


app = FastAPI(title="Inventory Service", version=SERVICE_VERSION, lifespan=lifespan)
app.include_router(router)


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="ok",
        service="inventory-service",
        version=SERVICE_VERSION,
    )


@app.get("/products", response_model=List[ProductDetail])
def list_products(
    active_only: bool = False,
    db: Session = Depends(get_db),
    cache: Optional[AvailabilityCache] = Depends(get_cache),
) -> List[ProductDetail]:
    """List products with their current availability."""
    return CatalogReader(db, StockLedger(db, cache), cache).list_products(active_only=active_only)


@app.get("/products/{product_id}", response_model=ProductDetail)
def get_product(
    product_id: str,
    db: Session = Depends(get_db),
    cache: Optional[AvailabilityCache] = Depends(get_cache),
) -> ProductDetail:
    """Get product details with availability."""
    try:
        return CatalogReader(db, StockLedger(db, cache), cache).product_detail(product_id)
    except ProductNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@app.post("/products", status_code=status.HTTP_201_CREATED, response_model=ProductDetail)
def create_product(
    request: CreateProductRequest,
    db: Session = Depends(get_db),
    cache: Optional[AvailabilityCache] = Depends(get_cache),
) -> ProductDetail:
    """Create a product together with its inventory row (admin)."""
    product_id = request.product_id or f"PROD-{uuid4().hex[:12].upper()}"
    ledger = StockLedger(db, cache)
    try:
        db.add(Product(product_id=product_id, name=request.name, price=request.price, is_active=True))
        ledger.create_inventory(
            product_id,
            quantity=request.initial_stock,
            low_stock_threshold=(
                request.low_stock_threshold
                if request.low_stock_threshold is not None
                else settings.default_low_stock_threshold
            ),
            location=request.location or settings.default_location,
        )
        db.commit()
    except InventoryError as e:
        db.rollback()
        raise http_error(e)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error creating product: {e}")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Product {product_id} could not be created")

    logger.info(f"Created product {product_id}: {request.name}, stock: {request.initial_stock}")
    return CatalogReader(db, ledger, cache).product_detail(product_id)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.inventory_service_port)
