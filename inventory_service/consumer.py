"""
Order event handling for the inventory service.

CONSUMED:
    - order.created:   reserve all line items (all or nothing)
        success  -> inventory.reserved, plus inventory.low per product at/below threshold
        rejected -> inventory.depleted naming the product and what is available,
                    so the order service cancels before any payment is taken
    - order.cancelled: release the order's outstanding reservations
                       (nothing to do if the order was rejected, it holds no tokens)
    - order.fulfilled: commit the order's reservations

Every branch is idempotent because the Kafka consumer delivers at least once
and retries failed handlers: a repeated order.created returns the tokens
reserved the first time, and settled tokens are left untouched.

ReservationFailed is raised out of the handler so the consumer's retry and DLQ
logic applies.
"""

import logging
import threading
from typing import Callable, Optional, Tuple

from sqlalchemy.orm import sessionmaker

from shared.events import (
    BaseEvent,
    CONSUMED_TOPICS,
    OrderCancelledEvent,
    OrderCreatedEvent,
    OrderFulfilledEvent,
)
from shared.kafka_client import BaseKafkaConsumer

from inventory_service.cache import AvailabilityCache
from inventory_service.coordinator import ReservationCoordinator
from inventory_service.errors import OrderRejected, ProductNotFound
from inventory_service.ledger import StockLedger
from inventory_service.publisher import InventoryEventPublisher

logger = logging.getLogger(__name__)


class OrderEventHandler:
    """Callable passed to BaseKafkaConsumer.consume; one session per event."""

    def __init__(
        self,
        session_factory: sessionmaker,
        publisher: InventoryEventPublisher,
        cache_factory: Callable[[], Optional[AvailabilityCache]] = lambda: None,
        timeout_seconds: float = ReservationCoordinator.DEFAULT_TIMEOUT,
    ):
        self.session_factory = session_factory
        self.publisher = publisher
        self.cache_factory = cache_factory
        self.timeout_seconds = timeout_seconds

    def __call__(self, event: BaseEvent) -> None:
        db = self.session_factory()
        try:
            ledger = StockLedger(db, self.cache_factory())
            coordinator = ReservationCoordinator(db, ledger, timeout_seconds=self.timeout_seconds)

            if isinstance(event, OrderCreatedEvent):
                self._on_order_created(event, ledger, coordinator)
            elif isinstance(event, OrderCancelledEvent):
                results = coordinator.release_order(event.order_id)
                logger.info(
                    f"Order {event.order_id} cancelled ({event.cancellation_source or event.reason or 'no reason'}): "
                    f"released {sum(r.changed for r in results)} reservation(s)",
                    extra={"order_id": event.order_id, "correlation_id": event.correlation_id},
                )
                self.publisher.settled(event.order_id, results, event.correlation_id)
            elif isinstance(event, OrderFulfilledEvent):
                results = coordinator.commit_order(event.order_id)
                logger.info(
                    f"Order {event.order_id} fulfilled: committed {sum(r.changed for r in results)} reservation(s)",
                    extra={"order_id": event.order_id, "correlation_id": event.correlation_id},
                )
                self.publisher.settled(event.order_id, results, event.correlation_id)
            else:
                logger.warning(f"Ignoring unexpected event {event.event_type}", extra={"event_type": event.event_type})
        finally:
            db.close()

    def _on_order_created(
        self,
        event: OrderCreatedEvent,
        ledger: StockLedger,
        coordinator: ReservationCoordinator,
    ) -> None:
        try:
            reservation = coordinator.reserve_order(event.order_id, event.items)
        except OrderRejected as rejection:
            self.publisher.order_rejected(rejection, event.correlation_id)
            return
        except ProductNotFound as e:
            logger.warning(
                f"Order {event.order_id} references unknown product {e.product_id}",
                extra={"order_id": event.order_id, "product_id": e.product_id},
            )
            requested = sum(
                int(item.get("quantity", 0)) for item in event.items if item.get("product_id") == e.product_id
            )
            self.publisher.order_rejected(
                OrderRejected(event.order_id, e.product_id, requested, 0),
                event.correlation_id,
            )
            return

        if not reservation.created:
            logger.info(
                f"Order {event.order_id} was already reserved, not publishing again",
                extra={"order_id": event.order_id, "correlation_id": event.correlation_id},
            )
            return

        self.publisher.order_reserved(reservation, event.correlation_id)
        self.publisher.low_stock_alerts(
            ledger,
            [token.product_id for token in reservation.reservations],
            event.correlation_id,
        )


def start_consumer(
    bootstrap_servers: str,
    group_id: str,
    handler: OrderEventHandler,
) -> Tuple[BaseKafkaConsumer, threading.Thread]:
    """Subscribe to order topics and consume on a daemon thread."""
    consumer = BaseKafkaConsumer(
        bootstrap_servers=bootstrap_servers,
        group_id=group_id,
        topics=CONSUMED_TOPICS,
    )

    def run() -> None:
        try:
            consumer.consume(handler)
        finally:
            consumer.close()

    thread = threading.Thread(target=run, name="inventory-order-consumer", daemon=True)
    thread.start()
    logger.info("Inventory consumer thread started")
    return consumer, thread
