"""
Inventory event publisher.

Wraps the shared Kafka producer with one method per inventory event. Events are
notifications about state the store has already committed, so a broker outage
is logged and does not undo or fail the stock operation that triggered it.
"""

import logging
from typing import Iterable, List, Optional

from confluent_kafka import KafkaException
from sqlalchemy.exc import SQLAlchemyError

from shared.events import (
    BaseEvent,
    InventoryCommittedEvent,
    InventoryDepletedEvent,
    InventoryLowEvent,
    InventoryReleasedEvent,
    InventoryReservedEvent,
    InventoryRestockedEvent,
)
from shared.kafka_client import BaseKafkaProducer

from inventory_service.errors import OrderRejected
from inventory_service.ledger import StockLedger
from inventory_service.schemas import InventorySummary, OrderReservation, SettlementResult
from inventory_service.status import InventoryStatus

logger = logging.getLogger(__name__)


class InventoryEventPublisher:
    """Publishes inventory.* events. A None producer turns publishing off."""

    def __init__(self, producer: Optional[BaseKafkaProducer]):
        self.producer = producer

    def order_reserved(self, reservation: OrderReservation, correlation_id: str) -> None:
        self._publish(
            "inventory.reserved",
            InventoryReservedEvent(
                correlation_id=correlation_id,
                order_id=reservation.order_id,
                reservations=[token.model_dump() for token in reservation.reservations],
            ),
            key=reservation.order_id,
        )

    def order_rejected(self, rejection: OrderRejected, correlation_id: str) -> None:
        self._publish(
            "inventory.depleted",
            InventoryDepletedEvent(
                correlation_id=correlation_id,
                order_id=rejection.order_id,
                product_id=rejection.product_id,
                requested_quantity=rejection.requested,
                available_quantity=rejection.available,
            ),
            key=rejection.order_id,
        )

    def low_stock_alerts(self, ledger: StockLedger, product_ids: Iterable[str], correlation_id: str) -> None:
        """Publish inventory.low for every product now at or below its threshold."""
        for product_id in product_ids:
            try:
                summary = ledger.get_summary(product_id)
            except SQLAlchemyError as e:
                ledger.db.rollback()
                logger.error(
                    f"Low stock check for {product_id} skipped, stock could not be read: {e}",
                    extra={"product_id": product_id},
                )
                continue
            if summary.status is InventoryStatus.SUFFICIENT:
                continue
            logger.info(
                f"Product {product_id} stock is low ({summary.available_quantity} units available)",
                extra={"product_id": product_id},
            )
            self._publish(
                "inventory.low",
                InventoryLowEvent(
                    correlation_id=correlation_id,
                    product_id=product_id,
                    current_stock=summary.available_quantity,
                    threshold=summary.low_stock_threshold,
                    status=summary.status.value,
                ),
                key=product_id,
            )

    def restocked(self, summary: InventorySummary, delta: int, correlation_id: str) -> None:
        self._publish(
            "inventory.restocked",
            InventoryRestockedEvent(
                correlation_id=correlation_id,
                product_id=summary.product_id,
                delta=delta,
                quantity=summary.quantity,
                available_quantity=summary.available_quantity,
                location=summary.location,
            ),
            key=summary.product_id,
        )

    def settled(self, order_id: str, results: List[SettlementResult], correlation_id: str) -> None:
        """Publish inventory.committed / inventory.released for tokens this call changed."""
        committed = [r.token for r in results if r.changed and r.status == "committed"]
        released = [r.token for r in results if r.changed and r.status == "released"]
        if committed:
            self._publish(
                "inventory.committed",
                InventoryCommittedEvent(correlation_id=correlation_id, order_id=order_id, tokens=committed),
                key=order_id,
            )
        if released:
            self._publish(
                "inventory.released",
                InventoryReleasedEvent(correlation_id=correlation_id, order_id=order_id, tokens=released),
                key=order_id,
            )

    def _publish(self, topic: str, event: BaseEvent, key: Optional[str] = None) -> None:
        if self.producer is None:
            logger.debug(f"Kafka disabled, not publishing {event.event_type}")
            return
        try:
            self.producer.publish(topic, event, key=key)
        except (KafkaException, BufferError) as e:
            logger.error(
                f"Could not publish {event.event_type}: {e}",
                extra={"event_type": event.event_type, "correlation_id": event.correlation_id},
            )
