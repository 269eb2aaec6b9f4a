"""
events.py - Kafka Event Schema Definitions

PURPOSE:
    Defines the event schemas the inventory service exchanges over Kafka.
    Uses Pydantic for data validation and serialization.

EVENT CATEGORIES:
    1. Order Events (consumed): order lifecycle decisions owned by the order service
       - order.created   -> reserve every line item of the order, all or nothing
       - order.cancelled -> release the order's outstanding reservations
       - order.fulfilled -> commit the order's reservations (units leave stock)

    2. Inventory Events (published): outcome of stock operations
       - inventory.reserved
       - inventory.depleted
       - inventory.low
       - inventory.restocked
       - inventory.released
       - inventory.committed

    3. System Events: Dead Letter Queue
       - dlq.events (failed message processing)

COMMON FIELDS (BaseEvent):
    - event_id: Unique identifier (UUID)
    - event_type: Event category and action
    - timestamp: timezone-aware UTC timestamp of event creation
    - correlation_id: Links related events of one order flow

USAGE:
    event = InventoryReservedEvent(
        correlation_id="saga-123",
        order_id="ORD-456",
        reservations=[{"token": "...", "product_id": "PROD-1", "quantity": 2}],
    )
    json_data = event.model_dump_json()
    event = InventoryReservedEvent.model_validate_json(json_data)
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseEvent(BaseModel):
    """
    Base event model for all Kafka events.

    All events inherit from this class and include:
    - Unique event ID
    - Event type identifier
    - Timezone-aware timestamp
    - Correlation ID for tracing one order across services
    """

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    timestamp: datetime = Field(default_factory=_utcnow)
    correlation_id: str


# ============================================================================
# ORDER EVENTS - consumed
# ============================================================================

class OrderCreatedEvent(BaseEvent):
    """
    Published by the order service at checkout.
    Consumers: Inventory Service (reserve every line item in one transaction)
    """

    event_type: str = "order.created"
    order_id: str
    user_id: str
    items: List[Dict[str, Any]]  # [{"product_id": ..., "quantity": ...}, ...]
    total_amount: float = 0.0


class OrderCancelledEvent(BaseEvent):
    """
    Published when an order is cancelled (by the user, or after a failed payment).
    Consumers: Inventory Service (release outstanding reservations)
    """

    event_type: str = "order.cancelled"
    order_id: str
    user_id: str
    reason: str = ""
    cancellation_source: Optional[str] = None


class OrderFulfilledEvent(BaseEvent):
    """
    Published when an order has been fulfilled.
    Consumers: Inventory Service (commit reservations, units physically leave stock)
    """

    event_type: str = "order.fulfilled"
    order_id: str
    user_id: str
    tracking_number: Optional[str] = None
    shipped_at: datetime = Field(default_factory=_utcnow)


# ============================================================================
# INVENTORY EVENTS - published
# ============================================================================

class InventoryReservedEvent(BaseEvent):
    """Every line item of an order was reserved."""

    event_type: str = "inventory.reserved"
    order_id: str
    reservations: List[Dict[str, Any]]  # [{"token", "product_id", "quantity"}]


class InventoryDepletedEvent(BaseEvent):
    """
    An order was rejected because one product lacked stock.
    Consumers: Order Service (cancel the order, the customer is not charged)
    """

    event_type: str = "inventory.depleted"
    order_id: str
    product_id: str
    requested_quantity: int
    available_quantity: int


class InventoryLowEvent(BaseEvent):
    """Availability fell to or below the low stock threshold."""

    event_type: str = "inventory.low"
    product_id: str
    current_stock: int
    threshold: int
    status: str


class InventoryRestockedEvent(BaseEvent):
    """Physical stock was added to a product."""

    event_type: str = "inventory.restocked"
    product_id: str
    delta: int
    quantity: int
    available_quantity: int
    location: str


class InventoryReleasedEvent(BaseEvent):
    """An order's reservations were returned to available stock."""

    event_type: str = "inventory.released"
    order_id: str
    tokens: List[str]


class InventoryCommittedEvent(BaseEvent):
    """An order's reservations became permanent stock decrements."""

    event_type: str = "inventory.committed"
    order_id: str
    tokens: List[str]


# ============================================================================
# DLQ EVENTS - Dead Letter Queue (failed message processing)
# ============================================================================

class DLQEvent(BaseEvent):
    """
    Published when message processing fails after retries.
    Preserves the failed payload for manual review and replay.
    """

    event_type: str = "dlq.events"
    original_topic: str
    original_event_type: str
    error_reason: str
    retry_count: int
    payload: Dict[str, Any]


# Event mapping for deserialization
EVENT_TYPE_MAP = {
    "order.created": OrderCreatedEvent,
    "order.cancelled": OrderCancelledEvent,
    "order.fulfilled": OrderFulfilledEvent,
    "inventory.reserved": InventoryReservedEvent,
    "inventory.depleted": InventoryDepletedEvent,
    "inventory.low": InventoryLowEvent,
    "inventory.restocked": InventoryRestockedEvent,
    "inventory.released": InventoryReleasedEvent,
    "inventory.committed": InventoryCommittedEvent,
    "dlq.events": DLQEvent,
}

CONSUMED_TOPICS = ["order.created", "order.cancelled", "order.fulfilled"]

ALL_TOPICS = list(EVENT_TYPE_MAP)
