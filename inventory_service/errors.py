"""
Inventory error taxonomy.

Callers tell business rejections (InsufficientStock, OrderRejected) apart from
transient failures (ReservationFailed) by type. Rejections carry the product and
the quantity actually available so a client can adjust its cart instead of
retrying blindly.
"""

from typing import Optional


class InventoryError(Exception):
    """Base class for all inventory errors."""


class InvalidInput(InventoryError):
    """A quantity, delta or threshold is out of range."""


class ProductNotFound(InventoryError):
    """No inventory row exists for the product."""

    def __init__(self, product_id: str):
        super().__init__(f"Product {product_id} not found")
        self.product_id = product_id


class InsufficientStock(InventoryError):
    """The store refused a reservation because too few units are available."""

    def __init__(self, product_id: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for product {product_id}: requested {requested}, available {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class OrderRejected(InventoryError):
    """An order could not be reserved as a whole; nothing was reserved."""

    def __init__(self, order_id: str, product_id: str, requested: int, available: int):
        super().__init__(
            f"Order {order_id} rejected: product {product_id} requested {requested}, available {available}"
        )
        self.order_id = order_id
        self.product_id = product_id
        self.requested = requested
        self.available = available

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "product_id": self.product_id,
            "requested": self.requested,
            "available": self.available,
        }


class ReservationFailed(InventoryError):
    """
    The reservation attempt was aborted by a store error or timeout.

    Nothing was persisted. The caller may retry the whole order with a new attempt.
    """

    def __init__(self, message: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.order_id = order_id


class ReservationNotFound(InventoryError):
    """No reservation exists for the token."""

    def __init__(self, token: str):
        super().__init__(f"Reservation {token} not found")
        self.token = token


class CacheUnavailable(InventoryError):
    """Redis could not be reached. Handled inside the cache, never raised to callers."""
