from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from inventory_service.status import InventoryStatus


class AvailabilitySnapshot(BaseModel):
    """Point-in-time availability. The only shape stored in the cache."""

    product_id: str
    available_quantity: int
    status: InventoryStatus
    as_of_version: int = 0


class InventorySummary(BaseModel):
    """Full stock view of one product, read from the store."""

    product_id: str
    quantity: int
    reserved_quantity: int
    available_quantity: int
    status: InventoryStatus
    low_stock_threshold: int
    location: str
    last_restocked_at: Optional[datetime] = None
    version: int = 0


class LineItem(BaseModel):
    """One order line. Extra fields sent by the order service (price, name) are ignored."""

    product_id: str
    quantity: int


class ReserveOrderRequest(BaseModel):
    order_id: str
    line_items: List[LineItem]


class ReservationToken(BaseModel):
    token: str
    product_id: str
    quantity: int
    status: str = "reserved"


class OrderReservation(BaseModel):
    order_id: str
    reservations: List[ReservationToken]
    # False when the order had already been reserved and the existing tokens were returned
    created: bool = True


class SettlementResult(BaseModel):
    token: str
    order_id: str
    product_id: str
    quantity: int
    status: str
    changed: bool


class CreateInventoryRequest(BaseModel):
    product_id: str
    quantity: int = 0
    low_stock_threshold: Optional[int] = None
    location: Optional[str] = None


class RestockRequest(BaseModel):
    delta: int
    location: Optional[str] = None


class UpdateThresholdRequest(BaseModel):
    low_stock_threshold: int


class AvailabilityResponse(BaseModel):
    product_id: str
    available_quantity: int
    status: InventoryStatus
    requested_quantity: Optional[int] = None
    is_available: Optional[bool] = None


class ProductDetail(BaseModel):
    product_id: str
    name: str
    price: float
    is_active: bool
    available_quantity: int
    status: InventoryStatus


class CreateProductRequest(BaseModel):
    name: str
    price: float
    product_id: Optional[str] = None
    initial_stock: int = Field(default=0)
    low_stock_threshold: Optional[int] = None
    location: Optional[str] = None


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str
    service: str
    version: str
