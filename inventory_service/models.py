from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import declarative_base

from inventory_service.status import InventoryStatus, derive_status

Base = declarative_base()


class ReservationStatus(str, Enum):
    RESERVED = "reserved"
    COMMITTED = "committed"
    RELEASED = "released"


class Product(Base):
    """Display data owned by the catalog. Carries no stock."""

    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid4)
    product_id = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Float, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)


class Inventory(Base):
    """
    Stock counters for one product.

    available_quantity and status are derived from the counters on read and are
    never stored, so they always agree with the last committed mutation.
    """

    __tablename__ = "inventories"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_inventories_quantity_nonneg"),
        CheckConstraint("reserved_quantity >= 0", name="ck_inventories_reserved_nonneg"),
        CheckConstraint("reserved_quantity <= quantity", name="ck_inventories_reserved_le_quantity"),
        CheckConstraint("low_stock_threshold >= 0", name="ck_inventories_threshold_nonneg"),
    )

    id = Column(Uuid, primary_key=True, default=uuid4)
    product_id = Column(String(255), unique=True, nullable=False, index=True)
    quantity = Column(Integer, default=0, nullable=False)
    reserved_quantity = Column(Integer, default=0, nullable=False)
    low_stock_threshold = Column(Integer, default=10, nullable=False)
    location = Column(String(100), default="MAIN_WAREHOUSE", nullable=False)
    last_restocked_at = Column(DateTime, nullable=True)
    version = Column(Integer, default=0, nullable=False)  # Bumped by every ledger mutation
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    @hybrid_property
    def available_quantity(self):
        return self.quantity - self.reserved_quantity

    @property
    def status(self) -> InventoryStatus:
        return derive_status(self.available_quantity, self.low_stock_threshold)


class StockReservation(Base):
    """One order's claim on one product. The row id is the reservation token."""

    __tablename__ = "stock_reservations"
    __table_args__ = (
        UniqueConstraint("order_id", "product_id", name="uq_stock_reservations_order_product"),
        CheckConstraint("quantity > 0", name="ck_stock_reservations_quantity_pos"),
    )

    id = Column(Uuid, primary_key=True, default=uuid4)
    order_id = Column(String(255), nullable=False, index=True)
    product_id = Column(String(255), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    status = Column(String(20), default=ReservationStatus.RESERVED.value, nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def token(self) -> str:
        return str(self.id)
