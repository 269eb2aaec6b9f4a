"""
Stock ledger: the only writer of inventory counters.

Every mutation is a single conditional ``UPDATE ... RETURNING`` so the check and
the write happen in one statement at the store. Two reservations racing for the
same product are serialized by the row lock; the loser's WHERE clause is
re-evaluated against the winner's committed counters and matches no row.

Mutations mark the product's cached availability as stale. The cache entries are
deleted once the session commits, and forgotten if it rolls back.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import case, event, select, update
from sqlalchemy.orm import Session

from shared.database import begin_read_only

from inventory_service.cache import AvailabilityCache
from inventory_service.errors import InsufficientStock, InvalidInput, ProductNotFound
from inventory_service.models import Inventory
from inventory_service.schemas import AvailabilitySnapshot, InventorySummary
from inventory_service.status import derive_status

logger = logging.getLogger(__name__)

PENDING_INVALIDATIONS = "inventory.pending_invalidations"
INVALIDATION_HOOKED = "inventory.invalidation_hooked"

SUMMARY_COLUMNS = (
    Inventory.product_id,
    Inventory.quantity,
    Inventory.reserved_quantity,
    Inventory.low_stock_threshold,
    Inventory.location,
    Inventory.last_restocked_at,
    Inventory.version,
)


def _require_positive(value: int, name: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidInput(f"{name} must be a positive integer, got {value!r}")


def _summary_from_row(row) -> InventorySummary:
    available = row.quantity - row.reserved_quantity
    return InventorySummary(
        product_id=row.product_id,
        quantity=row.quantity,
        reserved_quantity=row.reserved_quantity,
        available_quantity=available,
        status=derive_status(available, row.low_stock_threshold),
        low_stock_threshold=row.low_stock_threshold,
        location=row.location,
        last_restocked_at=row.last_restocked_at,
        version=row.version,
    )


class StockLedger:
    """Atomic stock operations for single products, bound to one session."""

    def __init__(self, db: Session, cache: Optional[AvailabilityCache] = None):
        """Initialize with database session and the cache to invalidate after commits."""
        self.db = db
        self.cache = cache

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    def create_inventory(
        self,
        product_id: str,
        quantity: int = 0,
        low_stock_threshold: int = 10,
        location: str = "MAIN_WAREHOUSE",
    ) -> InventorySummary:
        """Create the inventory row of a product."""
        if quantity < 0:
            raise InvalidInput(f"quantity must be >= 0, got {quantity}")
        if low_stock_threshold < 0:
            raise InvalidInput(f"low_stock_threshold must be >= 0, got {low_stock_threshold}")
        if self._load_row(product_id) is not None:
            raise InvalidInput(f"Inventory for product {product_id} already exists")

        inventory = Inventory(
            product_id=product_id,
            quantity=quantity,
            reserved_quantity=0,
            low_stock_threshold=low_stock_threshold,
            location=location,
            version=0,
        )
        self.db.add(inventory)
        self.db.flush()
        self._schedule_invalidation(product_id)
        logger.info(f"Created inventory for {product_id}: quantity {quantity}", extra={"product_id": product_id})
        return self.get_summary(product_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def reserve(self, product_id: str, quantity: int) -> int:
        """
        Claim ``quantity`` units for an uncommitted order.

        Returns the new available quantity. Raises InsufficientStock when fewer
        units are available, ProductNotFound when the product has no inventory.
        """
        _require_positive(quantity, "quantity")

        row = self.db.execute(
            update(Inventory)
            .where(
                Inventory.product_id == product_id,
                Inventory.available_quantity >= quantity,
            )
            .values(
                reserved_quantity=Inventory.reserved_quantity + quantity,
                version=Inventory.version + 1,
            )
            .returning(Inventory.quantity, Inventory.reserved_quantity)
            .execution_options(synchronize_session=False)
        ).first()

        if row is None:
            available = self._available_now(product_id)
            logger.info(
                f"Insufficient stock for {product_id}: requested {quantity}, available {available}",
                extra={"product_id": product_id},
            )
            raise InsufficientStock(product_id, quantity, available)

        self._schedule_invalidation(product_id)
        available = row.quantity - row.reserved_quantity
        logger.info(
            f"Reserved {quantity} units of {product_id} (available {available})",
            extra={"product_id": product_id},
        )
        return available

    def release(self, product_id: str, quantity: int) -> int:
        """Return reserved units to available stock. Reserved never drops below 0."""
        _require_positive(quantity, "quantity")

        row = self.db.execute(
            update(Inventory)
            .where(Inventory.product_id == product_id)
            .values(
                reserved_quantity=case(
                    (Inventory.reserved_quantity >= quantity, Inventory.reserved_quantity - quantity),
                    else_=0,
                ),
                version=Inventory.version + 1,
            )
            .returning(Inventory.quantity, Inventory.reserved_quantity)
            .execution_options(synchronize_session=False)
        ).first()

        if row is None:
            raise ProductNotFound(product_id)

        self._schedule_invalidation(product_id)
        available = row.quantity - row.reserved_quantity
        logger.info(
            f"Released {quantity} units of {product_id} (available {available})",
            extra={"product_id": product_id},
        )
        return available

    def commit(self, product_id: str, quantity: int) -> int:
        """Turn reserved units into a permanent decrement of physical stock."""
        _require_positive(quantity, "quantity")

        row = self.db.execute(
            update(Inventory)
            .where(
                Inventory.product_id == product_id,
                Inventory.reserved_quantity >= quantity,
            )
            .values(
                quantity=Inventory.quantity - quantity,
                reserved_quantity=Inventory.reserved_quantity - quantity,
                version=Inventory.version + 1,
            )
            .returning(Inventory.quantity, Inventory.reserved_quantity)
            .execution_options(synchronize_session=False)
        ).first()

        if row is None:
            current = self._load_row(product_id)
            if current is None:
                raise ProductNotFound(product_id)
            raise InvalidInput(
                f"Cannot commit {quantity} units of {product_id}: only {current.reserved_quantity} reserved"
            )

        self._schedule_invalidation(product_id)
        logger.info(
            f"Committed {quantity} units of {product_id} (quantity {row.quantity})",
            extra={"product_id": product_id},
        )
        return row.quantity - row.reserved_quantity

    def restock(self, product_id: str, delta: int, location: Optional[str] = None) -> InventorySummary:
        """Add physical units, optionally moving the stock to a new location."""
        _require_positive(delta, "delta")

        values = {
            Inventory.quantity: Inventory.quantity + delta,
            Inventory.last_restocked_at: datetime.now(timezone.utc).replace(tzinfo=None),
            Inventory.version: Inventory.version + 1,
        }
        if location:
            values[Inventory.location] = location

        row = self.db.execute(
            update(Inventory)
            .where(Inventory.product_id == product_id)
            .values(values)
            .returning(*SUMMARY_COLUMNS)
            .execution_options(synchronize_session=False)
        ).first()

        if row is None:
            raise ProductNotFound(product_id)

        self._schedule_invalidation(product_id)
        summary = _summary_from_row(row)
        logger.info(
            f"Restocked {delta} units of {product_id} (quantity {summary.quantity}, status {summary.status.value})",
            extra={"product_id": product_id},
        )
        return summary

    def update_low_stock_threshold(self, product_id: str, threshold: int) -> InventorySummary:
        """Change the low stock threshold; status follows on the next read."""
        if threshold < 0:
            raise InvalidInput(f"low_stock_threshold must be >= 0, got {threshold}")

        row = self.db.execute(
            update(Inventory)
            .where(Inventory.product_id == product_id)
            .values(low_stock_threshold=threshold, version=Inventory.version + 1)
            .returning(*SUMMARY_COLUMNS)
            .execution_options(synchronize_session=False)
        ).first()

        if row is None:
            raise ProductNotFound(product_id)

        self._schedule_invalidation(product_id)
        return _summary_from_row(row)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_availability(self, product_id: str) -> AvailabilitySnapshot:
        """
        Point-in-time estimate for display. Takes no lock.

        Never use this to decide whether an allocation may proceed: only
        ``reserve`` makes that decision, at the store. Called outside a
        transaction it opens a read-only one, which on SQLite does not wait for
        a concurrent writer.
        """
        begin_read_only(self.db)
        row = self._load_row(product_id)
        if row is None:
            raise ProductNotFound(product_id)
        available = row.quantity - row.reserved_quantity
        return AvailabilitySnapshot(
            product_id=product_id,
            available_quantity=available,
            status=derive_status(available, row.low_stock_threshold),
            as_of_version=row.version,
        )

    def get_summary(self, product_id: str) -> InventorySummary:
        row = self._load_row(product_id)
        if row is None:
            raise ProductNotFound(product_id)
        return _summary_from_row(row)

    def _load_row(self, product_id: str):
        return self.db.execute(
            select(*SUMMARY_COLUMNS).where(Inventory.product_id == product_id)
        ).first()

    def _available_now(self, product_id: str) -> int:
        row = self._load_row(product_id)
        if row is None:
            raise ProductNotFound(product_id)
        return row.quantity - row.reserved_quantity

    # ------------------------------------------------------------------
    # Cache invalidation
    # ------------------------------------------------------------------

    def _schedule_invalidation(self, product_id: str) -> None:
        if self.cache is None:
            return

        self.db.info.setdefault(PENDING_INVALIDATIONS, set()).add(product_id)
        if self.db.info.get(INVALIDATION_HOOKED):
            return

        cache = self.cache

        def invalidate_after_commit(session: Session) -> None:
            pending = session.info.pop(PENDING_INVALIDATIONS, set())
            if pending:
                cache.invalidate_many(sorted(pending))

        def discard_after_rollback(session: Session, previous_transaction) -> None:
            session.info.pop(PENDING_INVALIDATIONS, None)

        event.listen(self.db, "after_commit", invalidate_after_commit)
        event.listen(self.db, "after_soft_rollback", discard_after_rollback)
        self.db.info[INVALIDATION_HOOKED] = True
