"""
Catalog read path: product display data joined with cached availability.

Everything here is advisory. A cart that shows "in stock" can still see its
checkout rejected, because only the reservation at the store is binding.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from shared.database import begin_read_only

from inventory_service.cache import AvailabilityCache
from inventory_service.errors import InvalidInput, ProductNotFound
from inventory_service.ledger import StockLedger
from inventory_service.models import Product
from inventory_service.schemas import AvailabilityResponse, AvailabilitySnapshot, ProductDetail
from inventory_service.status import InventoryStatus

logger = logging.getLogger(__name__)


def read_availability(
    ledger: StockLedger,
    cache: Optional[AvailabilityCache],
    product_id: str,
) -> AvailabilitySnapshot:
    """Cache-backed availability, straight from the store when no cache is configured."""
    if cache is None:
        return ledger.get_availability(product_id)
    return cache.get(product_id, ledger.get_availability)


class CatalogReader:
    """Read-only composition of catalog products and stock availability."""

    def __init__(self, db: Session, ledger: StockLedger, cache: Optional[AvailabilityCache] = None):
        self.db = db
        self.ledger = ledger
        self.cache = cache

    def list_products(self, active_only: bool = False) -> List[ProductDetail]:
        begin_read_only(self.db)
        query = select(Product).order_by(Product.product_id)
        if active_only:
            query = query.where(Product.is_active.is_(True))
        products = self.db.execute(query).scalars().all()
        return [self._detail(product) for product in products]

    def product_detail(self, product_id: str) -> ProductDetail:
        begin_read_only(self.db)
        product = self.db.execute(
            select(Product).where(Product.product_id == product_id)
        ).scalar_one_or_none()
        if product is None:
            raise ProductNotFound(product_id)
        return self._detail(product)

    def check_availability(self, product_id: str, quantity: Optional[int] = None) -> AvailabilityResponse:
        """Answer a cart's "can I buy this many?" without reserving anything."""
        if quantity is not None and quantity <= 0:
            raise InvalidInput(f"quantity must be positive, got {quantity}")

        snapshot = read_availability(self.ledger, self.cache, product_id)
        response = AvailabilityResponse(
            product_id=product_id,
            available_quantity=snapshot.available_quantity,
            status=snapshot.status,
        )
        if quantity is not None:
            response.requested_quantity = quantity
            response.is_available = snapshot.available_quantity >= quantity
        return response

    def _detail(self, product: Product) -> ProductDetail:
        try:
            snapshot = read_availability(self.ledger, self.cache, product.product_id)
            available, status = snapshot.available_quantity, snapshot.status
        except ProductNotFound:
            # Listed in the catalog but never stocked
            available, status = 0, InventoryStatus.OUT_OF_STOCK

        return ProductDetail(
            product_id=product.product_id,
            name=product.name,
            price=product.price,
            is_active=product.is_active,
            available_quantity=available,
            status=status,
        )
