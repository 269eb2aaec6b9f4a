import logging
from typing import List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inventory_service.cache import AvailabilityCache
from inventory_service.catalog import CatalogReader
from inventory_service.config import settings
from inventory_service.coordinator import ReservationCoordinator
from inventory_service.dependencies import get_cache, get_db, get_publisher, get_reservation_timeout
from inventory_service.errors import (
    InsufficientStock,
    InvalidInput,
    InventoryError,
    OrderRejected,
    ProductNotFound,
    ReservationFailed,
    ReservationNotFound,
)
from inventory_service.ledger import StockLedger
from inventory_service.publisher import InventoryEventPublisher
from inventory_service.schemas import (
    AvailabilityResponse,
    CreateInventoryRequest,
    InventorySummary,
    OrderReservation,
    ReservationToken,
    ReserveOrderRequest,
    RestockRequest,
    SettlementResult,
    UpdateThresholdRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/inventory", tags=["inventory"])


def http_error(e: InventoryError) -> HTTPException:
    """Translate an inventory error into the HTTP response callers branch on."""
    if isinstance(e, (ProductNotFound, ReservationNotFound)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, InvalidInput):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, OrderRejected):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.to_dict())
    if isinstance(e, InsufficientStock):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"product_id": e.product_id, "requested": e.requested, "available": e.available},
        )
    if isinstance(e, ReservationFailed):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _store_unavailable(db: Session, e: SQLAlchemyError) -> HTTPException:
    db.rollback()
    logger.error(f"Inventory store error: {e}")
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Inventory store unavailable")


# ----------------------------------------------------------------------------
# Reservations (order service)
# ----------------------------------------------------------------------------

@router.post("/reservations", status_code=status.HTTP_201_CREATED, response_model=OrderReservation)
def reserve_order(
    request: ReserveOrderRequest,
    db: Session = Depends(get_db),
    cache: Optional[AvailabilityCache] = Depends(get_cache),
    publisher: InventoryEventPublisher = Depends(get_publisher),
    timeout_seconds: float = Depends(get_reservation_timeout),
    x_correlation_id: Optional[str] = Header(default=None),
) -> OrderReservation:
    """Reserve every line item of an order, or none of them."""
    correlation_id = x_correlation_id or str(uuid4())
    ledger = StockLedger(db, cache)
    coordinator = ReservationCoordinator(db, ledger, timeout_seconds=timeout_seconds)

    try:
        reservation = coordinator.reserve_order(request.order_id, request.line_items)
    except OrderRejected as rejection:
        publisher.order_rejected(rejection, correlation_id)
        raise http_error(rejection)
    except InventoryError as e:
        raise http_error(e)

    if reservation.created:
        publisher.order_reserved(reservation, correlation_id)
        publisher.low_stock_alerts(ledger, [t.product_id for t in reservation.reservations], correlation_id)
    return reservation


@router.get("/orders/{order_id}/reservations", response_model=List[ReservationToken])
def get_order_reservations(order_id: str, db: Session = Depends(get_db)) -> List[ReservationToken]:
    """List the reservation tokens of an order."""
    try:
        return ReservationCoordinator(db).get_reservations(order_id)
    except InventoryError as e:
        raise http_error(e)


@router.post("/reservations/{token}/commit", response_model=SettlementResult)
def commit_reservation(
    token: str,
    db: Session = Depends(get_db),
    cache: Optional[AvailabilityCache] = Depends(get_cache),
    publisher: InventoryEventPublisher = Depends(get_publisher),
    x_correlation_id: Optional[str] = Header(default=None),
) -> SettlementResult:
    """Turn a reservation into a permanent stock decrement. Repeated calls are no-ops."""
    coordinator = ReservationCoordinator(db, StockLedger(db, cache))
    try:
        result = coordinator.commit(token)
    except InventoryError as e:
        raise http_error(e)

    publisher.settled(result.order_id, [result], x_correlation_id or str(uuid4()))
    return result


@router.post("/reservations/{token}/release", response_model=SettlementResult)
def release_reservation(
    token: str,
    db: Session = Depends(get_db),
    cache: Optional[AvailabilityCache] = Depends(get_cache),
    publisher: InventoryEventPublisher = Depends(get_publisher),
    x_correlation_id: Optional[str] = Header(default=None),
) -> SettlementResult:
    """Return a reservation's units to available stock. Repeated calls are no-ops."""
    coordinator = ReservationCoordinator(db, StockLedger(db, cache))
    try:
        result = coordinator.release(token)
    except InventoryError as e:
        raise http_error(e)

    publisher.settled(result.order_id, [result], x_correlation_id or str(uuid4()))
    return result


# ----------------------------------------------------------------------------
# Stock administration
# ----------------------------------------------------------------------------

@router.post("", status_code=status.HTTP_201_CREATED, response_model=InventorySummary)
def create_inventory(
    request: CreateInventoryRequest,
    db: Session = Depends(get_db),
    cache: Optional[AvailabilityCache] = Depends(get_cache),
) -> InventorySummary:
    """Provision the inventory row of a product."""
    ledger = StockLedger(db, cache)
    try:
        summary = ledger.create_inventory(
            request.product_id,
            quantity=request.quantity,
            low_stock_threshold=(
                request.low_stock_threshold
                if request.low_stock_threshold is not None
                else settings.default_low_stock_threshold
            ),
            location=request.location or settings.default_location,
        )
        db.commit()
        return summary
    except InventoryError as e:
        db.rollback()
        raise http_error(e)
    except SQLAlchemyError as e:
        raise _store_unavailable(db, e)


@router.get("/{product_id}", response_model=InventorySummary)
def get_inventory(product_id: str, db: Session = Depends(get_db)) -> InventorySummary:
    """Authoritative stock counters, read from the store."""
    try:
        return StockLedger(db).get_summary(product_id)
    except InventoryError as e:
        raise http_error(e)


@router.get("/{product_id}/availability", response_model=AvailabilityResponse, response_model_exclude_none=True)
def get_availability(
    product_id: str,
    quantity: Optional[int] = Query(default=None),
    db: Session = Depends(get_db),
    cache: Optional[AvailabilityCache] = Depends(get_cache),
) -> AvailabilityResponse:
    """Best-effort availability for product pages and cart checks. Does not reserve."""
    ledger = StockLedger(db, cache)
    try:
        return CatalogReader(db, ledger, cache).check_availability(product_id, quantity)
    except InventoryError as e:
        raise http_error(e)


@router.post("/{product_id}/restock", response_model=InventorySummary)
def restock(
    product_id: str,
    request: RestockRequest,
    db: Session = Depends(get_db),
    cache: Optional[AvailabilityCache] = Depends(get_cache),
    publisher: InventoryEventPublisher = Depends(get_publisher),
    x_correlation_id: Optional[str] = Header(default=None),
) -> InventorySummary:
    """Add physical units to a product."""
    ledger = StockLedger(db, cache)
    try:
        summary = ledger.restock(product_id, request.delta, request.location)
        db.commit()
    except InventoryError as e:
        db.rollback()
        raise http_error(e)
    except SQLAlchemyError as e:
        raise _store_unavailable(db, e)

    publisher.restocked(summary, request.delta, x_correlation_id or str(uuid4()))
    return summary


@router.put("/{product_id}/threshold", response_model=InventorySummary)
def update_threshold(
    product_id: str,
    request: UpdateThresholdRequest,
    db: Session = Depends(get_db),
    cache: Optional[AvailabilityCache] = Depends(get_cache),
) -> InventorySummary:
    """Change the low stock threshold of a product."""
    ledger = StockLedger(db, cache)
    try:
        summary = ledger.update_low_stock_threshold(product_id, request.low_stock_threshold)
        db.commit()
        return summary
    except InventoryError as e:
        db.rollback()
        raise http_error(e)
    except SQLAlchemyError as e:
        raise _store_unavailable(db, e)
