"""
Reservation Coordinator

Turns a multi-line order into one all-or-nothing stock claim.

RESERVATION FLOW:
    1. Validate and merge the order lines, then sort them by product_id so
       every order locks inventory rows in the same order
    2. Inside one store transaction, call StockLedger.reserve per line and
       record a StockReservation row (the token) per line
    3. All lines reserved -> commit; the reservations become durable together
    4. Any line short of stock -> roll back; the store never persisted the
       earlier lines, so no compensating release is needed, and the caller
       gets OrderRejected naming the product and what is actually available
    5. Store error or timeout -> roll back and raise ReservationFailed; the
       caller retries the whole order later, nothing is retried here

SETTLEMENT:
    commit(token) / release(token) flip the reservation row from "reserved"
    with a conditional update and apply the ledger change in the same
    transaction. A token that is already committed or released is left as is
    and reported with changed=False.
"""

import logging
import time
import uuid
from typing import Callable, Dict, Iterable, List, Tuple, Union

from pydantic import ValidationError
from sqlalchemy import select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from inventory_service.errors import (
    InsufficientStock,
    InvalidInput,
    InventoryError,
    OrderRejected,
    ReservationFailed,
    ReservationNotFound,
)
from inventory_service.ledger import StockLedger
from inventory_service.models import ReservationStatus, StockReservation
from inventory_service.schemas import (
    LineItem,
    OrderReservation,
    ReservationToken,
    SettlementResult,
)

logger = logging.getLogger(__name__)


class ReservationCoordinator:
    """Order-level reservations on top of the stock ledger."""

    DEFAULT_TIMEOUT = 5.0  # seconds

    def __init__(
        self,
        db: Session,
        ledger: StockLedger = None,
        timeout_seconds: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.db = db
        self.ledger = ledger or StockLedger(db)
        self.timeout_seconds = timeout_seconds
        self.clock = clock

    def reserve_order(self, order_id: str, line_items: Iterable[Union[LineItem, dict]]) -> OrderReservation:
        """Reserve every line of an order, or nothing."""
        claims = self._claims(order_id, line_items)

        deadline = self.clock() + self.timeout_seconds
        try:
            existing = self._reservations_for(order_id)
            if existing:
                self.db.rollback()
                logger.info(f"Order {order_id} already has reservations, returning them", extra={"order_id": order_id})
                return OrderReservation(order_id=order_id, reservations=existing, created=False)

            self._apply_statement_timeout()

            rows: List[StockReservation] = []
            for product_id, quantity in claims:
                self._check_deadline(order_id, deadline)
                self.ledger.reserve(product_id, quantity)
                row = StockReservation(
                    order_id=order_id,
                    product_id=product_id,
                    quantity=quantity,
                    status=ReservationStatus.RESERVED.value,
                )
                self.db.add(row)
                rows.append(row)

            self.db.flush()
            tokens = [_token_of(row) for row in rows]
            self._check_deadline(order_id, deadline)
            self.db.commit()
        except InsufficientStock as e:
            self.db.rollback()
            logger.info(
                f"Order {order_id} rejected: {e.product_id} requested {e.requested}, available {e.available}",
                extra={"order_id": order_id, "product_id": e.product_id},
            )
            raise OrderRejected(order_id, e.product_id, e.requested, e.available) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Reservation of order {order_id} failed: {e}", extra={"order_id": order_id})
            raise ReservationFailed(f"Reservation of order {order_id} failed: {e}", order_id=order_id) from e
        except InventoryError:
            self.db.rollback()
            raise

        logger.info(f"Reserved {len(tokens)} line(s) for order {order_id}", extra={"order_id": order_id})
        return OrderReservation(order_id=order_id, reservations=tokens, created=True)

    def commit(self, token: str) -> SettlementResult:
        """Make a reservation permanent. Second and later calls change nothing."""
        return self._settle(token, ReservationStatus.COMMITTED, self.ledger.commit)

    def release(self, token: str) -> SettlementResult:
        """Give a reservation's units back. Second and later calls change nothing."""
        return self._settle(token, ReservationStatus.RELEASED, self.ledger.release)

    def commit_order(self, order_id: str) -> List[SettlementResult]:
        return [self.commit(token) for token in self._outstanding_tokens(order_id)]

    def release_order(self, order_id: str) -> List[SettlementResult]:
        return [self.release(token) for token in self._outstanding_tokens(order_id)]

    def get_reservations(self, order_id: str) -> List[ReservationToken]:
        try:
            reservations = self._reservations_for(order_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Reading reservations of order {order_id} failed: {e}", extra={"order_id": order_id})
            raise ReservationFailed(f"Reading reservations of order {order_id} failed: {e}", order_id=order_id) from e
        return reservations

    # ------------------------------------------------------------------

    def _settle(
        self,
        token: str,
        target: ReservationStatus,
        apply: Callable[[str, int], int],
    ) -> SettlementResult:
        reservation_id = _parse_token(token)
        try:
            claimed = self.db.execute(
                update(StockReservation)
                .where(
                    StockReservation.id == reservation_id,
                    StockReservation.status == ReservationStatus.RESERVED.value,
                )
                .values(status=target.value)
                .returning(StockReservation.order_id, StockReservation.product_id, StockReservation.quantity)
                .execution_options(synchronize_session=False)
            ).first()

            if claimed is None:
                current = self.db.execute(
                    select(
                        StockReservation.order_id,
                        StockReservation.product_id,
                        StockReservation.quantity,
                        StockReservation.status,
                    ).where(StockReservation.id == reservation_id)
                ).first()
                self.db.rollback()
                if current is None:
                    raise ReservationNotFound(token)
                logger.info(
                    f"Reservation {token} is already {current.status}, leaving it unchanged",
                    extra={"order_id": current.order_id, "product_id": current.product_id},
                )
                return SettlementResult(
                    token=token,
                    order_id=current.order_id,
                    product_id=current.product_id,
                    quantity=current.quantity,
                    status=current.status,
                    changed=False,
                )

            apply(claimed.product_id, claimed.quantity)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Settling reservation {token} failed: {e}")
            raise ReservationFailed(f"Settling reservation {token} failed: {e}") from e
        except InventoryError:
            self.db.rollback()
            raise

        logger.info(
            f"Reservation {token} {target.value}",
            extra={"order_id": claimed.order_id, "product_id": claimed.product_id},
        )
        return SettlementResult(
            token=token,
            order_id=claimed.order_id,
            product_id=claimed.product_id,
            quantity=claimed.quantity,
            status=target.value,
            changed=True,
        )

    def _claims(self, order_id: str, line_items: Iterable[Union[LineItem, dict]]) -> List[Tuple[str, int]]:
        """Validate lines, merge repeated products and sort by product_id."""
        if not order_id:
            raise InvalidInput("order_id is required")

        merged: Dict[str, int] = {}
        for item in line_items:
            if isinstance(item, dict):
                try:
                    item = LineItem.model_validate(item)
                except ValidationError as e:
                    raise InvalidInput(f"Invalid line item {item!r}: {e}") from e
            if not item.product_id:
                raise InvalidInput("product_id is required")
            if item.quantity <= 0:
                raise InvalidInput(f"quantity for {item.product_id} must be positive, got {item.quantity}")
            merged[item.product_id] = merged.get(item.product_id, 0) + item.quantity

        if not merged:
            raise InvalidInput(f"Order {order_id} has no line items")
        return sorted(merged.items())

    def _reservations_for(self, order_id: str) -> List[ReservationToken]:
        rows = self.db.execute(
            select(StockReservation)
            .where(StockReservation.order_id == order_id)
            .order_by(StockReservation.product_id)
            .execution_options(populate_existing=True)
        ).scalars().all()
        return [_token_of(row) for row in rows]

    def _outstanding_tokens(self, order_id: str) -> List[str]:
        try:
            tokens = [
                str(reservation_id)
                for reservation_id in self.db.execute(
                    select(StockReservation.id).where(
                        StockReservation.order_id == order_id,
                        StockReservation.status == ReservationStatus.RESERVED.value,
                    )
                ).scalars()
            ]
            self.db.rollback()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Reading reservations of order {order_id} failed: {e}", extra={"order_id": order_id})
            raise ReservationFailed(f"Reading reservations of order {order_id} failed: {e}", order_id=order_id) from e
        return tokens

    def _check_deadline(self, order_id: str, deadline: float) -> None:
        if self.clock() > deadline:
            raise ReservationFailed(
                f"Reservation of order {order_id} exceeded {self.timeout_seconds}s",
                order_id=order_id,
            )

    def _apply_statement_timeout(self) -> None:
        if self.db.get_bind().dialect.name == "postgresql":
            timeout_ms = int(self.timeout_seconds * 1000)
            self.db.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))


def _token_of(row: StockReservation) -> ReservationToken:
    return ReservationToken(
        token=row.token,
        product_id=row.product_id,
        quantity=row.quantity,
        status=row.status,
    )


def _parse_token(token: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(token))
    except ValueError:
        raise ReservationNotFound(token) from None
