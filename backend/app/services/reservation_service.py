"""Reservation Service - client holds on stock.

A pending reservation is a soft hold: it never touches the ledger, it only
reduces what is available to further holds:

    available_for(item, location) = on_hand - sum(pending reservation quantities)

State machine: pending -> completed | cancelled. Both are terminal; a second
complete/cancel raises InvalidTransitionError and never decrements stock twice.
Completion goes through SaleSettlementService, which marks the reservation
completed in the same transaction as the sale.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.item import Item
from app.models.reservations import Reservation, ReservationStatus
from app.models.stock import StockEntry
from app.services.errors import (
    InsufficientAvailabilityError,
    InvalidTransitionError,
    ItemNotFoundError,
    ReservationNotFoundError,
)
from app.services.locking import KeyedLockRegistry, stock_locks
from app.services.sale_settlement_service import (
    SaleLineInput,
    SaleSettlementService,
    SettlementResult,
)
from app.services.stock_ledger import StockLedger

logger = logging.getLogger(__name__)


class ReservationService:
    """Creates, cancels and completes stock holds."""

    def __init__(self, db: Session, locks: KeyedLockRegistry = stock_locks):
        self.db = db
        self.locks = locks
        self.ledger = StockLedger(db, locks)

    # ===== AVAILABILITY =====

    def open_reserved_quantity(self, item_id: int, location_id: int) -> int:
        reserved = self.db.execute(
            select(func.coalesce(func.sum(Reservation.quantity), 0)).where(
                Reservation.item_id == item_id,
                Reservation.location_id == location_id,
                Reservation.status == ReservationStatus.PENDING.value,
            )
        ).scalar_one()
        return int(reserved)

    def available_for(self, item_id: int, location_id: int) -> int:
        """On-hand minus pending holds.

        Negative when direct sales consumed stock that was already held.
        """
        return self.ledger.get_quantity(item_id, location_id) - self.open_reserved_quantity(
            item_id, location_id
        )

    # ===== TRANSITIONS =====

    def create(
        self,
        client_id: int,
        item_id: int,
        location_id: int,
        quantity: int,
        notes: Optional[str] = None,
    ) -> Reservation:
        """Place a hold. Raises InsufficientAvailabilityError if it would overcommit."""
        if quantity <= 0:
            raise ValueError("Reservation quantity must be greater than 0")
        item = self.db.get(Item, item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        self.ledger.require_location(location_id)
        if item.is_combo:
            raise ValueError(
                f"Combo {item.name!r} cannot be reserved directly; reserve its components"
            )

        # Availability check and insert must not interleave with another
        # create or settlement on the same key.
        with self.locks.hold([(item_id, location_id)]):
            try:
                self.db.execute(
                    select(StockEntry.id)
                    .where(
                        StockEntry.item_id == item_id,
                        StockEntry.location_id == location_id,
                    )
                    .with_for_update()
                )
                available = self.available_for(item_id, location_id)
                if quantity > available:
                    raise InsufficientAvailabilityError(
                        item_id=item_id,
                        location_id=location_id,
                        available=available,
                        requested=quantity,
                    )

                reservation = Reservation(
                    client_id=client_id,
                    item_id=item_id,
                    location_id=location_id,
                    quantity=quantity,
                    status=ReservationStatus.PENDING.value,
                    notes=notes,
                )
                self.db.add(reservation)
                self.db.commit()
            except InsufficientAvailabilityError as exc:
                self.db.rollback()
                logger.warning(
                    f"Reservation rejected for client {client_id}: item {item_id} at "
                    f"location {location_id}, requested {quantity}, available {exc.available}"
                )
                raise
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(reservation)
        logger.info(
            f"Reservation {reservation.id} created: client {client_id}, item {item_id}, "
            f"location {location_id}, quantity {quantity}"
        )
        return reservation

    def cancel(self, reservation_id: int) -> Reservation:
        """Release a pending hold. The ledger is not touched."""
        reservation = self.get(reservation_id)
        with self.locks.hold([(reservation.item_id, reservation.location_id)]):
            try:
                self.db.refresh(reservation, with_for_update=True)
                if reservation.status != ReservationStatus.PENDING.value:
                    raise InvalidTransitionError(
                        reservation_id, reservation.status, ReservationStatus.CANCELLED.value
                    )
                reservation.status = ReservationStatus.CANCELLED.value
                reservation.cancelled_at = datetime.now(timezone.utc)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info(f"Reservation {reservation_id} cancelled")
        return reservation

    def complete(
        self,
        reservation_id: int,
        currency: Optional[str] = None,
        payment_method: Optional[str] = None,
        unit_price: Optional[Decimal] = None,
        exchange_rate: Optional[Decimal] = None,
    ) -> SettlementResult:
        """Settle a pending hold as a sale.

        If stock was depleted in the meantime the InsufficientStockError
        propagates and the reservation stays pending; the caller can retry
        after restocking or cancel the hold.
        """
        reservation = self.get(reservation_id)
        if reservation.status != ReservationStatus.PENDING.value:
            raise InvalidTransitionError(
                reservation_id, reservation.status, ReservationStatus.COMPLETED.value
            )

        currency = (currency or settings.default_currency).strip().upper()
        if unit_price is None:
            unit_price = reservation.item.price_for(currency)
            if unit_price is None:
                raise ValueError(
                    f"Item {reservation.item_id} has no {currency} selling price; "
                    "pass unit_price explicitly"
                )

        settlement = SaleSettlementService(self.db, self.locks)
        result = settlement.settle(
            location_id=reservation.location_id,
            lines=[SaleLineInput(reservation.item_id, reservation.quantity, unit_price)],
            currency=currency,
            payment_method=payment_method,
            exchange_rate=exchange_rate,
            reservation_id=reservation.id,
        )
        logger.info(f"Reservation {reservation_id} completed as sale {result.sale.id}")
        return result

    # ===== READS =====

    def get(self, reservation_id: int) -> Reservation:
        reservation = self.db.get(Reservation, reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        return reservation

    def list(
        self,
        location_id: Optional[int] = None,
        status: Optional[ReservationStatus] = None,
        client_id: Optional[int] = None,
        limit: int = 200,
    ) -> List[Reservation]:
        stmt = (
            select(Reservation)
            .order_by(Reservation.created_at.desc(), Reservation.id.desc())
            .limit(limit)
        )
        if location_id is not None:
            stmt = stmt.where(Reservation.location_id == location_id)
        if status is not None:
            stmt = stmt.where(Reservation.status == ReservationStatus(status).value)
        if client_id is not None:
            stmt = stmt.where(Reservation.client_id == client_id)
        return list(self.db.execute(stmt).scalars())
