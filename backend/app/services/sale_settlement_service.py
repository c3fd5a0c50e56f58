"""Sale Settlement Service - turns cart lines into a permanent stock decrement.

This is the single entry point for both walk-in point-of-sale sales and the
completion of client reservations.

Flow (one transaction, all-or-nothing across the whole cart):
1. Lock every (item, location) key touched by the cart, in sorted order
2. When completing a reservation, re-read it and require it to be pending
3. Persist Sale + SaleLines (subtotal = unit_price * quantity)
4. Decrement the ledger for every line (combo lines decrement their
   components); the first line that would go negative aborts the cart and
   rolls back every earlier decrement
5. Mark the reservation completed, commit
6. After commit, compute commissions. A failure there is logged and
   reported on the result but never undoes the sale.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.models.commission import Commission
from app.models.item import Item, ItemKind
from app.models.reservations import Reservation, ReservationStatus
from app.models.sale import Sale, SaleLine
from app.models.stock import MovementReason, StockMovement
from app.services.commission_service import CommissionCalculator
from app.services.errors import (
    CommissionComputationFailedError,
    InsufficientStockError,
    InvalidTransitionError,
    ItemNotFoundError,
    PaidCommissionsExistError,
    PartialSettlementConflict,
    ReservationNotFoundError,
    SaleNotFoundError,
)
from app.services.locking import KeyedLockRegistry, StockKey, stock_locks
from app.services.stock_ledger import StockLedger

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class SaleLineInput:
    """One requested cart line."""

    item_id: int
    quantity: int
    unit_price: Decimal


@dataclass
class SettlementResult:
    sale: Sale
    commissions: List[Commission] = field(default_factory=list)
    commission_error: Optional[CommissionComputationFailedError] = None

    @property
    def commission_ok(self) -> bool:
        return self.commission_error is None


class SaleSettlementService:
    """Atomic settlement and reversal of sales."""

    def __init__(
        self,
        db: Session,
        locks: KeyedLockRegistry = stock_locks,
        commission_calculator: Optional[CommissionCalculator] = None,
    ):
        self.db = db
        self.locks = locks
        self.ledger = StockLedger(db, locks)
        self.commissions = commission_calculator or CommissionCalculator(db)

    # ===== SETTLE =====

    def settle(
        self,
        location_id: int,
        lines: Iterable[SaleLineInput],
        currency: Optional[str] = None,
        payment_method: Optional[str] = None,
        exchange_rate: Optional[Decimal] = None,
        reservation_id: Optional[int] = None,
    ) -> SettlementResult:
        """Settle a cart at a location.

        Raises:
            InsufficientStockError: a line cannot be covered; nothing is applied
            InvalidTransitionError: the reservation is no longer pending
            ValueError: malformed lines
            LocationNotFoundError: unknown location
        """
        lines = self._normalize_lines(lines)
        self.ledger.require_location(location_id)
        currency = (currency or settings.default_currency).strip().upper()
        payment_method = payment_method or settings.default_payment_method
        items = self._load_items(lines)
        decrements = self._stock_decrements(lines, items)
        keys = [(item_id, location_id) for item_id, _ in decrements]

        with self.locks.hold(keys):
            try:
                reservation = None
                if reservation_id is not None:
                    reservation = self._claim_reservation(reservation_id, location_id, lines)

                sale = self._persist_sale(location_id, lines, currency, payment_method, exchange_rate)
                self._apply_decrements(location_id, decrements, sale.id)

                if reservation is not None:
                    reservation.status = ReservationStatus.COMPLETED.value
                    reservation.sale_id = sale.id
                    reservation.completed_at = datetime.now(timezone.utc)

                self.db.commit()
            except PartialSettlementConflict as conflict:
                self.db.rollback()
                logger.warning(f"Settlement at location {location_id} rolled back: {conflict}")
                raise conflict.cause from conflict
            except Exception:
                self.db.rollback()
                raise

        logger.info(
            f"Settled sale {sale.id} at location {location_id}: "
            f"{len(lines)} line(s), total {sale.total_amount} {currency}"
            + (f", reservation {reservation_id}" if reservation_id is not None else "")
        )

        result = SettlementResult(sale=sale)
        self._compute_commissions(result)
        return result

    def _normalize_lines(self, lines: Iterable[SaleLineInput]) -> List[SaleLineInput]:
        normalized = []
        for line in lines:
            try:
                unit_price = Decimal(str(line.unit_price)).quantize(CENT)
            except (InvalidOperation, TypeError, ValueError):
                raise ValueError(f"Invalid unit price for item {line.item_id}: {line.unit_price!r}")
            quantity = int(line.quantity)
            if quantity <= 0:
                raise ValueError(f"Quantity for item {line.item_id} must be greater than 0")
            if unit_price < 0:
                raise ValueError(f"Unit price for item {line.item_id} cannot be negative")
            normalized.append(SaleLineInput(line.item_id, quantity, unit_price))
        if not normalized:
            raise ValueError("Cannot settle an empty cart")
        return normalized

    def _load_items(self, lines: List[SaleLineInput]) -> Dict[int, Item]:
        item_ids = {line.item_id for line in lines}
        items = {
            item.id: item
            for item in self.db.execute(
                select(Item)
                .options(selectinload(Item.combo_components))
                .where(Item.id.in_(item_ids))
            ).scalars()
        }
        for item_id in item_ids:
            if item_id not in items:
                raise ItemNotFoundError(item_id)
        return items

    def _stock_decrements(
        self, lines: List[SaleLineInput], items: Dict[int, Item]
    ) -> List[Tuple[int, int]]:
        """Ledger decrements per cart line, in cart order.

        Combo lines consume their components' stock; the combo itself has no
        ledger entry.
        """
        decrements = []
        for line in lines:
            item = items[line.item_id]
            if item.kind is ItemKind.COMBO:
                if not item.combo_components:
                    raise ValueError(f"Combo {item.name!r} has no components and cannot be sold")
                for component in item.combo_components:
                    decrements.append(
                        (component.component_item_id, component.quantity * line.quantity)
                    )
            else:
                decrements.append((line.item_id, line.quantity))
        return decrements

    def _claim_reservation(
        self, reservation_id: int, location_id: int, lines: List[SaleLineInput]
    ) -> Reservation:
        reservation = self.db.execute(
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        if reservation.status != ReservationStatus.PENDING.value:
            raise InvalidTransitionError(
                reservation_id, reservation.status, ReservationStatus.COMPLETED.value
            )
        if reservation.location_id != location_id or not any(
            line.item_id == reservation.item_id for line in lines
        ):
            raise ValueError(
                f"Reservation {reservation_id} does not match the settled location or items"
            )
        return reservation

    def _persist_sale(
        self,
        location_id: int,
        lines: List[SaleLineInput],
        currency: str,
        payment_method: str,
        exchange_rate: Optional[Decimal],
    ) -> Sale:
        sale = Sale(
            location_id=location_id,
            currency=currency,
            exchange_rate=exchange_rate,
            payment_method=payment_method,
            total_amount=Decimal("0"),
        )
        for line in lines:
            sale.lines.append(
                SaleLine(
                    item_id=line.item_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    subtotal=line.unit_price * line.quantity,
                )
            )
        sale.total_amount = sum((l.subtotal for l in sale.lines), Decimal("0"))
        self.db.add(sale)
        self.db.flush()
        return sale

    def _apply_decrements(
        self, location_id: int, decrements: List[Tuple[int, int]], sale_id: int
    ) -> None:
        applied = 0
        for item_id, quantity in decrements:
            try:
                self.ledger.adjust(
                    item_id,
                    location_id,
                    -quantity,
                    reason=MovementReason.SALE,
                    ref_type="sale",
                    ref_id=sale_id,
                    commit=False,
                )
            except InsufficientStockError as exc:
                if applied:
                    raise PartialSettlementConflict(exc, applied) from exc
                raise
            applied += 1

    def _compute_commissions(self, result: SettlementResult) -> None:
        try:
            result.commissions = self.commissions.compute_and_persist(result.sale)
        except Exception as exc:
            # The sale stays committed; commission is flagged for follow-up.
            self.db.rollback()
            logger.exception(f"Commission computation failed for sale {result.sale.id}")
            result.commission_error = CommissionComputationFailedError(result.sale.id, str(exc))

    # ===== UNDO =====

    def _outstanding_decrements(self, sale_id: int, location_id: int) -> List[Tuple[int, int]]:
        """Units per item the sale took and has not yet given back, from its movements.

        Undo movements are netted in, so a sale id reused after an undo only
        sees the decrements of the sale that currently holds it.
        """
        rows = self.db.execute(
            select(StockMovement.item_id, func.sum(StockMovement.qty_delta))
            .where(
                StockMovement.ref_type == "sale",
                StockMovement.ref_id == sale_id,
                StockMovement.location_id == location_id,
                StockMovement.reason.in_(
                    [MovementReason.SALE.value, MovementReason.SALE_UNDO.value]
                ),
            )
            .group_by(StockMovement.item_id)
            .order_by(StockMovement.item_id)
        ).all()
        return [(item_id, -int(net)) for item_id, net in rows if net and net < 0]

    def undo(self, sale_id: int) -> None:
        """Reverse a sale: restore its stock, void unpaid commissions, delete it.

        Stock comes back from the movements the sale recorded, not from the
        current combo recipes. Refused with PaidCommissionsExistError when any
        commission on the sale has already been paid out.
        """
        location_id = self.get(sale_id).location_id
        keys: List[StockKey] = [
            (item_id, location_id)
            for item_id, _ in self._outstanding_decrements(sale_id, location_id)
        ]

        with self.locks.hold(keys):
            try:
                # A concurrent undo may have deleted the sale while we waited
                sale = self.db.execute(
                    select(Sale)
                    .where(Sale.id == sale_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one_or_none()
                if sale is None:
                    raise SaleNotFoundError(sale_id)

                paid = self.commissions.paid_for_sale(sale_id)
                if paid:
                    raise PaidCommissionsExistError(sale_id, paid)

                increments = self._outstanding_decrements(sale_id, location_id)
                for item_id, quantity in increments:
                    self.ledger.adjust(
                        item_id,
                        location_id,
                        quantity,
                        reason=MovementReason.SALE_UNDO,
                        ref_type="sale",
                        ref_id=sale_id,
                        commit=False,
                    )
                voided = self.commissions.void_unpaid_for_sale(sale_id)
                self.db.execute(
                    update(Reservation)
                    .where(Reservation.sale_id == sale_id)
                    .values(sale_id=None)
                    .execution_options(synchronize_session=False)
                )
                self.db.delete(sale)
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info(
            f"Undid sale {sale_id} at location {location_id}: "
            f"{len(increments)} stock line(s) restored, {voided} commission(s) voided"
        )

    # ===== READS =====

    def get(self, sale_id: int) -> Sale:
        sale = self.db.execute(
            select(Sale).options(selectinload(Sale.lines)).where(Sale.id == sale_id)
        ).scalar_one_or_none()
        if sale is None:
            raise SaleNotFoundError(sale_id)
        return sale

    def list(self, location_id: Optional[int] = None, limit: int = 100) -> List[Sale]:
        stmt = (
            select(Sale)
            .options(selectinload(Sale.lines))
            .order_by(Sale.created_at.desc(), Sale.id.desc())
            .limit(limit)
        )
        if location_id is not None:
            stmt = stmt.where(Sale.location_id == location_id)
        return list(self.db.execute(stmt).scalars())
