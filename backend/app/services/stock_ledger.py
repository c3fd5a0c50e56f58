"""Stock Ledger - authoritative on-hand quantity per item per location.

``adjust`` is the only mutation path used by sales, sale reversals and
restocks. It runs as one conditional UPDATE:

    UPDATE stock SET quantity = quantity + :delta
    WHERE item_id = :item AND location_id = :loc AND quantity + :delta >= 0

so the non-negative check and the write cannot be separated by a concurrent
writer. No row matched means either the entry does not exist yet (created on
the first stock-in, after checking the item and location exist) or the stock
is insufficient, in which case nothing is written and
``InsufficientStockError`` is raised.
"""

import logging
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.models.item import Item
from app.models.location import Location
from app.models.stock import MovementReason, StockEntry, StockMovement
from app.services.errors import InsufficientStockError, ItemNotFoundError, LocationNotFoundError
from app.services.locking import KeyedLockRegistry, stock_locks

logger = logging.getLogger(__name__)


class StockLedger:
    """Per-(item, location) stock quantities with atomic adjustments."""

    def __init__(self, db: Session, locks: KeyedLockRegistry = stock_locks):
        self.db = db
        self.locks = locks

    # ===== READS =====

    def get_quantity(self, item_id: int, location_id: int) -> int:
        """On-hand quantity; 0 when the item was never stocked at the location."""
        quantity = self._current_quantity(item_id, location_id)
        return quantity if quantity is not None else 0

    def list_for_location(self, location_id: int) -> List[StockEntry]:
        return list(
            self.db.execute(
                select(StockEntry)
                .where(StockEntry.location_id == location_id)
                .order_by(StockEntry.item_id)
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def movements(self, item_id: int, location_id: int, limit: int = 50) -> List[StockMovement]:
        return list(
            self.db.execute(
                select(StockMovement)
                .where(
                    StockMovement.item_id == item_id,
                    StockMovement.location_id == location_id,
                )
                .order_by(StockMovement.id.desc())
                .limit(limit)
            ).scalars()
        )

    def require_location(self, location_id: int) -> None:
        if self.db.get(Location, location_id) is None:
            raise LocationNotFoundError(location_id)

    def require_key(self, item_id: int, location_id: int) -> None:
        """Raise the matching not-found error when the item or location does not exist."""
        if self.db.get(Item, item_id) is None:
            raise ItemNotFoundError(item_id)
        self.require_location(location_id)

    # ===== MUTATIONS =====

    def adjust(
        self,
        item_id: int,
        location_id: int,
        delta: int,
        reason: MovementReason = MovementReason.ADJUSTMENT,
        ref_type: Optional[str] = None,
        ref_id: Optional[int] = None,
        notes: Optional[str] = None,
        commit: bool = True,
    ) -> int:
        """Apply ``quantity += delta`` atomically and return the new quantity.

        Raises InsufficientStockError (ledger unchanged) when the result would
        be negative, and ItemNotFoundError / LocationNotFoundError when a key
        with no entry names a missing item or location. With ``commit=False`` the change joins the caller's
        transaction; the caller must then hold the key's lock until it commits.
        """
        delta = int(delta)
        with self.locks.hold([(item_id, location_id)]):
            try:
                new_quantity = self._apply_delta(
                    item_id, location_id, delta, reason, ref_type, ref_id, notes
                )
                if commit:
                    self.db.commit()
            except Exception:
                if commit:
                    self.db.rollback()
                raise
        return new_quantity

    def restock(
        self,
        item_id: int,
        location_id: int,
        quantity: int,
        notes: Optional[str] = None,
    ) -> int:
        """Receive goods into stock."""
        if quantity <= 0:
            raise ValueError("Restock quantity must be greater than 0")
        return self.adjust(
            item_id, location_id, quantity, reason=MovementReason.RESTOCK, notes=notes
        )

    def set_absolute(
        self,
        item_id: int,
        location_id: int,
        quantity: int,
        notes: Optional[str] = None,
    ) -> int:
        """Overwrite the on-hand quantity (stock intake / physical count)."""
        quantity = int(quantity)
        if quantity < 0:
            raise ValueError("Stock quantity cannot be negative")

        with self.locks.hold([(item_id, location_id)]):
            try:
                current = self._current_quantity(item_id, location_id, for_update=True)
                if current is None:
                    self.require_key(item_id, location_id)
                    self.db.add(
                        StockEntry(item_id=item_id, location_id=location_id, quantity=quantity)
                    )
                    self.db.flush()
                else:
                    self.db.execute(
                        update(StockEntry)
                        .where(
                            StockEntry.item_id == item_id,
                            StockEntry.location_id == location_id,
                        )
                        .values(quantity=quantity)
                        .execution_options(synchronize_session=False)
                    )
                delta = quantity - (current or 0)
                if delta:
                    self._record_movement(
                        item_id, location_id, delta, quantity, MovementReason.COUNT,
                        None, None, notes,
                    )
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

        logger.info(
            f"Stock set for item {item_id} at location {location_id}: "
            f"{current if current is not None else 'none'} -> {quantity}"
        )
        return quantity

    # ===== INTERNALS =====

    def _current_quantity(
        self, item_id: int, location_id: int, for_update: bool = False
    ) -> Optional[int]:
        stmt = select(StockEntry.quantity).where(
            StockEntry.item_id == item_id,
            StockEntry.location_id == location_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        quantity = self.db.execute(stmt).scalar_one_or_none()
        return int(quantity) if quantity is not None else None

    def _apply_delta(
        self,
        item_id: int,
        location_id: int,
        delta: int,
        reason: MovementReason,
        ref_type: Optional[str],
        ref_id: Optional[int],
        notes: Optional[str],
    ) -> int:
        result = self.db.execute(
            update(StockEntry)
            .where(
                StockEntry.item_id == item_id,
                StockEntry.location_id == location_id,
                StockEntry.quantity + delta >= 0,
            )
            .values(quantity=StockEntry.quantity + delta)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount == 0:
            current = self._current_quantity(item_id, location_id)
            if current is None:
                self.require_key(item_id, location_id)
            if current is not None or delta < 0:
                logger.warning(
                    f"Rejected stock adjustment for item {item_id} at location {location_id}: "
                    f"delta {delta}, on hand {current or 0}"
                )
                raise InsufficientStockError(
                    item_id=item_id,
                    location_id=location_id,
                    available=current or 0,
                    requested=-delta,
                )
            if delta == 0:
                return 0
            # First stock-in for this key
            self.db.add(StockEntry(item_id=item_id, location_id=location_id, quantity=delta))
            self.db.flush()

        new_quantity = self.get_quantity(item_id, location_id)
        if delta:
            self._record_movement(
                item_id, location_id, delta, new_quantity, reason, ref_type, ref_id, notes
            )
        return new_quantity

    def _record_movement(
        self,
        item_id: int,
        location_id: int,
        delta: int,
        quantity_after: int,
        reason: MovementReason,
        ref_type: Optional[str],
        ref_id: Optional[int],
        notes: Optional[str],
    ) -> None:
        self.db.add(
            StockMovement(
                item_id=item_id,
                location_id=location_id,
                qty_delta=delta,
                quantity_after=quantity_after,
                reason=MovementReason(reason).value,
                ref_type=ref_type,
                ref_id=ref_id,
                notes=notes,
            )
        )
