"""Commission Calculator - per-seller commission on settled sales.

For every active seller assigned to the sale's location, each sale line is
paid at the seller's rate for the line item's category when one is set,
otherwise at the seller's default rate:

    amount = sum(line.subtotal * rate / 100)   (rounded half-up to cents)

One unpaid Commission row is written per seller per sale. Commission is a
derived side effect of settlement: it is computed after the sale commits and
can be recalculated while unpaid.
"""

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.models.commission import Commission, Seller, SellerCategoryRate, seller_locations
from app.models.item import Item
from app.models.sale import Sale
from app.services.errors import CommissionNotFoundError, SaleNotFoundError

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def _quantum() -> Decimal:
    return Decimal(1).scaleb(-settings.commission_decimal_places)


class CommissionCalculator:
    """Computes, persists and pays out seller commissions."""

    def __init__(self, db: Session):
        self.db = db

    # ===== COMPUTATION =====

    def compute_and_persist(self, sale: Sale) -> List[Commission]:
        """Create the commission rows for a settled sale and commit them.

        Idempotent: a sale that already has commission rows is left as is.
        """
        existing = self._for_sale(sale.id)
        if existing:
            logger.info(f"Sale {sale.id} already has {len(existing)} commission(s); skipping")
            return existing

        commissions = []
        for seller in self.sellers_for_location(sale.location_id):
            amount = self.seller_amount(seller, sale)
            commission = Commission(
                seller_id=seller.id,
                sale_id=sale.id,
                location_id=sale.location_id,
                amount=amount,
                paid=False,
            )
            self.db.add(commission)
            commissions.append(commission)

        self.db.commit()
        logger.info(
            f"Created {len(commissions)} commission(s) for sale {sale.id}, "
            f"total {sum((c.amount for c in commissions), Decimal('0'))}"
        )
        return commissions

    def seller_amount(self, seller: Seller, sale: Sale) -> Decimal:
        """Commission one seller earns on one sale."""
        overrides = self._category_rates(seller.id)
        category_ids = self._line_categories(sale)
        total = Decimal("0")
        for line in sale.lines:
            rate = self.resolve_rate(seller, category_ids.get(line.item_id), overrides)
            total += Decimal(line.subtotal) * rate / HUNDRED
        return total.quantize(_quantum(), rounding=ROUND_HALF_UP)

    def resolve_rate(
        self,
        seller: Seller,
        category_id: Optional[int],
        overrides: Optional[Dict[int, Decimal]] = None,
    ) -> Decimal:
        """Category override for the seller if present, else the default rate."""
        if overrides is None:
            overrides = self._category_rates(seller.id)
        if category_id is not None and category_id in overrides:
            return overrides[category_id]
        return Decimal(seller.default_rate or 0)

    def sellers_for_location(self, location_id: int) -> List[Seller]:
        return list(
            self.db.execute(
                select(Seller)
                .join(seller_locations, seller_locations.c.seller_id == Seller.id)
                .where(
                    seller_locations.c.location_id == location_id,
                    Seller.active.is_(True),
                )
                .order_by(Seller.id)
            ).scalars()
        )

    def recalculate(self, sale_id: int) -> List[Commission]:
        """Re-derive unpaid commissions of a sale from the current rates.

        Paid rows are never touched. Sellers assigned to the location since
        the sale was settled do not gain rows. A sale with no rows at all
        (its computation failed at settlement) gets them created now, and
        the new rows are returned.
        """
        sale = self.db.execute(
            select(Sale).options(selectinload(Sale.lines)).where(Sale.id == sale_id)
        ).scalar_one_or_none()
        if sale is None:
            raise SaleNotFoundError(sale_id)

        if not self._for_sale(sale_id):
            logger.info(f"Sale {sale_id} has no commissions; computing them")
            return self.compute_and_persist(sale)

        updated = []
        for commission in self._for_sale(sale_id):
            if commission.paid:
                continue
            seller = self.db.get(Seller, commission.seller_id)
            new_amount = self.seller_amount(seller, sale)
            if new_amount != commission.amount:
                logger.info(
                    f"Commission {commission.id} recalculated: {commission.amount} -> {new_amount}"
                )
                commission.amount = new_amount
                updated.append(commission)
        self.db.commit()
        return updated

    # ===== PAYOUT =====

    def get(self, commission_id: int) -> Commission:
        commission = self.db.get(Commission, commission_id)
        if commission is None:
            raise CommissionNotFoundError(commission_id)
        return commission

    def list(
        self,
        location_id: Optional[int] = None,
        seller_id: Optional[int] = None,
        paid: Optional[bool] = None,
        limit: int = 200,
    ) -> List[Commission]:
        stmt = select(Commission).order_by(Commission.id.desc()).limit(limit)
        if location_id is not None:
            stmt = stmt.where(Commission.location_id == location_id)
        if seller_id is not None:
            stmt = stmt.where(Commission.seller_id == seller_id)
        if paid is not None:
            stmt = stmt.where(Commission.paid.is_(paid))
        return list(self.db.execute(stmt).scalars())

    def mark_paid(self, commission_id: int) -> Commission:
        commission = self.get(commission_id)
        if commission.paid:
            return commission
        commission.paid = True
        commission.paid_at = datetime.now(timezone.utc)
        self.db.commit()
        logger.info(f"Commission {commission_id} marked paid ({commission.amount})")
        return commission

    def pay_all_unpaid(self, location_id: int) -> int:
        """Mark every unpaid commission at a location as paid; returns the count."""
        result = self.db.execute(
            update(Commission)
            .where(Commission.location_id == location_id, Commission.paid.is_(False))
            .values(paid=True, paid_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        logger.info(f"Paid out {result.rowcount} commission(s) at location {location_id}")
        return result.rowcount

    def unpaid_total(self, location_id: int) -> Decimal:
        total = self.db.execute(
            select(func.coalesce(func.sum(Commission.amount), 0)).where(
                Commission.location_id == location_id,
                Commission.paid.is_(False),
            )
        ).scalar_one()
        return Decimal(total).quantize(_quantum())

    def delete(self, commission_id: int) -> None:
        commission = self.get(commission_id)
        if commission.paid:
            raise ValueError(f"Commission {commission_id} is already paid and cannot be deleted")
        self.db.delete(commission)
        self.db.commit()

    def void_unpaid_for_sale(self, sale_id: int) -> int:
        """Delete the unpaid commissions of a sale. Joins the caller's transaction."""
        result = self.db.execute(
            delete(Commission)
            .where(Commission.sale_id == sale_id, Commission.paid.is_(False))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def paid_for_sale(self, sale_id: int) -> List[int]:
        return list(
            self.db.execute(
                select(Commission.id).where(
                    Commission.sale_id == sale_id, Commission.paid.is_(True)
                )
            ).scalars()
        )

    # ===== INTERNALS =====

    def _for_sale(self, sale_id: int) -> List[Commission]:
        return list(
            self.db.execute(
                select(Commission).where(Commission.sale_id == sale_id).order_by(Commission.seller_id)
            ).scalars()
        )

    def _category_rates(self, seller_id: int) -> Dict[int, Decimal]:
        rows = self.db.execute(
            select(SellerCategoryRate.category_id, SellerCategoryRate.rate).where(
                SellerCategoryRate.seller_id == seller_id
            )
        ).all()
        return {category_id: Decimal(rate) for category_id, rate in rows}

    def _line_categories(self, sale: Sale) -> Dict[int, Optional[int]]:
        item_ids = {line.item_id for line in sale.lines}
        if not item_ids:
            return {}
        rows = self.db.execute(
            select(Item.id, Item.category_id).where(Item.id.in_(item_ids))
        ).all()
        return {item_id: category_id for item_id, category_id in rows}
