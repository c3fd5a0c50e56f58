"""Availability reads for storefront badges and POS quantity limits.

A combo has no ledger entry of its own; it is only as available as its
scarcest component:

    units_sellable(component) = max(0, available(component) // required_qty)
    combo sellable            = min(units_sellable over components)

where ``available`` already subtracts pending reservations. All results are
point-in-time reads; settlement re-checks stock under lock.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.item import Item, ItemKind
from app.services.errors import ItemNotFoundError, NotAComboError
from app.services.reservation_service import ReservationService

logger = logging.getLogger(__name__)


class StockStatus(str, Enum):
    IN_STOCK = "in-stock"
    LOW_STOCK = "low-stock"
    OUT_OF_STOCK = "out-of-stock"


def stock_status(quantity: int, low_stock_threshold: Optional[int] = None) -> StockStatus:
    """Classify a sellable quantity. Used for simple items and combos alike."""
    if low_stock_threshold is None:
        low_stock_threshold = settings.low_stock_threshold
    if quantity <= 0:
        return StockStatus.OUT_OF_STOCK
    if quantity <= low_stock_threshold:
        return StockStatus.LOW_STOCK
    return StockStatus.IN_STOCK


@dataclass(frozen=True)
class ComponentAvailability:
    component_item_id: int
    required_quantity: int
    available: int
    units_sellable: int


@dataclass
class ComboAvailability:
    """Sellable quantity of a combo at a location.

    ``unconstrained`` is True for a combo without components: nothing limits
    it, ``limiting_quantity`` is None and callers must decide how to treat it.
    """

    item_id: int
    location_id: int
    status: StockStatus
    limiting_quantity: Optional[int]
    unconstrained: bool = False
    components: List[ComponentAvailability] = field(default_factory=list)

    @property
    def limiting_component_id(self) -> Optional[int]:
        if not self.components:
            return None
        return min(self.components, key=lambda c: c.units_sellable).component_item_id


@dataclass(frozen=True)
class ItemAvailability:
    item_id: int
    location_id: int
    kind: ItemKind
    available: int
    status: StockStatus
    unconstrained: bool = False


@dataclass(frozen=True)
class CartIssue:
    """A cart line that cannot be fulfilled as requested."""

    item_id: int
    requested: int
    available: int
    status: StockStatus
    reason: str = "insufficient_availability"

    @property
    def message(self) -> str:
        if self.reason == "combo_without_components":
            return "Combo has no components configured"
        if self.available <= 0:
            return "Item is out of stock"
        return f"Only {self.available} available"


class ComboAvailabilityResolver:
    """Derives sellable quantities from ledger stock and pending holds."""

    def __init__(self, db: Session, reservations: Optional[ReservationService] = None):
        self.db = db
        self.reservations = reservations or ReservationService(db)

    def resolve_availability(self, combo_item: Item, location_id: int) -> ComboAvailability:
        if combo_item.kind is not ItemKind.COMBO:
            raise NotAComboError(combo_item.id, combo_item.name)

        if not combo_item.combo_components:
            logger.warning(
                f"Combo {combo_item.id} ({combo_item.name}) has no components; "
                "reporting it as unconstrained"
            )
            return ComboAvailability(
                item_id=combo_item.id,
                location_id=location_id,
                status=StockStatus.IN_STOCK,
                limiting_quantity=None,
                unconstrained=True,
            )

        components = []
        for component in combo_item.combo_components:
            available = self.reservations.available_for(component.component_item_id, location_id)
            components.append(
                ComponentAvailability(
                    component_item_id=component.component_item_id,
                    required_quantity=component.quantity,
                    available=available,
                    units_sellable=max(0, available // component.quantity),
                )
            )

        limiting = min(c.units_sellable for c in components)
        return ComboAvailability(
            item_id=combo_item.id,
            location_id=location_id,
            status=stock_status(limiting),
            limiting_quantity=limiting,
            components=components,
        )

    def item_availability(self, item_id: int, location_id: int) -> ItemAvailability:
        """Availability of any catalog item, dispatching on its kind."""
        item = self.db.get(Item, item_id)
        if item is None:
            raise ItemNotFoundError(item_id)

        if item.kind is ItemKind.COMBO:
            combo = self.resolve_availability(item, location_id)
            return ItemAvailability(
                item_id=item.id,
                location_id=location_id,
                kind=ItemKind.COMBO,
                available=combo.limiting_quantity or 0,
                status=combo.status,
                unconstrained=combo.unconstrained,
            )

        available = max(0, self.reservations.available_for(item.id, location_id))
        return ItemAvailability(
            item_id=item.id,
            location_id=location_id,
            kind=ItemKind.SIMPLE,
            available=available,
            status=stock_status(available),
        )

    def validate_cart(
        self, location_id: int, lines: Iterable[Tuple[int, int]]
    ) -> List[CartIssue]:
        """Check (item_id, quantity) cart lines against current availability.

        Quantities of repeated items are summed. Returns only the lines that
        cannot be fulfilled; an empty list means the cart can be offered as is.
        """
        requested: "OrderedDict[int, int]" = OrderedDict()
        for item_id, quantity in lines:
            requested[item_id] = requested.get(item_id, 0) + int(quantity)

        issues = []
        for item_id, quantity in requested.items():
            availability = self.item_availability(item_id, location_id)
            if availability.unconstrained:
                # Settlement refuses combos without components
                issues.append(
                    CartIssue(
                        item_id=item_id,
                        requested=quantity,
                        available=0,
                        status=availability.status,
                        reason="combo_without_components",
                    )
                )
            elif availability.available < quantity:
                issues.append(
                    CartIssue(
                        item_id=item_id,
                        requested=quantity,
                        available=availability.available,
                        status=availability.status,
                    )
                )
        return issues
