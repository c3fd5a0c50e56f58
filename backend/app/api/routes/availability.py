"""Availability routes - storefront stock badges and POS cart limits."""

from fastapi import APIRouter, Request

from app.core.rate_limit import READ_LIMIT, limiter
from app.db.session import DbSession
from app.models.item import Item, ItemKind
from app.schemas.stock import (
    CartValidationRequest,
    CartValidationResponse,
    ItemAvailabilityResponse,
)
from app.services.combo_availability import ComboAvailabilityResolver
from app.services.errors import ItemNotFoundError
from app.services.stock_ledger import StockLedger

router = APIRouter()


@router.get("/{location_id}/items/{item_id}", response_model=ItemAvailabilityResponse)
@limiter.limit(READ_LIMIT)
def get_item_availability(request: Request, location_id: int, item_id: int, db: DbSession):
    """Sellable quantity and stock status of a simple item or combo."""
    item = db.get(Item, item_id)
    if item is None:
        raise ItemNotFoundError(item_id)
    StockLedger(db).require_location(location_id)

    resolver = ComboAvailabilityResolver(db)
    components = []
    unconstrained = False
    if item.kind is ItemKind.COMBO:
        combo = resolver.resolve_availability(item, location_id)
        components = combo.components
        available = combo.limiting_quantity or 0
        status = combo.status
        unconstrained = combo.unconstrained
    else:
        availability = resolver.item_availability(item_id, location_id)
        available = availability.available
        status = availability.status

    return ItemAvailabilityResponse(
        item_id=item_id,
        location_id=location_id,
        kind=item.kind,
        available=available,
        status=status,
        unconstrained=unconstrained,
        components=[
            {
                "component_item_id": c.component_item_id,
                "required_quantity": c.required_quantity,
                "available": c.available,
                "units_sellable": c.units_sellable,
            }
            for c in components
        ],
    )


@router.post("/{location_id}/cart", response_model=CartValidationResponse)
@limiter.limit(READ_LIMIT)
def validate_cart(request: Request, location_id: int, data: CartValidationRequest, db: DbSession):
    """Report cart lines that exceed current availability."""
    StockLedger(db).require_location(location_id)
    issues = ComboAvailabilityResolver(db).validate_cart(
        location_id, [(line.item_id, line.quantity) for line in data.lines]
    )
    return CartValidationResponse(
        valid=not issues,
        issues=[
            {
                "item_id": issue.item_id,
                "requested": issue.requested,
                "available": issue.available,
                "status": issue.status,
                "reason": issue.reason,
                "message": issue.message,
            }
            for issue in issues
        ],
    )
