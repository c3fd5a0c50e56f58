"""Stock routes - ledger reads, restocks, corrections and counts.

Business Logic Flows:
- Restock / correction: relative change through StockLedger.adjust
- Count / intake: absolute quantity through StockLedger.set_absolute
- Levels: on hand, held by pending reservations, and available
"""

import logging
from typing import List

from fastapi import APIRouter, HTTPException, Query, Request

from app.core.rate_limit import READ_LIMIT, WRITE_LIMIT, limiter
from app.db.session import DbSession
from app.models.stock import MovementReason
from app.schemas.stock import (
    StockAdjustmentRequest,
    StockEntryResponse,
    StockLevelResponse,
    StockMovementResponse,
    StockSetRequest,
)
from app.services.combo_availability import stock_status
from app.services.reservation_service import ReservationService
from app.services.stock_ledger import StockLedger

logger = logging.getLogger(__name__)

router = APIRouter()

# Reasons a caller may record for a manual change; sale reasons belong to settlement
MANUAL_REASONS = {MovementReason.RESTOCK, MovementReason.ADJUSTMENT}


def _level(db, item_id: int, location_id: int) -> StockLevelResponse:
    reservations = ReservationService(db)
    quantity = reservations.ledger.get_quantity(item_id, location_id)
    reserved = reservations.open_reserved_quantity(item_id, location_id)
    available = quantity - reserved
    return StockLevelResponse(
        item_id=item_id,
        location_id=location_id,
        quantity=quantity,
        reserved=reserved,
        available=available,
        status=stock_status(available),
    )


@router.get("/{location_id}", response_model=List[StockEntryResponse])
@limiter.limit(READ_LIMIT)
def list_stock(request: Request, location_id: int, db: DbSession):
    """All stock entries at a location."""
    return StockLedger(db).list_for_location(location_id)


@router.get("/{location_id}/{item_id}", response_model=StockLevelResponse)
@limiter.limit(READ_LIMIT)
def get_stock_level(request: Request, location_id: int, item_id: int, db: DbSession):
    """On hand, reserved and available quantity for one item."""
    return _level(db, item_id, location_id)


@router.get("/{location_id}/{item_id}/movements", response_model=List[StockMovementResponse])
@limiter.limit(READ_LIMIT)
def get_stock_movements(
    request: Request,
    location_id: int,
    item_id: int,
    db: DbSession,
    limit: int = Query(50, ge=1, le=500),
):
    """Movement history, newest first."""
    return StockLedger(db).movements(item_id, location_id, limit=limit)


@router.post("/adjust", response_model=StockLevelResponse)
@limiter.limit(WRITE_LIMIT)
def adjust_stock(request: Request, data: StockAdjustmentRequest, db: DbSession):
    """Apply a relative stock change. 409 if it would go negative, 404 for an unknown item or location."""
    if data.reason not in MANUAL_REASONS:
        raise HTTPException(
            status_code=400,
            detail=f"Reason must be one of: {', '.join(sorted(r.value for r in MANUAL_REASONS))}",
        )
    StockLedger(db).adjust(
        data.item_id,
        data.location_id,
        data.delta,
        reason=data.reason,
        ref_type="manual",
        notes=data.notes,
    )
    return _level(db, data.item_id, data.location_id)


@router.put("/set", response_model=StockLevelResponse)
@limiter.limit(WRITE_LIMIT)
def set_stock(request: Request, data: StockSetRequest, db: DbSession):
    """Overwrite the on-hand quantity from a stock count or intake."""
    StockLedger(db).set_absolute(data.item_id, data.location_id, data.quantity, notes=data.notes)
    return _level(db, data.item_id, data.location_id)
