"""Reservation routes - client holds on stock.

Engine errors (insufficient availability/stock, invalid transitions, unknown
ids) are translated to HTTP responses by the handlers registered in main.py.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request

from app.core.rate_limit import READ_LIMIT, WRITE_LIMIT, limiter
from app.db.session import DbSession
from app.models.reservations import ReservationStatus
from app.schemas.reservations import (
    ReservationComplete,
    ReservationCreate,
    ReservationResponse,
)
from app.schemas.sale import SettlementResponse
from app.api.routes.sales import settlement_response
from app.services.reservation_service import ReservationService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=List[ReservationResponse])
@limiter.limit(READ_LIMIT)
def list_reservations(
    request: Request,
    db: DbSession,
    location_id: Optional[int] = None,
    status: Optional[ReservationStatus] = None,
    client_id: Optional[int] = None,
    limit: int = Query(200, ge=1, le=1000),
):
    """List reservations, newest first."""
    return ReservationService(db).list(
        location_id=location_id, status=status, client_id=client_id, limit=limit
    )


@router.post("/", response_model=ReservationResponse, status_code=201)
@limiter.limit(WRITE_LIMIT)
def create_reservation(request: Request, data: ReservationCreate, db: DbSession):
    """Hold stock for a client. 409 when it exceeds what is available to reserve."""
    try:
        return ReservationService(db).create(
            client_id=data.client_id,
            item_id=data.item_id,
            location_id=data.location_id,
            quantity=data.quantity,
            notes=data.notes,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{reservation_id}", response_model=ReservationResponse)
@limiter.limit(READ_LIMIT)
def get_reservation(request: Request, reservation_id: int, db: DbSession):
    return ReservationService(db).get(reservation_id)


@router.post("/{reservation_id}/cancel", response_model=ReservationResponse)
@limiter.limit(WRITE_LIMIT)
def cancel_reservation(request: Request, reservation_id: int, db: DbSession):
    """Release a pending hold."""
    return ReservationService(db).cancel(reservation_id)


@router.post("/{reservation_id}/complete", response_model=SettlementResponse)
@limiter.limit(WRITE_LIMIT)
def complete_reservation(
    request: Request,
    reservation_id: int,
    db: DbSession,
    data: Optional[ReservationComplete] = None,
):
    """Settle a pending hold as a sale.

    409 with ``insufficient_stock`` leaves the reservation pending; retry after
    restocking or cancel it.
    """
    data = data or ReservationComplete()
    try:
        result = ReservationService(db).complete(
            reservation_id,
            currency=data.currency,
            payment_method=data.payment_method,
            unit_price=data.unit_price,
            exchange_rate=data.exchange_rate,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return settlement_response(result)
