"""Sales routes - point-of-sale settlement and sale reversal."""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request, Response

from app.core.rate_limit import READ_LIMIT, WRITE_LIMIT, limiter
from app.db.session import DbSession
from app.schemas.sale import CommissionResponse, SaleCreate, SaleResponse, SettlementResponse
from app.services.sale_settlement_service import (
    SaleLineInput,
    SaleSettlementService,
    SettlementResult,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def settlement_response(result: SettlementResult) -> SettlementResponse:
    return SettlementResponse(
        sale=SaleResponse.model_validate(result.sale),
        commissions=[CommissionResponse.model_validate(c) for c in result.commissions],
        commission_error=str(result.commission_error) if result.commission_error else None,
    )


@router.get("/", response_model=List[SaleResponse])
@limiter.limit(READ_LIMIT)
def list_sales(
    request: Request,
    db: DbSession,
    location_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=500),
):
    return SaleSettlementService(db).list(location_id=location_id, limit=limit)


@router.post("/", response_model=SettlementResponse, status_code=201)
@limiter.limit(WRITE_LIMIT)
def create_sale(request: Request, data: SaleCreate, db: DbSession):
    """Settle a walk-in cart. All lines are applied or none are."""
    try:
        result = SaleSettlementService(db).settle(
            location_id=data.location_id,
            lines=[
                SaleLineInput(line.item_id, line.quantity, line.unit_price)
                for line in data.lines
            ],
            currency=data.currency,
            payment_method=data.payment_method,
            exchange_rate=data.exchange_rate,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return settlement_response(result)


@router.get("/{sale_id}", response_model=SaleResponse)
@limiter.limit(READ_LIMIT)
def get_sale(request: Request, sale_id: int, db: DbSession):
    return SaleSettlementService(db).get(sale_id)


@router.delete("/{sale_id}", status_code=204)
@limiter.limit(WRITE_LIMIT)
def undo_sale(request: Request, sale_id: int, db: DbSession):
    """Reverse a sale and restore its stock. 409 if commissions were paid."""
    SaleSettlementService(db).undo(sale_id)
    return Response(status_code=204)
