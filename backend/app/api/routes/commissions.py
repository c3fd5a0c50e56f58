"""Commission routes - listing, payout and recalculation."""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request, Response

from app.core.rate_limit import READ_LIMIT, WRITE_LIMIT, limiter
from app.db.session import DbSession
from app.schemas.sale import CommissionResponse, PayAllRequest, PayAllResponse
from app.services.commission_service import CommissionCalculator

router = APIRouter()


@router.get("/", response_model=List[CommissionResponse])
@limiter.limit(READ_LIMIT)
def list_commissions(
    request: Request,
    db: DbSession,
    location_id: Optional[int] = None,
    seller_id: Optional[int] = None,
    paid: Optional[bool] = None,
    limit: int = Query(200, ge=1, le=1000),
):
    return CommissionCalculator(db).list(
        location_id=location_id, seller_id=seller_id, paid=paid, limit=limit
    )


@router.get("/unpaid-total/{location_id}")
@limiter.limit(READ_LIMIT)
def get_unpaid_total(request: Request, location_id: int, db: DbSession):
    total = CommissionCalculator(db).unpaid_total(location_id)
    return {"location_id": location_id, "unpaid_total": str(total)}


@router.post("/pay-all", response_model=PayAllResponse)
@limiter.limit(WRITE_LIMIT)
def pay_all_commissions(request: Request, data: PayAllRequest, db: DbSession):
    """Mark every unpaid commission at a location as paid."""
    count = CommissionCalculator(db).pay_all_unpaid(data.location_id)
    return PayAllResponse(location_id=data.location_id, paid_count=count)


@router.post("/recalculate/{sale_id}", response_model=List[CommissionResponse])
@limiter.limit(WRITE_LIMIT)
def recalculate_commissions(request: Request, sale_id: int, db: DbSession):
    """Re-derive unpaid commissions of a sale from current rates; returns changed rows.

    A sale whose commissions failed at settlement gets them created here.
    """
    return CommissionCalculator(db).recalculate(sale_id)


@router.post("/{commission_id}/pay", response_model=CommissionResponse)
@limiter.limit(WRITE_LIMIT)
def pay_commission(request: Request, commission_id: int, db: DbSession):
    return CommissionCalculator(db).mark_paid(commission_id)


@router.delete("/{commission_id}", status_code=204)
@limiter.limit(WRITE_LIMIT)
def delete_commission(request: Request, commission_id: int, db: DbSession):
    try:
        CommissionCalculator(db).delete(commission_id)
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return Response(status_code=204)
