"""Sale and commission schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class SaleLineRequest(BaseModel):
    item_id: int
    quantity: int = Field(..., ge=1)
    unit_price: Decimal = Field(..., ge=0)


class SaleCreate(BaseModel):
    """Point-of-sale cart to settle."""

    location_id: int
    lines: List[SaleLineRequest] = Field(..., min_length=1)
    currency: Optional[str] = Field(None, min_length=3, max_length=10)
    payment_method: Optional[str] = Field(None, max_length=30)
    exchange_rate: Optional[Decimal] = Field(None, gt=0)


class SaleLineResponse(BaseModel):
    id: int
    item_id: int
    quantity: int
    unit_price: Decimal
    subtotal: Decimal

    model_config = {"from_attributes": True}


class SaleResponse(BaseModel):
    id: int
    location_id: int
    currency: str
    exchange_rate: Optional[Decimal] = None
    total_amount: Decimal
    payment_method: str
    created_at: datetime
    lines: List[SaleLineResponse]

    model_config = {"from_attributes": True}


class CommissionResponse(BaseModel):
    id: int
    seller_id: int
    sale_id: int
    location_id: int
    amount: Decimal
    paid: bool
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SettlementResponse(BaseModel):
    """Settled sale plus the outcome of the commission side effect."""

    sale: SaleResponse
    commissions: List[CommissionResponse]
    commission_error: Optional[str] = None


class PayAllRequest(BaseModel):
    location_id: int


class PayAllResponse(BaseModel):
    location_id: int
    paid_count: int
