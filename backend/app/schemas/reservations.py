"""Reservation (stock hold) schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from app.models.reservations import ReservationStatus


class ReservationCreate(BaseModel):
    """Create reservation schema."""

    client_id: int
    item_id: int
    location_id: int
    quantity: int = Field(..., ge=1)
    notes: Optional[str] = None


class ReservationComplete(BaseModel):
    """Settle a pending reservation as a sale.

    unit_price defaults to the item's selling price in the chosen currency.
    """

    currency: Optional[str] = Field(None, min_length=3, max_length=10)
    payment_method: Optional[str] = Field(None, max_length=30)
    unit_price: Optional[Decimal] = Field(None, ge=0)
    exchange_rate: Optional[Decimal] = Field(None, gt=0)


class ReservationResponse(BaseModel):
    """Reservation response schema."""

    id: int
    client_id: int
    item_id: int
    location_id: int
    quantity: int
    status: ReservationStatus
    notes: Optional[str] = None
    sale_id: Optional[int] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
