"""Stock and availability schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.item import ItemKind
from app.models.stock import MovementReason
from app.services.combo_availability import StockStatus


class StockEntryResponse(BaseModel):
    """Stock entry response schema."""

    id: int
    item_id: int
    location_id: int
    quantity: int
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class StockLevelResponse(BaseModel):
    """On-hand, held and available quantity of one item at one location."""

    item_id: int
    location_id: int
    quantity: int
    reserved: int
    available: int
    status: StockStatus


class StockMovementResponse(BaseModel):
    """Stock movement response schema."""

    id: int
    ts: datetime
    item_id: int
    location_id: int
    qty_delta: int
    quantity_after: int
    reason: str
    ref_type: Optional[str] = None
    ref_id: Optional[int] = None
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class StockAdjustmentRequest(BaseModel):
    """Relative stock change (restock or correction)."""

    item_id: int
    location_id: int
    delta: int
    reason: MovementReason = MovementReason.ADJUSTMENT
    notes: Optional[str] = Field(None, max_length=500)


class StockSetRequest(BaseModel):
    """Absolute stock quantity from intake or a physical count."""

    item_id: int
    location_id: int
    quantity: int = Field(..., ge=0)
    notes: Optional[str] = Field(None, max_length=500)


class ComponentAvailabilityResponse(BaseModel):
    component_item_id: int
    required_quantity: int
    available: int
    units_sellable: int

    model_config = {"from_attributes": True}


class ItemAvailabilityResponse(BaseModel):
    item_id: int
    location_id: int
    kind: ItemKind
    available: int
    status: StockStatus
    unconstrained: bool = False
    components: List[ComponentAvailabilityResponse] = []


class CartLineRequest(BaseModel):
    item_id: int
    quantity: int = Field(..., ge=1)


class CartValidationRequest(BaseModel):
    lines: List[CartLineRequest] = Field(..., min_length=1)


class CartIssueResponse(BaseModel):
    item_id: int
    requested: int
    available: int
    status: StockStatus
    reason: str
    message: str

    model_config = {"from_attributes": True}


class CartValidationResponse(BaseModel):
    valid: bool
    issues: List[CartIssueResponse]
