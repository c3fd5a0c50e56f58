"""Exceptions raised by the stock, reservation, sale and commission services.

Every error carries the context a caller needs to offer a reduced quantity
or refuse; ``to_dict()`` gives the JSON body used by the API layer.
"""

from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base class for all stock engine errors."""

    code = "engine_error"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": str(self)}


class NotFoundError(EngineError, LookupError):
    code = "not_found"
    entity = "record"

    def __init__(self, entity_id: int):
        self.entity_id = entity_id
        super().__init__(f"{self.entity.capitalize()} {entity_id} not found")


class ItemNotFoundError(NotFoundError):
    code = "item_not_found"
    entity = "item"


class LocationNotFoundError(NotFoundError):
    code = "location_not_found"
    entity = "location"


class ReservationNotFoundError(NotFoundError):
    code = "reservation_not_found"
    entity = "reservation"


class SaleNotFoundError(NotFoundError):
    code = "sale_not_found"
    entity = "sale"


class CommissionNotFoundError(NotFoundError):
    code = "commission_not_found"
    entity = "commission"


class InsufficientStockError(EngineError):
    """An adjustment would drive on-hand quantity below zero."""

    code = "insufficient_stock"

    def __init__(self, item_id: int, location_id: int, available: int, requested: int):
        self.item_id = item_id
        self.location_id = location_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for item {item_id} at location {location_id}: "
            f"need {requested}, have {available}"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            item_id=self.item_id,
            location_id=self.location_id,
            available=self.available,
            requested=self.requested,
        )
        return data


class InsufficientAvailabilityError(EngineError):
    """A hold would exceed on-hand quantity minus other pending holds."""

    code = "insufficient_availability"

    def __init__(self, item_id: int, location_id: int, available: int, requested: int):
        self.item_id = item_id
        self.location_id = location_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Only {max(available, 0)} of item {item_id} available to reserve at "
            f"location {location_id}, requested {requested}"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            item_id=self.item_id,
            location_id=self.location_id,
            available=max(self.available, 0),
            requested=self.requested,
        )
        return data


class InvalidTransitionError(EngineError):
    """Complete/cancel requested on a reservation that is no longer pending."""

    code = "invalid_transition"

    def __init__(self, reservation_id: int, current: str, target: str):
        self.reservation_id = reservation_id
        self.current = current
        self.target = target
        super().__init__(
            f"Reservation {reservation_id} is {current}; cannot move to {target}"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(reservation_id=self.reservation_id, current=self.current, target=self.target)
        return data


class PartialSettlementConflict(EngineError):
    """Internal: a settlement line failed after earlier lines were applied.

    Raised inside the settlement transaction to force a full rollback; callers
    only ever see the underlying ``InsufficientStockError``.
    """

    code = "partial_settlement_conflict"

    def __init__(self, cause: InsufficientStockError, applied_lines: int):
        self.cause = cause
        self.applied_lines = applied_lines
        super().__init__(f"Settlement aborted after {applied_lines} applied line(s): {cause}")


class CommissionComputationFailedError(EngineError):
    """Commission could not be computed for a settled sale. Non-fatal."""

    code = "commission_computation_failed"

    def __init__(self, sale_id: int, reason: str):
        self.sale_id = sale_id
        self.reason = reason
        super().__init__(f"Commission computation failed for sale {sale_id}: {reason}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["sale_id"] = self.sale_id
        return data


class PaidCommissionsExistError(EngineError):
    """A sale cannot be undone while commissions on it have been paid out."""

    code = "paid_commissions_exist"

    def __init__(self, sale_id: int, commission_ids: list):
        self.sale_id = sale_id
        self.commission_ids = commission_ids
        super().__init__(
            f"Sale {sale_id} has paid commissions {commission_ids}; reverse the payout first"
        )

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(sale_id=self.sale_id, commission_ids=self.commission_ids)
        return data


class NotAComboError(EngineError, ValueError):
    code = "not_a_combo"

    def __init__(self, item_id: int, name: Optional[str] = None):
        self.item_id = item_id
        super().__init__(f"Item {name or item_id} is not a combo")
