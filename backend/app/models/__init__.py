"""SQLAlchemy models."""

from app.models.location import Location
from app.models.item import Category, ComboComponent, Item, ItemKind
from app.models.stock import MovementReason, StockEntry, StockMovement
from app.models.reservations import Reservation, ReservationStatus
from app.models.sale import Sale, SaleLine
from app.models.commission import Commission, Seller, SellerCategoryRate, seller_locations

__all__ = [
    "Location",
    "Category",
    "ComboComponent",
    "Item",
    "ItemKind",
    "MovementReason",
    "StockEntry",
    "StockMovement",
    "Reservation",
    "ReservationStatus",
    "Sale",
    "SaleLine",
    "Commission",
    "Seller",
    "SellerCategoryRate",
    "seller_locations",
]
