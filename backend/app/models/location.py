"""Location model."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin


class Location(Base, TimestampMixin):
    """Physical selling location holding its own stock (shop, stand, depot)."""

    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, unique=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    stock_entries: Mapped[list["StockEntry"]] = relationship(
        "StockEntry", back_populates="location"
    )
    sellers: Mapped[list["Seller"]] = relationship(
        "Seller", secondary="seller_locations", back_populates="locations"
    )
