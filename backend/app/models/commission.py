"""Seller and commission models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Table,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base


# Sellers assigned to a location earn commission on that location's sales
seller_locations = Table(
    "seller_locations",
    Base.metadata,
    Column("seller_id", ForeignKey("sellers.id", ondelete="CASCADE"), primary_key=True),
    Column("location_id", ForeignKey("locations.id", ondelete="CASCADE"), primary_key=True),
)


class Seller(Base):
    """A seller earning commission. Rates are percentages (5 means 5%)."""

    __tablename__ = "sellers"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    default_rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    locations: Mapped[list["Location"]] = relationship(
        "Location", secondary=seller_locations, back_populates="sellers"
    )
    category_rates: Mapped[list["SellerCategoryRate"]] = relationship(
        "SellerCategoryRate", back_populates="seller", cascade="all, delete-orphan"
    )


class SellerCategoryRate(Base):
    """Per-category override of a seller's default commission rate."""

    __tablename__ = "seller_category_rates"
    __table_args__ = (
        UniqueConstraint("seller_id", "category_id", name="uq_seller_category_rate"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    seller_id: Mapped[int] = mapped_column(
        ForeignKey("sellers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    seller: Mapped["Seller"] = relationship("Seller", back_populates="category_rates")


class Commission(Base):
    """Commission owed to one seller for one settled sale."""

    __tablename__ = "commissions"
    __table_args__ = (
        UniqueConstraint("seller_id", "sale_id", name="uq_commission_seller_sale"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    seller_id: Mapped[int] = mapped_column(
        ForeignKey("sellers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sale_id: Mapped[int] = mapped_column(
        ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True
    )
    location_id: Mapped[int] = mapped_column(
        ForeignKey("locations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    seller: Mapped["Seller"] = relationship("Seller")
    sale: Mapped["Sale"] = relationship("Sale")
