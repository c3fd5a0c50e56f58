"""Catalog item models: Category, Item and ComboComponent.

Items are owned by the catalog; the stock engine only reads them. An item is
either a simple stocked product or a combo whose availability is derived from
its components' stock.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin


class ItemKind(str, Enum):
    """Variant tag for catalog items."""

    SIMPLE = "simple"
    COMBO = "combo"


class Category(Base):
    """Item category; drives seller commission overrides."""

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)


class Item(Base, TimestampMixin):
    """Sellable catalog item."""

    __tablename__ = "items"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    sku: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    is_combo: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True
    )
    selling_price_usd: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    selling_price_local: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    category: Mapped[Optional["Category"]] = relationship("Category")
    combo_components: Mapped[list["ComboComponent"]] = relationship(
        "ComboComponent",
        back_populates="combo_item",
        foreign_keys="ComboComponent.combo_item_id",
        cascade="all, delete-orphan",
    )

    @property
    def kind(self) -> ItemKind:
        return ItemKind.COMBO if self.is_combo else ItemKind.SIMPLE

    def price_for(self, currency: str) -> Optional[Decimal]:
        """Selling price in the given currency (USD or the local currency)."""
        if currency.upper() == "USD":
            return self.selling_price_usd
        return self.selling_price_local


class ComboComponent(Base):
    """One constituent item of a combo and how many units each combo consumes."""

    __tablename__ = "combo_components"
    __table_args__ = (
        UniqueConstraint("combo_item_id", "component_item_id", name="uq_combo_component"),
        CheckConstraint("quantity > 0", name="ck_combo_component_quantity_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    combo_item_id: Mapped[int] = mapped_column(
        ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    component_item_id: Mapped[int] = mapped_column(
        ForeignKey("items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    combo_item: Mapped["Item"] = relationship(
        "Item", foreign_keys=[combo_item_id], back_populates="combo_components"
    )
    component_item: Mapped["Item"] = relationship("Item", foreign_keys=[component_item_id])
