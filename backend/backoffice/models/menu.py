"""Menu models: maintenance definitions, recipes, costing and sellable items."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean, CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, Text,
    UniqueConstraint, func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from backoffice.db.base import Base, TimestampMixin
from backoffice.models.validators import non_negative, positive

DEFAULT_CRITICAL_LEVEL = 5


class MenuMaintenance(Base, TimestampMixin):
    """Base definition of a dish; production and recipes hang off this."""

    __tablename__ = "menu_maintenance"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    critical_level: Mapped[int] = mapped_column(
        Integer, default=DEFAULT_CRITICAL_LEVEL, nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Relationships
    recipe_lines: Mapped[list["RecipeLine"]] = relationship(
        "RecipeLine", back_populates="menu", cascade="all, delete-orphan",
        order_by="RecipeLine.id",
    )
    costing: Mapped[Optional["MenuCosting"]] = relationship(
        "MenuCosting", back_populates="menu", uselist=False, cascade="all, delete-orphan"
    )
    menu_item: Mapped[Optional["MenuItem"]] = relationship(
        "MenuItem", back_populates="menu_maintenance", uselist=False
    )


class RecipeLine(Base, TimestampMixin):
    """One ingredient of a dish, per produced piece."""

    __tablename__ = "recipe_lines"
    __table_args__ = (
        UniqueConstraint("menu_maintenance_id", "raw_material_id", name="uq_recipe_menu_material"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    menu_maintenance_id: Mapped[int] = mapped_column(
        ForeignKey("menu_maintenance.id", ondelete="CASCADE"), nullable=False, index=True
    )
    raw_material_id: Mapped[int] = mapped_column(
        ForeignKey("raw_materials.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Relationships
    menu: Mapped["MenuMaintenance"] = relationship("MenuMaintenance", back_populates="recipe_lines")
    raw_material: Mapped["RawMaterial"] = relationship("RawMaterial")

    @validates("quantity")
    def _validate_quantity(self, key, value):
        return positive(key, value)


class MenuCosting(Base, TimestampMixin):
    """Cost and selling price of a dish."""

    __tablename__ = "menu_costings"

    id: Mapped[int] = mapped_column(primary_key=True)
    menu_maintenance_id: Mapped[int] = mapped_column(
        ForeignKey("menu_maintenance.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    yield_quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    markup_percent: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=0, nullable=False)
    srp: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    total_production_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    production_cost_per_piece: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=0, nullable=False)
    net_profit: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    gross_sales: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    total_net_income: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    menu: Mapped["MenuMaintenance"] = relationship("MenuMaintenance", back_populates="costing")

    @validates("markup_percent", "srp")
    def _validate_amounts(self, key, value):
        return non_negative(key, value)


class MenuItem(Base, TimestampMixin):
    """A sellable dish with its ready-to-sell servings counter.

    Created on the first completed production of its MenuMaintenance.
    """

    __tablename__ = "menu_items"
    __table_args__ = (
        CheckConstraint("servings >= 0", name="ck_menu_item_servings_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    menu_maintenance_id: Mapped[int] = mapped_column(
        ForeignKey("menu_maintenance.id", ondelete="RESTRICT"), nullable=False, unique=True
    )
    last_production_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    servings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    critical_level: Mapped[int] = mapped_column(
        Integer, default=DEFAULT_CRITICAL_LEVEL, nullable=False
    )
    is_available: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    manually_disabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Relationships
    menu_maintenance: Mapped["MenuMaintenance"] = relationship(
        "MenuMaintenance", back_populates="menu_item"
    )
    servings_movements: Mapped[list["ServingsMovement"]] = relationship(
        "ServingsMovement", back_populates="menu_item", order_by="ServingsMovement.id"
    )

    @validates("servings")
    def _validate_servings(self, key, value):
        return non_negative(key, value)

    def has_sufficient_servings(self, quantity: int = 1) -> bool:
        return self.servings >= quantity

    def refresh_availability(self) -> None:
        """Follow servings unless an operator disabled the item by hand."""
        if self.servings > 0 and not self.manually_disabled:
            self.is_available = True
        elif self.servings == 0:
            self.is_available = False
            self.manually_disabled = False

    def stock_status(self) -> str:
        if self.servings <= 0:
            return "out_of_stock"
        level = self.critical_level if self.critical_level is not None else DEFAULT_CRITICAL_LEVEL
        if self.servings <= level:
            return "low_stock"
        return "in_stock"


class ServingsReason(str, Enum):
    """Reasons for servings changes."""

    PRODUCTION = "production"
    ORDER = "order"
    ORDER_CANCEL = "order_cancel"
    ORDER_DELETE = "order_delete"
    ADJUSTMENT = "adjustment"


class ServingsMovement(Base):
    """Append-only history of servings changes per menu item."""

    __tablename__ = "servings_movements"

    id: Mapped[int] = mapped_column(primary_key=True)
    ts: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    menu_item_id: Mapped[int] = mapped_column(
        ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    servings_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    ref_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    ref_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    menu_item: Mapped["MenuItem"] = relationship("MenuItem", back_populates="servings_movements")


# Forward references
from backoffice.models.raw_material import RawMaterial
