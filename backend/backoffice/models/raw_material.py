"""Raw material catalog and unit conversion models."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from backoffice.db.base import Base, TimestampMixin
from backoffice.models.validators import non_negative, positive


class RawMaterial(Base, TimestampMixin):
    """A purchasable ingredient, tracked in its base ``unit``."""

    __tablename__ = "raw_materials"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)  # base unit
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    markup_percent: Mapped[Decimal] = mapped_column(Numeric(6, 2), default=0, nullable=False)
    critical_level: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=0, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    supplier_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Relationships
    conversions: Mapped[list["UnitConversion"]] = relationship(
        "UnitConversion", back_populates="raw_material", cascade="all, delete-orphan"
    )
    stock_records: Mapped[list["StockRecord"]] = relationship(
        "StockRecord", back_populates="raw_material"
    )

    @validates("unit_price", "markup_percent", "critical_level")
    def _validate_amounts(self, key, value):
        return non_negative(key, value)


class UnitConversion(Base, TimestampMixin):
    """An equivalent unit for a raw material.

    ``quantity`` is how many ``equivalent_unit`` make one ``base_unit``:
    base = equivalent / quantity. ``unit_price`` is per equivalent unit.
    ``quantity`` is stored to 12 places; stock math rounds to
    ``stock_quantity_places`` after dividing by it.
    """

    __tablename__ = "unit_conversions"
    __table_args__ = (
        UniqueConstraint("raw_material_id", "equivalent_unit", name="uq_conversion_material_unit"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    raw_material_id: Mapped[int] = mapped_column(
        ForeignKey("raw_materials.id", ondelete="CASCADE"), nullable=False, index=True
    )
    base_unit: Mapped[str] = mapped_column(String(20), nullable=False)
    equivalent_unit: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(24, 12), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    markup_percent: Mapped[Decimal] = mapped_column(Numeric(6, 2), default=0, nullable=False)
    srp: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    is_default_retail: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Relationships
    raw_material: Mapped["RawMaterial"] = relationship("RawMaterial", back_populates="conversions")

    @validates("quantity")
    def _validate_quantity(self, key, value):
        return positive(key, value)

    @validates("unit_price", "markup_percent", "srp")
    def _validate_prices(self, key, value):
        return non_negative(key, value)


# Forward references
from backoffice.models.stock import StockRecord
