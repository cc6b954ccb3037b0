"""Stock models: StockRecord and StockMovement."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint, func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice.db.base import Base, TimestampMixin, VersionMixin


class MovementReason(str, Enum):
    """Reasons for stock movements."""

    PRODUCTION = "production"  # Consumed by an approved production run
    PURCHASE = "purchase"  # Goods received against a purchase order
    ADJUSTMENT = "adjustment"  # Manual correction after a count


class StockRecord(Base, TimestampMixin, VersionMixin):
    """Stock level of one raw material in its base unit.

    ``quantity`` is everything on hand; ``available`` is the part not yet
    committed to production.
    """

    __tablename__ = "stock_records"
    __table_args__ = (
        UniqueConstraint("raw_material_id", "unit", name="uq_stock_material_unit"),
        CheckConstraint("available >= 0", name="ck_stock_available_non_negative"),
        CheckConstraint("available <= quantity", name="ck_stock_available_within_quantity"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    raw_material_id: Mapped[int] = mapped_column(
        ForeignKey("raw_materials.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=0, nullable=False)
    available: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=0, nullable=False)

    # Relationships
    raw_material: Mapped["RawMaterial"] = relationship("RawMaterial", back_populates="stock_records")
    movements: Mapped[list["StockMovement"]] = relationship(
        "StockMovement", back_populates="stock_record"
    )

    def stock_status(self) -> str:
        """in_stock / low_stock / out_of_stock against the material's critical level."""
        if self.available <= 0:
            return "out_of_stock"
        critical = self.raw_material.critical_level if self.raw_material else Decimal("0")
        if self.available <= critical:
            return "low_stock"
        return "in_stock"


class StockMovement(Base):
    """Append-only ledger of stock changes.

    ``operation_key`` identifies the business operation that produced the
    movement (``production:<id>``, ``purchase_order:<id>``) so a replay of
    the same operation can be detected.
    """

    __tablename__ = "stock_movements"

    id: Mapped[int] = mapped_column(primary_key=True)
    ts: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    raw_material_id: Mapped[int] = mapped_column(
        ForeignKey("raw_materials.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    stock_record_id: Mapped[int] = mapped_column(
        ForeignKey("stock_records.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    qty_delta: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    operation_key: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    ref_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    ref_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Relationships
    stock_record: Mapped["StockRecord"] = relationship("StockRecord", back_populates="movements")
    raw_material: Mapped["RawMaterial"] = relationship("RawMaterial")


# Forward references
from backoffice.models.raw_material import RawMaterial
