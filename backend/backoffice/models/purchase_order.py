"""Purchase order models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from backoffice.db.base import Base, TimestampMixin, VersionMixin
from backoffice.models.validators import non_negative, positive


class POStatus(str, Enum):
    """Purchase order status."""

    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


RECEIVABLE_STATUSES = {POStatus.PENDING.value, POStatus.APPROVED.value}


class PurchaseOrder(Base, TimestampMixin, VersionMixin):
    """Purchase order to a supplier."""

    __tablename__ = "purchase_orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    po_number: Mapped[str] = mapped_column(String(30), unique=True, nullable=False, index=True)
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20), default=POStatus.PENDING.value, nullable=False, index=True
    )
    order_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_delivery_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    date_received: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    approved_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    received_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Relationships
    supplier: Mapped["Supplier"] = relationship("Supplier", back_populates="purchase_orders")
    lines: Mapped[list["PurchaseOrderLine"]] = relationship(
        "PurchaseOrderLine", back_populates="purchase_order", cascade="all, delete-orphan",
        order_by="PurchaseOrderLine.id",
    )

    @property
    def operation_key(self) -> str:
        return f"purchase_order:{self.id}"


class PurchaseOrderLine(Base):
    """Purchase order line item.

    When ``unit_conversion_id`` is set the ordered and received quantities
    are in that conversion's equivalent unit; otherwise in the material's
    base unit. ``conversion_quantity`` is the conversion ratio at ordering
    time; receiving converts with it.
    """

    __tablename__ = "purchase_order_lines"

    id: Mapped[int] = mapped_column(primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    raw_material_id: Mapped[int] = mapped_column(
        ForeignKey("raw_materials.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    unit_conversion_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("unit_conversions.id", ondelete="SET NULL"), nullable=True
    )
    conversion_quantity: Mapped[Optional[Decimal]] = mapped_column(Numeric(24, 12), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    received_quantity: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 4), nullable=True)
    base_quantity_received: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 4), nullable=True)

    # Relationships
    purchase_order: Mapped["PurchaseOrder"] = relationship("PurchaseOrder", back_populates="lines")
    raw_material: Mapped["RawMaterial"] = relationship("RawMaterial")
    unit_conversion: Mapped[Optional["UnitConversion"]] = relationship("UnitConversion")

    @validates("quantity")
    def _validate_quantity(self, key, value):
        return positive(key, value)

    @validates("unit_price", "received_quantity")
    def _validate_amounts(self, key, value):
        return non_negative(key, value)


# Forward references
from backoffice.models.supplier import Supplier
from backoffice.models.raw_material import RawMaterial, UnitConversion
