"""Production run model with its approval state."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from backoffice.db.base import Base, TimestampMixin, VersionMixin
from backoffice.models.validators import non_negative, positive


class ProductionStatus(str, Enum):
    PLANNED = "Planned"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class ApprovalStatus(str, Enum):
    APPROVED = "Approved"
    PENDING = "Pending"
    REJECTED = "Rejected"


class ApprovalAction(str, Enum):
    CREATE = "Create"
    UPDATE = "Update"
    DELETE = "Delete"


# Allowed lifecycle moves; Completed and Cancelled are terminal.
STATUS_TRANSITIONS = {
    ProductionStatus.PLANNED: {
        ProductionStatus.IN_PROGRESS,
        ProductionStatus.COMPLETED,
        ProductionStatus.CANCELLED,
    },
    ProductionStatus.IN_PROGRESS: {
        ProductionStatus.COMPLETED,
        ProductionStatus.CANCELLED,
    },
    ProductionStatus.COMPLETED: set(),
    ProductionStatus.CANCELLED: set(),
}


class ProductionRun(Base, TimestampMixin, VersionMixin):
    """A planned or actual production of one menu item.

    Stock is deducted exactly once, when the run is approved;
    ``inventory_deducted`` records that it happened.
    """

    __tablename__ = "production_runs"
    # Ids key the stock and servings ledgers, so they are never reused
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(primary_key=True)
    menu_maintenance_id: Mapped[int] = mapped_column(
        ForeignKey("menu_maintenance.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    production_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20), default=ProductionStatus.PLANNED.value, nullable=False, index=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Costing snapshot
    expected_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    actual_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    srp: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    # Approval workflow
    approval_status: Mapped[str] = mapped_column(
        String(20), default=ApprovalStatus.APPROVED.value, nullable=False, index=True
    )
    approval_action: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    pending_changes: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    requested_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    approved_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approval_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    inventory_deducted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Relationships
    menu: Mapped["MenuMaintenance"] = relationship("MenuMaintenance")

    # Per-line receipts of a deduction made by the current call; not stored
    deductions = ()

    @validates("quantity")
    def _validate_quantity(self, key, value):
        return positive(key, value)

    @validates("expected_cost", "actual_cost", "srp")
    def _validate_costs(self, key, value):
        return non_negative(key, value)

    @property
    def operation_key(self) -> str:
        return f"production:{self.id}"

    def can_transition_to(self, new_status: str) -> bool:
        if new_status == self.status:
            return True
        return ProductionStatus(new_status) in STATUS_TRANSITIONS[ProductionStatus(self.status)]


# Forward references
from backoffice.models.menu import MenuMaintenance
