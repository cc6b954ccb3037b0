"""Production schemas."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from backoffice.models.production import ProductionStatus


class ProductionCreate(BaseModel):
    menu_maintenance_id: int
    quantity: int = Field(gt=0)
    production_date: Optional[date] = None
    status: ProductionStatus = ProductionStatus.PLANNED
    actual_cost: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = None


class ProductionUpdate(BaseModel):
    quantity: Optional[int] = Field(default=None, gt=0)
    production_date: Optional[date] = None
    status: Optional[ProductionStatus] = None
    actual_cost: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = None


class ApprovalDecision(BaseModel):
    decision: Literal["Approved", "Rejected"]
    notes: Optional[str] = Field(default=None, max_length=2000)


class DeductionReceipt(BaseModel):
    raw_material_id: int
    material_name: str
    deducted: float
    unit: str
    remaining_available: float


class ProductionResponse(BaseModel):
    id: int
    menu_maintenance_id: int
    quantity: int
    production_date: date
    status: str
    notes: Optional[str] = None
    expected_cost: Decimal
    actual_cost: Optional[Decimal] = None
    srp: Decimal
    approval_status: str
    approval_action: Optional[str] = None
    pending_changes: Optional[Dict[str, Any]] = None
    requested_by: Optional[int] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    approval_notes: Optional[str] = None
    inventory_deducted: bool
    deductions: List[DeductionReceipt] = []
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
