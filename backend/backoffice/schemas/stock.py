"""Stock ledger schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class StockMovementResponse(BaseModel):
    """Stock movement response schema."""

    id: int
    ts: datetime
    raw_material_id: int
    stock_record_id: int
    qty_delta: Decimal
    reason: str
    operation_key: str
    ref_type: Optional[str] = None
    ref_id: Optional[int] = None
    notes: Optional[str] = None
    created_by: Optional[int] = None

    model_config = {"from_attributes": True}


class StockAdjustmentRequest(BaseModel):
    """Manual stock adjustment in the material's base unit."""

    raw_material_id: int
    qty_delta: Decimal
    notes: Optional[str] = Field(default=None, max_length=500)


class DeductionPreviewRequest(BaseModel):
    menu_maintenance_id: int
    quantity: int = Field(gt=0)
