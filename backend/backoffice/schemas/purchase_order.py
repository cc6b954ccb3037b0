"""Purchase order schemas."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class POLineCreate(BaseModel):
    raw_material_id: int
    unit_conversion_id: Optional[int] = None
    quantity: Decimal = Field(gt=0)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)


class PurchaseOrderCreate(BaseModel):
    supplier_id: int
    order_date: Optional[date] = None
    expected_delivery_date: Optional[date] = None
    notes: Optional[str] = None
    items: List[POLineCreate] = Field(min_length=1)


class PurchaseOrderUpdate(BaseModel):
    supplier_id: Optional[int] = None
    expected_delivery_date: Optional[date] = None
    notes: Optional[str] = None
    items: Optional[List[POLineCreate]] = None


class POStatusUpdate(BaseModel):
    status: Literal["Approved", "Rejected", "Cancelled"]


class LineReceipt(BaseModel):
    line_id: int
    received_quantity: Decimal = Field(ge=0)


class ReceiveGoodsRequest(BaseModel):
    """Received quantities per line, in the unit each line was ordered in."""

    items: List[LineReceipt] = Field(min_length=1)
    date_received: date
    notes: Optional[str] = None


class POLineResponse(BaseModel):
    id: int
    raw_material_id: int
    unit_conversion_id: Optional[int] = None
    conversion_quantity: Optional[Decimal] = None
    quantity: Decimal
    unit: str
    unit_price: Decimal
    total_price: Decimal
    received_quantity: Optional[Decimal] = None
    base_quantity_received: Optional[Decimal] = None

    model_config = {"from_attributes": True}


class PurchaseOrderResponse(BaseModel):
    id: int
    po_number: str
    supplier_id: int
    status: str
    order_date: date
    expected_delivery_date: Optional[date] = None
    date_received: Optional[date] = None
    total_amount: Decimal
    notes: Optional[str] = None
    created_by: Optional[int] = None
    approved_by: Optional[int] = None
    received_by: Optional[int] = None
    lines: List[POLineResponse] = []
    created_at: datetime

    model_config = {"from_attributes": True}
