"""Menu item and servings schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class MenuItemResponse(BaseModel):
    id: int
    menu_maintenance_id: int
    name: str
    description: Optional[str] = None
    category: str
    price: Decimal
    image_url: Optional[str] = None
    servings: int
    critical_level: int
    is_available: bool
    manually_disabled: bool
    last_production_id: Optional[int] = None
    status: str = ""

    model_config = {"from_attributes": True}

    @classmethod
    def from_item(cls, item) -> "MenuItemResponse":
        data = cls.model_validate(item)
        data.status = item.stock_status()
        return data


class CartLine(BaseModel):
    menu_item_id: int
    quantity: int = Field(gt=0)


class AvailabilityRequest(BaseModel):
    items: List[CartLine] = Field(min_length=1)


class ServingsAdjustment(BaseModel):
    delta: int
    notes: Optional[str] = Field(default=None, max_length=500)


class ServingsMovementResponse(BaseModel):
    id: int
    ts: datetime
    menu_item_id: int
    delta: int
    servings_after: int
    reason: str
    ref_type: Optional[str] = None
    ref_id: Optional[int] = None
    notes: Optional[str] = None
    created_by: Optional[int] = None

    model_config = {"from_attributes": True}
