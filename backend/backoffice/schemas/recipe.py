"""Recipe and costing schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


class RecipeLineCreate(BaseModel):
    """Recipe line creation schema; quantity is per produced piece."""

    raw_material_id: int
    quantity: Decimal = Field(gt=0)
    unit: str = Field(min_length=1, max_length=20)
    notes: Optional[str] = None


class RecipeSetRequest(BaseModel):
    lines: List[RecipeLineCreate]


class RecipeLineResponse(BaseModel):
    """Recipe line response schema."""

    id: int
    menu_maintenance_id: int
    raw_material_id: int
    quantity: Decimal
    unit: str
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class CostingRequest(BaseModel):
    yield_quantity: int = Field(gt=0)
    markup_percent: Optional[Decimal] = Field(default=None, ge=0)
    srp: Optional[Decimal] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def exactly_one_price_input(self) -> "CostingRequest":
        if (self.markup_percent is None) == (self.srp is None):
            raise ValueError("Provide exactly one of markup_percent or srp")
        return self


class CostingResponse(BaseModel):
    id: int
    menu_maintenance_id: int
    yield_quantity: int
    markup_percent: Decimal
    srp: Decimal
    total_production_cost: Decimal
    production_cost_per_piece: Decimal
    net_profit: Decimal
    gross_sales: Decimal
    total_net_income: Decimal
    updated_at: datetime

    model_config = {"from_attributes": True}
