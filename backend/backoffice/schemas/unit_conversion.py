"""Unit conversion schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class UnitConversionCreate(BaseModel):
    """How many ``equivalent_unit`` make one ``base_unit`` of a raw material."""

    raw_material_id: int
    base_unit: str = Field(min_length=1, max_length=20)
    equivalent_unit: str = Field(min_length=1, max_length=20)
    quantity: Decimal = Field(gt=0)
    unit_price: Decimal = Field(ge=0)
    markup_percent: Optional[Decimal] = Field(default=None, ge=0)
    srp: Optional[Decimal] = Field(default=None, ge=0)
    is_default_retail: bool = False


class UnitConversionUpdate(BaseModel):
    base_unit: Optional[str] = Field(default=None, min_length=1, max_length=20)
    equivalent_unit: Optional[str] = Field(default=None, min_length=1, max_length=20)
    quantity: Optional[Decimal] = Field(default=None, gt=0)
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    markup_percent: Optional[Decimal] = Field(default=None, ge=0)
    srp: Optional[Decimal] = Field(default=None, ge=0)
    is_default_retail: Optional[bool] = None


class UnitConversionResponse(BaseModel):
    id: int
    raw_material_id: int
    base_unit: str
    equivalent_unit: str
    quantity: Decimal
    unit_price: Decimal
    markup_percent: Decimal
    srp: Decimal
    is_default_retail: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ResolveUnitRequest(BaseModel):
    raw_material_id: int
    quantity: Decimal = Field(ge=0)
    unit: str


class ResolveUnitResponse(BaseModel):
    raw_material_id: int
    quantity: Decimal
    unit: str
    base_quantity: Decimal
    base_unit: str
    base_price_per_unit: Decimal
