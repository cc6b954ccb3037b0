"""Order schemas (counter and online)."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from backoffice.models.order import (
    DiscountType,
    OnlineOrderStatus,
    OnlineOrderType,
    OrderStatus,
    OrderType,
    PaymentStatus,
)


class OrderLineCreate(BaseModel):
    menu_item_id: int
    quantity: int = Field(gt=0)


class OrderItemResponse(BaseModel):
    id: int
    menu_item_id: int
    quantity: int
    unit_price: Decimal
    total_price: Decimal

    model_config = {"from_attributes": True}


class OrderCreate(BaseModel):
    customer_name: str = Field(min_length=1, max_length=255)
    order_type: OrderType = OrderType.DINE_IN
    items: List[OrderLineCreate] = Field(min_length=1)
    delivery_address: Optional[str] = None
    contact_number: Optional[str] = None
    payment_method: Optional[str] = None
    discount_type: DiscountType = DiscountType.NONE
    discount_id_number: Optional[str] = None
    packaging_boxes: int = Field(default=0, ge=0)
    notes: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class PaymentUpdate(BaseModel):
    payment_status: PaymentStatus
    payment_method: Optional[str] = None


class OrderResponse(BaseModel):
    id: int
    customer_name: str
    order_type: str
    status: str
    delivery_address: Optional[str] = None
    contact_number: Optional[str] = None
    payment_status: str
    payment_method: Optional[str] = None
    discount_type: str
    discount_id_number: Optional[str] = None
    packaging_boxes: int
    packaging_fee: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    notes: Optional[str] = None
    servings_deducted: bool
    staff_id: Optional[int] = None
    items: List[OrderItemResponse] = []
    created_at: datetime

    model_config = {"from_attributes": True}


class OnlineOrderCreate(BaseModel):
    customer_name: str = Field(min_length=1, max_length=255)
    contact_number: str = Field(min_length=1, max_length=50)
    email: Optional[str] = None
    order_type: OnlineOrderType = OnlineOrderType.DELIVERY
    delivery_address: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    items: List[OrderLineCreate] = Field(min_length=1)


class OnlineOrderUpdate(BaseModel):
    contact_number: Optional[str] = None
    email: Optional[str] = None
    order_type: Optional[OnlineOrderType] = None
    delivery_address: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    items: Optional[List[OrderLineCreate]] = None


class OnlineOrderStatusUpdate(BaseModel):
    status: OnlineOrderStatus


class OnlineOrderResponse(BaseModel):
    id: int
    customer_name: str
    contact_number: str
    email: Optional[str] = None
    order_type: str
    delivery_address: Optional[str] = None
    status: str
    payment_method: Optional[str] = None
    total_amount: Decimal
    notes: Optional[str] = None
    servings_deducted: bool
    items: List[OrderItemResponse] = []
    created_at: datetime

    model_config = {"from_attributes": True}
