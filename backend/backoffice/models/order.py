"""Customer order models: dine-in/counter orders and online orders."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from backoffice.db.base import Base, TimestampMixin, VersionMixin
from backoffice.models.validators import non_negative, positive


class OrderType(str, Enum):
    DINE_IN = "dine_in"
    PICKUP = "pickup"
    DELIVERY = "delivery"


class OrderStatus(str, Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class DiscountType(str, Enum):
    NONE = "none"
    PWD = "pwd"
    SENIOR = "senior"


DISCOUNT_RATES = {
    DiscountType.NONE: Decimal("0"),
    DiscountType.PWD: Decimal("0.20"),
    DiscountType.SENIOR: Decimal("0.20"),
}

PACKAGING_FEE_PER_BOX = Decimal("10")


class Order(Base, TimestampMixin, VersionMixin):
    """Order taken by staff at the counter."""

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    order_type: Mapped[str] = mapped_column(String(20), default=OrderType.DINE_IN.value, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=OrderStatus.PENDING.value, nullable=False, index=True
    )
    delivery_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    contact_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    payment_status: Mapped[str] = mapped_column(
        String(20), default=PaymentStatus.PENDING.value, nullable=False
    )
    payment_method: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    discount_type: Mapped[str] = mapped_column(String(20), default=DiscountType.NONE.value, nullable=False)
    discount_id_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    packaging_boxes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    packaging_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    servings_deducted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    staff_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id"
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value)


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    menu_item_id: Mapped[int] = mapped_column(
        ForeignKey("menu_items.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")
    menu_item: Mapped["MenuItem"] = relationship("MenuItem")

    @validates("quantity")
    def _validate_quantity(self, key, value):
        return positive(key, value)

    @validates("unit_price")
    def _validate_price(self, key, value):
        return non_negative(key, value)


class OnlineOrderType(str, Enum):
    DELIVERY = "delivery"
    PICKUP = "pickup"


class OnlineOrderStatus(str, Enum):
    PENDING = "Pending"
    READY = "Ready"
    ON_THE_WAY = "OnTheWay"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class OnlineOrder(Base, TimestampMixin, VersionMixin):
    """Order placed through the online channel.

    Servings are only taken when the order is marked Completed.
    """

    __tablename__ = "online_orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_number: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    order_type: Mapped[str] = mapped_column(
        String(20), default=OnlineOrderType.DELIVERY.value, nullable=False
    )
    delivery_address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=OnlineOrderStatus.PENDING.value, nullable=False, index=True
    )
    payment_method: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    servings_deducted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    updated_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    items: Mapped[list["OnlineOrderItem"]] = relationship(
        "OnlineOrderItem", back_populates="order", cascade="all, delete-orphan",
        order_by="OnlineOrderItem.id",
    )


class OnlineOrderItem(Base):
    __tablename__ = "online_order_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    online_order_id: Mapped[int] = mapped_column(
        ForeignKey("online_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    menu_item_id: Mapped[int] = mapped_column(
        ForeignKey("menu_items.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    order: Mapped["OnlineOrder"] = relationship("OnlineOrder", back_populates="items")
    menu_item: Mapped["MenuItem"] = relationship("MenuItem")

    @validates("quantity")
    def _validate_quantity(self, key, value):
        return positive(key, value)


# Forward references
from backoffice.models.menu import MenuItem
