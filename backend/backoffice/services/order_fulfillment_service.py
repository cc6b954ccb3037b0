"""Order fulfillment against the menu servings counter.

Counter orders take their servings when they are placed; online orders
only check at placement and take servings when they are marked Completed.
``servings_deducted`` on each order makes every restore happen once.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from backoffice.core.rbac import TokenData
from backoffice.models.menu import ServingsReason
from backoffice.models.order import (
    DISCOUNT_RATES,
    PACKAGING_FEE_PER_BOX,
    DiscountType,
    OnlineOrder,
    OnlineOrderItem,
    OnlineOrderStatus,
    OnlineOrderType,
    Order,
    OrderItem,
    OrderStatus,
    OrderType,
    PaymentStatus,
)
from backoffice.services.errors import (
    EntityNotFoundError,
    InvalidTransitionError,
    RoleNotAuthorizedError,
    ValidationFailedError,
)
from backoffice.services.menu_servings_service import MenuServingsService
from backoffice.services.unit_conversion_service import quantize_money

logger = logging.getLogger(__name__)


def _lines(items) -> List[tuple]:
    return [(item.menu_item_id, item.quantity) for item in items]


def _requested(items: List[Dict[str, Any]]) -> List[tuple]:
    return [(item["menu_item_id"], int(item["quantity"])) for item in items]


class OrderFulfillmentService:
    """Counter orders (dine-in, pickup, delivery)."""

    def __init__(self, db: Session):
        self.db = db
        self.servings = MenuServingsService(db)

    def get(self, order_id: int) -> Order:
        order = self.db.get(Order, order_id)
        if order is None:
            raise EntityNotFoundError("Order", order_id)
        return order

    def list_orders(self, status: Optional[str] = None, staff_id: Optional[int] = None) -> List[Order]:
        query = self.db.query(Order)
        if status:
            query = query.filter(Order.status == status)
        if staff_id is not None:
            query = query.filter(Order.staff_id == staff_id)
        return query.order_by(Order.id.desc()).all()

    def place(self, data: Dict[str, Any], actor: TokenData) -> Order:
        """Validate every line, then take all servings in one transaction."""
        items = data.get("items") or []
        if not items:
            raise ValidationFailedError("An order needs at least one item")
        order_type = OrderType(data.get("order_type") or OrderType.DINE_IN.value)
        if order_type == OrderType.DELIVERY:
            if not (data.get("delivery_address") or "").strip():
                raise ValidationFailedError("delivery_address is required for delivery orders")
            if not (data.get("contact_number") or "").strip():
                raise ValidationFailedError("contact_number is required for delivery orders")

        discount_type = DiscountType(data.get("discount_type") or DiscountType.NONE.value)
        id_number = (data.get("discount_id_number") or "").strip()
        if discount_type != DiscountType.NONE and not id_number:
            raise ValidationFailedError(
                f"ID number is required for {discount_type.value.upper()} discount"
            )

        requested = _requested(items)
        self.servings.ensure_available(requested)

        order = Order(
            customer_name=data["customer_name"],
            order_type=order_type.value,
            status=OrderStatus.PENDING.value,
            delivery_address=data.get("delivery_address"),
            contact_number=data.get("contact_number"),
            payment_method=data.get("payment_method"),
            discount_type=discount_type.value,
            discount_id_number=id_number or None,
            notes=data.get("notes"),
            staff_id=actor.id,
        )
        subtotal = Decimal("0")
        for menu_item_id, quantity in requested:
            menu_item = self.servings.get_item(menu_item_id)
            unit_price = Decimal(str(menu_item.price))
            line_total = quantize_money(unit_price * quantity)
            subtotal += line_total
            order.items.append(OrderItem(
                menu_item_id=menu_item_id,
                quantity=quantity,
                unit_price=unit_price,
                total_price=line_total,
            ))

        boxes = max(0, int(data.get("packaging_boxes") or 0)) if order_type == OrderType.PICKUP else 0
        discount_amount = quantize_money(subtotal * DISCOUNT_RATES[discount_type])
        order.subtotal = subtotal
        order.discount_amount = discount_amount
        order.packaging_boxes = boxes
        order.packaging_fee = PACKAGING_FEE_PER_BOX * boxes
        order.total_amount = max(Decimal("0"), subtotal - discount_amount) + order.packaging_fee

        self.db.add(order)
        try:
            self.db.flush()
            self.servings.deduct_for_lines(requested, ref_type="order", ref_id=order.id, actor_id=actor.id)
            order.servings_deducted = True
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(order)
        logger.info(f"Order {order.id} placed by user {actor.id}: total {order.total_amount}")
        return order

    def update_status(self, order_id: int, new_status: str, actor: TokenData) -> Order:
        order = self.get(order_id)
        new_status = OrderStatus(new_status).value
        if new_status == order.status:
            return order
        if order.is_terminal:
            raise InvalidTransitionError(
                f"Order {order.id} is {order.status} and can no longer change status",
                current_status=order.status,
            )

        if new_status == OrderStatus.CANCELLED.value:
            self._restore(order, ServingsReason.ORDER_CANCEL.value, actor)
        order.status = new_status
        order.increment_version()
        self.db.commit()
        self.db.refresh(order)
        logger.info(f"Order {order.id} moved to {new_status} by user {actor.id}")
        return order

    def update_payment(
        self,
        order_id: int,
        payment_status: str,
        actor: TokenData,
        payment_method: Optional[str] = None,
    ) -> Order:
        if not actor.is_privileged:
            raise RoleNotAuthorizedError("Only admins can update payments")
        order = self.get(order_id)
        order.payment_status = PaymentStatus(payment_status).value
        if payment_method:
            order.payment_method = payment_method
        order.increment_version()
        self.db.commit()
        self.db.refresh(order)
        logger.info(f"Order {order.id} payment set to {order.payment_status} by admin {actor.id}")
        return order

    def delete(self, order_id: int, actor: TokenData) -> None:
        order = self.get(order_id)
        if not actor.is_privileged and order.staff_id != actor.id:
            raise RoleNotAuthorizedError("Staff can only delete their own orders")
        if order.status != OrderStatus.COMPLETED.value:
            self._restore(order, ServingsReason.ORDER_DELETE.value, actor)
        self.db.delete(order)
        self.db.commit()
        logger.info(f"Order {order_id} deleted by user {actor.id}")

    def _restore(self, order: Order, reason: str, actor: TokenData) -> None:
        if not order.servings_deducted:
            return
        self.servings.restore_for_lines(
            _lines(order.items), reason, ref_type="order", ref_id=order.id, actor_id=actor.id
        )
        order.servings_deducted = False


# Online status moves; Cancelled is terminal, a Completed order may only be voided.
ONLINE_TRANSITIONS = {
    OnlineOrderStatus.PENDING: {
        OnlineOrderStatus.READY,
        OnlineOrderStatus.ON_THE_WAY,
        OnlineOrderStatus.COMPLETED,
        OnlineOrderStatus.CANCELLED,
    },
    OnlineOrderStatus.READY: {
        OnlineOrderStatus.PENDING,
        OnlineOrderStatus.ON_THE_WAY,
        OnlineOrderStatus.COMPLETED,
        OnlineOrderStatus.CANCELLED,
    },
    OnlineOrderStatus.ON_THE_WAY: {
        OnlineOrderStatus.READY,
        OnlineOrderStatus.COMPLETED,
        OnlineOrderStatus.CANCELLED,
    },
    OnlineOrderStatus.COMPLETED: {OnlineOrderStatus.CANCELLED},
    OnlineOrderStatus.CANCELLED: set(),
}


class OnlineOrderService:
    """Online orders: servings are taken on completion, not at placement."""

    def __init__(self, db: Session):
        self.db = db
        self.servings = MenuServingsService(db)

    def get(self, order_id: int) -> OnlineOrder:
        order = self.db.get(OnlineOrder, order_id)
        if order is None:
            raise EntityNotFoundError("Online order", order_id)
        return order

    def list_orders(self, status: Optional[str] = None) -> List[OnlineOrder]:
        query = self.db.query(OnlineOrder)
        if status:
            query = query.filter(OnlineOrder.status == status)
        return query.order_by(OnlineOrder.id.desc()).all()

    @staticmethod
    def _validate_contact(order_type: OnlineOrderType, contact_number, delivery_address) -> None:
        if not (contact_number or "").strip():
            raise ValidationFailedError("contact_number is required")
        if order_type == OnlineOrderType.DELIVERY and not (delivery_address or "").strip():
            raise ValidationFailedError("delivery_address is required for delivery orders")

    def _set_items(self, order: OnlineOrder, items: List[Dict[str, Any]]) -> None:
        if not items:
            raise ValidationFailedError("An order needs at least one item")
        requested = _requested(items)
        self.servings.ensure_available(requested)
        for existing in list(order.items):
            order.items.remove(existing)
        total = Decimal("0")
        for menu_item_id, quantity in requested:
            menu_item = self.servings.get_item(menu_item_id)
            unit_price = Decimal(str(menu_item.price))
            line_total = quantize_money(unit_price * quantity)
            total += line_total
            order.items.append(OnlineOrderItem(
                menu_item_id=menu_item_id,
                quantity=quantity,
                unit_price=unit_price,
                total_price=line_total,
            ))
        order.total_amount = total

    def place(self, data: Dict[str, Any], actor: Optional[TokenData] = None) -> OnlineOrder:
        order_type = OnlineOrderType(data.get("order_type") or OnlineOrderType.DELIVERY.value)
        self._validate_contact(order_type, data.get("contact_number"), data.get("delivery_address"))
        order = OnlineOrder(
            customer_name=data["customer_name"],
            contact_number=data["contact_number"].strip(),
            email=data.get("email"),
            order_type=order_type.value,
            delivery_address=data.get("delivery_address"),
            payment_method=data.get("payment_method"),
            notes=data.get("notes"),
            status=OnlineOrderStatus.PENDING.value,
            updated_by=actor.id if actor else None,
        )
        self._set_items(order, data.get("items") or [])
        self.db.add(order)
        self.db.commit()
        self.db.refresh(order)
        logger.info(f"Online order {order.id} placed: total {order.total_amount}")
        return order

    def update(self, order_id: int, changes: Dict[str, Any], actor: TokenData) -> OnlineOrder:
        """Edit a Pending order; new items are checked against servings."""
        order = self.get(order_id)
        if order.status != OnlineOrderStatus.PENDING.value:
            raise InvalidTransitionError("Only pending orders can be edited", current_status=order.status)

        order_type = OnlineOrderType(changes.get("order_type") or order.order_type)
        contact_number = changes.get("contact_number", order.contact_number)
        delivery_address = changes.get("delivery_address", order.delivery_address)
        self._validate_contact(order_type, contact_number, delivery_address)
        order.order_type = order_type.value
        order.contact_number = contact_number.strip()
        order.delivery_address = delivery_address
        for field in ("payment_method", "notes", "email"):
            if changes.get(field) is not None:
                setattr(order, field, changes[field])
        if changes.get("items") is not None:
            self._set_items(order, changes["items"])
        order.updated_by = actor.id
        order.increment_version()
        self.db.commit()
        self.db.refresh(order)
        logger.info(f"Online order {order.id} edited by user {actor.id}")
        return order

    def update_status(self, order_id: int, new_status: str, actor: TokenData) -> OnlineOrder:
        order = self.get(order_id)
        target = OnlineOrderStatus(new_status)
        current = OnlineOrderStatus(order.status)
        if target == current:
            return order
        if target not in ONLINE_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Cannot move online order {order.id} from {current.value} to {target.value}",
                current_status=current.value,
                requested_status=target.value,
            )

        try:
            if target == OnlineOrderStatus.COMPLETED and not order.servings_deducted:
                self.servings.deduct_for_lines(
                    _lines(order.items), ref_type="online_order", ref_id=order.id, actor_id=actor.id
                )
                order.servings_deducted = True
            elif target == OnlineOrderStatus.CANCELLED and order.servings_deducted:
                self.servings.restore_for_lines(
                    _lines(order.items), ServingsReason.ORDER_CANCEL.value,
                    ref_type="online_order", ref_id=order.id, actor_id=actor.id,
                )
                order.servings_deducted = False
            order.status = target.value
            order.updated_by = actor.id
            order.increment_version()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(order)
        logger.info(f"Online order {order.id} moved {current.value} -> {target.value} by user {actor.id}")
        return order

    def delete(self, order_id: int, actor: TokenData) -> None:
        order = self.get(order_id)
        if order.servings_deducted and order.status != OnlineOrderStatus.COMPLETED.value:
            self.servings.restore_for_lines(
                _lines(order.items), ServingsReason.ORDER_DELETE.value,
                ref_type="online_order", ref_id=order.id, actor_id=actor.id,
            )
        self.db.delete(order)
        self.db.commit()
        logger.info(f"Online order {order_id} deleted by user {actor.id}")
