"""Counter order routes (dine-in, pickup, delivery)."""

from typing import Optional

from fastapi import APIRouter, Request

from backoffice.core.rate_limit import limiter
from backoffice.core.rbac import RequireAdmin, RequireStaff
from backoffice.core.responses import list_response
from backoffice.db.session import DbSession
from backoffice.schemas.order import (
    OrderCreate,
    OrderResponse,
    OrderStatusUpdate,
    PaymentUpdate,
)
from backoffice.services.order_fulfillment_service import OrderFulfillmentService

router = APIRouter()


@router.get("/")
@limiter.limit("60/minute")
def list_orders(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    status: Optional[str] = None,
    staff_id: Optional[int] = None,
):
    orders = OrderFulfillmentService(db).list_orders(status=status, staff_id=staff_id)
    return list_response([OrderResponse.model_validate(o) for o in orders])


@router.get("/{order_id}", response_model=OrderResponse)
@limiter.limit("60/minute")
def get_order(request: Request, order_id: int, db: DbSession, current_user: RequireStaff):
    return OrderFulfillmentService(db).get(order_id)


@router.post("/", response_model=OrderResponse, status_code=201)
@limiter.limit("30/minute")
def place_order(request: Request, body: OrderCreate, db: DbSession, current_user: RequireStaff):
    """Place an order; servings are taken for every line or none."""
    return OrderFulfillmentService(db).place(body.model_dump(), current_user)


@router.put("/{order_id}/status", response_model=OrderResponse)
@limiter.limit("30/minute")
def update_order_status(
    request: Request,
    order_id: int,
    body: OrderStatusUpdate,
    db: DbSession,
    current_user: RequireStaff,
):
    return OrderFulfillmentService(db).update_status(order_id, body.status.value, current_user)


@router.put("/{order_id}/payment", response_model=OrderResponse)
@limiter.limit("30/minute")
def update_payment(
    request: Request,
    order_id: int,
    body: PaymentUpdate,
    db: DbSession,
    current_user: RequireAdmin,
):
    return OrderFulfillmentService(db).update_payment(
        order_id, body.payment_status.value, current_user, payment_method=body.payment_method
    )


@router.delete("/{order_id}", status_code=204)
@limiter.limit("30/minute")
def delete_order(request: Request, order_id: int, db: DbSession, current_user: RequireStaff):
    OrderFulfillmentService(db).delete(order_id, current_user)
