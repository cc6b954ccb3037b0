"""Online order routes. Servings are taken when an order is Completed."""

from typing import Optional

from fastapi import APIRouter, Request

from backoffice.core.rate_limit import limiter
from backoffice.core.rbac import RequireStaff
from backoffice.core.responses import list_response
from backoffice.db.session import DbSession
from backoffice.schemas.order import (
    OnlineOrderCreate,
    OnlineOrderResponse,
    OnlineOrderStatusUpdate,
    OnlineOrderUpdate,
)
from backoffice.services.order_fulfillment_service import OnlineOrderService

router = APIRouter()


@router.get("/")
@limiter.limit("60/minute")
def list_online_orders(request: Request, db: DbSession, current_user: RequireStaff, status: Optional[str] = None):
    orders = OnlineOrderService(db).list_orders(status=status)
    return list_response([OnlineOrderResponse.model_validate(o) for o in orders])


@router.get("/{order_id}", response_model=OnlineOrderResponse)
@limiter.limit("60/minute")
def get_online_order(request: Request, order_id: int, db: DbSession, current_user: RequireStaff):
    return OnlineOrderService(db).get(order_id)


@router.post("/", response_model=OnlineOrderResponse, status_code=201)
@limiter.limit("30/minute")
def place_online_order(request: Request, body: OnlineOrderCreate, db: DbSession, current_user: RequireStaff):
    return OnlineOrderService(db).place(body.model_dump(), current_user)


@router.put("/{order_id}", response_model=OnlineOrderResponse)
@limiter.limit("30/minute")
def update_online_order(
    request: Request,
    order_id: int,
    body: OnlineOrderUpdate,
    db: DbSession,
    current_user: RequireStaff,
):
    return OnlineOrderService(db).update(order_id, body.model_dump(exclude_unset=True), current_user)


@router.put("/{order_id}/status", response_model=OnlineOrderResponse)
@limiter.limit("30/minute")
def update_online_order_status(
    request: Request,
    order_id: int,
    body: OnlineOrderStatusUpdate,
    db: DbSession,
    current_user: RequireStaff,
):
    return OnlineOrderService(db).update_status(order_id, body.status.value, current_user)


@router.delete("/{order_id}", status_code=204)
@limiter.limit("30/minute")
def delete_online_order(request: Request, order_id: int, db: DbSession, current_user: RequireStaff):
    OnlineOrderService(db).delete(order_id, current_user)
