"""Purchase order routes, including goods receiving."""

from typing import Optional

from fastapi import APIRouter, Request

from backoffice.core.rate_limit import limiter
from backoffice.core.rbac import RequireAdmin, RequireStaff
from backoffice.core.responses import list_response
from backoffice.db.session import DbSession
from backoffice.schemas.purchase_order import (
    POStatusUpdate,
    PurchaseOrderCreate,
    PurchaseOrderResponse,
    PurchaseOrderUpdate,
    ReceiveGoodsRequest,
)
from backoffice.services.receiving_service import ReceivingService

router = APIRouter()


@router.get("/")
@limiter.limit("60/minute")
def list_purchase_orders(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    status: Optional[str] = None,
    supplier_id: Optional[int] = None,
    search: Optional[str] = None,
):
    orders = ReceivingService(db).list_purchase_orders(status=status, supplier_id=supplier_id, search=search)
    return list_response([PurchaseOrderResponse.model_validate(po) for po in orders])


@router.get("/next-number")
@limiter.limit("60/minute")
def next_po_number(request: Request, db: DbSession, current_user: RequireStaff):
    return {"next_po_number": ReceivingService(db).next_po_number()}


@router.get("/{po_id}", response_model=PurchaseOrderResponse)
@limiter.limit("60/minute")
def get_purchase_order(request: Request, po_id: int, db: DbSession, current_user: RequireStaff):
    return ReceivingService(db).get(po_id)


@router.post("/", response_model=PurchaseOrderResponse, status_code=201)
@limiter.limit("30/minute")
def create_purchase_order(request: Request, body: PurchaseOrderCreate, db: DbSession, current_user: RequireAdmin):
    return ReceivingService(db).create(body.model_dump(), current_user)


@router.put("/{po_id}", response_model=PurchaseOrderResponse)
@limiter.limit("30/minute")
def update_purchase_order(
    request: Request,
    po_id: int,
    body: PurchaseOrderUpdate,
    db: DbSession,
    current_user: RequireAdmin,
):
    return ReceivingService(db).update(po_id, body.model_dump(exclude_unset=True), current_user)


@router.delete("/{po_id}", status_code=204)
@limiter.limit("30/minute")
def delete_purchase_order(request: Request, po_id: int, db: DbSession, current_user: RequireAdmin):
    ReceivingService(db).delete(po_id, current_user)


@router.put("/{po_id}/status", response_model=PurchaseOrderResponse)
@limiter.limit("30/minute")
def set_purchase_order_status(
    request: Request,
    po_id: int,
    body: POStatusUpdate,
    db: DbSession,
    current_user: RequireAdmin,
):
    return ReceivingService(db).set_status(po_id, body.status, current_user)


@router.post("/{po_id}/receive")
@limiter.limit("30/minute")
def receive_purchase_order(
    request: Request,
    po_id: int,
    body: ReceiveGoodsRequest,
    db: DbSession,
    current_user: RequireAdmin,
):
    """Receive goods; quantities ordered in an equivalent unit are converted
    back to the material's base unit before they reach stock."""
    return ReceivingService(db).receive(
        po_id,
        [item.model_dump() for item in body.items],
        body.date_received,
        current_user,
        notes=body.notes,
    )
