"""Stock ledger routes."""

from typing import Optional

from fastapi import APIRouter, Query, Request

from backoffice.core.rate_limit import limiter
from backoffice.core.rbac import RequireAdmin, RequireStaff
from backoffice.core.responses import list_response
from backoffice.db.session import DbSession
from backoffice.schemas.stock import (
    DeductionPreviewRequest,
    StockAdjustmentRequest,
    StockMovementResponse,
)
from backoffice.services.stock_deduction_service import StockDeductionService
from backoffice.services.stock_ledger_service import StockLedgerService

router = APIRouter()


@router.get("/")
@limiter.limit("60/minute")
def list_stock(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    status: Optional[str] = Query(None, pattern="^(in_stock|low_stock|out_of_stock)$"),
    search: Optional[str] = None,
):
    """Stock per raw material with in_stock / low_stock / out_of_stock status."""
    return list_response(StockLedgerService(db).list_stock(status=status, search=search))


@router.get("/movements")
@limiter.limit("60/minute")
def list_movements(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    raw_material_id: Optional[int] = None,
    operation_key: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
):
    movements = StockLedgerService(db).list_movements(
        raw_material_id=raw_material_id, operation_key=operation_key, limit=limit
    )
    return list_response([StockMovementResponse.model_validate(m) for m in movements])


@router.get("/{stock_id}")
@limiter.limit("60/minute")
def get_stock(request: Request, stock_id: int, db: DbSession, current_user: RequireStaff):
    """One stock record with its quantity in every equivalent unit."""
    return StockLedgerService(db).get_stock(stock_id)


@router.post("/adjust")
@limiter.limit("30/minute")
def adjust_stock(request: Request, body: StockAdjustmentRequest, db: DbSession, current_user: RequireAdmin):
    service = StockLedgerService(db)
    record = service.adjust_stock(
        body.raw_material_id, body.qty_delta, notes=body.notes, created_by=current_user.id
    )
    return service.get_stock(record.id)


@router.post("/preview-deduction")
@limiter.limit("60/minute")
def preview_deduction(request: Request, body: DeductionPreviewRequest, db: DbSession, current_user: RequireStaff):
    """What a production of ``quantity`` pieces would take, without taking it."""
    return StockDeductionService(db).preview(body.menu_maintenance_id, body.quantity)
