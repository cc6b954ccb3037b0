"""Production routes.

Admins act directly; staff create, update and delete calls become Pending
requests that an admin approves or rejects through ``/{id}/approval``.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Request, Response

from backoffice.core.rate_limit import limiter
from backoffice.core.rbac import RequireAdmin, RequireStaff
from backoffice.core.responses import list_response
from backoffice.db.session import DbSession
from backoffice.schemas.production import (
    ApprovalDecision,
    ProductionCreate,
    ProductionResponse,
    ProductionUpdate,
)
from backoffice.services.production_service import ProductionService

router = APIRouter()


@router.get("/")
@limiter.limit("60/minute")
def list_productions(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    status: Optional[str] = None,
    menu_maintenance_id: Optional[int] = None,
    approval_status: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    runs = ProductionService(db).list_productions(
        status=status,
        menu_maintenance_id=menu_maintenance_id,
        approval_status=approval_status,
        start_date=start_date,
        end_date=end_date,
    )
    return list_response([ProductionResponse.model_validate(r) for r in runs])


@router.get("/stats")
@limiter.limit("60/minute")
def production_stats(request: Request, db: DbSession, current_user: RequireStaff):
    return ProductionService(db).stats()


@router.get("/{production_id}", response_model=ProductionResponse)
@limiter.limit("60/minute")
def get_production(request: Request, production_id: int, db: DbSession, current_user: RequireStaff):
    return ProductionService(db).get(production_id)


@router.post("/", response_model=ProductionResponse, status_code=201)
@limiter.limit("30/minute")
def create_production(request: Request, body: ProductionCreate, db: DbSession, current_user: RequireStaff):
    return ProductionService(db).create(body.model_dump(), current_user)


@router.put("/{production_id}", response_model=ProductionResponse)
@limiter.limit("30/minute")
def update_production(
    request: Request,
    production_id: int,
    body: ProductionUpdate,
    db: DbSession,
    current_user: RequireStaff,
):
    return ProductionService(db).update(production_id, body.model_dump(exclude_unset=True), current_user)


@router.delete("/{production_id}")
@limiter.limit("30/minute")
def delete_production(request: Request, production_id: int, db: DbSession, current_user: RequireStaff):
    """Admins delete immediately (204); staff receive the pending request (202)."""
    run = ProductionService(db).delete(production_id, current_user)
    if run is None:
        return Response(status_code=204)
    return Response(
        content=ProductionResponse.model_validate(run).model_dump_json(),
        status_code=202,
        media_type="application/json",
    )


@router.post("/{production_id}/approval")
@limiter.limit("30/minute")
def approve_production(
    request: Request,
    production_id: int,
    body: ApprovalDecision,
    db: DbSession,
    current_user: RequireAdmin,
):
    run = ProductionService(db).approve(production_id, body.decision, current_user, notes=body.notes)
    if run is None:
        return {"deleted": True, "id": production_id}
    return ProductionResponse.model_validate(run)
