"""Unit conversion routes."""

from typing import Optional

from fastapi import APIRouter, Query, Request

from backoffice.core.rate_limit import limiter
from backoffice.core.rbac import RequireAdmin, RequireStaff
from backoffice.core.responses import list_response
from backoffice.db.session import DbSession
from backoffice.schemas.unit_conversion import (
    ResolveUnitRequest,
    ResolveUnitResponse,
    UnitConversionCreate,
    UnitConversionResponse,
    UnitConversionUpdate,
)
from backoffice.services.unit_conversion_service import UnitConversionService

router = APIRouter()


@router.get("/")
@limiter.limit("60/minute")
def list_conversions(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    raw_material_id: Optional[int] = Query(None),
):
    """List unit conversions, optionally for one raw material."""
    conversions = UnitConversionService(db).list_conversions(raw_material_id)
    return list_response([UnitConversionResponse.model_validate(c) for c in conversions])


@router.get("/default/{raw_material_id}", response_model=Optional[UnitConversionResponse])
@limiter.limit("60/minute")
def get_default_conversion(request: Request, raw_material_id: int, db: DbSession, current_user: RequireStaff):
    return UnitConversionService(db).get_default_conversion(raw_material_id)


@router.post("/resolve", response_model=ResolveUnitResponse)
@limiter.limit("60/minute")
def resolve_unit(request: Request, body: ResolveUnitRequest, db: DbSession, current_user: RequireStaff):
    """Convert a quantity of any known unit into the material's base unit."""
    service = UnitConversionService(db)
    material = service.get_material(body.raw_material_id)
    base_quantity, base_price = service.resolve_to_base(
        material.id, body.quantity, body.unit, material=material
    )
    return ResolveUnitResponse(
        raw_material_id=material.id,
        quantity=body.quantity,
        unit=body.unit,
        base_quantity=base_quantity,
        base_unit=material.unit,
        base_price_per_unit=base_price,
    )


@router.post("/", response_model=UnitConversionResponse, status_code=201)
@limiter.limit("30/minute")
def create_conversion(request: Request, body: UnitConversionCreate, db: DbSession, current_user: RequireAdmin):
    return UnitConversionService(db).create_conversion(body.model_dump(), created_by=current_user.id)


@router.put("/{conversion_id}", response_model=UnitConversionResponse)
@limiter.limit("30/minute")
def update_conversion(
    request: Request,
    conversion_id: int,
    body: UnitConversionUpdate,
    db: DbSession,
    current_user: RequireAdmin,
):
    return UnitConversionService(db).update_conversion(conversion_id, body.model_dump(exclude_unset=True))


@router.delete("/{conversion_id}", status_code=204)
@limiter.limit("30/minute")
def delete_conversion(request: Request, conversion_id: int, db: DbSession, current_user: RequireAdmin):
    UnitConversionService(db).delete_conversion(conversion_id)
