"""Recipe and costing routes for menu definitions."""

from fastapi import APIRouter, Request

from backoffice.core.rate_limit import limiter
from backoffice.core.rbac import RequireAdmin, RequireStaff
from backoffice.core.responses import list_response
from backoffice.db.session import DbSession
from backoffice.schemas.recipe import (
    CostingRequest,
    CostingResponse,
    RecipeLineResponse,
    RecipeSetRequest,
)
from backoffice.services.costing_service import CostingService
from backoffice.services.errors import EntityNotFoundError
from backoffice.services.recipe_service import RecipeService

router = APIRouter()


@router.get("/{menu_id}/recipe")
@limiter.limit("60/minute")
def get_recipe(request: Request, menu_id: int, db: DbSession, current_user: RequireStaff):
    lines = RecipeService(db).get_recipe(menu_id)
    return list_response([RecipeLineResponse.model_validate(line) for line in lines])


@router.put("/{menu_id}/recipe")
@limiter.limit("30/minute")
def set_recipe(request: Request, menu_id: int, body: RecipeSetRequest, db: DbSession, current_user: RequireAdmin):
    """Replace the recipe of a menu definition."""
    lines = RecipeService(db).set_recipe(
        menu_id, [line.model_dump() for line in body.lines], created_by=current_user.id
    )
    return list_response([RecipeLineResponse.model_validate(line) for line in lines])


@router.get("/{menu_id}/costing", response_model=CostingResponse)
@limiter.limit("60/minute")
def get_costing(request: Request, menu_id: int, db: DbSession, current_user: RequireStaff):
    costing = CostingService(db).get_costing(menu_id)
    if costing is None:
        raise EntityNotFoundError("Costing for menu", menu_id)
    return costing


@router.put("/{menu_id}/costing", response_model=CostingResponse)
@limiter.limit("30/minute")
def recalculate_costing(
    request: Request,
    menu_id: int,
    body: CostingRequest,
    db: DbSession,
    current_user: RequireAdmin,
):
    """Recompute cost per piece and derive markup or srp from the other."""
    return CostingService(db).recalculate(
        menu_id,
        body.yield_quantity,
        markup_percent=body.markup_percent,
        srp=body.srp,
        created_by=current_user.id,
    )
