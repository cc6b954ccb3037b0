"""Menu item routes: servings counter and availability."""

from typing import Optional

from fastapi import APIRouter, Query, Request

from backoffice.core.rate_limit import limiter
from backoffice.core.rbac import RequireAdmin, RequireStaff
from backoffice.core.responses import list_response
from backoffice.db.session import DbSession
from backoffice.schemas.menu import (
    AvailabilityRequest,
    MenuItemResponse,
    ServingsAdjustment,
    ServingsMovementResponse,
)
from backoffice.services.menu_servings_service import MenuServingsService

router = APIRouter()


@router.get("/")
@limiter.limit("60/minute")
def list_menu_items(
    request: Request,
    db: DbSession,
    current_user: RequireStaff,
    category: Optional[str] = None,
    available_only: bool = False,
    search: Optional[str] = None,
):
    items = MenuServingsService(db).list_items(
        category=category, available_only=available_only, search=search
    )
    return list_response([MenuItemResponse.from_item(i) for i in items])


@router.get("/{menu_item_id}", response_model=MenuItemResponse)
@limiter.limit("60/minute")
def get_menu_item(request: Request, menu_item_id: int, db: DbSession, current_user: RequireStaff):
    return MenuItemResponse.from_item(MenuServingsService(db).get_item(menu_item_id))


@router.get("/{menu_item_id}/movements")
@limiter.limit("60/minute")
def list_servings_movements(
    request: Request,
    menu_item_id: int,
    db: DbSession,
    current_user: RequireStaff,
    limit: int = Query(100, ge=1, le=500),
):
    movements = MenuServingsService(db).list_movements(menu_item_id, limit=limit)
    return list_response([ServingsMovementResponse.model_validate(m) for m in movements])


@router.post("/check-availability")
@limiter.limit("60/minute")
def check_availability(request: Request, body: AvailabilityRequest, db: DbSession, current_user: RequireStaff):
    """Requested vs available servings for a cart."""
    return MenuServingsService(db).check_availability(
        [(line.menu_item_id, line.quantity) for line in body.items]
    )


@router.post("/{menu_item_id}/toggle-availability", response_model=MenuItemResponse)
@limiter.limit("30/minute")
def toggle_availability(request: Request, menu_item_id: int, db: DbSession, current_user: RequireAdmin):
    item = MenuServingsService(db).toggle_availability(menu_item_id, actor_id=current_user.id)
    return MenuItemResponse.from_item(item)


@router.post("/{menu_item_id}/servings", response_model=MenuItemResponse)
@limiter.limit("30/minute")
def adjust_servings(
    request: Request,
    menu_item_id: int,
    body: ServingsAdjustment,
    db: DbSession,
    current_user: RequireAdmin,
):
    item = MenuServingsService(db).adjust_servings(
        menu_item_id, body.delta, notes=body.notes, actor_id=current_user.id
    )
    return MenuItemResponse.from_item(item)
