"""API routes."""

from fastapi import APIRouter

from backoffice.api.routes import (
    menu,
    online_orders,
    orders,
    production,
    purchase_orders,
    recipes,
    stock,
    unit_conversions,
)

api_router = APIRouter()

api_router.include_router(unit_conversions.router, prefix="/unit-conversions", tags=["unit-conversions"])
api_router.include_router(stock.router, prefix="/stock", tags=["stock"])
api_router.include_router(recipes.router, prefix="/menus", tags=["recipes", "costing"])
api_router.include_router(production.router, prefix="/productions", tags=["production"])
api_router.include_router(menu.router, prefix="/menu-items", tags=["menu"])
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(online_orders.router, prefix="/online-orders", tags=["online-orders"])
api_router.include_router(purchase_orders.router, prefix="/purchase-orders", tags=["purchase-orders"])
