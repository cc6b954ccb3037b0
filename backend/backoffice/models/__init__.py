"""SQLAlchemy models."""

from backoffice.models.supplier import Supplier
from backoffice.models.raw_material import RawMaterial, UnitConversion
from backoffice.models.stock import StockRecord, StockMovement, MovementReason
from backoffice.models.menu import (
    MenuMaintenance,
    RecipeLine,
    MenuCosting,
    MenuItem,
    ServingsMovement,
    ServingsReason,
)
from backoffice.models.production import (
    ProductionRun,
    ProductionStatus,
    ApprovalStatus,
    ApprovalAction,
)
from backoffice.models.purchase_order import PurchaseOrder, PurchaseOrderLine, POStatus
from backoffice.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    OrderType,
    OnlineOrder,
    OnlineOrderItem,
    OnlineOrderStatus,
    OnlineOrderType,
)

__all__ = [
    "Supplier",
    "RawMaterial",
    "UnitConversion",
    "StockRecord",
    "StockMovement",
    "MovementReason",
    "MenuMaintenance",
    "RecipeLine",
    "MenuCosting",
    "MenuItem",
    "ServingsMovement",
    "ServingsReason",
    "ProductionRun",
    "ProductionStatus",
    "ApprovalStatus",
    "ApprovalAction",
    "PurchaseOrder",
    "PurchaseOrderLine",
    "POStatus",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderType",
    "OnlineOrder",
    "OnlineOrderItem",
    "OnlineOrderStatus",
    "OnlineOrderType",
]
