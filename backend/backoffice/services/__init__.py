# Services module

from backoffice.services.errors import LedgerError
from backoffice.services.unit_conversion_service import UnitConversionService
from backoffice.services.stock_ledger_service import StockLedgerService
from backoffice.services.stock_deduction_service import StockDeductionService
from backoffice.services.recipe_service import RecipeService
from backoffice.services.costing_service import CostingService
from backoffice.services.menu_servings_service import MenuServingsService
from backoffice.services.production_service import ProductionService
from backoffice.services.order_fulfillment_service import (
    OrderFulfillmentService,
    OnlineOrderService,
)
from backoffice.services.receiving_service import ReceivingService
