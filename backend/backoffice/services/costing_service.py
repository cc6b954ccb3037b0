"""Menu costing: production cost per piece, markup and selling price."""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from backoffice.models.menu import MenuCosting, MenuItem
from backoffice.models.production import ProductionRun
from backoffice.services.errors import NoRecipeDefinedError, ValidationFailedError
from backoffice.services.recipe_service import RecipeService
from backoffice.services.unit_conversion_service import quantize_money, quantize_qty

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class CostingService:
    def __init__(self, db: Session):
        self.db = db
        self.recipes = RecipeService(db)

    def get_costing(self, menu_maintenance_id: int) -> Optional[MenuCosting]:
        return (
            self.db.query(MenuCosting)
            .filter(MenuCosting.menu_maintenance_id == menu_maintenance_id)
            .first()
        )

    def recipe_cost_per_piece(self, menu_maintenance_id: int) -> Decimal:
        """Sum of base quantity x base price over the recipe lines."""
        lines = self.recipes.get_recipe(menu_maintenance_id)
        total = Decimal("0")
        for line in lines:
            base_qty, base_price = self.recipes.conversions.resolve_to_base(
                line.raw_material_id, line.quantity, line.unit, material=line.raw_material
            )
            total += base_qty * base_price
        return quantize_qty(total)

    def recalculate(
        self,
        menu_maintenance_id: int,
        yield_quantity: int,
        markup_percent: Optional[Decimal] = None,
        srp: Optional[Decimal] = None,
        created_by: Optional[int] = None,
    ) -> MenuCosting:
        """Create or refresh a menu's costing and push its srp downstream.

        Exactly one of ``markup_percent`` / ``srp`` is given; the other is
        derived from the recipe cost.
        """
        menu = self.recipes.get_menu(menu_maintenance_id)
        if (markup_percent is None) == (srp is None):
            raise ValidationFailedError("Provide exactly one of markup_percent or srp")
        if yield_quantity <= 0:
            raise ValidationFailedError("yield_quantity must be greater than 0")
        if not self.recipes.get_recipe(menu.id):
            raise NoRecipeDefinedError(menu.name, menu.id)

        cost_per_piece = self.recipe_cost_per_piece(menu.id)
        if srp is None:
            markup_percent = Decimal(str(markup_percent))
            srp = quantize_money(cost_per_piece * (1 + markup_percent / HUNDRED))
        else:
            srp = quantize_money(srp)
            if cost_per_piece > 0:
                markup_percent = quantize_money((srp - cost_per_piece) / cost_per_piece * HUNDRED)
            else:
                markup_percent = Decimal("0")
        if srp < cost_per_piece:
            raise ValidationFailedError(
                "srp is below the production cost per piece",
                srp=float(srp),
                production_cost_per_piece=float(cost_per_piece),
            )

        net_profit = srp - cost_per_piece
        costing = self.get_costing(menu.id)
        if costing is None:
            costing = MenuCosting(menu_maintenance_id=menu.id, created_by=created_by)
            self.db.add(costing)
        costing.yield_quantity = yield_quantity
        costing.markup_percent = markup_percent
        costing.srp = srp
        costing.production_cost_per_piece = cost_per_piece
        costing.total_production_cost = quantize_money(cost_per_piece * yield_quantity)
        costing.net_profit = quantize_money(net_profit)
        costing.gross_sales = quantize_money(srp * yield_quantity)
        costing.total_net_income = quantize_money(net_profit * yield_quantity)

        self._sync_srp(menu.id, srp)
        self.db.commit()
        self.db.refresh(costing)
        logger.info(
            f"Costing for menu {menu.id} '{menu.name}': cost/pc {cost_per_piece}, srp {srp}"
        )
        return costing

    def _sync_srp(self, menu_maintenance_id: int, srp: Decimal) -> None:
        item = (
            self.db.query(MenuItem)
            .filter(MenuItem.menu_maintenance_id == menu_maintenance_id)
            .first()
        )
        if item is not None:
            item.price = srp
        runs = (
            self.db.query(ProductionRun)
            .filter(ProductionRun.menu_maintenance_id == menu_maintenance_id)
            .all()
        )
        for run in runs:
            run.srp = srp

    def production_figures(self, menu_maintenance_id: int, quantity: int):
        """(expected_cost, srp) for a run of ``quantity`` pieces."""
        costing = self.get_costing(menu_maintenance_id)
        if costing is not None:
            cost_per_piece = Decimal(str(costing.production_cost_per_piece))
            srp = Decimal(str(costing.srp))
        else:
            cost_per_piece = self.recipe_cost_per_piece(menu_maintenance_id)
            srp = Decimal("0")
        return quantize_money(cost_per_piece * quantity), srp
