"""Stock Deduction Service - consumes raw materials for a production run.

Flow:
1. Production run approved (admin create, or admin approving a staff request)
2. Look up the recipe of the run's menu item
3. For each recipe line:
   - needed = line quantity x produced quantity
   - Resolve the line unit to the material's base unit
   - Lock the material's StockRecord and check ``available``
4. If any line is short or missing, nothing is written and one
   InsufficientStockError lists every failing line
5. Otherwise every line is decremented with a conditional UPDATE inside a
   savepoint and a StockMovement is written under ``production:<id>``
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from backoffice.models.menu import MenuMaintenance, RecipeLine
from backoffice.models.stock import MovementReason, StockMovement, StockRecord
from backoffice.services.errors import (
    EntityNotFoundError,
    InsufficientStockError,
    InvalidApprovalStateError,
    NoRecipeDefinedError,
)
from backoffice.services.unit_conversion_service import UnitConversionService, quantize_qty

logger = logging.getLogger(__name__)


class StockDeductionService:
    """All-or-nothing raw material deduction for production."""

    def __init__(self, db: Session):
        self.db = db
        self.conversions = UnitConversionService(db)

    def _get_menu(self, menu_maintenance_id: int) -> MenuMaintenance:
        menu = self.db.get(MenuMaintenance, menu_maintenance_id)
        if menu is None:
            raise EntityNotFoundError("Menu", menu_maintenance_id)
        return menu

    def _plan(self, menu: MenuMaintenance, produced_quantity, lock: bool) -> List[Dict[str, Any]]:
        """Resolve every recipe line to a base-unit requirement.

        Raises NoRecipeDefinedError on an empty recipe and
        UnresolvedUnitError when a line's unit has no conversion.
        """
        lines = (
            self.db.query(RecipeLine)
            .filter(RecipeLine.menu_maintenance_id == menu.id)
            .order_by(RecipeLine.id)
            .all()
        )
        if not lines:
            raise NoRecipeDefinedError(menu.name, menu.id)

        produced = Decimal(str(produced_quantity))
        plan = []
        for line in lines:
            material = line.raw_material
            needed, _price = self.conversions.resolve_to_base(
                material.id, Decimal(str(line.quantity)) * produced, line.unit, material=material
            )
            query = self.db.query(StockRecord).filter(
                StockRecord.raw_material_id == material.id,
                StockRecord.unit == material.unit,
            )
            if lock:
                query = query.with_for_update()
            stock = query.first()
            available = Decimal(str(stock.available)) if stock else Decimal("0")
            plan.append({
                "raw_material_id": material.id,
                "material_name": material.name,
                "unit": material.unit,
                "recipe_quantity": Decimal(str(line.quantity)),
                "recipe_unit": line.unit,
                "needed": needed,
                "available": available,
                "stock": stock,
            })
        return plan

    @staticmethod
    def _shortages(plan: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        shortages = []
        for entry in plan:
            if entry["stock"] is None:
                reason = "not_found"
            elif entry["available"] < entry["needed"]:
                reason = "insufficient"
            else:
                continue
            shortages.append({
                "raw_material_id": entry["raw_material_id"],
                "material_name": entry["material_name"],
                "needed": entry["needed"],
                "available": entry["available"],
                "shortfall": entry["needed"] - entry["available"],
                "unit": entry["unit"],
                "reason": reason,
            })
        return shortages

    def preview(self, menu_maintenance_id: int, produced_quantity) -> Dict[str, Any]:
        """Check every line without writing anything."""
        menu = self._get_menu(menu_maintenance_id)
        plan = self._plan(menu, produced_quantity, lock=False)
        return {
            "menu_maintenance_id": menu.id,
            "menu_name": menu.name,
            "quantity": produced_quantity,
            "sufficient": not self._shortages(plan),
            "lines": [
                {
                    "raw_material_id": e["raw_material_id"],
                    "material_name": e["material_name"],
                    "recipe_quantity": float(e["recipe_quantity"]),
                    "recipe_unit": e["recipe_unit"],
                    "needed": float(e["needed"]),
                    "available": float(e["available"]),
                    "unit": e["unit"],
                    "in_inventory": e["stock"] is not None,
                    "sufficient": e["stock"] is not None and e["available"] >= e["needed"],
                }
                for e in plan
            ],
        }

    def already_deducted(self, operation_key: str) -> bool:
        return (
            self.db.query(StockMovement.id)
            .filter(
                StockMovement.operation_key == operation_key,
                StockMovement.reason == MovementReason.PRODUCTION.value,
            )
            .first()
            is not None
        )

    def deduct(
        self,
        menu_maintenance_id: int,
        produced_quantity,
        operation_key: str,
        ref_id: Optional[int] = None,
        created_by: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Deduct the recipe of ``produced_quantity`` pieces from stock.

        Runs inside a savepoint: on any failure the savepoint is rolled back
        and no StockRecord changes. The caller commits the outer transaction.

        Returns per-line receipts (material, amount deducted, unit,
        remaining available).

        Raises:
            NoRecipeDefinedError, UnresolvedUnitError, InsufficientStockError,
            InvalidApprovalStateError (stock already taken for ``operation_key``).
        """
        menu = self._get_menu(menu_maintenance_id)
        if self.already_deducted(operation_key):
            raise InvalidApprovalStateError(
                f"Stock was already deducted for {operation_key}",
                operation_key=operation_key,
            )

        savepoint = self.db.begin_nested()
        try:
            plan = self._plan(menu, produced_quantity, lock=True)
            shortages = self._shortages(plan)
            if shortages:
                raise InsufficientStockError(shortages)

            receipts = []
            for entry in plan:
                stock = entry["stock"]
                needed = entry["needed"]
                result = self.db.execute(
                    update(StockRecord)
                    .where(StockRecord.id == stock.id, StockRecord.available >= needed)
                    .values(
                        available=StockRecord.available - needed,
                        version=StockRecord.version + 1,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    # Another writer took the stock between the check and the update
                    self.db.refresh(stock)
                    entry["available"] = Decimal(str(stock.available))
                    raise InsufficientStockError(self._shortages([entry]))

                self.db.add(StockMovement(
                    raw_material_id=entry["raw_material_id"],
                    stock_record_id=stock.id,
                    qty_delta=-needed,
                    reason=MovementReason.PRODUCTION.value,
                    operation_key=operation_key,
                    ref_type="production",
                    ref_id=ref_id,
                    notes=f"Production: {menu.name} x{produced_quantity}",
                    created_by=created_by,
                ))
                self.db.refresh(stock)
                receipts.append({
                    "raw_material_id": entry["raw_material_id"],
                    "material_name": entry["material_name"],
                    "deducted": float(needed),
                    "unit": entry["unit"],
                    "remaining_available": float(quantize_qty(stock.available)),
                })
            savepoint.commit()
        except Exception:
            savepoint.rollback()
            raise

        logger.info(
            f"Deducted stock for {operation_key}: {menu.name} x{produced_quantity} "
            f"({len(receipts)} ingredients)"
        )
        return receipts
