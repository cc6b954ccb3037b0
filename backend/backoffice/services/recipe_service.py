"""Recipe maintenance for menu definitions."""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from backoffice.models.menu import MenuMaintenance, RecipeLine
from backoffice.models.raw_material import RawMaterial
from backoffice.services.errors import (
    EntityNotFoundError,
    UnresolvedUnitError,
    ValidationFailedError,
)
from backoffice.services.unit_conversion_service import UnitConversionService

logger = logging.getLogger(__name__)


class RecipeService:
    def __init__(self, db: Session):
        self.db = db
        self.conversions = UnitConversionService(db)

    def get_menu(self, menu_maintenance_id: int) -> MenuMaintenance:
        menu = self.db.get(MenuMaintenance, menu_maintenance_id)
        if menu is None:
            raise EntityNotFoundError("Menu", menu_maintenance_id)
        return menu

    def get_recipe(self, menu_maintenance_id: int) -> List[RecipeLine]:
        self.get_menu(menu_maintenance_id)
        return (
            self.db.query(RecipeLine)
            .filter(RecipeLine.menu_maintenance_id == menu_maintenance_id)
            .order_by(RecipeLine.id)
            .all()
        )

    def set_recipe(
        self,
        menu_maintenance_id: int,
        lines: List[Dict[str, Any]],
        created_by: Optional[int] = None,
    ) -> List[RecipeLine]:
        """Replace the whole recipe of a menu.

        Every line is validated before anything is written: the raw
        material must exist and appear once, the quantity must be positive
        and the unit must be the base unit or a defined equivalent unit.
        """
        menu = self.get_menu(menu_maintenance_id)

        seen = set()
        for line in lines:
            material_id = line["raw_material_id"]
            if material_id in seen:
                raise ValidationFailedError(
                    f"Raw material {material_id} appears more than once in the recipe",
                    raw_material_id=material_id,
                )
            seen.add(material_id)

            material = self.db.get(RawMaterial, material_id)
            if material is None:
                raise EntityNotFoundError("Raw material", material_id)
            if Decimal(str(line["quantity"])) <= 0:
                raise ValidationFailedError(
                    f"Quantity for '{material.name}' must be greater than 0",
                    raw_material_id=material_id,
                )
            if not self.conversions.is_resolvable(material, line["unit"]):
                raise UnresolvedUnitError(material.name, line["unit"], material.unit)

        for existing in list(menu.recipe_lines):
            menu.recipe_lines.remove(existing)
        self.db.flush()

        for line in lines:
            menu.recipe_lines.append(RecipeLine(
                raw_material_id=line["raw_material_id"],
                quantity=Decimal(str(line["quantity"])),
                unit=line["unit"],
                notes=line.get("notes"),
                created_by=created_by,
            ))
        self.db.commit()
        logger.info(f"Recipe for menu {menu.id} '{menu.name}' set to {len(lines)} lines")
        return self.get_recipe(menu.id)
