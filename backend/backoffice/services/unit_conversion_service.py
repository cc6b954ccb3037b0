"""Unit conversion: resolving recipe/purchase units to a material's base unit.

A ``UnitConversion`` row says how many equivalent units make up one base
unit (``quantity``), and what one equivalent unit costs (``unit_price``).
For Flour tracked in kg, "1 sack = 25 kg" is stored as
``equivalent_unit="sack", quantity=0.04, unit_price=1000``, so:

    base quantity   = equivalent quantity / conversion.quantity
    base unit price = conversion.unit_price * conversion.quantity
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from backoffice.core.config import settings
from backoffice.models.raw_material import RawMaterial, UnitConversion
from backoffice.models.stock import StockRecord
from backoffice.services.errors import (
    EntityNotFoundError,
    UnresolvedUnitError,
    ValidationFailedError,
)

logger = logging.getLogger(__name__)

MONEY = Decimal("0.01")


def quantize_qty(value) -> Decimal:
    """Round a stock quantity to the configured number of places."""
    step = Decimal(1).scaleb(-settings.stock_quantity_places)
    return Decimal(str(value)).quantize(step, rounding=ROUND_HALF_UP)


def quantize_money(value) -> Decimal:
    return Decimal(str(value)).quantize(MONEY, rounding=ROUND_HALF_UP)


def _srp_from_markup(unit_price: Decimal, markup_percent: Decimal) -> Decimal:
    return quantize_money(unit_price * (Decimal("1") + markup_percent / Decimal("100")))


class UnitConversionService:
    """Resolution of units plus maintenance of the conversion table."""

    def __init__(self, db: Session):
        self.db = db

    # ===== RESOLUTION =====

    def get_material(self, raw_material_id: int) -> RawMaterial:
        material = self.db.get(RawMaterial, raw_material_id)
        if material is None:
            raise EntityNotFoundError("Raw material", raw_material_id)
        return material

    def find_conversion(self, raw_material_id: int, unit: str) -> Optional[UnitConversion]:
        return (
            self.db.query(UnitConversion)
            .filter(
                UnitConversion.raw_material_id == raw_material_id,
                UnitConversion.equivalent_unit == unit,
            )
            .first()
        )

    def resolve_to_base(
        self,
        raw_material_id: int,
        quantity,
        unit: str,
        material: Optional[RawMaterial] = None,
    ) -> Tuple[Decimal, Decimal]:
        """Convert ``quantity`` of ``unit`` into the material's base unit.

        Returns ``(base_quantity, base_price_per_unit)``.

        Raises:
            UnresolvedUnitError: ``unit`` is neither the base unit nor a
                defined equivalent unit of the material.
        """
        if material is None:
            material = self.get_material(raw_material_id)
        quantity = Decimal(str(quantity))

        if unit == material.unit:
            return quantize_qty(quantity), Decimal(str(material.unit_price))

        conversion = self.find_conversion(raw_material_id, unit)
        if conversion is None:
            raise UnresolvedUnitError(material.name, unit, material.unit)

        ratio = Decimal(str(conversion.quantity))
        base_quantity = quantize_qty(quantity / ratio)
        base_price = quantize_qty(Decimal(str(conversion.unit_price)) * ratio)
        return base_quantity, base_price

    def from_base(self, conversion: UnitConversion, base_quantity) -> Decimal:
        """Express a base-unit quantity in the conversion's equivalent unit."""
        return quantize_qty(Decimal(str(base_quantity)) * Decimal(str(conversion.quantity)))

    def is_resolvable(self, material: RawMaterial, unit: str) -> bool:
        return unit == material.unit or self.find_conversion(material.id, unit) is not None

    # ===== MAINTENANCE =====

    def list_conversions(self, raw_material_id: Optional[int] = None) -> List[UnitConversion]:
        query = self.db.query(UnitConversion)
        if raw_material_id is not None:
            query = query.filter(UnitConversion.raw_material_id == raw_material_id)
        return query.order_by(UnitConversion.equivalent_unit).all()

    def get_conversion(self, conversion_id: int) -> UnitConversion:
        conversion = self.db.get(UnitConversion, conversion_id)
        if conversion is None:
            raise EntityNotFoundError("Unit conversion", conversion_id)
        return conversion

    def get_default_conversion(self, raw_material_id: int) -> Optional[UnitConversion]:
        self.get_material(raw_material_id)
        return (
            self.db.query(UnitConversion)
            .filter(
                UnitConversion.raw_material_id == raw_material_id,
                UnitConversion.is_default_retail.is_(True),
            )
            .first()
        )

    def _validate(self, material: RawMaterial, data: Dict[str, Any], exclude_id: Optional[int] = None):
        if data["base_unit"] != material.unit:
            raise ValidationFailedError(
                f"base_unit '{data['base_unit']}' does not match the base unit "
                f"'{material.unit}' of '{material.name}'"
            )
        if data["equivalent_unit"] == material.unit:
            raise ValidationFailedError("equivalent_unit must differ from the base unit")
        if Decimal(str(data["quantity"])) <= 0:
            raise ValidationFailedError("quantity must be greater than 0")
        if Decimal(str(data["srp"])) < Decimal(str(data["unit_price"])):
            raise ValidationFailedError(
                "srp must be greater than or equal to unit_price",
                srp=float(data["srp"]),
                unit_price=float(data["unit_price"]),
            )
        duplicate = self.db.query(UnitConversion).filter(
            UnitConversion.raw_material_id == material.id,
            UnitConversion.equivalent_unit == data["equivalent_unit"],
        )
        if exclude_id is not None:
            duplicate = duplicate.filter(UnitConversion.id != exclude_id)
        if duplicate.first() is not None:
            raise ValidationFailedError(
                f"A conversion to '{data['equivalent_unit']}' already exists for '{material.name}'"
            )

    def _clear_default(self, raw_material_id: int, keep_id: Optional[int] = None) -> None:
        query = self.db.query(UnitConversion).filter(
            UnitConversion.raw_material_id == raw_material_id,
            UnitConversion.is_default_retail.is_(True),
        )
        if keep_id is not None:
            query = query.filter(UnitConversion.id != keep_id)
        for other in query.all():
            other.is_default_retail = False

    def create_conversion(self, data: Dict[str, Any], created_by: Optional[int] = None) -> UnitConversion:
        material = self.get_material(data["raw_material_id"])
        data = dict(data)
        if data.get("markup_percent") is None:
            data["markup_percent"] = Decimal("0")
        if data.get("srp") is None:
            data["srp"] = _srp_from_markup(
                Decimal(str(data["unit_price"])), Decimal(str(data["markup_percent"]))
            )
        self._validate(material, data)

        if data.get("is_default_retail"):
            self._clear_default(material.id)

        conversion = UnitConversion(
            raw_material_id=material.id,
            base_unit=data["base_unit"],
            equivalent_unit=data["equivalent_unit"],
            quantity=Decimal(str(data["quantity"])),
            unit_price=Decimal(str(data["unit_price"])),
            markup_percent=Decimal(str(data["markup_percent"])),
            srp=Decimal(str(data["srp"])),
            is_default_retail=bool(data.get("is_default_retail")),
            created_by=created_by,
        )
        self.db.add(conversion)
        self.db.commit()
        self.db.refresh(conversion)
        logger.info(
            f"Created unit conversion {conversion.id}: 1 {conversion.base_unit} = "
            f"{conversion.quantity} {conversion.equivalent_unit} for material {material.id}"
        )
        return conversion

    def update_conversion(self, conversion_id: int, changes: Dict[str, Any]) -> UnitConversion:
        conversion = self.get_conversion(conversion_id)
        material = conversion.raw_material

        merged = {
            "base_unit": conversion.base_unit,
            "equivalent_unit": conversion.equivalent_unit,
            "quantity": conversion.quantity,
            "unit_price": conversion.unit_price,
            "markup_percent": conversion.markup_percent,
            "srp": conversion.srp,
        }
        merged.update({k: v for k, v in changes.items() if v is not None})
        if "srp" not in changes or changes.get("srp") is None:
            if changes.get("markup_percent") is not None or changes.get("unit_price") is not None:
                merged["srp"] = _srp_from_markup(
                    Decimal(str(merged["unit_price"])), Decimal(str(merged["markup_percent"]))
                )
        self._validate(material, merged, exclude_id=conversion.id)

        for field in ("base_unit", "equivalent_unit"):
            setattr(conversion, field, merged[field])
        for field in ("quantity", "unit_price", "markup_percent", "srp"):
            setattr(conversion, field, Decimal(str(merged[field])))
        if changes.get("is_default_retail") is not None:
            if changes["is_default_retail"]:
                self._clear_default(material.id, keep_id=conversion.id)
            conversion.is_default_retail = bool(changes["is_default_retail"])

        self.db.commit()
        self.db.refresh(conversion)
        logger.info(f"Updated unit conversion {conversion.id}")
        return conversion

    def delete_conversion(self, conversion_id: int) -> None:
        conversion = self.get_conversion(conversion_id)
        self.db.delete(conversion)
        self.db.commit()
        logger.info(f"Deleted unit conversion {conversion_id}")

    # ===== EQUIVALENTS =====

    def equivalent_quantities(self, stock: StockRecord) -> List[Dict[str, Any]]:
        """The stock level expressed in the base unit and every equivalent unit."""
        rows = [{
            "unit": stock.unit,
            "quantity": Decimal(str(stock.quantity)),
            "available": Decimal(str(stock.available)),
            "is_base": True,
        }]
        for conversion in self.list_conversions(stock.raw_material_id):
            rows.append({
                "unit": conversion.equivalent_unit,
                "quantity": self.from_base(conversion, stock.quantity),
                "available": self.from_base(conversion, stock.available),
                "is_base": False,
            })
        return rows
