"""Typed failures raised by the ledger services.

Every error carries a machine-readable ``code``, the HTTP status the API
layer should answer with, and an optional structured payload.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional


class LedgerError(Exception):
    """Base class for all domain failures."""

    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str, **payload: Any):
        self.message = message
        self.payload = payload
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"detail": self.message, "code": self.code}
        data.update(self.payload)
        return data


class UnresolvedUnitError(LedgerError):
    """No conversion path exists from a unit to the material's base unit."""

    code = "unresolved_unit"
    status_code = 422

    def __init__(self, material_name: str, unit: str, base_unit: str):
        self.material_name = material_name
        self.unit = unit
        self.base_unit = base_unit
        super().__init__(
            f"Cannot convert '{unit}' to '{base_unit}' for '{material_name}': "
            f"no unit conversion defined",
            material_name=material_name,
            unit=unit,
            base_unit=base_unit,
        )


class NoRecipeDefinedError(LedgerError):
    code = "no_recipe_defined"
    status_code = 422

    def __init__(self, menu_name: str, menu_id: int):
        super().__init__(
            f"No recipe defined for '{menu_name}'",
            menu_maintenance_id=menu_id,
        )


def _fmt(value: Decimal) -> str:
    return format(value.normalize(), "f") if isinstance(value, Decimal) else str(value)


class InsufficientStockError(LedgerError):
    """One or more ingredients cannot cover a deduction.

    ``shortages`` lists every failing line, not just the first.
    """

    code = "insufficient_stock"
    status_code = 409

    def __init__(self, shortages: List[Dict[str, Any]]):
        self.shortages = shortages
        parts = []
        for s in shortages:
            if s["reason"] == "not_found":
                parts.append(f"{s['material_name']}: not found in inventory")
            else:
                parts.append(
                    f"{s['material_name']}: need {_fmt(s['needed'])} {s['unit']}, "
                    f"have {_fmt(s['available'])} {s['unit']}"
                )
        super().__init__(
            "Insufficient stock: " + "; ".join(parts),
            shortages=[
                {
                    **s,
                    "needed": float(s["needed"]),
                    "available": float(s["available"]),
                    "shortfall": float(s["shortfall"]),
                }
                for s in shortages
            ],
        )


class NotFoundInInventoryError(LedgerError):
    code = "not_found_in_inventory"
    status_code = 404

    def __init__(self, material_name: str, unit: str):
        super().__init__(
            f"'{material_name}' ({unit}) not found in inventory",
            material_name=material_name,
            unit=unit,
        )


class InvalidApprovalStateError(LedgerError):
    code = "invalid_approval_state"
    status_code = 409


class RoleNotAuthorizedError(LedgerError):
    code = "role_not_authorized"
    status_code = 403


class EntityNotFoundError(LedgerError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Optional[int] = None):
        message = f"{entity} not found" if entity_id is None else f"{entity} {entity_id} not found"
        super().__init__(message, entity=entity)


class InsufficientServingsError(LedgerError):
    """Ordered quantities exceed ready-to-sell servings."""

    code = "insufficient_servings"
    status_code = 409

    def __init__(self, items: List[Dict[str, Any]]):
        self.items = items
        parts = [
            f"{i['name']}: requested {i['requested']}, available {i['available']}"
            for i in items
        ]
        super().__init__("Insufficient servings: " + "; ".join(parts), items=items)


class InvalidTransitionError(LedgerError):
    code = "invalid_transition"
    status_code = 409


class ValidationFailedError(LedgerError):
    code = "validation_failed"
    status_code = 422
