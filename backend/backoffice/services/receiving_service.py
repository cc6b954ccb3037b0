"""Purchase orders and goods receiving.

Received quantities are converted back to the material's base unit before
they are merged into the stock ledger: 2 sacks of a "1 sack = 25 kg"
conversion add 50 kg.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from backoffice.core.rbac import TokenData
from backoffice.models.purchase_order import (
    RECEIVABLE_STATUSES,
    POStatus,
    PurchaseOrder,
    PurchaseOrderLine,
)
from backoffice.models.raw_material import UnitConversion
from backoffice.models.stock import MovementReason
from backoffice.models.supplier import Supplier
from backoffice.services.errors import (
    EntityNotFoundError,
    InvalidTransitionError,
    ValidationFailedError,
)
from backoffice.services.stock_ledger_service import StockLedgerService
from backoffice.services.unit_conversion_service import quantize_money, quantize_qty

logger = logging.getLogger(__name__)

# Status changes allowed through set_status; Delivered is reached by receiving.
PO_STATUS_TRANSITIONS = {
    POStatus.PENDING: {POStatus.APPROVED, POStatus.REJECTED, POStatus.CANCELLED},
    POStatus.APPROVED: {POStatus.CANCELLED},
    POStatus.REJECTED: set(),
    POStatus.DELIVERED: set(),
    POStatus.CANCELLED: set(),
}


class ReceivingService:
    def __init__(self, db: Session):
        self.db = db
        self.stock = StockLedgerService(db)

    # ===== READS =====

    def get(self, po_id: int) -> PurchaseOrder:
        po = self.db.get(PurchaseOrder, po_id)
        if po is None:
            raise EntityNotFoundError("Purchase order", po_id)
        return po

    def list_purchase_orders(
        self,
        status: Optional[str] = None,
        supplier_id: Optional[int] = None,
        search: Optional[str] = None,
    ) -> List[PurchaseOrder]:
        query = self.db.query(PurchaseOrder)
        if status:
            query = query.filter(PurchaseOrder.status == status)
        if supplier_id is not None:
            query = query.filter(PurchaseOrder.supplier_id == supplier_id)
        if search:
            query = query.filter(PurchaseOrder.po_number.ilike(f"%{search}%"))
        return query.order_by(PurchaseOrder.id.desc()).all()

    def next_po_number(self, on: Optional[date] = None) -> str:
        on = on or date.today()
        prefix = f"PO-{on.strftime('%Y%m%d')}-"
        last = (
            self.db.query(PurchaseOrder.po_number)
            .filter(PurchaseOrder.po_number.like(f"{prefix}%"))
            .order_by(PurchaseOrder.po_number.desc())
            .first()
        )
        sequence = int(last[0].rsplit("-", 1)[1]) + 1 if last else 1
        return f"{prefix}{sequence:04d}"

    # ===== PURCHASE ORDER MAINTENANCE =====

    def _build_lines(self, po: PurchaseOrder, items: List[Dict[str, Any]]) -> None:
        if not items:
            raise ValidationFailedError("A purchase order needs at least one item")
        for existing in list(po.lines):
            po.lines.remove(existing)

        total = Decimal("0")
        for item in items:
            material = self.stock.conversions.get_material(item["raw_material_id"])
            conversion: Optional[UnitConversion] = None
            if item.get("unit_conversion_id") is not None:
                conversion = self.db.get(UnitConversion, item["unit_conversion_id"])
                if conversion is None or conversion.raw_material_id != material.id:
                    raise ValidationFailedError(
                        f"Unit conversion {item['unit_conversion_id']} does not belong to "
                        f"'{material.name}'",
                        raw_material_id=material.id,
                    )
            quantity = Decimal(str(item["quantity"]))
            if quantity <= 0:
                raise ValidationFailedError(f"Quantity for '{material.name}' must be greater than 0")

            if conversion is not None:
                unit = conversion.equivalent_unit
                default_price = conversion.unit_price
            else:
                unit = material.unit
                default_price = material.unit_price
            unit_price = Decimal(str(item["unit_price"])) if item.get("unit_price") is not None \
                else Decimal(str(default_price))
            line_total = quantize_money(quantity * unit_price)
            total += line_total
            po.lines.append(PurchaseOrderLine(
                raw_material_id=material.id,
                unit_conversion_id=conversion.id if conversion else None,
                conversion_quantity=conversion.quantity if conversion else None,
                quantity=quantity,
                unit=unit,
                unit_price=unit_price,
                total_price=line_total,
            ))
        po.total_amount = total

    def create(self, data: Dict[str, Any], actor: TokenData) -> PurchaseOrder:
        supplier = self.db.get(Supplier, data["supplier_id"])
        if supplier is None:
            raise EntityNotFoundError("Supplier", data["supplier_id"])
        order_date = data.get("order_date") or date.today()
        po = PurchaseOrder(
            po_number=self.next_po_number(order_date),
            supplier_id=supplier.id,
            status=POStatus.PENDING.value,
            order_date=order_date,
            expected_delivery_date=data.get("expected_delivery_date"),
            notes=data.get("notes"),
            created_by=actor.id,
        )
        self._build_lines(po, data.get("items") or [])
        self.db.add(po)
        self.db.commit()
        self.db.refresh(po)
        logger.info(f"Purchase order {po.po_number} created by user {actor.id}: {po.total_amount}")
        return po

    def _require_pending(self, po: PurchaseOrder, action: str) -> None:
        if po.status != POStatus.PENDING.value:
            raise InvalidTransitionError(
                f"Cannot {action} purchase order {po.po_number} in {po.status} status",
                current_status=po.status,
            )

    def update(self, po_id: int, changes: Dict[str, Any], actor: TokenData) -> PurchaseOrder:
        po = self.get(po_id)
        self._require_pending(po, "edit")
        if changes.get("supplier_id") is not None:
            if self.db.get(Supplier, changes["supplier_id"]) is None:
                raise EntityNotFoundError("Supplier", changes["supplier_id"])
            po.supplier_id = changes["supplier_id"]
        for field in ("expected_delivery_date", "notes"):
            if field in changes and changes[field] is not None:
                setattr(po, field, changes[field])
        if changes.get("items") is not None:
            self._build_lines(po, changes["items"])
        po.increment_version()
        self.db.commit()
        self.db.refresh(po)
        logger.info(f"Purchase order {po.po_number} edited by user {actor.id}")
        return po

    def delete(self, po_id: int, actor: TokenData) -> None:
        po = self.get(po_id)
        self._require_pending(po, "delete")
        self.db.delete(po)
        self.db.commit()
        logger.info(f"Purchase order {po_id} deleted by user {actor.id}")

    def set_status(self, po_id: int, new_status: str, actor: TokenData) -> PurchaseOrder:
        po = self.get(po_id)
        target = POStatus(new_status)
        if target == POStatus.DELIVERED:
            raise InvalidTransitionError("Use receiving to mark a purchase order Delivered")
        current = POStatus(po.status)
        if target not in PO_STATUS_TRANSITIONS[current]:
            raise InvalidTransitionError(
                f"Cannot move purchase order {po.po_number} from {current.value} to {target.value}",
                current_status=current.value,
                requested_status=target.value,
            )
        po.status = target.value
        if target == POStatus.APPROVED:
            po.approved_by = actor.id
            po.approved_at = datetime.now(timezone.utc)
        po.increment_version()
        self.db.commit()
        self.db.refresh(po)
        logger.info(f"Purchase order {po.po_number} {current.value} -> {target.value} by user {actor.id}")
        return po

    # ===== RECEIVING =====

    def receive(
        self,
        po_id: int,
        receipts: List[Dict[str, Any]],
        date_received: date,
        actor: TokenData,
        notes: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Record what arrived and merge it into stock.

        ``receipts`` carries ``line_id`` and ``received_quantity`` for every
        line of the order. Receiving less than ordered is valid; totals are
        recomputed from the received quantities.
        """
        po = self.get(po_id)
        if po.status not in RECEIVABLE_STATUSES:
            raise InvalidTransitionError(
                f"Can only receive purchase orders that are Pending or Approved "
                f"({po.po_number} is {po.status})",
                current_status=po.status,
            )
        if date_received is None:
            raise ValidationFailedError("date_received is required")

        by_line = {}
        for receipt in receipts:
            if receipt.get("received_quantity") is None:
                raise ValidationFailedError("All items must have received_quantity")
            by_line[receipt["line_id"]] = Decimal(str(receipt["received_quantity"]))
        missing = [line.id for line in po.lines if line.id not in by_line]
        unknown = set(by_line) - {line.id for line in po.lines}
        if missing or unknown:
            raise ValidationFailedError(
                "A received_quantity is required for every line of the purchase order",
                missing_line_ids=missing,
                unknown_line_ids=sorted(unknown),
            )

        received = []
        try:
            total = Decimal("0")
            for line in po.lines:
                qty = by_line[line.id]
                if qty < 0:
                    raise ValidationFailedError(f"received_quantity for line {line.id} cannot be negative")
                material = line.raw_material
                if line.conversion_quantity is not None:
                    ratio = Decimal(str(line.conversion_quantity))
                    base_qty = quantize_qty(qty / ratio)
                    base_price = quantize_qty(Decimal(str(line.unit_price)) * ratio)
                else:
                    base_qty = quantize_qty(qty)
                    base_price = Decimal(str(line.unit_price))

                line.received_quantity = qty
                line.base_quantity_received = base_qty
                line.total_price = quantize_money(qty * Decimal(str(line.unit_price)))
                total += line.total_price

                entry = {
                    "line_id": line.id,
                    "raw_material_id": material.id,
                    "material_name": material.name,
                    "received_quantity": float(qty),
                    "unit": line.unit,
                    "base_quantity": float(base_qty),
                    "base_unit": material.unit,
                    "base_unit_price": float(base_price),
                }
                if base_qty > 0:
                    record = self.stock.add_stock(
                        material,
                        base_qty,
                        operation_key=po.operation_key,
                        reason=MovementReason.PURCHASE.value,
                        ref_type="purchase_order",
                        ref_id=po.id,
                        notes=f"Received from {po.po_number}: {material.name} {qty} {line.unit}",
                        created_by=actor.id,
                    )
                    entry["available_after"] = float(record.available)
                received.append(entry)

            po.total_amount = total
            po.status = POStatus.DELIVERED.value
            po.date_received = date_received
            po.received_by = actor.id
            if notes:
                po.notes = (po.notes or "") + f"\nReceived: {notes}"
            po.increment_version()
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"Received {po.po_number}: {len(received)} lines, total {po.total_amount}"
        )
        return {
            "status": POStatus.DELIVERED.value,
            "purchase_order_id": po.id,
            "po_number": po.po_number,
            "total_amount": float(po.total_amount),
            "items_received": received,
        }
