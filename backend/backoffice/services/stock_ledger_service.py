"""Stock ledger reads, manual adjustments and receipts into stock."""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from backoffice.models.raw_material import RawMaterial
from backoffice.models.stock import MovementReason, StockMovement, StockRecord
from backoffice.services.errors import (
    EntityNotFoundError,
    NotFoundInInventoryError,
    ValidationFailedError,
)
from backoffice.services.unit_conversion_service import UnitConversionService, quantize_qty

logger = logging.getLogger(__name__)


class StockLedgerService:
    """Everything that reads or increments StockRecords.

    Decrements for production go through ``StockDeductionService``.
    """

    def __init__(self, db: Session):
        self.db = db
        self.conversions = UnitConversionService(db)

    def find_record(self, raw_material_id: int, unit: str, lock: bool = False) -> Optional[StockRecord]:
        query = self.db.query(StockRecord).filter(
            StockRecord.raw_material_id == raw_material_id,
            StockRecord.unit == unit,
        )
        if lock:
            query = query.with_for_update()
        return query.first()

    def list_stock(self, status: Optional[str] = None, search: Optional[str] = None) -> List[Dict[str, Any]]:
        query = self.db.query(StockRecord).join(RawMaterial)
        if search:
            query = query.filter(RawMaterial.name.ilike(f"%{search}%"))
        items = []
        for record in query.order_by(RawMaterial.name).all():
            item_status = record.stock_status()
            if status and item_status != status:
                continue
            items.append(self._serialize(record, item_status))
        return items

    def get_stock(self, stock_id: int) -> Dict[str, Any]:
        record = self.db.get(StockRecord, stock_id)
        if record is None:
            raise EntityNotFoundError("Stock record", stock_id)
        data = self._serialize(record, record.stock_status())
        data["equivalents"] = [
            {**row, "quantity": float(row["quantity"]), "available": float(row["available"])}
            for row in self.conversions.equivalent_quantities(record)
        ]
        return data

    def get_stock_for_material(self, raw_material_id: int) -> StockRecord:
        material = self.conversions.get_material(raw_material_id)
        record = self.find_record(material.id, material.unit)
        if record is None:
            raise NotFoundInInventoryError(material.name, material.unit)
        return record

    def list_movements(
        self,
        raw_material_id: Optional[int] = None,
        operation_key: Optional[str] = None,
        limit: int = 100,
    ) -> List[StockMovement]:
        query = self.db.query(StockMovement)
        if raw_material_id is not None:
            query = query.filter(StockMovement.raw_material_id == raw_material_id)
        if operation_key:
            query = query.filter(StockMovement.operation_key == operation_key)
        return query.order_by(StockMovement.id.desc()).limit(limit).all()

    def add_stock(
        self,
        material: RawMaterial,
        base_quantity: Decimal,
        operation_key: str,
        reason: str = MovementReason.PURCHASE.value,
        ref_type: Optional[str] = None,
        ref_id: Optional[int] = None,
        notes: Optional[str] = None,
        created_by: Optional[int] = None,
    ) -> StockRecord:
        """Find-or-create the material's StockRecord and add to both counters.

        Does not commit; the caller owns the transaction.
        """
        base_quantity = quantize_qty(base_quantity)
        record = self.find_record(material.id, material.unit, lock=True)
        if record is None:
            record = StockRecord(
                raw_material_id=material.id,
                unit=material.unit,
                quantity=base_quantity,
                available=base_quantity,
            )
            self.db.add(record)
            self.db.flush()
        else:
            self.db.execute(
                update(StockRecord)
                .where(StockRecord.id == record.id)
                .values(
                    quantity=StockRecord.quantity + base_quantity,
                    available=StockRecord.available + base_quantity,
                    version=StockRecord.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            self.db.refresh(record)

        self.db.add(StockMovement(
            raw_material_id=material.id,
            stock_record_id=record.id,
            qty_delta=base_quantity,
            reason=reason,
            operation_key=operation_key,
            ref_type=ref_type,
            ref_id=ref_id,
            notes=notes,
            created_by=created_by,
        ))
        logger.info(
            f"Stock +{base_quantity} {material.unit} for '{material.name}' "
            f"({operation_key}); available now {record.available}"
        )
        return record

    def adjust_stock(
        self,
        raw_material_id: int,
        delta,
        notes: Optional[str] = None,
        created_by: Optional[int] = None,
    ) -> StockRecord:
        """Manual correction of a material's stock, in its base unit."""
        material = self.conversions.get_material(raw_material_id)
        delta = quantize_qty(delta)
        if delta == 0:
            raise ValidationFailedError("Adjustment delta must not be zero")

        if delta > 0:
            record = self.add_stock(
                material,
                delta,
                operation_key=f"adjustment:{material.id}",
                reason=MovementReason.ADJUSTMENT.value,
                ref_type="adjustment",
                notes=notes,
                created_by=created_by,
            )
            self.db.commit()
            return record

        record = self.find_record(material.id, material.unit, lock=True)
        if record is None:
            raise NotFoundInInventoryError(material.name, material.unit)
        result = self.db.execute(
            update(StockRecord)
            .where(StockRecord.id == record.id, StockRecord.available >= -delta)
            .values(
                quantity=StockRecord.quantity + delta,
                available=StockRecord.available + delta,
                version=StockRecord.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise ValidationFailedError(
                f"Adjustment of {delta} {material.unit} would make '{material.name}' negative",
                available=float(record.available),
            )
        self.db.add(StockMovement(
            raw_material_id=material.id,
            stock_record_id=record.id,
            qty_delta=delta,
            reason=MovementReason.ADJUSTMENT.value,
            operation_key=f"adjustment:{material.id}",
            ref_type="adjustment",
            notes=notes,
            created_by=created_by,
        ))
        self.db.commit()
        self.db.refresh(record)
        logger.info(f"Stock {delta} {material.unit} for '{material.name}' (adjustment)")
        return record

    def _serialize(self, record: StockRecord, item_status: str) -> Dict[str, Any]:
        material = record.raw_material
        return {
            "id": record.id,
            "raw_material_id": record.raw_material_id,
            "name": material.name,
            "category": material.category,
            "unit": record.unit,
            "quantity": float(record.quantity),
            "available": float(record.available),
            "critical_level": float(material.critical_level),
            "status": item_status,
            "version": record.version,
        }
