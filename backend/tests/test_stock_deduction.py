"""Tests for the all-or-nothing production deduction and the stock ledger."""

import pytest
from decimal import Decimal

from backoffice.models.menu import MenuMaintenance, RecipeLine
from backoffice.models.stock import MovementReason, StockMovement, StockRecord
from backoffice.services.errors import (
    InsufficientStockError,
    InvalidApprovalStateError,
    NoRecipeDefinedError,
    NotFoundInInventoryError,
    UnresolvedUnitError,
    ValidationFailedError,
)
from backoffice.services.stock_deduction_service import StockDeductionService
from backoffice.services.stock_ledger_service import StockLedgerService


@pytest.fixture
def ensaymada(db_session, flour, sugar):
    """Two-ingredient recipe: 0.2 kg flour (as sacks) and 0.1 kg sugar per piece."""
    menu = MenuMaintenance(name="Ensaymada", category="Bread")
    db_session.add(menu)
    db_session.flush()
    db_session.add_all([
        # 0.008 sack = 0.2 kg
        RecipeLine(menu_maintenance_id=menu.id, raw_material_id=flour.id,
                   quantity=Decimal("0.008"), unit="sack"),
        RecipeLine(menu_maintenance_id=menu.id, raw_material_id=sugar.id,
                   quantity=Decimal("0.1"), unit="kg"),
    ])
    db_session.commit()
    return menu


def _available(db_session, material):
    db_session.expire_all()
    record = (
        db_session.query(StockRecord)
        .filter(StockRecord.raw_material_id == material.id)
        .first()
    )
    return record.available if record else None


# ============== Flour scenario ==============

class TestFlourScenario:

    def test_insufficient_then_restocked(self, db_session, flour, pandesal, set_stock):
        set_stock(flour, 3)
        service = StockDeductionService(db_session)

        with pytest.raises(InsufficientStockError) as exc:
            service.deduct(pandesal.id, 10, operation_key="production:1", ref_id=1)
        shortage = exc.value.shortages[0]
        assert shortage["needed"] == Decimal("5")
        assert shortage["available"] == Decimal("3")
        assert shortage["reason"] == "insufficient"
        db_session.rollback()
        assert _available(db_session, flour) == Decimal("3")
        assert db_session.query(StockMovement).count() == 0

        set_stock(flour, 10)
        receipts = service.deduct(pandesal.id, 10, operation_key="production:2", ref_id=2)
        db_session.commit()
        assert receipts == [{
            "raw_material_id": flour.id,
            "material_name": "Flour",
            "deducted": 5.0,
            "unit": "kg",
            "remaining_available": 5.0,
        }]
        assert _available(db_session, flour) == Decimal("5")

    def test_deduction_leaves_quantity_alone(self, db_session, flour, pandesal, set_stock):
        set_stock(flour, 10)
        StockDeductionService(db_session).deduct(pandesal.id, 4, operation_key="production:1")
        db_session.commit()
        db_session.expire_all()
        record = db_session.query(StockRecord).one()
        assert record.available == Decimal("8")
        assert record.quantity == Decimal("10")


# ============== Atomicity ==============

class TestAllOrNothing:

    def test_one_short_line_blocks_every_line(self, db_session, flour, sugar, ensaymada, set_stock):
        set_stock(flour, 100)
        set_stock(sugar, Decimal("0.5"))

        with pytest.raises(InsufficientStockError) as exc:
            StockDeductionService(db_session).deduct(ensaymada.id, 10, operation_key="production:7")
        db_session.rollback()

        assert [s["material_name"] for s in exc.value.shortages] == ["Sugar"]
        assert _available(db_session, flour) == Decimal("100")
        assert _available(db_session, sugar) == Decimal("0.5")
        assert db_session.query(StockMovement).count() == 0

    def test_missing_stock_record_is_reported(self, db_session, flour, sugar, ensaymada, set_stock):
        set_stock(flour, 100)
        with pytest.raises(InsufficientStockError) as exc:
            StockDeductionService(db_session).deduct(ensaymada.id, 1, operation_key="production:8")
        db_session.rollback()
        assert exc.value.shortages[0]["reason"] == "not_found"
        assert _available(db_session, flour) == Decimal("100")

    def test_all_failures_listed_together(self, db_session, flour, sugar, ensaymada, set_stock):
        set_stock(flour, 1)
        set_stock(sugar, Decimal("0.1"))
        with pytest.raises(InsufficientStockError) as exc:
            StockDeductionService(db_session).deduct(ensaymada.id, 10, operation_key="production:9")
        assert {s["material_name"] for s in exc.value.shortages} == {"Flour", "Sugar"}

    def test_conservation_across_lines(self, db_session, flour, sugar, ensaymada, set_stock):
        set_stock(flour, 10)
        set_stock(sugar, 10)
        receipts = StockDeductionService(db_session).deduct(
            ensaymada.id, 10, operation_key="production:10", ref_id=10, created_by=1
        )
        db_session.commit()

        by_name = {r["material_name"]: r for r in receipts}
        assert by_name["Flour"]["deducted"] == 2.0
        assert by_name["Sugar"]["deducted"] == 1.0
        assert _available(db_session, flour) == Decimal("8")
        assert _available(db_session, sugar) == Decimal("9")

        movements = db_session.query(StockMovement).all()
        assert len(movements) == 2
        assert {m.operation_key for m in movements} == {"production:10"}
        assert all(m.reason == MovementReason.PRODUCTION.value for m in movements)
        assert sum(m.qty_delta for m in movements) == Decimal("-3")

    def test_unresolvable_unit_writes_nothing(self, db_session, flour, set_stock):
        set_stock(flour, 10)
        menu = MenuMaintenance(name="Cake", category="Pastry")
        db_session.add(menu)
        db_session.flush()
        db_session.add(RecipeLine(menu_maintenance_id=menu.id, raw_material_id=flour.id,
                                  quantity=Decimal("2"), unit="cup"))
        db_session.commit()

        with pytest.raises(UnresolvedUnitError):
            StockDeductionService(db_session).deduct(menu.id, 1, operation_key="production:11")
        db_session.rollback()
        assert _available(db_session, flour) == Decimal("10")

    def test_empty_recipe(self, db_session):
        menu = MenuMaintenance(name="Water", category="Drinks")
        db_session.add(menu)
        db_session.commit()
        with pytest.raises(NoRecipeDefinedError):
            StockDeductionService(db_session).deduct(menu.id, 1, operation_key="production:12")


# ============== Replay ==============

class TestReplay:

    def test_same_operation_key_is_refused(self, db_session, flour, pandesal, set_stock):
        set_stock(flour, 10)
        service = StockDeductionService(db_session)
        service.deduct(pandesal.id, 2, operation_key="production:3")
        db_session.commit()

        with pytest.raises(InvalidApprovalStateError):
            service.deduct(pandesal.id, 2, operation_key="production:3")
        assert _available(db_session, flour) == Decimal("9")
        assert service.already_deducted("production:3")
        assert not service.already_deducted("production:4")


class TestPreview:

    def test_preview_writes_nothing(self, db_session, flour, pandesal, set_stock):
        set_stock(flour, 3)
        preview = StockDeductionService(db_session).preview(pandesal.id, 10)
        assert preview["sufficient"] is False
        assert preview["lines"][0]["needed"] == 5.0
        assert preview["lines"][0]["available"] == 3.0
        assert _available(db_session, flour) == Decimal("3")


# ============== Ledger ==============

class TestStockLedger:

    def test_status_thresholds(self, db_session, flour, sugar, set_stock):
        set_stock(flour, 4)   # critical level 5
        set_stock(sugar, 0)
        service = StockLedgerService(db_session)
        statuses = {row["name"]: row["status"] for row in service.list_stock()}
        assert statuses == {"Flour": "low_stock", "Sugar": "out_of_stock"}
        assert [r["name"] for r in service.list_stock(status="out_of_stock")] == ["Sugar"]

    def test_get_stock_lists_equivalents(self, db_session, flour, set_stock):
        record = set_stock(flour, 50)
        data = StockLedgerService(db_session).get_stock(record.id)
        sack = next(e for e in data["equivalents"] if e["unit"] == "sack")
        assert sack["quantity"] == 2.0
        assert data["status"] == "in_stock"

    def test_missing_material_stock(self, db_session, sugar):
        with pytest.raises(NotFoundInInventoryError):
            StockLedgerService(db_session).get_stock_for_material(sugar.id)

    def test_add_stock_creates_record(self, db_session, sugar):
        service = StockLedgerService(db_session)
        record = service.add_stock(sugar, Decimal("12.5"), operation_key="purchase_order:1",
                                   ref_type="purchase_order", ref_id=1)
        db_session.commit()
        assert record.available == Decimal("12.5")
        assert record.quantity == Decimal("12.5")
        movement = db_session.query(StockMovement).one()
        assert movement.reason == MovementReason.PURCHASE.value

    def test_negative_adjustment_cannot_go_below_zero(self, db_session, flour, set_stock):
        set_stock(flour, 2)
        service = StockLedgerService(db_session)
        with pytest.raises(ValidationFailedError):
            service.adjust_stock(flour.id, Decimal("-3"))
        assert _available(db_session, flour) == Decimal("2")

        record = service.adjust_stock(flour.id, Decimal("-1.5"), notes="spoilage", created_by=1)
        assert record.available == Decimal("0.5")
        assert record.quantity == Decimal("0.5")

    def test_zero_adjustment_rejected(self, db_session, flour, set_stock):
        set_stock(flour, 2)
        with pytest.raises(ValidationFailedError):
            StockLedgerService(db_session).adjust_stock(flour.id, 0)


class TestStockAPI:

    def test_requires_authentication(self, client):
        assert client.get("/api/v1/stock/").status_code == 401

    def test_staff_cannot_adjust(self, client, flour, staff_headers):
        resp = client.post(
            "/api/v1/stock/adjust",
            json={"raw_material_id": flour.id, "qty_delta": "5"},
            headers=staff_headers,
        )
        assert resp.status_code == 403

    def test_admin_adjusts_and_lists(self, client, flour, admin_headers):
        resp = client.post(
            "/api/v1/stock/adjust",
            json={"raw_material_id": flour.id, "qty_delta": "25", "notes": "opening count"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["available"] == 25.0

        listing = client.get("/api/v1/stock/", headers=admin_headers).json()
        assert listing["total"] == 1
        assert listing["items"][0]["status"] == "in_stock"

    def test_preview_endpoint(self, client, flour, pandesal, set_stock, staff_headers):
        set_stock(flour, 3)
        resp = client.post(
            "/api/v1/stock/preview-deduction",
            json={"menu_maintenance_id": pandesal.id, "quantity": 10},
            headers=staff_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["sufficient"] is False


# ============== Concurrent writers ==============

class TestLostUpdateGuard:

    def test_stock_taken_after_the_check_rolls_back_every_line(
        self, db_session, flour, sugar, ensaymada, set_stock, monkeypatch
    ):
        set_stock(flour, 10)
        set_stock(sugar, Decimal("0.5"))
        plan = StockDeductionService._plan

        def stale_plan(self, menu, produced_quantity, lock):
            # Every line looks covered, as if read before another writer took stock
            entries = plan(self, menu, produced_quantity, lock)
            for entry in entries:
                entry["available"] = entry["needed"]
            return entries

        monkeypatch.setattr(StockDeductionService, "_plan", stale_plan)
        with pytest.raises(InsufficientStockError) as exc:
            StockDeductionService(db_session).deduct(ensaymada.id, 10, operation_key="production:20")

        shortage = exc.value.shortages[0]
        assert shortage["material_name"] == "Sugar"
        assert shortage["needed"] == Decimal("1")
        assert shortage["available"] == Decimal("0.5")
        # Flour was updated first and must come back with the savepoint
        assert _available(db_session, flour) == Decimal("10")
        assert _available(db_session, sugar) == Decimal("0.5")
        assert db_session.query(StockMovement).count() == 0
