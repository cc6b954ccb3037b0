"""Tests for purchase orders and goods receiving."""

import pytest
from datetime import date
from decimal import Decimal

from backoffice.models.purchase_order import PurchaseOrder
from backoffice.models.stock import MovementReason, StockMovement, StockRecord
from backoffice.services.errors import (
    EntityNotFoundError,
    InvalidTransitionError,
    ValidationFailedError,
)
from backoffice.services.receiving_service import ReceivingService
from backoffice.services.unit_conversion_service import UnitConversionService


ORDER_DAY = date(2026, 3, 14)


@pytest.fixture
def sack(db_session, flour):
    return UnitConversionService(db_session).find_conversion(flour.id, "sack")


@pytest.fixture
def po(db_session, admin, supplier, flour, sugar, sack):
    """2 sacks of flour plus 10 kg of sugar at catalogue prices."""
    return ReceivingService(db_session).create(
        {
            "supplier_id": supplier.id,
            "order_date": ORDER_DAY,
            "items": [
                {"raw_material_id": flour.id, "unit_conversion_id": sack.id, "quantity": 2},
                {"raw_material_id": sugar.id, "quantity": 10},
            ],
        },
        admin,
    )


def _available(db_session, material):
    db_session.expire_all()
    record = (
        db_session.query(StockRecord)
        .filter(StockRecord.raw_material_id == material.id)
        .first()
    )
    return record.available if record else None


def _receipts(po, *quantities):
    return [
        {"line_id": line.id, "received_quantity": qty}
        for line, qty in zip(po.lines, quantities)
    ]


# ============== Purchase orders ==============

class TestPurchaseOrders:

    def test_create_prices_lines_from_catalogue(self, po):
        sack_line, sugar_line = po.lines
        assert po.po_number == "PO-20260314-0001"
        assert po.status == "Pending"
        assert sack_line.unit == "sack"
        assert sack_line.unit_price == Decimal("1000")
        assert sugar_line.unit == "kg"
        assert sugar_line.total_price == Decimal("800")
        assert po.total_amount == Decimal("2800")

    def test_po_numbers_count_per_day(self, db_session, po):
        service = ReceivingService(db_session)
        assert service.next_po_number(ORDER_DAY) == "PO-20260314-0002"
        assert service.next_po_number(date(2026, 3, 15)) == "PO-20260315-0001"

    def test_unknown_supplier(self, db_session, admin, flour):
        with pytest.raises(EntityNotFoundError):
            ReceivingService(db_session).create(
                {"supplier_id": 404, "items": [{"raw_material_id": flour.id, "quantity": 1}]}, admin
            )

    def test_conversion_must_belong_to_material(self, db_session, admin, supplier, sugar, sack):
        with pytest.raises(ValidationFailedError):
            ReceivingService(db_session).create(
                {
                    "supplier_id": supplier.id,
                    "items": [{"raw_material_id": sugar.id, "unit_conversion_id": sack.id, "quantity": 1}],
                },
                admin,
            )

    def test_edit_replaces_lines(self, db_session, admin, po, sugar):
        edited = ReceivingService(db_session).update(
            po.id,
            {"items": [{"raw_material_id": sugar.id, "quantity": 5, "unit_price": Decimal("75")}]},
            admin,
        )
        assert len(edited.lines) == 1
        assert edited.total_amount == Decimal("375")

    def test_only_pending_orders_are_editable(self, db_session, admin, po):
        service = ReceivingService(db_session)
        service.set_status(po.id, "Approved", admin)
        with pytest.raises(InvalidTransitionError):
            service.update(po.id, {"notes": "late"}, admin)
        with pytest.raises(InvalidTransitionError):
            service.delete(po.id, admin)

    def test_delivered_is_reached_only_by_receiving(self, db_session, admin, po):
        with pytest.raises(InvalidTransitionError):
            ReceivingService(db_session).set_status(po.id, "Delivered", admin)

    def test_status_moves(self, db_session, admin, po):
        service = ReceivingService(db_session)
        approved = service.set_status(po.id, "Approved", admin)
        assert approved.approved_by == admin.id
        assert approved.approved_at is not None
        with pytest.raises(InvalidTransitionError):
            service.set_status(po.id, "Rejected", admin)
        assert service.set_status(po.id, "Cancelled", admin).status == "Cancelled"

    def test_delete_pending(self, db_session, admin, po):
        ReceivingService(db_session).delete(po.id, admin)
        assert db_session.query(PurchaseOrder).count() == 0


# ============== Receiving ==============

class TestReceiving:

    def test_sacks_arrive_as_kilograms(self, db_session, admin, po, flour, sugar):
        result = ReceivingService(db_session).receive(
            po.id, _receipts(po, 2, 10), ORDER_DAY, admin
        )

        flour_entry = result["items_received"][0]
        assert flour_entry["received_quantity"] == 2.0
        assert flour_entry["unit"] == "sack"
        assert flour_entry["base_quantity"] == 50.0
        assert flour_entry["base_unit"] == "kg"
        assert flour_entry["base_unit_price"] == 40.0
        assert result["status"] == "Delivered"
        assert result["total_amount"] == 2800.0

        assert _available(db_session, flour) == Decimal("50")
        assert _available(db_session, sugar) == Decimal("10")
        movements = db_session.query(StockMovement).all()
        assert {m.operation_key for m in movements} == {f"purchase_order:{po.id}"}
        assert all(m.reason == MovementReason.PURCHASE.value for m in movements)

    def test_receiving_uses_the_ratio_from_ordering_time(self, db_session, admin, po, flour, sack):
        assert po.lines[0].conversion_quantity == Decimal("0.04")
        UnitConversionService(db_session).delete_conversion(sack.id)

        result = ReceivingService(db_session).receive(po.id, _receipts(po, 2, 0), ORDER_DAY, admin)
        assert result["items_received"][0]["unit"] == "sack"
        assert result["items_received"][0]["base_quantity"] == 50.0
        assert _available(db_session, flour) == Decimal("50")

    def test_later_conversion_edit_does_not_change_open_orders(self, db_session, admin, po, flour, sack):
        UnitConversionService(db_session).update_conversion(sack.id, {"quantity": Decimal("0.02")})
        ReceivingService(db_session).receive(po.id, _receipts(po, 2, 0), ORDER_DAY, admin)
        assert _available(db_session, flour) == Decimal("50")

    def test_non_terminating_ratio_receives_exactly(self, db_session, admin, supplier, sugar):
        # 1 sack = 30 kg
        sack = UnitConversionService(db_session).create_conversion({
            "raw_material_id": sugar.id,
            "base_unit": "kg",
            "equivalent_unit": "sack",
            "quantity": Decimal(1) / Decimal(30),
            "unit_price": Decimal("2400"),
        })
        service = ReceivingService(db_session)
        order = service.create(
            {
                "supplier_id": supplier.id,
                "order_date": ORDER_DAY,
                "items": [{"raw_material_id": sugar.id, "unit_conversion_id": sack.id, "quantity": 3}],
            },
            admin,
        )
        result = service.receive(order.id, _receipts(order, 3), ORDER_DAY, admin)
        assert result["items_received"][0]["base_quantity"] == 90.0
        assert result["items_received"][0]["base_unit_price"] == 80.0
        assert _available(db_session, sugar) == Decimal("90")

    def test_receipt_adds_to_existing_stock(self, db_session, admin, po, flour, set_stock):
        set_stock(flour, 5)
        ReceivingService(db_session).receive(po.id, _receipts(po, 1, 0), ORDER_DAY, admin)
        db_session.expire_all()
        record = db_session.query(StockRecord).filter(StockRecord.raw_material_id == flour.id).one()
        assert record.available == Decimal("30")
        assert record.quantity == Decimal("30")

    def test_partial_receipt_recomputes_totals(self, db_session, admin, po, sugar):
        result = ReceivingService(db_session).receive(
            po.id, _receipts(po, 1, 4), ORDER_DAY, admin, notes="short two sacks"
        )
        assert result["total_amount"] == 1320.0
        db_session.expire_all()
        received = db_session.get(PurchaseOrder, po.id)
        assert received.status == "Delivered"
        assert received.date_received == ORDER_DAY
        assert received.received_by == admin.id
        assert received.lines[0].base_quantity_received == Decimal("25")
        assert "short two sacks" in received.notes

    def test_nothing_received_adds_no_stock(self, db_session, admin, po, sugar):
        ReceivingService(db_session).receive(po.id, _receipts(po, 2, 0), ORDER_DAY, admin)
        assert _available(db_session, sugar) is None

    def test_every_line_needs_a_quantity(self, db_session, admin, po, flour):
        with pytest.raises(ValidationFailedError) as exc:
            ReceivingService(db_session).receive(po.id, _receipts(po, 2), ORDER_DAY, admin)
        assert exc.value.payload["missing_line_ids"] == [po.lines[1].id]
        assert _available(db_session, flour) is None

    def test_unknown_line_rejected(self, db_session, admin, po):
        receipts = _receipts(po, 2, 10) + [{"line_id": 999, "received_quantity": 1}]
        with pytest.raises(ValidationFailedError):
            ReceivingService(db_session).receive(po.id, receipts, ORDER_DAY, admin)

    def test_cannot_receive_twice(self, db_session, admin, po, flour):
        service = ReceivingService(db_session)
        service.receive(po.id, _receipts(po, 2, 10), ORDER_DAY, admin)
        with pytest.raises(InvalidTransitionError):
            service.receive(po.id, _receipts(po, 2, 10), ORDER_DAY, admin)
        assert _available(db_session, flour) == Decimal("50")

    def test_cancelled_order_cannot_be_received(self, db_session, admin, po):
        service = ReceivingService(db_session)
        service.set_status(po.id, "Cancelled", admin)
        with pytest.raises(InvalidTransitionError):
            service.receive(po.id, _receipts(po, 2, 10), ORDER_DAY, admin)

    def test_approved_order_can_be_received(self, db_session, admin, po, flour):
        service = ReceivingService(db_session)
        service.set_status(po.id, "Approved", admin)
        service.receive(po.id, _receipts(po, 1, 1), ORDER_DAY, admin)
        assert _available(db_session, flour) == Decimal("25")


# ============== API ==============

class TestPurchaseOrderAPI:

    def _payload(self, supplier, flour, sack):
        return {
            "supplier_id": supplier.id,
            "items": [{"raw_material_id": flour.id, "unit_conversion_id": sack.id, "quantity": "2"}],
        }

    def test_staff_cannot_create(self, client, supplier, flour, sack, staff_headers):
        resp = client.post(
            "/api/v1/purchase-orders/", json=self._payload(supplier, flour, sack), headers=staff_headers
        )
        assert resp.status_code == 403

    def test_create_and_receive(self, client, supplier, flour, sack, admin_headers):
        resp = client.post(
            "/api/v1/purchase-orders/", json=self._payload(supplier, flour, sack), headers=admin_headers
        )
        assert resp.status_code == 201
        po = resp.json()
        assert po["po_number"].startswith("PO-")
        assert float(po["total_amount"]) == 2000.0

        resp = client.post(
            f"/api/v1/purchase-orders/{po['id']}/receive",
            json={
                "items": [{"line_id": po["lines"][0]["id"], "received_quantity": "2"}],
                "date_received": "2026-03-16",
            },
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["items_received"][0]["available_after"] == 50.0

        stock = client.get("/api/v1/stock/", headers=admin_headers).json()
        assert stock["items"][0]["available"] == 50.0

    def test_receiving_delivered_order_conflicts(self, client, supplier, flour, sack, admin_headers):
        po = client.post(
            "/api/v1/purchase-orders/", json=self._payload(supplier, flour, sack), headers=admin_headers
        ).json()
        body = {
            "items": [{"line_id": po["lines"][0]["id"], "received_quantity": "1"}],
            "date_received": "2026-03-16",
        }
        client.post(f"/api/v1/purchase-orders/{po['id']}/receive", json=body, headers=admin_headers)
        resp = client.post(f"/api/v1/purchase-orders/{po['id']}/receive", json=body, headers=admin_headers)
        assert resp.status_code == 409
        assert resp.json()["code"] == "invalid_transition"

    def test_next_number(self, client, staff_headers):
        resp = client.get("/api/v1/purchase-orders/next-number", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json()["next_po_number"].endswith("-0001")
