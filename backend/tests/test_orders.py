"""Tests for the servings counter, counter orders and online orders."""

import pytest
from decimal import Decimal

from backoffice.models.menu import MenuItem, ServingsMovement, ServingsReason
from backoffice.models.order import OnlineOrder, Order, OrderStatus
from backoffice.services.errors import (
    EntityNotFoundError,
    InsufficientServingsError,
    InvalidTransitionError,
    RoleNotAuthorizedError,
    ValidationFailedError,
)
from backoffice.services.menu_servings_service import MenuServingsService
from backoffice.services.order_fulfillment_service import OnlineOrderService, OrderFulfillmentService


def _servings(db_session, item):
    db_session.expire_all()
    return db_session.get(MenuItem, item.id).servings


def _order(*lines, **extra):
    data = {
        "customer_name": "Walk-in",
        "order_type": "dine_in",
        "items": [{"menu_item_id": item.id, "quantity": qty} for item, qty in lines],
    }
    data.update(extra)
    return data


def _online(*lines, **extra):
    data = {
        "customer_name": "Maria",
        "contact_number": "09171234567",
        "order_type": "delivery",
        "delivery_address": "12 Mabini St",
        "items": [{"menu_item_id": item.id, "quantity": qty} for item, qty in lines],
    }
    data.update(extra)
    return data


# ============== Servings counter ==============

class TestServingsCounter:

    def test_check_availability_sums_repeated_items(self, db_session, pandesal_item):
        result = MenuServingsService(db_session).check_availability(
            [(pandesal_item.id, 6), (pandesal_item.id, 5)]
        )
        assert result["all_available"] is False
        assert result["items"] == [{
            "menu_item_id": pandesal_item.id,
            "name": "Pandesal",
            "requested": 11,
            "available": 10,
            "sufficient": False,
        }]

    def test_unknown_item_is_not_available(self, db_session):
        result = MenuServingsService(db_session).check_availability([(404, 1)])
        assert result["all_available"] is False
        assert result["items"][0]["name"] is None

    def test_adjustment_cannot_go_negative(self, db_session, pandesal_item):
        service = MenuServingsService(db_session)
        with pytest.raises(InsufficientServingsError):
            service.adjust_servings(pandesal_item.id, -11)
        db_session.rollback()
        assert _servings(db_session, pandesal_item) == 10

        item = service.adjust_servings(pandesal_item.id, -10, notes="dropped tray", actor_id=1)
        assert item.servings == 0
        assert item.is_available is False
        assert item.stock_status() == "out_of_stock"

    def test_zero_adjustment_rejected(self, db_session, pandesal_item):
        with pytest.raises(ValidationFailedError):
            MenuServingsService(db_session).adjust_servings(pandesal_item.id, 0)

    def test_stock_status_thresholds(self, db_session, pandesal_item):
        assert pandesal_item.stock_status() == "in_stock"
        item = MenuServingsService(db_session).adjust_servings(pandesal_item.id, -5)
        # critical level defaults to 5
        assert item.stock_status() == "low_stock"

    def test_manual_disable_survives_restock(self, db_session, pandesal_item):
        service = MenuServingsService(db_session)
        item = service.toggle_availability(pandesal_item.id, actor_id=1)
        assert item.is_available is False
        assert item.manually_disabled is True

        item = service.adjust_servings(pandesal_item.id, 5)
        assert item.is_available is False
        assert item.has_sufficient_servings(15)

    def test_cannot_enable_empty_item(self, db_session, pandesal_item):
        service = MenuServingsService(db_session)
        service.adjust_servings(pandesal_item.id, -10)
        with pytest.raises(ValidationFailedError):
            service.toggle_availability(pandesal_item.id)

    def test_movements_are_recorded(self, db_session, pandesal_item):
        service = MenuServingsService(db_session)
        service.adjust_servings(pandesal_item.id, -2, notes="tasting")
        movements = service.list_movements(pandesal_item.id)
        assert [(m.delta, m.servings_after, m.reason) for m in movements] == [
            (-2, 8, ServingsReason.ADJUSTMENT.value)
        ]


# ============== Counter orders ==============

class TestCounterOrders:

    def test_place_takes_servings(self, db_session, pandesal_item, staff):
        order = OrderFulfillmentService(db_session).place(_order((pandesal_item, 3)), staff)

        assert order.servings_deducted is True
        assert order.status == OrderStatus.PENDING.value
        assert order.staff_id == staff.id
        assert order.subtotal == Decimal("75.00")
        assert order.total_amount == Decimal("75.00")
        assert _servings(db_session, pandesal_item) == 7

    def test_insufficient_servings_places_nothing(self, db_session, pandesal_item, staff):
        with pytest.raises(InsufficientServingsError) as exc:
            OrderFulfillmentService(db_session).place(_order((pandesal_item, 11)), staff)
        assert exc.value.items == [
            {"menu_item_id": pandesal_item.id, "name": "Pandesal", "requested": 11, "available": 10}
        ]
        assert db_session.query(Order).count() == 0
        assert _servings(db_session, pandesal_item) == 10

    def test_one_short_line_blocks_the_order(self, db_session, pandesal_item, ensaymada_item, staff):
        with pytest.raises(InsufficientServingsError) as exc:
            OrderFulfillmentService(db_session).place(
                _order((pandesal_item, 2), (ensaymada_item, 5)), staff
            )
        assert [i["name"] for i in exc.value.items] == ["Ensaymada"]
        assert _servings(db_session, pandesal_item) == 10
        assert _servings(db_session, ensaymada_item) == 3
        assert db_session.query(ServingsMovement).count() == 0

    def test_unknown_menu_item(self, db_session, staff):
        with pytest.raises(EntityNotFoundError):
            OrderFulfillmentService(db_session).place(
                {"customer_name": "x", "items": [{"menu_item_id": 404, "quantity": 1}]}, staff
            )

    def test_last_serving_marks_item_unavailable(self, db_session, ensaymada_item, staff):
        OrderFulfillmentService(db_session).place(_order((ensaymada_item, 3)), staff)
        db_session.expire_all()
        item = db_session.get(MenuItem, ensaymada_item.id)
        assert item.servings == 0
        assert item.is_available is False

    def test_senior_discount(self, db_session, pandesal_item, staff):
        service = OrderFulfillmentService(db_session)
        with pytest.raises(ValidationFailedError):
            service.place(_order((pandesal_item, 4), discount_type="senior"), staff)

        order = service.place(
            _order((pandesal_item, 4), discount_type="senior", discount_id_number="SC-0042"), staff
        )
        assert order.subtotal == Decimal("100.00")
        assert order.discount_amount == Decimal("20.00")
        assert order.total_amount == Decimal("80.00")

    def test_packaging_fee_only_for_pickup(self, db_session, pandesal_item, staff):
        service = OrderFulfillmentService(db_session)
        pickup = service.place(_order((pandesal_item, 1), order_type="pickup", packaging_boxes=2), staff)
        dine_in = service.place(_order((pandesal_item, 1), packaging_boxes=2), staff)
        assert pickup.packaging_fee == Decimal("20.00")
        assert pickup.total_amount == Decimal("45.00")
        assert dine_in.packaging_fee == Decimal("0")
        assert dine_in.packaging_boxes == 0

    def test_delivery_needs_address_and_phone(self, db_session, pandesal_item, staff):
        with pytest.raises(ValidationFailedError):
            OrderFulfillmentService(db_session).place(
                _order((pandesal_item, 1), order_type="delivery", contact_number="0917"), staff
            )
        assert _servings(db_session, pandesal_item) == 10

    def test_cancel_restores_once(self, db_session, pandesal_item, staff):
        service = OrderFulfillmentService(db_session)
        order = service.place(_order((pandesal_item, 4)), staff)

        service.update_status(order.id, "cancelled", staff)
        assert _servings(db_session, pandesal_item) == 10
        service.update_status(order.id, "cancelled", staff)
        assert _servings(db_session, pandesal_item) == 10

        with pytest.raises(InvalidTransitionError):
            service.update_status(order.id, "preparing", staff)

    def test_completed_order_cannot_be_cancelled(self, db_session, pandesal_item, staff):
        service = OrderFulfillmentService(db_session)
        order = service.place(_order((pandesal_item, 4)), staff)
        service.update_status(order.id, "completed", staff)
        with pytest.raises(InvalidTransitionError):
            service.update_status(order.id, "cancelled", staff)
        assert _servings(db_session, pandesal_item) == 6

    def test_delete_pending_order_restores(self, db_session, pandesal_item, staff):
        service = OrderFulfillmentService(db_session)
        order = service.place(_order((pandesal_item, 4)), staff)
        service.delete(order.id, staff)
        assert db_session.query(Order).count() == 0
        assert _servings(db_session, pandesal_item) == 10

    def test_delete_completed_order_keeps_servings_taken(self, db_session, pandesal_item, staff):
        service = OrderFulfillmentService(db_session)
        order = service.place(_order((pandesal_item, 4)), staff)
        service.update_status(order.id, "completed", staff)
        service.delete(order.id, staff)
        assert _servings(db_session, pandesal_item) == 6

    def test_delete_cancelled_order_does_not_restore_twice(self, db_session, pandesal_item, staff):
        service = OrderFulfillmentService(db_session)
        order = service.place(_order((pandesal_item, 4)), staff)
        service.update_status(order.id, "cancelled", staff)
        service.delete(order.id, staff)
        assert _servings(db_session, pandesal_item) == 10

    def test_staff_deletes_only_own_orders(self, db_session, pandesal_item, admin, staff):
        service = OrderFulfillmentService(db_session)
        order = service.place(_order((pandesal_item, 1)), admin)
        with pytest.raises(RoleNotAuthorizedError):
            service.delete(order.id, staff)

    def test_payment_is_admin_only(self, db_session, pandesal_item, admin, staff):
        service = OrderFulfillmentService(db_session)
        order = service.place(_order((pandesal_item, 1)), staff)
        with pytest.raises(RoleNotAuthorizedError):
            service.update_payment(order.id, "paid", staff)
        paid = service.update_payment(order.id, "paid", admin, payment_method="gcash")
        assert paid.payment_status == "paid"
        assert paid.payment_method == "gcash"


# ============== Online orders ==============

class TestOnlineOrders:

    def test_place_checks_but_does_not_take(self, db_session, pandesal_item):
        service = OnlineOrderService(db_session)
        order = service.place(_online((pandesal_item, 4)))
        assert order.servings_deducted is False
        assert order.total_amount == Decimal("100.00")
        assert _servings(db_session, pandesal_item) == 10

        with pytest.raises(InsufficientServingsError):
            service.place(_online((pandesal_item, 11)))

    def test_contact_number_required(self, db_session, pandesal_item):
        with pytest.raises(ValidationFailedError):
            OnlineOrderService(db_session).place(_online((pandesal_item, 1), contact_number="  "))

    def test_completed_takes_then_cancel_restores(self, db_session, pandesal_item, staff):
        service = OnlineOrderService(db_session)
        order = service.place(_online((pandesal_item, 4)))

        completed = service.update_status(order.id, "Completed", staff)
        assert completed.servings_deducted is True
        assert _servings(db_session, pandesal_item) == 6

        cancelled = service.update_status(order.id, "Cancelled", staff)
        assert cancelled.servings_deducted is False
        assert _servings(db_session, pandesal_item) == 10

        with pytest.raises(InvalidTransitionError):
            service.update_status(order.id, "Pending", staff)

    def test_completion_fails_when_servings_ran_out(self, db_session, pandesal_item, staff):
        service = OnlineOrderService(db_session)
        order = service.place(_online((pandesal_item, 4)))
        MenuServingsService(db_session).adjust_servings(pandesal_item.id, -8)

        with pytest.raises(InsufficientServingsError):
            service.update_status(order.id, "Completed", staff)
        db_session.expire_all()
        order = service.get(order.id)
        assert order.status == "Pending"
        assert order.servings_deducted is False
        assert _servings(db_session, pandesal_item) == 2

    def test_cancel_before_completion_changes_nothing(self, db_session, pandesal_item, staff):
        service = OnlineOrderService(db_session)
        order = service.place(_online((pandesal_item, 4)))
        service.update_status(order.id, "Cancelled", staff)
        assert _servings(db_session, pandesal_item) == 10

    def test_only_pending_orders_are_editable(self, db_session, pandesal_item, staff):
        service = OnlineOrderService(db_session)
        order = service.place(_online((pandesal_item, 1)))
        edited = service.update(order.id, {"items": [{"menu_item_id": pandesal_item.id, "quantity": 2}]}, staff)
        assert edited.total_amount == Decimal("50.00")

        service.update_status(order.id, "Ready", staff)
        with pytest.raises(InvalidTransitionError):
            service.update(order.id, {"notes": "extra hot"}, staff)

    def test_delete_does_not_touch_untaken_servings(self, db_session, pandesal_item, staff):
        service = OnlineOrderService(db_session)
        order = service.place(_online((pandesal_item, 4)))
        service.delete(order.id, staff)
        assert db_session.query(OnlineOrder).count() == 0
        assert _servings(db_session, pandesal_item) == 10

    def test_delete_completed_keeps_servings_taken(self, db_session, pandesal_item, staff):
        service = OnlineOrderService(db_session)
        order = service.place(_online((pandesal_item, 4)))
        service.update_status(order.id, "Completed", staff)
        service.delete(order.id, staff)
        assert _servings(db_session, pandesal_item) == 6


# ============== API ==============

class TestOrderAPI:

    def test_place_and_cancel(self, client, pandesal_item, staff_headers):
        resp = client.post(
            "/api/v1/orders/",
            json={"customer_name": "Walk-in", "items": [{"menu_item_id": pandesal_item.id, "quantity": 3}]},
            headers=staff_headers,
        )
        assert resp.status_code == 201
        order = resp.json()
        assert float(order["total_amount"]) == 75.0

        item = client.get(f"/api/v1/menu-items/{pandesal_item.id}", headers=staff_headers).json()
        assert item["servings"] == 7
        assert item["status"] == "in_stock"

        resp = client.put(
            f"/api/v1/orders/{order['id']}/status", json={"status": "cancelled"}, headers=staff_headers
        )
        assert resp.status_code == 200
        item = client.get(f"/api/v1/menu-items/{pandesal_item.id}", headers=staff_headers).json()
        assert item["servings"] == 10

    def test_insufficient_servings_payload(self, client, pandesal_item, staff_headers):
        resp = client.post(
            "/api/v1/orders/",
            json={"customer_name": "Walk-in", "items": [{"menu_item_id": pandesal_item.id, "quantity": 12}]},
            headers=staff_headers,
        )
        assert resp.status_code == 409
        body = resp.json()
        assert body["code"] == "insufficient_servings"
        assert body["items"][0]["available"] == 10

    def test_check_availability_endpoint(self, client, pandesal_item, staff_headers):
        resp = client.post(
            "/api/v1/menu-items/check-availability",
            json={"items": [{"menu_item_id": pandesal_item.id, "quantity": 2}]},
            headers=staff_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["all_available"] is True

    def test_payment_requires_admin(self, client, pandesal_item, staff_headers):
        order = client.post(
            "/api/v1/orders/",
            json={"customer_name": "Walk-in", "items": [{"menu_item_id": pandesal_item.id, "quantity": 1}]},
            headers=staff_headers,
        ).json()
        resp = client.put(
            f"/api/v1/orders/{order['id']}/payment", json={"payment_status": "paid"}, headers=staff_headers
        )
        assert resp.status_code == 403

    def test_online_completion_over_http(self, client, pandesal_item, staff_headers):
        order = client.post(
            "/api/v1/online-orders/",
            json={
                "customer_name": "Maria",
                "contact_number": "09171234567",
                "order_type": "pickup",
                "items": [{"menu_item_id": pandesal_item.id, "quantity": 4}],
            },
            headers=staff_headers,
        ).json()
        resp = client.put(
            f"/api/v1/online-orders/{order['id']}/status", json={"status": "Completed"}, headers=staff_headers
        )
        assert resp.status_code == 200
        assert resp.json()["servings_deducted"] is True
        item = client.get(f"/api/v1/menu-items/{pandesal_item.id}", headers=staff_headers).json()
        assert item["servings"] == 6


# ============== Concurrent writers ==============

class TestServingsLostUpdateGuard:

    def test_servings_taken_after_the_check_roll_back_the_order(
        self, db_session, pandesal_item, ensaymada_item, staff, monkeypatch
    ):
        # The availability check passes on a stale read
        monkeypatch.setattr(MenuServingsService, "ensure_available", lambda self, lines: None)

        with pytest.raises(InsufficientServingsError) as exc:
            OrderFulfillmentService(db_session).place(
                _order((pandesal_item, 2), (ensaymada_item, 5)), staff
            )

        assert exc.value.items == [{
            "menu_item_id": ensaymada_item.id,
            "name": "Ensaymada",
            "requested": 5,
            "available": 3,
        }]
        assert _servings(db_session, pandesal_item) == 10
        assert _servings(db_session, ensaymada_item) == 3
        assert db_session.query(ServingsMovement).count() == 0
        assert db_session.query(Order).count() == 0
