# Overview: Pytest coverage for order creation and the order status lifecycle.

"""
Order Lifecycle Tests

Covers:
- Order creation: numbering, totals, stock reservation, first history row
- Status transitions: history trail, tracking number, delivered stamp
- Tenant isolation and role checks on transitions
- Ordering policy (free by default, strict when configured)
- Optimistic locking
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from fulfillment.extensions import db
from fulfillment.models import AuditLog, Order, OrderStatusHistory, StockItem, StockMovement
from fulfillment.services import order_service
from fulfillment.services.concurrency import commit_or_conflict
from fulfillment.validation import ConflictError, ForbiddenError, NotFoundError, ValidationError

from conftest import actor_for, order_payload


@pytest.fixture(scope='function')
def order_a(db_session, admin_a, product_a, product_a2, stock_a):
    """PENDING order for Merchant A: 2 Blue Mugs and 1 T-Shirt."""
    return order_service.create_order(
        actor_for(admin_a),
        order_payload((product_a.id, 2), (product_a2.id, 1)),
    )


def _history(order_id):
    return (
        db.session.query(OrderStatusHistory)
        .filter_by(order_id=order_id)
        .order_by(OrderStatusHistory.id)
        .all()
    )


class TestCreateOrder:
    """Order creation writes order, items, reservations, history and audit together."""

    def test_create_order_numbers_and_totals(self, db_session, merchant_a, order_a):
        assert order_a.order_number == f"ORD-{merchant_a.id:03d}-000001"
        assert order_a.status == "PENDING"
        assert order_a.order_value_cents == 2 * 250000 + 500000
        assert order_a.total_amount_cents == order_a.order_value_cents + 150000
        assert order_a.shipping_country == "Nigeria"
        assert order_a.payment_method == "COD"
        assert len(order_a.items) == 2

    def test_order_numbers_increment_per_merchant(self, db_session, admin_a, product_a, stock_a, order_a):
        second = order_service.create_order(actor_for(admin_a), order_payload((product_a.id, 1)))
        assert second.order_number.endswith("-000002")

    def test_create_order_writes_initial_history(self, db_session, order_a):
        history = _history(order_a.id)
        assert len(history) == 1
        assert history[0].status == "PENDING"
        assert history[0].notes == "Order created"

    def test_create_order_reserves_stock(self, db_session, order_a, stock_a):
        mug = db.session.get(StockItem, stock_a["mug_los"].id)
        tee = db.session.get(StockItem, stock_a["tee_los"].id)

        # Largest available row is used first; physical quantity unchanged
        assert mug.quantity == 50
        assert mug.available_quantity == 48
        assert mug.reserved_quantity == 2
        assert tee.available_quantity == 29
        assert tee.reserved_quantity == 1

        reservations = db.session.query(StockMovement).filter_by(
            reference_type="ORDER", reference_id=order_a.id
        ).all()
        assert {m.movement_type for m in reservations} == {"RESERVATION"}
        assert sorted(m.quantity for m in reservations) == [-2, -1]

    def test_create_order_splits_reservation_across_warehouses(self, db_session, admin_a, product_a, stock_a):
        order_service.create_order(actor_for(admin_a), order_payload((product_a.id, 60)))

        los = db.session.get(StockItem, stock_a["mug_los"].id)
        abv = db.session.get(StockItem, stock_a["mug_abv"].id)
        assert los.available_quantity == 0
        assert abv.available_quantity == 10
        assert los.reserved_quantity + abv.reserved_quantity == 60

    def test_create_order_audited(self, db_session, order_a):
        entry = db.session.query(AuditLog).filter_by(action="CREATE_ORDER", entity_id=order_a.id).one()
        assert entry.entity_type == "orders"
        assert entry.merchant_id == order_a.merchant_id

    def test_insufficient_stock_writes_nothing(self, db_session, admin_a, product_a, stock_a):
        with pytest.raises(ValidationError, match="Insufficient stock"):
            order_service.create_order(actor_for(admin_a), order_payload((product_a.id, 71)))

        assert db.session.query(Order).count() == 0
        assert db.session.query(StockMovement).count() == 0
        assert db.session.get(StockItem, stock_a["mug_los"].id).available_quantity == 50

    def test_foreign_product_rejected(self, db_session, admin_a, product_b):
        with pytest.raises(ValidationError, match="not found or inactive"):
            order_service.create_order(actor_for(admin_a), order_payload((product_b.id, 1)))

    def test_inactive_product_rejected(self, db_session, admin_a, product_a, stock_a):
        product_a.is_active = False
        db.session.commit()
        with pytest.raises(ValidationError):
            order_service.create_order(actor_for(admin_a), order_payload((product_a.id, 1)))

    def test_empty_items_rejected(self, db_session, admin_a):
        with pytest.raises(ValidationError):
            order_service.create_order(actor_for(admin_a), order_payload(items=[]))

    def test_warehouse_staff_cannot_create(self, db_session, warehouse_staff, product_a, stock_a):
        with pytest.raises(ForbiddenError):
            order_service.create_order(actor_for(warehouse_staff), order_payload((product_a.id, 1)))

    def test_platform_admin_must_name_merchant(self, db_session, platform_admin, merchant_a, product_a, stock_a):
        with pytest.raises(ValidationError, match="merchant_id"):
            order_service.create_order(actor_for(platform_admin), order_payload((product_a.id, 1)))

        order = order_service.create_order(
            actor_for(platform_admin),
            order_payload((product_a.id, 1), merchant_id=merchant_a.id),
        )
        assert order.merchant_id == merchant_a.id


class TestTransitionStatus:
    """transition_status writes status, one history row and one audit entry."""

    def test_ship_then_deliver(self, db_session, admin_a, order_a):
        """PENDING -> SHIPPED (TRK123) -> DELIVERED leaves three history rows."""
        actor = actor_for(admin_a)

        order_service.transition_status(order_a.id, actor, "SHIPPED", tracking_number="TRK123")
        order = db.session.get(Order, order_a.id)
        assert order.status == "SHIPPED"
        assert order.tracking_number == "TRK123"
        assert order.delivered_at is None

        order_service.transition_status(order_a.id, actor, "DELIVERED")
        order = db.session.get(Order, order_a.id)
        assert order.status == "DELIVERED"
        assert order.tracking_number == "TRK123"
        assert order.delivered_at is not None

        history = _history(order_a.id)
        assert [h.status for h in history] == ["PENDING", "SHIPPED", "DELIVERED"]
        assert history[1].notes == "Status updated to SHIPPED"
        assert history[2].notes == "Status updated to DELIVERED"
        assert all(h.updated_by_user_id == admin_a.id for h in history[1:])

    def test_every_call_appends_exactly_one_history_row(self, db_session, admin_a, order_a):
        actor = actor_for(admin_a)
        for expected, status in enumerate(["CONFIRMED", "PROCESSING", "PROCESSING", "PICKED"], start=2):
            order_service.transition_status(order_a.id, actor, status)
            assert len(_history(order_a.id)) == expected

    def test_custom_note_and_expected_delivery(self, db_session, admin_a, order_a):
        order_service.transition_status(
            order_a.id,
            actor_for(admin_a),
            "PACKED",
            notes="Packed in two boxes",
            expected_delivery="2030-05-02T12:00:00Z",
        )
        order = db.session.get(Order, order_a.id)
        assert _history(order_a.id)[-1].notes == "Packed in two boxes"
        assert order.expected_delivery.isoformat().startswith("2030-05-02T12:00:00")

    def test_aware_expected_delivery_stored_as_utc(self, db_session, admin_a, order_a):
        plus_one = timezone(timedelta(hours=1))
        order_service.transition_status(
            order_a.id, actor_for(admin_a), "SHIPPED", expected_delivery=datetime(2030, 1, 1, 12, 0, tzinfo=plus_one)
        )
        order = db.session.get(Order, order_a.id)
        assert order.expected_delivery == datetime(2030, 1, 1, 11, 0)

    def test_blank_tracking_number_keeps_existing(self, db_session, admin_a, order_a):
        actor = actor_for(admin_a)
        order_service.transition_status(order_a.id, actor, "SHIPPED", tracking_number="TRK123")
        order_service.transition_status(order_a.id, actor, "OUT_FOR_DELIVERY", tracking_number="  ")
        assert db.session.get(Order, order_a.id).tracking_number == "TRK123"

    def test_redelivery_keeps_first_delivered_at(self, db_session, admin_a, order_a):
        actor = actor_for(admin_a)
        order_service.transition_status(order_a.id, actor, "DELIVERED")
        first = db.session.get(Order, order_a.id).delivered_at

        order_service.transition_status(order_a.id, actor, "OUT_FOR_DELIVERY")
        order_service.transition_status(order_a.id, actor, "DELIVERED")

        order = db.session.get(Order, order_a.id)
        assert order.delivered_at == first
        assert len(_history(order_a.id)) == 4

    def test_transition_audited(self, db_session, admin_a, order_a):
        order_service.transition_status(order_a.id, actor_for(admin_a), "CONFIRMED")
        entry = db.session.query(AuditLog).filter_by(action="UPDATE_ORDER_STATUS", entity_id=order_a.id).one()
        assert entry.new_values["status"] == "CONFIRMED"
        assert entry.new_values["previous_status"] == "PENDING"
        assert entry.user_id == admin_a.id

    def test_unknown_status_rejected_without_writes(self, db_session, admin_a, order_a):
        with pytest.raises(ValidationError):
            order_service.transition_status(order_a.id, actor_for(admin_a), "LOST_IN_SPACE")

        assert db.session.get(Order, order_a.id).status == "PENDING"
        assert len(_history(order_a.id)) == 1

    def test_missing_order(self, db_session, admin_a):
        with pytest.raises(NotFoundError):
            order_service.transition_status(99999, actor_for(admin_a), "SHIPPED")

    def test_status_is_case_insensitive(self, db_session, admin_a, order_a):
        order_service.transition_status(order_a.id, actor_for(admin_a), "shipped")
        assert db.session.get(Order, order_a.id).status == "SHIPPED"


class TestTransitionAuthorization:
    """Only the owning merchant's users and platform admins may move an order."""

    def test_other_merchant_forbidden(self, db_session, admin_b, order_a):
        with pytest.raises(ForbiddenError):
            order_service.transition_status(order_a.id, actor_for(admin_b), "SHIPPED")

        assert db.session.get(Order, order_a.id).status == "PENDING"
        assert len(_history(order_a.id)) == 1

    def test_merchant_staff_allowed(self, db_session, staff_a, order_a):
        order_service.transition_status(order_a.id, actor_for(staff_a), "CONFIRMED")
        assert db.session.get(Order, order_a.id).status == "CONFIRMED"

    def test_platform_admin_allowed(self, db_session, platform_admin, order_a):
        order_service.transition_status(order_a.id, actor_for(platform_admin), "CANCELLED")
        assert db.session.get(Order, order_a.id).status == "CANCELLED"

    def test_warehouse_staff_without_merchant_forbidden(self, db_session, warehouse_staff, order_a):
        with pytest.raises(ForbiddenError):
            order_service.transition_status(order_a.id, actor_for(warehouse_staff), "PICKED")


class TestOrderingPolicy:
    """Free transitions by default; strict forward table behind a config flag."""

    def test_backward_move_allowed_by_default(self, db_session, admin_a, order_a):
        actor = actor_for(admin_a)
        order_service.transition_status(order_a.id, actor, "DELIVERED")
        order_service.transition_status(order_a.id, actor, "PENDING")
        assert db.session.get(Order, order_a.id).status == "PENDING"

    def test_strict_mode_rejects_backward_move(self, app, db_session, admin_a, order_a):
        app.config['ENFORCE_FORWARD_ORDER_TRANSITIONS'] = True
        actor = actor_for(admin_a)
        order_service.transition_status(order_a.id, actor, "PACKED")

        with pytest.raises(ValidationError, match="Cannot move order"):
            order_service.transition_status(order_a.id, actor, "PICKED")
        assert db.session.get(Order, order_a.id).status == "PACKED"

    def test_strict_mode_allows_skipping_and_cancel(self, app, db_session, admin_a, order_a):
        app.config['ENFORCE_FORWARD_ORDER_TRANSITIONS'] = True
        actor = actor_for(admin_a)
        order_service.transition_status(order_a.id, actor, "PROCESSING")
        order_service.transition_status(order_a.id, actor, "CANCELLED")
        assert db.session.get(Order, order_a.id).status == "CANCELLED"

    def test_strict_mode_freezes_terminal_orders(self, app, db_session, admin_a, order_a):
        app.config['ENFORCE_FORWARD_ORDER_TRANSITIONS'] = True
        actor = actor_for(admin_a)
        order_service.transition_status(order_a.id, actor, "CANCELLED")

        with pytest.raises(ValidationError):
            order_service.transition_status(order_a.id, actor, "PENDING")
        # Repeating the current status only adds a note
        order_service.transition_status(order_a.id, actor, "CANCELLED", notes="Customer confirmed")
        assert len(_history(order_a.id)) == 3

    def test_can_transition_table(self):
        strict = dict(enforce_forward=True)
        assert order_service.can_transition("PENDING", "PROCESSING", **strict)
        assert not order_service.can_transition("SHIPPED", "PACKED", **strict)
        assert order_service.can_transition("SHIPPED", "RETURNED", **strict)
        assert not order_service.can_transition("DELIVERED", "RETURNED", **strict)
        assert order_service.can_transition("DELIVERED", "PENDING", enforce_forward=False)

    def test_next_statuses(self, db_session, admin_a, order_a):
        order_service.transition_status(order_a.id, actor_for(admin_a), "SHIPPED")
        order = db.session.get(Order, order_a.id)
        assert order_service.next_statuses(order) == [
            "SHIPPED", "OUT_FOR_DELIVERY", "DELIVERED", "CANCELLED", "RETURNED",
        ]


class TestOptimisticLocking:
    """Stale writers get ConflictError instead of silently overwriting."""

    def test_stale_expected_version(self, db_session, admin_a, order_a):
        actor = actor_for(admin_a)
        version = db.session.get(Order, order_a.id).version_id
        order_service.transition_status(order_a.id, actor, "CONFIRMED", expected_version=version)

        with pytest.raises(ConflictError) as exc_info:
            order_service.transition_status(order_a.id, actor, "PROCESSING", expected_version=version)

        assert exc_info.value.details["current_version"] == version + 1
        assert db.session.get(Order, order_a.id).status == "CONFIRMED"

    def test_concurrent_write_detected_on_commit(self, db_session, order_a):
        order = db.session.get(Order, order_a.id)
        assert order.version_id == 1

        # Another request bumps the row behind this session's back
        db.session.execute(
            update(Order)
            .where(Order.id == order.id)
            .values(version_id=7)
            .execution_options(synchronize_session=False)
        )
        order.notes = "stale write"

        with pytest.raises(ConflictError):
            commit_or_conflict("Order")
