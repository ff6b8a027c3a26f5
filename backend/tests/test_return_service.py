# Overview: Pytest coverage for returns and the restock fan-out.

"""
Return Processing Tests

Covers:
- Return creation: numbering, quantity bounds, item ownership
- Status table: INITIATED -> APPROVED/REJECTED -> REFUNDED/RESTOCKED
- Restock fan-out: one STOCK_IN movement per stock row, at most once
- Atomicity: a failing restock leaves status and stock untouched
- Deletion rules and role checks
"""

import pytest

from fulfillment.extensions import db
from fulfillment.models import AuditLog, Order, Return, ReturnItem, StockItem, StockMovement
from fulfillment.services import order_service, return_service
from fulfillment.validation import ConflictError, ForbiddenError, NotFoundError, ValidationError

from conftest import actor_for, order_payload


@pytest.fixture(scope='function')
def order_a(db_session, admin_a, product_a, product_a2, stock_a):
    """Delivered order for Merchant A: 2 Blue Mugs and 1 T-Shirt."""
    actor = actor_for(admin_a)
    order = order_service.create_order(actor, order_payload((product_a.id, 2), (product_a2.id, 1)))
    order_service.transition_status(order.id, actor, "DELIVERED")
    return order


@pytest.fixture(scope='function')
def mug_line(order_a, product_a):
    return next(item for item in order_a.items if item.product_id == product_a.id)


@pytest.fixture(scope='function')
def tee_line(order_a, product_a2):
    return next(item for item in order_a.items if item.product_id == product_a2.id)


@pytest.fixture(scope='function')
def return_a(db_session, admin_a, order_a, mug_line):
    """Restockable return of 1 Blue Mug."""
    return return_service.create_return(
        order_a.id,
        actor_for(admin_a),
        "DAMAGED",
        [{"order_item_id": mug_line.id, "quantity": 1, "condition": "DAMAGED"}],
        refund_amount_cents=250000,
        restockable=True,
    )


def _stock(stock_a, key):
    return db.session.get(StockItem, stock_a[key].id)


def _return_movements(return_id):
    return (
        db.session.query(StockMovement)
        .filter_by(reference_type="RETURN", reference_id=return_id)
        .order_by(StockMovement.id)
        .all()
    )


class TestCreateReturn:

    def test_create_return(self, db_session, merchant_a, admin_a, return_a, mug_line):
        assert return_a.return_number == f"RET-{merchant_a.id:03d}-000001"
        assert return_a.status == "INITIATED"
        assert return_a.reason == "DAMAGED"
        assert return_a.restockable is True
        assert return_a.created_by_user_id == admin_a.id
        assert len(return_a.items) == 1
        assert return_a.items[0].order_item_id == mug_line.id
        assert return_a.items[0].condition == "DAMAGED"

        entry = db.session.query(AuditLog).filter_by(action="CREATE_RETURN", entity_id=return_a.id).one()
        assert entry.entity_type == "returns"

    def test_quantity_above_ordered_rejected(self, db_session, admin_a, order_a, mug_line):
        with pytest.raises(ValidationError, match=f"order item {mug_line.id}"):
            return_service.create_return(
                order_a.id,
                actor_for(admin_a),
                "DAMAGED",
                [{"order_item_id": mug_line.id, "quantity": 3}],
            )
        assert db.session.query(Return).count() == 0
        assert db.session.query(ReturnItem).count() == 0

    def test_order_row_locked_while_creating(self, db_session, admin_a, order_a, mug_line, monkeypatch):
        locked = []
        real_lock = return_service.lock_for_update

        def recording_lock(query):
            locked.append(query.column_descriptions[0]["entity"])
            return real_lock(query)

        monkeypatch.setattr(return_service, "lock_for_update", recording_lock)
        return_service.create_return(
            order_a.id, actor_for(admin_a), "DAMAGED", [{"order_item_id": mug_line.id, "quantity": 1}]
        )
        assert Order in locked

    def test_zero_quantity_rejected(self, db_session, admin_a, order_a, mug_line):
        with pytest.raises(ValidationError):
            return_service.create_return(
                order_a.id, actor_for(admin_a), "OTHER", [{"order_item_id": mug_line.id, "quantity": 0}]
            )

    def test_quantity_bound_spans_returns(self, db_session, admin_a, order_a, mug_line, return_a):
        actor = actor_for(admin_a)
        # 1 of 2 already on return_a
        with pytest.raises(ValidationError, match="still returnable 1"):
            return_service.create_return(
                order_a.id, actor, "OTHER", [{"order_item_id": mug_line.id, "quantity": 2}]
            )

        second = return_service.create_return(
            order_a.id, actor, "OTHER", [{"order_item_id": mug_line.id, "quantity": 1}]
        )
        assert second.return_number.endswith("-000002")

    def test_rejected_return_frees_quantity(self, db_session, admin_a, order_a, mug_line, return_a):
        actor = actor_for(admin_a)
        return_service.update_return_status(return_a.id, actor, "REJECTED")

        again = return_service.create_return(
            order_a.id, actor, "WRONG_ITEM", [{"order_item_id": mug_line.id, "quantity": 2}]
        )
        assert again.items[0].quantity == 2

    def test_duplicate_lines_are_summed(self, db_session, admin_a, order_a, mug_line):
        with pytest.raises(ValidationError):
            return_service.create_return(
                order_a.id,
                actor_for(admin_a),
                "OTHER",
                [
                    {"order_item_id": mug_line.id, "quantity": 2},
                    {"order_item_id": mug_line.id, "quantity": 1},
                ],
            )

    def test_item_from_other_order_rejected(self, db_session, admin_a, product_a, order_a):
        other = order_service.create_order(actor_for(admin_a), order_payload((product_a.id, 1)))
        with pytest.raises(ValidationError, match="does not belong"):
            return_service.create_return(
                order_a.id,
                actor_for(admin_a),
                "OTHER",
                [{"order_item_id": other.items[0].id, "quantity": 1}],
            )

    def test_invalid_reason_and_condition(self, db_session, admin_a, order_a, mug_line):
        actor = actor_for(admin_a)
        with pytest.raises(ValidationError, match="reason"):
            return_service.create_return(order_a.id, actor, "CHANGED_MIND", [{"order_item_id": mug_line.id, "quantity": 1}])
        with pytest.raises(ValidationError, match="condition"):
            return_service.create_return(
                order_a.id, actor, "OTHER",
                [{"order_item_id": mug_line.id, "quantity": 1, "condition": "SHINY"}],
            )

    def test_no_items_rejected(self, db_session, admin_a, order_a):
        with pytest.raises(ValidationError, match="at least one item"):
            return_service.create_return(order_a.id, actor_for(admin_a), "OTHER", [])

    def test_missing_order(self, db_session, admin_a):
        with pytest.raises(NotFoundError):
            return_service.create_return(99999, actor_for(admin_a), "OTHER", [{"order_item_id": 1, "quantity": 1}])

    def test_other_merchant_forbidden(self, db_session, admin_b, order_a, mug_line):
        with pytest.raises(ForbiddenError):
            return_service.create_return(
                order_a.id, actor_for(admin_b), "OTHER", [{"order_item_id": mug_line.id, "quantity": 1}]
            )

    def test_merchant_staff_may_create(self, db_session, staff_a, order_a, tee_line):
        return_doc = return_service.create_return(
            order_a.id, actor_for(staff_a), "QUALITY_ISSUE", [{"order_item_id": tee_line.id, "quantity": 1}]
        )
        assert return_doc.status == "INITIATED"


class TestReturnStatusTable:

    def test_approve_then_refund(self, db_session, admin_a, return_a):
        actor = actor_for(admin_a)
        return_service.update_return_status(return_a.id, actor, "APPROVED")
        return_doc = return_service.update_return_status(return_a.id, actor, "REFUNDED", refund_amount_cents=200000)

        assert return_doc.status == "REFUNDED"
        assert return_doc.refund_amount_cents == 200000
        assert return_doc.processed_by_user_id == admin_a.id
        assert return_doc.processed_at is not None
        assert _return_movements(return_a.id) == []

    def test_skip_approval_rejected(self, db_session, admin_a, return_a):
        with pytest.raises(ValidationError, match="Cannot move return"):
            return_service.update_return_status(return_a.id, actor_for(admin_a), "RESTOCKED")
        assert db.session.get(Return, return_a.id).status == "INITIATED"

    def test_terminal_returns_frozen(self, db_session, admin_a, return_a):
        actor = actor_for(admin_a)
        return_service.update_return_status(return_a.id, actor, "REJECTED")

        with pytest.raises(ValidationError, match="can no longer be changed"):
            return_service.update_return_status(return_a.id, actor, "APPROVED")
        with pytest.raises(ValidationError):
            return_service.update_return_status(return_a.id, actor, notes="late note")

    def test_pending_alias_means_initiated(self, db_session, admin_a, return_a):
        return_doc = return_service.update_return_status(
            return_a.id, actor_for(admin_a), "PENDING", notes="Waiting for courier"
        )
        assert return_doc.status == "INITIATED"
        assert return_doc.notes == "Waiting for courier"
        assert return_doc.processed_at is None

    def test_unknown_status(self, db_session, admin_a, return_a):
        with pytest.raises(ValidationError):
            return_service.update_return_status(return_a.id, actor_for(admin_a), "LOST")

    def test_missing_return(self, db_session, admin_a):
        with pytest.raises(NotFoundError):
            return_service.update_return_status(99999, actor_for(admin_a), "APPROVED")

    def test_update_audited(self, db_session, admin_a, return_a):
        return_service.update_return_status(return_a.id, actor_for(admin_a), "APPROVED")
        entry = db.session.query(AuditLog).filter_by(action="UPDATE_RETURN", entity_id=return_a.id).one()
        assert entry.new_values["status"] == "APPROVED"
        assert entry.new_values["previous_status"] == "INITIATED"

    def test_stale_version_conflict(self, db_session, admin_a, return_a):
        actor = actor_for(admin_a)
        version = db.session.get(Return, return_a.id).version_id
        return_service.update_return_status(return_a.id, actor, "APPROVED", expected_version=version)
        with pytest.raises(ConflictError):
            return_service.update_return_status(return_a.id, actor, "REFUNDED", expected_version=version)
        assert db.session.get(Return, return_a.id).status == "APPROVED"


class TestReturnAuthorization:

    def test_merchant_staff_cannot_update(self, db_session, staff_a, return_a):
        with pytest.raises(ForbiddenError):
            return_service.update_return_status(return_a.id, actor_for(staff_a), "APPROVED")

    def test_other_merchant_admin_cannot_update(self, db_session, admin_b, return_a):
        with pytest.raises(ForbiddenError):
            return_service.update_return_status(return_a.id, actor_for(admin_b), "APPROVED")
        assert db.session.get(Return, return_a.id).status == "INITIATED"

    def test_platform_admin_can_update(self, db_session, platform_admin, return_a):
        return_doc = return_service.update_return_status(return_a.id, actor_for(platform_admin), "APPROVED")
        assert return_doc.status == "APPROVED"

    def test_other_merchant_cannot_read(self, db_session, admin_b, return_a):
        with pytest.raises(ForbiddenError):
            return_service.get_return(return_a.id, actor_for(admin_b))

    def test_list_is_tenant_scoped(self, db_session, admin_a, admin_b, platform_admin, return_a):
        mine, total = return_service.list_returns(actor_for(admin_a))
        assert total == 1 and mine[0].id == return_a.id

        theirs, total = return_service.list_returns(actor_for(admin_b))
        assert total == 0 and theirs == []

        _, total = return_service.list_returns(actor_for(platform_admin), status="PENDING")
        assert total == 1


class TestRestock:

    def test_restock_returned_items_into_every_stock_row(self, db_session, admin_a, return_a, stock_a):
        actor = actor_for(admin_a)
        before = {key: (_stock(stock_a, key).quantity, _stock(stock_a, key).available_quantity) for key in stock_a}

        return_service.update_return_status(return_a.id, actor, "APPROVED")
        return_doc = return_service.update_return_status(return_a.id, actor, "RESTOCKED")

        assert return_doc.status == "RESTOCKED"
        assert return_doc.restocked_at is not None

        # Blue Mug has a row in both warehouses; each gets +1
        for key in ("mug_los", "mug_abv"):
            row = _stock(stock_a, key)
            assert row.quantity == before[key][0] + 1
            assert row.available_quantity == before[key][1] + 1
        tee = _stock(stock_a, "tee_los")
        assert (tee.quantity, tee.available_quantity) == before["tee_los"]

        movements = _return_movements(return_a.id)
        assert len(movements) == 2
        assert {m.stock_item_id for m in movements} == {stock_a["mug_los"].id, stock_a["mug_abv"].id}
        for m in movements:
            assert m.movement_type == "STOCK_IN"
            assert m.quantity == 1
            assert m.performed_by_user_id == admin_a.id
            assert m.notes == f"Restocked from return {return_doc.return_number}"

    def test_restock_whole_order_when_configured(self, app, db_session, admin_a, return_a, stock_a):
        app.config['RESTOCK_ONLY_RETURNED_ITEMS'] = False
        actor = actor_for(admin_a)
        mug_before = _stock(stock_a, "mug_los").quantity
        mug_abv_before = _stock(stock_a, "mug_abv").quantity
        tee_before = _stock(stock_a, "tee_los").quantity

        return_service.update_return_status(return_a.id, actor, "APPROVED")
        return_service.update_return_status(return_a.id, actor, "RESTOCKED")

        # Every order line at its ordered quantity into every stock row: 2 mugs, 1 tee
        assert _stock(stock_a, "mug_los").quantity == mug_before + 2
        assert _stock(stock_a, "mug_abv").quantity == mug_abv_before + 2
        assert _stock(stock_a, "tee_los").quantity == tee_before + 1
        assert len(_return_movements(return_a.id)) == 3

    def test_not_restockable_moves_no_stock(self, db_session, admin_a, return_a, stock_a):
        actor = actor_for(admin_a)
        return_service.update_return_status(return_a.id, actor, "APPROVED", restockable=False)
        return_doc = return_service.update_return_status(return_a.id, actor, "RESTOCKED")

        assert return_doc.status == "RESTOCKED"
        assert return_doc.restocked_at is None
        assert _return_movements(return_a.id) == []

    def test_restock_happens_once(self, db_session, admin_a, return_a, stock_a):
        actor = actor_for(admin_a)
        return_service.update_return_status(return_a.id, actor, "APPROVED")
        return_service.update_return_status(return_a.id, actor, "RESTOCKED")

        with pytest.raises(ValidationError):
            return_service.update_return_status(return_a.id, actor, "RESTOCKED")
        assert len(_return_movements(return_a.id)) == 2

    def test_failed_restock_rolls_back_everything(self, db_session, admin_a, return_a, stock_a, monkeypatch):
        actor = actor_for(admin_a)
        return_service.update_return_status(return_a.id, actor, "APPROVED")
        mug_before = _stock(stock_a, "mug_los").quantity

        real_adjust = return_service.adjust_stock
        calls = []

        def flaky_adjust(*args, **kwargs):
            calls.append(args)
            if len(calls) == 2:
                raise RuntimeError("disk full")
            return real_adjust(*args, **kwargs)

        monkeypatch.setattr(return_service, "adjust_stock", flaky_adjust)

        with pytest.raises(RuntimeError):
            return_service.update_return_status(return_a.id, actor, "RESTOCKED")

        return_doc = db.session.get(Return, return_a.id)
        assert return_doc.status == "APPROVED"
        assert return_doc.restocked_at is None
        assert _stock(stock_a, "mug_los").quantity == mug_before
        assert _return_movements(return_a.id) == []
        assert db.session.query(AuditLog).filter_by(action="UPDATE_RETURN", entity_id=return_a.id).count() == 1


class TestDeleteReturn:

    def test_platform_admin_deletes_open_return(self, db_session, platform_admin, return_a):
        return_id = return_a.id
        return_service.delete_return(return_id, actor_for(platform_admin))

        assert db.session.get(Return, return_id) is None
        assert db.session.query(ReturnItem).filter_by(return_id=return_id).count() == 0
        entry = db.session.query(AuditLog).filter_by(action="DELETE_RETURN", entity_id=return_id).one()
        assert entry.new_values["status"] == "INITIATED"

    def test_processed_return_survives(self, db_session, admin_a, platform_admin, return_a):
        return_service.update_return_status(return_a.id, actor_for(admin_a), "APPROVED")

        with pytest.raises(ValidationError, match="Cannot delete"):
            return_service.delete_return(return_a.id, actor_for(platform_admin))
        assert db.session.get(Return, return_a.id) is not None

    def test_rejected_return_can_be_deleted(self, db_session, admin_a, platform_admin, return_a):
        return_service.update_return_status(return_a.id, actor_for(admin_a), "REJECTED")
        return_service.delete_return(return_a.id, actor_for(platform_admin))
        assert db.session.query(Return).count() == 0

    def test_merchant_admin_cannot_delete(self, db_session, admin_a, return_a):
        with pytest.raises(ForbiddenError):
            return_service.delete_return(return_a.id, actor_for(admin_a))
