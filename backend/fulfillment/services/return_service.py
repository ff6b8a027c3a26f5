# Overview: Return documents and the restock fan-out into warehouse stock.

"""
Return Processing Service

WHY: Customers send goods back; the merchant decides whether to refund and
whether the goods go back on the shelf. Putting goods back must be visible
in the stock ledger.

DESIGN PRINCIPLES:
- Returns reference the original Order for traceability and tenancy
- ReturnItems reference original OrderItems; the quantity returned across
  all non-rejected returns never exceeds what was ordered
- Restock writes one STOCK_IN movement per stock row touched, in the same
  transaction as the status change and the audit entry
- Restock runs at most once per return (restocked_at)
- Processed returns (APPROVED/REFUNDED/RESTOCKED) cannot be deleted

LIFECYCLE:
1. INITIATED - customer asked to return goods ("PENDING" accepted on input)
2. APPROVED or REJECTED - merchant decision
3. REFUNDED or RESTOCKED - closing step after approval
"""

from __future__ import annotations

import logging

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Order, Return, ReturnItem, StockItem
from ..models.auth import ROLE_MERCHANT_ADMIN, ROLE_MERCHANT_STAFF, ROLE_PLATFORM_ADMIN
from ..validation import (
    NotFoundError,
    ValidationError,
    coerce_bool,
    coerce_cents,
    coerce_choice,
    coerce_int,
    optional_text,
)
from fulfillment.time_utils import utcnow
from .audit_service import record_audit
from .concurrency import check_version, commit_or_conflict, flush_or_conflict, lock_for_update
from .document_service import DOCUMENT_TYPE_RETURN, next_document_number
from .stock_service import MOVEMENT_STOCK_IN, REFERENCE_RETURN, adjust_stock
from .tenant_service import ActorContext, merchant_scoped, require_merchant_access, require_role


logger = logging.getLogger(__name__)


# =============================================================================
# RETURN STATUS CONSTANTS
# =============================================================================

RETURN_STATUS_INITIATED = "INITIATED"
RETURN_STATUS_APPROVED = "APPROVED"
RETURN_STATUS_REJECTED = "REJECTED"
RETURN_STATUS_REFUNDED = "REFUNDED"
RETURN_STATUS_RESTOCKED = "RESTOCKED"

RETURN_STATUSES = (
    RETURN_STATUS_INITIATED,
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_REJECTED,
    RETURN_STATUS_REFUNDED,
    RETURN_STATUS_RESTOCKED,
)

# Older clients send PENDING for a fresh return
RETURN_STATUS_ALIASES = {"PENDING": RETURN_STATUS_INITIATED}

RETURN_TRANSITIONS = {
    RETURN_STATUS_INITIATED: frozenset({RETURN_STATUS_APPROVED, RETURN_STATUS_REJECTED}),
    RETURN_STATUS_APPROVED: frozenset({RETURN_STATUS_REFUNDED, RETURN_STATUS_RESTOCKED}),
}

TERMINAL_RETURN_STATUSES = frozenset({
    RETURN_STATUS_REJECTED,
    RETURN_STATUS_REFUNDED,
    RETURN_STATUS_RESTOCKED,
})

UNDELETABLE_RETURN_STATUSES = frozenset({
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_REFUNDED,
    RETURN_STATUS_RESTOCKED,
})

RETURN_REASONS = ("DAMAGED", "WRONG_ITEM", "CUSTOMER_REJECTED", "NO_MONEY", "QUALITY_ISSUE", "OTHER")
ITEM_CONDITIONS = ("NEW", "USED", "DAMAGED", "DEFECTIVE")

RETURN_CREATE_ROLES = (ROLE_PLATFORM_ADMIN, ROLE_MERCHANT_ADMIN, ROLE_MERCHANT_STAFF)
RETURN_UPDATE_ROLES = (ROLE_PLATFORM_ADMIN, ROLE_MERCHANT_ADMIN)


def normalize_return_status(value) -> str:
    if isinstance(value, str) and value.strip().upper() in RETURN_STATUS_ALIASES:
        return RETURN_STATUS_ALIASES[value.strip().upper()]
    return coerce_choice(value, "status", RETURN_STATUSES)


def _load_return(return_id: int, *, lock: bool = False) -> Return:
    query = db.session.query(Return).filter_by(id=return_id)
    if lock:
        query = lock_for_update(query)
    return_doc = query.first()
    if return_doc is None:
        raise NotFoundError(f"Return {return_id} not found")
    return return_doc


def _already_returned(order_item_id: int) -> int:
    """Units of an order line already claimed by non-rejected returns."""
    total = (
        db.session.query(func.coalesce(func.sum(ReturnItem.quantity), 0))
        .join(Return, ReturnItem.return_id == Return.id)
        .filter(
            ReturnItem.order_item_id == order_item_id,
            Return.status != RETURN_STATUS_REJECTED,
        )
        .scalar()
    )
    return int(total or 0)


# =============================================================================
# RETURN CREATION
# =============================================================================

def create_return(
    order_id: int,
    actor: ActorContext,
    reason: str,
    items: list[dict],
    description: str | None = None,
    refund_amount_cents: int | None = None,
    restockable: bool = False,
) -> Return:
    """
    Create a return (status INITIATED) with its lines.

    Each item is {"order_item_id", "quantity", "condition"?, "reason"?}.
    Every line is validated before anything is written.

    Raises:
        NotFoundError: order does not exist
        ForbiddenError: actor may not act for the order's merchant
        ValidationError: bad reason, no items, foreign order item, quantity
            out of range, or bad condition
    """
    require_role(actor, *RETURN_CREATE_ROLES)

    # Serializes concurrent returns against the same order
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    require_merchant_access(actor, order.merchant_id, resource=f"order {order_id}")

    reason = coerce_choice(reason, "reason", RETURN_REASONS)
    description = optional_text(description, "description")
    if refund_amount_cents is not None:
        refund_amount_cents = coerce_cents(refund_amount_cents, "refund_amount_cents")
    restockable = coerce_bool(restockable, "restockable")

    if not isinstance(items, list) or not items:
        raise ValidationError("Return must contain at least one item")

    order_items = {item.id: item for item in order.items}
    requested: dict[int, int] = {}
    lines = []
    for index, raw in enumerate(items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Item {index} must be an object")
        order_item_id = coerce_int(raw.get("order_item_id"), f"items[{index}].order_item_id", minimum=1)
        order_item = order_items.get(order_item_id)
        if order_item is None:
            raise ValidationError(
                f"Order item {order_item_id} does not belong to order {order.order_number}",
                details={"order_item_id": order_item_id},
            )

        quantity = coerce_int(raw.get("quantity"), f"items[{index}].quantity", minimum=1)
        requested[order_item_id] = requested.get(order_item_id, 0) + quantity
        remaining = order_item.quantity - _already_returned(order_item_id)
        if requested[order_item_id] > remaining:
            raise ValidationError(
                f"Cannot return {requested[order_item_id]} units of order item {order_item_id}: "
                f"ordered {order_item.quantity}, still returnable {max(remaining, 0)}",
                details={"order_item_id": order_item_id, "returnable": max(remaining, 0)},
            )

        condition = coerce_choice(raw.get("condition") or "NEW", f"items[{index}].condition", ITEM_CONDITIONS)
        item_reason = optional_text(raw.get("reason"), f"items[{index}].reason")
        lines.append((order_item, quantity, condition, item_reason))

    try:
        return_number = next_document_number(
            merchant_id=order.merchant_id,
            document_type=DOCUMENT_TYPE_RETURN,
            prefix="RET",
        )
        now = utcnow()
        return_doc = Return(
            return_number=return_number,
            order_id=order.id,
            status=RETURN_STATUS_INITIATED,
            reason=reason,
            description=description,
            refund_amount_cents=refund_amount_cents,
            restockable=restockable,
            created_by_user_id=actor.user_id,
            created_at=now,
            updated_at=now,
        )
        for order_item, quantity, condition, item_reason in lines:
            return_doc.items.append(ReturnItem(
                order_item_id=order_item.id,
                product_id=order_item.product_id,
                quantity=quantity,
                condition=condition,
                reason=item_reason,
            ))
        db.session.add(return_doc)
        db.session.flush()

        record_audit(
            actor_user_id=actor.user_id,
            merchant_id=order.merchant_id,
            action="CREATE_RETURN",
            entity_type="returns",
            entity_id=return_doc.id,
            new_values={
                "return_number": return_number,
                "order_id": order.id,
                "reason": reason,
                "refund_amount_cents": refund_amount_cents,
                "restockable": restockable,
                "items": [
                    {"order_item_id": oi.id, "quantity": q, "condition": c}
                    for oi, q, c, _ in lines
                ],
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Return %s created for order %s", return_doc.return_number, order.order_number)
    return return_doc


# =============================================================================
# STATUS UPDATE AND RESTOCK
# =============================================================================

def _restock_lines(return_doc: Return, *, returned_items_only: bool) -> list[tuple[int, int]]:
    """(product_id, quantity) pairs the restock fan-out puts back."""
    if returned_items_only:
        return [(item.product_id, item.quantity) for item in return_doc.items]
    return [(item.product_id, item.quantity) for item in return_doc.order.items]


def _restock(return_doc: Return, actor: ActorContext, *, returned_items_only: bool) -> int:
    """
    Put returned goods back into every stock row of each product, across
    all warehouses. Returns the number of movements written. Does not commit.
    """
    note = f"Restocked from return {return_doc.return_number}"
    movements = 0
    for product_id, quantity in _restock_lines(return_doc, returned_items_only=returned_items_only):
        stock_rows = (
            db.session.query(StockItem.id)
            .filter(StockItem.product_id == product_id)
            .order_by(StockItem.id)
            .all()
        )
        if not stock_rows:
            logger.warning(
                "Return %s: product %s has no stock rows; nothing restocked",
                return_doc.return_number, product_id,
            )
        for (stock_item_id,) in stock_rows:
            adjust_stock(
                stock_item_id,
                quantity,
                MOVEMENT_STOCK_IN,
                REFERENCE_RETURN,
                return_doc.id,
                actor.user_id,
                note,
            )
            movements += 1
    return movements


def update_return_status(
    return_id: int,
    actor: ActorContext,
    new_status: str | None = None,
    refund_amount_cents: int | None = None,
    restockable: bool | None = None,
    notes: str | None = None,
    expected_version: int | None = None,
) -> Return:
    """
    Move a return through its lifecycle and record the merchant's decision.

    When the return reaches RESTOCKED and is restockable, the goods are put
    back into stock in the same transaction. Status, stock movements and the
    UPDATE_RETURN audit entry commit together or not at all.

    Raises:
        NotFoundError: return does not exist
        ForbiddenError: actor is not a platform admin or an admin of the
            owning merchant
        ValidationError: unknown status, terminal return, or move not in
            the transition table
        ConflictError: expected_version is stale or a concurrent write won
    """
    require_role(actor, *RETURN_UPDATE_ROLES)

    return_doc = _load_return(return_id, lock=True)
    require_merchant_access(actor, return_doc.order.merchant_id, resource=f"return {return_id}")

    target = normalize_return_status(new_status) if new_status is not None else return_doc.status

    if return_doc.status in TERMINAL_RETURN_STATUSES:
        raise ValidationError(
            f"Return {return_doc.return_number} is {return_doc.status} and can no longer be changed"
        )
    if target != return_doc.status and target not in RETURN_TRANSITIONS.get(return_doc.status, ()):
        raise ValidationError(
            f"Cannot move return {return_doc.return_number} from {return_doc.status} to {target}",
            details={
                "current_status": return_doc.status,
                "allowed": sorted(RETURN_TRANSITIONS.get(return_doc.status, ())),
            },
        )

    check_version(return_doc, expected_version, f"Return {return_doc.return_number}")

    if refund_amount_cents is not None:
        refund_amount_cents = coerce_cents(refund_amount_cents, "refund_amount_cents")
    if restockable is not None:
        restockable = coerce_bool(restockable, "restockable")
    notes = optional_text(notes, "notes")

    label = f"Return {return_doc.return_number}"
    previous_status = return_doc.status
    now = utcnow()
    restocked = 0

    try:
        return_doc.status = target
        if refund_amount_cents is not None:
            return_doc.refund_amount_cents = refund_amount_cents
        if restockable is not None:
            return_doc.restockable = restockable
        if notes is not None:
            return_doc.notes = notes
        if target != previous_status:
            return_doc.processed_by_user_id = actor.user_id
            return_doc.processed_at = now
        return_doc.updated_at = now

        if (
            target == RETURN_STATUS_RESTOCKED
            and return_doc.restockable
            and return_doc.restocked_at is None
        ):
            restocked = _restock(
                return_doc,
                actor,
                returned_items_only=current_app.config.get("RESTOCK_ONLY_RETURNED_ITEMS", True),
            )
            return_doc.restocked_at = now

        flush_or_conflict(label)
        record_audit(
            actor_user_id=actor.user_id,
            merchant_id=return_doc.order.merchant_id,
            action="UPDATE_RETURN",
            entity_type="returns",
            entity_id=return_doc.id,
            new_values={
                "status": target,
                "previous_status": previous_status,
                "refund_amount_cents": return_doc.refund_amount_cents,
                "restockable": return_doc.restockable,
                "notes": notes,
                "restock_movements": restocked,
            },
        )
    except Exception:
        db.session.rollback()
        raise

    commit_or_conflict(label)

    logger.info(
        "%s moved %s -> %s by user %s (%s restock movements)",
        label, previous_status, target, actor.user_id, restocked,
    )
    return return_doc


# =============================================================================
# DELETE
# =============================================================================

def delete_return(return_id: int, actor: ActorContext) -> None:
    """
    Delete an unprocessed return (platform admin only).

    APPROVED, REFUNDED and RESTOCKED returns are kept for the record.
    """
    require_role(actor, ROLE_PLATFORM_ADMIN)

    return_doc = _load_return(return_id, lock=True)
    if return_doc.status in UNDELETABLE_RETURN_STATUSES:
        raise ValidationError(f"Cannot delete a {return_doc.status.lower()} return")

    snapshot = {
        "return_number": return_doc.return_number,
        "order_id": return_doc.order_id,
        "status": return_doc.status,
    }
    merchant_id = return_doc.order.merchant_id

    try:
        record_audit(
            actor_user_id=actor.user_id,
            merchant_id=merchant_id,
            action="DELETE_RETURN",
            entity_type="returns",
            entity_id=return_doc.id,
            new_values=snapshot,
        )
        db.session.delete(return_doc)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Return %s deleted by user %s", snapshot["return_number"], actor.user_id)


# =============================================================================
# READS
# =============================================================================

def get_return(return_id: int, actor: ActorContext) -> Return:
    require_role(actor, *RETURN_CREATE_ROLES)
    return_doc = _load_return(return_id)
    require_merchant_access(actor, return_doc.order.merchant_id, resource=f"return {return_id}")
    return return_doc


def list_returns(
    actor: ActorContext,
    *,
    status: str | None = None,
    order_id: int | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Return], int]:
    """Returns visible to the actor, newest first, with the total count."""
    require_role(actor, *RETURN_CREATE_ROLES)
    query = merchant_scoped(
        db.session.query(Return).join(Order, Return.order_id == Order.id),
        Order.merchant_id,
        actor,
    )
    if status:
        query = query.filter(Return.status == normalize_return_status(status))
    if order_id is not None:
        query = query.filter(Return.order_id == order_id)

    total = query.count()
    returns = query.order_by(Return.created_at.desc(), Return.id.desc()).offset(offset).limit(limit).all()
    return returns, total
