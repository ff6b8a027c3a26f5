# Overview: Order creation and the order status lifecycle.

"""
Order Lifecycle Service

WHY: Orders move through the warehouse floor one status at a time and every
move must be traceable. This module is the only writer of Order.status.

LIFECYCLE:
PENDING -> CONFIRMED -> PROCESSING -> PICKED -> PACKED -> SHIPPED
        -> OUT_FOR_DELIVERY -> DELIVERED
CANCELLED and RETURNED may be reached from any open order.

INVARIANTS:
- Every status write appends exactly one OrderStatusHistory row, in the
  same transaction as the write.
- delivered_at is stamped the first time an order reaches DELIVERED and is
  never moved afterwards.
- Orders are never deleted.
- Every write is recorded in the audit log.

ORDERING POLICY:
By default any status may follow any status (operators correct mistakes by
moving an order back). With ENFORCE_FORWARD_ORDER_TRANSITIONS enabled only
forward moves along the sequence are accepted, terminal orders are frozen,
and repeating the current status is allowed (it only adds a history note).
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Order, OrderItem, OrderStatusHistory, Product
from ..models.auth import ROLE_MERCHANT_ADMIN, ROLE_MERCHANT_STAFF, ROLE_PLATFORM_ADMIN
from ..validation import (
    NotFoundError,
    ValidationError,
    coerce_cents,
    coerce_choice,
    coerce_datetime,
    coerce_int,
    optional_text,
    require_fields,
)
from fulfillment.time_utils import as_naive_utc, to_utc_z, utcnow
from .audit_service import record_audit
from .concurrency import check_version, commit_or_conflict, flush_or_conflict, lock_for_update
from .document_service import DOCUMENT_TYPE_ORDER, next_document_number
from .stock_service import reserve_stock
from .tenant_service import ActorContext, merchant_scoped, require_merchant_access, require_role


logger = logging.getLogger(__name__)


# =============================================================================
# ORDER STATUS CONSTANTS
# =============================================================================

ORDER_STATUS_PENDING = "PENDING"
ORDER_STATUS_CONFIRMED = "CONFIRMED"
ORDER_STATUS_PROCESSING = "PROCESSING"
ORDER_STATUS_PICKED = "PICKED"
ORDER_STATUS_PACKED = "PACKED"
ORDER_STATUS_SHIPPED = "SHIPPED"
ORDER_STATUS_OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
ORDER_STATUS_DELIVERED = "DELIVERED"
ORDER_STATUS_RETURNED = "RETURNED"
ORDER_STATUS_CANCELLED = "CANCELLED"

ORDER_STATUS_SEQUENCE = (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_PICKED,
    ORDER_STATUS_PACKED,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUS_OUT_FOR_DELIVERY,
    ORDER_STATUS_DELIVERED,
)

ORDER_STATUSES = ORDER_STATUS_SEQUENCE + (ORDER_STATUS_RETURNED, ORDER_STATUS_CANCELLED)

TERMINAL_ORDER_STATUSES = frozenset({
    ORDER_STATUS_DELIVERED,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_RETURNED,
})

PAYMENT_METHODS = ("COD", "PREPAID", "WALLET")

ORDER_CREATE_ROLES = (ROLE_PLATFORM_ADMIN, ROLE_MERCHANT_ADMIN, ROLE_MERCHANT_STAFF)


def can_transition(current: str, new: str, *, enforce_forward: bool) -> bool:
    """Whether the ordering policy allows current -> new."""
    if not enforce_forward:
        return True
    if current == new:
        return True
    if current in TERMINAL_ORDER_STATUSES:
        return False
    if new in (ORDER_STATUS_CANCELLED, ORDER_STATUS_RETURNED):
        return True
    return ORDER_STATUS_SEQUENCE.index(new) > ORDER_STATUS_SEQUENCE.index(current)


def next_statuses(order: Order) -> list[str]:
    """
    Statuses offered to the operator for this order: the current one and
    everything after it, then the alternate endings.
    """
    if order.status in TERMINAL_ORDER_STATUSES:
        return [order.status]
    index = ORDER_STATUS_SEQUENCE.index(order.status)
    return list(ORDER_STATUS_SEQUENCE[index:]) + [ORDER_STATUS_CANCELLED, ORDER_STATUS_RETURNED]


def _load_order(order_id: int, *, lock: bool = False) -> Order:
    query = db.session.query(Order).filter_by(id=order_id)
    if lock:
        query = lock_for_update(query)
    order = query.first()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


# =============================================================================
# STATUS TRANSITION
# =============================================================================

def transition_status(
    order_id: int,
    actor: ActorContext,
    new_status: str,
    notes: str | None = None,
    tracking_number: str | None = None,
    expected_delivery: str | datetime | None = None,
    expected_version: int | None = None,
) -> Order:
    """
    Move an order to new_status.

    Writes the status, one history row, the optional tracking number and
    expected delivery, stamps delivered_at on first delivery, and records
    UPDATE_ORDER_STATUS in the audit log. All or nothing.

    Raises:
        NotFoundError: order does not exist
        ForbiddenError: actor does not belong to the order's merchant
        ValidationError: unknown status, bad date, or disallowed move
        ConflictError: expected_version is stale or a concurrent write won
    """
    order = _load_order(order_id, lock=True)
    require_merchant_access(actor, order.merchant_id, resource=f"order {order_id}")

    if new_status is None:
        raise ValidationError("Status is required")
    new_status = coerce_choice(new_status, "status", ORDER_STATUSES)

    check_version(order, expected_version, f"Order {order.order_number}")

    enforce_forward = current_app.config.get("ENFORCE_FORWARD_ORDER_TRANSITIONS", False)
    if not can_transition(order.status, new_status, enforce_forward=enforce_forward):
        raise ValidationError(
            f"Cannot move order {order.order_number} from {order.status} to {new_status}",
            details={"current_status": order.status, "allowed": next_statuses(order)},
        )

    tracking_number = optional_text(tracking_number, "tracking_number", max_length=128)
    if isinstance(expected_delivery, datetime):
        expected_delivery_at = as_naive_utc(expected_delivery)
    else:
        expected_delivery_at = coerce_datetime(expected_delivery, "expected_delivery")
    notes = optional_text(notes, "notes")

    previous_status = order.status
    now = utcnow()

    order.status = new_status
    if tracking_number:
        order.tracking_number = tracking_number
    if expected_delivery_at is not None:
        order.expected_delivery = expected_delivery_at
    if new_status == ORDER_STATUS_DELIVERED and order.delivered_at is None:
        order.delivered_at = now
    order.updated_at = now

    db.session.add(OrderStatusHistory(
        order_id=order.id,
        status=new_status,
        updated_by_user_id=actor.user_id,
        notes=notes or f"Status updated to {new_status}",
        created_at=now,
    ))

    try:
        flush_or_conflict(f"Order {order.order_number}")
        record_audit(
            actor_user_id=actor.user_id,
            merchant_id=order.merchant_id,
            action="UPDATE_ORDER_STATUS",
            entity_type="orders",
            entity_id=order.id,
            new_values={
                "status": new_status,
                "previous_status": previous_status,
                "tracking_number": tracking_number,
                "expected_delivery": to_utc_z(expected_delivery_at),
                "notes": notes,
            },
        )
    except Exception:
        db.session.rollback()
        raise

    commit_or_conflict(f"Order {order.order_number}")

    logger.info(
        "Order %s moved %s -> %s by user %s",
        order.order_number, previous_status, new_status, actor.user_id,
    )
    return order


# =============================================================================
# ORDER CREATION
# =============================================================================

def _parse_items(raw_items) -> list[tuple[int, int]]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Order must contain at least one item")

    parsed = []
    for index, raw in enumerate(raw_items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Item {index} must be an object")
        product_id = coerce_int(raw.get("product_id"), f"items[{index}].product_id", minimum=1)
        quantity = coerce_int(raw.get("quantity"), f"items[{index}].quantity", minimum=1)
        parsed.append((product_id, quantity))
    return parsed


def create_order(actor: ActorContext, payload: dict) -> Order:
    """
    Create an order with its items, reserving stock for every line.

    Merchant users create orders for their own merchant; platform admins
    name the merchant in the payload. Line prices come from the product
    catalogue. Order, items, reservations, first history row and audit
    entry commit together.
    """
    require_role(actor, *ORDER_CREATE_ROLES)
    require_fields(
        payload,
        "customer_name", "customer_phone", "shipping_address", "items",
    )

    if actor.is_platform_admin:
        if payload.get("merchant_id") is None:
            raise ValidationError("merchant_id is required")
        merchant_id = coerce_int(payload["merchant_id"], "merchant_id", minimum=1)
    else:
        merchant_id = actor.merchant_id
        if payload.get("merchant_id") is not None:
            requested = coerce_int(payload["merchant_id"], "merchant_id", minimum=1)
            require_merchant_access(actor, requested, resource="order creation")

    customer_name = optional_text(payload.get("customer_name"), "customer_name", max_length=255)
    customer_phone = optional_text(payload.get("customer_phone"), "customer_phone", max_length=32)
    customer_email = optional_text(payload.get("customer_email"), "customer_email", max_length=255)
    if not customer_name or not customer_phone:
        raise ValidationError("customer_name and customer_phone are required")

    address = payload.get("shipping_address")
    if not isinstance(address, dict):
        raise ValidationError("shipping_address must be an object")
    street = optional_text(address.get("street"), "shipping_address.street", max_length=255)
    city = optional_text(address.get("city"), "shipping_address.city", max_length=120)
    state = optional_text(address.get("state"), "shipping_address.state", max_length=120)
    if not street or not city or not state:
        raise ValidationError("shipping_address requires street, city and state")
    country = optional_text(address.get("country"), "shipping_address.country", max_length=120) or "Nigeria"
    postal_code = optional_text(address.get("postal_code"), "shipping_address.postal_code", max_length=32)

    payment_method = coerce_choice(payload.get("payment_method") or "COD", "payment_method", PAYMENT_METHODS)
    delivery_fee_cents = coerce_cents(payload.get("delivery_fee_cents", 0), "delivery_fee_cents")
    notes = optional_text(payload.get("notes"), "notes")
    expected_delivery = coerce_datetime(payload.get("expected_delivery"), "expected_delivery")

    warehouse_id = None
    if payload.get("warehouse_id") is not None:
        warehouse_id = coerce_int(payload["warehouse_id"], "warehouse_id", minimum=1)

    items = _parse_items(payload.get("items"))

    product_ids = {product_id for product_id, _ in items}
    products = {
        p.id: p
        for p in db.session.query(Product).filter(
            Product.id.in_(product_ids),
            Product.merchant_id == merchant_id,
            Product.is_active.is_(True),
        ).all()
    }
    missing = sorted(product_ids - set(products))
    if missing:
        raise ValidationError(
            f"Products not found or inactive: {', '.join(str(pid) for pid in missing)}",
            details={"product_ids": missing},
        )

    order_value_cents = 0
    lines = []
    for product_id, quantity in items:
        product = products[product_id]
        if product.unit_price_cents <= 0:
            raise ValidationError(f"Product {product.sku} has no price")
        line_total = product.unit_price_cents * quantity
        order_value_cents += line_total
        lines.append((product, quantity, line_total))

    try:
        order_number = next_document_number(
            merchant_id=merchant_id,
            document_type=DOCUMENT_TYPE_ORDER,
            prefix="ORD",
        )
        now = utcnow()
        order = Order(
            order_number=order_number,
            merchant_id=merchant_id,
            warehouse_id=warehouse_id,
            status=ORDER_STATUS_PENDING,
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            shipping_street=street,
            shipping_city=city,
            shipping_state=state,
            shipping_country=country,
            shipping_postal_code=postal_code,
            payment_method=payment_method,
            order_value_cents=order_value_cents,
            delivery_fee_cents=delivery_fee_cents,
            total_amount_cents=order_value_cents + delivery_fee_cents,
            notes=notes,
            expected_delivery=expected_delivery,
            created_by_user_id=actor.user_id,
            created_at=now,
            updated_at=now,
        )
        db.session.add(order)
        db.session.flush()

        for product, quantity, line_total in lines:
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=product.id,
                quantity=quantity,
                unit_price_cents=product.unit_price_cents,
                total_price_cents=line_total,
            ))
            reserve_stock(
                product.id,
                quantity,
                order_id=order.id,
                actor_id=actor.user_id,
                order_number=order_number,
            )

        db.session.add(OrderStatusHistory(
            order_id=order.id,
            status=ORDER_STATUS_PENDING,
            updated_by_user_id=actor.user_id,
            notes="Order created",
            created_at=now,
        ))

        record_audit(
            actor_user_id=actor.user_id,
            merchant_id=merchant_id,
            action="CREATE_ORDER",
            entity_type="orders",
            entity_id=order.id,
            new_values={
                "order_number": order_number,
                "total_amount_cents": order.total_amount_cents,
                "items": [{"product_id": p.id, "quantity": q} for p, q, _ in lines],
            },
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Order %s created for merchant %s", order.order_number, merchant_id)
    return order


# =============================================================================
# READS
# =============================================================================

def get_order(order_id: int, actor: ActorContext) -> Order:
    order = _load_order(order_id)
    require_merchant_access(actor, order.merchant_id, resource=f"order {order_id}")
    return order


def list_orders(
    actor: ActorContext,
    *,
    status: str | None = None,
    warehouse_id: int | None = None,
    payment_method: str | None = None,
    search: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Order], int]:
    """Orders visible to the actor, newest first, with the total count."""
    query = merchant_scoped(db.session.query(Order), Order.merchant_id, actor)

    if status:
        query = query.filter(Order.status == coerce_choice(status, "status", ORDER_STATUSES))
    if warehouse_id is not None:
        query = query.filter(Order.warehouse_id == warehouse_id)
    if payment_method:
        query = query.filter(
            Order.payment_method == coerce_choice(payment_method, "payment_method", PAYMENT_METHODS)
        )
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(db.or_(
            Order.order_number.ilike(pattern),
            Order.customer_name.ilike(pattern),
            Order.customer_phone.ilike(pattern),
            Order.tracking_number.ilike(pattern),
        ))

    total = query.count()
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()).offset(offset).limit(limit).all()
    return orders, total
