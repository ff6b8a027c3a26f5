# Overview: Service-layer operations for warehouse stock; every quantity change writes a movement.

"""
Stock invariants:

- StockItem.quantity is the physical count; available_quantity is what can
  still be promised; reserved_quantity is held by open orders.
- Every change to those numbers appends exactly one StockMovement carrying
  the signed delta, the movement type and the causing document.
- Functions here that take part in a larger operation (adjust_stock,
  reserve_stock) only flush; the caller owns the transaction.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product, StockItem, StockMovement, Warehouse
from ..models.auth import ROLE_PLATFORM_ADMIN, ROLE_WAREHOUSE_STAFF
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_int,
    optional_text,
    require_fields,
)
from .audit_service import record_audit
from .concurrency import lock_for_update
from .tenant_service import ActorContext, merchant_scoped, require_merchant_access, require_role


logger = logging.getLogger(__name__)


MOVEMENT_STOCK_IN = "STOCK_IN"
MOVEMENT_STOCK_OUT = "STOCK_OUT"
MOVEMENT_ADJUSTMENT = "ADJUSTMENT"
MOVEMENT_RESERVATION = "RESERVATION"

MOVEMENT_TYPES = (MOVEMENT_STOCK_IN, MOVEMENT_STOCK_OUT, MOVEMENT_ADJUSTMENT, MOVEMENT_RESERVATION)

REFERENCE_RETURN = "RETURN"
REFERENCE_ORDER = "ORDER"
REFERENCE_INITIAL_STOCK = "INITIAL_STOCK"
REFERENCE_MANUAL = "MANUAL"

STOCK_WRITE_ROLES = (ROLE_PLATFORM_ADMIN, ROLE_WAREHOUSE_STAFF)

# StockMovement.notes column width
MOVEMENT_NOTE_MAX_LENGTH = 255


def adjust_stock(
    stock_item_id: int,
    quantity_delta: int,
    movement_type: str,
    reference_type: str | None,
    reference_id: int | None,
    actor_id: int | None,
    note: str | None,
) -> StockMovement:
    """
    Apply a signed delta to a stock item and append one ledger row.

    Both quantity and available_quantity move by the same delta. There is
    no floor at zero: returns may restock rows that were oversold.

    Does not commit.
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Invalid movement type '{movement_type}'")
    note = optional_text(note, "note", max_length=MOVEMENT_NOTE_MAX_LENGTH)

    stock_item = lock_for_update(db.session.query(StockItem).filter_by(id=stock_item_id)).first()
    if stock_item is None:
        raise NotFoundError(f"Stock item {stock_item_id} not found")

    stock_item.quantity = stock_item.quantity + quantity_delta
    stock_item.available_quantity = stock_item.available_quantity + quantity_delta

    movement = StockMovement(
        stock_item_id=stock_item.id,
        movement_type=movement_type,
        quantity=quantity_delta,
        reference_type=reference_type,
        reference_id=reference_id,
        performed_by_user_id=actor_id,
        notes=note,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def reserve_stock(
    product_id: int,
    quantity: int,
    *,
    order_id: int,
    actor_id: int | None,
    order_number: str,
) -> list[StockMovement]:
    """
    Hold quantity of a product for an order, drawing from the stock rows
    with the most available units first.

    Moves units from available to reserved; physical quantity is unchanged.
    Raises ValidationError when the warehouses together cannot cover it.
    Does not commit.
    """
    rows = (
        lock_for_update(
            db.session.query(StockItem)
            .filter(StockItem.product_id == product_id, StockItem.available_quantity > 0)
            .order_by(StockItem.available_quantity.desc(), StockItem.id)
        )
        .all()
    )

    available = sum(row.available_quantity for row in rows)
    if available < quantity:
        raise ValidationError(
            f"Insufficient stock for product {product_id}: requested {quantity}, available {available}",
            details={"product_id": product_id, "requested": quantity, "available": available},
        )

    movements = []
    remaining = quantity
    for row in rows:
        if remaining <= 0:
            break
        take = min(row.available_quantity, remaining)
        row.available_quantity -= take
        row.reserved_quantity += take
        remaining -= take

        movement = StockMovement(
            stock_item_id=row.id,
            movement_type=MOVEMENT_RESERVATION,
            quantity=-take,
            reference_type=REFERENCE_ORDER,
            reference_id=order_id,
            performed_by_user_id=actor_id,
            notes=f"Reserved for order {order_number}",
        )
        db.session.add(movement)
        movements.append(movement)

    db.session.flush()
    return movements


def create_stock_item(actor: ActorContext, payload: dict) -> StockItem:
    """
    Register a stock row for (product, warehouse, batch) with its opening
    quantity, recorded as an INITIAL_STOCK movement.
    """
    require_role(actor, *STOCK_WRITE_ROLES)
    require_fields(payload, "product_id", "warehouse_id", "quantity")

    product_id = coerce_int(payload["product_id"], "product_id", minimum=1)
    warehouse_id = coerce_int(payload["warehouse_id"], "warehouse_id", minimum=1)
    quantity = coerce_int(payload["quantity"], "quantity", minimum=0)
    reorder_level = coerce_int(payload.get("reorder_level", 10), "reorder_level", minimum=0)
    batch_number = optional_text(payload.get("batch_number"), "batch_number", max_length=64)
    location = optional_text(payload.get("location"), "location", max_length=64)

    product = db.session.query(Product).get(product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    warehouse = db.session.query(Warehouse).get(warehouse_id)
    if warehouse is None:
        raise NotFoundError(f"Warehouse {warehouse_id} not found")
    if not warehouse.is_active:
        raise ValidationError(f"Warehouse {warehouse.code} is inactive")

    existing = db.session.query(StockItem).filter_by(
        product_id=product_id, warehouse_id=warehouse_id, batch_number=batch_number
    ).first()
    if existing is not None:
        raise ConflictError(
            "Stock item already exists for this product, warehouse and batch",
            details={"stock_item_id": existing.id},
        )

    stock_item = StockItem(
        product_id=product_id,
        warehouse_id=warehouse_id,
        quantity=quantity,
        available_quantity=quantity,
        reserved_quantity=0,
        reorder_level=reorder_level,
        batch_number=batch_number,
        location=location,
    )

    try:
        db.session.add(stock_item)
        db.session.flush()

        if quantity > 0:
            db.session.add(StockMovement(
                stock_item_id=stock_item.id,
                movement_type=MOVEMENT_STOCK_IN,
                quantity=quantity,
                reference_type=REFERENCE_INITIAL_STOCK,
                reference_id=stock_item.id,
                performed_by_user_id=actor.user_id,
                notes="Initial stock",
            ))

        record_audit(
            actor_user_id=actor.user_id,
            merchant_id=product.merchant_id,
            action="CREATE_STOCK_ITEM",
            entity_type="stock_items",
            entity_id=stock_item.id,
            new_values={"product_id": product_id, "warehouse_id": warehouse_id, "quantity": quantity},
        )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Stock item already exists for this product, warehouse and batch")
    except Exception:
        db.session.rollback()
        raise

    logger.info("Stock item %s created with quantity %s", stock_item.id, quantity)
    return stock_item


def manual_adjustment(
    stock_item_id: int,
    actor: ActorContext,
    quantity_delta: int,
    note: str | None = None,
) -> StockItem:
    """Operator correction (count differences, damage). Audited."""
    require_role(actor, *STOCK_WRITE_ROLES)
    if quantity_delta == 0:
        raise ValidationError("quantity_delta must not be zero")
    note = optional_text(note, "note", max_length=MOVEMENT_NOTE_MAX_LENGTH)

    stock_item = db.session.query(StockItem).get(stock_item_id)
    if stock_item is None:
        raise NotFoundError(f"Stock item {stock_item_id} not found")

    try:
        adjust_stock(
            stock_item.id,
            quantity_delta,
            MOVEMENT_ADJUSTMENT,
            REFERENCE_MANUAL,
            None,
            actor.user_id,
            note or "Manual adjustment",
        )
        record_audit(
            actor_user_id=actor.user_id,
            merchant_id=stock_item.product.merchant_id,
            action="ADJUST_STOCK",
            entity_type="stock_items",
            entity_id=stock_item.id,
            new_values={"quantity_delta": quantity_delta, "quantity": stock_item.quantity},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return stock_item


def _scoped_stock_query(actor: ActorContext):
    query = db.session.query(StockItem).join(Product, StockItem.product_id == Product.id)
    # Warehouse staff work across merchants within the warehouses
    if actor.role == ROLE_WAREHOUSE_STAFF:
        return query
    return merchant_scoped(query, Product.merchant_id, actor)


def list_stock_items(
    actor: ActorContext,
    *,
    warehouse_id: int | None = None,
    product_id: int | None = None,
    low_stock: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[StockItem], int]:
    query = _scoped_stock_query(actor)
    if warehouse_id is not None:
        query = query.filter(StockItem.warehouse_id == warehouse_id)
    if product_id is not None:
        query = query.filter(StockItem.product_id == product_id)
    if low_stock:
        query = query.filter(StockItem.quantity <= StockItem.reorder_level)

    total = query.count()
    items = query.order_by(StockItem.id).offset(offset).limit(limit).all()
    return items, total


def get_stock_item(stock_item_id: int, actor: ActorContext) -> StockItem:
    stock_item = db.session.query(StockItem).get(stock_item_id)
    if stock_item is None:
        raise NotFoundError(f"Stock item {stock_item_id} not found")
    if actor.role != ROLE_WAREHOUSE_STAFF:
        require_merchant_access(actor, stock_item.product.merchant_id, resource=f"stock item {stock_item_id}")
    return stock_item


def get_movements(stock_item_id: int, actor: ActorContext) -> list[StockMovement]:
    """Ledger rows for a stock item, oldest first."""
    stock_item = get_stock_item(stock_item_id, actor)
    return list(stock_item.movements)
