from __future__ import annotations

from ..extensions import db
from fulfillment.time_utils import to_utc_z

class Product(db.Model):
    """
    Product master data.

    MULTI-TENANT: Products belong to one merchant. SKUs are unique within a
    merchant, not globally.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("merchant_id", "sku", name="uq_products_merchant_sku"),
        db.Index("ix_products_merchant_active", "merchant_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey("merchants.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in cents (frontend may only format for display)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    merchant = db.relationship("Merchant", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} merchant_id={self.merchant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "merchant_id": self.merchant_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "unit_price_cents": self.unit_price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockItem(db.Model):
    """
    Per-(product, warehouse, batch) stock record.

    quantity is the physical count, available_quantity what can still be
    promised to new orders, reserved_quantity what open orders hold.
    Every change to these numbers is paired with a StockMovement row.
    """
    __tablename__ = "stock_items"
    __table_args__ = (
        db.UniqueConstraint("product_id", "warehouse_id", "batch_number", name="uq_stock_items_product_warehouse_batch"),
        db.Index("ix_stock_items_product", "product_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    available_quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved_quantity = db.Column(db.Integer, nullable=False, default=0)
    reorder_level = db.Column(db.Integer, nullable=False, default=10)

    batch_number = db.Column(db.String(64), nullable=True)
    location = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", backref=db.backref("stock_items", lazy=True))
    warehouse = db.relationship("Warehouse", backref=db.backref("stock_items", lazy=True))

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.reorder_level

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "quantity": self.quantity,
            "available_quantity": self.available_quantity,
            "reserved_quantity": self.reserved_quantity,
            "reorder_level": self.reorder_level,
            "batch_number": self.batch_number,
            "location": self.location,
            "is_low_stock": self.is_low_stock,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    Stock ledger entry. One row per physical or reservation change.

    IMMUTABLE: Never update or delete. quantity is the signed delta that was
    applied; reference_type/reference_id point at the causing document.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    stock_item_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(32), nullable=False, index=True)  # STOCK_IN, STOCK_OUT, ADJUSTMENT, RESERVATION
    quantity = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(db.String(32), nullable=True)  # RETURN, ORDER, INITIAL_STOCK, MANUAL
    reference_id = db.Column(db.Integer, nullable=True)

    performed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    stock_item = db.relationship(
        "StockItem",
        backref=db.backref("movements", lazy=True, order_by="StockMovement.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stock_item_id": self.stock_item_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "performed_by_user_id": self.performed_by_user_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
