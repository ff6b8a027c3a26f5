from __future__ import annotations

from ..extensions import db
from fulfillment.time_utils import to_utc_z

class Order(db.Model):
    """
    Customer order owned by one merchant.

    LIFECYCLE:
    PENDING -> CONFIRMED -> PROCESSING -> PICKED -> PACKED -> SHIPPED
    -> OUT_FOR_DELIVERY -> DELIVERED, with CANCELLED and RETURNED as
    alternate endings. Status only changes through
    order_service.transition_status, which writes one OrderStatusHistory
    row per change.

    Orders are never deleted; cancellation is a status.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_merchant_status_created", "merchant_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable order number (e.g., "ORD-001-000042")
    order_number = db.Column(db.String(64), nullable=False, unique=True, index=True)

    merchant_id = db.Column(db.Integer, db.ForeignKey("merchants.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True, index=True)

    status = db.Column(db.String(32), nullable=False, default="PENDING", index=True)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=False)

    shipping_street = db.Column(db.String(255), nullable=False)
    shipping_city = db.Column(db.String(120), nullable=False)
    shipping_state = db.Column(db.String(120), nullable=False)
    shipping_country = db.Column(db.String(120), nullable=False, default="Nigeria")
    shipping_postal_code = db.Column(db.String(32), nullable=True)

    payment_method = db.Column(db.String(16), nullable=False, default="COD")

    # Amounts in cents; total = order value + delivery fee, fixed at creation
    order_value_cents = db.Column(db.Integer, nullable=False)
    delivery_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.Text, nullable=True)
    tracking_number = db.Column(db.String(128), nullable=True)
    expected_delivery = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    merchant = db.relationship("Merchant", backref=db.backref("orders", lazy=True))
    warehouse = db.relationship("Warehouse", backref=db.backref("orders", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def shipping_address(self) -> dict:
        return {
            "street": self.shipping_street,
            "city": self.shipping_city,
            "state": self.shipping_state,
            "country": self.shipping_country,
            "postal_code": self.shipping_postal_code,
        }

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self, *, include_items: bool = False, include_history: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "merchant_id": self.merchant_id,
            "warehouse_id": self.warehouse_id,
            "status": self.status,
            "customer_name": self.customer_name,
            "customer_email": self.customer_email,
            "customer_phone": self.customer_phone,
            "shipping_address": self.shipping_address,
            "payment_method": self.payment_method,
            "order_value_cents": self.order_value_cents,
            "delivery_fee_cents": self.delivery_fee_cents,
            "total_amount_cents": self.total_amount_cents,
            "notes": self.notes,
            "tracking_number": self.tracking_number,
            "expected_delivery": to_utc_z(self.expected_delivery),
            "delivered_at": to_utc_z(self.delivered_at),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        if include_history:
            data["status_history"] = [entry.to_dict() for entry in self.status_history]
        return data


class OrderItem(db.Model):
    """Order line. Immutable after the order is created."""
    __tablename__ = "order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("items", lazy=True, order_by="OrderItem.id"))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "sku": self.product.sku if self.product else None,
            "name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
        }


class OrderStatusHistory(db.Model):
    """
    Status audit trail for an order.

    IMMUTABLE: One row per status change, never updated or deleted.
    """
    __tablename__ = "order_status_history"
    __table_args__ = (
        db.Index("ix_order_status_history_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    status = db.Column(db.String(32), nullable=False)
    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship(
        "Order",
        backref=db.backref("status_history", lazy=True, order_by="OrderStatusHistory.id"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "status": self.status,
            "updated_by_user_id": self.updated_by_user_id,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
