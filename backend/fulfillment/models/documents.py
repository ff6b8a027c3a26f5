from __future__ import annotations

from ..extensions import db
from fulfillment.time_utils import to_utc_z

class Return(db.Model):
    """
    Customer return against one order.

    LIFECYCLE:
    1. INITIATED: Return requested, awaiting merchant decision
    2. APPROVED: Merchant accepted the return
    3. REJECTED: Merchant refused the return (terminal)
    4. REFUNDED: Money returned to the customer (terminal)
    5. RESTOCKED: Goods put back into sellable stock (terminal)

    DESIGN PRINCIPLES:
    - Returns reference the original Order for traceability and tenancy
    - ReturnItems reference original OrderItems and never exceed their quantity
    - Processed returns (APPROVED/REFUNDED/RESTOCKED) cannot be deleted
    - restocked_at marks that the restock fan-out ran; it never runs twice
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.Index("ix_returns_order_status", "order_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "RET-001-000012")
    return_number = db.Column(db.String(64), nullable=False, unique=True, index=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="INITIATED", index=True)

    # DAMAGED, WRONG_ITEM, CUSTOMER_REJECTED, NO_MONEY, QUALITY_ISSUE, OTHER
    reason = db.Column(db.String(32), nullable=False)
    description = db.Column(db.Text, nullable=True)

    refund_amount_cents = db.Column(db.Integer, nullable=True)
    restockable = db.Column(db.Boolean, nullable=False, default=False)

    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    restocked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("returns", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    processed_by = db.relationship("User", foreign_keys=[processed_by_user_id])
    items = db.relationship(
        "ReturnItem",
        back_populates="return_doc",
        lazy=True,
        order_by="ReturnItem.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "return_number": self.return_number,
            "order_id": self.order_id,
            "order_number": self.order.order_number if self.order else None,
            "status": self.status,
            "reason": self.reason,
            "description": self.description,
            "refund_amount_cents": self.refund_amount_cents,
            "restockable": self.restockable,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "processed_by_user_id": self.processed_by_user_id,
            "processed_at": to_utc_z(self.processed_at),
            "restocked_at": to_utc_z(self.restocked_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class ReturnItem(db.Model):
    """
    One returned line. References the OrderItem it comes from; quantity
    must stay within the ordered quantity.
    """
    __tablename__ = "return_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)

    # NEW, USED, DAMAGED, DEFECTIVE
    condition = db.Column(db.String(16), nullable=False, default="NEW")
    reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    return_doc = db.relationship("Return", back_populates="items")
    order_item = db.relationship("OrderItem", backref=db.backref("return_items", lazy=True))
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "order_item_id": self.order_item_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "condition": self.condition,
            "reason": self.reason,
            "created_at": to_utc_z(self.created_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-merchant document sequences.

    WHY: Prevent race conditions when generating order and return numbers.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint("merchant_id", "document_type", name="uq_doc_sequences_merchant_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey("merchants.id"), nullable=False, index=True)
    document_type = db.Column(db.String(32), nullable=False, index=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "merchant_id": self.merchant_id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
