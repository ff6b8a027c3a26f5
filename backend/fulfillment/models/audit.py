from __future__ import annotations

from ..extensions import db
from fulfillment.time_utils import to_utc_z

class AuditLog(db.Model):
    """
    Administrative audit trail with tenant context.

    MULTI-TENANT: merchant_id is the tenant that owns the touched entity
    (NULL for platform-level entities such as warehouses) so merchant admins
    can read their own trail.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        db.Index("ix_audit_logs_merchant_created", "merchant_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    merchant_id = db.Column(db.Integer, db.ForeignKey("merchants.id"), nullable=True, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # e.g. UPDATE_ORDER_STATUS, CREATE_RETURN, UPDATE_RETURN, DELETE_RETURN
    action = db.Column(db.String(64), nullable=False, index=True)
    entity_type = db.Column(db.String(64), nullable=False)  # orders, returns, stock_items
    entity_id = db.Column(db.Integer, nullable=False)

    # Snapshot of the values written by the action
    new_values = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    user = db.relationship("User", backref=db.backref("audit_logs", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "merchant_id": self.merchant_id,
            "user_id": self.user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "new_values": self.new_values,
            "created_at": to_utc_z(self.created_at),
        }
