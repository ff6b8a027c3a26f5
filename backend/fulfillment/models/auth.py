from __future__ import annotations

from ..extensions import db
from fulfillment.time_utils import to_utc_z


# Fixed platform roles. The platform admin bypasses tenant checks.
ROLE_PLATFORM_ADMIN = "PLATFORM_ADMIN"
ROLE_MERCHANT_ADMIN = "MERCHANT_ADMIN"
ROLE_MERCHANT_STAFF = "MERCHANT_STAFF"
ROLE_WAREHOUSE_STAFF = "WAREHOUSE_STAFF"

ROLES = (
    ROLE_PLATFORM_ADMIN,
    ROLE_MERCHANT_ADMIN,
    ROLE_MERCHANT_STAFF,
    ROLE_WAREHOUSE_STAFF,
)

MERCHANT_ROLES = {ROLE_MERCHANT_ADMIN, ROLE_MERCHANT_STAFF}


class User(db.Model):
    """
    User accounts for authentication and attribution.

    MULTI-TENANT: Merchant admins and staff belong to exactly one merchant.
    Platform admins and warehouse staff have merchant_id = NULL.

    WHY: Every status change and stock movement must be attributable.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.Index("ix_users_merchant_id", "merchant_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    merchant_id = db.Column(db.Integer, db.ForeignKey("merchants.id"), nullable=True)

    username = db.Column(db.String(64), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=False, unique=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(32), nullable=False, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    merchant = db.relationship("Merchant", backref=db.backref("users", lazy=True))

    @property
    def is_platform_admin(self) -> bool:
        return self.role == ROLE_PLATFORM_ADMIN

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "merchant_id": self.merchant_id,
            "username": self.username,
            "email": self.email,
            "role": self.role,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class SessionToken(db.Model):
    """
    Secure session token with tenant context.

    MULTI-TENANT: The merchant_id is captured when the session is created and
    stays fixed for the session lifetime.

    SECURITY NOTES:
    - Tokens stored hashed in database (SHA-256)
    - 24-hour absolute timeout
    - 2-hour idle timeout
    - Revocable on logout
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_user_active", "user_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    merchant_id = db.Column(db.Integer, db.ForeignKey("merchants.id"), nullable=True, index=True)

    # Token hash (never store plaintext tokens!)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)  # IPv6 max length

    user = db.relationship("User", backref=db.backref("session_tokens", lazy=True))
    merchant = db.relationship("Merchant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "merchant_id": self.merchant_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
            "revoked_at": to_utc_z(self.revoked_at) if self.revoked_at else None,
        }
