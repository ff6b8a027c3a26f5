"""
Multi-Tenant Service: Actor Context and Tenant Checks

WHY: Centralize the "who is acting, for which merchant" checks so every
service applies them the same way. Merchants are the tenant boundary;
cross-tenant access must be explicitly denied.

SECURITY INVARIANTS:
1. Every service call receives an explicit ActorContext (never read from globals)
2. Platform admins bypass the merchant check, nobody else does
3. List queries touching merchant-owned data are filtered by the actor's merchant
4. Cross-tenant access attempts are logged

USAGE:
    from fulfillment.services.tenant_service import ActorContext, require_merchant_access

    actor = ActorContext(user_id=7, role="MERCHANT_ADMIN", merchant_id=3)
    require_merchant_access(actor, order.merchant_id, resource=f"order {order.id}")
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import false

from ..models.auth import ROLE_PLATFORM_ADMIN, ROLES
from ..validation import ForbiddenError


@dataclass(frozen=True)
class ActorContext:
    """
    The (user, role, tenant) triple supplied by the session layer.

    Services trust this triple; credential checks happen before it is built.
    """
    user_id: int
    role: str
    merchant_id: int | None = None

    @property
    def is_platform_admin(self) -> bool:
        return self.role == ROLE_PLATFORM_ADMIN

    @classmethod
    def for_user(cls, user) -> "ActorContext":
        return cls(user_id=user.id, role=user.role, merchant_id=user.merchant_id)


def require_role(actor: ActorContext, *roles: str) -> None:
    """Raise ForbiddenError unless the actor holds one of the roles."""
    if actor.role not in ROLES or actor.role not in roles:
        raise ForbiddenError(f"Role {actor.role} is not allowed to perform this action")


def can_access_merchant(actor: ActorContext, merchant_id: int | None) -> bool:
    if actor.is_platform_admin:
        return True
    return actor.merchant_id is not None and actor.merchant_id == merchant_id


def require_merchant_access(actor: ActorContext, merchant_id: int | None, *, resource: str) -> None:
    """
    Validate that the actor may touch data owned by merchant_id.

    SECURITY: Core tenant isolation check. Call this after loading any
    merchant-owned entity and before mutating or returning it.

    Raises:
        ForbiddenError if the actor is neither platform admin nor a member
        of the owning merchant
    """
    if can_access_merchant(actor, merchant_id):
        return

    current_app.logger.warning(
        "Cross-tenant access denied: user=%s role=%s actor_merchant=%s resource=%s owner_merchant=%s",
        actor.user_id,
        actor.role,
        actor.merchant_id,
        resource,
        merchant_id,
    )
    raise ForbiddenError("Forbidden")


def merchant_scoped(query, merchant_column, actor: ActorContext):
    """
    Restrict a query to the actor's merchant.

    Platform admins see every merchant. Actors without a merchant see nothing.

    Usage:
        query = merchant_scoped(db.session.query(Order), Order.merchant_id, actor)
    """
    if actor.is_platform_admin:
        return query
    if actor.merchant_id is None:
        return query.filter(false())
    return query.filter(merchant_column == actor.merchant_id)
