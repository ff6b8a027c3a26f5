# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, g, current_app

from .responses import error_response
from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require authentication and establish the actor context.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.actor: ActorContext(user_id, role, merchant_id) passed to services
    - g.session_context: The full SessionContext object
    - g.token: The raw bearer token (logout revokes it)

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account or merchant deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return error_response("Authentication required", 401)

        context = session_service.validate_session(token)
        if not context:
            return error_response("Invalid or expired token", 401)

        g.current_user = context.user
        g.actor = context.actor
        g.session_context = context
        g.token = token

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require one of the given roles. Use after @require_auth.

    Tenant checks on individual records happen in the services; this only
    gates the endpoint.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            actor = getattr(g, "actor", None)
            if actor is None:
                return error_response("Authentication required", 401)

            if actor.role not in roles:
                current_app.logger.warning(
                    "Role denied: user=%s role=%s path=%s method=%s",
                    actor.user_id, actor.role, request.path, request.method,
                )
                return error_response("Forbidden", 403)

            return f(*args, **kwargs)

        return decorated_function

    return decorator
