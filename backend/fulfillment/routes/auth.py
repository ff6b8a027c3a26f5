# Overview: Flask API routes for login, logout and the current user.

"""
Authentication API routes

Accounts are created by operators (CLI `flask users create`); there is no
self-registration endpoint.
"""

from flask import Blueprint, request, current_app, g

from ..services import auth_service
from ..services import session_service
from ..decorators import require_auth
from ..responses import success_response, error_response


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate user and create session token.

    Returns user info and session token on success.
    Token must be included in Authorization header for protected routes.
    """
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data, dict):
            return error_response("JSON object body required", 400)
        identifier = data.get("username") or data.get("email") or data.get("identifier")
        password = data.get("password")

        if not identifier or not password:
            return error_response("username/email and password required", 400)

        user = auth_service.authenticate(identifier, password)
        if not user:
            current_app.logger.info("Failed login for %s from %s", identifier, request.remote_addr)
            return error_response("Invalid credentials", 401)

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return success_response(
            {
                "user": user.to_dict(),
                "token": token,
                "session": session.to_dict(),
                "merchant_id": session.merchant_id,
            },
            message="Login successful",
        )

    except Exception:
        current_app.logger.exception("Failed to login user")
        return error_response("Internal server error", 500)


@auth_bp.post("/logout")
@require_auth
def logout_route():
    """Revoke the bearer token used for this request."""
    try:
        session_service.revoke_session(g.token, reason="User logout")
        return success_response(None, message="Logged out")
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return error_response("Internal server error", 500)


@auth_bp.get("/me")
@require_auth
def me_route():
    user = g.current_user
    data = user.to_dict()
    data["merchant"] = user.merchant.to_dict() if user.merchant else None
    return success_response(data)
