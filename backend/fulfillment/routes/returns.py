# Overview: Flask API routes for returns; parses input and returns the JSON envelope.

"""
Return API Routes

Create, decide on and (platform admin only) delete customer returns.
Restocking happens inside the status update when a restockable return
reaches RESTOCKED.
"""

from flask import Blueprint, request, current_app, g

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_PLATFORM_ADMIN, ROLE_MERCHANT_ADMIN, ROLE_MERCHANT_STAFF
from ..responses import success_response, error_response, domain_error_response, paginated
from ..services import return_service
from ..validation import DomainError, coerce_int, parse_pagination, parse_version_header, require_fields


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")

RETURN_READ_ROLES = (ROLE_PLATFORM_ADMIN, ROLE_MERCHANT_ADMIN, ROLE_MERCHANT_STAFF)


@returns_bp.get("")
@require_auth
@require_role(*RETURN_READ_ROLES)
def list_returns_route():
    try:
        limit, offset = parse_pagination(request.args)
        order_id = request.args.get("order_id")
        returns, total = return_service.list_returns(
            g.actor,
            status=request.args.get("status"),
            order_id=coerce_int(order_id, "order_id") if order_id else None,
            limit=limit,
            offset=offset,
        )
        return success_response(paginated([r.to_dict(include_items=False) for r in returns], total, limit, offset))
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list returns")
        return error_response("Internal server error", 500)


@returns_bp.post("")
@require_auth
@require_role(*RETURN_READ_ROLES)
def create_return_route():
    """
    Create a return for an order.

    Request body:
    {
        "order_id": 1,
        "reason": "DAMAGED",
        "description": "Box crushed",        // optional
        "refund_amount_cents": 250000,       // optional
        "restockable": true,                 // optional
        "items": [{"order_item_id": 4, "quantity": 1, "condition": "DAMAGED"}]
    }
    """
    try:
        data = request.get_json(silent=True)
        require_fields(data, "order_id", "reason", "items")

        return_doc = return_service.create_return(
            coerce_int(data["order_id"], "order_id", minimum=1),
            g.actor,
            data["reason"],
            data["items"],
            description=data.get("description"),
            refund_amount_cents=data.get("refund_amount_cents"),
            restockable=data.get("restockable", False),
        )
        return success_response(return_doc.to_dict(), 201, message="Return created successfully")
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create return")
        return error_response("Internal server error", 500)


@returns_bp.get("/<int:return_id>")
@require_auth
@require_role(*RETURN_READ_ROLES)
def get_return_route(return_id: int):
    try:
        return_doc = return_service.get_return(return_id, g.actor)
        return success_response(return_doc.to_dict())
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get return")
        return error_response("Internal server error", 500)


@returns_bp.put("/<int:return_id>")
@returns_bp.post("/<int:return_id>/status")
@require_auth
@require_role(ROLE_PLATFORM_ADMIN, ROLE_MERCHANT_ADMIN)
def update_return_route(return_id: int):
    """
    Update a return's status and decision fields.

    Request body (all optional):
    {
        "status": "RESTOCKED",
        "refund_amount_cents": 250000,
        "restockable": true,
        "notes": "Checked by QA",
        "version": 2                // or If-Match header
    }
    """
    try:
        data = require_fields(request.get_json(silent=True) or {})

        expected_version = parse_version_header(request.headers.get("If-Match"))
        if expected_version is None and data.get("version") is not None:
            expected_version = coerce_int(data["version"], "version", minimum=1)

        return_doc = return_service.update_return_status(
            return_id,
            g.actor,
            new_status=data.get("status"),
            refund_amount_cents=data.get("refund_amount_cents"),
            restockable=data.get("restockable"),
            notes=data.get("notes"),
            expected_version=expected_version,
        )
        return success_response(return_doc.to_dict(), message="Return updated successfully")
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update return")
        return error_response("Internal server error", 500)


@returns_bp.delete("/<int:return_id>")
@require_auth
@require_role(ROLE_PLATFORM_ADMIN)
def delete_return_route(return_id: int):
    try:
        return_service.delete_return(return_id, g.actor)
        return success_response(None, message="Return deleted successfully")
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete return")
        return error_response("Internal server error", 500)
