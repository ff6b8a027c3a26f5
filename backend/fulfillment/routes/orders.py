# Overview: Flask API routes for orders; parses input and returns the JSON envelope.

from flask import Blueprint, request, current_app, g

from ..decorators import require_auth, require_role
from ..models.auth import ROLES, ROLE_PLATFORM_ADMIN, ROLE_MERCHANT_ADMIN, ROLE_MERCHANT_STAFF
from ..responses import success_response, error_response, domain_error_response, paginated
from ..services import order_service
from ..validation import DomainError, coerce_int, parse_pagination, parse_version_header, require_fields


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_payload(order) -> dict:
    data = order.to_dict(include_items=True, include_history=True)
    data["next_statuses"] = order_service.next_statuses(order)
    return data


@orders_bp.get("")
@require_auth
@require_role(*ROLES)
def list_orders_route():
    try:
        limit, offset = parse_pagination(request.args)
        warehouse_id = request.args.get("warehouse_id")
        orders, total = order_service.list_orders(
            g.actor,
            status=request.args.get("status"),
            warehouse_id=coerce_int(warehouse_id, "warehouse_id") if warehouse_id else None,
            payment_method=request.args.get("payment_method"),
            search=request.args.get("search"),
            limit=limit,
            offset=offset,
        )
        return success_response(paginated([o.to_dict() for o in orders], total, limit, offset))
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return error_response("Internal server error", 500)


@orders_bp.post("")
@require_auth
@require_role(ROLE_PLATFORM_ADMIN, ROLE_MERCHANT_ADMIN, ROLE_MERCHANT_STAFF)
def create_order_route():
    """
    Create an order.

    Request body:
    {
        "customer_name": "Ada Obi",
        "customer_phone": "+2348000000000",
        "shipping_address": {"street": "...", "city": "...", "state": "..."},
        "payment_method": "COD",
        "delivery_fee_cents": 150000,
        "items": [{"product_id": 1, "quantity": 2}]
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.create_order(g.actor, data)
        return success_response(_order_payload(order), 201, message="Order created successfully")
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return error_response("Internal server error", 500)


@orders_bp.get("/<int:order_id>")
@require_auth
@require_role(*ROLES)
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id, g.actor)
        return success_response(_order_payload(order))
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get order")
        return error_response("Internal server error", 500)


@orders_bp.put("/<int:order_id>")
@require_auth
@require_role(*ROLES)
def update_order_status_route(order_id: int):
    """
    Move an order to a new status.

    Request body:
    {
        "status": "SHIPPED",
        "notes": "Handed to rider",         // optional
        "tracking_number": "TRK123",        // optional
        "expected_delivery": "2024-05-02T12:00:00Z",  // optional
        "version": 3                        // optional, or If-Match header
    }
    """
    try:
        data = require_fields(request.get_json(silent=True) or {})

        expected_version = parse_version_header(request.headers.get("If-Match"))
        if expected_version is None and data.get("version") is not None:
            expected_version = coerce_int(data["version"], "version", minimum=1)

        order = order_service.transition_status(
            order_id,
            g.actor,
            data.get("status"),
            notes=data.get("notes"),
            tracking_number=data.get("tracking_number"),
            expected_delivery=data.get("expected_delivery"),
            expected_version=expected_version,
        )
        return success_response(_order_payload(order), message="Order status updated successfully")
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return error_response("Internal server error", 500)
