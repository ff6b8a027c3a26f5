# Overview: Flask API routes for warehouse stock and its movement ledger.

from flask import Blueprint, request, current_app, g

from ..decorators import require_auth, require_role
from ..models.auth import ROLES, ROLE_PLATFORM_ADMIN, ROLE_WAREHOUSE_STAFF
from ..responses import success_response, error_response, domain_error_response, paginated
from ..services import stock_service
from ..validation import DomainError, coerce_bool, coerce_int, parse_pagination, require_fields


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("")
@require_auth
@require_role(*ROLES)
def list_stock_route():
    try:
        limit, offset = parse_pagination(request.args)
        warehouse_id = request.args.get("warehouse_id")
        product_id = request.args.get("product_id")
        low_stock = request.args.get("low_stock")
        items, total = stock_service.list_stock_items(
            g.actor,
            warehouse_id=coerce_int(warehouse_id, "warehouse_id") if warehouse_id else None,
            product_id=coerce_int(product_id, "product_id") if product_id else None,
            low_stock=coerce_bool(low_stock, "low_stock") if low_stock else False,
            limit=limit,
            offset=offset,
        )
        return success_response(paginated([i.to_dict() for i in items], total, limit, offset))
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stock")
        return error_response("Internal server error", 500)


@stock_bp.post("")
@require_auth
@require_role(ROLE_PLATFORM_ADMIN, ROLE_WAREHOUSE_STAFF)
def create_stock_route():
    """
    Register stock for a product in a warehouse.

    Request body:
    {
        "product_id": 1,
        "warehouse_id": 1,
        "quantity": 100,
        "reorder_level": 10,       // optional
        "batch_number": "B-2024-01",  // optional
        "location": "A-01-03"      // optional
    }
    """
    try:
        data = request.get_json(silent=True)
        stock_item = stock_service.create_stock_item(g.actor, data)
        return success_response(stock_item.to_dict(), 201, message="Stock item created successfully")
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create stock item")
        return error_response("Internal server error", 500)


@stock_bp.post("/<int:stock_item_id>/adjust")
@require_auth
@require_role(ROLE_PLATFORM_ADMIN, ROLE_WAREHOUSE_STAFF)
def adjust_stock_route(stock_item_id: int):
    """
    Request body:
    {
        "quantity_delta": -2,
        "note": "Damaged in storage"   // optional
    }
    """
    try:
        data = request.get_json(silent=True)
        require_fields(data, "quantity_delta")
        stock_item = stock_service.manual_adjustment(
            stock_item_id,
            g.actor,
            coerce_int(data["quantity_delta"], "quantity_delta"),
            note=data.get("note"),
        )
        return success_response(stock_item.to_dict(), message="Stock adjusted successfully")
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return error_response("Internal server error", 500)


@stock_bp.get("/<int:stock_item_id>/movements")
@require_auth
@require_role(*ROLES)
def stock_movements_route(stock_item_id: int):
    try:
        movements = stock_service.get_movements(stock_item_id, g.actor)
        return success_response([m.to_dict() for m in movements])
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return error_response("Internal server error", 500)
