# Overview: Read-only audit trail endpoint.

from flask import Blueprint, request, current_app, g

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_PLATFORM_ADMIN, ROLE_MERCHANT_ADMIN
from ..responses import success_response, error_response, domain_error_response, paginated
from ..services import audit_service
from ..validation import DomainError, coerce_int, parse_pagination


audit_logs_bp = Blueprint("audit_logs", __name__, url_prefix="/api/audit-logs")


@audit_logs_bp.get("")
@require_auth
@require_role(ROLE_PLATFORM_ADMIN, ROLE_MERCHANT_ADMIN)
def list_audit_logs_route():
    """Platform admins see every entry; merchant admins their merchant's."""
    try:
        limit, offset = parse_pagination(request.args)
        entity_id = request.args.get("entity_id")
        entries, total = audit_service.list_audit_logs(
            g.actor,
            entity_type=request.args.get("entity_type"),
            entity_id=coerce_int(entity_id, "entity_id") if entity_id else None,
            action=request.args.get("action"),
            limit=limit,
            offset=offset,
        )
        return success_response(paginated([e.to_dict() for e in entries], total, limit, offset))
    except DomainError as e:
        return domain_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list audit logs")
        return error_response("Internal server error", 500)
