# Overview: JSON envelope used by every API response.

from flask import jsonify

from .validation import DomainError


def success_response(data=None, status: int = 200, message: str | None = None):
    """{"success": true, "data": ..., "message"?: ...}"""
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return jsonify(body), status


def error_response(error: str, status: int, *, details: dict | None = None, code: str | None = None):
    """{"success": false, "error": ...}"""
    body = {"success": False, "error": error}
    if code:
        body["code"] = code
    if details:
        body["details"] = details
    return jsonify(body), status


def domain_error_response(exc: DomainError):
    return error_response(exc.message, exc.status_code, details=exc.details, code=exc.code)


def paginated(items: list, total: int, limit: int, offset: int) -> dict:
    return {
        "items": items,
        "pagination": {"total": total, "limit": limit, "offset": offset},
    }
