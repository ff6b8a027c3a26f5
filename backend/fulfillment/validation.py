from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping

from fulfillment.time_utils import parse_iso_datetime


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


class DomainError(ValueError):
    """
    Base class for errors raised by the service layer.

    Every subclass carries the HTTP status and a stable machine code so the
    request boundary can map any service failure to the JSON envelope the
    same way.
    """
    status_code = 400
    code = "DOMAIN_ERROR"

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(DomainError):
    """400-level input problem."""
    status_code = 400
    code = "VALIDATION_ERROR"


class ForbiddenError(DomainError):
    """403: actor's role or tenant does not allow the operation."""
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(DomainError):
    """404: referenced entity does not exist."""
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(DomainError):
    """409-level business rule conflict (e.g., stale version, duplicate stock row)."""
    status_code = 409
    code = "CONFLICT"


# =============================================================================
# PAYLOAD COERCION
# =============================================================================

def require_fields(data: Mapping[str, Any] | None, *fields: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValidationError("JSON object body required")
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return data


def coerce_int(value: Any, field: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    # Reject bools (subclass of int), floats and decimal strings
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "." in stripped or "e" in stripped.lower():
            raise ValidationError(f"{field} must be an integer")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be at least {minimum}")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must be at most {maximum}")
    return result


def coerce_cents(value: Any, field: str, *, allow_zero: bool = True) -> int:
    cents = coerce_int(value, field, minimum=0, maximum=MAX_PRICE_CENTS)
    if not allow_zero and cents == 0:
        raise ValidationError(f"{field} must be positive")
    return cents


def coerce_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return value.strip().lower() == "true"
    raise ValidationError(f"{field} must be a boolean")


def coerce_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    allowed = list(choices)
    if not isinstance(value, str) or value.strip().upper() not in allowed:
        raise ValidationError(
            f"Invalid {field} '{value}'. Must be one of: {', '.join(allowed)}"
        )
    return value.strip().upper()


def coerce_datetime(value: Any, field: str) -> datetime | None:
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 datetime")


def optional_text(value: Any, field: str, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    stripped = value.strip()
    if not stripped:
        return None
    if max_length is not None and len(stripped) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return stripped


def parse_pagination(args: Mapping[str, Any], *, default_limit: int = 50, max_limit: int = 200) -> tuple[int, int]:
    """(limit, offset) from query-string args."""
    limit = coerce_int(args.get("limit", default_limit), "limit", minimum=1, maximum=max_limit)
    offset = coerce_int(args.get("offset", 0), "offset", minimum=0)
    return limit, offset


def parse_version_header(value: str | None) -> int | None:
    """
    Read an optimistic-lock version from an If-Match header.

    Accepts 3, "3" and W/"3".
    """
    if value is None or not value.strip():
        return None
    token = value.strip()
    if token.startswith("W/"):
        token = token[2:]
    return coerce_int(token.strip('"'), "If-Match", minimum=1)
