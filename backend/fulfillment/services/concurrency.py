# Overview: Row locking and optimistic-version helpers shared by the services.

from __future__ import annotations

from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConflictError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def check_version(entity, expected_version: int | None, label: str) -> None:
    """Reject the write when the caller's version no longer matches the row."""
    if expected_version is None:
        return
    if entity.version_id != expected_version:
        raise ConflictError(
            f"{label} was modified by another request "
            f"(expected version {expected_version}, current version {entity.version_id})",
            details={"current_version": entity.version_id},
        )


def commit_or_conflict(label: str) -> None:
    """
    Commit the session, turning optimistic-lock failures into ConflictError.

    Any other failure rolls back and propagates unchanged.
    """
    try:
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        raise ConflictError(f"{label} was modified by another request; reload and retry")
    except Exception:
        db.session.rollback()
        raise


def flush_or_conflict(label: str) -> None:
    """Flush pending writes; a stale version row becomes ConflictError."""
    try:
        db.session.flush()
    except StaleDataError:
        db.session.rollback()
        raise ConflictError(f"{label} was modified by another request; reload and retry")
