# Overview: Atomic per-merchant numbering for orders and returns.

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence
from ..validation import ValidationError


DOCUMENT_TYPE_ORDER = "ORDER"
DOCUMENT_TYPE_RETURN = "RETURN"


def next_document_number(
    *,
    merchant_id: int,
    document_type: str,
    prefix: str,
    pad: int = 6,
) -> str:
    """
    Allocate the next document number for a merchant/type.

    The increment is a single UPDATE ... SET next_number = next_number + 1,
    so two concurrent requests never read the same value. The sequence row
    is created lazily on first use; it is flushed in the caller's
    transaction and committed together with the document it numbers.
    """
    if not merchant_id:
        raise ValidationError("merchant_id is required")
    if not document_type:
        raise ValidationError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.merchant_id == merchant_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(merchant_id=merchant_id, document_type=document_type)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = DocumentSequence(merchant_id=merchant_id, document_type=document_type, next_number=2)
        db.session.add(seq)
        db.session.flush()
        next_num = 1

    return f"{prefix}-{merchant_id:03d}-{next_num:0{pad}d}"
