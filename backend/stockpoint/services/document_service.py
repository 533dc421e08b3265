# Overview: Per-site document number allocation (bill numbers).

from __future__ import annotations

from sqlalchemy import update

from ..extensions import db
from ..models import DocumentSequence


DOCUMENT_SALE = "SALE"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def format_document_number(prefix: str, number: int, pad: int = 4) -> str:
    return f"{prefix}{number:0{pad}d}"


def next_document_number(
    *,
    site_id: int,
    document_type: str,
    prefix: str,
    pad: int = 4,
) -> str:
    """
    Atomically allocate the next document number for a site/type.

    The counter row is advanced with a relative UPDATE inside the caller's
    transaction; the number is only consumed if that transaction commits.
    Flushes, never commits.
    """
    if not site_id:
        raise DocumentSequenceError("site_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.site_id == site_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if not result.rowcount:
        # First number for this site/type. A concurrent first insert loses on
        # the unique constraint and surfaces as IntegrityError.
        db.session.add(DocumentSequence(site_id=site_id, document_type=document_type, next_number=2))
        db.session.flush()
        return format_document_number(prefix, 1, pad)

    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(site_id=site_id, document_type=document_type)
        .scalar()
    )
    return format_document_number(prefix, current - 1, pad)
