# Overview: Per-organization document number allocation.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence


# document_type -> number prefix
DOCUMENT_PREFIXES = {
    "customer": "CUST",
    "sales_order": "SO",
    "purchase_order": "PO",
    "credit_transaction": "CRT",
    "credit_payment": "CRP",
}


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _bump(org_id: int, document_type: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.org_id == org_id,
            DocumentSequence.document_type == document_type,
        )
        .values(next_number=DocumentSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(org_id=org_id, document_type=document_type)
        .scalar()
    )
    return current - 1


def next_document_number(
    *,
    org_id: int,
    document_type: str,
    prefix: str | None = None,
    pad: int = 5,
) -> str:
    """
    Allocate the next document number for an organization/type.

    Runs inside the caller's transaction. The UPDATE takes the row lock; the
    first number of a type is inserted under a savepoint so a concurrent
    insert of the same sequence only rolls back the savepoint.
    """
    if not org_id:
        raise DocumentSequenceError("org_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    prefix = prefix or DOCUMENT_PREFIXES.get(document_type)
    if not prefix:
        raise DocumentSequenceError(f"No prefix configured for {document_type}")

    next_num = _bump(org_id, document_type)
    if next_num is None:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(org_id=org_id, document_type=document_type, next_number=2))
            next_num = 1
        except IntegrityError:
            next_num = _bump(org_id, document_type)
            if next_num is None:
                raise

    return f"{prefix}-{next_num:0{pad}d}"
