# Overview: Service-layer operations for document numbering; allocates per-org PO/SO/adjustment numbers.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ValidationError
from ..models import DocumentSequence
from .concurrency import ledger_transaction


DOCUMENT_PREFIXES = {
    "purchase_order": "PO",
    "sales_order": "SO",
    "adjustment": "ADJ",
}


def _sequence_key(org_id: int, document_type: str) -> tuple:
    return ("document_sequence", int(org_id), document_type)


def next_document_number(
    *,
    org_id: int,
    document_type: str,
    prefix: str | None = None,
    pad: int = 4,
) -> str:
    """
    Atomically allocate the next document number for an org/type.

    Runs inside the caller's ledger transaction when there is one, so a
    rolled-back document also gives its number back.

    Returns:
        e.g. "PO-0001"
    """
    if not org_id:
        raise ValidationError("org_id is required")
    if not document_type:
        raise ValidationError("document_type is required")
    if prefix is None:
        prefix = DOCUMENT_PREFIXES.get(document_type)
        if prefix is None:
            raise ValidationError(f"Unknown document type '{document_type}'")

    def _op() -> str:
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
            try:
                with db.session.begin_nested():
                    db.session.add(
                        DocumentSequence(org_id=org_id, document_type=document_type, next_number=2)
                    )
                return f"{prefix}-{1:0{pad}d}"
            except IntegrityError:
                # Another process created the row first
                result = db.session.execute(stmt)
                if not result.rowcount:
                    raise

        current = (
            db.session.query(DocumentSequence.next_number)
            .filter_by(org_id=org_id, document_type=document_type)
            .scalar()
        )
        return f"{prefix}-{current - 1:0{pad}d}"

    return ledger_transaction(_op, keys=[_sequence_key(org_id, document_type)])
