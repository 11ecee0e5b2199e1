# Overview: Human-readable document numbers (orders, payouts, returns, ledger entries).

from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence

PREFIX_CONFIG_KEYS = {
    "order": "ORDER_NUMBER_PREFIX",
    "payout": "PAYOUT_NUMBER_PREFIX",
    "return": "RETURN_NUMBER_PREFIX",
    "transaction": "TRANSACTION_NUMBER_PREFIX",
}


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _bump(document_type: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(DocumentSequence.document_type == document_type)
        .values(next_number=DocumentSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type)
        .scalar()
    )
    return current - 1


def next_document_number(document_type: str, *, pad: int = 6) -> str:
    """
    Allocate the next number for a document type, e.g. "SBV-000042".

    Runs inside the caller's transaction, so a rolled-back order never
    consumes a number that a committed one later reuses. The first
    allocation for a type inserts the counter row under a savepoint.
    """
    config_key = PREFIX_CONFIG_KEYS.get(document_type)
    if not config_key:
        raise DocumentSequenceError(f"Unknown document type: {document_type}")
    prefix = current_app.config[config_key]

    next_num = _bump(document_type)
    if next_num is None:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            next_num = 1
        except IntegrityError:
            next_num = _bump(document_type)
            if next_num is None:
                raise

    return f"{prefix}-{next_num:0{pad}d}"
