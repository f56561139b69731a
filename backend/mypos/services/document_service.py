# Overview: Invoice and purchase-order numbering backed by atomic per-store daily sequences.

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import period_key


INVOICE = "INVOICE"
PURCHASE = "PURCHASE"


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _advance(store_id: int, document_type: str, period: str) -> int | None:
    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.store_id == store_id,
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = db.session.execute(
        select(DocumentSequence.next_number).where(
            DocumentSequence.store_id == store_id,
            DocumentSequence.document_type == document_type,
            DocumentSequence.period == period,
        )
    ).scalar_one()
    return current - 1


def allocate_number(*, store_id: int, document_type: str, issued_at: datetime | None = None) -> tuple[str, int]:
    """
    Allocate the next (period, number) for a store/type/day.

    Must run inside the caller's unit of work: the increment commits or rolls
    back together with the document that uses it, so numbers are never burnt
    by a failed sale.
    """
    if not store_id:
        raise DocumentSequenceError("store_id is required")
    if not document_type:
        raise DocumentSequenceError("document_type is required")

    period = period_key(issued_at)

    number = _advance(store_id, document_type, period)
    if number is not None:
        return period, number

    # First document of the day for this store: create the counter under a
    # savepoint so a concurrent creator does not abort the whole unit of work.
    try:
        with db.session.begin_nested():
            db.session.add(
                DocumentSequence(store_id=store_id, document_type=document_type, period=period, next_number=2)
            )
        return period, 1
    except IntegrityError:
        number = _advance(store_id, document_type, period)
        if number is None:
            raise
        return period, number


def next_invoice_number(store_id: int, issued_at: datetime | None = None) -> str:
    """INV-YYYYMMDD-SSSS-NNNNN; unique because (store, day, sequence) is unique."""
    prefix = current_app.config.get("INVOICE_PREFIX", "INV")
    period, number = allocate_number(store_id=store_id, document_type=INVOICE, issued_at=issued_at)
    return f"{prefix}-{period}-{store_id:04d}-{number:05d}"


def next_purchase_number(store_id: int, issued_at: datetime | None = None) -> str:
    prefix = current_app.config.get("PURCHASE_PREFIX", "PO")
    period, number = allocate_number(store_id=store_id, document_type=PURCHASE, issued_at=issued_at)
    return f"{prefix}-{period}-{store_id:04d}-{number:04d}"
