# Overview: Service-layer operations for statement numbering.

from __future__ import annotations

from datetime import date

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from .concurrency import run_with_retry


class DocumentSequenceError(Exception):
    """Raised when document sequence operations fail."""
    pass


def _current_number(document_type: str, sequence_date: str) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(document_type=document_type, sequence_date=sequence_date)
        .scalar()
    )


def next_document_number(
    *,
    document_type: str,
    prefix: str,
    day: date,
    pad: int = 4,
) -> str:
    """
    Atomically allocate the next number for a document type on a day.

    Format: {prefix}-YYYYMMDD-NNNN, e.g. RS-20250314-0001. The counter
    restarts every day. Call before adding the document itself to the
    session: a lost insert race rolls the session back.
    """
    if not document_type:
        raise DocumentSequenceError("document_type is required")
    sequence_date = day.strftime("%Y%m%d")

    def _op() -> str:
        stmt = (
            update(DocumentSequence)
            .where(
                DocumentSequence.document_type == document_type,
                DocumentSequence.sequence_date == sequence_date,
            )
            .values(next_number=DocumentSequence.next_number + 1)
        )

        result = db.session.execute(stmt)
        if result.rowcount:
            db.session.flush()
            next_num = _current_number(document_type, sequence_date) - 1
        else:
            seq = DocumentSequence(document_type=document_type, sequence_date=sequence_date, next_number=2)
            db.session.add(seq)
            try:
                db.session.flush()
                next_num = 1
            except IntegrityError:
                db.session.rollback()
                result = db.session.execute(stmt)
                if not result.rowcount:
                    raise
                db.session.flush()
                next_num = _current_number(document_type, sequence_date) - 1

        return f"{prefix}-{sequence_date}-{next_num:0{pad}d}"

    return run_with_retry(_op)
