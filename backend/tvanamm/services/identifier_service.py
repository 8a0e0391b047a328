# Overview: Allocates the opaque identifiers (order numbers, invoice numbers, TVANAMM ids).

"""
Identifiers are produced here and only stored by the order, loyalty and
invoice code, which never parses them.

Each allocation runs in its own short transaction and commits immediately,
like a database sequence: a number handed to a checkout that later rolls
back is simply skipped.
"""

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import DocumentSequence
from .concurrency import execute_guarded, run_with_retry


ORDER_NUMBER = ("ORDER", "TVO", 6)
INVOICE_NUMBER = ("INVOICE", "TVI", 6)
TVANAMM_ID = ("TVANAMM_ID", "TV", 4)


class IdentifierError(Exception):
    """Raised when identifier allocation fails."""


def next_identifier(document_type: str, prefix: str, pad: int = 6) -> str:
    """
    Atomically allocate the next identifier for a document type.

    The UPDATE ... SET next_number = next_number + 1 is the increment and
    the lock; the first allocation for a type races on the unique
    document_type constraint instead.
    """
    if not document_type:
        raise IdentifierError("document_type is required")

    def _current() -> int:
        return (
            db.session.query(DocumentSequence.next_number)
            .filter_by(document_type=document_type)
            .scalar()
        )

    def _op() -> str:
        stmt = (
            update(DocumentSequence)
            .where(DocumentSequence.document_type == document_type)
            .values(next_number=DocumentSequence.next_number + 1)
        )

        if execute_guarded(stmt):
            number = _current() - 1
        else:
            db.session.add(DocumentSequence(document_type=document_type, next_number=2))
            try:
                db.session.flush()
                number = 1
            except IntegrityError:
                db.session.rollback()
                if not execute_guarded(stmt):
                    raise IdentifierError(f"Could not allocate {document_type} identifier")
                number = _current() - 1

        db.session.commit()
        return f"{prefix}-{number:0{pad}d}"

    return run_with_retry(_op)


def next_order_number() -> str:
    return next_identifier(*ORDER_NUMBER)


def next_invoice_number() -> str:
    return next_identifier(*INVOICE_NUMBER)


def next_tvanamm_id() -> str:
    return next_identifier(*TVANAMM_ID)
