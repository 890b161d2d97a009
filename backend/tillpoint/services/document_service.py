# Overview: Sequential invoice number allocation.

from __future__ import annotations

import re

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError

from ..extensions import db
from ..models import InvoiceSequence

_INVOICE_RE = re.compile(r"^(?P<prefix>[A-Z]{2,8})-(?P<number>\d{4,6})$")


class DocumentSequenceError(Exception):
    """Raised when an invoice number cannot be allocated."""


def _current_next(prefix: str) -> int:
    return (
        db.session.query(InvoiceSequence.next_number)
        .filter_by(prefix=prefix)
        .scalar()
    )


def _allocate(prefix: str, start: int) -> int:
    stmt = (
        update(InvoiceSequence)
        .where(InvoiceSequence.prefix == prefix)
        .values(next_number=InvoiceSequence.next_number + 1)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        db.session.flush()
        return _current_next(prefix) - 1

    seq = InvoiceSequence(prefix=prefix, next_number=start + 1)
    db.session.add(seq)
    try:
        db.session.flush()
        return start
    except IntegrityError:
        # Another till created the row first; take the next number from it
        db.session.rollback()
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise
        db.session.flush()
        return _current_next(prefix) - 1


def next_invoice_number(prefix: str | None = None, *, attempts: int = 3) -> str:
    """
    Atomically allocate the next invoice number, e.g. "INV-1000".

    The counter row is committed immediately: a sale that later fails
    leaves a gap rather than handing the same number out twice.
    """
    prefix = (prefix or current_app.config["INVOICE_PREFIX"]).strip().upper()
    if not prefix:
        raise DocumentSequenceError("invoice prefix is required")
    start = int(current_app.config["INVOICE_START_NUMBER"])

    for attempt in range(attempts):
        try:
            number = _allocate(prefix, start)
            db.session.commit()
            return f"{prefix}-{number}"
        except OperationalError:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
    raise DocumentSequenceError("could not allocate invoice number")


def is_valid_invoice_number(value: str | None) -> bool:
    return bool(value) and _INVOICE_RE.match(value) is not None


def peek_next_invoice_number(prefix: str | None = None) -> str:
    """Next number that would be allocated, without allocating it."""
    prefix = (prefix or current_app.config["INVOICE_PREFIX"]).strip().upper()
    current = _current_next(prefix)
    if current is None:
        current = int(current_app.config["INVOICE_START_NUMBER"])
    return f"{prefix}-{current}"
