# Overview: Service-layer operations for invoice numbering.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import InvoiceSequence
from ..errors import ValidationError

DEFAULT_INVOICE_PREFIX = "INV"


def next_invoice_id(*, prefix: str = DEFAULT_INVOICE_PREFIX, pad: int = 6) -> str:
    """
    Atomically allocate the next invoice id (e.g. "INV-000042").

    Must run inside the caller's write transaction: the counter increment
    commits or rolls back together with the order that uses it. The orders
    table's unique constraint on invoice_id remains the final backstop.
    """
    if not prefix:
        raise ValidationError("invoice prefix is required")

    stmt = (
        update(InvoiceSequence)
        .where(InvoiceSequence.prefix == prefix)
        .values(next_number=InvoiceSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(InvoiceSequence.next_number)
            .filter_by(prefix=prefix)
            .scalar()
        )
        next_num = current - 1
    else:
        seq = InvoiceSequence(prefix=prefix, next_number=2)
        try:
            with db.session.begin_nested():
                db.session.add(seq)
            next_num = 1
        except IntegrityError:
            # Another writer created the row first; take the increment path
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            current = (
                db.session.query(InvoiceSequence.next_number)
                .filter_by(prefix=prefix)
                .scalar()
            )
            next_num = current - 1

    return f"{prefix}-{next_num:0{pad}d}"
