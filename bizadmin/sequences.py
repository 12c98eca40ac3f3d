from sqlalchemy.orm import Session

from . import models

ORDER_SEQUENCE = ("sales_order", "SO")
INVOICE_SEQUENCE = ("invoice", "INV")


def next_number(db: Session, sequence) -> str:
    """Increment a locked counter row and format it, e.g. SO-000042.

    Runs inside the caller's transaction so the number is only consumed
    when the row it labels is committed.
    """
    name, prefix = sequence
    row = (
        db.query(models.NumberSequence)
        .filter(models.NumberSequence.name == name)
        .with_for_update()
        .one_or_none()
    )
    if row is None:
        row = models.NumberSequence(name=name, value=0)
        db.add(row)
    row.value += 1
    db.flush()
    return f"{prefix}-{row.value:06d}"
