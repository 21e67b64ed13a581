"""Human-readable order numbers: ``OSC-<year>-<sequence>``.

The sequence is a per-year counter row bumped with an UPDATE inside the
transaction that inserts the order, so concurrent checkouts queue on that row
and each sees its own value. The unique index on ``orders.order_number`` is
the backstop; callers retry the whole insert on ``IntegrityError``.
"""

import secrets
import string
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from storefront.domain.models import OrderNumberCounter, utcnow

ORDER_PREFIX = "OSC"
_BASE36 = string.digits + string.ascii_uppercase


def format_order_number(year: int, sequence: int) -> str:
    return f"{ORDER_PREFIX}-{year}-{sequence:04d}"


def next_order_number(db: Session, now: Optional[datetime] = None) -> str:
    """Reserve the next number for ``now``'s year. Does not commit."""
    year = (now or utcnow()).year
    bumped = db.execute(
        update(OrderNumberCounter)
        .where(OrderNumberCounter.year == year)
        .values(last_value=OrderNumberCounter.last_value + 1)
        .execution_options(synchronize_session=False)
    ).rowcount
    if bumped:
        sequence = db.execute(
            select(OrderNumberCounter.last_value).where(OrderNumberCounter.year == year)
        ).scalar_one()
    else:
        # First order of the year; a racing insert fails on the primary key
        db.add(OrderNumberCounter(year=year, last_value=1))
        db.flush()
        sequence = 1
    return format_order_number(year, sequence)


def _base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits)) or "0"


def offline_order_number(now: Optional[datetime] = None) -> str:
    """Number for when the database is unavailable.

    The ``X`` marker keeps it disjoint from counter numbers, which are all digits.
    """
    now = now or utcnow()
    millis = int(now.timestamp() * 1000)
    return f"{ORDER_PREFIX}-{now.year}-X{_base36(millis)}{secrets.token_hex(2).upper()}"
