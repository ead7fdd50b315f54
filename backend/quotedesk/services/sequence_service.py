# Overview: Order number allocation backed by a per-year counter row.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import OrderNumberSequence
from ..time_utils import utcnow


ORDER_NUMBER_PREFIX = "Q"


def format_order_number(year: int, number: int) -> str:
    return f"{ORDER_NUMBER_PREFIX}-{year}-{number:05d}"


def next_order_number(year: int | None = None) -> str:
    """
    Allocate the next order number for a year, e.g. "Q-2026-00042".

    Runs inside the caller's transaction (no commit). The counter row is
    bumped with a single UPDATE so concurrent allocations serialize on it.
    """
    if year is None:
        year = utcnow().year

    stmt = (
        update(OrderNumberSequence)
        .where(OrderNumberSequence.year == year)
        .values(next_number=OrderNumberSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        current = (
            db.session.query(OrderNumberSequence.next_number)
            .filter_by(year=year)
            .scalar()
        )
        return format_order_number(year, current - 1)

    seq = OrderNumberSequence(year=year, next_number=2)
    try:
        with db.session.begin_nested():
            db.session.add(seq)
        return format_order_number(year, 1)
    except IntegrityError:
        # Another writer created the row first
        db.session.execute(stmt)
        current = (
            db.session.query(OrderNumberSequence.next_number)
            .filter_by(year=year)
            .scalar()
        )
        return format_order_number(year, current - 1)
