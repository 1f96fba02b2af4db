# services/stock_events.py
"""
Event store queries feeding the reports. Filtering by warehouse, scheme and
period happens here so the reconciler only ever sees the events it should
merge.
"""
from __future__ import annotations

import calendar
from datetime import date, datetime
from typing import List, Optional, Tuple

from sqlalchemy import func

from extensions import db
from models import StockInRecord, StockOutRecord, Warehouse

DIRECTIONS = {
    "in": StockInRecord,
    "out": StockOutRecord,
}


class StockEventQueryError(ValueError):
    pass


def month_bounds(month, year) -> Tuple[date, date]:
    """First and last day of the month; StockEventQueryError on bad input."""
    try:
        m = int(month)
        y = int(year)
    except (TypeError, ValueError):
        raise StockEventQueryError("Month and year are required") from None
    if not 1 <= m <= 12 or y < 1:
        raise StockEventQueryError(f"Invalid period {month!r}/{year!r}")
    last = calendar.monthrange(y, m)[1]
    return date(y, m, 1), date(y, m, last)


def get_warehouse(warehouse_id: int) -> Optional[Warehouse]:
    return db.session.get(Warehouse, warehouse_id)


def _base_query(model, warehouse_id: int | None, scheme: str | None):
    q = model.query.filter(model.is_active.is_(True))
    if warehouse_id is not None:
        q = q.filter(model.warehouse_id == warehouse_id)
    if scheme:
        q = q.filter(func.lower(model.scheme) == scheme.strip().lower())
    return q


def _in_period(model, q, start: date | None, end: date | None):
    """
    Period on the movement date; records without one fall back to the
    day they were created.
    """
    if start is None and end is None:
        return q
    event_day = func.coalesce(model.date, func.date(model.created_at))
    if start is not None:
        q = q.filter(event_day >= start)
    if end is not None:
        q = q.filter(event_day <= end)
    return q


def load_events(
    direction: str,
    warehouse_id: int | None = None,
    scheme: str | None = None,
    start: date | None = None,
    end: date | None = None,
) -> List:
    model = DIRECTIONS.get((direction or "").strip().lower())
    if model is None:
        raise StockEventQueryError(f"Unknown direction {direction!r} (expected 'in' or 'out')")
    q = _in_period(model, _base_query(model, warehouse_id, scheme), start, end)
    return q.order_by(model.created_at.asc(), model.id.asc()).all()


def load_ledger_events(warehouse_id: int, scheme: str | None = None):
    """(inbound, outbound) active events of one warehouse, optionally one scheme/PO."""
    inbound = load_events("in", warehouse_id=warehouse_id, scheme=scheme)
    outbound = load_events("out", warehouse_id=warehouse_id, scheme=scheme)
    return inbound, outbound


def record_movement(direction: str, warehouse_id: int, **fields):
    """Insert one movement (used by seeding and tests); caller commits."""
    model = DIRECTIONS.get((direction or "").strip().lower())
    if model is None:
        raise StockEventQueryError(f"Unknown direction {direction!r}")
    when = fields.get("date")
    if isinstance(when, str):
        fields["date"] = datetime.strptime(when, "%Y-%m-%d").date()
    elif isinstance(when, datetime):
        fields["date"] = when.date()
    rec = model(warehouse_id=warehouse_id, **fields)
    db.session.add(rec)
    db.session.flush()
    return rec


def period_label(start: date, end: date) -> str:
    if start.day == 1 and (start.year, start.month) == (end.year, end.month):
        return f"Period: {start.strftime('%B %Y')}"
    return f"Period: {start.isoformat()} to {end.isoformat()}"
