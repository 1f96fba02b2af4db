# services/ledger_reconciler.py
from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

MISSING = "N/A"
KEY_SEP = "|"


class LedgerInputError(TypeError):
    """Event collections are missing or not iterable (caller contract violation)."""


class KeyMode(str, Enum):
    COARSE = "coarse"   # material + description, whole warehouse
    FINE = "fine"       # material + description + scheme/PO + date

    @classmethod
    def parse(cls, value) -> "KeyMode":
        if isinstance(value, cls):
            return value
        v = (str(value or "")).strip().lower()
        try:
            return cls(v)
        except ValueError:
            raise ValueError(f"Unknown key mode {value!r} (expected 'coarse' or 'fine')") from None


# ---------- field readers (API dicts use camelCase, ORM rows snake_case) ----------

_CODE_FIELDS  = ("material_code", "materialCode", "code")
_DESC_FIELDS  = ("description", "materialName", "material_name")
_SCHEME_FIELDS = ("scheme", "schemeName", "scheme_or_po", "poNumber", "po_number")
_QTY_FIELDS   = ("quantity", "materialQty", "material_qty", "qty")
_DATE_FIELDS  = ("occurred_at", "date", "createdAt", "created_at")
_WAREHOUSE_FIELDS = ("warehouse_id", "warehouseId")


def _pick(record, names):
    """First non-empty value among candidate keys/attributes, else None."""
    for name in names:
        if isinstance(record, Mapping):
            v = record.get(name)
        else:
            v = getattr(record, name, None)
        if v is not None and v != "":
            return v
    return None


def _text_or_missing(value) -> str:
    s = str(value).strip() if value is not None else ""
    return s or MISSING


def parse_quantity(value) -> int | float:
    """
    Parse or zero:
      '10' -> 10, 2.5 -> 2.5, None / 'abc' / NaN -> 0, negatives clamp to 0.
    Integral values come back as int so reports show '10', not '10.0'.
    """
    if value is None or isinstance(value, bool):
        return 0
    try:
        q = float(str(value).strip().replace(",", "")) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(q) or math.isinf(q) or q <= 0:
        return 0
    return int(q) if q.is_integer() else q


_DATE_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%fZ",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d",
    "%d/%m/%Y",
)


def parse_event_date(value, now: date) -> date:
    """
    Parse or now. Accepts date/datetime objects and the string shapes the
    store-in/stock-out APIs emit (ISO with or without time, 'Z' suffix).
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None:
        return now
    s = str(value).strip()
    if not s:
        return now
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00")).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return now


@dataclass(frozen=True)
class StockEvent:
    material_code: str
    description: str
    scheme: str
    quantity: int | float
    occurred_at: date
    warehouse_id: Any = None

    @classmethod
    def from_record(cls, record, now: date) -> "StockEvent":
        return cls(
            material_code=_text_or_missing(_pick(record, _CODE_FIELDS)),
            description=_text_or_missing(_pick(record, _DESC_FIELDS)),
            scheme=_text_or_missing(_pick(record, _SCHEME_FIELDS)),
            quantity=parse_quantity(_pick(record, _QTY_FIELDS)),
            occurred_at=parse_event_date(_pick(record, _DATE_FIELDS), now),
            warehouse_id=_pick(record, _WAREHOUSE_FIELDS),
        )


@dataclass
class LedgerRow:
    key: str
    material_code: str
    description: str
    scheme: str
    stock_in: int | float = 0
    stock_out: int | float = 0
    remaining: int | float = 0
    last_event_date: Optional[date] = None

    def add_in(self, qty, when: date):
        self.stock_in += qty
        self._touch(when)

    def add_out(self, qty, when: date):
        self.stock_out += qty
        self._touch(when)

    def _touch(self, when: date):
        self.remaining = self.stock_in - self.stock_out
        if self.last_event_date is None or when > self.last_event_date:
            self.last_event_date = when

    def as_report_row(self) -> Dict[str, Any]:
        from utils.report_columns import LEDGER_FIELD_MAP

        out = {"key": self.key}
        for internal, external in LEDGER_FIELD_MAP.items():
            value = getattr(self, internal)
            if isinstance(value, date):
                value = value.isoformat()
            out[external] = value
        return out


def ledger_key_parts(event: StockEvent, mode: KeyMode) -> Tuple[str, ...]:
    if mode is KeyMode.FINE:
        return (event.material_code, event.description, event.scheme, event.occurred_at.isoformat())
    return (event.material_code, event.description)


def ledger_key(event: StockEvent, mode: KeyMode) -> str:
    """Display form of ledger_key_parts; rows are grouped on the tuple."""
    return KEY_SEP.join(ledger_key_parts(event, mode))


def _ensure_collection(name: str, events) -> None:
    if events is None:
        raise LedgerInputError(f"{name} events are required")
    if isinstance(events, (str, bytes, Mapping)) or not isinstance(events, Iterable):
        raise LedgerInputError(f"{name} events must be a collection of records, got {type(events).__name__}")


def reconcile(inbound, outbound, key_mode=KeyMode.COARSE, now: date | datetime | None = None) -> List[LedgerRow]:
    """
    Merge stock-in and stock-out events into ledger rows.

    - rows are keyed per key_mode (coarse: code|description,
      fine: code|description|scheme|ISO date);
    - quantities are "parse or zero", dates "parse or now";
    - a key seen on one side only still yields a row (other side = 0);
    - output order = order in which keys were first seen, inbound first.

    Raises LedgerInputError only when a whole collection is unusable.
    """
    mode = KeyMode.parse(key_mode)
    _ensure_collection("inbound", inbound)
    _ensure_collection("outbound", outbound)

    if now is None:
        now = datetime.now()
    today = now.date() if isinstance(now, datetime) else now

    rows: Dict[Tuple[str, ...], LedgerRow] = {}

    def _row_for(ev: StockEvent) -> LedgerRow:
        parts = ledger_key_parts(ev, mode)
        row = rows.get(parts)
        if row is None:
            row = LedgerRow(
                key=KEY_SEP.join(parts),
                material_code=ev.material_code,
                description=ev.description,
                scheme=ev.scheme,
            )
            rows[parts] = row
        return row

    n_in = n_out = 0
    for rec in inbound:
        ev = StockEvent.from_record(rec, today)
        _row_for(ev).add_in(ev.quantity, ev.occurred_at)
        n_in += 1

    for rec in outbound:
        ev = StockEvent.from_record(rec, today)
        _row_for(ev).add_out(ev.quantity, ev.occurred_at)
        n_out += 1

    logger.debug(
        "Reconciled %s inbound + %s outbound events into %s rows (mode=%s)",
        n_in, n_out, len(rows), mode.value,
    )
    return list(rows.values())


def reconcile_rows_as_dicts(inbound, outbound, key_mode=KeyMode.COARSE, now=None) -> List[Dict[str, Any]]:
    return [r.as_report_row() for r in reconcile(inbound, outbound, key_mode, now=now)]


def ledger_totals(rows: List[LedgerRow]) -> Dict[str, Any]:
    total_in = sum(r.stock_in for r in rows)
    total_out = sum(r.stock_out for r in rows)
    return {
        "rows": len(rows),
        "stockIn": total_in,
        "stockOut": total_out,
        "remainingStock": total_in - total_out,
    }
