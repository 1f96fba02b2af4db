# utils/report_columns.py
"""
Column catalogue for stock reports and the field-name tables between
internal attribute names and the external (API / PDF / XLSX) field names.
validate_field_map() runs at app startup.
"""
from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from typing import Dict, List, Sequence

from services.ledger_reconciler import parse_quantity
from utils.report_layout import SERIAL_FIELD, ReportColumn, ReportInputError

# departments with their own report labels
DEPT_TELECOM = "Telecom"
DEPT_ELECTRICAL = "Electrical"

# internal LedgerRow attribute -> external field
LEDGER_FIELD_MAP: Dict[str, str] = {
    "material_code":   "materialCode",
    "scheme":          "scheme",
    "description":     "description",
    "stock_in":        "stockIn",
    "stock_out":       "stockOut",
    "remaining":       "remainingStock",
    "last_event_date": "date",
}

# internal stock movement (StockInRecord / StockOutRecord) attribute -> external field
MOVEMENT_FIELD_MAP: Dict[str, str] = {
    "material_code": "materialCode",
    "scheme":        "scheme",
    "description":   "description",
    "unit":          "unit",
    "quantity":      "quantity",
    "date":          "date",
    "notes":         "notes",
}

# PO tracking line (supplier order against a scheme/PO) -> external field
PO_TRACKING_FIELD_MAP: Dict[str, str] = {
    "material_code": "materialCode",
    "scheme":        "scheme",
    "description":   "description",
    "supplier_name": "supplierName",
    "brand":         "brand",
    "po_qty":        "poQty",
    "received_qty":  "receivedPoQty",
    "remaining_qty": "remainingQty",
    "unit":          "unit",
}

# field names older clients send -> external field
PAYLOAD_FIELD_ALIASES: Dict[str, str] = {
    "schemeName":     "scheme",
    "poNumber":       "scheme",
    "Stock In":       "stockIn",
    "stockin":        "stockIn",
    "Stock Out":      "stockOut",
    "Remaining Stock": "remainingStock",
    "remaningStock":  "remainingStock",
    "materialQty":    "quantity",
    "code":           "materialCode",
    "itemCode":       "materialCode",
    "rawasiIssuedPo": "scheme",
    "recQty":         "receivedPoQty",
    "remQty":         "remainingQty",
}

# UI-only columns that never reach a document
IGNORED_PAYLOAD_FIELDS = frozenset({"actions", "id", "key"})

# fields rendered as numbers (centred in the PDF, 0 placeholder in XLSX)
NUMERIC_FIELDS = frozenset({
    SERIAL_FIELD, "stockIn", "stockOut", "remainingStock", "quantity",
    "poQty", "receivedPoQty", "remainingQty",
})


STOCK_REPORT_COLUMNS: List[ReportColumn] = [
    ReportColumn(SERIAL_FIELD,     "S.N",         40, numeric=True),
    ReportColumn("materialCode",   "CODE",        100, wrap=True),
    ReportColumn("scheme",         "SCHEME",      100, wrap=True),
    ReportColumn("description",    "DESCRIPTION", 250, wrap=True),
    ReportColumn("stockIn",        "S.IN",        60, numeric=True),
    ReportColumn("stockOut",       "S.OUT",       60, numeric=True),
    ReportColumn("remainingStock", "REMAINING",   80, numeric=True),
    ReportColumn("date",           "DATE",        80, numeric=True),
]

MOVEMENT_REPORT_COLUMNS: List[ReportColumn] = [
    ReportColumn(SERIAL_FIELD,   "S.N",         40, numeric=True),
    ReportColumn("materialCode", "Code",        120, wrap=True),
    ReportColumn("scheme",       "Scheme",      120, wrap=True),
    ReportColumn("description",  "Description", 260, wrap=True),
    ReportColumn("unit",         "Unit",        60, numeric=True),
    ReportColumn("quantity",     "Qty",         60, numeric=True),
    ReportColumn("date",         "Date",        80, numeric=True),
]

# material report: ledger balances without scheme or date
MATERIAL_REPORT_COLUMNS: List[ReportColumn] = [
    ReportColumn(SERIAL_FIELD,     "S.N",           40, numeric=True),
    ReportColumn("materialCode",   "MATERIAL CODE", 120, wrap=True),
    ReportColumn("description",    "DESCRIPTION",   250, wrap=True),
    ReportColumn("stockIn",        "STOCK IN",      90, numeric=True),
    ReportColumn("stockOut",       "STOCK OUT",     90, numeric=True),
    ReportColumn("remainingStock", "REMAINING",     90, numeric=True),
]

PO_TRACKING_REPORT_COLUMNS: List[ReportColumn] = [
    ReportColumn(SERIAL_FIELD,    "S.N",         30, numeric=True),
    ReportColumn("materialCode",  "CODE",        100, wrap=True),
    ReportColumn("scheme",        "SCHEME",      100, wrap=True),
    ReportColumn("description",   "DESCRIPTION", 200, wrap=True),
    ReportColumn("poQty",         "PO QTY",      60, numeric=True),
    ReportColumn("receivedPoQty", "REC QTY",     60, numeric=True),
    ReportColumn("remainingQty",  "REM QTY",     60, numeric=True),
    ReportColumn("unit",          "UNIT",        50, numeric=True),
]

DEFAULT_PAYLOAD_WIDTH = 80


def validate_field_map() -> None:
    """
    - every LedgerRow attribute (except its key) is mapped, nothing else is;
    - external names are unique per table;
    - aliases and catalogue columns point at known external fields.
    Raises RuntimeError on the first inconsistency.
    """
    from services.ledger_reconciler import LedgerRow

    ledger_attrs = {f.name for f in dataclasses.fields(LedgerRow)} - {"key"}
    if set(LEDGER_FIELD_MAP) != ledger_attrs:
        missing = sorted(ledger_attrs - set(LEDGER_FIELD_MAP))
        extra = sorted(set(LEDGER_FIELD_MAP) - ledger_attrs)
        raise RuntimeError(f"LEDGER_FIELD_MAP out of sync: missing={missing} extra={extra}")

    for name, table in (
        ("LEDGER_FIELD_MAP", LEDGER_FIELD_MAP),
        ("MOVEMENT_FIELD_MAP", MOVEMENT_FIELD_MAP),
        ("PO_TRACKING_FIELD_MAP", PO_TRACKING_FIELD_MAP),
    ):
        values = list(table.values())
        if len(values) != len(set(values)):
            raise RuntimeError(f"{name} maps two attributes to the same field")

    known = known_external_fields()
    for alias, target in PAYLOAD_FIELD_ALIASES.items():
        if target not in known:
            raise RuntimeError(f"alias {alias!r} points at unknown field {target!r}")
        if alias in known:
            raise RuntimeError(f"alias {alias!r} shadows a real field")

    for cols, table in (
        (STOCK_REPORT_COLUMNS, LEDGER_FIELD_MAP),
        (MATERIAL_REPORT_COLUMNS, LEDGER_FIELD_MAP),
        (MOVEMENT_REPORT_COLUMNS, MOVEMENT_FIELD_MAP),
        (PO_TRACKING_REPORT_COLUMNS, PO_TRACKING_FIELD_MAP),
    ):
        fields = set(table.values()) | {SERIAL_FIELD}
        for col in cols:
            if col.field not in fields:
                raise RuntimeError(f"column {col.field!r} has no source attribute")


def known_external_fields() -> set:
    return (
        set(LEDGER_FIELD_MAP.values())
        | set(MOVEMENT_FIELD_MAP.values())
        | set(PO_TRACKING_FIELD_MAP.values())
        | {SERIAL_FIELD}
    )


def movement_report_row(record) -> Dict[str, object]:
    """External dict for a StockInRecord / StockOutRecord."""
    out = {}
    for internal, external in MOVEMENT_FIELD_MAP.items():
        out[external] = getattr(record, internal, None)
    return out


def po_tracking_row(row) -> Dict[str, object]:
    """
    Canonical PO tracking row. A missing remaining quantity is derived as
    ordered minus received; over-receipt shows as a negative balance.
    """
    row = canonical_row(row)
    if not isinstance(row, Mapping):
        return row
    out = dict(row)
    if out.get("remainingQty") in (None, ""):
        out["remainingQty"] = parse_quantity(out.get("poQty")) - parse_quantity(out.get("receivedPoQty"))
    return out


def canonical_field(name: str) -> str | None:
    """External field for a payload field name, None for UI-only columns."""
    name = str(name or "").strip()
    if not name or name in IGNORED_PAYLOAD_FIELDS:
        return None
    if name in known_external_fields():
        return name
    if name in PAYLOAD_FIELD_ALIASES:
        return PAYLOAD_FIELD_ALIASES[name]
    raise ReportInputError(f"unknown report field {name!r}")


def canonical_row(row: Mapping) -> Dict[str, object]:
    """Row from a request body with alias keys rewritten; non-mappings pass through."""
    if not isinstance(row, Mapping):
        return row
    out = {}
    for k, v in row.items():
        target = PAYLOAD_FIELD_ALIASES.get(k, k)
        # an explicit canonical key wins over its alias
        if target in out and target != k:
            continue
        out[target] = v
    return out


def columns_from_payload(payload, base: Sequence[ReportColumn] = STOCK_REPORT_COLUMNS) -> List[ReportColumn]:
    """
    [{"field": ..., "headerName": ...}, ...] -> ReportColumns.
    Width/alignment/wrapping come from the catalogue column with the same
    field; fields outside the catalogue get a default-width text column.
    """
    if payload is None or isinstance(payload, (str, bytes, Mapping)) or not isinstance(payload, list):
        raise ReportInputError("columns must be a list")

    by_field = {c.field: c for c in base}
    out: List[ReportColumn] = []
    for item in payload:
        if not isinstance(item, Mapping):
            raise ReportInputError(f"column entry must be an object, got {type(item).__name__}")
        field = canonical_field(item.get("field"))
        if field is None:
            continue
        label = str(item.get("headerName") or item.get("label") or "").strip()
        known = by_field.get(field)
        if known is not None:
            out.append(dataclasses.replace(known, label=label or known.label))
        else:
            out.append(ReportColumn(
                field, label or field, DEFAULT_PAYLOAD_WIDTH,
                numeric=field in NUMERIC_FIELDS, wrap=field not in NUMERIC_FIELDS,
            ))
    if not out:
        raise ReportInputError("no printable columns in request")
    return out


def relabel_for_department(columns: Sequence[ReportColumn], department_name: str | None) -> List[ReportColumn]:
    """
    Telecom tracks purchase orders instead of schemes, Electrical says UOM
    for unit and keeps no notes.
    """
    dept = (department_name or "").strip()
    out = []
    for col in columns:
        if dept == DEPT_TELECOM and col.field == "scheme":
            col = dataclasses.replace(col, label="PO")
        elif dept == DEPT_ELECTRICAL and col.field == "unit":
            col = dataclasses.replace(col, label="UOM")
        elif dept == DEPT_ELECTRICAL and col.field == "notes":
            continue
        out.append(col)
    return out
