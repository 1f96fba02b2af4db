# utils/xlsx_export.py
import logging
import math
from collections.abc import Iterable, Mapping
from decimal import Decimal
from io import BytesIO

import pandas as pd

from utils.report_columns import NUMERIC_FIELDS
from utils.report_layout import SERIAL_FIELD, ReportInputError

logger = logging.getLogger(__name__)

XLSX_MIMETYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
TEXT_PLACEHOLDER = "N/A"
NUMERIC_PLACEHOLDER = 0


def _numeric_or_zero(v):
    if isinstance(v, bool) or v is None:
        return NUMERIC_PLACEHOLDER
    if isinstance(v, (int, float, Decimal)):
        f = float(v)
        if math.isnan(f) or math.isinf(f):
            return NUMERIC_PLACEHOLDER
        return int(f) if f.is_integer() else f
    try:
        f = float(str(v).strip())
    except (TypeError, ValueError):
        return NUMERIC_PLACEHOLDER
    if math.isnan(f) or math.isinf(f):
        return NUMERIC_PLACEHOLDER
    return int(f) if f.is_integer() else f


def _text_or_placeholder(v):
    if v is None:
        return TEXT_PLACEHOLDER
    if isinstance(v, (dict, list, tuple, set, bytes)):
        return TEXT_PLACEHOLDER
    if hasattr(v, "isoformat"):
        return v.isoformat()
    s = str(v).strip()
    return s or TEXT_PLACEHOLDER


def project_rows(rows, columns):
    """
    One list of cell values per row, in column order (labels may repeat):
      column.field -> row[field]; missing/invalid text -> 'N/A', numbers -> 0.
    """
    if rows is None or isinstance(rows, (str, bytes, Mapping)) or not isinstance(rows, Iterable):
        raise ReportInputError("rows must be a list of records")

    out = []
    for idx, row in enumerate(rows):
        if hasattr(row, "as_report_row"):
            row = row.as_report_row()
        if not isinstance(row, Mapping):
            row = {}
        rec = []
        for col in columns:
            if col.field == SERIAL_FIELD:
                rec.append(idx + 1)
            elif col.field in NUMERIC_FIELDS:
                rec.append(_numeric_or_zero(row.get(col.field)))
            else:
                rec.append(_text_or_placeholder(row.get(col.field)))
        out.append(rec)
    return out


def export_rows_xlsx(rows, columns, sheet_name: str = "Stock Report") -> bytes:
    """Single-sheet workbook, no pagination or wrapping."""
    columns = list(columns or [])
    if not columns:
        raise ReportInputError("at least one column is required")

    records = project_rows(rows, columns)
    df = pd.DataFrame(records, columns=[c.label for c in columns])

    buf = BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name=sheet_name[:31])
        ws = writer.sheets[sheet_name[:31]]
        for i, col in enumerate(columns, start=1):
            ws.column_dimensions[ws.cell(row=1, column=i).column_letter].width = max(12, min(60, col.width / 5))
    logger.info("XLSX export: %s rows x %s columns", len(records), len(columns))
    return buf.getvalue()
