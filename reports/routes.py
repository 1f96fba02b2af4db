# reports/routes.py
import time
from datetime import datetime
from io import BytesIO

from flask import Blueprint, current_app, jsonify, request, send_file

from services.ledger_reconciler import (
    KeyMode, LedgerInputError, ledger_totals, reconcile,
)
from services.stock_events import (
    StockEventQueryError, get_warehouse, load_events, load_ledger_events,
    month_bounds, period_label,
)
from utils.report_columns import (
    MATERIAL_REPORT_COLUMNS, MOVEMENT_REPORT_COLUMNS, PO_TRACKING_REPORT_COLUMNS,
    STOCK_REPORT_COLUMNS, canonical_row, columns_from_payload,
    movement_report_row, po_tracking_row, relabel_for_department,
)
from utils.report_layout import (
    PageGeometry, PaginatedTableRenderer, RenderCancelled, ReportInputError,
    ReportStreamError,
)
from utils.xlsx_export import XLSX_MIMETYPE, export_rows_xlsx

reports_bp = Blueprint("reports", __name__, url_prefix="/api")

PDF_MIMETYPE = "application/pdf"
DIRECTION_TITLES = {"in": "Stock In Report", "out": "Stock Out Report"}


# ---------- helpers ----------

def _error(message: str, status: int):
    return jsonify({"message": message}), status


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _generated_line() -> str:
    return f"Generated: {datetime.now().strftime('%d/%m/%Y')}"


def _title(text: str) -> str:
    prefix = (current_app.config.get("REPORT_TITLE_PREFIX") or "").strip()
    return f"{prefix} {text}".strip()


def _render_deadline():
    """cancelled() callback for the render loop, from REPORT_RENDER_TIMEOUT seconds."""
    limit = current_app.config.get("REPORT_RENDER_TIMEOUT")
    if not limit or float(limit) <= 0:
        return None
    deadline = time.monotonic() + float(limit)
    return lambda: time.monotonic() >= deadline


def _pdf_response(rows, columns, title: str, subtitle_lines, filename: str):
    """
    Render into a private buffer first; the response only gets a body
    once the document is complete.
    """
    buf = BytesIO()
    try:
        renderer = PaginatedTableRenderer(
            columns,
            PageGeometry.a4_landscape(),
            title=title,
            subtitle_lines=subtitle_lines,
            logo_path=current_app.config.get("REPORT_LOGO_PATH"),
            footer_labels=current_app.config.get("REPORT_FOOTER_LABELS") or (),
        )
        stats = renderer.render(rows, buf, cancelled=_render_deadline())
    except ReportInputError as e:
        buf.close()
        return _error(str(e), 400)
    except RenderCancelled as e:
        buf.close()
        current_app.logger.warning("[REPORT_PDF] %s cancelled: %s", filename, e)
        return _error("Report took too long to generate", 503)
    except ReportStreamError as e:
        buf.close()
        current_app.logger.error("[REPORT_PDF] %s: %s", filename, e)
        return _error("Could not generate report", 500)
    except Exception:
        buf.close()
        current_app.logger.exception("[REPORT_PDF] %s: unexpected render failure", filename)
        return _error("Could not generate report", 500)

    current_app.logger.info(
        "[REPORT_PDF] %s: pages=%s rows=%s skipped=%s",
        filename, stats.pages, stats.rows_drawn, stats.rows_skipped,
    )
    buf.seek(0)
    return send_file(buf, mimetype=PDF_MIMETYPE, as_attachment=True, download_name=filename)


def _xlsx_response(rows, columns, sheet_name: str, filename: str):
    try:
        data = export_rows_xlsx(rows, columns, sheet_name=sheet_name)
    except ReportInputError as e:
        return _error(str(e), 400)
    return send_file(BytesIO(data), mimetype=XLSX_MIMETYPE, as_attachment=True, download_name=filename)


def _payload_rows_and_columns(data: dict, base=STOCK_REPORT_COLUMNS, row_fn=canonical_row):
    rows = data.get("rows")
    if rows is None or not isinstance(rows, list):
        raise ReportInputError("Rows data is required")
    raw_cols = data.get("columns")
    columns = columns_from_payload(raw_cols, base) if raw_cols is not None else list(base)
    columns = relabel_for_department(columns, data.get("departmentName") or data.get("department"))
    return [row_fn(r) for r in rows], columns


def _payload_document(fmt: str, base, title: str, stem: str, row_fn=canonical_row):
    try:
        rows, columns = _payload_rows_and_columns(_json_body(), base, row_fn)
    except ReportInputError as e:
        return _error(str(e), 400)
    if fmt == "xlsx":
        return _xlsx_response(rows, columns, title, f"{stem}.xlsx")
    return _pdf_response(rows, columns, _title(title), [_generated_line()], f"{stem}.pdf")


# ---------- reconcile (JSON) ----------

@reports_bp.post("/stock-report/reconcile")
def reconcile_events():
    data = _json_body()
    try:
        mode = KeyMode.parse(data.get("mode") or KeyMode.COARSE)
        rows = reconcile(data.get("inbound"), data.get("outbound"), mode)
    except (LedgerInputError, ValueError) as e:
        return _error(str(e), 400)

    return jsonify({
        "mode": mode.value,
        "rows": [r.as_report_row() for r in rows],
        "totals": ledger_totals(rows),
    })


# ---------- PDF / XLSX from rows supplied by the client ----------

@reports_bp.post("/stock-report/pdf")
def stock_report_pdf():
    return _payload_document("pdf", STOCK_REPORT_COLUMNS, "Stock Report", "Stock_Report")


@reports_bp.post("/stock-report/xlsx")
def stock_report_xlsx():
    return _payload_document("xlsx", STOCK_REPORT_COLUMNS, "Stock Report", "Stock_Report")


@reports_bp.post("/material-report/pdf")
def material_report_pdf():
    return _payload_document("pdf", MATERIAL_REPORT_COLUMNS, "Material Report", "Material_Report")


@reports_bp.post("/material-report/xlsx")
def material_report_xlsx():
    return _payload_document("xlsx", MATERIAL_REPORT_COLUMNS, "Material Report", "Material_Report")


@reports_bp.post("/po-tracking/pdf")
def po_tracking_pdf():
    return _payload_document(
        "pdf", PO_TRACKING_REPORT_COLUMNS, "PO Tracking Report", "PO_Tracking_Report", po_tracking_row,
    )


@reports_bp.post("/po-tracking/xlsx")
def po_tracking_xlsx():
    return _payload_document(
        "xlsx", PO_TRACKING_REPORT_COLUMNS, "PO Tracking Report", "PO_Tracking_Report", po_tracking_row,
    )


# ---------- warehouse ledger from the event store ----------

@reports_bp.get("/stock-report/warehouse/<int:warehouse_id>")
def warehouse_stock_report(warehouse_id: int):
    """
    ?mode=coarse|fine   (fine = per scheme/PO and date)
    ?scheme=<name>      limit to one scheme/PO
    ?format=json|pdf|xlsx
    """
    wh = get_warehouse(warehouse_id)
    if wh is None:
        return _error("Warehouse not found", 404)

    scheme = (request.args.get("scheme") or "").strip() or None
    fmt = (request.args.get("format") or "json").strip().lower()
    try:
        mode = KeyMode.parse(request.args.get("mode") or KeyMode.COARSE)
    except ValueError as e:
        return _error(str(e), 400)
    if fmt not in ("json", "pdf", "xlsx"):
        return _error(f"Unknown format {fmt!r}", 400)

    inbound, outbound = load_ledger_events(warehouse_id, scheme=scheme)
    if not inbound and not outbound:
        return _error("Stock data not found for the selected warehouse", 404)

    rows = reconcile(inbound, outbound, mode)
    current_app.logger.info(
        "[STOCK_REPORT] warehouse=%s scheme=%s mode=%s in=%s out=%s rows=%s",
        warehouse_id, scheme, mode.value, len(inbound), len(outbound), len(rows),
    )

    if fmt == "json":
        return jsonify({
            "warehouse": {"id": wh.id, "name": wh.name, "department": wh.department_name},
            "mode": mode.value,
            "rows": [r.as_report_row() for r in rows],
            "totals": ledger_totals(rows),
        })

    columns = relabel_for_department(STOCK_REPORT_COLUMNS, wh.department_name)
    if fmt == "xlsx":
        return _xlsx_response(rows, columns, "Stock Report", "Stock_Report.xlsx")

    subtitle = [f"Warehouse: {wh.name}"]
    if scheme:
        subtitle.append(f"Scheme: {scheme}")
    subtitle.append(_generated_line())
    return _pdf_response(rows, columns, _title("Stock Report"), subtitle, "Stock_Report.pdf")


# ---------- monthly stock-in / stock-out listings ----------

@reports_bp.get("/movements/<direction>/report")
def movement_report(direction: str):
    direction = (direction or "").lower()
    if direction not in DIRECTION_TITLES:
        return _error("Unknown movement direction", 404)

    fmt = (request.args.get("format") or "pdf").strip().lower()
    if fmt not in ("pdf", "xlsx"):
        return _error(f"Unknown format {fmt!r}", 400)
    try:
        start, end = month_bounds(request.args.get("month"), request.args.get("year"))
        warehouse_id = request.args.get("warehouse_id", type=int)
        records = load_events(
            direction,
            warehouse_id=warehouse_id,
            scheme=(request.args.get("scheme") or "").strip() or None,
            start=start,
            end=end,
        )
    except StockEventQueryError as e:
        return _error(str(e), 400)

    if not records:
        return _error("No data found for the specified date range", 404)

    department = request.args.get("department")
    if not department and warehouse_id is not None:
        wh = get_warehouse(warehouse_id)
        department = wh.department_name if wh else None
    columns = relabel_for_department(MOVEMENT_REPORT_COLUMNS, department)
    rows = [movement_report_row(r) for r in records]
    title = DIRECTION_TITLES[direction]
    stem = title.replace(" ", "_")

    if fmt == "xlsx":
        return _xlsx_response(rows, columns, title, f"{stem}.xlsx")
    return _pdf_response(
        rows, columns, _title(title), [period_label(start, end), _generated_line()], f"{stem}.pdf",
    )
