import pytest

from utils.report_columns import (
    MATERIAL_REPORT_COLUMNS, MOVEMENT_REPORT_COLUMNS, PO_TRACKING_REPORT_COLUMNS,
    STOCK_REPORT_COLUMNS, canonical_field, canonical_row, columns_from_payload,
    movement_report_row, po_tracking_row, relabel_for_department,
    validate_field_map,
)
from utils.report_layout import ReportColumn, ReportInputError


def test_field_tables_are_consistent():
    validate_field_map()


def test_payload_columns_take_layout_from_catalogue():
    cols = columns_from_payload([
        {"field": "sn", "headerName": "#"},
        {"field": "materialCode", "headerName": "Code"},
        {"field": "actions", "headerName": "Actions"},
        {"field": "Stock In", "headerName": "In"},
        {"field": "remaningStock"},
    ])

    assert [c.field for c in cols] == ["sn", "materialCode", "stockIn", "remainingStock"]
    assert [c.label for c in cols] == ["#", "Code", "In", "REMAINING"]
    by_field = {c.field: c for c in STOCK_REPORT_COLUMNS}
    assert cols[1].width == by_field["materialCode"].width
    assert cols[1].wrap is True
    assert cols[2].numeric is True


def test_payload_field_outside_catalogue_gets_text_column():
    cols = columns_from_payload([{"field": "unit", "headerName": "Unit"}])
    assert cols == [ReportColumn("unit", "Unit", 80, numeric=False, wrap=True)]


@pytest.mark.parametrize("payload", [
    None, "materialCode", {"field": "materialCode"}, [], [{"field": "actions"}], ["materialCode"],
])
def test_unusable_payload_columns(payload):
    with pytest.raises(ReportInputError):
        columns_from_payload(payload)


def test_unknown_field_is_rejected():
    with pytest.raises(ReportInputError):
        canonical_field("warehouseSecret")
    assert canonical_field("key") is None
    assert canonical_field("poNumber") == "scheme"


def test_canonical_row_prefers_real_field_over_alias():
    assert canonical_row({"schemeName": "S-1", "scheme": "S-2"}) == {"scheme": "S-2"}
    assert canonical_row({"scheme": "S-2", "schemeName": "S-1"}) == {"scheme": "S-2"}
    assert canonical_row({"Stock In": 4, "materialQty": 2}) == {"stockIn": 4, "quantity": 2}
    assert canonical_row("row") == "row"


def test_telecom_reports_say_po():
    cols = relabel_for_department(STOCK_REPORT_COLUMNS, "Telecom")
    labels = {c.field: c.label for c in cols}
    assert labels["scheme"] == "PO"
    # catalogue itself untouched
    assert {c.field: c.label for c in STOCK_REPORT_COLUMNS}["scheme"] == "SCHEME"


def test_electrical_reports_use_uom_and_drop_notes():
    cols = MOVEMENT_REPORT_COLUMNS + [ReportColumn("notes", "Notes", 100, wrap=True)]
    out = relabel_for_department(cols, "Electrical")
    assert "notes" not in [c.field for c in out]
    assert {c.field: c.label for c in out}["unit"] == "UOM"


def test_other_departments_keep_labels():
    assert relabel_for_department(STOCK_REPORT_COLUMNS, "Civil") == list(STOCK_REPORT_COLUMNS)
    assert relabel_for_department(STOCK_REPORT_COLUMNS, None) == list(STOCK_REPORT_COLUMNS)


def test_movement_report_row_uses_external_names():
    class Rec:
        material_code = "M1"
        scheme = "S-1"
        description = "Cable"
        unit = "m"
        quantity = 12.0
        date = None
        notes = ""

    assert movement_report_row(Rec()) == {
        "materialCode": "M1", "scheme": "S-1", "description": "Cable",
        "unit": "m", "quantity": 12.0, "date": None, "notes": "",
    }


def test_po_tracking_row_derives_remaining_from_quantities():
    assert po_tracking_row({"itemCode": "P1", "poQty": "12", "recQty": 5}) == {
        "materialCode": "P1", "poQty": "12", "receivedPoQty": 5, "remainingQty": 7,
    }
    # an explicit balance is kept as sent
    assert po_tracking_row({"poQty": 10, "receivedPoQty": 4, "remainingQty": 0})["remainingQty"] == 0
    # over-receipt shows as a negative balance
    assert po_tracking_row({"poQty": 3, "receivedPoQty": 5})["remainingQty"] == -2


def test_po_tracking_payload_columns_use_po_catalogue():
    cols = columns_from_payload(
        [{"field": "itemCode", "headerName": "Item Code"}, {"field": "remQty"}],
        PO_TRACKING_REPORT_COLUMNS,
    )
    assert [c.field for c in cols] == ["materialCode", "remainingQty"]
    assert [c.label for c in cols] == ["Item Code", "REM QTY"]
    assert cols[1].numeric is True


def test_material_columns_are_ledger_fields():
    assert [c.field for c in MATERIAL_REPORT_COLUMNS] == [
        "sn", "materialCode", "description", "stockIn", "stockOut", "remainingStock",
    ]
