from datetime import date, datetime
from types import SimpleNamespace

import pytest

from services.ledger_reconciler import (
    KeyMode, LedgerInputError, LedgerRow, ledger_totals, parse_event_date,
    parse_quantity, reconcile, reconcile_rows_as_dicts,
)

NOW = datetime(2024, 3, 15, 10, 30)


def _ev(code, qty, when=None, desc="Cable 4mm", scheme="S-1"):
    return {"materialCode": code, "description": desc, "scheme": scheme, "materialQty": qty, "date": when}


def test_scenario_a_in_and_out_share_a_key():
    rows = reconcile(
        [{"materialCode": "M1", "materialQty": 10, "date": "2024-01-01"}],
        [{"materialCode": "M1", "materialQty": 4, "date": "2024-01-02"}],
        KeyMode.COARSE,
        now=NOW,
    )
    assert len(rows) == 1
    r = rows[0]
    assert (r.stock_in, r.stock_out, r.remaining) == (10, 4, 6)
    assert r.last_event_date == date(2024, 1, 2)
    assert r.description == "N/A"


def test_scenario_b_outbound_only():
    rows = reconcile([], [{"materialCode": "M2", "materialQty": 5}], "coarse", now=NOW)
    assert len(rows) == 1
    assert (rows[0].stock_in, rows[0].stock_out, rows[0].remaining) == (0, 5, -5)
    assert rows[0].last_event_date == NOW.date()


def test_scenario_d_non_numeric_quantity_is_zero():
    rows = reconcile([_ev("M3", "lots", "2024-02-01")], [_ev("M3", None, "2024-02-02")], now=NOW)
    assert (rows[0].stock_in, rows[0].stock_out, rows[0].remaining) == (0, 0, 0)


def test_disjoint_keys_give_one_sided_rows_in_first_seen_order():
    inbound = [_ev("A", 3, "2024-01-01"), _ev("B", 7, "2024-01-01")]
    outbound = [_ev("C", 2, "2024-01-05"), _ev("D", 1.5, "2024-01-06")]
    rows = reconcile(inbound, outbound, now=NOW)

    assert [r.material_code for r in rows] == ["A", "B", "C", "D"]
    assert [r.remaining for r in rows] == [3, 7, -2, -1.5]
    assert all((r.stock_in == 0) != (r.stock_out == 0) for r in rows)


def test_quantities_accumulate_and_balance_holds():
    inbound = [_ev("M1", 10, "2024-01-01"), _ev("M1", "5", "2024-01-03")]
    outbound = [_ev("M1", 4, "2024-01-02"), _ev("M1", 3, "2024-01-10"), _ev("M1", 1, "2024-01-04")]
    rows = reconcile(inbound, outbound, now=NOW)

    assert len(rows) == 1
    r = rows[0]
    assert r.stock_in == 15
    assert r.stock_out == 8
    assert r.remaining == r.stock_in - r.stock_out == 7
    assert r.last_event_date == date(2024, 1, 10)


def test_coarse_mode_merges_across_schemes_and_dates():
    inbound = [_ev("M1", 2, "2024-01-01", scheme="S-1"), _ev("M1", 3, "2024-01-09", scheme="S-2")]
    rows = reconcile(inbound, [], KeyMode.COARSE, now=NOW)
    assert len(rows) == 1
    assert rows[0].stock_in == 5
    assert rows[0].key == "M1|Cable 4mm"


def test_fine_mode_splits_by_scheme_and_date():
    inbound = [
        _ev("M1", 2, "2024-01-01", scheme="S-1"),
        _ev("M1", 3, "2024-01-01", scheme="S-2"),
        _ev("M1", 4, "2024-01-02", scheme="S-1"),
    ]
    outbound = [_ev("M1", 1, "2024-01-01", scheme="S-1")]
    rows = reconcile(inbound, outbound, KeyMode.FINE, now=NOW)

    assert [r.key for r in rows] == [
        "M1|Cable 4mm|S-1|2024-01-01",
        "M1|Cable 4mm|S-2|2024-01-01",
        "M1|Cable 4mm|S-1|2024-01-02",
    ]
    assert rows[0].remaining == 1


def test_fine_mode_key_uses_normalized_date():
    inbound = [_ev("M1", 2, "2024-01-01"), _ev("M1", 3, "2024-01-01T08:15:00.000Z")]
    outbound = [_ev("M1", 1, datetime(2024, 1, 1, 17, 0))]
    rows = reconcile(inbound, outbound, KeyMode.FINE, now=NOW)
    assert len(rows) == 1
    assert (rows[0].stock_in, rows[0].stock_out) == (5, 1)


def test_fine_mode_missing_date_keys_on_processing_day():
    rows = reconcile([_ev("M1", 2, None)], [_ev("M1", 1, "2024-03-15")], KeyMode.FINE, now=NOW)
    assert len(rows) == 1
    assert rows[0].remaining == 1


def test_orm_like_records_are_read_by_attribute():
    rec = SimpleNamespace(material_code="P-9", description="Pole", scheme=None, quantity=6.0, date=date(2024, 5, 1))
    rows = reconcile([rec], [], now=NOW)
    assert rows[0].material_code == "P-9"
    assert rows[0].scheme == "N/A"
    assert rows[0].stock_in == 6


def test_missing_material_code_still_reported():
    rows = reconcile([{"materialQty": 4}], [], now=NOW)
    assert rows[0].material_code == "N/A"
    assert rows[0].stock_in == 4


def test_reconcile_is_repeatable():
    inbound = [_ev("A", 3, "2024-01-01"), _ev("B", "x", None)]
    outbound = [_ev("A", 1, "2024-01-02"), _ev("C", 9, "bad date")]
    first = reconcile(inbound, outbound, KeyMode.FINE, now=NOW)
    second = reconcile(inbound, outbound, KeyMode.FINE, now=NOW)
    assert first == second


def test_generators_are_accepted():
    rows = reconcile((e for e in [_ev("A", 1, "2024-01-01")]), iter([]), now=NOW)
    assert len(rows) == 1


@pytest.mark.parametrize("bad", [None, 5, "M1", {"materialCode": "M1"}])
def test_unusable_collections_raise(bad):
    with pytest.raises(LedgerInputError):
        reconcile(bad, [], now=NOW)
    with pytest.raises(LedgerInputError):
        reconcile([], bad, now=NOW)


def test_unknown_mode_raises():
    with pytest.raises(ValueError):
        reconcile([], [], "weekly")


@pytest.mark.parametrize("raw, expected", [
    ("10", 10), (2.5, 2.5), ("1,200", 1200), (None, 0), ("abc", 0),
    (float("nan"), 0), (-4, 0), (True, 0), ("", 0), (7.0, 7),
])
def test_parse_quantity(raw, expected):
    assert parse_quantity(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    ("2024-01-02", date(2024, 1, 2)),
    ("2024-01-02T23:10:00Z", date(2024, 1, 2)),
    ("2024-01-02 08:00:00", date(2024, 1, 2)),
    ("02/01/2024", date(2024, 1, 2)),
    (datetime(2024, 1, 2, 5), date(2024, 1, 2)),
    ("not a date", NOW.date()),
    (None, NOW.date()),
])
def test_parse_event_date(raw, expected):
    assert parse_event_date(raw, NOW.date()) == expected


def test_report_dicts_use_external_field_names():
    out = reconcile_rows_as_dicts([_ev("M1", 10, "2024-01-01")], [_ev("M1", 4, "2024-01-02")], now=NOW)
    assert out == [{
        "key": "M1|Cable 4mm",
        "materialCode": "M1",
        "scheme": "S-1",
        "description": "Cable 4mm",
        "stockIn": 10,
        "stockOut": 4,
        "remainingStock": 6,
        "date": "2024-01-02",
    }]


def test_totals():
    rows = [
        LedgerRow("a", "A", "d", "s", stock_in=10, stock_out=4, remaining=6),
        LedgerRow("b", "B", "d", "s", stock_in=0, stock_out=5, remaining=-5),
    ]
    assert ledger_totals(rows) == {"rows": 2, "stockIn": 10, "stockOut": 9, "remainingStock": 1}


def test_separator_inside_a_field_does_not_merge_rows():
    inbound = [
        {"materialCode": "A|B", "description": "C", "materialQty": 1},
        {"materialCode": "A", "description": "B|C", "materialQty": 2},
    ]
    rows = reconcile(inbound, [], KeyMode.COARSE, now=NOW)
    assert len(rows) == 2
    assert [r.stock_in for r in rows] == [1, 2]
    assert [r.material_code for r in rows] == ["A|B", "A"]
