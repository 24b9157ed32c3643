import csv
import io
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from tickethub.core.clock import today
from tickethub.core.errors import ValidationFailed
from tickethub.services import reconciliation_service as recon
from tickethub.services.settlement_service import record_manual_sale

from conftest import make_trip, make_user


def _receipt(reference, amount, status="approved", method="bank"):
    return SimpleNamespace(reference_number=reference, amount_paid=Decimal(amount),
                           approval_status=status, payment_method=method)


def test_parse_csv_with_header_and_noise():
    text = "Reference,Amount\n ft 111 ,500\n\nFT222,-3\n,40\nFT333,abc\nFT444, 250.5 \n"
    lines = recon.parse_statement_csv(text)
    assert lines == [
        recon.StatementLine("FT111", Decimal("500.00")),
        recon.StatementLine("FT444", Decimal("250.50")),
    ]


def test_parse_csv_without_header():
    assert [l.reference for l in recon.parse_statement_csv("A1,10\nB2,20")] == ["A1", "B2"]
    assert recon.parse_statement_csv("") == []


def test_coerce_entries():
    lines = recon.coerce_lines([{"reference": "x1", "amount": "10"}, {"reference": "x2", "amount": "0"}])
    assert lines == [recon.StatementLine("X1", Decimal("10.00"))]


def test_matching_exact_base_mismatch_and_missing():
    receipts = [
        _receipt("FT111-123456", "500"),
        _receipt("FT222-654321", "300", status="pending"),
        _receipt("TB333-000001", "100", method="telebirr"),
    ]
    lines = [
        recon.StatementLine("FT111", Decimal("500.50")),
        recon.StatementLine("TB333-000001", Decimal("100")),
        recon.StatementLine("FT222", Decimal("320")),
        recon.StatementLine("NOPE1", Decimal("10")),
    ]
    out = recon.match_lines(receipts, lines, tolerance=Decimal("1.00"))
    assert [m.status for m in out] == ["matched", "matched", "mismatched", "missing"]
    assert out[0].receipt_reference == "FT111-123456"
    assert out[2].recorded_amount == Decimal("300.00")
    assert out[2].approval_status == "pending"
    assert out[3].receipt_reference is None
    report = recon.ReconciliationReport(summary=recon.summarize(receipts), matches=out)
    assert report.counts() == {"entries": 4, "matched": 2, "missing": 1, "mismatched": 1}


def test_tolerance_is_inclusive():
    out = recon.match_lines([_receipt("A1", "100")], [recon.StatementLine("A1", Decimal("101.00"))],
                            tolerance=Decimal("1.00"))
    assert out[0].status == "matched"


def test_summary_by_method():
    s = recon.summarize([
        _receipt("A", "100"), _receipt("B", "50", status="pending"),
        _receipt("C", "70", status="rejected", method="cash"),
    ])
    assert s.total.total_count == 3
    assert s.total.total_amount == Decimal("220.00")
    assert s.total.approved_amount == Decimal("100.00")
    assert s.total.pending_amount == Decimal("50.00")
    assert s.by_method["bank"].total_count == 2
    assert s.by_method["cash"].approved_count == 0


def test_reconcile_against_stored_receipts(db):
    trip = make_trip(db, seats=10)
    ops = make_user(db, "ops")
    record_manual_sale(db, ops, trip.id, 1, "cash", "CASH-9", "500")
    record_manual_sale(db, ops, trip.id, 1, "bank", "BANK-9", "500")

    report = recon.reconcile(db, today() - timedelta(days=1), today() + timedelta(days=1), "bank",
                             [recon.StatementLine("BANK-9", Decimal("500")),
                              recon.StatementLine("CASH-9", Decimal("500"))])
    assert report.summary.total.total_count == 1
    assert [m.status for m in report.matches] == ["matched", "missing"]

    future = recon.reconcile(db, date(2099, 1, 1), date(2099, 1, 2))
    assert future.summary.total.total_count == 0


def test_reversed_range(db):
    with pytest.raises(ValidationFailed) as e:
        recon.receipts_in_range(db, date(2026, 2, 1), date(2026, 1, 1))
    assert e.value.kind == "invalid_date_range"


def test_export_csv(db):
    trip = make_trip(db)
    r, _ = record_manual_sale(db, make_user(db, "ops"), trip.id, 1, "cash", "EXP-1", "500")
    rows = list(csv.reader(io.StringIO(recon.export_csv([r]))))
    assert rows[0] == list(recon.EXPORT_COLUMNS)
    assert rows[1][1] == r.reference_number
    assert rows[1][3] == "500.00"
    assert rows[1][5] == "approved"
