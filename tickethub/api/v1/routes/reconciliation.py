import time
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response
from sqlalchemy.orm import Session

from tickethub.db.session import get_db
from tickethub.api.deps import raise_http, require_permission
from tickethub.core.errors import DomainError
from tickethub.models.user import User
from tickethub.schemas.admin import ReconcileIn
from tickethub.services import reconciliation_service as recon

router = APIRouter(tags=["reconciliation"])


def _summary_out(s: recon.MethodSummary) -> dict:
    return {
        "method": s.method,
        "totalCount": s.total_count,
        "totalAmount": str(s.total_amount),
        "approvedCount": s.approved_count,
        "approvedAmount": str(s.approved_amount),
        "pendingCount": s.pending_count,
        "pendingAmount": str(s.pending_amount),
    }


def _match_out(m: recon.LineMatch) -> dict:
    return {
        "reference": m.reference,
        "statementAmount": str(m.statement_amount),
        "status": m.status,
        "receiptReference": m.receipt_reference,
        "recordedAmount": str(m.recorded_amount) if m.recorded_amount is not None else None,
        "approvalStatus": m.approval_status,
        "paymentMethod": m.payment_method,
    }


@router.post("/admin/reconciliation")
def reconcile(body: ReconcileIn, db: Session = Depends(get_db),
              me: User = Depends(require_permission("reconciliation.run"))):
    if body.entries:
        lines = recon.coerce_lines(e.model_dump() for e in body.entries)
    else:
        lines = recon.parse_statement_csv(body.csvText or "")
    if (body.entries or body.csvText) and not lines:
        raise HTTPException(status_code=400, detail={"error": "no_statement_entries", "message": "No statement entries found"})
    try:
        report = recon.reconcile(db, body.dateFrom, body.dateTo, body.paymentMethod, lines)
    except DomainError as e:
        raise_http(e)
    return {
        "summary": {
            "receipts": _summary_out(report.summary.total),
            "byMethod": [_summary_out(s) for s in report.summary.by_method.values()],
            "lines": report.counts(),
        },
        "matches": [_match_out(m) for m in report.matches],
    }


@router.get("/admin/reconciliation/export")
def export(dateFrom: date | None = None, dateTo: date | None = None, paymentMethod: str | None = None,
           db: Session = Depends(get_db), me: User = Depends(require_permission("reconciliation.run"))):
    try:
        receipts = recon.receipts_in_range(db, dateFrom, dateTo, paymentMethod)
    except DomainError as e:
        raise_http(e)
    return Response(
        content=recon.export_csv(receipts),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="reconciliation_{int(time.time() * 1000)}.csv"'},
    )
