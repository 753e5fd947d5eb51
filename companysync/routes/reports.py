"""
Financial reports built from a company's approved finance records.
Any member may create a report; the author or a company owner/admin may edit or delete it.
"""
import io

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..errors import NotFound
from ..models.models import Company, FinancialReport, User
from ..schemas.finance import ReportCreate, ReportUpdate
from ..services import audit, reports, store
from ..services.permissions import can_mutate, enforce, load_resource_access, require_membership
from ..services.report_pdf import render_report_pdf
from ..storage.factory import generate_key, get_storage
from ..storage.provider import StorageProvider

router = APIRouter(prefix="/api/companies/{company_id}/reports", tags=["reports"])


def report_to_dict(r: FinancialReport) -> dict:
    return {
        "id": r.id,
        "company_id": r.company_id,
        "author_id": r.author_id,
        "author": r.author.username if r.author else None,
        "title": r.title,
        "period": r.period or "",
        "type": r.type,
        "data": r.data or {},
        "status": r.status,
        "file_url": r.file_url,
        "created_at": r.created_at.isoformat() if r.created_at else None,
        "updated_at": r.updated_at.isoformat() if r.updated_at else None,
    }


@router.get("")
def list_reports(company_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    require_membership(db, company_id, user.id, "list_reports")
    rows = (
        db.query(FinancialReport)
        .filter(FinancialReport.company_id == company_id)
        .order_by(FinancialReport.created_at.desc(), FinancialReport.id.desc())
        .all()
    )
    return [report_to_dict(r) for r in rows]


@router.post("", status_code=201)
def create_report(
    company_id: int,
    payload: ReportCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    require_membership(db, company_id, user.id, "create_report")
    data = payload.data or reports.summarize(reports.approved_records(db, company_id), payload.type)
    report = FinancialReport(
        company_id=company_id,
        author_id=user.id,
        title=payload.title.strip(),
        period=(payload.period or "").strip(),
        type=payload.type,
        data=data,
        status="active",
    )
    key = None
    if payload.generate_file:
        company = db.get(Company, company_id)
        pdf = render_report_pdf(report.title, report.type, report.period, data, company.name, user.username)
        key = generate_key(f"reports/{company_id}", "report.pdf")
        report.file_url = storage.save(io.BytesIO(pdf), key, content_type="application/pdf")
        report.storage_key = key

    with store.discard_upload(storage, key, "create_report"):
        with store.mutation(db, "create_report"):
            db.add(report)
        audit.record_company(
            db, company_id, user.id, "create_report",
            {"reportId": report.id, "title": report.title, "type": report.type},
        )
        store.commit(db, "create_report")
    return report_to_dict(report)


@router.get("/{report_id}")
def get_report(
    company_id: int,
    report_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    require_membership(db, company_id, user.id, "view_report")
    report = (
        db.query(FinancialReport)
        .filter(FinancialReport.id == report_id, FinancialReport.company_id == company_id)
        .first()
    )
    if report is None:
        raise NotFound("Report not found")
    return report_to_dict(report)


@router.put("/{report_id}")
def update_report(
    company_id: int,
    report_id: int,
    payload: ReportUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    report, state, role = load_resource_access(db, user.id, FinancialReport, report_id, company_id)
    enforce(can_mutate(user.id, state, role), user.id, "update_report")

    before = report_to_dict(report)
    with store.mutation(db, "update_report"):
        if payload.title is not None:
            report.title = payload.title.strip()
        if payload.period is not None:
            report.period = payload.period.strip()
        if payload.type is not None:
            report.type = payload.type
        if payload.status is not None:
            report.status = payload.status
        if payload.data is not None:
            report.data = payload.data
    after = report_to_dict(report)
    changes = audit.compute_diff(before, after)
    changes.pop("updated_at", None)
    audit.record_company(db, company_id, user.id, "update_report", {"reportId": report.id, "changes": changes})
    store.commit(db, "update_report")
    return report_to_dict(report)


@router.delete("/{report_id}")
def delete_report(
    company_id: int,
    report_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    report, state, role = load_resource_access(db, user.id, FinancialReport, report_id, company_id)
    enforce(can_mutate(user.id, state, role), user.id, "delete_report")
    key, title = report.storage_key, report.title
    with store.mutation(db, "delete_report"):
        db.delete(report)
    audit.record_company(db, company_id, user.id, "delete_report", {"reportId": report_id, "title": title})
    store.commit(db, "delete_report")
    if key:
        storage.delete(key)
    return {"status": "ok"}
