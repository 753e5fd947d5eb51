"""
Finance records and their attachments.

Edits and deletes go through the status-gated mutation policy: an author may
change their own record only while it is pending, owners and admins always.
"""
from datetime import date, datetime
from typing import Optional, Union

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db, ilike_contains
from ..errors import Forbidden, NotFound, ValidationError
from ..models.models import FinanceFile, FinanceRecord, User
from ..schemas.finance import FinanceRecordCreate, FinanceRecordUpdate, FinanceStatus, FinanceType, StatusChange
from ..services import audit, store
from ..services.permissions import (
    can_manage_members,
    can_mutate,
    enforce,
    get_membership_role,
    load_resource_access,
    require_membership,
)
from ..storage.factory import generate_key, get_storage, upload_size
from ..storage.provider import StorageProvider

router = APIRouter(prefix="/api/companies/{company_id}/finance", tags=["finance"])


def record_to_dict(r: FinanceRecord) -> dict:
    return {
        "id": r.id,
        "company_id": r.company_id,
        "author_id": r.author_id,
        "author": r.author.username if r.author else None,
        "type": r.type,
        "category": r.category,
        "amount": float(r.amount),
        "currency": r.currency,
        "description": r.description or "",
        "status": r.status,
        "created_at": r.created_at.isoformat() if r.created_at else None,
        "updated_at": r.updated_at.isoformat() if r.updated_at else None,
    }


def file_to_dict(f: FinanceFile) -> dict:
    return {
        "id": f.id,
        "record_id": f.record_id,
        "filename": f.filename,
        "url": f.url,
        "mimetype": f.mimetype,
        "size": f.size,
        "uploaded_at": f.uploaded_at.isoformat() if f.uploaded_at else None,
    }


def _bound(value: Optional[str], name: str) -> Optional[Union[date, datetime]]:
    try:
        return audit.parse_bound(value)
    except ValueError:
        raise ValidationError(f"Invalid '{name}' date")


@router.get("")
def list_records(
    company_id: int,
    type: Optional[FinanceType] = None,
    category: Optional[str] = None,
    status: Optional[FinanceStatus] = None,
    date_from: Optional[str] = Query(default=None, alias="from"),
    date_to: Optional[str] = Query(default=None, alias="to"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    require_membership(db, company_id, user.id, "list_finance")
    start = _bound(date_from, "from")
    end = _bound(date_to, "to")
    q = db.query(FinanceRecord).filter(FinanceRecord.company_id == company_id)
    if type:
        q = q.filter(FinanceRecord.type == type)
    if category:
        q = q.filter(ilike_contains(FinanceRecord.category, category))
    if status:
        q = q.filter(FinanceRecord.status == status)
    if start:
        q = q.filter(FinanceRecord.created_at >= audit.start_of(start))
    if end:
        q = q.filter(FinanceRecord.created_at <= audit.end_of(end))
    rows = q.order_by(FinanceRecord.created_at.desc(), FinanceRecord.id.desc()).all()
    return [record_to_dict(r) for r in rows]


@router.post("", status_code=201)
def create_record(
    company_id: int,
    payload: FinanceRecordCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    role = require_membership(db, company_id, user.id, "create_finance_record")
    # Members can only file pending records
    if payload.status != "pending" and not can_manage_members(role):
        raise Forbidden("Only owners and admins can set finance status")
    rec = FinanceRecord(
        company_id=company_id,
        author_id=user.id,
        type=payload.type,
        category=payload.category.strip(),
        amount=payload.amount,
        currency=payload.currency.strip().upper(),
        description=payload.description or "",
        status=payload.status,
    )
    with store.mutation(db, "create_finance_record"):
        db.add(rec)
    audit.record_company(
        db, company_id, user.id, "create_finance_record",
        {"recordId": rec.id, "type": rec.type, "amount": float(rec.amount), "currency": rec.currency},
    )
    store.commit(db, "create_finance_record")
    return record_to_dict(rec)


@router.put("/{record_id}")
def update_record(
    company_id: int,
    record_id: int,
    payload: FinanceRecordUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rec, state, role = load_resource_access(db, user.id, FinanceRecord, record_id, company_id, status_gated=True)
    enforce(can_mutate(user.id, state, role), user.id, "update_finance_record")
    if payload.status is not None and payload.status != rec.status:
        enforce(can_manage_members(role), user.id, "set_finance_status", "Only owners and admins can set finance status")

    before = record_to_dict(rec)
    with store.mutation(db, "update_finance_record"):
        for field in ("type", "category", "amount", "currency", "description", "status"):
            value = getattr(payload, field)
            if value is not None:
                setattr(rec, field, value)
    after = record_to_dict(rec)
    audit.record_company(
        db, company_id, user.id, "update_finance_record",
        {"recordId": rec.id, "changes": audit.compute_diff(before, after)},
    )
    store.commit(db, "update_finance_record")
    return record_to_dict(rec)


@router.delete("/{record_id}")
def delete_record(
    company_id: int,
    record_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rec, state, role = load_resource_access(db, user.id, FinanceRecord, record_id, company_id, status_gated=True)
    enforce(can_mutate(user.id, state, role), user.id, "delete_finance_record")
    meta = {"recordId": rec.id, "type": rec.type, "amount": float(rec.amount)}
    with store.mutation(db, "delete_finance_record"):
        db.delete(rec)
    audit.record_company(db, company_id, user.id, "delete_finance_record", meta)
    store.commit(db, "delete_finance_record")
    return {"status": "ok"}


@router.patch("/{record_id}/status")
def set_status(
    company_id: int,
    record_id: int,
    payload: StatusChange,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rec, _state, role = load_resource_access(db, user.id, FinanceRecord, record_id, company_id)
    enforce(can_manage_members(role), user.id, "set_finance_status")
    old = rec.status
    with store.mutation(db, "set_finance_status"):
        rec.status = payload.status
    audit.record_company(
        db, company_id, user.id, "set_finance_status",
        {"recordId": rec.id, "from": old, "to": payload.status},
    )
    store.commit(db, "set_finance_status")
    return record_to_dict(rec)


@router.get("/{record_id}/files")
def list_files(
    company_id: int,
    record_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    load_resource_access(db, user.id, FinanceRecord, record_id, company_id)
    rows = (
        db.query(FinanceFile)
        .filter(FinanceFile.record_id == record_id)
        .order_by(FinanceFile.uploaded_at.asc(), FinanceFile.id.asc())
        .all()
    )
    return [file_to_dict(f) for f in rows]


@router.post("/{record_id}/files", status_code=201)
def upload_file(
    company_id: int,
    record_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    load_resource_access(db, user.id, FinanceRecord, record_id, company_id)
    size = upload_size(file)
    key = generate_key("finance", file.filename)
    url = storage.save(file.file, key, content_type=file.content_type)
    ff = FinanceFile(
        record_id=record_id,
        filename=file.filename or key.rsplit("/", 1)[-1],
        url=url,
        storage_key=key,
        mimetype=file.content_type,
        size=size,
    )
    with store.discard_upload(storage, key, "upload_finance_file"):
        with store.mutation(db, "upload_finance_file"):
            db.add(ff)
        audit.record_company(
            db, company_id, user.id, "upload_finance_file",
            {"recordId": record_id, "fileId": ff.id, "filename": ff.filename},
        )
        store.commit(db, "upload_finance_file")
    return file_to_dict(ff)


def _load_file(db: Session, record_id: int, file_id: int) -> Optional[FinanceFile]:
    return (
        db.query(FinanceFile)
        .filter(FinanceFile.id == file_id, FinanceFile.record_id == record_id)
        .first()
    )


@router.get("/{record_id}/files/{file_id}")
def get_file(
    company_id: int,
    record_id: int,
    file_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    load_resource_access(db, user.id, FinanceRecord, record_id, company_id)
    ff = _load_file(db, record_id, file_id)
    if ff is None:
        raise NotFound("File not found")
    d = file_to_dict(ff)
    d["download_url"] = storage.get_download_url(ff.storage_key) or ff.url
    return d


@router.delete("/{record_id}/files/{file_id}")
def delete_file(
    company_id: int,
    record_id: int,
    file_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    role = get_membership_role(db, company_id, user.id)
    enforce(can_manage_members(role), user.id, "delete_finance_file")
    load_resource_access(db, user.id, FinanceRecord, record_id, company_id)
    ff = _load_file(db, record_id, file_id)
    if ff is None:
        raise Forbidden("Not found or no access")
    key, filename = ff.storage_key, ff.filename
    with store.mutation(db, "delete_finance_file"):
        db.delete(ff)
    audit.record_company(
        db, company_id, user.id, "delete_finance_file",
        {"recordId": record_id, "fileId": file_id, "filename": filename},
    )
    store.commit(db, "delete_finance_file")
    storage.delete(key)
    return {"status": "ok"}
