"""
Company-wide file uploads.
Any member may upload; the uploader or a company owner/admin may delete.
"""
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import CompanyFile, User
from ..services import audit, store
from ..services.permissions import can_mutate, enforce, load_resource_access, require_membership
from ..storage.factory import generate_key, get_storage, upload_size
from ..storage.provider import StorageProvider

router = APIRouter(prefix="/api/companies/{company_id}/files", tags=["company-files"])


def company_file_to_dict(f: CompanyFile) -> dict:
    return {
        "id": f.id,
        "company_id": f.company_id,
        "uploaded_by": f.uploaded_by,
        "filename": f.filename,
        "description": f.description or "",
        "url": f.url,
        "mimetype": f.mimetype,
        "size": f.size,
        "uploaded_at": f.uploaded_at.isoformat() if f.uploaded_at else None,
    }


@router.get("")
def list_files(company_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    require_membership(db, company_id, user.id, "list_company_files")
    rows = (
        db.query(CompanyFile)
        .filter(CompanyFile.company_id == company_id)
        .order_by(CompanyFile.uploaded_at.desc(), CompanyFile.id.desc())
        .all()
    )
    return [company_file_to_dict(f) for f in rows]


@router.post("", status_code=201)
def upload_file(
    company_id: int,
    file: UploadFile = File(...),
    description: Optional[str] = Form(default=None),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    require_membership(db, company_id, user.id, "upload_company_file")
    size = upload_size(file)
    key = generate_key(f"companies/{company_id}", file.filename)
    url = storage.save(file.file, key, content_type=file.content_type)
    cf = CompanyFile(
        company_id=company_id,
        uploaded_by=user.id,
        filename=file.filename or key.rsplit("/", 1)[-1],
        description=description or "",
        url=url,
        storage_key=key,
        mimetype=file.content_type,
        size=size,
    )
    with store.discard_upload(storage, key, "upload_company_file"):
        with store.mutation(db, "upload_company_file"):
            db.add(cf)
        audit.record_company(db, company_id, user.id, "upload_company_file", {"fileId": cf.id, "filename": cf.filename})
        store.commit(db, "upload_company_file")
    return company_file_to_dict(cf)


@router.delete("/{file_id}")
def delete_file(
    company_id: int,
    file_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    cf, state, role = load_resource_access(db, user.id, CompanyFile, file_id, company_id, author_attr="uploaded_by")
    enforce(can_mutate(user.id, state, role), user.id, "delete_company_file")
    key, filename = cf.storage_key, cf.filename
    with store.mutation(db, "delete_company_file"):
        db.delete(cf)
    audit.record_company(db, company_id, user.id, "delete_company_file", {"fileId": file_id, "filename": filename})
    store.commit(db, "delete_company_file")
    storage.delete(key)
    return {"status": "ok"}
