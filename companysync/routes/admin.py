"""
Admin panel API: users, companies, metrics and the audit log.
Every mutation here is written to the global audit log.
"""
from collections import Counter
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import require_roles
from ..db import get_db, ilike_contains
from ..errors import NotFound, ValidationError
from ..models.models import AuditLog, Company, CompanyUser, User, utcnow
from ..schemas.admin import AdminCompanyCreate, AdminCompanyUpdate, BanRequest, RoleRequest
from ..schemas.auth import UserOut
from ..services import audit, store
from ..services.permissions import can_delete_user, enforce
from .companies import company_to_dict

router = APIRouter(prefix="/api/admin", tags=["admin"])

require_admin = require_roles("admin")


@router.get("/users")
def list_users(
    search: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=200),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    q = db.query(User)
    if search:
        q = q.filter(or_(ilike_contains(User.username, search), ilike_contains(User.email, search)))
    total = q.count()
    rows = q.order_by(User.id.asc()).offset((page - 1) * page_size).limit(page_size).all()
    return {"users": [UserOut.model_validate(u).model_dump() for u in rows], "total": total}


def _get_user(db: Session, user_id: int) -> User:
    target = db.get(User, user_id)
    if target is None:
        raise NotFound("User not found")
    return target


@router.patch("/users/ban")
def ban_user(payload: BanRequest, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    if payload.id == admin.id and not payload.active:
        raise ValidationError("Cannot ban yourself")
    target = _get_user(db, payload.id)
    action = "unban_user" if payload.active else "ban_user"
    with store.mutation(db, action):
        target.is_active = payload.active
    audit.record(db, admin.id, action, {"targetUserId": target.id})
    store.commit(db, action)
    return {"status": "ok", "id": target.id, "is_active": target.is_active}


@router.patch("/users/role")
def change_user_role(payload: RoleRequest, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    target = _get_user(db, payload.id)
    old_role = target.role
    with store.mutation(db, "change_role"):
        target.role = payload.role
    audit.record(db, admin.id, "change_role", {"targetUserId": target.id, "from": old_role, "to": payload.role})
    store.commit(db, "change_role")
    return {"status": "ok", "id": target.id, "role": target.role}


@router.delete("/users/{user_id}")
def delete_user(user_id: int, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    enforce(can_delete_user(admin.id, user_id), admin.id, "delete_user", "Cannot delete your own account")
    target = _get_user(db, user_id)
    meta = {"targetUserId": target.id, "username": target.username, "email": target.email}
    with store.mutation(db, "delete_user"):
        db.delete(target)
    audit.record(db, admin.id, "delete_user", meta)
    store.commit(db, "delete_user")
    return {"status": "ok"}


@router.get("/companies")
def list_companies(
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    q = db.query(Company)
    if search:
        q = q.filter(ilike_contains(Company.name, search))
    rows = q.order_by(Company.created_at.desc(), Company.id.desc()).all()
    owners = dict(
        db.query(CompanyUser.company_id, User.username)
        .join(User, User.id == CompanyUser.user_id)
        .filter(CompanyUser.role_in_company == "owner")
        .all()
    )
    out = []
    for c in rows:
        d = company_to_dict(c)
        d["owner"] = owners.get(c.id)
        out.append(d)
    return out


@router.post("/companies", status_code=201)
def create_company(payload: AdminCompanyCreate, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    company = Company(name=payload.name.strip(), description=payload.description or "")
    with store.mutation(db, "create_company"):
        db.add(company)
    audit.record(db, admin.id, "create_company", {"companyId": company.id, "name": company.name})
    store.commit(db, "create_company")
    return company_to_dict(company)


@router.put("/companies/{company_id}")
def edit_company(
    company_id: int,
    payload: AdminCompanyUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    company = db.get(Company, company_id)
    if company is None:
        raise NotFound("Company not found")
    before = {"name": company.name, "description": company.description}
    with store.mutation(db, "edit_company"):
        company.name = payload.name.strip()
        company.description = payload.description or ""
    after = {"name": company.name, "description": company.description}
    audit.record(db, admin.id, "edit_company", {"companyId": company.id, "changes": audit.compute_diff(before, after)})
    store.commit(db, "edit_company")
    return company_to_dict(company)


@router.delete("/companies/{company_id}")
def delete_company(company_id: int, db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    company = db.get(Company, company_id)
    if company is None:
        raise NotFound("Company not found")
    name = company.name
    with store.mutation(db, "delete_company"):
        db.delete(company)
    audit.record(db, admin.id, "delete_company", {"companyId": company_id, "name": name})
    store.commit(db, "delete_company")
    return {"status": "ok"}


@router.get("/metrics")
def metrics(db: Session = Depends(get_db), admin: User = Depends(require_admin)):
    since = utcnow() - timedelta(days=7)
    stamps = db.query(AuditLog.created_at).filter(AuditLog.created_at > since).all()
    per_day = Counter(ts.date().isoformat() for (ts,) in stamps)
    return {
        "users": db.query(User).count(),
        "companies": db.query(Company).count(),
        "logs": len(stamps),
        "activity": [{"day": day, "count": per_day[day]} for day in sorted(per_day)],
    }


def _bound(value: Optional[str], name: str):
    try:
        return audit.parse_bound(value)
    except ValueError:
        raise ValidationError(f"Invalid '{name}' date")


@router.get("/logs")
def list_logs(
    user: Optional[str] = None,
    action: Optional[str] = None,
    date_from: Optional[str] = Query(default=None, alias="from"),
    date_to: Optional[str] = Query(default=None, alias="to"),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=audit.MAX_PAGE_SIZE),
    export: Optional[str] = None,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
):
    start = _bound(date_from, "from")
    end = _bound(date_to, "to")
    if export is not None:
        if export != "csv":
            raise ValidationError("Unsupported export format")
        rows = audit.export_logs(db, user, action, start, end)
        return Response(
            content=audit.logs_to_csv(rows),
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": 'attachment; filename="logs.csv"'},
        )
    rows, total = audit.query_logs(db, user, action, start, end, page=page, page_size=page_size)
    return {"logs": rows, "total": total, "page": page, "page_size": page_size}
