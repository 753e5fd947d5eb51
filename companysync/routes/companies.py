from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db, ilike_contains
from ..models.models import Company, CompanyUser, User
from ..schemas.companies import CompanyCreate, CompanyUpdate, MemberRole
from ..services import audit, store
from ..services.permissions import (
    can_manage_company,
    can_manage_members,
    enforce,
    get_membership_role,
)

router = APIRouter(prefix="/api/companies", tags=["companies"])


def company_to_dict(c: Company, role: Optional[str] = None) -> dict:
    d = {
        "id": c.id,
        "name": c.name,
        "description": c.description or "",
        "created_at": c.created_at.isoformat() if c.created_at else None,
    }
    if role is not None:
        d["role"] = role
    return d


@router.get("")
def list_companies(
    search: Optional[str] = None,
    role: Optional[MemberRole] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    q = (
        db.query(Company, CompanyUser.role_in_company)
        .join(CompanyUser, CompanyUser.company_id == Company.id)
        .filter(CompanyUser.user_id == user.id)
    )
    if search:
        q = q.filter(ilike_contains(Company.name, search))
    if role:
        q = q.filter(CompanyUser.role_in_company == role)
    rows = q.order_by(Company.created_at.desc(), Company.id.desc()).all()
    return [company_to_dict(c, r) for c, r in rows]


@router.post("", status_code=status.HTTP_201_CREATED)
def create_company(payload: CompanyCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    company = Company(name=payload.name.strip(), description=payload.description or "")
    with store.mutation(db, "create_company"):
        db.add(company)
        db.flush()
        db.add(CompanyUser(company_id=company.id, user_id=user.id, role_in_company="owner"))
    audit.record_company(db, company.id, user.id, "create_company", {"name": company.name})
    store.commit(db, "create_company")
    return company_to_dict(company, "owner")


@router.put("/{company_id}")
def update_company(
    company_id: int,
    payload: CompanyUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    role = get_membership_role(db, company_id, user.id)
    enforce(can_manage_company(role), user.id, "update_company")
    company = db.get(Company, company_id)
    before = {"name": company.name, "description": company.description}
    with store.mutation(db, "update_company"):
        company.name = payload.name.strip()
        company.description = payload.description or ""
    after = {"name": company.name, "description": company.description}
    audit.record_company(db, company_id, user.id, "update_company", audit.compute_diff(before, after))
    store.commit(db, "update_company")
    return company_to_dict(company, role)


@router.delete("/{company_id}")
def delete_company(company_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    role = get_membership_role(db, company_id, user.id)
    enforce(can_manage_company(role), user.id, "delete_company")
    company = db.get(Company, company_id)
    name = company.name
    with store.mutation(db, "delete_company"):
        db.delete(company)
    # company_logs has no FK, so the entry outlives the company
    audit.record_company(db, company_id, user.id, "delete_company", {"name": name})
    store.commit(db, "delete_company")
    return {"status": "ok"}


@router.get("/{company_id}/logs")
def company_logs(company_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    role = get_membership_role(db, company_id, user.id)
    enforce(can_manage_members(role), user.id, "view_company_logs")
    return audit.list_company_logs(db, company_id)
