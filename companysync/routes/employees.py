from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy import case
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..errors import Conflict, Forbidden, ValidationError
from ..models.models import CompanyUser, User
from ..schemas.companies import EmployeeCreate, EmployeeUpdate, RoleChange
from ..services import audit, store
from ..services.permissions import (
    can_change_member_role,
    can_manage_members,
    can_remove_member,
    enforce,
    get_membership_role,
    require_membership,
)

router = APIRouter(prefix="/api/companies/{company_id}/employees", tags=["employees"])

_ROLE_ORDER = case(
    (CompanyUser.role_in_company == "owner", 0),
    (CompanyUser.role_in_company == "admin", 1),
    else_=2,
)


def employee_to_dict(m: CompanyUser, u: User) -> dict:
    return {
        "user_id": u.id,
        "username": u.username,
        "email": u.email,
        "avatar_url": u.avatar_url,
        "role": m.role_in_company,
        "salary": float(m.salary) if m.salary is not None else 0.0,
        "note": m.note or "",
        "registered": bool(u.password_hash),
    }


def find_available_username(db: Session, base: str) -> str:
    base = base.strip() or "user"
    i = 0
    while True:
        name = f"{base}{i}" if i > 0 else base
        if not db.query(User.id).filter(User.username == name).first():
            return name
        i += 1


def _load_member(db: Session, company_id: int, user_id: int):
    row = (
        db.query(CompanyUser, User)
        .join(User, User.id == CompanyUser.user_id)
        .filter(CompanyUser.company_id == company_id, CompanyUser.user_id == user_id)
        .first()
    )
    if row is None:
        raise Forbidden("Not found or no access")
    return row


@router.get("")
def list_employees(company_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    require_membership(db, company_id, user.id, "list_employees")
    rows = (
        db.query(CompanyUser, User)
        .join(User, User.id == CompanyUser.user_id)
        .filter(CompanyUser.company_id == company_id)
        .order_by(_ROLE_ORDER, User.username.asc())
        .all()
    )
    return [employee_to_dict(m, u) for m, u in rows]


@router.post("", status_code=status.HTTP_201_CREATED)
def add_employee(
    company_id: int,
    payload: EmployeeCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    role = get_membership_role(db, company_id, user.id)
    enforce(can_manage_members(role), user.id, "add_employee")

    email = payload.email.lower()
    target: Optional[User] = db.query(User).filter(User.email == email).first()
    action = "add_employee"
    if target is not None:
        if get_membership_role(db, company_id, target.id) is not None:
            raise Conflict("User is already a member of this company")
    with store.mutation(db, action):
        if target is None:
            # Placeholder account; the person sets a password by registering later
            action = "create_user_and_add"
            target = User(username=find_available_username(db, payload.name), email=email, password_hash="")
            db.add(target)
            db.flush()
        member = CompanyUser(
            company_id=company_id,
            user_id=target.id,
            role_in_company=payload.role,
            salary=payload.salary or 0,
            note=payload.note or "",
        )
        db.add(member)
    audit.record_company(db, company_id, user.id, action, {"userId": target.id, "role": payload.role})
    store.commit(db, action)
    return employee_to_dict(member, target)


@router.put("/{user_id}")
def update_employee(
    company_id: int,
    user_id: int,
    payload: EmployeeUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    actor_role = get_membership_role(db, company_id, user.id)
    enforce(can_manage_members(actor_role), user.id, "update_employee")
    member, target = _load_member(db, company_id, user_id)
    # Any field edit counts: salary, note and account details are membership too
    enforce(
        can_change_member_role(user.id, actor_role, target.id, member.role_in_company),
        user.id,
        "update_employee",
    )
    email = payload.email.lower() if payload.email else None
    if payload.name and db.query(User.id).filter(User.username == payload.name, User.id != target.id).first():
        raise ValidationError("Username already taken")
    if email and db.query(User.id).filter(User.email == email, User.id != target.id).first():
        raise ValidationError("Email already taken")

    before = employee_to_dict(member, target)
    with store.mutation(db, "update_employee"):
        if payload.name:
            target.username = payload.name
        if email:
            target.email = email
        if payload.role is not None:
            member.role_in_company = payload.role
        if payload.salary is not None:
            member.salary = payload.salary
        if payload.note is not None:
            member.note = payload.note
    after = employee_to_dict(member, target)
    meta = {"userId": target.id, "changes": audit.compute_diff(before, after)}
    audit.record_company(db, company_id, user.id, "update_employee", meta)
    store.commit(db, "update_employee")
    return after


@router.delete("/{user_id}")
def remove_employee(
    company_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    actor_role = get_membership_role(db, company_id, user.id)
    enforce(can_manage_members(actor_role), user.id, "remove_employee")
    member, target = _load_member(db, company_id, user_id)
    enforce(
        can_remove_member(user.id, actor_role, target.id, member.role_in_company),
        user.id,
        "remove_employee",
    )
    with store.mutation(db, "remove_employee"):
        db.delete(member)
    audit.record_company(db, company_id, user.id, "remove_employee", {"userId": target.id})
    store.commit(db, "remove_employee")
    return {"status": "ok"}


@router.patch("/{user_id}/role")
def change_role(
    company_id: int,
    user_id: int,
    payload: RoleChange,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    actor_role = get_membership_role(db, company_id, user.id)
    enforce(can_manage_members(actor_role), user.id, "change_member_role")
    member, target = _load_member(db, company_id, user_id)
    enforce(
        can_change_member_role(user.id, actor_role, target.id, member.role_in_company),
        user.id,
        "change_member_role",
    )
    old_role = member.role_in_company
    with store.mutation(db, "change_member_role"):
        member.role_in_company = payload.role
    audit.record_company(
        db, company_id, user.id, "change_member_role",
        {"userId": target.id, "from": old_role, "to": payload.role},
    )
    store.commit(db, "change_member_role")
    return employee_to_dict(member, target)
