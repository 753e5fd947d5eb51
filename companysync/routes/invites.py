from fastapi import APIRouter, Depends, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..errors import Conflict, Forbidden, ValidationError
from ..logging import get_logger
from ..models.models import Company, CompanyInvite, CompanyUser, User
from ..schemas.companies import InviteAction, InviteCreate
from ..services import audit, store
from ..services.permissions import can_manage_members, enforce, get_membership_role

log = get_logger("companysync.invites")

router = APIRouter(tags=["invites"])


def invite_to_dict(inv: CompanyInvite, company_name: str = None) -> dict:
    d = {
        "id": inv.id,
        "company_id": inv.company_id,
        "email": inv.email,
        "role": inv.role,
        "status": inv.status,
        "invited_by": inv.invited_by,
        "created_at": inv.created_at.isoformat() if inv.created_at else None,
    }
    if company_name is not None:
        d["company_name"] = company_name
    return d


@router.post("/api/companies/{company_id}/invites", status_code=status.HTTP_201_CREATED)
def invite_employee(
    company_id: int,
    payload: InviteCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    role = get_membership_role(db, company_id, user.id)
    enforce(can_manage_members(role), user.id, "invite_employee")
    email = payload.email.lower()

    existing_user = db.query(User).filter(User.email == email).first()
    if existing_user and get_membership_role(db, company_id, existing_user.id) is not None:
        raise Conflict("User is already a member of this company")
    pending = (
        db.query(CompanyInvite.id)
        .filter(
            CompanyInvite.company_id == company_id,
            CompanyInvite.email == email,
            CompanyInvite.status == "pending",
        )
        .first()
    )
    if pending:
        raise Conflict("An invite is already pending for this email")

    inv = CompanyInvite(company_id=company_id, email=email, role=payload.role, invited_by=user.id)
    with store.mutation(db, "invite_employee"):
        db.add(inv)
    audit.record_company(db, company_id, user.id, "invite_employee", {"email": email, "role": payload.role})
    store.commit(db, "invite_employee")
    return invite_to_dict(inv)


@router.get("/api/me/invites")
def my_invites(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    rows = (
        db.query(CompanyInvite, Company.name)
        .join(Company, Company.id == CompanyInvite.company_id)
        .filter(CompanyInvite.email == user.email.lower())
        .order_by(CompanyInvite.created_at.desc(), CompanyInvite.id.desc())
        .all()
    )
    return [invite_to_dict(inv, name) for inv, name in rows]


@router.post("/api/me/invites/{invite_id}")
def handle_invite(
    invite_id: int,
    payload: InviteAction,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    inv = db.get(CompanyInvite, invite_id)
    if inv is None or inv.email != user.email.lower():
        raise Forbidden("Not found or no access")
    if inv.status != "pending":
        raise ValidationError("Invite already handled")

    if payload.action == "decline":
        with store.mutation(db, "decline_invite"):
            inv.status = "declined"
        store.commit(db, "decline_invite")
        return invite_to_dict(inv)

    with store.mutation(db, "accept_invite"):
        inv.status = "accepted"
    # Accepting twice (or after being added directly) keeps the existing membership
    if get_membership_role(db, inv.company_id, user.id) is None:
        try:
            with db.begin_nested():
                db.add(CompanyUser(company_id=inv.company_id, user_id=user.id, role_in_company=inv.role))
        except IntegrityError:
            log.info("invite.membership_exists", invite_id=inv.id, user_id=user.id)
    audit.record_company(db, inv.company_id, user.id, "accept_invite", {"inviteId": inv.id, "role": inv.role})
    store.commit(db, "accept_invite")
    return invite_to_dict(inv)
