"""
Authorization policy for company-scoped resources.

The decision functions are pure: they take the acting user's id, the
resource's current state and the actor's membership role, and return a
Decision. Only `load_resource_access` and `get_membership_role` touch the
store.
"""
from dataclasses import dataclass
from typing import Optional, Tuple, Type

from sqlalchemy import and_
from sqlalchemy.orm import Session

from ..errors import Forbidden
from ..logging import get_logger
from ..models.models import CompanyUser

log = get_logger("companysync.policy")

MANAGER_ROLES = frozenset({"owner", "admin"})


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


def allow(reason: str) -> Decision:
    return Decision(True, reason)


def deny(reason: str) -> Decision:
    return Decision(False, reason)


@dataclass(frozen=True)
class ResourceState:
    """What the policy needs to know about a company-scoped resource."""
    company_id: int
    author_id: Optional[int]
    status: Optional[str] = None
    status_gated: bool = False


def can_mutate(actor_id: int, resource: ResourceState, membership_role: Optional[str]) -> Decision:
    """Decide whether `actor_id` may edit or delete `resource`.

    Owners and admins of the resource's company always may. The author may
    too, unless the resource is status-gated and no longer pending.
    """
    if membership_role is None:
        return deny("not a member of the company")
    if membership_role in MANAGER_ROLES:
        return allow(f"company {membership_role}")
    if resource.author_id is not None and actor_id == resource.author_id:
        if not resource.status_gated:
            return allow("author")
        if resource.status == "pending":
            return allow("author of pending resource")
        return deny(f"author but status is {resource.status!r}")
    return deny("not the author")


def can_delete_user(actor_id: int, target_id: int) -> Decision:
    if actor_id == target_id:
        return deny("cannot delete own account")
    return allow("admin")


def can_manage_members(membership_role: Optional[str]) -> Decision:
    if membership_role in MANAGER_ROLES:
        return allow(f"company {membership_role}")
    return deny("requires company owner or admin")


def can_change_member_role(
    actor_id: int,
    actor_role: Optional[str],
    target_id: int,
    target_role: Optional[str],
) -> Decision:
    if actor_id == target_id:
        return deny("cannot change own membership")
    if target_role == "owner":
        return deny("cannot change the company owner")
    return can_manage_members(actor_role)


# Removing a member follows the same rules as changing their role
can_remove_member = can_change_member_role


def can_manage_company(membership_role: Optional[str]) -> Decision:
    if membership_role == "owner":
        return allow("company owner")
    return deny("requires company owner")


def can_manage_tasks(membership_role: Optional[str]) -> Decision:
    if membership_role == "owner":
        return allow("company owner")
    return deny("requires company owner")


def can_view_company(membership_role: Optional[str]) -> Decision:
    if membership_role is None:
        return deny("not a member of the company")
    return allow(f"company {membership_role}")


def enforce(decision: Decision, actor_id: int, action: str, detail: str = "Forbidden") -> None:
    """Raise Forbidden when `decision` denies, logging the reason."""
    if decision:
        return
    log.info("policy.denied", actor_id=actor_id, action=action, reason=decision.reason)
    raise Forbidden(detail)


# ---------------------------------------------------------------------------
# Store-backed lookups
# ---------------------------------------------------------------------------

def get_membership_role(db: Session, company_id: int, user_id: int) -> Optional[str]:
    row = (
        db.query(CompanyUser.role_in_company)
        .filter(CompanyUser.company_id == company_id, CompanyUser.user_id == user_id)
        .first()
    )
    return row[0] if row else None


def require_membership(db: Session, company_id: int, user_id: int, action: str = "view") -> str:
    role = get_membership_role(db, company_id, user_id)
    enforce(can_view_company(role), user_id, action, "No access to this company")
    return role


def load_resource_access(
    db: Session,
    actor_id: int,
    model: Type,
    resource_id: int,
    company_id: int,
    author_attr: str = "author_id",
    status_gated: bool = False,
) -> Tuple[object, ResourceState, str]:
    """Fetch a resource and the actor's membership role in one query.

    The join is inner, so a missing resource and a missing membership look
    the same: both raise Forbidden.
    """
    row = (
        db.query(model, CompanyUser.role_in_company)
        .join(
            CompanyUser,
            and_(CompanyUser.company_id == model.company_id, CompanyUser.user_id == actor_id),
        )
        .filter(model.id == resource_id, model.company_id == company_id)
        .first()
    )
    if row is None:
        log.info(
            "policy.denied",
            actor_id=actor_id,
            action=f"access:{model.__tablename__}",
            reason="resource or membership not found",
        )
        raise Forbidden("Not found or no access")
    obj, role = row
    state = ResourceState(
        company_id=obj.company_id,
        author_id=getattr(obj, author_attr),
        status=getattr(obj, "status", None) if status_gated else None,
        status_gated=status_gated,
    )
    return obj, state, role
