from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..errors import ValidationError
from ..models.models import Task, User
from ..schemas.content import TaskCreate, TaskUpdate
from ..services import audit, store
from ..services.permissions import (
    can_manage_tasks,
    enforce,
    get_membership_role,
    load_resource_access,
    require_membership,
)

router = APIRouter(prefix="/api/companies/{company_id}/tasks", tags=["tasks"])


def task_to_dict(t: Task) -> dict:
    return {
        "id": t.id,
        "company_id": t.company_id,
        "title": t.title,
        "description": t.description or "",
        "status": t.status,
        "assignee_id": t.assignee_id,
        "assignee": t.assignee.username if t.assignee else None,
        "created_at": t.created_at.isoformat() if t.created_at else None,
        "updated_at": t.updated_at.isoformat() if t.updated_at else None,
    }


def _check_assignee(db: Session, company_id: int, assignee_id):
    if assignee_id is not None and get_membership_role(db, company_id, assignee_id) is None:
        raise ValidationError("Assignee is not a member of this company")


@router.get("")
def list_tasks(company_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    require_membership(db, company_id, user.id, "list_tasks")
    rows = (
        db.query(Task)
        .filter(Task.company_id == company_id)
        .order_by(Task.created_at.desc(), Task.id.desc())
        .all()
    )
    return [task_to_dict(t) for t in rows]


@router.post("", status_code=201)
def create_task(company_id: int, payload: TaskCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    require_membership(db, company_id, user.id, "create_task")
    _check_assignee(db, company_id, payload.assignee_id)
    task = Task(
        company_id=company_id,
        title=payload.title.strip(),
        description=payload.description or "",
        status=payload.status or "open",
        assignee_id=payload.assignee_id,
    )
    with store.mutation(db, "create_task"):
        db.add(task)
    audit.record_company(db, company_id, user.id, "create_task", {"taskId": task.id, "title": task.title})
    store.commit(db, "create_task")
    return task_to_dict(task)


@router.put("/{task_id}")
def update_task(
    company_id: int,
    task_id: int,
    payload: TaskUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    task, _state, role = load_resource_access(db, user.id, Task, task_id, company_id, author_attr="assignee_id")
    enforce(can_manage_tasks(role), user.id, "update_task")
    _check_assignee(db, company_id, payload.assignee_id)
    before = task_to_dict(task)
    with store.mutation(db, "update_task"):
        for field in ("title", "description", "status", "assignee_id"):
            value = getattr(payload, field)
            if value is not None:
                setattr(task, field, value)
    after = task_to_dict(task)
    audit.record_company(
        db, company_id, user.id, "update_task",
        {"taskId": task.id, "changes": audit.compute_diff(before, after)},
    )
    store.commit(db, "update_task")
    return after


@router.delete("/{task_id}")
def delete_task(company_id: int, task_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    task, _state, role = load_resource_access(db, user.id, Task, task_id, company_id, author_attr="assignee_id")
    enforce(can_manage_tasks(role), user.id, "delete_task")
    with store.mutation(db, "delete_task"):
        db.delete(task)
    audit.record_company(db, company_id, user.id, "delete_task", {"taskId": task_id})
    store.commit(db, "delete_task")
    return {"status": "ok"}
