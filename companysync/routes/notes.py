from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import Note, User
from ..schemas.content import NoteCreate, NoteUpdate
from ..services import audit, store
from ..services.permissions import can_mutate, enforce, load_resource_access, require_membership

router = APIRouter(prefix="/api/companies/{company_id}/notes", tags=["notes"])


def note_to_dict(n: Note) -> dict:
    return {
        "id": n.id,
        "company_id": n.company_id,
        "author_id": n.author_id,
        "author": n.author.username if n.author else None,
        "title": n.title,
        "content": n.content,
        "created_at": n.created_at.isoformat() if n.created_at else None,
        "updated_at": n.updated_at.isoformat() if n.updated_at else None,
    }


@router.get("")
def list_notes(company_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    require_membership(db, company_id, user.id, "list_notes")
    rows = (
        db.query(Note)
        .filter(Note.company_id == company_id)
        .order_by(Note.created_at.desc(), Note.id.desc())
        .all()
    )
    return [note_to_dict(n) for n in rows]


@router.post("", status_code=201)
def create_note(company_id: int, payload: NoteCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    require_membership(db, company_id, user.id, "create_note")
    note = Note(company_id=company_id, author_id=user.id, title=payload.title.strip(), content=payload.content)
    with store.mutation(db, "create_note"):
        db.add(note)
    audit.record_company(db, company_id, user.id, "create_note", {"noteId": note.id, "title": note.title})
    store.commit(db, "create_note")
    return note_to_dict(note)


@router.put("/{note_id}")
def update_note(
    company_id: int,
    note_id: int,
    payload: NoteUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    # Notes have no approval workflow, so the author keeps edit rights
    note, state, role = load_resource_access(db, user.id, Note, note_id, company_id)
    enforce(can_mutate(user.id, state, role), user.id, "update_note")
    with store.mutation(db, "update_note"):
        if payload.title is not None:
            note.title = payload.title.strip()
        if payload.content is not None:
            note.content = payload.content
    audit.record_company(db, company_id, user.id, "update_note", {"noteId": note.id})
    store.commit(db, "update_note")
    return note_to_dict(note)


@router.delete("/{note_id}")
def delete_note(company_id: int, note_id: int, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    note, state, role = load_resource_access(db, user.id, Note, note_id, company_id)
    enforce(can_mutate(user.id, state, role), user.id, "delete_note")
    title = note.title
    with store.mutation(db, "delete_note"):
        db.delete(note)
    audit.record_company(db, company_id, user.id, "delete_note", {"noteId": note_id, "title": title})
    store.commit(db, "delete_note")
    return {"status": "ok"}
