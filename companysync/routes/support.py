"""
Support chat between users and moderators (global role admin or support).

Messages are stored first, then pushed to the other side over the support
WebSocket if it is connected. Delivery is best-effort; clients reload
history over REST.
"""
from typing import Optional

import anyio
from fastapi import APIRouter, Depends, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles, user_from_token
from ..db import SessionLocal, get_db
from ..errors import NotFound
from ..logging import get_logger
from ..models.models import User
from ..schemas.admin import SupportMessageIn
from ..services import audit, store
from ..services import support as support_service
from ..services.support_hub import SupportHub

log = get_logger("companysync.support")

router = APIRouter(tags=["support"])

MODERATOR_ROLES = ("admin", "support")
require_moderator = require_roles(*MODERATOR_ROLES)


def _push(hub: SupportHub, user_id: int, event: str, payload: dict, moderator: bool = False) -> None:
    # Called from sync handlers running in the threadpool
    async def _send():
        await hub.send(user_id, event, payload, moderator=moderator)

    anyio.from_thread.run(_send)


@router.get("/api/support/chat")
def my_chat(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    rows = support_service.list_recent(db, user.id)
    return {"messages": [support_service.message_to_dict(m) for m in rows]}


@router.post("/api/support/chat", status_code=201)
def send_to_support(
    payload: SupportMessageIn,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    with store.mutation(db, "support_message"):
        msg = support_service.add_message(db, user.id, payload.message)
    store.commit(db, "support_message")
    out = support_service.message_to_dict(msg)
    moderator_id = support_service.active_moderator_id(db)
    if moderator_id is not None:
        _push(
            request.app.state.support_hub,
            moderator_id,
            "support_message",
            {"user_id": user.id, "username": user.username, "message": out},
            moderator=True,
        )
    return out


@router.get("/api/admin/support/chat")
def moderator_chat(
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    moderator: User = Depends(require_moderator),
):
    rows = support_service.list_recent(db, user_id)
    return {"messages": [support_service.message_to_dict(m) for m in rows]}


@router.post("/api/admin/support/chat", status_code=201)
def moderator_reply(
    payload: SupportMessageIn,
    request: Request,
    user_id: int = Query(...),
    db: Session = Depends(get_db),
    moderator: User = Depends(require_moderator),
):
    if db.get(User, user_id) is None:
        raise NotFound("User not found")
    with store.mutation(db, "support_reply"):
        msg = support_service.add_message(db, user_id, payload.message, moderator_id=moderator.id)
    store.commit(db, "support_reply")
    out = support_service.message_to_dict(msg)
    _push(request.app.state.support_hub, user_id, "support_message", {"message": out})
    return out


@router.get("/api/admin/support/active-users")
def active_users(db: Session = Depends(get_db), moderator: User = Depends(require_moderator)):
    return {"users": support_service.active_users(db)}


@router.get("/api/admin/support/admins")
def moderators(db: Session = Depends(get_db), moderator: User = Depends(require_moderator)):
    rows = (
        db.query(User.id, User.username)
        .filter(User.role.in_(MODERATOR_ROLES), User.is_active.is_(True))
        .order_by(User.username.asc())
        .all()
    )
    return {"admins": [{"id": uid, "name": name} for uid, name in rows]}


@router.delete("/api/admin/support/chat/expired")
def purge_expired(db: Session = Depends(get_db), moderator: User = Depends(require_moderator)):
    with store.mutation(db, "purge_support_chat"):
        deleted = support_service.purge_expired(db)
    audit.record(db, moderator.id, "purge_support_chat", {"deleted": deleted})
    store.commit(db, "purge_support_chat")
    log.info("support.purged", deleted=deleted)
    return {"deleted": deleted}


@router.websocket("/api/support/ws")
async def support_ws(websocket: WebSocket, token: Optional[str] = None):
    if not token:
        await websocket.close(code=4401)
        return
    db = SessionLocal()
    try:
        user = user_from_token(token, db)
        user_id, is_moderator, active = user.id, user.role in MODERATOR_ROLES, user.is_active
    except HTTPException:
        await websocket.close(code=4401)
        return
    finally:
        db.close()
    if not active:
        await websocket.close(code=4403)
        return

    hub: SupportHub = websocket.app.state.support_hub
    await websocket.accept()
    await hub.connect(user_id, websocket, moderator=is_moderator)
    try:
        while True:
            data = await websocket.receive_text()
            if data and data.strip().lower() in {"ping", "keepalive"}:
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(user_id, websocket, moderator=is_moderator)
