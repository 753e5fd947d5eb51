"""
Support chat storage.
Messages are kept for a rolling window (SUPPORT_CHAT_RETENTION_DAYS) and
removed only by an explicit purge.
"""
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Setting, SupportMessage, User, utcnow

ACTIVE_MODERATOR_KEY = "activeSupportModeratorId"


def retention_cutoff(now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) - timedelta(days=settings.support_chat_retention_days)


def message_to_dict(m: SupportMessage) -> dict:
    return {
        "id": m.id,
        "from": "moderator" if m.from_moderator else "user",
        "text": m.message,
        "user_id": m.user_id,
        "moderator_id": m.moderator_id if m.from_moderator else None,
        "created_at": m.created_at.isoformat() if m.created_at else None,
    }


def list_recent(db: Session, user_id: int, now: Optional[datetime] = None) -> List[SupportMessage]:
    return (
        db.query(SupportMessage)
        .filter(SupportMessage.user_id == user_id, SupportMessage.created_at > retention_cutoff(now))
        .order_by(SupportMessage.created_at.asc(), SupportMessage.id.asc())
        .all()
    )


def add_message(db: Session, user_id: int, text: str, moderator_id: Optional[int] = None) -> SupportMessage:
    msg = SupportMessage(
        user_id=user_id,
        message=text,
        from_moderator=moderator_id is not None,
        moderator_id=moderator_id,
    )
    db.add(msg)
    return msg


def purge_expired(db: Session, now: Optional[datetime] = None) -> int:
    """Delete messages older than the retention window. Does not commit."""
    return (
        db.query(SupportMessage)
        .filter(SupportMessage.created_at < retention_cutoff(now))
        .delete(synchronize_session=False)
    )


def active_users(db: Session, now: Optional[datetime] = None) -> List[dict]:
    rows = (
        db.query(User.id, User.username, User.avatar_url, func.max(SupportMessage.created_at))
        .join(SupportMessage, SupportMessage.user_id == User.id)
        .filter(SupportMessage.created_at > retention_cutoff(now))
        .group_by(User.id, User.username, User.avatar_url)
        .order_by(func.max(SupportMessage.created_at).desc())
        .all()
    )
    return [
        {
            "id": uid,
            "username": username,
            "avatar_url": avatar_url,
            "last_message_at": last.isoformat() if last else None,
        }
        for uid, username, avatar_url, last in rows
    ]


def active_moderator_id(db: Session) -> Optional[int]:
    row = db.get(Setting, ACTIVE_MODERATOR_KEY)
    if not row or not row.value:
        return None
    try:
        return int(row.value)
    except ValueError:
        return None
