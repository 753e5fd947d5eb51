"""
Helpers for applying a mutation and committing it with its audit entry.

Usage:

    with store.mutation(db, "update_note"):
        note.title = payload.title
    audit.record_company(db, ...)
    store.commit(db, "update_note")
"""
from contextlib import contextmanager
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import StoreError
from ..logging import get_logger

log = get_logger("companysync.store")


@contextmanager
def mutation(db: Session, action: str):
    """Apply and flush the primary mutation; store failures abort the request."""
    try:
        yield
        db.flush()
    except SQLAlchemyError as e:
        db.rollback()
        log.error("store.error", action=action, stage="mutation", error=str(e))
        raise StoreError()


def commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.error("store.error", action=action, stage="commit", error=str(e))
        raise StoreError()


@contextmanager
def discard_upload(storage, key: Optional[str], action: str):
    """Delete the stored object `key` when the row that references it fails to commit."""
    try:
        yield
    except Exception:
        if key is not None:
            log.warning("store.upload_discarded", action=action, key=key)
            storage.delete(key)
        raise
