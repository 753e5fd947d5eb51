from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from ..auth.security import require_roles
from ..db import get_db
from ..errors import ValidationError
from ..models.models import Setting, User
from ..schemas.admin import SettingsUpdate
from ..services import audit, store

router = APIRouter(prefix="/api/admin/settings", tags=["settings"])


@router.get("")
def get_settings(db: Session = Depends(get_db), admin: User = Depends(require_roles("admin"))):
    rows = db.query(Setting).order_by(Setting.key.asc()).all()
    return {"settings": {s.key: s.value for s in rows}}


@router.post("")
def update_settings(
    payload: SettingsUpdate = Body(...),
    db: Session = Depends(get_db),
    admin: User = Depends(require_roles("admin")),
):
    if not payload:
        raise ValidationError("No settings given")
    # Only keys seeded beforehand can be updated
    existing = {s.key: s for s in db.query(Setting).filter(Setting.key.in_(list(payload))).all()}
    unknown = sorted(set(payload) - set(existing))
    if unknown:
        raise ValidationError(f"Unknown settings: {', '.join(unknown)}")
    changes = {}
    with store.mutation(db, "update_settings"):
        for key, value in payload.items():
            if existing[key].value != value:
                changes[key] = {"before": existing[key].value, "after": value}
                existing[key].value = value
    audit.record(db, admin.id, "update_settings", {"changes": changes})
    store.commit(db, "update_settings")
    return {"ok": True, "settings": {k: s.value for k, s in existing.items()}}
