"""
Avatar lookups and the support chat avatar.
User avatars are uploaded through /api/auth/avatar.
"""
from typing import Optional
from urllib.parse import unquote

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

from ..auth.security import require_roles
from ..db import get_db
from ..errors import ValidationError
from ..models.models import Setting, User
from ..services import audit, store
from ..services.avatars import normalize_avatar
from ..storage.factory import generate_key, get_storage, upload_size
from ..storage.local_provider import URL_PREFIX
from ..storage.provider import StorageProvider

router = APIRouter(tags=["avatars"])

SUPPORT_AVATAR_SETTING = "supportAvatarUrl"


@router.get("/api/avatar-exists")
def avatar_exists(path: Optional[str] = None, storage: StorageProvider = Depends(get_storage)):
    if not path:
        raise ValidationError("No path provided")
    if not path.startswith(URL_PREFIX + "/"):
        raise ValidationError("Invalid path")
    key = unquote(path[len(URL_PREFIX) + 1:].split("?", 1)[0])
    return {"exists": bool(key) and storage.exists(key), "path": path}


@router.post("/api/admin/support/avatar")
def upload_support_avatar(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    admin: User = Depends(require_roles("admin")),
    storage: StorageProvider = Depends(get_storage),
):
    upload_size(file)
    image = normalize_avatar(file)
    key = generate_key("support", "avatar.png")
    url = storage.save(image, key, content_type="image/png")
    with store.discard_upload(storage, key, "update_support_avatar"):
        with store.mutation(db, "update_support_avatar"):
            setting = db.get(Setting, SUPPORT_AVATAR_SETTING)
            before = setting.value if setting else None
            if setting is None:
                setting = Setting(key=SUPPORT_AVATAR_SETTING)
                db.add(setting)
            setting.value = url
        audit.record(db, admin.id, "update_support_avatar", {"before": before, "after": url})
        store.commit(db, "update_support_avatar")
    return {"url": url}
