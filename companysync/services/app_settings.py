"""Admin-editable key/value settings and their seeded defaults."""
from typing import Dict, Optional

from sqlalchemy.orm import Session

from ..models.models import Setting

DEFAULT_SETTINGS: Dict[str, Optional[str]] = {
    "siteTitle": "CompanySync",
    "supportEmail": "",
    "supportAvatarUrl": "",
    "emailNotifications": "false",
    "activeSupportModeratorId": "",
}


def seed_defaults(db: Session) -> int:
    """Insert any missing default keys. Existing values are left alone. Does not commit."""
    existing = {k for (k,) in db.query(Setting.key).all()}
    added = 0
    for key, value in DEFAULT_SETTINGS.items():
        if key not in existing:
            db.add(Setting(key=key, value=value))
            added += 1
    return added
