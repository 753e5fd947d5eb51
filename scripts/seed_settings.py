"""
Seed the admin settings table with its default keys.
Existing values are kept; use --moderator to set the active support moderator.

Usage:
    python scripts/seed_settings.py [--moderator admin@example.com] [--dry-run]
"""
import sys
import os
import argparse

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from companysync.db import Base, SessionLocal, engine
from companysync.models.models import Setting, User
from companysync.services.app_settings import seed_defaults
from companysync.services.support import ACTIVE_MODERATOR_KEY


def seed(moderator_email: str = None, dry_run: bool = False) -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        added = seed_defaults(db)
        print(f"[SEED] {added} default setting(s) added")
        if moderator_email:
            mod = db.query(User).filter(User.email == moderator_email.lower()).first()
            if not mod or mod.role not in ("admin", "support"):
                print(f"ERROR: {moderator_email} is not an admin or support user")
                sys.exit(1)
            db.flush()
            row = db.get(Setting, ACTIVE_MODERATOR_KEY)
            row.value = str(mod.id)
            print(f"[SET] {ACTIVE_MODERATOR_KEY} = {mod.id} ({mod.username})")
        if dry_run:
            db.rollback()
            print("[DRY RUN] No changes written")
        else:
            db.commit()
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed default admin settings")
    parser.add_argument("--moderator", help="Email of the active support moderator")
    parser.add_argument("--dry-run", action="store_true")
    args = parser.parse_args()
    seed(args.moderator, args.dry_run)
