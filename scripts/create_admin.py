"""
Create (or promote) a global admin account.

Usage:
    python scripts/create_admin.py --email admin@example.com --username admin --password secret
    python scripts/create_admin.py --email someone@example.com --role support
"""
import sys
import os
import argparse

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

load_dotenv()

from companysync.auth.security import get_password_hash
from companysync.db import Base, SessionLocal, engine
from companysync.models.models import User


def create_admin(email: str, username: str = None, password: str = None, role: str = "admin") -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        email = email.lower()
        user = db.query(User).filter(User.email == email).first()
        if user:
            user.role = role
            user.is_active = True
            if password:
                user.password_hash = get_password_hash(password)
            print(f"[UPDATE] {user.username} ({user.email}) is now {role}")
        else:
            if not username or not password:
                print("ERROR: --username and --password are required for a new account")
                sys.exit(1)
            user = User(username=username, email=email, password_hash=get_password_hash(password), role=role)
            db.add(user)
            print(f"[CREATE] {username} ({email}) as {role}")
        db.commit()
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create or promote an admin user")
    parser.add_argument("--email", required=True)
    parser.add_argument("--username")
    parser.add_argument("--password")
    parser.add_argument("--role", default="admin", choices=["admin", "support"])
    args = parser.parse_args()
    create_admin(args.email, args.username, args.password, args.role)
