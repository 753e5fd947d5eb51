"""
Pytest configuration and fixtures.

The environment is set before the app is imported so the engine binds to a
shared in-memory SQLite database.
"""
import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["RATE_LIMIT"] = "100000/minute"
os.environ["STORAGE_PROVIDER"] = "local"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="companysync-uploads-")
os.environ["JWT_SECRET"] = "test-secret"

import pytest
from fastapi.testclient import TestClient

from companysync.auth.security import create_session_token, get_password_hash
from companysync.db import Base, SessionLocal, engine
from companysync.main import app
from companysync.models.models import Company, CompanyUser, User
from companysync.services.app_settings import seed_defaults
from companysync.storage.factory import get_storage
from companysync.storage.local_provider import LocalStorageProvider

PASSWORD = "secret123"


@pytest.fixture
def db():
    """Fresh schema per test, with default settings seeded."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    seed_defaults(session)
    session.commit()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def make_user(db, username, role="user", is_active=True, password=PASSWORD):
    user = User(
        username=username,
        email=f"{username}@example.com",
        password_hash=get_password_hash(password) if password else "",
        role=role,
        is_active=is_active,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def add_member(db, company, user, role="member"):
    m = CompanyUser(company_id=company.id, user_id=user.id, role_in_company=role)
    db.add(m)
    db.commit()
    return m


def client_for(user):
    """A TestClient authenticated as `user` through the bearer header."""
    client = TestClient(app)
    client.headers["Authorization"] = f"Bearer {create_session_token(user)}"
    return client


@pytest.fixture
def anon_client():
    return TestClient(app)


@pytest.fixture
def owner(db):
    return make_user(db, "olga")


@pytest.fixture
def admin_member(db):
    return make_user(db, "adam")


@pytest.fixture
def member(db):
    return make_user(db, "mila")


@pytest.fixture
def outsider(db):
    return make_user(db, "oscar")


@pytest.fixture
def site_admin(db):
    return make_user(db, "root", role="admin")


@pytest.fixture
def company(db, owner, admin_member, member):
    """A company with an owner, an admin and a plain member."""
    c = Company(name="Acme", description="Test company")
    db.add(c)
    db.commit()
    db.refresh(c)
    add_member(db, c, owner, "owner")
    add_member(db, c, admin_member, "admin")
    add_member(db, c, member, "member")
    return c


@pytest.fixture
def owner_client(owner):
    return client_for(owner)


@pytest.fixture
def admin_member_client(admin_member):
    return client_for(admin_member)


@pytest.fixture
def member_client(member):
    return client_for(member)


@pytest.fixture
def outsider_client(outsider):
    return client_for(outsider)


@pytest.fixture
def site_admin_client(site_admin):
    return client_for(site_admin)


@pytest.fixture
def tmp_storage(tmp_path):
    """Route uploads to a private directory for the duration of a test."""
    storage = LocalStorageProvider(base_dir=str(tmp_path / "uploads"))
    app.dependency_overrides[get_storage] = lambda: storage
    try:
        yield storage
    finally:
        app.dependency_overrides.pop(get_storage, None)


def stored_files(storage):
    return [p for p in storage.base_dir.rglob("*") if p.is_file()]


@pytest.fixture
def failing_commit(monkeypatch):
    """Make every store commit fail the way a lost database connection would."""
    from companysync.errors import StoreError
    from companysync.services import store

    def fail(db, action):
        db.rollback()
        raise StoreError()

    monkeypatch.setattr(store, "commit", fail)
