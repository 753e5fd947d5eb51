import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
import bcrypt
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..errors import Unauthenticated, Forbidden
from ..models.models import User


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    # Legacy bcrypt hashes ($2a$/$2b$/$2y$) imported from older deployments
    if hashed.startswith(("$2a$", "$2b$", "$2y$")):
        pb = plain.encode("utf-8")[:72]
        try:
            return bcrypt.checkpw(pb, hashed.encode("utf-8"))
        except ValueError:
            return False
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        return False


def create_session_token(user: User, remember_me: bool = False) -> str:
    ttl = settings.remember_ttl_seconds if remember_me else settings.session_ttl_seconds
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": str(user.id),
        "role": user.role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthenticated("Invalid token")


def _token_from_request(request: Request, creds: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        return token
    if creds is not None:
        return creds.credentials
    return None


def user_from_token(token: str, db: Session) -> User:
    payload = decode_token(token)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise Unauthenticated("Invalid subject")
    user = db.get(User, user_id)
    if user is None:
        raise Unauthenticated("User not found")
    return user


def get_current_identity(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the session to a user, banned or not."""
    token = _token_from_request(request, creds)
    if not token:
        raise Unauthenticated()
    return user_from_token(token, db)


def get_current_user(user: User = Depends(get_current_identity)) -> User:
    if not user.is_active:
        raise Forbidden("User is banned")
    return user


def require_roles(*required_roles: str):
    """Require the user's global role to be one of the given roles."""
    def _dep(user: User = Depends(get_current_user)):
        if user.role not in required_roles:
            raise Forbidden()
        return user

    return _dep
