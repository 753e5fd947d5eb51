from fastapi import APIRouter, Depends, File, Response, UploadFile, status
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..errors import Unauthenticated, Forbidden, ValidationError
from ..logging import get_logger
from ..models.models import User
from ..schemas.auth import RegisterRequest, LoginRequest, ProfileUpdate, UserOut
from ..services import store
from ..services.avatars import normalize_avatar
from ..storage.factory import generate_key, get_storage, upload_size
from ..storage.provider import StorageProvider
from .security import (
    get_password_hash,
    verify_password,
    create_session_token,
    get_current_identity,
    get_current_user,
)

log = get_logger("companysync.auth")

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _taken(db: Session, username: str = None, email: str = None, exclude_id: int = None) -> bool:
    q = db.query(User.id)
    if username is not None:
        q = q.filter(User.username == username)
    if email is not None:
        q = q.filter(User.email == email)
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    return q.first() is not None


@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
def register(req: RegisterRequest, db: Session = Depends(get_db)):
    email = req.email.lower()
    if _taken(db, username=req.username) or _taken(db, email=email):
        raise ValidationError("Username or email already taken")
    user = User(
        username=req.username,
        email=email,
        password_hash=get_password_hash(req.password),
        role="user",
        avatar_url=req.avatar_url,
    )
    with store.mutation(db, "register"):
        db.add(user)
    store.commit(db, "register")
    db.refresh(user)
    log.info("auth.registered", user_id=user.id)
    return user


@router.post("/login")
def login(req: LoginRequest, response: Response, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == req.email.lower()).first()
    # Auto-created employees have no password until they register
    if not user or not verify_password(req.password, user.password_hash):
        raise Unauthenticated("Invalid credentials")
    if not user.is_active:
        raise Forbidden("User is banned")
    token = create_session_token(user, remember_me=req.remember_me)
    max_age = settings.remember_ttl_seconds if req.remember_me else settings.session_ttl_seconds
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=max_age,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )
    log.info("auth.login", user_id=user.id, remember_me=req.remember_me)
    return {"user": UserOut.model_validate(user), "access_token": token}


@router.post("/logout")
def logout(response: Response):
    response.delete_cookie(settings.session_cookie_name, path="/")
    return {"status": "ok"}


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return user


@router.patch("/me", response_model=UserOut)
def update_me(
    req: ProfileUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    email = req.email.lower() if req.email else None
    if req.username and _taken(db, username=req.username, exclude_id=user.id):
        raise ValidationError("Username already taken")
    if email and _taken(db, email=email, exclude_id=user.id):
        raise ValidationError("Email already taken")
    replaced_key = None
    with store.mutation(db, "update_profile"):
        if req.username:
            user.username = req.username
        if email:
            user.email = email
        if req.avatar_url is not None and (req.avatar_url or None) != user.avatar_url:
            replaced_key = user.avatar_key
            user.avatar_url = req.avatar_url or None
            user.avatar_key = None
    store.commit(db, "update_profile")
    if replaced_key:
        storage.delete(replaced_key)
    db.refresh(user)
    return user


@router.post("/avatar")
def upload_avatar(
    avatar: UploadFile = File(...),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    storage: StorageProvider = Depends(get_storage),
):
    upload_size(avatar)
    image = normalize_avatar(avatar)
    key = generate_key("avatars", "avatar.png")
    url = storage.save(image, key, content_type="image/png")
    replaced_key = user.avatar_key
    with store.discard_upload(storage, key, "upload_avatar"):
        with store.mutation(db, "upload_avatar"):
            user.avatar_url = url
            user.avatar_key = key
        store.commit(db, "upload_avatar")
    if replaced_key:
        storage.delete(replaced_key)
    log.info("auth.avatar_updated", user_id=user.id)
    return {"url": url, "username": user.username, "email": user.email}


@router.get("/status")
def account_status(user: User = Depends(get_current_identity)):
    # Reachable while banned so the client can show why access stopped
    return {"is_active": user.is_active, "role": user.role}
