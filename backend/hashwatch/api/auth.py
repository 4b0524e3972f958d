"""Auth: login, logout, me, signup (open). Cookie-based JWT + CSRF."""
from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hashwatch.core.config import get_settings
from hashwatch.core.deps import get_current_user, require_csrf
from hashwatch.core.rate_limit import is_login_rate_limited
from hashwatch.core.security import (
    create_access_token,
    create_csrf_token,
    hash_password,
    is_super_admin_email,
    password_needs_rehash,
    verify_password,
)
from hashwatch.db import get_db, User
from hashwatch.api.schemas import AuthResponse, LoginRequest, SignupRequest, UserProfile
from hashwatch.services.audit import log_request_audit

router = APIRouter(prefix="/auth", tags=["auth"])
settings = get_settings()


def _cookie_params(secure: bool | None = None, samesite: str | None = None) -> dict:
    secure = secure if secure is not None else settings.cookie_secure
    samesite = samesite or settings.cookie_samesite
    return {
        "httponly": True,
        "samesite": samesite,
        "path": "/",
        "max_age": settings.access_token_expire_minutes * 60,
        "secure": secure,
    }


def _profile(user: User) -> UserProfile:
    return UserProfile(id=user.id, email=user.email, is_admin=is_super_admin_email(user.email))


def _start_session(response: Response, user: User) -> str:
    """Set the JWT cookie and a readable CSRF cookie; return the CSRF token for the client header."""
    access_token = create_access_token(str(user.id))
    csrf_token = create_csrf_token()
    response.set_cookie(key=settings.cookie_name, value=access_token, **_cookie_params())
    response.set_cookie(
        key=settings.csrf_cookie_name,
        value=csrf_token,
        httponly=False,
        samesite=settings.cookie_samesite,
        path="/",
        max_age=3600 * 24,
        secure=settings.cookie_secure,
    )
    return csrf_token


@router.post("/login", response_model=AuthResponse)
async def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    if is_login_rate_limited(body.email):
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Too many login attempts")
    result = await db.execute(
        select(User).where(User.email == body.email, User.is_active == True)
    )
    user = result.scalar_one_or_none()
    if not user or not verify_password(body.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
    if password_needs_rehash(user.password_hash):
        user.password_hash = hash_password(body.password)
    csrf_token = _start_session(response, user)
    await log_request_audit(db, request, user.id, "login_success", event_data={"email": body.email})
    return AuthResponse(user=_profile(user), csrf_token=csrf_token)


@router.post("/signup", response_model=AuthResponse)
async def signup(
    request: Request,
    response: Response,
    body: SignupRequest,
    db: AsyncSession = Depends(get_db),
):
    """Open signup: create account with email+password and start a session."""
    existing = await db.execute(select(User).where(User.email == body.email))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")
    user = User(
        email=body.email,
        password_hash=hash_password(body.password),
        is_active=True,
    )
    db.add(user)
    await db.flush()
    csrf_token = _start_session(response, user)
    await log_request_audit(db, request, user.id, "signup", event_data={"email": body.email})
    return AuthResponse(user=_profile(user), csrf_token=csrf_token)


@router.post("/logout", dependencies=[Depends(require_csrf)])
async def logout(response: Response):
    response.delete_cookie(settings.cookie_name, path="/")
    response.delete_cookie(settings.csrf_cookie_name, path="/")
    return {"ok": True}


@router.get("/me", response_model=UserProfile)
async def me(user: User = Depends(get_current_user)):
    return _profile(user)
