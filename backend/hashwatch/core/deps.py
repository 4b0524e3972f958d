"""FastAPI dependencies: DB, current user, CSRF, super-admin, and the process-wide scan singletons."""
from functools import lru_cache
from uuid import UUID

from fastapi import Cookie, Depends, Header, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hashwatch.core.clock import SystemClock
from hashwatch.core.config import get_settings
from hashwatch.core.security import decode_access_token, is_super_admin_email, verify_csrf_token
from hashwatch.db import get_db, User
from hashwatch.services.denylist import Denylist
from hashwatch.services.hash_import import HashFeedImporter, ImportProgress
from hashwatch.services.remote_cache import RemoteResultCache
from hashwatch.services.scan_orchestrator import ScanOrchestrator
from hashwatch.services.virustotal import RateLimitedVirusTotal, VirusTotalClient

settings = get_settings()


async def get_current_user_optional(
    request: Request,
    db: AsyncSession = Depends(get_db),
    cookie: str | None = Cookie(None, alias=settings.cookie_name),
) -> User | None:
    """Return current user if valid JWT in cookie; else None (no 401)."""
    token = cookie
    if not token:
        return None
    payload = decode_access_token(token)
    if not payload or "sub" not in payload:
        return None
    try:
        user_id = UUID(payload["sub"])
    except (ValueError, TypeError):
        return None
    result = await db.execute(
        select(User).where(User.id == user_id, User.is_active == True)
    )
    user = result.scalar_one_or_none()
    if user is not None:
        request.state.user_id = user.id
    return user


async def get_current_user(
    user: User | None = Depends(get_current_user_optional),
) -> User:
    """Require authenticated user; 401 if not."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )
    return user


def require_csrf(
    csrf_cookie: str | None = Cookie(None, alias=settings.csrf_cookie_name),
    csrf_header: str | None = Header(None, alias=settings.csrf_header_name),
) -> None:
    """Validate CSRF for state-changing methods. Raise 403 if invalid."""
    if not verify_csrf_token(csrf_cookie, csrf_header):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or missing CSRF token",
        )


def require_super_admin(user: User = Depends(get_current_user)) -> User:
    """Denylist management: only the configured super-admin email."""
    if not is_super_admin_email(user.email):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return user


def require_metrics_access(
    user: User | None = Depends(get_current_user_optional),
    x_metrics_secret: str | None = Header(None, alias="X-Metrics-Secret"),
) -> None:
    """Allow /metrics if: super-admin (when metrics_require_admin), or valid X-Metrics-Secret, or no guard (local)."""
    s = get_settings()
    if s.metrics_require_admin:
        if user is None or not is_super_admin_email(user.email):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Metrics require admin authentication",
            )
        return
    if s.metrics_secret:
        if x_metrics_secret != s.metrics_secret:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing X-Metrics-Secret",
            )
        return
    # No guard (e.g. local dev with metrics_require_admin=False and no secret)
    return


# ----- Process-wide singletons (tests override these) -----


@lru_cache
def get_remote_client() -> RateLimitedVirusTotal:
    s = get_settings()
    client = VirusTotalClient(
        s.virustotal_api_key,
        base_url=s.virustotal_api_url,
        timeout_seconds=s.virustotal_timeout_seconds,
        large_file_threshold_bytes=s.large_file_threshold_bytes,
    )
    return RateLimitedVirusTotal(client, RemoteResultCache(ttl_seconds=s.remote_cache_ttl_seconds))


@lru_cache
def get_import_progress() -> ImportProgress:
    return ImportProgress()


@lru_cache
def get_clock() -> SystemClock:
    return SystemClock()


def get_scan_orchestrator(
    db: AsyncSession = Depends(get_db),
    remote: RateLimitedVirusTotal = Depends(get_remote_client),
    clock: SystemClock = Depends(get_clock),
) -> ScanOrchestrator:
    return ScanOrchestrator(db, remote, get_settings(), clock=clock)


def get_hash_importer(
    db: AsyncSession = Depends(get_db),
    progress: ImportProgress = Depends(get_import_progress),
) -> HashFeedImporter:
    return HashFeedImporter(Denylist(db), progress, get_settings())
