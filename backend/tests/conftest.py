"""Pytest fixtures: test client, DB, users, fake VirusTotal API, fake feed, fake clock."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from hashwatch.main import app
from hashwatch.db.models import Base, User
from hashwatch.core.config import get_settings
from hashwatch.core.deps import get_clock, get_hash_importer, get_import_progress, get_remote_client
from hashwatch.core.rate_limit import reset_rate_limits
from hashwatch.core.security import hash_password
from hashwatch.db.session import get_db
from hashwatch.services.denylist import Denylist
from hashwatch.services.hash_import import HashFeedImporter, ImportProgress
from hashwatch.services.remote_cache import RemoteResultCache
from hashwatch.services.scan_orchestrator import ScanOrchestrator
from hashwatch.services.virustotal import RateLimitedVirusTotal, VirusTotalClient

TEST_DATABASE_URL = "sqlite+aiosqlite://"
UPLOAD_HOST = "upload.virustotal.test"


class FakeClock:
    """Wall clock and monotonic clock that only move when told to."""

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        self._mono = 1000.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._mono

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)
        self._mono += seconds


def file_attributes(malicious: int = 0, undetected: int = 0, **extra_stats) -> dict:
    """attributes of a /files/{id} response with last_analysis_stats filled in."""
    stats = {"malicious": malicious, "undetected": undetected, "suspicious": 0, "harmless": 0}
    stats.update(extra_stats)
    results = {}
    if malicious:
        results["EngineA"] = {"category": "malicious", "engine_name": "EngineA", "result": "Trojan.Gen", "method": "blacklist"}
    return {"last_analysis_stats": stats, "last_analysis_results": results}


def analysis_attributes(status: str, malicious: int = 0, undetected: int = 0) -> dict:
    """attributes of an /analyses/{id} response."""
    return {
        "status": status,
        "stats": {"malicious": malicious, "undetected": undetected, "suspicious": 0, "harmless": 0},
        "results": {},
    }


class FakeVirusTotal:
    """In-memory VirusTotal v3 API served through httpx.MockTransport."""

    def __init__(self):
        self.file_reports: dict[str, dict] = {}
        self.analyses: dict[str, dict] = {}
        self.upload_status = 200
        self.analysis_id = "an-1"
        self.fail_lookups = False
        self.requests: list[httpx.Request] = []

    def calls(self, method: str, fragment: str) -> int:
        return sum(1 for r in self.requests if r.method == method and fragment in r.url.path)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "POST" and (path.endswith("/files") or request.url.host == UPLOAD_HOST):
            if self.upload_status != 200:
                return httpx.Response(self.upload_status, json={"error": {"code": "QuotaExceededError"}})
            return httpx.Response(200, json={"data": {"type": "analysis", "id": self.analysis_id}})
        if self.fail_lookups:
            raise httpx.ConnectError("provider unreachable", request=request)
        if request.method == "GET" and path.endswith("/files/upload_url"):
            return httpx.Response(200, json={"data": f"https://{UPLOAD_HOST}/upload/1"})
        if request.method == "GET" and "/files/" in path:
            attrs = self.file_reports.get(path.rsplit("/", 1)[1])
            if attrs is None:
                return httpx.Response(404, json={"error": {"code": "NotFoundError"}})
            return httpx.Response(200, json={"data": {"type": "file", "attributes": attrs}})
        if request.method == "GET" and "/analyses/" in path:
            attrs = self.analyses.get(path.rsplit("/", 1)[1])
            if attrs is None:
                return httpx.Response(404, json={"error": {"code": "NotFoundError"}})
            return httpx.Response(200, json={"data": {"type": "analysis", "attributes": attrs}})
        return httpx.Response(404)


class FakeFeed:
    """Plaintext hash feed served through httpx.MockTransport."""

    def __init__(self, text: str = ""):
        self.text = text
        self.status_code = 200
        self.timeout = False
        self.requests = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests += 1
        if self.timeout:
            raise httpx.ReadTimeout("feed timed out", request=request)
        return httpx.Response(self.status_code, text=self.text, headers={"content-type": "text/plain; charset=utf-8"})


def make_hashes(n: int, offset: int = 0) -> list[str]:
    return [f"{i + offset:064x}" for i in range(n)]


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    reset_rate_limits()
    yield


@pytest.fixture
async def db():
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> FakeVirusTotal:
    return FakeVirusTotal()


@pytest.fixture
def feed() -> FakeFeed:
    return FakeFeed()


@pytest.fixture
def progress() -> ImportProgress:
    return ImportProgress()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def remote(provider: FakeVirusTotal, clock: FakeClock, settings) -> RateLimitedVirusTotal:
    client = VirusTotalClient(
        "test-api-key",
        base_url=settings.virustotal_api_url,
        transport=httpx.MockTransport(provider.handler),
    )
    return RateLimitedVirusTotal(client, RemoteResultCache(ttl_seconds=15.0, clock=clock.monotonic))


@pytest.fixture
def orchestrator(db: AsyncSession, remote, settings, clock) -> ScanOrchestrator:
    return ScanOrchestrator(db, remote, settings, clock=clock)


@pytest.fixture
def importer(db: AsyncSession, progress, settings, feed) -> HashFeedImporter:
    return HashFeedImporter(Denylist(db), progress, settings, transport=httpx.MockTransport(feed.handler))


@pytest.fixture
async def client(db, remote, clock, progress, importer):
    async def get_db_override():
        yield db
    app.dependency_overrides[get_db] = get_db_override
    app.dependency_overrides[get_remote_client] = lambda: remote
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_import_progress] = lambda: progress
    app.dependency_overrides[get_hash_importer] = lambda: importer
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


async def _make_user(db: AsyncSession, email: str, password: str) -> User:
    user = User(email=email, password_hash=hash_password(password))
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture
async def user(db: AsyncSession) -> User:
    return await _make_user(db, "test@test.com", "password123")


@pytest.fixture
async def other_user(db: AsyncSession) -> User:
    """Second account for ownership tests."""
    return await _make_user(db, "other@other.com", "other12345")


@pytest.fixture
async def admin_user(db: AsyncSession, settings) -> User:
    return await _make_user(db, settings.super_admin_email, "admin12345")


@pytest.fixture
def login(client: AsyncClient):
    """Log in through the API; returns the CSRF token to send on state-changing requests."""
    async def _login(email: str, password: str) -> dict:
        r = await client.post("/api/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.text
        return {"X-CSRF-Token": r.json()["csrfToken"]}
    return _login
