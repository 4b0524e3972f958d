"""Local denylist: shape validation, upsert semantics, fail-open lookups, set-based batch upsert."""
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from hashwatch.core.errors import InvalidFingerprintFormat
from hashwatch.db.models import DenylistEntry
from hashwatch.services.denylist import Denylist

FP = "ab" * 32


async def _count(db) -> int:
    return await db.scalar(select(func.count(DenylistEntry.id)))


@pytest.mark.asyncio
async def test_upsert_creates_with_defaults(db):
    entry = await Denylist(db).upsert(FP)
    assert entry.fingerprint == FP
    assert entry.description == "Custom hash"
    assert entry.source == "custom"


@pytest.mark.asyncio
async def test_upsert_normalizes_case(db):
    entry = await Denylist(db).upsert(FP.upper())
    assert entry.fingerprint == FP
    assert await Denylist(db).exists(FP.upper())


@pytest.mark.asyncio
async def test_upsert_existing_only_touches_timestamp(db):
    denylist = Denylist(db)
    first = await denylist.upsert(FP, description="Emotet loader", source="analyst")
    created_at = first.created_at
    again = await denylist.upsert(FP)
    assert again.id == first.id
    assert again.description == "Emotet loader"
    assert again.source == "analyst"
    assert again.created_at == created_at
    assert again.updated_at >= created_at
    assert await _count(db) == 1


@pytest.mark.asyncio
async def test_upsert_existing_with_explicit_fields_updates_them(db):
    denylist = Denylist(db)
    await denylist.upsert(FP, description="old", source="custom")
    entry = await denylist.upsert(FP, description="new", source="malwarebazaar")
    assert (entry.description, entry.source) == ("new", "malwarebazaar")


@pytest.mark.asyncio
@pytest.mark.parametrize("bad", ["ab" * 31 + "a", "ab" * 32 + "a", "xy" * 32, ""])
async def test_upsert_rejects_bad_shape_without_writing(db, bad):
    with pytest.raises(InvalidFingerprintFormat):
        await Denylist(db).upsert(bad)
    assert await _count(db) == 0


@pytest.mark.asyncio
async def test_exists(db):
    denylist = Denylist(db)
    assert not await denylist.exists(FP)
    await denylist.upsert(FP)
    assert await denylist.exists(FP)


@pytest.mark.asyncio
async def test_get_missing_returns_none(db):
    assert await Denylist(db).get(FP) is None


class _BrokenSession:
    """Session whose store is unreachable."""

    def __init__(self):
        self.rolled_back = False

    async def execute(self, *args, **kwargs):
        raise OperationalError("SELECT id FROM malicious_hashes", {}, Exception("connection refused"))

    async def rollback(self):
        self.rolled_back = True


@pytest.mark.asyncio
async def test_exists_fails_open_on_store_error():
    session = _BrokenSession()
    assert await Denylist(session).exists(FP) is False
    assert session.rolled_back


@pytest.mark.asyncio
async def test_upsert_batch_inserts_and_touches_existing(db):
    denylist = Denylist(db)
    existing = await denylist.upsert(FP, description="analyst note", source="analyst")
    await db.commit()
    batch = [FP, "cd" * 32, "EF" * 32, "cd" * 32]

    n = await denylist.upsert_batch(batch, "malwarebazaar", "MalwareBazaar recent hash list")

    assert n == len(batch)
    assert await _count(db) == 3
    await db.refresh(existing)
    assert existing.description == "analyst note"
    assert existing.source == "analyst"
    new = await denylist.get("ef" * 32)
    assert new.source == "malwarebazaar"
    assert new.description == "MalwareBazaar recent hash list"


@pytest.mark.asyncio
async def test_upsert_batch_empty_is_noop(db):
    assert await Denylist(db).upsert_batch([], "s", "d") == 0
