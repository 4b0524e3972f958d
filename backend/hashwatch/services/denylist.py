"""Local denylist of known-malicious fingerprints (malicious_hashes table)."""
import logging
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from hashwatch.db.models import DenylistEntry, utcnow
from hashwatch.services.fingerprint import normalize_fingerprint

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "Custom hash"
DEFAULT_SOURCE = "custom"


def _insert_for(dialect_name: str):
    """Dialect insert with ON CONFLICT support (Postgres in prod, SQLite in tests)."""
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    raise NotImplementedError(f"Bulk upsert not supported for dialect {dialect_name}")


class Denylist:
    """Session-bound view of the denylist."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def exists(self, fingerprint: str) -> bool:
        """Membership check. Fails open: a store error counts as "not denylisted"."""
        try:
            result = await self._db.execute(
                select(DenylistEntry.id).where(DenylistEntry.fingerprint == fingerprint.lower()).limit(1)
            )
            return result.scalar_one_or_none() is not None
        except SQLAlchemyError:
            logger.exception("Denylist lookup failed for %s; treating as not denylisted", fingerprint)
            # Nothing has been written yet in this request; keep the session usable for the scan.
            await self._db.rollback()
            return False

    async def get(self, fingerprint: str) -> DenylistEntry | None:
        fp = normalize_fingerprint(fingerprint)
        result = await self._db.execute(select(DenylistEntry).where(DenylistEntry.fingerprint == fp))
        return result.scalar_one_or_none()

    async def upsert(
        self,
        fingerprint: str,
        description: str | None = None,
        source: str | None = None,
    ) -> DenylistEntry:
        """Create, or refresh updated_at. Description/source change only when given explicitly."""
        fp = normalize_fingerprint(fingerprint)
        entry = await self.get(fp)
        now = utcnow()
        if entry is None:
            entry = DenylistEntry(
                fingerprint=fp,
                description=description or DEFAULT_DESCRIPTION,
                source=source or DEFAULT_SOURCE,
                created_at=now,
                updated_at=now,
            )
            self._db.add(entry)
        else:
            if description:
                entry.description = description
            if source:
                entry.source = source
            entry.updated_at = now
        await self._db.flush()
        return entry

    async def upsert_batch(self, fingerprints: list[str], source: str, description: str) -> int:
        """One set-based upsert for the batch, committed as a checkpoint. Existing rows only get updated_at."""
        if not fingerprints:
            return 0
        now = utcnow()
        rows = [
            {
                "id": uuid4(),
                "fingerprint": fp,
                "description": description,
                "source": source,
                "created_at": now,
                "updated_at": now,
            }
            # ON CONFLICT cannot touch the same row twice in one statement
            for fp in dict.fromkeys(f.lower() for f in fingerprints)
        ]
        insert = _insert_for(self._db.bind.dialect.name)
        stmt = insert(DenylistEntry).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=[DenylistEntry.fingerprint],
            set_={"updated_at": stmt.excluded.updated_at},
        )
        try:
            await self._db.execute(stmt)
            await self._db.commit()
        except SQLAlchemyError:
            await self._db.rollback()
            raise
        return len(fingerprints)
