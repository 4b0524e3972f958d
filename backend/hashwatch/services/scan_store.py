"""Scan record persistence: by id (owner-scoped), latest by (user, fingerprint), newest-first pages."""
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hashwatch.db.models import ScanRecord, utcnow


class ScanRecordStore:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_for_user(self, scan_id: UUID, user_id: UUID) -> ScanRecord | None:
        result = await self._db.execute(
            select(ScanRecord).where(ScanRecord.id == scan_id, ScanRecord.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def latest_for_fingerprint(self, user_id: UUID, fingerprint: str) -> ScanRecord | None:
        result = await self._db.execute(
            select(ScanRecord)
            .where(ScanRecord.user_id == user_id, ScanRecord.fingerprint == fingerprint)
            .order_by(ScanRecord.created_at.desc(), ScanRecord.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        *,
        user_id: UUID,
        fingerprint: str,
        file_name: str,
        file_size: int,
        status: str,
        analysis: dict,
        now: datetime | None = None,
    ) -> ScanRecord:
        now = now or utcnow()
        record = ScanRecord(
            user_id=user_id,
            fingerprint=fingerprint,
            file_name=file_name,
            file_size=file_size,
            status=status,
            analysis=analysis,
            created_at=now,
            updated_at=now,
        )
        self._db.add(record)
        await self._db.flush()
        return record

    async def update_analysis(
        self, record: ScanRecord, status: str, analysis: dict, now: datetime | None = None
    ) -> ScanRecord:
        """Move a non-terminal record forward. Completed records are never rewritten."""
        if record.status == "completed":
            return record
        record.status = status
        record.analysis = analysis
        record.updated_at = now or utcnow()
        await self._db.flush()
        return record

    async def list_for_user(self, user_id: UUID, page: int, limit: int) -> tuple[list[ScanRecord], int]:
        total = await self._db.scalar(
            select(func.count(ScanRecord.id)).where(ScanRecord.user_id == user_id)
        )
        result = await self._db.execute(
            select(ScanRecord)
            .where(ScanRecord.user_id == user_id)
            .order_by(ScanRecord.created_at.desc(), ScanRecord.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), int(total or 0)

    async def commit(self) -> None:
        await self._db.commit()
