"""Scan orchestration: the per-upload decision tree and the pending -> completed refresh on poll.

Upload path (one pass per request):
  validate -> fingerprint -> existing record for (user, fingerprint)? -> local denylist?
  -> provider report? -> submit + pending record -> one immediate lookup, no retries.
Poll path: completed is terminal; pending/queued records are re-checked at most
once per request and only after the minimum check interval.
"""
import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from hashwatch.core.clock import SystemClock, as_utc
from hashwatch.core.config import Settings
from hashwatch.core.errors import FileTooLarge, UnsupportedFileType
from hashwatch.core.metrics import record_scan_outcome
from hashwatch.db.models import ScanRecord
from hashwatch.services.analysis import (
    is_settled,
    local_detection_analysis,
    pending_analysis,
    record_status,
)
from hashwatch.services.denylist import Denylist
from hashwatch.services.fingerprint import compute_fingerprint
from hashwatch.services.scan_store import ScanRecordStore
from hashwatch.services.virustotal import RateLimitedVirusTotal

logger = logging.getLogger(__name__)

REFRESH_WARNING = "An error occurred while checking for updates. The scan status might not be current."


@dataclass(frozen=True)
class UploadedFile:
    file_name: str
    content_type: str | None
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class ScanOutcome:
    record: ScanRecord
    source: str  # existing | denylist | remote_report | submitted | remote_immediate


@dataclass
class RefreshOutcome:
    record: ScanRecord
    warning: str | None = None


def _base_content_type(content_type: str | None) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


class ScanOrchestrator:
    def __init__(
        self,
        db: AsyncSession,
        remote: RateLimitedVirusTotal,
        settings: Settings,
        clock: SystemClock | None = None,
        denylist: Denylist | None = None,
        store: ScanRecordStore | None = None,
    ) -> None:
        self.remote = remote
        self.settings = settings
        self.clock = clock or SystemClock()
        self.denylist = denylist or Denylist(db)
        self.store = store or ScanRecordStore(db)
        self._allowlist = {
            s.strip().lower() for s in settings.content_type_allowlist.split(",") if s.strip()
        }

    def validate_upload(self, upload: UploadedFile) -> None:
        limit = self.settings.max_upload_bytes
        if upload.size > limit:
            raise FileTooLarge(f"File is {upload.size} bytes; the limit is {limit} bytes")
        content_type = _base_content_type(upload.content_type)
        if content_type not in self._allowlist:
            raise UnsupportedFileType(
                f"File type {content_type or 'unknown'} is not supported. Please upload a different file type."
            )

    async def scan_upload(self, user_id: UUID, upload: UploadedFile) -> ScanOutcome:
        self.validate_upload(upload)
        fingerprint = compute_fingerprint(upload.content)
        logger.info("File hash calculated: %s (%d bytes)", fingerprint, upload.size)

        existing = await self.store.latest_for_fingerprint(user_id, fingerprint)
        if existing is not None:
            logger.info("Found existing scan %s for %s", existing.id, fingerprint)
            return self._outcome(existing, "existing")

        if await self.denylist.exists(fingerprint):
            logger.info("Hash found in local denylist: %s", fingerprint)
            record = await self._create(user_id, fingerprint, upload, "completed", local_detection_analysis())
            return self._outcome(record, "denylist")

        try:
            report = await self.remote.comprehensive_lookup(fingerprint)
        except Exception:
            logger.warning("Provider report lookup failed for %s; submitting instead", fingerprint, exc_info=True)
            report = None
        if report is not None and is_settled(report):
            logger.info("Existing provider report found for %s", fingerprint)
            record = await self._create(user_id, fingerprint, upload, "completed", report)
            return self._outcome(record, "remote_report")

        submission = await self.remote.submit_file(
            upload.content, upload.file_name, upload.content_type, fingerprint
        )
        if submission.fingerprint != fingerprint:
            logger.warning(
                "Calculated file hash (%s) doesn't match hash from upload (%s)",
                fingerprint,
                submission.fingerprint,
            )
        record = await self._create(user_id, fingerprint, upload, "pending", pending_analysis())
        # Persist before the follow-up lookup so the client always has something to poll.
        await self.store.commit()

        # One immediate attempt; anything slower is left to the poll path.
        try:
            result = await self.remote.comprehensive_lookup(submission.analysis_id or fingerprint)
        except Exception:
            logger.info("Analysis not immediately available for %s", fingerprint, exc_info=True)
            return self._outcome(record, "submitted")
        if is_settled(result):
            logger.info("Analysis completed immediately for %s", fingerprint)
            await self.store.update_analysis(record, "completed", result, now=self.clock.now())
            return self._outcome(record, "remote_immediate")
        return self._outcome(record, "submitted")

    async def refresh(self, record: ScanRecord) -> RefreshOutcome:
        """Poll step for one record. Never raises because of the provider."""
        if record.status == "completed":
            return RefreshOutcome(record)
        if record.status not in ("pending", "queued"):
            return RefreshOutcome(record)

        age = (self.clock.now() - as_utc(record.created_at)).total_seconds()
        if age < self.settings.poll_min_interval_seconds:
            logger.debug("Scan %s is only %ds old; too soon to check for updates", record.id, age)
            return RefreshOutcome(record)

        try:
            result = await self.remote.comprehensive_lookup(record.fingerprint)
        except Exception:
            logger.warning("Error getting analysis results for scan %s", record.id, exc_info=True)
            return RefreshOutcome(record, warning=REFRESH_WARNING)

        new_status = record_status(result.get("status"))
        if new_status != record.status:
            logger.info("Scan %s status changed from %s to %s", record.id, record.status, new_status)
            await self.store.update_analysis(
                record, new_status, {**result, "status": new_status}, now=self.clock.now()
            )
        return RefreshOutcome(record)

    async def _create(
        self, user_id: UUID, fingerprint: str, upload: UploadedFile, status: str, analysis: dict
    ) -> ScanRecord:
        return await self.store.create(
            user_id=user_id,
            fingerprint=fingerprint,
            file_name=upload.file_name,
            file_size=upload.size,
            status=status,
            analysis=analysis,
            now=self.clock.now(),
        )

    @staticmethod
    def _outcome(record: ScanRecord, source: str) -> ScanOutcome:
        record_scan_outcome(source)
        return ScanOutcome(record=record, source=source)
