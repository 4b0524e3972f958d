"""Denylist bulk import from the MalwareBazaar recent SHA-256 export.

Resumable windows: each request fetches the feed, processes hashes
[start_index, start_index + limit) in fixed-size batches and reports
next_start_index / has_more so the client can continue.
"""
import logging
from dataclasses import asdict, dataclass
from datetime import datetime

import httpx
from sqlalchemy.exc import SQLAlchemyError

from hashwatch.core.config import Settings
from hashwatch.core.errors import Internal, NotFound, UpstreamUnavailable
from hashwatch.core.metrics import record_import_batch
from hashwatch.db.models import utcnow
from hashwatch.services.denylist import Denylist
from hashwatch.services.fingerprint import is_fingerprint

logger = logging.getLogger(__name__)

FEED_HEADERS = {
    "Accept": "text/plain",
    "User-Agent": "hashwatch-denylist-refresh",
    "Cache-Control": "no-cache",
}


class FeedUnavailable(UpstreamUnavailable):
    error = "Failed to fetch hash list from MalwareBazaar"


class ImportFailed(Internal):
    error = "Database error while processing hashes"


def _percent(done: int, total: int) -> int:
    return round(done / total * 100) if total > 0 else 0


@dataclass
class ImportProgress:
    """Process-wide progress counters, read by the status endpoint."""

    is_processing: bool = False
    total_hashes: int = 0
    processed_hashes: int = 0
    start_time: datetime | None = None
    last_update_time: datetime | None = None
    batch_size: int = 0
    error: str | None = None

    @property
    def progress(self) -> int:
        return _percent(self.processed_hashes, self.total_hashes)

    def snapshot(self) -> dict:
        return {**asdict(self), "progress": self.progress}


def parse_feed(text: str) -> list[str]:
    """Non-comment, non-blank lines that look like SHA-256 hex, lower-cased, feed order kept."""
    lines = [line.strip() for line in text.splitlines()]
    candidates = [line for line in lines if line and not line.startswith("#")]
    valid = [line.lower() for line in candidates if is_fingerprint(line)]
    if len(valid) != len(candidates):
        logger.warning("Found %d invalid hashes in feed", len(candidates) - len(valid))
    return valid


class HashFeedImporter:
    def __init__(
        self,
        denylist: Denylist,
        progress: ImportProgress,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.denylist = denylist
        self.progress = progress
        self.settings = settings
        self._transport = transport

    async def fetch_feed(self) -> list[str]:
        url = self.settings.hash_feed_url
        logger.info("Fetching hash list from %s", url)
        try:
            async with httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.hash_feed_timeout_seconds),
                headers=FEED_HEADERS,
                transport=self._transport,
            ) as client:
                response = await client.get(url)
        except httpx.TimeoutException as e:
            raise FeedUnavailable("Request to MalwareBazaar timed out", error="Request to MalwareBazaar timed out") from e
        except httpx.HTTPError as e:
            raise FeedUnavailable(f"{e.__class__.__name__}: {e}", error="Failed to fetch data from MalwareBazaar") from e

        if response.is_error:
            raise FeedUnavailable(f"Status: {response.status_code}, Message: {response.reason_phrase}")
        content_type = response.headers.get("content-type", "")
        if "text/plain" not in content_type:
            logger.warning("Expected text/plain but got %s", content_type or "no content type")
        text = response.text
        if not text.strip():
            raise FeedUnavailable(error="Empty response received from MalwareBazaar")

        hashes = parse_feed(text)
        if not hashes:
            raise NotFound(error="No valid SHA-256 hashes found in the response")
        logger.info("Found %d hashes in feed", len(hashes))
        return hashes

    def _busy_response(self) -> dict:
        p = self.progress
        return {
            "success": False,
            "message": "Hash update is already in progress",
            "progress": p.progress,
            "total_processed": p.processed_hashes,
            "total_hashes": p.total_hashes,
        }

    async def run(self, start_index: int = 0, limit: int | None = None) -> dict:
        """Import one window. Raises FeedUnavailable / NotFound / ImportFailed; returns the window report."""
        if self.progress.is_processing:
            logger.info("Hash update requested while another is running")
            return self._busy_response()

        start_index = max(start_index or 0, 0)
        limit = limit or self.settings.hash_import_max_per_request
        batch_size = self.settings.hash_import_batch_size
        p = self.progress
        now = utcnow()
        p.is_processing = True
        p.error = None
        p.batch_size = batch_size
        p.processed_hashes = start_index
        p.last_update_time = now
        if start_index == 0 or p.start_time is None:
            p.start_time = now
        try:
            return await self._run_window(start_index, limit, batch_size)
        except Exception as e:
            if p.error is None:
                p.error = getattr(e, "error", None) or str(e)
            raise
        finally:
            p.is_processing = False

    async def _run_window(self, start_index: int, limit: int, batch_size: int) -> dict:
        p = self.progress
        hashes = await self.fetch_feed()
        total = len(hashes)
        p.total_hashes = total
        p.processed_hashes = min(start_index, total)
        end_index = min(start_index + limit, total)
        window = hashes[start_index:end_index]
        logger.info("Processing hashes %d to %d of %d", start_index, end_index - 1, total)

        processed = 0
        for offset in range(0, len(window), batch_size):
            batch = window[offset:offset + batch_size]
            try:
                await self.denylist.upsert_batch(
                    batch, self.settings.hash_feed_source, self.settings.hash_feed_description
                )
            except SQLAlchemyError as e:
                record_import_batch(False)
                logger.exception(
                    "Database error on batch %d to %d", start_index + offset, start_index + offset + len(batch) - 1
                )
                p.error = str(e)
                if processed == 0 and start_index == 0:
                    raise ImportFailed(str(e)) from e
                next_index = start_index + processed
                return {
                    "success": True,
                    "message": f"Partially imported {processed} hashes in this request before encountering an error",
                    "processed_in_this_request": processed,
                    "total_processed": p.processed_hashes,
                    "total_hashes": total,
                    "next_start_index": next_index,
                    "has_more": next_index < total,
                    "progress": p.progress,
                    "error": str(e),
                }
            record_import_batch(True)
            processed += len(batch)
            p.processed_hashes = start_index + processed
            p.last_update_time = utcnow()
            logger.info("Overall progress: %d/%d (%d%%)", p.processed_hashes, total, p.progress)

        return {
            "success": True,
            "message": f"Successfully processed {processed} hashes in this request",
            "processed_in_this_request": processed,
            "total_processed": p.processed_hashes,
            "total_hashes": total,
            "next_start_index": end_index,
            "has_more": end_index < total,
            "progress": p.progress,
        }
