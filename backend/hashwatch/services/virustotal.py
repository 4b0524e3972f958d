"""VirusTotal API v3 client and its rate-limited (cached) front.

Lookups never raise: not-found, transport errors, timeouts and malformed bodies all
come back as a pending, all-zero result so a slow provider never fails a scan.
Submission is the exception: there is nothing to return in place of an upload, so
its failures propagate as RemoteSubmissionError.
"""
import logging
from dataclasses import dataclass

import httpx

from hashwatch.core.errors import UpstreamUnavailable
from hashwatch.core.metrics import record_remote_call
from hashwatch.services.analysis import (
    has_verdicts,
    is_settled,
    normalize_stats,
    pending_analysis,
    record_status,
)
from hashwatch.services.fingerprint import compute_fingerprint, is_fingerprint
from hashwatch.services.remote_cache import RemoteResultCache

logger = logging.getLogger(__name__)

VIRUSTOTAL_API_URL = "https://www.virustotal.com/api/v3"
LARGE_FILE_THRESHOLD_BYTES = 32 * 1024 * 1024


class RemoteSubmissionError(UpstreamUnavailable):
    error = "Failed to submit file for analysis"


@dataclass(frozen=True)
class Submission:
    analysis_id: str
    type: str | None
    fingerprint: str  # recomputed locally from the uploaded bytes


def _attributes(response: httpx.Response) -> dict:
    body = response.json()
    data = body.get("data") or {}
    return data.get("attributes") or {}


class VirusTotalClient:
    """Raw provider calls. One short-lived httpx.AsyncClient per call."""

    def __init__(
        self,
        api_key: str | None,
        base_url: str = VIRUSTOTAL_API_URL,
        timeout_seconds: float = 30.0,
        large_file_threshold_bytes: int = LARGE_FILE_THRESHOLD_BYTES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.large_file_threshold_bytes = large_file_threshold_bytes
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout_seconds),
            headers={"x-apikey": self.api_key or "", "Accept": "application/json"},
            transport=self._transport,
        )

    async def submit_file(self, content: bytes, file_name: str, content_type: str | None = None) -> Submission:
        """Upload for analysis. Files above the threshold go to a dedicated upload URL first."""
        if not self.api_key:
            raise RemoteSubmissionError("VirusTotal API key not configured")
        files = {"file": (file_name or "upload", content, content_type or "application/octet-stream")}
        try:
            async with self._client() as client:
                if len(content) > self.large_file_threshold_bytes:
                    logger.info("Large file (%d bytes), requesting upload URL", len(content))
                    url_response = await client.get("/files/upload_url")
                    url_response.raise_for_status()
                    upload_url = url_response.json()["data"]
                    response = await client.post(upload_url, files=files)
                else:
                    response = await client.post("/files", files=files)
                response.raise_for_status()
                data = response.json()["data"]
                analysis_id = data["id"]
                analysis_type = data.get("type")
        except httpx.HTTPStatusError as e:
            raise RemoteSubmissionError(
                f"Upload rejected: HTTP {e.response.status_code} {e.response.reason_phrase}"
            ) from e
        except httpx.HTTPError as e:
            raise RemoteSubmissionError(f"Upload failed: {e.__class__.__name__}: {e}") from e
        except (ValueError, KeyError, TypeError) as e:
            raise RemoteSubmissionError(f"Malformed upload response: {e}") from e
        logger.info("File uploaded, analysis id %s", analysis_id)
        return Submission(analysis_id=analysis_id, type=analysis_type, fingerprint=compute_fingerprint(content))

    async def file_report(self, fingerprint: str) -> dict:
        """Stored report for a fingerprint. Not found means "new to the provider", i.e. pending."""
        if not self.api_key:
            logger.warning("VirusTotal API key not configured; file report for %s treated as pending", fingerprint)
            return pending_analysis()
        try:
            async with self._client() as client:
                response = await client.get(f"/files/{fingerprint}")
            if response.status_code == 404:
                logger.info("No file report yet for %s", fingerprint)
                return pending_analysis()
            response.raise_for_status()
            attrs = _attributes(response)
        except httpx.HTTPStatusError as e:
            logger.warning("File report for %s failed: HTTP %s", fingerprint, e.response.status_code)
            return pending_analysis()
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.warning("File report for %s failed: %s: %s", fingerprint, e.__class__.__name__, e)
            return pending_analysis()

        stats = attrs.get("last_analysis_stats")
        if not isinstance(stats, dict):
            logger.info("File report for %s has no analysis stats", fingerprint)
            return pending_analysis()
        result = {"status": "completed", "stats": normalize_stats(stats)}
        results = attrs.get("last_analysis_results")
        if isinstance(results, dict):
            result["results"] = results
        if not has_verdicts(result):
            logger.warning("File report for %s has no engine verdicts", fingerprint)
        return result

    async def analysis_report(self, analysis_id: str) -> dict:
        """Status of one submission by provider-assigned id. Any non-2xx means pending."""
        if not self.api_key:
            logger.warning("VirusTotal API key not configured; analysis %s treated as pending", analysis_id)
            return pending_analysis()
        try:
            async with self._client() as client:
                response = await client.get(f"/analyses/{analysis_id}")
            if response.is_error:
                logger.info("Analysis %s not available: HTTP %s", analysis_id, response.status_code)
                return pending_analysis()
            attrs = _attributes(response)
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.warning("Analysis %s lookup failed: %s: %s", analysis_id, e.__class__.__name__, e)
            return pending_analysis()

        status = record_status(attrs.get("status"))
        stats = attrs.get("stats")
        if not isinstance(stats, dict):
            return {"status": status, "stats": normalize_stats(None)}
        result = {"status": status, "stats": normalize_stats(stats)}
        results = attrs.get("results")
        if isinstance(results, dict):
            result["results"] = results
        return result


class RateLimitedVirusTotal:
    """Provider front: each primitive cached per (operation, key) for the cache TTL."""

    def __init__(self, client: VirusTotalClient, cache: RemoteResultCache) -> None:
        self.client = client
        self.cache = cache

    async def _cached(self, operation: str, key: str, fn):
        value, hit = await self.cache.call(f"{operation}:{key}", fn)
        record_remote_call(operation, hit)
        return value

    async def submit_file(
        self, content: bytes, file_name: str, content_type: str | None, fingerprint: str
    ) -> Submission:
        return await self._cached(
            "submit", fingerprint, lambda: self.client.submit_file(content, file_name, content_type)
        )

    async def file_report(self, fingerprint: str) -> dict:
        return await self._cached("file_report", fingerprint, lambda: self.client.file_report(fingerprint))

    async def analysis_report(self, analysis_id: str) -> dict:
        return await self._cached("analysis_report", analysis_id, lambda: self.client.analysis_report(analysis_id))

    async def comprehensive_lookup(self, identifier: str) -> dict:
        """Best available verdict for a fingerprint or an analysis id (picked by shape).

        A fingerprint is only ever looked up as a file report; sending it to the
        analyses endpoint makes the provider reject the request.
        """
        if is_fingerprint(identifier):
            result = await self.file_report(identifier.lower())
            if is_settled(result):
                return result
            return pending_analysis()
        result = await self.analysis_report(identifier)
        if result.get("status") == "completed" and not has_verdicts(result):
            return {**result, "status": "pending"}
        return result
