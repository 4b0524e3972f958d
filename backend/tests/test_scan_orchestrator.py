"""Scan orchestrator decision tree: existing record, denylist, provider report, submit, immediate lookup."""
import pytest
from sqlalchemy import func, select

from conftest import analysis_attributes, file_attributes
from hashwatch.core.config import MIB
from hashwatch.core.errors import FileTooLarge, UnsupportedFileType
from hashwatch.db.models import ScanRecord
from hashwatch.services.denylist import Denylist
from hashwatch.services.fingerprint import compute_fingerprint
from hashwatch.services.scan_orchestrator import ScanOrchestrator, UploadedFile
from hashwatch.services.virustotal import RateLimitedVirusTotal, RemoteSubmissionError

SAMPLE = b"MZ\x90\x00 pretend this is a binary"


def _upload(content: bytes = SAMPLE, name: str = "sample.exe", content_type: str = "application/x-msdownload"):
    return UploadedFile(file_name=name, content_type=content_type, content=content)


async def _count(db) -> int:
    return await db.scalar(select(func.count(ScanRecord.id)))


class _ExplodingLookup(RateLimitedVirusTotal):
    async def comprehensive_lookup(self, identifier: str) -> dict:
        raise RuntimeError("provider wrapper blew up")


@pytest.mark.asyncio
async def test_denylisted_file_completes_locally_without_provider(db, orchestrator, provider, user):
    fp = compute_fingerprint(SAMPLE)
    await Denylist(db).upsert(fp, description="known bad", source="test")

    outcome = await orchestrator.scan_upload(user.id, _upload())

    record = outcome.record
    assert outcome.source == "denylist"
    assert record.status == "completed"
    assert record.fingerprint == fp
    assert record.file_size == len(SAMPLE)
    assert record.analysis["stats"]["malicious"] == 1
    assert record.analysis["results"]["local_database"]["engine_name"] == "Local Hash Database"
    assert provider.requests == []


@pytest.mark.asyncio
async def test_unknown_file_is_submitted_and_left_pending(db, orchestrator, provider, user):
    outcome = await orchestrator.scan_upload(user.id, _upload())

    assert outcome.source == "submitted"
    assert outcome.record.status == "pending"
    assert outcome.record.analysis["stats"]["malicious"] == 0
    assert provider.calls("POST", "/files") == 1
    # one report lookup before submitting, one analysis lookup after; no retries
    assert provider.calls("GET", "/files/") == 1
    assert provider.calls("GET", "/analyses/an-1") == 1
    assert await _count(db) == 1


@pytest.mark.asyncio
async def test_resubmission_by_same_user_returns_existing_record(db, orchestrator, provider, user):
    first = await orchestrator.scan_upload(user.id, _upload())
    requests_after_first = len(provider.requests)

    second = await orchestrator.scan_upload(user.id, _upload(name="renamed.exe"))

    assert second.source == "existing"
    assert second.record.id == first.record.id
    assert second.record.file_name == "sample.exe"
    assert len(provider.requests) == requests_after_first
    assert await _count(db) == 1


@pytest.mark.asyncio
async def test_same_bytes_from_other_user_get_their_own_record(db, orchestrator, user, other_user):
    mine = await orchestrator.scan_upload(user.id, _upload())
    theirs = await orchestrator.scan_upload(other_user.id, _upload())
    assert theirs.record.id != mine.record.id
    assert theirs.record.user_id == other_user.id
    assert await _count(db) == 2


@pytest.mark.asyncio
async def test_existing_provider_report_completes_without_submit(db, orchestrator, provider, user):
    provider.file_reports[compute_fingerprint(SAMPLE)] = file_attributes(malicious=5, undetected=40)

    outcome = await orchestrator.scan_upload(user.id, _upload())

    assert outcome.source == "remote_report"
    assert outcome.record.status == "completed"
    assert outcome.record.analysis["stats"]["malicious"] == 5
    assert provider.calls("POST", "/files") == 0


@pytest.mark.asyncio
async def test_immediate_analysis_completion_updates_record(db, orchestrator, provider, user):
    provider.analyses["an-1"] = analysis_attributes("completed", malicious=0, undetected=70)

    outcome = await orchestrator.scan_upload(user.id, _upload())

    assert outcome.source == "remote_immediate"
    assert outcome.record.status == "completed"
    assert outcome.record.analysis["stats"]["undetected"] == 70


@pytest.mark.asyncio
async def test_completed_analysis_with_zero_stats_stays_pending(db, orchestrator, provider, user):
    provider.analyses["an-1"] = analysis_attributes("completed")

    outcome = await orchestrator.scan_upload(user.id, _upload())

    assert outcome.source == "submitted"
    assert outcome.record.status == "pending"


@pytest.mark.asyncio
async def test_submission_failure_propagates_and_creates_nothing(db, orchestrator, provider, user):
    provider.upload_status = 500
    with pytest.raises(RemoteSubmissionError):
        await orchestrator.scan_upload(user.id, _upload())
    assert await _count(db) == 0


@pytest.mark.asyncio
async def test_lookup_exceptions_never_fail_the_scan(db, remote, settings, clock, provider, user):
    orchestrator = ScanOrchestrator(db, _ExplodingLookup(remote.client, remote.cache), settings, clock=clock)

    outcome = await orchestrator.scan_upload(user.id, _upload())

    assert outcome.source == "submitted"
    assert outcome.record.status == "pending"
    assert provider.calls("POST", "/files") == 1


@pytest.mark.asyncio
async def test_oversized_upload_rejected_before_any_work(db, remote, settings, clock, provider, user):
    small = settings.model_copy(update={"max_upload_bytes": 10})
    orchestrator = ScanOrchestrator(db, remote, small, clock=clock)

    with pytest.raises(FileTooLarge):
        await orchestrator.scan_upload(user.id, _upload(content=b"x" * 11))
    assert provider.requests == []
    assert await _count(db) == 0


@pytest.mark.asyncio
async def test_upload_at_size_limit_is_accepted(db, remote, settings, clock, user):
    small = settings.model_copy(update={"max_upload_bytes": 10})
    orchestrator = ScanOrchestrator(db, remote, small, clock=clock)
    outcome = await orchestrator.scan_upload(user.id, _upload(content=b"x" * 10))
    assert outcome.record.file_size == 10


@pytest.mark.asyncio
async def test_default_size_limit_is_32_mib(orchestrator, settings):
    assert settings.max_upload_bytes == 32 * MIB
    orchestrator.validate_upload(_upload(content=b"\0" * (32 * MIB)))
    with pytest.raises(FileTooLarge):
        orchestrator.validate_upload(_upload(content=b"\0" * (32 * MIB + 1)))


@pytest.mark.asyncio
async def test_upload_one_byte_over_default_limit_is_rejected(db, orchestrator, provider, user):
    with pytest.raises(FileTooLarge):
        await orchestrator.scan_upload(user.id, _upload(content=b"\0" * (32 * MIB + 1)))
    assert provider.requests == []
    assert await _count(db) == 0


@pytest.mark.asyncio
async def test_unsupported_content_type_rejected(db, orchestrator, provider, user):
    with pytest.raises(UnsupportedFileType) as exc:
        await orchestrator.scan_upload(user.id, _upload(content_type="application/x-unknown-thing"))
    assert "application/x-unknown-thing" in exc.value.details
    assert provider.requests == []
    assert await _count(db) == 0


@pytest.mark.asyncio
async def test_content_type_parameters_are_ignored(db, orchestrator, user):
    outcome = await orchestrator.scan_upload(
        user.id, _upload(content=b"plain text", name="a.txt", content_type="Text/Plain; charset=utf-8")
    )
    assert outcome.record.status == "pending"


@pytest.mark.asyncio
async def test_missing_content_type_rejected(db, orchestrator, user):
    with pytest.raises(UnsupportedFileType):
        await orchestrator.scan_upload(user.id, _upload(content_type=None))
