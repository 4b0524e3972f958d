"""Scans: submit a file, fetch one record (refreshing a pending verdict), list history newest-first."""
import logging
import math
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from hashwatch.api.schemas import Pagination, ScanListResponse, ScanRecordOut, ScanResponse
from hashwatch.core.deps import get_current_user, get_scan_orchestrator, require_csrf
from hashwatch.core.errors import InvalidInput, NotFound, TooManyRequests
from hashwatch.core.rate_limit import is_scan_rate_limited, scan_limiter
from hashwatch.db import get_db, User
from hashwatch.services.audit import log_request_audit
from hashwatch.services.fingerprint import read_upload
from hashwatch.services.scan_orchestrator import ScanOrchestrator, UploadedFile

logger = logging.getLogger(__name__)

router = APIRouter(tags=["scans"])

MAX_PAGE_SIZE = 100


def _positive_int(raw: str | None, default: int) -> int:
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise InvalidInput(f"{raw!r} is not an integer", error="Invalid pagination parameters")
    if value < 1:
        raise InvalidInput(f"{value} is below 1", error="Invalid pagination parameters")
    return value


@router.post("/scan", response_model=ScanResponse)
async def submit_scan(
    request: Request,
    file: UploadFile | None = File(None),
    user: User = Depends(get_current_user),
    _csrf: None = Depends(require_csrf),
    orchestrator: ScanOrchestrator = Depends(get_scan_orchestrator),
    db: AsyncSession = Depends(get_db),
):
    # Denylist fail-open may roll back the session and expire `user`; keep the id.
    user_id = user.id
    if file is None:
        raise InvalidInput(error="No file provided")
    if is_scan_rate_limited(str(user_id)):
        raise TooManyRequests(
            f"Scan rate limit exceeded; try again in {scan_limiter.retry_after(str(user_id))}s"
        )

    content = await read_upload(file)
    upload = UploadedFile(
        file_name=file.filename or "upload",
        content_type=file.content_type,
        content=content,
    )
    outcome = await orchestrator.scan_upload(user_id, upload)
    record = outcome.record
    request.state.scan_source = outcome.source
    await log_request_audit(
        db,
        request,
        user_id,
        "scan_submitted",
        event_data={"scan_id": str(record.id), "fingerprint": record.fingerprint, "source": outcome.source},
    )
    return ScanResponse(scan=ScanRecordOut.model_validate(record))


@router.get("/scans", response_model=ScanListResponse)
async def list_scans(
    page: str | None = Query(None),
    limit: str | None = Query(None),
    user: User = Depends(get_current_user),
    orchestrator: ScanOrchestrator = Depends(get_scan_orchestrator),
):
    page_num = _positive_int(page, 1)
    page_size = _positive_int(limit, 10)
    if page_size > MAX_PAGE_SIZE:
        raise InvalidInput(f"limit may not exceed {MAX_PAGE_SIZE}", error="Invalid pagination parameters")

    rows, total = await orchestrator.store.list_for_user(user.id, page_num, page_size)
    total_pages = math.ceil(total / page_size)
    return ScanListResponse(
        scans=[ScanRecordOut.model_validate(r) for r in rows],
        pagination=Pagination(
            current_page=page_num,
            total_pages=total_pages,
            total_items=total,
            items_per_page=page_size,
            has_next_page=page_num < total_pages,
            has_prev_page=page_num > 1,
        ),
    )


@router.get("/scans/{scan_id}", response_model=ScanResponse)
async def get_scan(
    scan_id: str,
    user: User = Depends(get_current_user),
    orchestrator: ScanOrchestrator = Depends(get_scan_orchestrator),
):
    """Owner-only. Other users' records and malformed ids are indistinguishable from missing ones."""
    try:
        record_id = UUID(scan_id)
    except ValueError:
        raise NotFound(error="Scan not found")
    record = await orchestrator.store.get_for_user(record_id, user.id)
    if record is None:
        raise NotFound(error="Scan not found")
    outcome = await orchestrator.refresh(record)
    return ScanResponse(scan=ScanRecordOut.model_validate(outcome.record), warning=outcome.warning)
