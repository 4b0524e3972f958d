"""Denylist management (super-admin only): add one fingerprint, look one up, bulk refresh from the feed."""
import logging

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from hashwatch.api.schemas import (
    DenylistAddRequest,
    DenylistAddResponse,
    DenylistEntryOut,
    ImportStatus,
    RefreshRequest,
    RefreshResponse,
)
from hashwatch.core.deps import (
    get_hash_importer,
    get_import_progress,
    require_csrf,
    require_super_admin,
)
from hashwatch.core.errors import InvalidInput, NotFound
from hashwatch.db import get_db, User
from hashwatch.services.audit import log_request_audit
from hashwatch.services.denylist import Denylist
from hashwatch.services.hash_import import HashFeedImporter, ImportProgress

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/denylist", tags=["denylist"])


@router.post("", response_model=DenylistAddResponse)
async def add_hash(
    request: Request,
    body: DenylistAddRequest,
    user: User = Depends(require_super_admin),
    _csrf: None = Depends(require_csrf),
    db: AsyncSession = Depends(get_db),
):
    user_id = user.id
    if not body.hash:
        raise InvalidInput(error="Hash is required")
    entry = await Denylist(db).upsert(body.hash, description=body.description, source=body.source)
    logger.info("Denylist entry upserted: %s (%s)", entry.fingerprint, entry.source)
    await log_request_audit(
        db, request, user_id, "denylist_add", event_data={"fingerprint": entry.fingerprint, "source": entry.source}
    )
    return DenylistAddResponse(
        success=True,
        message="Hash added successfully",
        hash=DenylistEntryOut.model_validate(entry),
    )


@router.post("/refresh", response_model=RefreshResponse)
async def refresh_denylist(
    request: Request,
    body: RefreshRequest | None = Body(None),
    user: User = Depends(require_super_admin),
    _csrf: None = Depends(require_csrf),
    importer: HashFeedImporter = Depends(get_hash_importer),
    db: AsyncSession = Depends(get_db),
):
    """Import one window of the feed. Clients continue with nextStartIndex while hasMore."""
    user_id = user.id
    body = body or RefreshRequest()
    result = await importer.run(start_index=body.start_index, limit=body.limit)
    if result.get("processed_in_this_request"):
        await log_request_audit(
            db,
            request,
            user_id,
            "denylist_refresh",
            event_data={
                "start_index": body.start_index,
                "processed": result["processed_in_this_request"],
                "total_hashes": result.get("total_hashes"),
            },
        )
    return RefreshResponse(**result)


@router.get("/refresh", response_model=ImportStatus)
async def refresh_status(
    _: User = Depends(require_super_admin),
    progress: ImportProgress = Depends(get_import_progress),
):
    return ImportStatus(**progress.snapshot())


@router.get("/{fingerprint}", response_model=DenylistEntryOut)
async def get_entry(
    fingerprint: str,
    _: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    entry = await Denylist(db).get(fingerprint)
    if entry is None:
        raise NotFound(error="Hash not found in denylist")
    return DenylistEntryOut.model_validate(entry)
