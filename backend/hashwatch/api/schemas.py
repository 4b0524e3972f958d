"""Pydantic schemas for the HTTP API. Wire names are camelCase; analysis stats keep their provider keys."""
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel


def _config_forbid(**kwargs):
    return ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True, **kwargs)


def _config_out(**kwargs):
    return ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True, **kwargs)


# ----- Auth -----
class LoginRequest(BaseModel):
    model_config = _config_forbid()
    email: EmailStr
    password: str


class SignupRequest(BaseModel):
    model_config = _config_forbid()
    email: EmailStr
    password: str = Field(min_length=8)


class UserProfile(BaseModel):
    model_config = _config_out()
    id: UUID
    email: str
    is_admin: bool


class AuthResponse(BaseModel):
    model_config = _config_out()
    user: UserProfile
    csrf_token: str


# ----- Scans -----
class ScanRecordOut(BaseModel):
    model_config = _config_out()
    id: UUID
    user_id: UUID
    fingerprint: str
    file_name: str
    file_size: int
    status: str
    analysis: dict | None
    created_at: datetime
    updated_at: datetime


class ScanResponse(BaseModel):
    model_config = _config_out()
    scan: ScanRecordOut
    warning: str | None = None


class Pagination(BaseModel):
    model_config = _config_out()
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int
    has_next_page: bool
    has_prev_page: bool


class ScanListResponse(BaseModel):
    model_config = _config_out()
    scans: list[ScanRecordOut]
    pagination: Pagination


# ----- Denylist -----
class DenylistAddRequest(BaseModel):
    model_config = _config_forbid()
    hash: str | None = None
    description: str | None = None
    source: str | None = None


class DenylistAddResponse(BaseModel):
    model_config = _config_out()
    success: bool
    message: str
    hash: "DenylistEntryOut"


class DenylistEntryOut(BaseModel):
    model_config = _config_out()
    id: UUID
    fingerprint: str
    description: str | None
    source: str | None
    created_at: datetime
    updated_at: datetime


class RefreshRequest(BaseModel):
    model_config = _config_forbid()
    start_index: int = Field(0, ge=0)
    limit: int | None = Field(None, ge=1)


class RefreshResponse(BaseModel):
    model_config = _config_out()
    success: bool
    message: str
    processed_in_this_request: int | None = None
    total_processed: int | None = None
    total_hashes: int | None = None
    next_start_index: int | None = None
    has_more: bool | None = None
    progress: int | None = None
    error: str | None = None


class ImportStatus(BaseModel):
    model_config = _config_out()
    is_processing: bool
    total_hashes: int
    processed_hashes: int
    progress: int
    start_time: datetime | None
    last_update_time: datetime | None
    batch_size: int
    error: str | None


DenylistAddResponse.model_rebuild()
