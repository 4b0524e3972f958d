from .models import (
    User,
    ScanRecord,
    DenylistEntry,
    AuditEvent,
)
from .session import get_db, async_session_factory, engine, init_db

__all__ = [
    "User",
    "ScanRecord",
    "DenylistEntry",
    "AuditEvent",
    "get_db",
    "async_session_factory",
    "engine",
    "init_db",
]
