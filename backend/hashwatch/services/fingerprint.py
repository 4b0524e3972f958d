"""Content fingerprints: SHA-256 hex over the full upload, plus the shape check used by the denylist and lookups."""
import hashlib
import re

from fastapi import UploadFile

from hashwatch.core.errors import HashComputationFailed, InvalidFingerprintFormat

FINGERPRINT_LENGTH = 64
_FINGERPRINT_RE = re.compile(r"[a-fA-F0-9]{64}")
_READ_CHUNK_BYTES = 1024 * 1024


def compute_fingerprint(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def is_fingerprint(value: str | None) -> bool:
    """True if value has the fingerprint shape (64 hex chars, any case)."""
    return bool(value) and _FINGERPRINT_RE.fullmatch(value) is not None


def normalize_fingerprint(value: str | None) -> str:
    """Return the lowercase fingerprint; raise InvalidFingerprintFormat otherwise."""
    candidate = (value or "").strip()
    if not is_fingerprint(candidate):
        raise InvalidFingerprintFormat(f"Got {len(candidate)} characters: {candidate[:80]!r}")
    return candidate.lower()


async def read_upload(upload: UploadFile) -> bytes:
    """Read the whole upload stream. A stream that cannot be fully read is fatal for the request."""
    chunks: list[bytes] = []
    try:
        while True:
            chunk = await upload.read(_READ_CHUNK_BYTES)
            if not chunk:
                break
            chunks.append(chunk)
    except (OSError, RuntimeError, ValueError) as e:
        raise HashComputationFailed(str(e)) from e
    return b"".join(chunks)
