"""Fingerprints: SHA-256 over the whole stream, shape check, read failures."""
import io

import pytest
from fastapi import UploadFile

from hashwatch.core.errors import HashComputationFailed, InvalidFingerprintFormat
from hashwatch.services.fingerprint import (
    compute_fingerprint,
    is_fingerprint,
    normalize_fingerprint,
    read_upload,
)

EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
ABC_SHA256 = "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_compute_fingerprint_known_vectors():
    assert compute_fingerprint(b"") == EMPTY_SHA256
    assert compute_fingerprint(b"abc") == ABC_SHA256


def test_compute_fingerprint_depends_only_on_bytes():
    assert compute_fingerprint(b"same bytes") == compute_fingerprint(bytes(b"same bytes"))
    assert compute_fingerprint(b"same bytes") != compute_fingerprint(b"same bytes ")


def test_is_fingerprint_shape():
    assert is_fingerprint(ABC_SHA256)
    assert is_fingerprint(ABC_SHA256.upper())
    assert not is_fingerprint(ABC_SHA256[:63])
    assert not is_fingerprint(ABC_SHA256 + "0")
    assert not is_fingerprint(ABC_SHA256 + "\n")
    assert not is_fingerprint(" " + ABC_SHA256)
    assert not is_fingerprint("g" + ABC_SHA256[1:])
    assert not is_fingerprint("")
    assert not is_fingerprint(None)


def test_normalize_fingerprint_lowercases():
    assert normalize_fingerprint(ABC_SHA256.upper()) == ABC_SHA256
    assert normalize_fingerprint(f"  {ABC_SHA256}\n") == ABC_SHA256


@pytest.mark.parametrize("bad", [ABC_SHA256[:63], ABC_SHA256 + "a", "z" * 64, "", None])
def test_normalize_fingerprint_rejects_bad_shapes(bad):
    with pytest.raises(InvalidFingerprintFormat) as exc:
        normalize_fingerprint(bad)
    assert exc.value.status_code == 400


@pytest.mark.asyncio
async def test_read_upload_consumes_whole_stream():
    data = b"x" * (2 * 1024 * 1024 + 17)
    upload = UploadFile(file=io.BytesIO(data), filename="big.bin")
    content = await read_upload(upload)
    assert content == data
    assert compute_fingerprint(content) == compute_fingerprint(data)


class _BrokenStream(io.RawIOBase):
    def readable(self) -> bool:
        return True

    def read(self, size=-1):
        raise OSError("stream went away")


@pytest.mark.asyncio
async def test_read_upload_failure_is_hash_computation_failed():
    upload = UploadFile(file=_BrokenStream(), filename="broken.bin")
    with pytest.raises(HashComputationFailed) as exc:
        await read_upload(upload)
    assert exc.value.status_code == 500
    assert exc.value.error == "Failed to calculate file hash"
