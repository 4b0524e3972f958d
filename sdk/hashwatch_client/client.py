"""
Python client for the hashwatch API: login, submit a file, poll a pending scan until it settles,
list history, and drive the resumable denylist refresh (super-admin).
Transient upload failures are retried with exponential backoff.
"""
import mimetypes
import time
from pathlib import Path
from typing import Callable, Iterator
from uuid import UUID

import httpx

TERMINAL_STATUS = "completed"
# The server only re-checks a pending scan once it is this old; polling faster just returns the stored record.
DEFAULT_POLL_INTERVAL_SECONDS = 30.0
DEFAULT_POLL_TIMEOUT_SECONDS = 600.0

# The server accepts a fixed content-type vocabulary; local mimetypes tables name several of these differently.
EXTENSION_CONTENT_TYPES = {
    ".exe": "application/x-msdownload",
    ".dll": "application/x-msdownload",
    ".scr": "application/x-msdownload",
    ".com": "application/x-msdownload",
    ".msi": "application/x-msi",
    ".sh": "application/x-shellscript",
    ".bash": "application/x-shellscript",
    ".py": "application/x-python",
    ".js": "application/javascript",
    ".mjs": "application/javascript",
    ".php": "application/x-php",
    ".elf": "application/x-elf",
    ".so": "application/x-elf",
    ".dylib": "application/x-mach-binary",
    ".rar": "application/x-rar-compressed",
    ".7z": "application/x-7z-compressed",
    ".gz": "application/gzip",
    ".tgz": "application/gzip",
    ".tar": "application/x-tar",
    ".zip": "application/zip",
    ".json": "application/json",
    ".xml": "application/xml",
}
# Leading bytes for files whose extension says nothing.
MAGIC_CONTENT_TYPES = (
    (b"MZ", "application/x-msdownload"),
    (b"\x7fELF", "application/x-elf"),
    (b"\xcf\xfa\xed\xfe", "application/x-mach-binary"),
    (b"\xfe\xed\xfa\xcf", "application/x-mach-binary"),
    (b"#!", "application/x-shellscript"),
    (b"%PDF", "application/pdf"),
    (b"PK\x03\x04", "application/zip"),
)


def guess_content_type(path: Path, head: bytes = b"") -> str:
    """Content type for an upload, in the server's allow-list vocabulary where possible."""
    ext = path.suffix.lower()
    if ext in EXTENSION_CONTENT_TYPES:
        return EXTENSION_CONTENT_TYPES[ext]
    guessed = mimetypes.guess_type(path.name)[0]
    if guessed:
        return guessed
    for magic, content_type in MAGIC_CONTENT_TYPES:
        if head.startswith(magic):
            return content_type
    return "application/octet-stream"


class ScanTimeout(Exception):
    """Scan still not completed after the polling deadline."""

    def __init__(self, scan: dict):
        super().__init__(f"Scan {scan.get('id')} still {scan.get('status')} after polling timeout")
        self.scan = scan


class ScanClient:
    """Client for scan submission, history and denylist management."""

    def __init__(
        self,
        base_url: str,
        email: str,
        password: str,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.email = email
        self.password = password
        self._transport = transport
        self._sleep = sleep
        self._csrf_token: str | None = None
        self._session: httpx.Client | None = None

    def _get_session(self) -> httpx.Client:
        if self._session is None:
            self._session = httpx.Client(
                base_url=self.base_url,
                timeout=60.0,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._session

    def login(self) -> dict:
        """Login and store cookies + CSRF token."""
        session = self._get_session()
        r = session.post(
            "/api/auth/login",
            json={"email": self.email, "password": self.password},
        )
        r.raise_for_status()
        for name, value in r.cookies.items():
            session.cookies.set(name, value)
        data = r.json()
        self._csrf_token = data.get("csrfToken")
        return data

    def _headers(self) -> dict:
        h = {}
        if self._csrf_token:
            h["X-CSRF-Token"] = self._csrf_token
        return h

    def submit_file(self, path: str | Path, content_type: str | None = None, max_retries: int = 3) -> dict:
        """Upload one file for scanning. Returns the scan record (possibly still pending)."""
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(p)
        body = p.read_bytes()
        content_type = content_type or guess_content_type(p, body[:8])
        for attempt in range(max_retries):
            try:
                r = self._get_session().post(
                    "/api/scan",
                    files={"file": (p.name, body, content_type)},
                    headers=self._headers(),
                )
                # 503 means the provider refused the upload; worth another try. Other errors are final.
                if r.status_code == 503 and attempt < max_retries - 1:
                    self._sleep(2**attempt)
                    continue
                r.raise_for_status()
                return r.json()["scan"]
            except httpx.TransportError:
                if attempt == max_retries - 1:
                    raise
                self._sleep(2**attempt)
        raise RuntimeError("unreachable")

    def get_scan(self, scan_id: str | UUID) -> dict:
        """Fetch one scan. The response may carry a `warning` when the server could not check for updates."""
        r = self._get_session().get(f"/api/scans/{scan_id}")
        r.raise_for_status()
        return r.json()

    def wait_for_scan(
        self,
        scan_id: str | UUID,
        interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        timeout: float = DEFAULT_POLL_TIMEOUT_SECONDS,
    ) -> dict:
        """Poll until the scan is completed. Raises ScanTimeout with the last record otherwise."""
        waited = 0.0
        while True:
            scan = self.get_scan(scan_id)["scan"]
            if scan["status"] == TERMINAL_STATUS:
                return scan
            if waited >= timeout:
                raise ScanTimeout(scan)
            self._sleep(interval)
            waited += interval

    def list_scans(self, page: int = 1, limit: int = 10) -> dict:
        """One page of history, newest first: { scans, pagination }."""
        r = self._get_session().get("/api/scans", params={"page": page, "limit": limit})
        r.raise_for_status()
        return r.json()

    def iter_scans(self, limit: int = 50) -> Iterator[dict]:
        page = 1
        while True:
            data = self.list_scans(page=page, limit=limit)
            yield from data["scans"]
            if not data["pagination"]["hasNextPage"]:
                return
            page += 1

    def add_hash(self, fingerprint: str, description: str | None = None, source: str | None = None) -> dict:
        body = {"hash": fingerprint}
        if description is not None:
            body["description"] = description
        if source is not None:
            body["source"] = source
        r = self._get_session().post("/api/denylist", json=body, headers=self._headers())
        r.raise_for_status()
        return r.json()

    def refresh_denylist(self, limit: int | None = None, start_index: int = 0) -> list[dict]:
        """Run the resumable feed import to the end. Returns each window's response."""
        windows = []
        while True:
            body = {"startIndex": start_index}
            if limit is not None:
                body["limit"] = limit
            r = self._get_session().post("/api/denylist/refresh", json=body, headers=self._headers())
            r.raise_for_status()
            data = r.json()
            windows.append(data)
            if not data.get("success") or not data.get("hasMore"):
                return windows
            start_index = data["nextStartIndex"]

    def refresh_status(self) -> dict:
        r = self._get_session().get("/api/denylist/refresh")
        r.raise_for_status()
        return r.json()

    def close(self) -> None:
        if self._session:
            self._session.close()
            self._session = None

    def __enter__(self) -> "ScanClient":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
