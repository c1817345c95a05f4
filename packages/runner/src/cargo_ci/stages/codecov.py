"""
Minimal Codecov upload client.

Speaks the v4 upload protocol: a POST to ``/upload/v4`` registers the upload
and answers with two lines (the report URL and a pre-signed storage URL),
then the gzipped payload is PUT to the storage URL. The token travels in the
`Authorization` header, never in a URL.
"""

from __future__ import annotations

import gzip
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx
import structlog

from cargo_ci.core import UploadError

from .http import HttpError, request_with_retries

log = structlog.get_logger(__name__)

UPLOAD_PATH = "/upload/v4"
PACKAGE = "cargo-ci"


@dataclass(frozen=True, slots=True)
class UploadRequest:
    commit: str
    branch: str
    slug: Optional[str] = None
    build: Optional[str] = None
    service: str = "custom"
    name: Optional[str] = None
    flags: Optional[str] = None

    def query(self) -> dict[str, str]:
        q = {
            "commit": self.commit,
            "branch": self.branch,
            "service": self.service,
            "package": PACKAGE,
        }
        for key, value in (
            ("slug", self.slug),
            ("build", self.build),
            ("name", self.name),
            ("flags", self.flags),
        ):
            if value:
                q[key] = value
        return q


@dataclass(frozen=True, slots=True)
class UploadReceipt:
    report_url: str
    bytes_sent: int


def build_payload(reports: list[tuple[str, bytes]], *, network: list[str] | None = None) -> bytes:
    """
    Assemble the upload body: the network (file list) section, then each
    report framed by a ``# path=`` header and an ``<<<<<< EOF`` marker.
    """
    parts: list[bytes] = []
    names = network if network is not None else [name for name, _ in reports]
    for n in names:
        parts.append(n.encode("utf-8") + b"\n")
    parts.append(b"<<<<<< network\n")
    for name, body in reports:
        parts.append(f"# path={name}\n".encode("utf-8"))
        parts.append(body)
        if not body.endswith(b"\n"):
            parts.append(b"\n")
        parts.append(b"<<<<<< EOF\n")
    return b"".join(parts)


def parse_upload_response(text: str) -> tuple[str, str]:
    lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
    if len(lines) < 2:
        raise UploadError(f"Unexpected Codecov response: {text[:200]!r}")
    return lines[0], lines[1]


class CodecovClient:
    def __init__(
        self,
        client: httpx.Client,
        *,
        base_url: str = "https://codecov.io",
        max_attempts: int = 1,
    ) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.max_attempts = max_attempts

    def upload(
        self,
        report: Path,
        *,
        request: UploadRequest,
        token: str,
    ) -> UploadReceipt:
        report = Path(report)
        try:
            body = report.read_bytes()
        except OSError as e:
            raise UploadError(f"Cannot read coverage report {report}: {e}") from e

        payload = gzip.compress(build_payload([(report.name, body)]))

        try:
            resp = request_with_retries(
                self.client,
                method="POST",
                url=self.base_url + UPLOAD_PATH,
                params=request.query(),
                headers={
                    "Accept": "text/plain",
                    "Authorization": f"token {token}",
                    "X-Reduced-Redundancy": "false",
                    "X-Content-Type": "application/x-gzip",
                },
                max_attempts=self.max_attempts,
            )
            report_url, storage_url = parse_upload_response(resp.text)

            log.debug("codecov.storage", report_url=report_url)

            request_with_retries(
                self.client,
                method="PUT",
                url=storage_url,
                headers={
                    "Content-Type": "application/x-gzip",
                    "Content-Encoding": "gzip",
                },
                content=payload,
                max_attempts=self.max_attempts,
            )
        except HttpError as e:
            raise UploadError(f"Codecov upload failed: {e}") from e

        return UploadReceipt(report_url=report_url, bytes_sent=len(payload))
