"""
HTTP plumbing shared by the tool download and the coverage upload.

Both default to a single attempt. Retries are opt-in through
`http_max_attempts` and only cover transport errors and 408/429/5xx answers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, TypeVar

import httpx
import structlog
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from cargo_ci.core import safe_unlink

RETRYABLE_STATUSES: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})

log = structlog.get_logger(__name__)

T = TypeVar("T")


class HttpError(RuntimeError):
    """A request that did not produce an acceptable response."""


class HttpStatusError(HttpError):
    def __init__(self, *, method: str, url: str, status_code: int, body: str | None) -> None:
        msg = f"HTTP {status_code} for {method} {url}"
        if body:
            msg += f" (body: {body})"
        super().__init__(msg)
        self.status_code = status_code
        self.retryable = status_code in RETRYABLE_STATUSES


def make_http_client(
    *,
    timeout: httpx.Timeout | None = None,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    return httpx.Client(
        timeout=timeout or httpx.Timeout(60.0, connect=10.0),
        follow_redirects=True,
        headers={"User-Agent": "cargo-ci/0.1"},
        transport=transport,
    )


def _should_retry(exc: BaseException) -> bool:
    if isinstance(exc, HttpStatusError):
        return exc.retryable
    return isinstance(exc, httpx.TransportError)


def _with_retries(fn: Callable[[], T], *, method: str, url: str, max_attempts: int) -> T:
    def _before_sleep(state) -> None:
        log.warning(
            "http.retry",
            method=method,
            url=url,
            attempt=state.attempt_number,
            error=repr(state.outcome.exception()),
        )

    retrying = Retrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_exponential(multiplier=0.5, max=4.0),
        retry=retry_if_exception(_should_retry),
        before_sleep=_before_sleep,
        reraise=True,
    )
    try:
        return retrying(fn)
    except httpx.HTTPError as e:
        raise HttpError(f"{method} {url} failed: {e}") from e


def _raise_for_status(resp: httpx.Response, *, method: str, url: str, allowed: set[int]) -> None:
    if resp.status_code in allowed:
        return
    try:
        body = resp.read().decode("utf-8", errors="replace")[:200].strip() or None
    except httpx.HTTPError:
        body = None
    raise HttpStatusError(method=method, url=url, status_code=resp.status_code, body=body)


def request_with_retries(
    client: httpx.Client,
    *,
    method: str,
    url: str,
    params: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
    content: bytes | None = None,
    allowed_statuses: Iterable[int] = (200,),
    max_attempts: int = 1,
) -> httpx.Response:
    """
    Send one request, raising `HttpError` unless the status is allowed.

    `url` is logged and used in error messages; pass credentials through
    `params` or `headers`, never in the URL itself.
    """
    allowed = set(allowed_statuses)

    def _once() -> httpx.Response:
        resp = client.request(method, url, params=params, headers=headers, content=content)
        _raise_for_status(resp, method=method, url=url, allowed=allowed)
        return resp

    return _with_retries(_once, method=method, url=url, max_attempts=max_attempts)


@dataclass(frozen=True, slots=True)
class Download:
    url: str
    bytes_written: int


def download_to_file(
    client: httpx.Client,
    *,
    url: str,
    dest: Path,
    max_attempts: int = 1,
    chunk_bytes: int = 128 * 1024,
) -> Download:
    """
    Stream `url` into `dest`. A partial download never takes `dest`'s name.
    """
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)
    part = dest.with_name(dest.name + ".part")

    def _once() -> Download:
        written = 0
        with client.stream("GET", url) as resp:
            _raise_for_status(resp, method="GET", url=url, allowed={200})
            with part.open("wb") as f:
                for chunk in resp.iter_bytes(chunk_bytes):
                    f.write(chunk)
                    written += len(chunk)
            final_url = str(resp.url)
        os.replace(part, dest)
        return Download(url=final_url, bytes_written=written)

    try:
        return _with_retries(_once, method="GET", url=url, max_attempts=max_attempts)
    finally:
        safe_unlink(part)
