from __future__ import annotations

import os
from typing import Any

import httpx

from cargo_ci.core import UploadError, register_secret, safe_unlink
from cargo_ci.pipeline.context import RunContext
from cargo_ci.pipeline.definition import StageSpec
from cargo_ci.pipeline.events import EventType

from .codecov import CodecovClient, UploadRequest
from .coverage import COVERAGE_META_KEY
from .http import make_http_client


def _service() -> str:
    return "github-actions" if os.environ.get("GITHUB_ACTIONS") == "true" else "custom"


def stage_upload(
    ctx: RunContext,
    spec: StageSpec,
    *,
    transport: httpx.BaseTransport | None = None,
) -> dict[str, Any]:
    """
    Send the coverage report to Codecov, then discard it from the Environment.

    The token is read from settings here and nowhere else; it is registered
    for log redaction before any request is made.
    """
    s = ctx.settings
    report = ctx.env.resolve(ctx.meta.get(COVERAGE_META_KEY) or s.coverage_output)
    if not report.is_file():
        raise UploadError(f"No coverage report to upload at {report}")

    if s.codecov_token is None or not s.codecov_token.get_secret_value():
        raise UploadError("Codecov token is not configured (CODECOV_TOKEN)")
    token = s.codecov_token.get_secret_value()
    register_secret(token)

    if not ctx.trigger.commit:
        raise UploadError("Cannot upload coverage without a commit SHA")

    request = UploadRequest(
        commit=ctx.trigger.commit,
        branch=ctx.trigger.branch,
        slug=ctx.trigger.slug,
        build=ctx.run_id,
        service=_service(),
    )

    ctx.emit(
        EventType.UPLOAD_START,
        stage=spec.id,
        report=str(report),
        service=request.service,
        fail_ci_if_error=s.fail_ci_if_error,
    )

    with make_http_client(transport=transport) as client:
        receipt = CodecovClient(
            client, base_url=s.codecov_url, max_attempts=s.http_max_attempts
        ).upload(report, request=request, token=token)

    ctx.emit(
        EventType.UPLOAD_FINISH,
        stage=spec.id,
        report_url=receipt.report_url,
        bytes=receipt.bytes_sent,
    )

    safe_unlink(report)
    ctx.emit(EventType.ARTIFACT_DISCARDED, stage=spec.id, path=str(report))

    return {
        "report_url": receipt.report_url,
        "_metrics": {"bytes_sent": receipt.bytes_sent},
    }
