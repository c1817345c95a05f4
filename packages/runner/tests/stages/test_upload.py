from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from cargo_ci.core import UploadError
from cargo_ci.pipeline.definition import DEFAULT_DEFINITION
from cargo_ci.pipeline.events import read_events
from cargo_ci.stages.coverage import COVERAGE_META_KEY
from cargo_ci.stages.upload import stage_upload
from pydantic import SecretStr

SPEC = DEFAULT_DEFINITION.stage_map["upload-coverage"]
TOKEN = "0f9c2d7e-token"


def _ok_transport(seen: list[httpx.Request]) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.method == "POST":
            return httpx.Response(200, text="https://codecov.test/r\nhttps://storage.test/put")
        return httpx.Response(200)

    return httpx.MockTransport(handler)


def test_upload_sends_and_discards_report(make_ctx, settings, workspace: Path) -> None:
    ctx = make_ctx(s=settings.model_copy(update={"codecov_token": SecretStr(TOKEN)}))
    report = workspace / "lcov.info"
    report.write_text("SF:src/fs.rs\nend_of_record\n")
    ctx.meta[COVERAGE_META_KEY] = str(report)
    seen: list[httpx.Request] = []

    out = stage_upload(ctx, SPEC, transport=_ok_transport(seen))

    assert out["report_url"] == "https://codecov.test/r"
    assert [r.method for r in seen] == ["POST", "PUT"]
    assert seen[0].url.params["commit"] == ctx.trigger.commit
    assert not report.exists()

    events_text = ctx.layout.events_jsonl(ctx.run_id).read_text()
    assert TOKEN not in events_text
    types = [e["type"] for e in read_events(ctx.layout.events_jsonl(ctx.run_id))]
    assert types[-3:] == ["upload.start", "upload.finish", "artifact.discarded"]


def test_upload_without_token_fails(make_ctx, workspace: Path) -> None:
    ctx = make_ctx()
    (workspace / "lcov.info").write_text("SF:a.rs\n")
    with pytest.raises(UploadError, match="token"):
        stage_upload(ctx, SPEC, transport=_ok_transport([]))


def test_upload_without_report_fails(make_ctx, settings) -> None:
    ctx = make_ctx(s=settings.model_copy(update={"codecov_token": SecretStr(TOKEN)}))
    with pytest.raises(UploadError, match="No coverage report"):
        stage_upload(ctx, SPEC, transport=_ok_transport([]))


def test_upload_service_error_keeps_report(make_ctx, settings, workspace: Path) -> None:
    ctx = make_ctx(s=settings.model_copy(update={"codecov_token": SecretStr(TOKEN)}))
    report = workspace / "lcov.info"
    report.write_text("SF:a.rs\n")

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="internal")

    with pytest.raises(UploadError, match="500"):
        stage_upload(ctx, SPEC, transport=httpx.MockTransport(handler))
    assert report.exists()


def test_token_never_reaches_log_output(
    make_ctx, settings, workspace: Path, capsys: pytest.CaptureFixture[str], caplog: pytest.LogCaptureFixture
) -> None:
    ctx = make_ctx(s=settings.model_copy(update={"codecov_token": SecretStr(TOKEN)}))
    (workspace / "lcov.info").write_text("SF:src/fs.rs\nend_of_record\n")
    seen: list[httpx.Request] = []

    stage_upload(ctx, SPEC, transport=_ok_transport(seen))

    assert "token" not in seen[0].url.params
    assert seen[0].headers["Authorization"] == f"token {TOKEN}"
    captured = capsys.readouterr()
    assert TOKEN not in captured.out + captured.err
    assert TOKEN not in caplog.text
