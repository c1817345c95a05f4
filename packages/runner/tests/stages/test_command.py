from __future__ import annotations

import os
import sys
import time
from pathlib import Path

import pytest
from cargo_ci.core import CommandFailed, InfrastructureError, StageTimeout, TestFailure
from cargo_ci.pipeline.definition import StageSpec
from cargo_ci.pipeline.events import read_events
from cargo_ci.pipeline.stage import run_stage
from cargo_ci.stages.command import CommandStage, run_command


def test_run_command_streams_output_to_log_file(tmp_path: Path, logger) -> None:
    log_path = tmp_path / "logs" / "build.log"
    res = run_command(
        [sys.executable, "-c", "print('compiling'); print('done')"],
        cwd=tmp_path,
        env=dict(os.environ),
        log=logger,
        log_path=log_path,
    )
    assert res.exit_code == 0
    assert res.lines == 2
    assert log_path.read_text().splitlines() == ["compiling", "done"]


def test_run_command_nonzero_exit_carries_category(tmp_path: Path, logger) -> None:
    with pytest.raises(CommandFailed) as ei:
        run_command(
            [sys.executable, "-c", "import sys; print('test foo ... FAILED'); sys.exit(101)"],
            cwd=tmp_path,
            env=dict(os.environ),
            log=logger,
            category="test",
        )
    assert ei.value.exit_code == 101
    assert ei.value.category == "test"
    assert isinstance(ei.value, TestFailure)
    assert "FAILED" in (ei.value.tail or "")


def test_run_command_missing_executable(tmp_path: Path, logger) -> None:
    with pytest.raises(CommandFailed) as ei:
        run_command(
            [str(tmp_path / "no-such-script.sh")],
            cwd=tmp_path,
            env=dict(os.environ),
            log=logger,
            category="infrastructure",
        )
    assert ei.value.exit_code == 127
    assert isinstance(ei.value, InfrastructureError)


def test_run_command_timeout(tmp_path: Path, logger) -> None:
    with pytest.raises(StageTimeout):
        run_command(
            [sys.executable, "-c", "import time; time.sleep(30)"],
            cwd=tmp_path,
            env=dict(os.environ),
            log=logger,
            timeout_s=0.5,
        )


def test_run_command_timeout_kills_grandchildren(tmp_path: Path, logger) -> None:
    # A build script whose own child keeps the output pipe open.
    script = (
        "import subprocess, sys, time; "
        "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)']); "
        "time.sleep(30)"
    )
    t0 = time.monotonic()
    with pytest.raises(StageTimeout):
        run_command(
            [sys.executable, "-c", script],
            cwd=tmp_path,
            env=dict(os.environ),
            log=logger,
            timeout_s=1.0,
        )
    assert time.monotonic() - t0 < 10


def test_command_stage_runs_in_workspace_without_secrets(
    make_ctx, py, workspace: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("CODECOV_TOKEN", "tok-never-here")
    ctx = make_ctx()
    spec = StageSpec(
        id="build-test-projects",
        title="Build",
        kind="command",
        category="build",
        run=py(
            "import os, pathlib; "
            "pathlib.Path('seen.txt').write_text("
            "os.environ.get('CODECOV_TOKEN', '-') + ' ' + os.environ['CARGO_TERM_COLOR'] + ' ' + os.environ['EXTRA'])"
        ),
        env={"EXTRA": "yes"},
    )

    out = CommandStage(spec=spec).run(ctx)

    assert out["exit_code"] == 0
    assert (workspace / "seen.txt").read_text() == "- always yes"
    types = [e["type"] for e in read_events(ctx.layout.events_jsonl(ctx.run_id))]
    assert "command.start" in types and "command.finish" in types


def test_command_stage_failure_uses_stage_category(make_ctx, py) -> None:
    ctx = make_ctx()
    spec = StageSpec(
        id="test",
        title="Run tests",
        kind="command",
        category="test",
        run=py("import sys; sys.exit(1)"),
    )
    with pytest.raises(CommandFailed) as ei:
        CommandStage(spec=spec).run(ctx)
    assert ei.value.category == "test"


def test_failed_stage_reports_category_class(make_ctx, py) -> None:
    ctx = make_ctx()
    spec = StageSpec(
        id="build-test-projects",
        title="Build",
        kind="command",
        category="build",
        run=py("import sys; sys.exit(3)"),
    )
    res = run_stage(ctx=ctx, stage=CommandStage(spec=spec))
    assert res.status == "failed"
    assert res.error is not None
    assert res.error.exc_type == "BuildCommandFailed"
    assert (res.error.category, res.error.exit_code) == ("build", 3)
