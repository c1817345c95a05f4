from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

import pytest
from cargo_ci.core import RunLayout, Settings, configure_logging, get_logger
from cargo_ci.core.logging import forget_secrets
from cargo_ci.pipeline.context import RunContext
from cargo_ci.pipeline.environment import Environment
from cargo_ci.pipeline.events import EventSink
from cargo_ci.trigger import TriggerEvent

PY = sys.executable


def _py(code: str) -> str:
    """A `run:` string that executes `code` with the current interpreter."""
    return f'"{PY}" -c "{code}"'


@pytest.fixture
def py():
    return _py


@pytest.fixture(autouse=True)
def _reset_secrets():
    yield
    forget_secrets()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    ws = tmp_path / "ws"
    ws.mkdir()
    return ws


@pytest.fixture
def settings(tmp_path: Path, workspace: Path) -> Settings:
    return Settings(
        _env_file=None,
        run_root=tmp_path / "runs",
        workspace_root=workspace,
        codecov_token=None,
        codecov_url="https://codecov.test",
        fail_ci_if_error=True,
    )


@pytest.fixture
def logger():
    configure_logging(level="INFO")
    return get_logger("tests")


@pytest.fixture
def push_main() -> TriggerEvent:
    return TriggerEvent(branch="main", kind="push", commit="a" * 40, slug="acme/stable-fs")


@pytest.fixture
def make_ctx(
    settings: Settings, logger, push_main: TriggerEvent, workspace: Path
) -> Callable[..., RunContext]:
    def _make(run_id: str = "r1", s: Settings | None = None) -> RunContext:
        s = s or settings
        layout = RunLayout(root=Path(s.run_root))
        env = Environment.create(layout=layout, run_id=run_id)
        env.use_workspace(workspace)
        return RunContext(
            run_id=run_id,
            layout=layout,
            settings=s,
            trigger=push_main,
            env=env,
            logger=logger,
            events=EventSink(layout.events_jsonl(run_id)),
        )

    return _make
