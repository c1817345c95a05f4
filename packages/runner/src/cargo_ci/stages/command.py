"""
Subprocess execution for stages.

Only this module should touch ``subprocess``. Every stage process is spawned
here, blocks the run until it exits, and has its merged stdout/stderr streamed
to the structured log and to the stage's log file.
"""

from __future__ import annotations

import os
import signal
import subprocess
import threading
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

from cargo_ci.core import (
    CommandFailed,
    ILogger,
    StageTimeout,
    command_failed,
    ensure_parent,
    monotonic_ms,
    redact,
)
from cargo_ci.pipeline.context import RunContext
from cargo_ci.pipeline.definition import StageSpec
from cargo_ci.pipeline.events import EventType

_TAIL_LINES = 20
# Time left to drain the pipe after the process group was killed.
_DRAIN_S = 5.0


@dataclass(frozen=True, slots=True)
class CommandResult:
    argv: list[str]
    exit_code: int
    duration_ms: int
    lines: int
    log_path: str | None


def _pump(
    stream,
    *,
    log: ILogger,
    log_file,
    tail: deque[str],
    counter: list[int],
) -> None:
    for raw in iter(stream.readline, ""):
        line = raw.rstrip("\n")
        counter[0] += 1
        tail.append(line)
        if log_file is not None and not log_file.closed:
            log_file.write(redact(line) + "\n")
        log.info(line)
    stream.close()


def _kill_group(proc: subprocess.Popen) -> None:
    # The child leads its own session; build scripts leave cargo and friends
    # in it, and any of them can hold the output pipe open.
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    proc.wait()


def run_command(
    argv: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str],
    log: ILogger,
    category: str = "internal",
    timeout_s: float | None = None,
    log_path: Path | None = None,
) -> CommandResult:
    """
    Execute one process synchronously.

    Raises CommandFailed (non-zero exit or missing executable) and StageTimeout,
    both tagged with `category`.
    """
    argv = [str(a) for a in argv]
    if not argv:
        raise ValueError("run_command requires a non-empty argv")

    t0 = monotonic_ms()
    tail: deque[str] = deque(maxlen=_TAIL_LINES)
    counter = [0]

    log_file = None
    if log_path is not None:
        ensure_parent(log_path)
        log_file = Path(log_path).open("a", encoding="utf-8")

    try:
        try:
            proc = subprocess.Popen(
                argv,
                cwd=str(cwd),
                env=dict(env),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                start_new_session=True,
            )
        except OSError as e:
            raise command_failed(
                argv=argv, exit_code=127, category=category, tail=str(e)
            ) from e

        pump = threading.Thread(
            target=_pump,
            kwargs={
                "stream": proc.stdout,
                "log": log,
                "log_file": log_file,
                "tail": tail,
                "counter": counter,
            },
            daemon=True,
        )
        pump.start()

        try:
            exit_code = proc.wait(timeout=timeout_s)
        except subprocess.TimeoutExpired:
            _kill_group(proc)
            pump.join(timeout=_DRAIN_S)
            raise StageTimeout(argv=argv, timeout_s=float(timeout_s or 0), category=category)

        pump.join()
    finally:
        if log_file is not None:
            log_file.close()

    duration = monotonic_ms() - t0
    if exit_code != 0:
        raise command_failed(
            argv=argv,
            exit_code=exit_code,
            category=category,
            tail="\n".join(tail) or None,
        )

    return CommandResult(
        argv=argv,
        exit_code=exit_code,
        duration_ms=duration,
        lines=counter[0],
        log_path=str(log_path) if log_path is not None else None,
    )


def run_in_context(
    ctx: RunContext,
    argv: Sequence[str],
    *,
    stage_id: str,
    category: str,
    cwd: Path | None = None,
    extra_env: Mapping[str, str] | None = None,
) -> CommandResult:
    """
    Run `argv` inside the run's Environment, with events and the stage log file.
    """
    log = ctx.stage_logger(stage_id)
    workdir = cwd or ctx.env.workspace
    log_path = ctx.layout.stage_log(ctx.run_id, stage_id)

    ctx.emit(EventType.COMMAND_START, stage=stage_id, argv=list(argv), cwd=str(workdir))
    log.info("Running command", argv=" ".join(argv), cwd=str(workdir))

    try:
        res = run_command(
            argv,
            cwd=workdir,
            env=ctx.env.process_env(extra_env),
            log=log,
            category=category,
            timeout_s=ctx.settings.stage_timeout_s,
            log_path=log_path,
        )
    except CommandFailed as e:
        ctx.emit(EventType.COMMAND_FINISH, stage=stage_id, argv=list(argv), exit_code=e.exit_code)
        raise
    except StageTimeout as e:
        ctx.emit(EventType.COMMAND_FINISH, stage=stage_id, argv=list(argv), timeout_s=e.timeout_s)
        raise

    ctx.emit(
        EventType.COMMAND_FINISH,
        stage=stage_id,
        argv=res.argv,
        exit_code=res.exit_code,
        duration_ms=res.duration_ms,
        lines=res.lines,
    )
    return res


@dataclass(slots=True)
class CommandStage:
    """
    A stage whose whole contract is one process's exit status.
    """

    spec: StageSpec
    fatal: bool = True
    stage_id: str = field(init=False)
    needs: tuple[str, ...] = field(init=False)

    def __post_init__(self) -> None:
        self.stage_id = self.spec.id
        self.needs = tuple(self.spec.needs)

    def workdir(self, ctx: RunContext) -> Path:
        if self.spec.workdir:
            return ctx.env.resolve(self.spec.workdir)
        return ctx.env.workspace

    def run(self, ctx: RunContext) -> dict[str, Any]:
        res = run_in_context(
            ctx,
            self.spec.argv(),
            stage_id=self.stage_id,
            category=self.spec.category.value,
            cwd=self.workdir(ctx),
            extra_env=self.spec.env,
        )
        return {
            "argv": res.argv,
            "exit_code": res.exit_code,
            "log": res.log_path,
            "_metrics": {"output_lines": res.lines, "command_ms": res.duration_ms},
        }
