from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, Sequence

from cargo_ci.core import StageError, monotonic_ms, stage_error_from_exc, utc_now_iso

from .context import ArtifactRef, RunContext
from .events import EventType


def format_duration_ms(ms: int) -> str:
    """Return a short human-readable duration string."""
    if ms < 1000:
        return f"{ms} ms"
    return f"{ms / 1000:.2f} s"


class Stage(Protocol):
    stage_id: str
    fatal: bool
    needs: Sequence[str]

    def run(self, ctx: RunContext) -> dict[str, Any] | None: ...


StageFn = Callable[[RunContext], dict[str, Any] | None]


@dataclass(slots=True)
class FunctionStage:
    """
    Adapter that turns a plain function into a Stage.
    """

    stage_id: str
    fn: StageFn
    fatal: bool = True
    needs: tuple[str, ...] = ()

    def run(self, ctx: RunContext) -> dict[str, Any] | None:
        return self.fn(ctx)


@dataclass(slots=True)
class StageResult:
    stage: str
    status: str  # "success" | "failed" | "skipped"
    started_at_utc: Optional[str]
    finished_at_utc: Optional[str]
    duration_ms: int
    fatal: bool = True

    outputs: dict[str, Any] = field(default_factory=dict)
    metrics: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    artifacts: list[ArtifactRef] = field(default_factory=list)
    error: Optional[StageError] = None
    skip_reason: Optional[str] = None

    @property
    def fatal_failure(self) -> bool:
        return self.status == "failed" and self.fatal


def skipped_result(stage: Stage, *, reason: str) -> StageResult:
    return StageResult(
        stage=stage.stage_id,
        status="skipped",
        started_at_utc=None,
        finished_at_utc=None,
        duration_ms=0,
        fatal=stage.fatal,
        skip_reason=reason,
    )


def _take(out: dict[str, Any], key: str, kind: type) -> Any:
    value = out.pop(key, None)
    return value if isinstance(value, kind) else kind()


def run_stage(
    *,
    ctx: RunContext,
    stage: Stage,
    index: int | None = None,
    total: int | None = None,
) -> StageResult:
    """
    Run one stage and turn whatever happens into a StageResult.

    A stage returns a dict of outputs. The reserved keys `_warnings`,
    `_metrics` and `_artifacts` are lifted out of it into the result. Any
    exception becomes a failed result carrying the error's category and, for
    commands, the process exit code.
    """
    stage_id = stage.stage_id
    log = ctx.stage_logger(stage_id)
    position = f"{index}/{total}" if index is not None and total is not None else None

    t0 = monotonic_ms()
    started_at = utc_now_iso()
    ctx.emit(EventType.STAGE_START, stage=stage_id, position=position)
    log.info("Stage starting", position=position, fatal=stage.fatal)

    def _result(status: str, **kw: Any) -> StageResult:
        return StageResult(
            stage=stage_id,
            status=status,
            started_at_utc=started_at,
            finished_at_utc=utc_now_iso(),
            duration_ms=monotonic_ms() - t0,
            fatal=stage.fatal,
            **kw,
        )

    try:
        out = stage.run(ctx) or {}
        if not isinstance(out, dict):
            raise TypeError(f"Stage {stage_id} returned {type(out).__name__}, expected dict or None")
    except Exception as e:
        err = stage_error_from_exc(e)
        res = _result("failed", error=err)
        ctx.emit(
            EventType.STAGE_FAILED,
            stage=stage_id,
            duration_ms=res.duration_ms,
            category=err.category,
            exit_code=err.exit_code,
            fatal=stage.fatal,
            message=err.message,
        )
        fields = {
            "duration": format_duration_ms(res.duration_ms),
            "category": err.category,
            "exit_code": err.exit_code,
            "error": err.message,
        }
        if stage.fatal:
            log.error("Stage failed", exc_type=err.exc_type, **fields)
        else:
            log.warning("Stage failed (advisory)", **fields)
        return res

    warnings = [str(w) for w in _take(out, "_warnings", list)]
    metrics = _take(out, "_metrics", dict)
    artifacts = _take(out, "_artifacts", list)

    for w in warnings:
        ctx.emit(EventType.STAGE_WARN, stage=stage_id, message=w)
        log.warning(w)
    if metrics:
        ctx.emit(EventType.STAGE_METRICS, stage=stage_id, metrics=metrics)

    res = _result("success", outputs=out, metrics=metrics, warnings=warnings, artifacts=artifacts)
    ctx.emit(EventType.STAGE_SUCCESS, stage=stage_id, duration_ms=res.duration_ms)
    log.info(
        "Stage succeeded",
        duration=format_duration_ms(res.duration_ms),
        outputs=sorted(out),
        artifacts=len(artifacts),
    )
    return res
