from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from cargo_ci.core import (
    ILogger,
    RunLayout,
    RunProvenance,
    Settings,
    configure_logging,
    get_logger,
    load_settings,
    monotonic_ms,
    new_run_id,
    utc_now_iso,
)
from cargo_ci.trigger import TriggerEvent, evaluate, filter_from_settings

from .context import RunContext
from .environment import Environment
from .events import EventSink, EventType, make_event
from .report import RunReport, build_run_report
from .stage import (
    FunctionStage,
    Stage,
    StageResult,
    format_duration_ms,
    run_stage,
    skipped_result,
)


@dataclass(slots=True)
class RunnerConfig:
    keep_environment: bool = False


def default_logger() -> ILogger:
    """
    Provide a structlog BoundLogger that satisfies ILogger.
    """
    configure_logging()
    return get_logger("pipeline")


class PipelineRunner:
    def __init__(
        self,
        *,
        stages: Sequence[Stage],
        cfg: RunnerConfig | None = None,
        settings: Settings | None = None,
        logger: ILogger | None = None,
    ) -> None:
        self.stages = list(stages)
        self.cfg = cfg or RunnerConfig()
        self.settings = settings or load_settings()
        self.logger: ILogger = logger or default_logger()

        ids = [s.stage_id for s in self.stages]
        if len(ids) != len(set(ids)):
            dupes = sorted({x for x in ids if ids.count(x) > 1})
            raise ValueError(f"Duplicate stage_id(s): {dupes}")

        seen: set[str] = set()
        for s in self.stages:
            missing = [n for n in s.needs if n not in seen]
            if missing:
                raise ValueError(
                    f"Stage {s.stage_id} needs {missing}, which must run before it"
                )
            seen.add(s.stage_id)

    @staticmethod
    def fn(stage_id: str, fn, *, fatal: bool = True, needs: Sequence[str] = ()) -> Stage:
        return FunctionStage(stage_id=stage_id, fn=fn, fatal=fatal, needs=tuple(needs))

    def _blocked_by(self, stage: Stage, results: dict[str, StageResult]) -> str | None:
        for n in stage.needs:
            r = results.get(n)
            if r is None or r.status != "success":
                return n
        return None

    def run(
        self,
        *,
        trigger: TriggerEvent,
        run_root: Path | None = None,
        run_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> tuple[int, RunReport, Path]:
        """
        Gate on `trigger`, execute the stages in order and write:
          - events.jsonl
          - run_report.json

        Returns: (exit_code, report, report_path)
        """
        meta = meta or {}
        rid = run_id or new_run_id()
        layout = RunLayout(root=Path(run_root or self.settings.run_root))
        run_dir = layout.run_dir(rid)
        run_dir.mkdir(parents=True, exist_ok=True)

        events_path = layout.events_jsonl(rid)
        report_json = layout.run_report_json(rid)
        sink = EventSink(events_path)

        started_at = utc_now_iso()
        t0 = monotonic_ms()
        provenance = RunProvenance(run_id=rid, started_at_utc=started_at).to_dict()
        del provenance["run_id"]
        sink.emit(make_event(event_type=EventType.RUN_ENV, run_id=rid, **provenance))
        trigger_fields = trigger.model_dump(mode="json")

        decision = evaluate(trigger, filter_from_settings(self.settings))
        sink.emit(
            make_event(
                event_type=EventType.TRIGGER_EVALUATED,
                run_id=rid,
                run=decision.run,
                reason=decision.reason,
                **trigger_fields,
            )
        )

        if not decision.run:
            self.logger.info(
                "Trigger ignored; no stages executed",
                run_id=rid,
                reason=decision.reason,
            )
            report = build_run_report(
                run_id=rid,
                started_at_utc=started_at,
                finished_at_utc=utc_now_iso(),
                duration_ms=monotonic_ms() - t0,
                stage_results=[],
                events_jsonl=str(events_path),
                trigger=trigger_fields,
                gate_reason=decision.reason,
                gated_out=True,
                meta=meta,
            )
            report.write_json(report_json)
            sink.emit(
                make_event(
                    event_type=EventType.RUN_SKIPPED,
                    run_id=rid,
                    reason=decision.reason,
                    report_json=str(report_json),
                )
            )
            return report.exit_code, report, report_json

        env = Environment.create(layout=layout, run_id=rid, color=self.settings.color)
        ctx = RunContext(
            run_id=rid,
            layout=layout,
            settings=self.settings,
            trigger=trigger,
            env=env,
            logger=self.logger,
            events=sink,
            meta=meta,
        )
        ctx.emit(EventType.ENV_CREATED, root=str(env.root))

        self.logger.info(
            "Pipeline starting",
            run_id=rid,
            stages=[s.stage_id for s in self.stages],
            branch=trigger.branch,
            kind=str(trigger.kind),
            commit=trigger.commit,
            run_root=str(run_dir),
            meta_keys=sorted(meta.keys()),
        )
        ctx.emit(EventType.RUN_START, stages=[s.stage_id for s in self.stages], **meta)

        results: list[StageResult] = []
        by_id: dict[str, StageResult] = {}
        halted_by: str | None = None

        total = len(self.stages)
        try:
            for idx, st in enumerate(self.stages, start=1):
                if halted_by is not None:
                    res = skipped_result(st, reason=f"halted after {halted_by} failed")
                else:
                    blocker = self._blocked_by(st, by_id)
                    if blocker is not None:
                        res = skipped_result(st, reason=f"predecessor {blocker} did not succeed")
                    else:
                        res = run_stage(ctx=ctx, stage=st, index=idx, total=total)

                if res.status == "skipped":
                    ctx.emit(EventType.STAGE_SKIPPED, stage=st.stage_id, reason=res.skip_reason)

                results.append(res)
                by_id[st.stage_id] = res

                if res.fatal_failure and halted_by is None:
                    self.logger.error("Stopping on first failure", stage=st.stage_id)
                    halted_by = st.stage_id
        finally:
            if self.cfg.keep_environment or self.settings.keep_environment:
                self.logger.info("Keeping environment", root=str(env.root))
            else:
                env.destroy()
                ctx.emit(EventType.ENV_DESTROYED, root=str(env.root))

        finished_at = utc_now_iso()
        duration = monotonic_ms() - t0

        report = build_run_report(
            run_id=rid,
            started_at_utc=started_at,
            finished_at_utc=finished_at,
            duration_ms=duration,
            stage_results=results,
            events_jsonl=str(events_path),
            trigger=trigger_fields,
            gate_reason=decision.reason,
            meta=meta,
        )
        report.write_json(report_json)

        ctx.emit(
            EventType.RUN_FINISH,
            status=report.status,
            failed_stage=report.failed_stage,
            duration_ms=duration,
            report_json=str(report_json),
        )

        self.logger.info(
            "Run complete",
            duration_ms=duration,
            duration=format_duration_ms(duration),
            report=str(report_json),
            events=str(events_path),
            status=report.status,
            failed_stage=report.failed_stage,
        )

        return report.exit_code, report, report_json
