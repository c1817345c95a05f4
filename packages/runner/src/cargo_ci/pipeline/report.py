from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

from cargo_ci.core import atomic_write_text, redact

from .stage import StageResult


@dataclass(slots=True)
class RunReport:
    run_id: str
    started_at_utc: str
    finished_at_utc: str
    status: str  # "success" | "failed" | "skipped"
    duration_ms: int

    trigger: dict[str, Any] = field(default_factory=dict)
    gate_reason: Optional[str] = None
    failed_stage: Optional[str] = None
    stages: list[StageResult] = field(default_factory=list)
    events_jsonl: Optional[str] = None
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def exit_code(self) -> int:
        return 1 if self.status == "failed" else 0

    def stage(self, stage_id: str) -> StageResult | None:
        for s in self.stages:
            if s.stage == stage_id:
                return s
        return None

    def executed(self) -> list[str]:
        return [s.stage for s in self.stages if s.status != "skipped"]

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["exit_code"] = self.exit_code
        return d

    def write_json(self, path: Path) -> None:
        text = json.dumps(self.to_dict(), ensure_ascii=False, indent=2, default=str)
        atomic_write_text(Path(path), redact(text) + "\n")


def build_run_report(
    *,
    run_id: str,
    started_at_utc: str,
    finished_at_utc: str,
    duration_ms: int,
    stage_results: list[StageResult],
    events_jsonl: str | None,
    trigger: dict[str, Any] | None = None,
    gate_reason: str | None = None,
    gated_out: bool = False,
    meta: dict[str, Any] | None = None,
) -> RunReport:
    failed = next((s.stage for s in stage_results if s.fatal_failure), None)
    if gated_out:
        status = "skipped"
    elif failed is not None:
        status = "failed"
    else:
        status = "success"

    return RunReport(
        run_id=run_id,
        started_at_utc=started_at_utc,
        finished_at_utc=finished_at_utc,
        status=status,
        duration_ms=duration_ms,
        trigger=trigger or {},
        gate_reason=gate_reason,
        failed_stage=failed,
        stages=stage_results,
        events_jsonl=events_jsonl,
        meta=meta or {},
    )
