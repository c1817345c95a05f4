from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from cargo_ci.core import CoverageError
from cargo_ci.pipeline.context import RunContext
from cargo_ci.pipeline.definition import StageSpec

from .command import run_in_context

LCOV_CONTENT_TYPE = "application/x-lcov"
COVERAGE_META_KEY = "coverage_report"


@dataclass(frozen=True, slots=True)
class LcovSummary:
    files: int
    lines_found: int
    lines_hit: int
    branches_found: int
    branches_hit: int

    @property
    def line_rate(self) -> float | None:
        if self.lines_found == 0:
            return None
        return self.lines_hit / self.lines_found


def summarize_lcov(path: Path) -> LcovSummary:
    files = lf = lh = brf = brh = 0
    with Path(path).open("r", encoding="utf-8", errors="replace") as f:
        for line in f:
            key, sep, value = line.strip().partition(":")
            if not sep:
                continue
            if key == "SF":
                files += 1
            elif key in ("LF", "LH", "BRF", "BRH"):
                try:
                    n = int(value)
                except ValueError:
                    raise CoverageError(f"Malformed LCOV record {line.strip()!r} in {path}") from None
                if key == "LF":
                    lf += n
                elif key == "LH":
                    lh += n
                elif key == "BRF":
                    brf += n
                else:
                    brh += n
    return LcovSummary(
        files=files, lines_found=lf, lines_hit=lh, branches_found=brf, branches_hit=brh
    )


def output_path_from_argv(argv: Sequence[str]) -> str | None:
    for i, a in enumerate(argv):
        if a == "--output-path" and i + 1 < len(argv):
            return argv[i + 1]
        if a.startswith("--output-path="):
            return a.split("=", 1)[1]
    return None


def stage_coverage(ctx: RunContext, spec: StageSpec) -> dict[str, Any]:
    argv = spec.argv()
    report = ctx.env.resolve(output_path_from_argv(argv) or ctx.settings.coverage_output)

    run_in_context(
        ctx,
        argv,
        stage_id=spec.id,
        category=spec.category.value,
        cwd=ctx.env.workspace,
        extra_env=spec.env,
    )

    if not report.is_file():
        raise CoverageError(f"Coverage command succeeded but wrote no report at {report}")
    if report.stat().st_size == 0:
        raise CoverageError(f"Coverage report is empty: {report}")

    summary = summarize_lcov(report)
    art = ctx.record_artifact(
        stage=spec.id,
        path=report,
        content_type=LCOV_CONTENT_TYPE,
        rel_to=ctx.env.workspace if report.is_relative_to(ctx.env.workspace) else None,
    )
    ctx.meta[COVERAGE_META_KEY] = str(report)

    metrics: dict[str, Any] = {
        "files": summary.files,
        "lines_found": summary.lines_found,
        "lines_hit": summary.lines_hit,
    }
    if summary.line_rate is not None:
        metrics["line_rate"] = round(summary.line_rate, 4)

    out: dict[str, Any] = {
        "report": str(report),
        "_metrics": metrics,
        "_artifacts": [art],
    }
    if summary.files == 0:
        out["_warnings"] = [f"Coverage report {report.name} lists no source files"]
    return out
