from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from cargo_ci.core import (
    DefinitionError,
    Settings,
    bind,
    configure_logging,
    get_logger,
    load_settings,
    new_run_id,
)
from cargo_ci.pipeline.definition import (
    DEFAULT_DEFINITION,
    PipelineDefinition,
    load_definition,
)
from cargo_ci.pipeline.report import RunReport
from cargo_ci.pipeline.runner import PipelineRunner, RunnerConfig
from cargo_ci.stages import build_stages
from cargo_ci.trigger import (
    TriggerEvent,
    evaluate,
    filter_from_settings,
    trigger_from_env,
)

console = Console()

_STATUS_STYLE = {
    "success": "[green]ok[/green]",
    "failed": "[red]failed[/red]",
    "skipped": "[yellow]skipped[/yellow]",
}


def _add_definition_arg(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--definition",
        default=None,
        help="YAML pipeline definition. If omitted, uses the built-in build/test/coverage pipeline.",
    )


def _add_trigger_args(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--branch",
        default=None,
        help="Branch of the triggering event. If omitted, the event is read from GITHUB_* variables.",
    )
    p.add_argument(
        "--event",
        dest="kind",
        default="push",
        help="Event kind (push or pull_request). Only used with --branch.",
    )
    p.add_argument("--commit", default=None, help="Commit SHA to check out and report")
    p.add_argument("--repository", default=None, help="Clone URL for the checkout stage")
    p.add_argument("--slug", default=None, help="owner/repo, used by the coverage upload")


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="cargo-ci")
    sub = p.add_subparsers(dest="cmd", required=True)

    run = sub.add_parser("run", help="Gate on the trigger and run the pipeline")
    _add_trigger_args(run)
    _add_definition_arg(run)
    run.add_argument(
        "--workspace",
        default=None,
        help="Use this existing checkout instead of cloning (CARGO_CI_WORKSPACE_ROOT)",
    )
    run.add_argument("--run-root", default=None, help="Directory for run outputs")
    run.add_argument("--run-id", default=None, help="Run id (default: random)")
    run.add_argument(
        "--keep-env",
        action="store_true",
        help="Keep the run's Environment on disk after the run",
    )

    plan = sub.add_parser("plan", help="Print the stage sequence")
    _add_definition_arg(plan)

    gate = sub.add_parser("gate", help="Evaluate the trigger without running anything")
    _add_trigger_args(gate)

    return p


def _definition(args: argparse.Namespace) -> PipelineDefinition:
    if args.definition:
        return load_definition(Path(args.definition))
    return DEFAULT_DEFINITION


def _trigger(args: argparse.Namespace) -> TriggerEvent | None:
    if args.branch:
        return TriggerEvent(
            branch=args.branch,
            kind=args.kind,
            commit=args.commit,
            repository=args.repository,
            slug=args.slug,
        )
    ev = trigger_from_env()
    if ev is None:
        return None
    update: dict[str, Any] = {}
    for field_name in ("commit", "repository", "slug"):
        value = getattr(args, field_name)
        if value:
            update[field_name] = value
    return ev.model_copy(update=update) if update else ev


def _settings(args: argparse.Namespace) -> Settings:
    s = load_settings()
    update: dict[str, Any] = {}
    if getattr(args, "workspace", None):
        update["workspace_root"] = Path(args.workspace)
    if getattr(args, "run_root", None):
        update["run_root"] = Path(args.run_root)
    if getattr(args, "keep_env", False):
        update["keep_environment"] = True
    return s.model_copy(update=update) if update else s


def _plan_table(definition: PipelineDefinition, s: Settings) -> Table:
    tbl = Table(title=f"Pipeline: {definition.name}", show_header=True)
    tbl.add_column("#", justify="right")
    tbl.add_column("stage")
    tbl.add_column("kind")
    tbl.add_column("category")
    tbl.add_column("fatal")
    tbl.add_column("invocation")
    tbl.add_column("needs")
    for i, st in enumerate(definition.stages, start=1):
        tbl.add_row(
            str(i),
            st.id,
            st.kind.value,
            st.category.value,
            "yes" if st.is_fatal(fail_ci_if_error=s.fail_ci_if_error) else "advisory",
            st.run or "-",
            ", ".join(st.needs) or "-",
        )
    return tbl


def _result_table(report: RunReport, report_path: Path) -> Table:
    tbl = Table(title="Result", show_header=True, box=None)
    tbl.add_column("stage")
    tbl.add_column("status")
    tbl.add_column("duration_ms", justify="right")
    tbl.add_column("detail")
    for r in report.stages:
        detail = ""
        if r.error is not None:
            detail = f"{r.error.category}: {r.error.message.splitlines()[0]}"
        elif r.skip_reason:
            detail = r.skip_reason
        status = _STATUS_STYLE.get(r.status, r.status)
        if r.status == "failed" and not r.fatal:
            status += " (advisory)"
        tbl.add_row(r.stage, status, str(r.duration_ms), Text(detail))
    tbl.add_row("", "", "", "")
    tbl.add_row("run", _STATUS_STYLE.get(report.status, report.status), str(report.duration_ms), "")
    tbl.add_row("report", "", "", str(report_path))
    return tbl


def _cmd_plan(args: argparse.Namespace) -> int:
    console.print(_plan_table(_definition(args), load_settings()))
    return 0


def _cmd_gate(args: argparse.Namespace) -> int:
    ev = _trigger(args)
    if ev is None:
        console.print("[red]No trigger: pass --branch or run under GITHUB_* variables[/red]")
        return 2
    decision = evaluate(ev, filter_from_settings(load_settings()))
    verdict = "[green]run[/green]" if decision.run else "[yellow]skip[/yellow]"
    console.print(verdict, Text(decision.reason))
    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    s = _settings(args)
    configure_logging(level=s.log_level, fmt=s.log_format)
    log = get_logger("cargo_ci")

    ev = _trigger(args)
    if ev is None:
        console.print("[red]No trigger: pass --branch or run under GITHUB_* variables[/red]")
        return 2

    definition = _definition(args)

    run_id = args.run_id or new_run_id()
    bind(run_id=run_id, command=args.cmd)

    runner = PipelineRunner(
        stages=build_stages(definition, settings=s),
        cfg=RunnerConfig(keep_environment=s.keep_environment),
        settings=s,
        logger=log,
    )

    console.print(
        Panel.fit(
            Text(
                f"cargo-ci - {definition.name}\nrun_id={run_id}\n"
                f"event={ev.kind} branch={ev.branch} commit={ev.commit or '-'}",
                style="bold",
            ),
            title="Run",
        )
    )

    exit_code, report, report_path = runner.run(
        trigger=ev,
        run_root=s.run_root,
        run_id=run_id,
        meta={"definition": definition.name},
    )

    if report.status == "skipped":
        console.print("[yellow]skipped[/yellow]", Text(report.gate_reason or ""))
    else:
        console.print(_result_table(report, report_path))

    return int(exit_code)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    handlers = {"run": _cmd_run, "plan": _cmd_plan, "gate": _cmd_gate}
    try:
        return handlers[args.cmd](args)
    except DefinitionError as e:
        console.print(f"[red]Invalid pipeline definition:[/red] {e}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
