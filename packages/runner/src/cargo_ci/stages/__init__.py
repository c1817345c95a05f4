from __future__ import annotations

from functools import partial
from typing import Any, Callable

import httpx

from cargo_ci.core import Settings
from cargo_ci.pipeline.context import RunContext
from cargo_ci.pipeline.definition import PipelineDefinition, StageKind, StageSpec
from cargo_ci.pipeline.stage import FunctionStage, Stage

from .checkout import stage_checkout
from .command import CommandStage, run_command
from .coverage import stage_coverage
from .coverage_tool import stage_install_coverage_tool
from .upload import stage_upload

_STAGE_FNS: dict[StageKind, Callable[..., dict[str, Any]]] = {
    StageKind.checkout: stage_checkout,
    StageKind.install_coverage_tool: stage_install_coverage_tool,
    StageKind.coverage: stage_coverage,
    StageKind.upload: stage_upload,
}

_HTTP_KINDS = {StageKind.install_coverage_tool, StageKind.upload}


def build_stage(
    spec: StageSpec,
    *,
    settings: Settings,
    transport: httpx.BaseTransport | None = None,
) -> Stage:
    fatal = spec.is_fatal(fail_ci_if_error=settings.fail_ci_if_error)

    if spec.kind == StageKind.command:
        return CommandStage(spec=spec, fatal=fatal)

    fn = _STAGE_FNS[spec.kind]
    if spec.kind in _HTTP_KINDS:
        fn = partial(fn, transport=transport)

    def _run(ctx: RunContext, _fn=fn, _spec=spec) -> dict[str, Any]:
        return _fn(ctx, _spec)

    return FunctionStage(stage_id=spec.id, fn=_run, fatal=fatal, needs=tuple(spec.needs))


def build_stages(
    definition: PipelineDefinition,
    *,
    settings: Settings,
    transport: httpx.BaseTransport | None = None,
) -> list[Stage]:
    return [build_stage(s, settings=settings, transport=transport) for s in definition.stages]


__all__ = [
    "CommandStage",
    "build_stage",
    "build_stages",
    "run_command",
    "stage_checkout",
    "stage_coverage",
    "stage_install_coverage_tool",
    "stage_upload",
]
