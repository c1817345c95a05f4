from .context import RunContext
from .definition import (
    DEFAULT_DEFINITION,
    Category,
    PipelineDefinition,
    StageKind,
    StageSpec,
    load_definition,
)
from .environment import Environment
from .events import EventSink, EventType, read_events
from .report import RunReport
from .runner import PipelineRunner, RunnerConfig
from .stage import FunctionStage, Stage, StageFn, StageResult, run_stage

__all__ = [
    "RunContext",
    "DEFAULT_DEFINITION",
    "Category",
    "PipelineDefinition",
    "StageKind",
    "StageSpec",
    "load_definition",
    "Environment",
    "EventSink",
    "EventType",
    "read_events",
    "RunReport",
    "PipelineRunner",
    "RunnerConfig",
    "FunctionStage",
    "Stage",
    "StageFn",
    "StageResult",
    "run_stage",
]
