from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from cargo_ci.core import ILogger, RunLayout, Settings, file_digest
from cargo_ci.trigger import TriggerEvent

from .environment import Environment
from .events import EventSink, EventType, make_event


@dataclass(frozen=True, slots=True)
class ArtifactRef:
    path: str
    bytes: int
    sha256: str
    content_type: Optional[str] = None


@dataclass(slots=True)
class RunContext:
    """
    Context shared across stages for a single pipeline run.
    """

    run_id: str
    layout: RunLayout
    settings: Settings
    trigger: TriggerEvent
    env: Environment
    logger: ILogger
    events: EventSink

    # optional free-form metadata
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def run_root(self) -> Path:
        return self.layout.run_dir(self.run_id)

    def stage_logger(self, stage: str) -> ILogger:
        return self.logger.bind(stage=stage)

    def emit(self, event: EventType | str, stage: Optional[str] = None, **kw: object) -> None:
        # Console stays readable: events go to events.jsonl and the debug log only.
        event_value = event.value if isinstance(event, EventType) else str(event)
        self.events.emit(
            make_event(event_type=event_value, run_id=self.run_id, stage=stage, **kw)
        )
        self.logger.debug(event_value, event_type=event_value, stage=stage, **kw)

    def record_artifact(
        self,
        *,
        stage: str,
        path: Path,
        content_type: str | None = None,
        rel_to: Path | None = None,
    ) -> ArtifactRef:
        p = Path(path)
        digest = file_digest(p)
        rel = str(p if rel_to is None else p.relative_to(rel_to))
        art = ArtifactRef(
            path=rel, bytes=digest.bytes, sha256=digest.sha256, content_type=content_type
        )
        self.emit(
            EventType.ARTIFACT_WRITTEN,
            stage=stage,
            path=art.path,
            bytes=art.bytes,
            sha256=art.sha256,
            content_type=art.content_type,
        )
        return art
