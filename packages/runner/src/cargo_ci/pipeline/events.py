from __future__ import annotations

import json
import threading
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from cargo_ci.core import redact, utc_now_iso


class EventType(str, Enum):
    RUN_ENV = "run.env"
    RUN_START = "run.start"
    RUN_SKIPPED = "run.skipped"
    RUN_FINISH = "run.finish"

    TRIGGER_EVALUATED = "trigger.evaluated"

    ENV_CREATED = "env.created"
    ENV_DESTROYED = "env.destroyed"

    STAGE_START = "stage.start"
    STAGE_WARN = "stage.warn"
    STAGE_METRICS = "stage.metrics"
    STAGE_SUCCESS = "stage.success"
    STAGE_FAILED = "stage.failed"
    STAGE_SKIPPED = "stage.skipped"

    ARTIFACT_WRITTEN = "artifact.written"
    ARTIFACT_DISCARDED = "artifact.discarded"

    COMMAND_START = "command.start"
    COMMAND_FINISH = "command.finish"

    TOOL_DOWNLOAD = "tool.download"

    UPLOAD_START = "upload.start"
    UPLOAD_FINISH = "upload.finish"


@dataclass(frozen=True, slots=True)
class Event:
    """
    One line of events.jsonl.
    """

    type: str
    ts_utc: str
    run_id: str
    stage: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)


class EventSink:
    """
    Append-only JSONL writer for a run's events.

    Every line passes through `redact` before it is written, so a registered
    secret never lands in the file even if a stage puts it in an event.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def emit(self, event: Event) -> None:
        line = redact(json.dumps(asdict(event), ensure_ascii=False, default=str))
        with self._lock, self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")


def make_event(
    *,
    event_type: EventType | str,
    run_id: str,
    stage: Optional[str] = None,
    **data: Any,
) -> Event:
    type_value = event_type.value if isinstance(event_type, EventType) else str(event_type)
    return Event(
        type=type_value,
        ts_utc=utc_now_iso(),
        run_id=run_id,
        stage=stage,
        data=dict(data),
    )


def read_events(path: Path) -> list[dict[str, Any]]:
    with Path(path).open("r", encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]
