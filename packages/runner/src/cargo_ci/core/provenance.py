from __future__ import annotations

import os
import platform
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from cargo_ci import __version__


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def monotonic_ms() -> int:
    return time.monotonic_ns() // 1_000_000


def new_run_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class RunProvenance:
    """
    Where and with what a run executed. Recorded as the first event of a run.
    """

    run_id: str
    started_at_utc: str
    runner_version: str = __version__
    hostname: str = field(default_factory=platform.node)
    pid: int = field(default_factory=os.getpid)
    host: str = field(default_factory=lambda: f"{platform.system()}/{platform.machine()}")
    ci: bool = field(default_factory=lambda: os.environ.get("CI", "").lower() == "true")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
