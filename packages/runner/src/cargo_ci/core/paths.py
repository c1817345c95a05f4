from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class RunLayout:
    """
    Canonical path layout for a pipeline run:

      {root}/{run_id}/events.jsonl
      {root}/{run_id}/run_report.json
      {root}/{run_id}/logs/{stage_id}.log
      {root}/{run_id}/env/workspace/
      {root}/{run_id}/env/tools/bin/

    Everything under env/ is the run's Environment and is discarded at the end
    of the run. Logs and reports outlive it.
    """

    root: Path

    def run_dir(self, run_id: str) -> Path:
        return self.root / run_id

    def events_jsonl(self, run_id: str) -> Path:
        return self.run_dir(run_id) / "events.jsonl"

    def run_report_json(self, run_id: str) -> Path:
        return self.run_dir(run_id) / "run_report.json"

    def logs(self, run_id: str) -> Path:
        return self.run_dir(run_id) / "logs"

    def stage_log(self, run_id: str, stage_id: str) -> Path:
        return self.logs(run_id) / f"{stage_id}.log"

    def env_root(self, run_id: str) -> Path:
        return self.run_dir(run_id) / "env"

    def workspace(self, run_id: str) -> Path:
        return self.env_root(run_id) / "workspace"

    def tools_bin(self, run_id: str) -> Path:
        return self.env_root(run_id) / "tools" / "bin"

    def downloads(self, run_id: str) -> Path:
        return self.env_root(run_id) / "downloads"
