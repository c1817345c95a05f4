from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from cargo_ci.core import SECRET_ENV_VARS, RunLayout, remove_tree


@dataclass(slots=True)
class Environment:
    """
    Ephemeral, single-use workspace owned by exactly one run.

    Holds the checked-out source, the per-run tool directory and the variables
    handed to stage processes. Secrets are never part of `base_env`; the upload
    stage adds its credential to a copy at the moment of use.
    """

    root: Path
    workspace: Path
    tools_bin: Path
    downloads: Path
    base_env: dict[str, str] = field(default_factory=dict)
    # True when `workspace` points at a checkout this run does not own.
    external_workspace: bool = False

    @classmethod
    def create(
        cls,
        *,
        layout: RunLayout,
        run_id: str,
        color: str = "always",
        inherit: Mapping[str, str] | None = None,
    ) -> "Environment":
        root = layout.env_root(run_id)
        if root.exists():
            raise FileExistsError(f"Environment already exists for run {run_id}: {root}")

        env = cls(
            root=root,
            workspace=layout.workspace(run_id),
            tools_bin=layout.tools_bin(run_id),
            downloads=layout.downloads(run_id),
        )
        for p in (env.root, env.tools_bin, env.downloads):
            p.mkdir(parents=True, exist_ok=True)

        source = dict(os.environ if inherit is None else inherit)
        for name in SECRET_ENV_VARS:
            source.pop(name, None)

        path = source.get("PATH", "")
        source["PATH"] = (
            f"{env.tools_bin}{os.pathsep}{path}" if path else str(env.tools_bin)
        )
        source["CARGO_TERM_COLOR"] = color
        env.base_env = source
        return env

    def use_workspace(self, path: Path) -> None:
        """
        Point the Environment at an existing checkout instead of cloning one.
        """
        self.workspace = Path(path).resolve()
        self.external_workspace = True

    def process_env(self, extra: Mapping[str, str] | None = None) -> dict[str, str]:
        env = dict(self.base_env)
        if extra:
            env.update(extra)
        return env

    def resolve(self, rel: Path | str) -> Path:
        p = Path(rel)
        return p if p.is_absolute() else self.workspace / p

    def destroy(self) -> None:
        remove_tree(self.root)
