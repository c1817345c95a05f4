from __future__ import annotations

from pathlib import Path
from typing import Any

from cargo_ci.core import InfrastructureError
from cargo_ci.pipeline.context import RunContext
from cargo_ci.pipeline.definition import StageSpec

from .command import run_in_context


def stage_checkout(ctx: RunContext, spec: StageSpec) -> dict[str, Any]:
    """
    Populate the Environment's workspace at the event's commit.

    With `workspace_root` configured the existing checkout is used as is
    (the hosting platform already checked it out); otherwise the repository
    is cloned into the Environment.
    """
    s = ctx.settings
    category = spec.category.value

    if s.workspace_root is not None:
        ws = Path(s.workspace_root).expanduser()
        if not ws.is_dir():
            raise InfrastructureError(f"workspace_root is not a directory: {ws}")
        ctx.env.use_workspace(ws)
        return {
            "workspace": str(ctx.env.workspace),
            "mode": "existing",
            "commit": ctx.trigger.commit,
        }

    url = ctx.trigger.repository or s.repository_url
    if not url:
        raise InfrastructureError(
            "No repository to check out: set CARGO_CI_REPOSITORY_URL, "
            "CARGO_CI_WORKSPACE_ROOT or pass --repository"
        )

    workspace = ctx.env.workspace
    clone = ["git", "clone", "--no-tags"]
    if ctx.trigger.commit is None:
        clone += ["--depth", "1", "--branch", ctx.trigger.branch]
    clone += [url, str(workspace)]

    run_in_context(ctx, clone, stage_id=spec.id, category=category, cwd=ctx.env.root)

    if ctx.trigger.commit is not None:
        run_in_context(
            ctx,
            ["git", "checkout", "--detach", ctx.trigger.commit],
            stage_id=spec.id,
            category=category,
            cwd=workspace,
        )

    return {
        "workspace": str(workspace),
        "mode": "clone",
        "repository": url,
        "commit": ctx.trigger.commit,
    }
