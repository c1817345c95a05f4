from __future__ import annotations

import os
from typing import Mapping

from cargo_ci.core import Settings

from .models import EventKind, GateDecision, TriggerEvent, TriggerFilter


def filter_from_settings(s: Settings) -> TriggerFilter:
    return TriggerFilter(
        branch=s.branch,
        kinds=s.event_kinds,
    )


def evaluate(event: TriggerEvent, flt: TriggerFilter) -> GateDecision:
    """
    Decide whether `event` activates the pipeline.

    A non-matching event is a no-op, never a failure.
    """
    if event.kind not in flt.kinds:
        return GateDecision(
            run=False,
            reason=f"event kind {str(event.kind)!r} is not one of {[k.value for k in flt.kinds]}",
        )
    if event.branch != flt.branch:
        return GateDecision(
            run=False,
            reason=f"branch {event.branch!r} does not match {flt.branch!r}",
        )
    return GateDecision(run=True, reason=f"{event.kind.value} on {event.branch}")


def trigger_from_env(environ: Mapping[str, str] | None = None) -> TriggerEvent | None:
    """
    Build a TriggerEvent from hosted-runner variables.

    For pull requests the branch is the PR's base branch, since branch filters
    on pull_request events apply to the target branch.

    Returns None when the variables are absent.
    """
    env = os.environ if environ is None else environ

    kind = (env.get("GITHUB_EVENT_NAME") or "").strip()
    if not kind:
        return None

    if kind == EventKind.pull_request.value:
        branch = env.get("GITHUB_BASE_REF") or ""
    else:
        branch = env.get("GITHUB_REF_NAME") or env.get("GITHUB_REF") or ""
    if not branch.strip():
        return None

    repository: str | None = None
    slug = env.get("GITHUB_REPOSITORY")
    if slug:
        server = (env.get("GITHUB_SERVER_URL") or "https://github.com").rstrip("/")
        repository = f"{server}/{slug}.git"

    return TriggerEvent(
        branch=branch,
        kind=kind,
        commit=env.get("GITHUB_SHA") or None,
        repository=repository,
        slug=slug or None,
    )
