from __future__ import annotations

import pytest
from cargo_ci.core import Settings
from pydantic import ValidationError
from cargo_ci.trigger import (
    EventKind,
    TriggerEvent,
    TriggerFilter,
    evaluate,
    filter_from_settings,
    trigger_from_env,
)

MAIN = TriggerFilter()


@pytest.mark.parametrize("kind", ["push", "pull_request"])
def test_main_branch_activates(kind: str) -> None:
    d = evaluate(TriggerEvent(branch="main", kind=kind), MAIN)
    assert d.run is True


@pytest.mark.parametrize(
    "branch,kind",
    [
        ("feature-x", "push"),
        ("feature-x", "pull_request"),
        ("main", "workflow_dispatch"),
        ("main", "schedule"),
        ("mainline", "push"),
    ],
)
def test_other_events_are_ignored(branch: str, kind: str) -> None:
    d = evaluate(TriggerEvent(branch=branch, kind=kind), MAIN)
    assert d.run is False
    assert d.reason


def test_unknown_kind_is_kept_as_string() -> None:
    ev = TriggerEvent(branch="main", kind="release")
    assert ev.kind == "release"
    assert not isinstance(ev.kind, EventKind)


def test_ref_prefix_is_stripped() -> None:
    ev = TriggerEvent(branch="refs/heads/main", kind="push")
    assert ev.branch == "main"
    assert evaluate(ev, MAIN).run


@pytest.mark.parametrize("branch", ["", "  ", "refs/heads/", " refs/heads/ "])
def test_blank_branch_is_rejected(branch: str) -> None:
    with pytest.raises(ValidationError):
        TriggerEvent(branch=branch, kind="push")


def test_filter_from_settings() -> None:
    s = Settings(_env_file=None, branch="release", event_kinds=("push",))
    flt = filter_from_settings(s)
    assert flt.branch == "release"
    assert flt.kinds == (EventKind.push,)
    assert not evaluate(TriggerEvent(branch="release", kind="pull_request"), flt).run


def test_unknown_event_kind_setting_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CARGO_CI_EVENT_KINDS", '["push", "release"]')
    with pytest.raises(ValidationError, match="event_kinds"):
        Settings(_env_file=None)


def test_trigger_from_env_push() -> None:
    ev = trigger_from_env(
        {
            "GITHUB_EVENT_NAME": "push",
            "GITHUB_REF_NAME": "main",
            "GITHUB_SHA": "abc123",
            "GITHUB_REPOSITORY": "acme/stable-fs",
            "GITHUB_SERVER_URL": "https://github.com",
        }
    )
    assert ev is not None
    assert ev.kind == EventKind.push
    assert ev.branch == "main"
    assert ev.commit == "abc123"
    assert ev.slug == "acme/stable-fs"
    assert ev.repository == "https://github.com/acme/stable-fs.git"


def test_trigger_from_env_pull_request_uses_base_branch() -> None:
    ev = trigger_from_env(
        {
            "GITHUB_EVENT_NAME": "pull_request",
            "GITHUB_REF_NAME": "42/merge",
            "GITHUB_BASE_REF": "main",
            "GITHUB_HEAD_REF": "feature-x",
        }
    )
    assert ev is not None
    assert ev.branch == "main"
    assert evaluate(ev, MAIN).run


def test_trigger_from_env_missing() -> None:
    assert trigger_from_env({}) is None
    assert trigger_from_env({"GITHUB_EVENT_NAME": "pull_request"}) is None
