from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cargo_ci.core.config import EventKind


class TriggerEvent(BaseModel):
    """
    The external signal that may start a run.

    `kind` is kept as a plain string when it is not one of the enumerated kinds
    so the gate can ignore it instead of rejecting it.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    branch: str = Field(..., min_length=1)
    kind: EventKind | str
    commit: Optional[str] = None
    repository: Optional[str] = None
    slug: Optional[str] = None

    @field_validator("branch", mode="before")
    @classmethod
    def _strip_ref_prefix(cls, v: object) -> object:
        if not isinstance(v, str):
            return v
        v = v.strip()
        if v.startswith("refs/heads/"):
            return v[len("refs/heads/") :]
        return v

    @field_validator("kind", mode="before")
    @classmethod
    def _coerce_kind(cls, v: object) -> object:
        if isinstance(v, str):
            try:
                return EventKind(v.strip())
            except ValueError:
                return v.strip()
        return v


class TriggerFilter(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    branch: str = Field(default="main", min_length=1)
    kinds: tuple[EventKind, ...] = Field(
        default=(EventKind.push, EventKind.pull_request), min_length=1
    )


class GateDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    run: bool
    reason: str
