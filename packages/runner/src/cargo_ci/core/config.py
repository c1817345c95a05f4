from __future__ import annotations

from enum import StrEnum
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

LogFormat = Literal["json", "console"]
ColorMode = Literal["always", "auto", "never"]


class EventKind(StrEnum):
    push = "push"
    pull_request = "pull_request"


# Variables that must never reach a stage process other than the upload stage.
SECRET_ENV_VARS: tuple[str, ...] = ("CODECOV_TOKEN", "CARGO_CI_CODECOV_TOKEN")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CARGO_CI_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    # trigger gating
    branch: str = Field(default="main", min_length=1)
    event_kinds: tuple[EventKind, ...] = Field(
        default=(EventKind.push, EventKind.pull_request), min_length=1
    )

    # environment
    color: ColorMode = Field(default="always")
    run_root: Path = Field(default=Path("_runs"))
    workspace_root: Optional[Path] = Field(default=None)
    repository_url: Optional[str] = Field(default=None)
    keep_environment: bool = Field(default=False)
    stage_timeout_s: Optional[float] = Field(default=None, gt=0)

    # coverage + upload
    coverage_output: Path = Field(default=Path("lcov.info"))
    llvm_cov_version: str = Field(default="latest")
    codecov_url: str = Field(default="https://codecov.io")
    codecov_token: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("CARGO_CI_CODECOV_TOKEN", "CODECOV_TOKEN"),
    )
    fail_ci_if_error: bool = Field(default=True)
    http_max_attempts: int = Field(default=1, ge=1)

    log_level: str = Field(default="INFO")
    log_format: LogFormat = Field(default="console")


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    return Settings()
