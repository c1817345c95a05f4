from __future__ import annotations

import shlex
from enum import StrEnum
from functools import cached_property
from pathlib import Path
from typing import Annotated, Optional

import jsonschema
import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    TypeAdapter,
    ValidationError,
    model_validator,
)

from cargo_ci.core import DefinitionError

IdPattern = r"^[a-z0-9][a-z0-9_\-]*[a-z0-9]$"

StageId = Annotated[
    str,
    StringConstraints(min_length=2, max_length=80, pattern=IdPattern),
]


class StageKind(StrEnum):
    checkout = "checkout"
    command = "command"
    install_coverage_tool = "install_coverage_tool"
    coverage = "coverage"
    upload = "upload"


class Category(StrEnum):
    infrastructure = "infrastructure"
    build = "build"
    test = "test"
    coverage = "coverage"
    upload = "upload"


_KINDS_WITH_COMMAND = {StageKind.command, StageKind.coverage}


class StageSpec(BaseModel):
    """
    One stage descriptor: name, invocation and required predecessors.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: StageId
    title: str = Field(..., min_length=1)
    kind: StageKind
    category: Category

    run: Optional[str] = None
    needs: list[StageId] = Field(default_factory=list)

    # None means "use the kind's default" (the upload stage follows fail_ci_if_error).
    fatal: Optional[bool] = None
    env: dict[str, str] = Field(default_factory=dict)
    workdir: Optional[str] = None

    @model_validator(mode="after")
    def _validate(self) -> "StageSpec":
        if self.kind in _KINDS_WITH_COMMAND:
            if self.run is None or not self.run.strip():
                raise ValueError(f"Stage {self.id} of kind {self.kind} requires `run`")
        if self.id in self.needs:
            raise ValueError(f"Stage {self.id} cannot need itself")
        return self

    def argv(self) -> list[str]:
        if self.run is None:
            return []
        return shlex.split(self.run)

    def is_fatal(self, *, fail_ci_if_error: bool = True) -> bool:
        if self.fatal is not None:
            return self.fatal
        if self.kind == StageKind.upload:
            return fail_ci_if_error
        return True


class PipelineDefinition(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    spec_version: int = Field(default=1, ge=1)
    name: str = Field(..., min_length=1)
    stages: list[StageSpec] = Field(..., min_length=1)

    @model_validator(mode="after")
    def _validate_order(self) -> "PipelineDefinition":
        seen: set[str] = set()
        for st in self.stages:
            if st.id in seen:
                raise ValueError(f"Duplicate stage id: {st.id}")
            missing = [n for n in st.needs if n not in seen]
            if missing:
                raise ValueError(
                    f"Stage {st.id} needs {missing}, which must be defined before it"
                )
            seen.add(st.id)
        return self

    @cached_property
    def stage_map(self) -> dict[str, StageSpec]:
        return {s.id: s for s in self.stages}

    @property
    def stage_ids(self) -> list[str]:
        return [s.id for s in self.stages]


DEFAULT_DEFINITION = PipelineDefinition(
    name="tests",
    stages=[
        StageSpec(
            id="checkout",
            title="Checkout",
            kind=StageKind.checkout,
            category=Category.infrastructure,
        ),
        StageSpec(
            id="toolchain",
            title="Install Rust",
            kind=StageKind.command,
            category=Category.infrastructure,
            run="rustup update stable",
        ),
        StageSpec(
            id="build-test-projects",
            title="Build test projects",
            kind=StageKind.command,
            category=Category.build,
            run="./build_tests.sh",
            needs=["checkout", "toolchain"],
        ),
        StageSpec(
            id="install-pocket-ic",
            title="Install pocket-ic",
            kind=StageKind.command,
            category=Category.infrastructure,
            run="src/tests/download-pocket-ic.sh",
            needs=["checkout"],
        ),
        StageSpec(
            id="install-wasi2ic",
            title="Install wasi2ic",
            kind=StageKind.command,
            category=Category.infrastructure,
            run="src/tests/download-wasi2ic.sh",
            needs=["checkout"],
        ),
        StageSpec(
            id="install-cargo-llvm-cov",
            title="Install cargo-llvm-cov",
            kind=StageKind.install_coverage_tool,
            category=Category.infrastructure,
            needs=["toolchain"],
        ),
        StageSpec(
            id="test",
            title="Run tests",
            kind=StageKind.command,
            category=Category.test,
            run="cargo test --verbose",
            needs=[
                "toolchain",
                "build-test-projects",
                "install-pocket-ic",
                "install-wasi2ic",
            ],
        ),
        StageSpec(
            id="coverage",
            title="Generate code coverage",
            kind=StageKind.coverage,
            category=Category.coverage,
            run="cargo llvm-cov --all-features --workspace --lcov --output-path lcov.info",
            needs=["test", "install-cargo-llvm-cov"],
        ),
        StageSpec(
            id="upload-coverage",
            title="Upload coverage to Codecov",
            kind=StageKind.upload,
            category=Category.upload,
            needs=["coverage"],
        ),
    ],
)


def schema_for_definition() -> dict:
    return TypeAdapter(PipelineDefinition).json_schema()


def load_definition(path: Path) -> PipelineDefinition:
    """
    Load a pipeline definition from a YAML file.

    The document is checked against the model's JSON schema first so that
    structural problems are reported the same way for every field.
    """
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as e:
        raise DefinitionError(f"Cannot read pipeline definition {path}: {e}") from e

    try:
        jsonschema.validate(instance=raw, schema=schema_for_definition())
    except jsonschema.ValidationError as e:
        raise DefinitionError(f"{path}: {e.message}") from e

    try:
        return PipelineDefinition.model_validate(raw)
    except ValidationError as e:
        raise DefinitionError(f"{path}: {e}") from e
