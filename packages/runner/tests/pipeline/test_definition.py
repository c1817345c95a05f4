from __future__ import annotations

from pathlib import Path

import pytest
from cargo_ci.core import DefinitionError
from cargo_ci.pipeline.definition import (
    DEFAULT_DEFINITION,
    PipelineDefinition,
    StageKind,
    StageSpec,
    load_definition,
)
from pydantic import ValidationError


def test_default_definition_matches_workflow_order() -> None:
    assert DEFAULT_DEFINITION.stage_ids == [
        "checkout",
        "toolchain",
        "build-test-projects",
        "install-pocket-ic",
        "install-wasi2ic",
        "install-cargo-llvm-cov",
        "test",
        "coverage",
        "upload-coverage",
    ]
    m = DEFAULT_DEFINITION.stage_map
    assert m["test"].argv() == ["cargo", "test", "--verbose"]
    assert m["coverage"].argv() == [
        "cargo",
        "llvm-cov",
        "--all-features",
        "--workspace",
        "--lcov",
        "--output-path",
        "lcov.info",
    ]


def test_toolchain_precedes_every_dependent_stage() -> None:
    ids = DEFAULT_DEFINITION.stage_ids
    t = ids.index("toolchain")
    for dependent in ("build-test-projects", "test", "coverage"):
        assert ids.index(dependent) > t


def test_upload_fatality_follows_setting() -> None:
    upload = DEFAULT_DEFINITION.stage_map["upload-coverage"]
    assert upload.is_fatal(fail_ci_if_error=True) is True
    assert upload.is_fatal(fail_ci_if_error=False) is False
    assert DEFAULT_DEFINITION.stage_map["test"].is_fatal(fail_ci_if_error=False) is True


def test_command_kind_requires_run() -> None:
    with pytest.raises(ValidationError):
        StageSpec(id="test", title="t", kind=StageKind.command, category="test")


def test_needs_must_reference_earlier_stage() -> None:
    with pytest.raises(ValidationError, match="must be defined before"):
        PipelineDefinition(
            name="bad",
            stages=[
                StageSpec(id="test", title="t", kind="command", category="test", run="true", needs=["build"]),
                StageSpec(id="build", title="b", kind="command", category="build", run="true"),
            ],
        )


def test_duplicate_ids_rejected() -> None:
    with pytest.raises(ValidationError, match="Duplicate"):
        PipelineDefinition(
            name="dup",
            stages=[
                StageSpec(id="build", title="b", kind="command", category="build", run="true"),
                StageSpec(id="build", title="b", kind="command", category="build", run="true"),
            ],
        )


def test_load_definition_yaml(tmp_path: Path) -> None:
    p = tmp_path / "pipeline.yaml"
    p.write_text(
        """
name: smoke
stages:
  - id: checkout
    title: Checkout
    kind: checkout
    category: infrastructure
  - id: build
    title: Build
    kind: command
    category: build
    run: ./build_tests.sh --release
    needs: [checkout]
    env:
      RUSTFLAGS: -Dwarnings
""",
        encoding="utf-8",
    )
    d = load_definition(p)
    assert d.name == "smoke"
    assert d.stage_map["build"].argv() == ["./build_tests.sh", "--release"]
    assert d.stage_map["build"].env == {"RUSTFLAGS": "-Dwarnings"}


def test_load_definition_rejects_unknown_kind(tmp_path: Path) -> None:
    p = tmp_path / "pipeline.yaml"
    p.write_text(
        "name: x\nstages:\n  - {id: deploy, title: D, kind: deploy, category: build}\n",
        encoding="utf-8",
    )
    with pytest.raises(DefinitionError):
        load_definition(p)


def test_load_definition_rejects_out_of_order_needs(tmp_path: Path) -> None:
    p = tmp_path / "pipeline.yaml"
    p.write_text(
        "name: x\nstages:\n"
        "  - {id: test, title: T, kind: command, category: test, run: 'cargo test', needs: [build]}\n"
        "  - {id: build, title: B, kind: command, category: build, run: 'cargo build'}\n",
        encoding="utf-8",
    )
    with pytest.raises(DefinitionError, match="must be defined before"):
        load_definition(p)


def test_load_definition_missing_file(tmp_path: Path) -> None:
    with pytest.raises(DefinitionError):
        load_definition(tmp_path / "nope.yaml")
