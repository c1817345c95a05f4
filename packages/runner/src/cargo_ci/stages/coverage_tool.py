from __future__ import annotations

import platform
import tarfile
from pathlib import Path
from typing import Any

import httpx

from cargo_ci.core import InfrastructureError, make_executable
from cargo_ci.pipeline.context import RunContext
from cargo_ci.pipeline.definition import StageSpec
from cargo_ci.pipeline.events import EventType

from .command import run_in_context
from .http import HttpError, download_to_file, make_http_client

TOOL_NAME = "cargo-llvm-cov"
RELEASE_URL = "https://github.com/taiki-e/cargo-llvm-cov/releases/{ref}/{tool}-{target}.tar.gz"

_TARGETS: dict[tuple[str, str], str] = {
    ("Linux", "x86_64"): "x86_64-unknown-linux-gnu",
    ("Linux", "aarch64"): "aarch64-unknown-linux-gnu",
    ("Linux", "arm64"): "aarch64-unknown-linux-gnu",
    ("Darwin", "x86_64"): "x86_64-apple-darwin",
    ("Darwin", "arm64"): "aarch64-apple-darwin",
}


def host_target(system: str | None = None, machine: str | None = None) -> str:
    key = (system or platform.system(), machine or platform.machine())
    try:
        return _TARGETS[key]
    except KeyError:
        raise InfrastructureError(
            f"No {TOOL_NAME} release for host {key[0]}/{key[1]}"
        ) from None


def release_url(version: str, target: str) -> str:
    ref = "latest/download" if version == "latest" else f"download/v{version.lstrip('v')}"
    return RELEASE_URL.format(ref=ref, tool=TOOL_NAME, target=target)


def extract_binary(archive: Path, dest_dir: Path, *, name: str = TOOL_NAME) -> Path:
    """
    Copy the single executable called `name` out of a release tarball.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    with tarfile.open(archive, "r:gz") as tar:
        member = next(
            (m for m in tar.getmembers() if m.isfile() and Path(m.name).name == name),
            None,
        )
        if member is None:
            raise InfrastructureError(f"{archive.name} does not contain {name}")
        src = tar.extractfile(member)
        if src is None:
            raise InfrastructureError(f"Cannot read {member.name} from {archive.name}")
        out = dest_dir / name
        with src, out.open("wb") as f:
            while True:
                b = src.read(1024 * 1024)
                if not b:
                    break
                f.write(b)
    make_executable(out)
    return out


def stage_install_coverage_tool(
    ctx: RunContext,
    spec: StageSpec,
    *,
    transport: httpx.BaseTransport | None = None,
) -> dict[str, Any]:
    s = ctx.settings
    target = host_target()
    url = release_url(s.llvm_cov_version, target)
    archive = ctx.env.downloads / f"{TOOL_NAME}-{target}.tar.gz"

    ctx.emit(EventType.TOOL_DOWNLOAD, stage=spec.id, tool=TOOL_NAME, url=url)

    with make_http_client(transport=transport) as client:
        try:
            dl = download_to_file(
                client,
                url=url,
                dest=archive,
                max_attempts=s.http_max_attempts,
            )
        except HttpError as e:
            raise InfrastructureError(f"{TOOL_NAME} download failed: {e}") from e

    binary = extract_binary(archive, ctx.env.tools_bin)

    # cargo-llvm-cov drives the toolchain's llvm-tools; install them alongside.
    run_in_context(
        ctx,
        ["rustup", "component", "add", "llvm-tools-preview"],
        stage_id=spec.id,
        category=spec.category.value,
    )

    return {
        "tool": TOOL_NAME,
        "version": s.llvm_cov_version,
        "target": target,
        "binary": str(binary),
        "_metrics": {"download_bytes": dl.bytes_written},
    }
