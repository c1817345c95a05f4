from __future__ import annotations

import os
import stat
from pathlib import Path

from cargo_ci.core import fs


def test_atomic_write_text_replaces_content(tmp_path: Path) -> None:
    p = tmp_path / "d1" / "sample.txt"
    fs.atomic_write_text(p, "hello\n")
    assert p.read_text() == "hello\n"

    fs.atomic_write_text(p, "updated")
    assert p.read_text() == "updated"
    assert [x.name for x in p.parent.iterdir()] == ["sample.txt"]


def test_remove_tree_handles_read_only_entries(tmp_path: Path) -> None:
    root = tmp_path / "env"
    ro_dir = root / "target" / "debug"
    ro_dir.mkdir(parents=True)
    f = ro_dir / "artifact.rlib"
    f.write_text("x")
    f.chmod(stat.S_IRUSR)
    ro_dir.chmod(stat.S_IRUSR | stat.S_IXUSR)

    fs.remove_tree(root)
    assert not root.exists()

    # missing paths are fine
    fs.remove_tree(root)


def test_make_executable(tmp_path: Path) -> None:
    p = tmp_path / "bin" / "tool"
    fs.ensure_parent(p)
    p.write_text("#!/bin/sh\n")
    fs.make_executable(p)
    assert os.access(p, os.X_OK)

    fs.safe_unlink(p)
    fs.safe_unlink(p)
    assert not p.exists()


def test_file_digest(tmp_path: Path) -> None:
    p = tmp_path / "lcov.info"
    p.write_bytes(b"abc")
    d = fs.file_digest(p)
    assert d.sha256 == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    assert d.bytes == 3
