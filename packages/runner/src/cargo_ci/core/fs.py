import hashlib
import os
import shutil
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class FileDigest:
    sha256: str
    bytes: int


def ensure_parent(path: Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def safe_unlink(path: os.PathLike[str] | str) -> None:
    try:
        Path(path).unlink(missing_ok=True)
    except OSError:
        return


def file_digest(path: Path) -> FileDigest:
    with Path(path).open("rb") as f:
        h = hashlib.file_digest(f, "sha256")
    return FileDigest(sha256=h.hexdigest(), bytes=Path(path).stat().st_size)


def atomic_write_text(path: Path, text: str, *, encoding: str = "utf-8") -> None:
    """
    Write `text` next to `path` and rename it into place, so a reader of a
    run report never sees a half-written file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="\n") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        tmp.chmod(0o644)
        os.replace(tmp, path)
    finally:
        safe_unlink(tmp)


def make_executable(path: Path) -> None:
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def remove_tree(path: Path) -> None:
    """
    Remove a directory tree, clearing read-only bits that cargo and git leave behind.
    """
    path = Path(path)
    if not path.exists():
        return

    for p in path.rglob("*"):
        if p.is_symlink():
            continue
        try:
            p.chmod(p.stat().st_mode | stat.S_IWUSR | stat.S_IRUSR | stat.S_IXUSR)
        except OSError:
            pass

    shutil.rmtree(path)
