from .config import SECRET_ENV_VARS, EventKind, Settings, load_settings
from .errors import (
    BuildError,
    CIError,
    CommandFailed,
    CoverageError,
    DefinitionError,
    InfrastructureError,
    StageError,
    StageTimeout,
    TestFailure,
    UploadError,
    command_failed,
    stage_error_from_exc,
)
from .fs import (
    FileDigest,
    atomic_write_text,
    ensure_parent,
    file_digest,
    make_executable,
    remove_tree,
    safe_unlink,
)
from .logging import (
    ILogger,
    bind,
    configure_logging,
    get_logger,
    redact,
    register_secret,
)
from .paths import RunLayout
from .provenance import RunProvenance, monotonic_ms, new_run_id, utc_now_iso

__all__ = [
    "SECRET_ENV_VARS",
    "EventKind",
    "Settings",
    "load_settings",
    "BuildError",
    "CIError",
    "CommandFailed",
    "CoverageError",
    "DefinitionError",
    "InfrastructureError",
    "StageError",
    "StageTimeout",
    "TestFailure",
    "UploadError",
    "command_failed",
    "stage_error_from_exc",
    "FileDigest",
    "atomic_write_text",
    "ensure_parent",
    "file_digest",
    "make_executable",
    "remove_tree",
    "safe_unlink",
    "ILogger",
    "bind",
    "configure_logging",
    "get_logger",
    "redact",
    "register_secret",
    "RunLayout",
    "RunProvenance",
    "monotonic_ms",
    "new_run_id",
    "utc_now_iso",
]
