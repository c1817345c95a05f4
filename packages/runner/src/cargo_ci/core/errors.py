from __future__ import annotations

import traceback
from dataclasses import dataclass
from typing import Optional, Sequence


class CIError(RuntimeError):
    """Base error"""

    category = "internal"


@dataclass(frozen=True, slots=True)
class StageError:
    """
    A normalized error record for stage failures.
    """

    exc_type: str
    message: str
    traceback: str
    category: str = "internal"
    exit_code: Optional[int] = None


def stage_error_from_exc(exc: BaseException) -> StageError:
    return StageError(
        exc_type=type(exc).__name__,
        message=str(exc),
        traceback=traceback.format_exc(),
        category=getattr(exc, "category", "internal"),
        exit_code=getattr(exc, "exit_code", None),
    )


class InfrastructureError(CIError):
    """
    Checkout, toolchain install or tool download failed. Never retried.
    """

    category = "infrastructure"


class BuildError(CIError):
    """Fixture build script failed"""

    category = "build"


class TestFailure(CIError):
    """
    One or more tests failed. There is no partial success.
    """

    __test__ = False
    category = "test"


class CoverageError(CIError):
    """Coverage generation failed after the tests passed"""

    category = "coverage"


class UploadError(CIError):
    """Coverage report could not be transmitted to the reporting service"""

    category = "upload"


class DefinitionError(CIError):
    """Invalid pipeline definition (bad kind, duplicate id, predecessor out of order)"""

    category = "definition"


class CommandFailed(CIError):
    """
    A stage process exited non-zero.

    Raised through `command_failed`, which picks the subclass matching the
    failing stage's category, so a red `cargo test` is also a `TestFailure`.
    """

    def __init__(
        self,
        *,
        argv: Sequence[str],
        exit_code: int,
        category: str = "internal",
        tail: str | None = None,
    ) -> None:
        msg = f"Command exited with status {exit_code}: {' '.join(argv)}"
        if tail:
            msg += f"\n{tail}"
        super().__init__(msg)
        self.argv = list(argv)
        self.exit_code = exit_code
        self.category = category
        self.tail = tail


class InfrastructureCommandFailed(CommandFailed, InfrastructureError):
    pass


class BuildCommandFailed(CommandFailed, BuildError):
    pass


class TestCommandFailed(CommandFailed, TestFailure):
    __test__ = False


class CoverageCommandFailed(CommandFailed, CoverageError):
    pass


_COMMAND_ERRORS: dict[str, type[CommandFailed]] = {
    "infrastructure": InfrastructureCommandFailed,
    "build": BuildCommandFailed,
    "test": TestCommandFailed,
    "coverage": CoverageCommandFailed,
}


def command_failed(
    *, argv: Sequence[str], exit_code: int, category: str, tail: str | None = None
) -> CommandFailed:
    cls = _COMMAND_ERRORS.get(category, CommandFailed)
    return cls(argv=argv, exit_code=exit_code, category=category, tail=tail)


class StageTimeout(CIError):
    """A stage process exceeded the configured wall-clock limit"""

    def __init__(
        self, *, argv: Sequence[str], timeout_s: float, category: str = "internal"
    ) -> None:
        super().__init__(f"Command timed out after {timeout_s:g}s: {' '.join(argv)}")
        self.argv = list(argv)
        self.timeout_s = timeout_s
        self.category = category
