from __future__ import annotations

import logging
import sys
from typing import Any, Protocol, runtime_checkable

import structlog
from rich.logging import RichHandler
from structlog.contextvars import bind_contextvars, merge_contextvars

_CONFIGURED = False

REDACTED = "***"

_SECRETS: set[str] = set()


@runtime_checkable
class ILogger(Protocol):
    def debug(self, event: str, **kw: Any) -> Any: ...
    def info(self, event: str, **kw: Any) -> Any: ...
    def warning(self, event: str, **kw: Any) -> Any: ...
    def error(self, event: str, **kw: Any) -> Any: ...
    def exception(self, event: str, **kw: Any) -> Any: ...
    def bind(self, **kw: Any) -> "ILogger": ...


def register_secret(value: str | None) -> None:
    """
    Mask `value` in every subsequent log event.
    """
    if value:
        _SECRETS.add(value)


def forget_secrets() -> None:
    _SECRETS.clear()


def redact(text: str) -> str:
    for s in _SECRETS:
        if s in text:
            text = text.replace(s, REDACTED)
    return text


def _redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return redact(value)
    if isinstance(value, dict):
        return {k: _redact_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_redact_value(v) for v in value)
    return value


def redact_secrets(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    if not _SECRETS:
        return event_dict
    return {k: _redact_value(v) for k, v in event_dict.items()}


class RedactingFilter(logging.Filter):
    """
    Redaction for records that never pass through structlog, such as the
    request lines httpx logs on its own.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if _SECRETS:
            record.msg = redact(record.getMessage())
            record.args = None
        return True


def _handler(fmt: str) -> tuple[logging.Handler, Any]:
    if fmt == "json":
        return logging.StreamHandler(stream=sys.stdout), structlog.processors.JSONRenderer()
    # Stage output is streamed line by line; keep the console free of rich markup.
    rich = RichHandler(rich_tracebacks=True, markup=False, show_path=False, log_time_format="%H:%M:%S")
    return rich, structlog.processors.KeyValueRenderer(key_order=["event"], sort_keys=True)


def configure_logging(*, level: str = "INFO", fmt: str = "console") -> None:
    """
    Route structlog through stdlib logging to a rich console or JSON lines.

    Only the first call takes effect. Secret redaction runs after tracebacks
    are rendered to text, so nothing a command prints can bypass it.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    lvl = level.upper()
    handler, renderer = _handler(fmt)
    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.addFilter(RedactingFilter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(lvl)
    # httpx logs full request URLs at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            redact_secrets,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(lvl),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _CONFIGURED = True


def get_logger(name: str = "cargo_ci") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind(**values: Any) -> None:
    bind_contextvars(**values)
