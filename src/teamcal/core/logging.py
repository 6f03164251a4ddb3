"""Structured logging for teamcal.

Uses structlog's ProcessorFormatter to transparently upgrade all
``logging.getLogger(__name__)`` call sites.

Two output formats:
- ``text``: Colored, human-readable console output (dev default)
- ``json``: Machine-parseable JSON lines

The execution context (``panel`` or a page context id) and OTel trace
context are injected automatically. Token-like values are redacted from
every handler by ``CredentialRedactionFilter``.

Log file layout (when ``log_root`` is set), one JSON-lines file per
execution context::

    logs/
      teamcal/
        panel.log
        page_tab-1.log
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog
from opentelemetry import trace

from teamcal.errors import redact_credential_values

_LOG_DIR = "teamcal"

_execution_context: ContextVar[str | None] = ContextVar("teamcal_context", default=None)


def set_execution_context(name: str) -> None:
    """Set the execution context (``panel``, ``page:<id>``) for the current task."""
    _execution_context.set(name)


def get_execution_context() -> str | None:
    return _execution_context.get()


def add_execution_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``context`` from the ContextVar into the event dict."""
    event_dict["context"] = _execution_context.get()
    return event_dict


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``trace_id`` and ``span_id`` from the current OTel span."""
    span = trace.get_current_span()
    ctx = span.get_span_context()
    if ctx and ctx.trace_id:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    else:
        event_dict["trace_id"] = "0" * 32
        event_dict["span_id"] = "0" * 16
    return event_dict


class CredentialRedactionFilter(logging.Filter):
    """Scrub bearer tokens and OAuth secrets from rendered log messages.

    httpx logs full request lines and OAuth failures can echo token values.
    Never drops a record.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_credential_values(message)
        if redacted != message:
            record.msg = redacted
            # Already interpolated; clear args so formatting is not applied twice.
            record.args = ()
        return True


# Quieted to WARNING; what remains propagates to the root handlers.
_NOISE_LOGGERS = (
    "httpx",
    "httpcore",
    "playwright",
    "asyncio",
)


def _build_processors(time_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_execution_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def _redacting_handler(
    handler: logging.Handler, renderer: structlog.types.Processor, pre_chain: list
) -> logging.Handler:
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
            foreign_pre_chain=pre_chain,
        )
    )
    handler.addFilter(CredentialRedactionFilter())
    return handler


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | str | None = None,
    context_name: str | None = None,
) -> None:
    """Configure structured logging for the process.

    Parameters
    ----------
    level:
        Root log level (e.g. "DEBUG", "INFO", "WARNING").
    fmt:
        ``"text"`` for colored console, ``"json"`` for JSON lines.
    log_root:
        Root directory for JSON log files; see the module docstring.
    context_name:
        Execution context; set in the ContextVar and used for file naming.
    """
    if context_name:
        set_execution_context(context_name)

    if fmt == "json":
        console_processors = _build_processors(time_fmt="iso")
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        console_processors = _build_processors(time_fmt="%H:%M:%S")
        renderer = structlog.dev.ConsoleRenderer()

    root = logging.getLogger()
    # Remove existing handlers to avoid duplicate output on reconfiguration
    root.handlers.clear()
    root.addHandler(
        _redacting_handler(logging.StreamHandler(sys.stderr), renderer, console_processors)
    )
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if log_root is not None:
        log_dir = Path(log_root) / _LOG_DIR
        log_dir.mkdir(parents=True, exist_ok=True)
        log_name = (context_name or "teamcal").replace(":", "_")
        file_handler = _redacting_handler(
            logging.FileHandler(log_dir / f"{log_name}.log"),
            structlog.processors.JSONRenderer(),
            _build_processors(time_fmt="iso"),
        )
        file_handler.setLevel(logging.DEBUG)
        root.addHandler(file_handler)

    structlog.configure(
        processors=[
            *console_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
