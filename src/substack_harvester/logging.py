"""structlog configuration and phase-scoped logging context.

Provides run ID generation, a phase logging context manager, and
structured log configuration for console and JSON output with optional
file logging.
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


def generate_run_id() -> str:
    """Generate a unique identifier for one harvest run."""
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# structlog configuration
# ---------------------------------------------------------------------------


_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_CHATTY_LIBRARIES = ("httpx", "httpcore")


def _build_handlers(
    numeric_level: int, log_file: str | Path | None
) -> list[logging.Handler]:
    """Stderr handler, plus a UTF-8 file handler when ``log_file`` is set."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(str(log_file), encoding="utf-8"))
    for handler in handlers:
        handler.setLevel(numeric_level)
    return handlers


def configure_logging(
    level: str = "INFO",
    fmt: str = "console",
    log_file: str | Path | None = None,
    run_id: str | None = None,
) -> None:
    """Configure structlog for the application.

    Sets up structlog with shared processors and a format-specific
    renderer. Configures the stdlib logging root to respect the given
    level and optionally adds a file handler.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        fmt: Output format: ``"console"`` for human-readable or
            ``"json"`` for machine-parseable.
        log_file: Optional file path for log output (in addition to stderr).
        run_id: Optional run ID to bind to all log entries.

    Raises:
        ValueError: If ``level`` is not a recognized log level.
    """
    level_upper = level.upper()
    if level_upper not in _VALID_LEVELS:
        msg = f"Invalid log level: {level!r}. Must be one of {sorted(_VALID_LEVELS)}"
        raise ValueError(msg)

    numeric_level = getattr(logging, level_upper)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    # JSON lines for log collectors, coloured key-value output otherwise
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer()
    )

    # Configure stdlib logging for level filtering and file output.
    # Handlers are replaced, not appended, on re-configuration.
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    for handler in _build_handlers(numeric_level, log_file):
        root_logger.addHandler(handler)

    # Transport libraries log one INFO line per request; cap them at WARNING
    for name in _CHATTY_LIBRARIES:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    # Every stdlib handler renders through the same structlog pipeline
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    for handler in root_logger.handlers:
        handler.setFormatter(formatter)

    # Every entry of this run carries the run id, including worker logs
    if run_id:
        structlog.contextvars.bind_contextvars(run_id=run_id)


# ---------------------------------------------------------------------------
# Phase logging context manager
# ---------------------------------------------------------------------------


@contextmanager
def phase_logging_context(
    phase: str,
    query: str,
    **extra: Any,
) -> Iterator[structlog.stdlib.BoundLogger]:
    """Bind phase and query term to every log entry within the block.

    Logs ``phase_start`` on entry and ``phase_end`` on exit. Exceptions
    are logged with ``phase_error`` and re-raised.

    Example::

        with phase_logging_context("publication_search", query="growth") as log:
            log.info("round_complete", round=1)
    """
    structlog.contextvars.bind_contextvars(phase=phase, query=query, **extra)

    log: structlog.stdlib.BoundLogger = structlog.get_logger(phase)
    log.info("phase_start")

    try:
        yield log
    except Exception:
        log.exception("phase_error")
        raise
    finally:
        log.info("phase_end")
        structlog.contextvars.unbind_contextvars("phase", "query", *extra.keys())
