"""Structured logging for the repair pipeline.

Every stage logs through structlog. Events reach two stdlib handlers, each
rendering the same event dict its own way:

- the console (stderr, through rich), filtered by ``-v``
- ``{log_dir}/debug.jsonl`` when a log directory is given, always at DEBUG,
  one JSON object per event with the stage's change counts as fields
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from pathlib import Path

    from structlog.typing import EventDict, Processor

LOG_FILE_NAME = "debug.jsonl"

_configured = False
_file_handler: logging.FileHandler | None = None

_SHARED_PROCESSORS: list[Processor] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
]


def _verbosity_level(verbosity: int) -> int:
    """0 = WARNING, 1 = INFO, 2+ = DEBUG."""
    return {0: logging.WARNING, 1: logging.INFO}.get(verbosity, logging.DEBUG)


def _drop_rich_columns(_logger: Any, _method: str, event_dict: EventDict) -> EventDict:
    # RichHandler prints level, time and logger in its own columns.
    for key in ("level", "timestamp", "logger"):
        event_dict.pop(key, None)
    return event_dict


def _console_handler(verbosity: int) -> logging.Handler:
    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        show_time=verbosity >= 1,
        show_path=verbosity >= 2,
        markup=False,
        level=_verbosity_level(verbosity),
    )
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _drop_rich_columns,
                structlog.processors.KeyValueRenderer(key_order=["event"], drop_missing=True),
            ],
            foreign_pre_chain=_SHARED_PROCESSORS,
        )
    )
    return handler


def _jsonl_handler(log_dir: Path) -> logging.FileHandler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_dir / LOG_FILE_NAME, mode="a", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    # Story text is often CJK; keep it readable in the file.
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(ensure_ascii=False),
            ],
            foreign_pre_chain=_SHARED_PROCESSORS,
        )
    )
    return handler


def configure_logging(verbosity: int = 0, log_dir: Path | None = None) -> None:
    """Route structlog events to the console and, optionally, a JSONL file.

    Args:
        verbosity: Console level, 0=WARNING (default), 1=INFO, 2+=DEBUG.
        log_dir: If given, every event down to DEBUG is also appended to
            ``{log_dir}/debug.jsonl``.
    """
    global _configured, _file_handler

    close_file_logging()

    handlers: list[logging.Handler] = [_console_handler(verbosity)]
    if log_dir is not None:
        _file_handler = _jsonl_handler(log_dir)
        handlers.append(_file_handler)

    root_level = logging.DEBUG if log_dir is not None else _verbosity_level(verbosity)
    logging.basicConfig(level=root_level, handlers=handlers, force=True)

    structlog.configure(
        processors=[
            *_SHARED_PROCESSORS,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Return a structlog logger, configuring defaults on first use."""
    if not _configured:
        configure_logging()

    logger: structlog.typing.FilteringBoundLogger = structlog.get_logger(name)
    return logger


def close_file_logging() -> None:
    """Flush and detach the JSONL handler, if one is open."""
    global _file_handler
    if _file_handler is not None:
        logging.getLogger().removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None
