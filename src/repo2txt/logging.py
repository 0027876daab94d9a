from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pathlib import Path

_PROCESSORS: list[structlog.types.Processor] = [
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.add_log_level,
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.JSONRenderer(),
]

_configured = False


def _file_handler(filename: str | Path) -> logging.FileHandler:
    return logging.FileHandler(str(filename), encoding="utf-8")


def _has_file_handler(root: logging.Logger, filename: str | Path) -> bool:
    target = str(filename)
    return any(isinstance(h, logging.FileHandler) and h.baseFilename.endswith(target) for h in root.handlers)


def setup_logging(filename: str | Path | None = None, level: int = logging.INFO) -> structlog.BoundLogger:
    """Configure JSON structured logging for repo2txt.

    The module-level `logger` is created on import with a stderr handler. A
    later call with `filename` (the CLI's `--log-file`) attaches a UTF-8 file
    handler to the already configured root logger instead of reconfiguring it.

    Args:
        filename: Optional log file. If None, records go to stderr.
        level: Minimum level of the emitted events.

    Returns:
        The `repo2txt` structlog logger.
    """
    global _configured  # noqa: PLW0603
    root = logging.getLogger()
    if not _configured:
        handler = _file_handler(filename) if filename else logging.StreamHandler(sys.stderr)
        logging.basicConfig(level=level, handlers=[handler], format="%(message)s")
        structlog.configure(
            processors=_PROCESSORS,
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )
        _configured = True
    elif filename and not _has_file_handler(root, filename):
        root.addHandler(_file_handler(filename))

    return structlog.get_logger("repo2txt")


logger = setup_logging()
