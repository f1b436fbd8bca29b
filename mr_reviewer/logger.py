"""Process-wide loguru setup and review-scoped logging helpers.

Records always go to stdout. A rotating file sink is added only when a log
directory is given, either explicitly or through ``REVIEWER_LOG_DIR``, so a
one-shot CI run leaves nothing on disk.
"""

from __future__ import annotations

import os
import sys
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from loguru import logger as _logger

LOG_DIR_ENV = "REVIEWER_LOG_DIR"
LOG_LEVEL_ENV = "LOG_LEVEL"

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level> | {extra}"
)

_configured = False


def log_file_dir(explicit: str | Path | None = None) -> Path | None:
    """Directory for the file sink, or None when file logging is off."""

    raw = explicit if explicit is not None else os.getenv(LOG_DIR_ENV)
    if not raw:
        return None
    return Path(raw).expanduser().resolve()


def configure_logger(
    *,
    log_dir: str | Path | None = None,
    level: str | None = None,
    force: bool = False,
) -> Path | None:
    """Install the sinks once per process; ``force`` replaces existing ones.

    Returns the file sink directory, if any.
    """

    global _configured
    target_dir = log_file_dir(log_dir)
    if _configured and not force:
        return target_dir

    _logger.remove()
    _logger.add(
        sys.stdout,
        level=(level or os.getenv(LOG_LEVEL_ENV) or "INFO").upper(),
        format=LOG_FORMAT,
        colorize=sys.stdout.isatty(),
    )
    if target_dir is not None:
        target_dir.mkdir(parents=True, exist_ok=True)
        _logger.add(
            target_dir / "mr-reviewer-{time:YYYY-MM-DD}.log",
            level="DEBUG",
            format=LOG_FORMAT,
            rotation="50 MB",
            retention="10 days",
            enqueue=True,
            backtrace=True,
            diagnose=False,
        )

    _configured = True
    return target_dir


def get_logger():
    configure_logger()
    return _logger


def log_with_context(logger_instance, **context: Any):
    """Bind the non-None ``context`` values onto ``logger_instance``."""

    return logger_instance.bind(**{key: value for key, value in context.items() if value is not None})


def log_for_unit(logger_instance, unit=None, **context: Any):
    """Bind a review unit's project and merge request identifiers.

    Every stage of a review logs through this so records can be filtered per
    merge request, e.g. ``log_for_unit(logger, unit).info("Fetching changes")``.
    """

    if unit is not None:
        context = {
            "project_id": unit.project_id,
            "merge_request_iid": unit.merge_request_iid,
            **context,
        }
    return log_with_context(logger_instance, **context)


@contextmanager
def log_timing(logger_instance, operation: str, **context: Any) -> Iterator[Any]:
    """Log how long the wrapped block took, or how long it ran before failing."""

    ctx_logger = log_with_context(logger_instance, **context)
    started = time.perf_counter()
    ctx_logger.debug(f"{operation}: started")
    try:
        yield ctx_logger
    except Exception as exc:
        ctx_logger.error(f"{operation}: failed after {time.perf_counter() - started:.3f}s: {exc}")
        raise
    ctx_logger.debug(f"{operation}: finished in {time.perf_counter() - started:.3f}s")


def log_success(logger_instance, message: str, *, unit=None, **context: Any) -> None:
    log_for_unit(logger_instance, unit, **context).success(message)


def log_failure(
    logger_instance,
    message: str,
    error: Exception | None = None,
    *,
    unit=None,
    **context: Any,
) -> None:
    ctx_logger = log_for_unit(logger_instance, unit, **context)
    if error is not None:
        ctx_logger.error(f"{message} ({type(error).__name__}: {error})")
    else:
        ctx_logger.error(message)
