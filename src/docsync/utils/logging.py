"""Logging for the ``docsync`` package.

As a library, docsync only installs a :class:`logging.NullHandler` on its own
logger at import time; records propagate to whatever the host application set
up. :func:`setup_logging` additionally writes the package's records to a
rotating file, and :func:`configure_from_settings` does that when the
``log_to_file`` setting asks for it.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

from ..services.settings import Settings, docsync_home

__all__ = [
    "PACKAGE_LOGGER",
    "configure_from_settings",
    "get_log_path",
    "install_null_handler",
    "setup_logging",
    "teardown_logging",
]

PACKAGE_LOGGER = "docsync"
LOG_FILENAME = "docsync.log"
_LOG_DIR_ENV = "DOCSYNC_LOG_DIR"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_file_handler: logging.handlers.RotatingFileHandler | None = None


def install_null_handler() -> None:
    """Keep "no handlers could be found" noise away from hosts that log nothing."""

    logger = logging.getLogger(PACKAGE_LOGGER)
    if not any(isinstance(handler, logging.NullHandler) for handler in logger.handlers):
        logger.addHandler(logging.NullHandler())


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Send ``docsync`` records to a rotating log file and return its path.

    Only the package logger is touched; the root logger and its handlers stay
    under the host's control. Repeated calls reuse the existing file unless
    ``force`` is set.
    """

    global _file_handler
    if _file_handler is not None:
        if not force:
            _package_logger().setLevel(level)
            return Path(_file_handler.baseFilename)
        teardown_logging()

    target_dir = _resolve_log_dir(log_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / LOG_FILENAME

    handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setFormatter(logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger = _package_logger()
    logger.addHandler(handler)
    logger.setLevel(level)
    _file_handler = handler
    logger.debug("Logging to %s", log_path)
    return log_path


def configure_from_settings(settings: Settings) -> Path | None:
    """Apply the logging switches carried by ``settings``.

    Returns the log file path when file logging is on, otherwise ``None``.
    """

    if not settings.log_to_file:
        if settings.debug_logging:
            _package_logger().setLevel(logging.DEBUG)
        return get_log_path()
    level = logging.DEBUG if settings.debug_logging else logging.INFO
    return setup_logging(level)


def teardown_logging() -> None:
    """Detach and close the log file handler installed by :func:`setup_logging`."""

    global _file_handler
    handler = _file_handler
    if handler is None:
        return
    _file_handler = None
    logger = _package_logger()
    logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    handler.close()


def get_log_path() -> Path | None:
    """Return the active log file, if file logging is on."""

    if _file_handler is None:
        return None
    return Path(_file_handler.baseFilename)


def _package_logger() -> logging.Logger:
    return logging.getLogger(PACKAGE_LOGGER)


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    if log_dir:
        return Path(log_dir).expanduser()
    env_override = os.environ.get(_LOG_DIR_ENV)
    if env_override:
        return Path(env_override).expanduser()
    return docsync_home() / "logs"
