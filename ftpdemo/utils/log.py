from __future__ import annotations

import logging
import sys
from logging.config import dictConfig
from typing import TYPE_CHECKING, Any

from twisted.python import log as twisted_log
from twisted.python.failure import Failure

import ftpdemo
from ftpdemo.settings import Settings

if TYPE_CHECKING:
    from types import TracebackType

    from ftpdemo.settings import BaseSettings


logger = logging.getLogger(__name__)


def failure_to_exc_info(
    failure: Failure | Any,
) -> tuple[type[BaseException], BaseException, TracebackType | None] | None:
    """Extract exc_info from Failure instances"""
    if isinstance(failure, Failure):
        assert failure.type
        assert failure.value
        return (
            failure.type,
            failure.value,
            failure.getTracebackObject(),
        )
    return None


class TopLevelFormatter(logging.Filter):
    """Keep only top level loggers' name (direct children from root) from
    records.

    This filter will replace ftpdemo loggers' names with 'ftpdemo'. This mimics
    the old behaviour of printing only the package name in log lines, while
    the full logger name stays available for filtering.
    """

    def __init__(self, loggers: list[str] | None = None):
        super().__init__()
        self.loggers: list[str] = loggers or []

    def filter(self, record: logging.LogRecord) -> bool:
        if any(record.name.startswith(logger + ".") for logger in self.loggers):
            record.name = record.name.split(".", 1)[0]
        return True


DEFAULT_LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "loggers": {
        "ftpdemo": {
            "level": "DEBUG",
        },
        "twisted": {
            "level": "ERROR",
        },
    },
}


def configure_logging(
    settings: BaseSettings | None = None, install_root_handler: bool = True
) -> None:
    """
    Initialize logging defaults for ftpdemo.

    - Route warnings and twisted logging through python standard logging
    - Assign DEBUG and ERROR level to ftpdemo and Twisted loggers respectively
    - Create a root handler from the ``LOG_*`` settings, if
      ``install_root_handler`` is true
    """
    if not sys.warnoptions:
        # Route warnings through python logging
        logging.captureWarnings(True)

    observer = twisted_log.PythonLoggingObserver("twisted")
    observer.start()

    dictConfig(DEFAULT_LOGGING)

    if settings is None:
        settings = Settings()

    if install_root_handler:
        install_root_handler_from_settings(settings)


_root_handler: logging.Handler | None = None


def install_root_handler_from_settings(settings: BaseSettings) -> None:
    global _root_handler  # noqa: PLW0603

    if (
        _root_handler is not None
        and _root_handler in logging.root.handlers
    ):
        logging.root.removeHandler(_root_handler)
    logging.root.setLevel(logging.NOTSET)
    _root_handler = _get_handler(settings)
    logging.root.addHandler(_root_handler)


def get_root_handler() -> logging.Handler | None:
    return _root_handler


def _get_handler(settings: BaseSettings) -> logging.Handler:
    """Return a log handler object according to settings"""
    filename = settings.get("LOG_FILE")
    handler: logging.Handler
    if filename:
        mode = "a" if settings.getbool("LOG_FILE_APPEND") else "w"
        encoding = settings.get("LOG_ENCODING")
        handler = logging.FileHandler(filename, mode=mode, encoding=encoding)
    elif settings.getbool("LOG_ENABLED"):
        handler = logging.StreamHandler()
    else:
        handler = logging.NullHandler()

    formatter = logging.Formatter(
        fmt=settings.get("LOG_FORMAT"), datefmt=settings.get("LOG_DATEFORMAT")
    )
    handler.setFormatter(formatter)
    handler.setLevel(settings.get("LOG_LEVEL"))
    if settings.getbool("LOG_SHORT_NAMES"):
        handler.addFilter(TopLevelFormatter(["ftpdemo"]))
    return handler


def log_ftpdemo_info(settings: BaseSettings) -> None:
    logger.info(
        "ftpdemo %(version)s started (root: %(root)s)",
        {"version": ftpdemo.__version__, "root": settings.get("FTP_ROOT_DIR")},
    )


def log_reactor_info() -> None:
    from twisted.internet import reactor

    logger.debug("Using reactor: %s.%s", reactor.__module__, reactor.__class__.__name__)
