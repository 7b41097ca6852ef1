"""
Logging setup shared by the CLI, the schema server and the resolution stages.

Every module logs under the ``pgndc`` hierarchy. The level comes from
``PGNDC_LOG_LEVEL``, the record layout from ``PGNDC_ENV`` and an optional
rotating log file from ``PGNDC_LOG_FILE``.
"""

import functools
import inspect
import logging
import logging.config
import os
import sys
import time
from typing import Any, Dict

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

RECORD_FORMATS = {
    "development": "%(asctime)s | %(name)-28s | %(levelname)-8s | %(message)s",
    "production": "%(asctime)s | %(name)s | %(levelname)s | %(message)s | %(pathname)s:%(lineno)d",
}

# Libraries whose records share the pgndc console handler.
LIBRARY_LEVELS = {
    "uvicorn": "INFO",
    "asyncpg": "WARNING",
}

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


def get_log_level() -> str:
    return os.getenv("PGNDC_LOG_LEVEL", "INFO").upper()


def get_log_format() -> str:
    """Record layout for ``PGNDC_ENV``; unknown environments get the development one."""
    env = os.getenv("PGNDC_ENV", "development").lower()
    return RECORD_FORMATS.get(env, RECORD_FORMATS["development"])


def get_logging_config() -> Dict[str, Any]:
    """Build the ``dictConfig`` document for the current environment."""
    log_level = get_log_level()
    handlers = ["console"]

    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"format": get_log_format(), "datefmt": DATE_FORMAT},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "standard",
                "stream": sys.stderr,
            },
        },
        "loggers": {
            "pgndc": {"level": log_level, "handlers": handlers, "propagate": False},
        },
        "root": {"level": "WARNING", "handlers": ["console"]},
    }
    for library, level in LIBRARY_LEVELS.items():
        config["loggers"][library] = {"level": level, "handlers": ["console"], "propagate": False}

    log_file = os.getenv("PGNDC_LOG_FILE")
    if log_file:
        config["formatters"]["file"] = {
            "format": "%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s",
            "datefmt": DATE_FORMAT,
        }
        config["handlers"]["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": "file",
            "filename": log_file,
            "maxBytes": LOG_FILE_MAX_BYTES,
            "backupCount": LOG_FILE_BACKUPS,
        }
        handlers.append("file")

    return config


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())


def get_logger(name: str) -> logging.Logger:
    """
    Logger for a module, rooted under ``pgndc``.

    The CLI entry point runs as ``__main__`` and logs as ``pgndc.cli``.
    """
    if name == "__main__":
        name = "pgndc.cli"
    elif not name.startswith("pgndc"):
        name = f"pgndc.{name}"
    return logging.getLogger(name)


def log_performance(logger: logging.Logger, operation: str):
    """
    Time ``operation``: DEBUG with the duration on success, ERROR on failure.

    Works on plain and ``async`` functions. Exceptions are re-raised.
    """

    def report(started: float, error: Exception | None = None) -> None:
        elapsed = time.perf_counter() - started
        if error is None:
            logger.debug("%s finished in %.3fs", operation, elapsed)
        else:
            logger.error("%s failed after %.3fs: %s", operation, elapsed, error)

    def decorator(func):
        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                started = time.perf_counter()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    report(started, e)
                    raise
                report(started)
                return result

            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                report(started, e)
                raise
            report(started)
            return result

        return wrapper

    return decorator


if not logging.getLogger().handlers:
    setup_logging()
