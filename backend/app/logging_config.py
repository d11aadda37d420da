"""Structured logging configuration for the application."""

import logging
import logging.config
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

from app.config import settings

LOG_DIR = Path("./logs")


def _build_handlers() -> dict[str, Any]:
    handlers: dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": "DEBUG" if settings.is_development else "INFO",
            "formatter": "detailed" if settings.is_development else "simple",
            "stream": sys.stdout,
        },
    }

    # File logs are skipped under pytest so test runs leave no artifacts behind.
    if settings.is_testing:
        return handlers

    LOG_DIR.mkdir(exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    handlers["file"] = {
        "class": "logging.FileHandler",
        "level": "INFO",
        "formatter": "json" if settings.is_production else "detailed",
        "filename": str(LOG_DIR / f"yolo-transcript-{timestamp}.log"),
        "encoding": "utf-8",
    }
    handlers["error_file"] = {
        "class": "logging.FileHandler",
        "level": "ERROR",
        "formatter": "detailed",
        "filename": str(LOG_DIR / f"error-{timestamp}.log"),
        "encoding": "utf-8",
    }
    return handlers


def setup_logging() -> None:
    """Configure console/file logging; JSON file output in production."""
    handlers = _build_handlers()
    handler_names = list(handlers)

    log_config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "detailed": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
                "datefmt": "%Y-%m-%d %H:%M:%S",
            },
            "simple": {
                "format": "%(levelname)s - %(name)s - %(message)s",
            },
            "json": {
                "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
                "format": "%(asctime)s %(name)s %(levelname)s %(filename)s %(lineno)d %(message)s",
            },
        },
        "handlers": handlers,
        "loggers": {
            "app": {
                "level": settings.log_level,
                "handlers": handler_names,
                "propagate": False,
            },
            "uvicorn": {
                "level": "INFO",
                "handlers": handler_names,
                "propagate": False,
            },
            # Request lines from httpx would otherwise echo vendor URLs at INFO.
            "httpx": {
                "level": "WARNING",
                "handlers": handler_names,
                "propagate": False,
            },
            "sqlalchemy.engine": {
                "level": "WARNING" if (settings.is_production or settings.is_testing) else "INFO",
                "handlers": handler_names,
                "propagate": False,
            },
        },
        "root": {
            "level": settings.log_level,
            "handlers": handler_names,
        },
    }

    logging.config.dictConfig(log_config)

    logger = logging.getLogger("app")
    logger.info(
        "Logging initialized - Environment: %s, Level: %s", settings.environment, settings.log_level
    )


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance under the ``app`` namespace.

    Args:
        name: Logger name, typically __name__ of the calling module

    Returns:
        Configured logger instance
    """
    if name.startswith("app.") or name == "app":
        return logging.getLogger(name)
    return logging.getLogger(f"app.{name}")
