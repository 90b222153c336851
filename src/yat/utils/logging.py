"""
Logging configuration for the YAT extension host.

This module provides centralized logging setup with structured logging support
and consistent formatting across all components.
"""

import logging
import logging.config
import sys
from pathlib import Path

from pythonjsonlogger.json import JsonFormatter

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
STRUCTURED_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    name: str | None = None,
    level: str | None = None,
    structured: bool = False,
    log_file: Path | None = None
) -> logging.Logger:
    """Setup logging configuration.

    Handlers are only attached to the top-level ``yat`` logger; module loggers
    propagate to it, so calling this from every module does not duplicate
    output.

    Args:
        name: Logger name (defaults to this module)
        level: Logging level (INFO, DEBUG, etc.)
        structured: Enable JSON structured logging
        log_file: Optional log file path

    Returns:
        Configured logger instance
    """
    if name is None:
        name = __name__

    logger = logging.getLogger(name)
    root_name = name.split(".", 1)[0]
    root = logging.getLogger(root_name)

    if level is not None:
        root.setLevel(getattr(logging, level.upper()))

    # Avoid duplicate handlers
    if root.handlers:
        return logger

    if level is None:
        root.setLevel(logging.INFO)

    if structured:
        formatter: logging.Formatter = JsonFormatter(fmt=STRUCTURED_FORMAT, datefmt=DATE_FORMAT)
    else:
        formatter = logging.Formatter(fmt=DEFAULT_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    return logger


def configure_root_logging(
    level: str = "INFO",
    structured: bool = False,
    log_file: Path | None = None
) -> None:
    """Configure root logging for the entire host application.

    Args:
        level: Root logging level
        structured: Enable JSON structured logging
        log_file: Optional log file path
    """
    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": DEFAULT_FORMAT,
                "datefmt": DATE_FORMAT
            },
            "structured": {
                "()": "pythonjsonlogger.json.JsonFormatter",
                "format": STRUCTURED_FORMAT,
                "datefmt": DATE_FORMAT
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": "structured" if structured else "standard",
                "stream": "ext://sys.stderr"
            }
        },
        "root": {
            "level": level,
            "handlers": ["console"]
        },
        "loggers": {
            "yat": {
                "level": level,
                "handlers": ["console"],
                "propagate": False
            }
        }
    }

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        config["handlers"]["file"] = {
            "class": "logging.FileHandler",
            "level": level,
            "formatter": "structured" if structured else "standard",
            "filename": str(log_file)
        }
        config["root"]["handlers"].append("file")
        config["loggers"]["yat"]["handlers"].append("file")

    logging.config.dictConfig(config)