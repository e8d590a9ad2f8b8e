"""
Application-wide logging configuration helpers.

This module centralizes logging setup so that all modules share the same
configuration and emit human-readable log lines to stdout and, optionally,
to a log file that keeps import errors and executed SQL for later inspection.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any, Dict, Optional


SQL_LOGGER_NAME = "table_importer.sql"

_is_configured = False


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """
    Configure root and application loggers if they have not been configured yet.

    Args:
        level: Optional log level override (e.g., "DEBUG", "INFO").
        log_file: Optional path of a file that receives the same log lines.
    """
    global _is_configured

    if _is_configured:
        return

    log_level = (level or "INFO").upper()

    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "level": log_level,
        }
    }
    if log_file:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "standard",
            "filename": log_file,
            "encoding": "utf-8",
            "level": log_level,
        }

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                }
            },
            "handlers": handlers,
            "root": {
                "handlers": list(handlers),
                "level": log_level,
            },
        }
    )

    # Ensure our application namespace inherits the same level while still
    # propagating to the root logger for handler reuse.
    logging.getLogger("table_importer").setLevel(log_level)

    _is_configured = True


def get_sql_logger() -> logging.Logger:
    """Return the logger that records every statement sent to the database."""
    return logging.getLogger(SQL_LOGGER_NAME)
