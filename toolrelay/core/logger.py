"""Colored console logging for the ``toolrelay`` package.

Only the package logger is touched: its level follows ``TOOLRELAY_LOG_LEVEL``
and a colored handler is attached when the host process has not configured
logging itself.
"""
from __future__ import annotations

import logging
from typing import Optional

from colorlog import ColoredFormatter

from toolrelay.config import config


PACKAGE_LOGGER = "toolrelay"

_HANDLER_MARKER = "_toolrelay_colored_handler"
_level_applied = False


def _resolve_log_level(level_name: Optional[str]) -> int:
    value = (level_name or "INFO").strip().upper()
    level = logging.getLevelName(value)
    return level if isinstance(level, int) else logging.INFO


def _build_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(
        ColoredFormatter(
            "%(asctime)s %(log_color)s%(levelname)-8s%(reset)s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    )
    setattr(handler, _HANDLER_MARKER, True)
    return handler


def configure_logging(level_name: Optional[str] = None) -> None:
    """Apply a log level to the package logger and attach the handler once.

    Without an explicit level the configured default is applied on the first
    call only, so module-level ``get_logger`` calls never undo a level chosen
    at startup.
    """
    global _level_applied

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    if level_name is not None or not _level_applied:
        package_logger.setLevel(_resolve_log_level(level_name or config.log_level))
        _level_applied = True

    if any(getattr(handler, _HANDLER_MARKER, False) for handler in package_logger.handlers):
        return

    # Hosts that configured the root logger (uvicorn, pytest) receive records by propagation.
    if logging.getLogger().handlers:
        return

    package_logger.addHandler(_build_handler())


def get_logger(name: Optional[str] = None) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name or PACKAGE_LOGGER)
