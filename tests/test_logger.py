"""Tests for package logging configuration."""
from __future__ import annotations

import logging
from typing import Iterator

import pytest

from toolrelay.core import logger as relay_logging


@pytest.fixture
def package_logger() -> Iterator[logging.Logger]:
    logger = logging.getLogger(relay_logging.PACKAGE_LOGGER)
    level = logger.level
    yield logger
    logger.setLevel(level)


def test_resolve_log_level() -> None:
    assert relay_logging._resolve_log_level("debug") == logging.DEBUG
    assert relay_logging._resolve_log_level(" warning ") == logging.WARNING
    assert relay_logging._resolve_log_level("chatty") == logging.INFO
    assert relay_logging._resolve_log_level(None) == logging.INFO


def test_explicit_level_survives_later_get_logger(package_logger: logging.Logger) -> None:
    relay_logging.configure_logging("ERROR")
    child = relay_logging.get_logger("toolrelay.services.executor")

    assert package_logger.level == logging.ERROR
    assert child.getEffectiveLevel() == logging.ERROR
    assert relay_logging.get_logger().name == "toolrelay"


def test_handler_is_attached_at_most_once(package_logger: logging.Logger) -> None:
    relay_logging.configure_logging("INFO")
    relay_logging.configure_logging("INFO")

    marked = [
        handler
        for handler in package_logger.handlers
        if getattr(handler, relay_logging._HANDLER_MARKER, False)
    ]
    assert len(marked) <= 1
