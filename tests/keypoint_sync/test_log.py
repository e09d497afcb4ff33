"""Tests for loguru sink setup."""

from __future__ import annotations

import io

from loguru import logger

from src.core.log import setup_logging


def test_setup_logging_filters_by_level() -> None:
    """Messages below the configured level are dropped."""
    buffer = io.StringIO()
    handler_id = setup_logging("INFO", sink=buffer)
    try:
        logger.debug("hidden detail")
        logger.info("sync finished")
    finally:
        logger.remove(handler_id)

    output = buffer.getvalue()
    assert "sync finished" in output
    assert "hidden detail" not in output
    assert "INFO" in output
