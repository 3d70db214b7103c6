"""Tests for configure_logging."""
from __future__ import annotations

import logging

import pytest

from portfolio_nav.logging_setup import configure_logging


@pytest.mark.parametrize(
    ("name", "expected"),
    [("INFO", logging.INFO), ("debug", logging.DEBUG), ("warning", logging.WARNING)],
)
def test_root_level(name: str, expected: int) -> None:
    configure_logging(name)
    assert logging.getLogger().level == expected


@pytest.mark.parametrize("name", ["NONEXISTENT", ""])
def test_unknown_level_falls_back_to_info(name: str) -> None:
    configure_logging(name)
    assert logging.getLogger().level == logging.INFO


def test_http_and_event_loop_loggers_quieted() -> None:
    configure_logging("DEBUG")
    for name in ("aiohttp", "urllib3", "asyncio"):
        assert logging.getLogger(name).level == logging.WARNING


def test_single_stderr_handler_across_calls() -> None:
    configure_logging("INFO")
    configure_logging("WARNING")
    ours = [h for h in logging.getLogger().handlers if getattr(h, "_portfolio_nav", False)]
    assert len(ours) == 1
