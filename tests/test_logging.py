from __future__ import annotations

import logging

import pytest

from rendezvous.utils.logging import TRANSPORT_LOGGERS, configure_logging, resolve_level


@pytest.fixture
def transport_levels():
    saved = {name: logging.getLogger(name).level for name in TRANSPORT_LOGGERS}
    yield
    for name, level in saved.items():
        logging.getLogger(name).setLevel(level)


def test_resolve_level_accepts_names_and_numbers() -> None:
    assert resolve_level("debug") == logging.DEBUG
    assert resolve_level(logging.WARNING) == logging.WARNING
    assert resolve_level("chatty") == logging.INFO


def test_transport_loggers_are_quiet_above_debug(transport_levels) -> None:
    configure_logging("INFO")

    for name in TRANSPORT_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING


def test_transport_loggers_follow_debug(transport_levels) -> None:
    configure_logging("DEBUG")

    for name in TRANSPORT_LOGGERS:
        assert logging.getLogger(name).level == logging.DEBUG
