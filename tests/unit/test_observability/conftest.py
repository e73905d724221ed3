"""Local fixtures for observability tests."""

from __future__ import annotations

import json
from io import StringIO
from typing import Any, Callable, Dict, Iterator, List

import pytest

from session_compaction.observability.logging import (
    LogConfig,
    LogLevel,
    clear_context,
    configure_logging,
)


@pytest.fixture(autouse=True)
def reset_logging() -> Iterator[None]:
    """Restore default logging and an empty context after each test."""
    clear_context()
    yield
    clear_context()
    configure_logging(LogConfig())


@pytest.fixture
def log_stream() -> StringIO:
    return StringIO()


@pytest.fixture
def json_logging(log_stream: StringIO) -> Callable[[], List[Dict[str, Any]]]:
    """Configure JSON logging at debug level; returns a reader of the emitted events."""
    configure_logging(LogConfig(level=LogLevel.DEBUG, json_format=True, stream=log_stream))

    def _events() -> List[Dict[str, Any]]:
        return [json.loads(line) for line in log_stream.getvalue().splitlines() if line]

    return _events
