"""Fixtures for integration tests.

Wires a ConversationManager to a real SQLite database file, the mock
provider and the fake clock.
"""

from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator

import pytest
import pytest_asyncio

from session_compaction.context import CompactionEngine, ContextWindowRegistry, SummarizerAdapter
from session_compaction.sessions import ConversationManager, SQLiteMessageStore
from tests.conftest import TEST_MODEL, FakeClock, MockLLMProvider

DIRECTIVE = "You are a shell assistant."


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "sessions.db"


@pytest_asyncio.fixture
async def sqlite_store(db_path: Path) -> AsyncIterator[SQLiteMessageStore]:
    store = SQLiteMessageStore(db_path, pool_size=2, timeout=5.0)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def sqlite_engine(
    sqlite_store: SQLiteMessageStore,
    mock_llm_provider: MockLLMProvider,
    registry: ContextWindowRegistry,
    clock: FakeClock,
) -> CompactionEngine:
    return CompactionEngine(
        sqlite_store,
        SummarizerAdapter(mock_llm_provider, timeout=5.0),
        registry=registry,
        clock=clock,
    )


@pytest.fixture
def chat(sqlite_store, sqlite_engine) -> ConversationManager:
    """Manager persisting to SQLite with the small test window."""
    return ConversationManager(
        sqlite_store, sqlite_engine, model=TEST_MODEL, system_prompt=DIRECTIVE
    )


def turn_text(index: int, chars: int = 1200) -> str:
    """Turn content of ``chars`` characters (300 tokens by default)."""
    prefix = f"turn {index}: "
    return prefix + "x" * (chars - len(prefix))
