"""Local fixtures for session module tests."""

from __future__ import annotations

from pathlib import Path
from typing import AsyncIterator

import pytest
import pytest_asyncio

from session_compaction.context import CompactionEngine
from session_compaction.sessions import (
    ConversationManager,
    InMemoryMessageStore,
    MessageStore,
    SQLiteMessageStore,
)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Database file inside a directory that does not exist yet."""
    return tmp_path / "data" / "sessions.db"


@pytest_asyncio.fixture
async def sqlite_store(db_path: Path) -> AsyncIterator[SQLiteMessageStore]:
    """Initialized SQLite store, closed after the test."""
    store = SQLiteMessageStore(db_path, pool_size=2, timeout=5.0)
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture(params=["memory", "sqlite"])
async def store(request, db_path: Path) -> AsyncIterator[MessageStore]:
    """Each store implementation in turn."""
    if request.param == "memory":
        yield InMemoryMessageStore()
        return
    sqlite = SQLiteMessageStore(db_path, pool_size=2, timeout=5.0)
    await sqlite.initialize()
    yield sqlite
    await sqlite.close()


@pytest.fixture
def manager(memory_store, engine: CompactionEngine, model: str) -> ConversationManager:
    """Manager over the in-memory store, with a system directive."""
    return ConversationManager(
        memory_store, engine, model=model, system_prompt="You are a shell assistant."
    )
