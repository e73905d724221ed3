"""Local fixtures for context module tests."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, List, Optional

import pytest

from session_compaction.llm.base import MessageRole
from session_compaction.sessions.base import MessageKind, Session, StoredMessage

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# Message Fixtures
# ============================================================================


def make_message(
    seq: int,
    content: str,
    role: MessageRole = MessageRole.USER,
    token_count: Optional[int] = None,
    kind: MessageKind = MessageKind.TURN,
    session_id: str = "s1",
) -> StoredMessage:
    return StoredMessage(
        id=seq,
        session_id=session_id,
        seq=seq,
        role=role,
        content=content,
        created_at=T0,
        token_count=token_count,
        kind=kind,
    )


@pytest.fixture
def message_factory() -> Callable[..., StoredMessage]:
    """Build detached StoredMessage records."""
    return make_message


@pytest.fixture
def sized_messages() -> Callable[[List[int]], List[StoredMessage]]:
    """Build messages whose estimates equal the given token sizes."""

    def _build(sizes: List[int]) -> List[StoredMessage]:
        messages = []
        for i, size in enumerate(sizes, start=1):
            role = MessageRole.USER if i % 2 else MessageRole.ASSISTANT
            messages.append(make_message(i, "x" * (size * 4), role=role))
        return messages

    return _build


@pytest.fixture
def fresh_session() -> Session:
    """Session that has never been compacted."""
    return Session.create("s1", now=T0)


@pytest.fixture
def recently_compacted_session() -> Session:
    """Session compacted at T0."""
    session = Session.create("s1", now=T0)
    session.last_compacted_at = T0
    return session
