"""Common test fixtures and configuration for session_compaction tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

import pytest

from session_compaction.context import (
    CompactionConfig,
    CompactionEngine,
    ContextWindowRegistry,
    SummarizerAdapter,
)
from session_compaction.llm.base import (
    BaseLLMProvider,
    LLMConfig,
    LLMResponse,
    Message,
    MessageRole,
)
from session_compaction.sessions import InMemoryMessageStore

# Window size used by the compaction scenarios: trigger at 1,875 tokens,
# keep budget 500 tokens.
TEST_MODEL = "claude-test"
TEST_WINDOW = 2_500


# ============================================================================
# Clock
# ============================================================================


class FakeClock:
    """Manually advanced clock for cooldown tests."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Create a fake clock."""
    return FakeClock()


# ============================================================================
# LLM Fixtures
# ============================================================================


@pytest.fixture
def sample_llm_config() -> LLMConfig:
    """Create sample LLM configuration."""
    return LLMConfig(
        model="test-model",
        api_key="test-api-key",
        temperature=0.7,
        max_tokens=1000,
        timeout=30.0,
    )


class MockLLMProvider(BaseLLMProvider):
    """Mock LLM provider for testing.

    Returns the queued responses in order (repeating the last one), or a
    fixed summary reply. ``error`` makes every call raise it.
    """

    def __init__(
        self,
        config: LLMConfig,
        responses: Optional[List[LLMResponse]] = None,
        error: Optional[Exception] = None,
    ):
        super().__init__(config)
        self.responses = responses or []
        self.error = error
        self.call_count = 0
        self.last_messages: Optional[List[Message]] = None

    async def generate(self, messages: List[Message], **kwargs: Any) -> LLMResponse:
        """Generate a mock response."""
        self.last_messages = messages
        self.call_count += 1

        if self.error is not None:
            raise self.error

        if self.responses:
            return self.responses[min(self.call_count - 1, len(self.responses) - 1)]

        return LLMResponse(
            content="<summary>Mock summary of the earlier conversation.</summary>",
            model=self.config.model,
            finish_reason="stop",
            usage={"input_tokens": 900, "output_tokens": 12},
        )


@pytest.fixture
def mock_llm_provider(sample_llm_config: LLMConfig) -> MockLLMProvider:
    """Create mock LLM provider."""
    return MockLLMProvider(sample_llm_config)


# ============================================================================
# Compaction Fixtures
# ============================================================================


@pytest.fixture
def registry() -> ContextWindowRegistry:
    """Registry with a small window for the test model."""
    registry = ContextWindowRegistry()
    registry.register(TEST_MODEL, TEST_WINDOW)
    return registry


@pytest.fixture
def compaction_config() -> CompactionConfig:
    """Default compaction configuration."""
    return CompactionConfig()


@pytest.fixture
def memory_store() -> InMemoryMessageStore:
    """Create an empty in-memory message store."""
    return InMemoryMessageStore()


@pytest.fixture
def summarizer(mock_llm_provider: MockLLMProvider) -> SummarizerAdapter:
    """Summarizer backed by the mock provider."""
    return SummarizerAdapter(mock_llm_provider, timeout=5.0)


@pytest.fixture
def engine(
    memory_store: InMemoryMessageStore,
    summarizer: SummarizerAdapter,
    compaction_config: CompactionConfig,
    registry: ContextWindowRegistry,
    clock: FakeClock,
) -> CompactionEngine:
    """Compaction engine over the in-memory store with a fake clock."""
    return CompactionEngine(
        memory_store,
        summarizer,
        config=compaction_config,
        registry=registry,
        clock=clock,
    )


async def add_turns(
    store: Any,
    session_id: str,
    count: int,
    chars: int = 1200,
    start: int = 0,
) -> None:
    """Append ``count`` alternating user/assistant turns of ``chars`` characters.

    With the default size every turn estimates to 300 tokens.
    """
    for i in range(start, start + count):
        role = MessageRole.USER if i % 2 == 0 else MessageRole.ASSISTANT
        prefix = f"turn {i}: "
        await store.append_message(session_id, role, prefix + "x" * (chars - len(prefix)))


@pytest.fixture
def turns():
    """Helper appending fixed-size alternating turns (see ``add_turns``)."""
    return add_turns


@pytest.fixture
def model() -> str:
    """Model identifier registered with the small test window."""
    return TEST_MODEL
