"""Local fixtures for LLM module tests."""

from __future__ import annotations

from typing import Any, List, Optional

import pytest

from session_compaction.llm.base import (
    BaseLLMProvider,
    LLMConfig,
    LLMResponse,
    Message,
    RetryConfig,
)


# ============================================================================
# Concrete Implementation for Testing Abstract Base Class
# ============================================================================


class ConcreteLLMProvider(BaseLLMProvider):
    """Provider failing its first ``fail_times`` attempts with ``failure_exception``."""

    name = "concrete"

    def __init__(
        self,
        config: LLMConfig,
        fail_times: int = 0,
        failure_exception: Optional[Exception] = None,
    ):
        super().__init__(config)
        self.fail_times = fail_times
        self.failure_exception = failure_exception or Exception("Test failure")
        self.call_count = 0

    async def _attempt(self, messages: List[Message]) -> LLMResponse:
        self.call_count += 1
        if self.call_count <= self.fail_times:
            raise self.failure_exception
        return LLMResponse(content="ok", model=self.config.model)

    async def generate(self, messages: List[Message], **kwargs: Any) -> LLMResponse:
        return await self._with_retries(lambda: self._attempt(messages))


@pytest.fixture
def fast_retry_config() -> LLMConfig:
    """LLM config whose retries do not sleep noticeably."""
    return LLMConfig(
        model="test-model",
        retry_config=RetryConfig(max_retries=2, base_delay=0.001, max_delay=0.002, jitter=False),
    )
