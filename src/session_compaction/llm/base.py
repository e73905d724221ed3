"""Generation capability used by the conversation loop and the summarizer.

Only plain text turns are modelled: a list of role/content messages goes
in, text and token usage come out. Providers retry transient failures
(rate limits, overload, dropped connections) with capped exponential
backoff and raise ``LLMProviderError`` once they give up.
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    FrozenSet,
    List,
    Mapping,
    Optional,
    Protocol,
    TypeVar,
    runtime_checkable,
)

from session_compaction.observability import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# 529: Anthropic "overloaded"
RETRYABLE_STATUS_CODES: FrozenSet[int] = frozenset({408, 429, 500, 502, 503, 504, 529})


class MessageRole(str, Enum):
    """Role of a message in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    """A message sent to a generation call."""

    role: MessageRole
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Message":
        """Build a message from an assembled ``{"role", "content"}`` entry."""
        return cls(role=MessageRole(data["role"]), content=data.get("content", ""))


@dataclass
class LLMResponse:
    """Text and token usage returned by a generation call."""

    content: str
    model: str
    finish_reason: Optional[str] = None
    usage: Optional[Dict[str, int]] = None


class LLMProviderError(Exception):
    """A generation call failed.

    Attributes:
        provider: Provider name, e.g. ``"anthropic"``.
        status_code: HTTP status of the failed call, when there was one.
        transient: The failure is worth retrying even without a status
            code (timeouts, dropped connections).
    """

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        transient: bool = False,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.transient = transient


class RateLimitError(LLMProviderError):
    """The provider rejected the call for exceeding a rate limit."""


class AuthenticationError(LLMProviderError):
    """The provider rejected the credentials."""


@dataclass
class RetryConfig:
    """Backoff applied to transient provider failures.

    The delay before retry ``n`` (0-based) is ``base_delay * 2**n`` capped
    at ``max_delay``; with ``jitter`` it is drawn from the upper half of
    that interval.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: bool = True
    status_codes: FrozenSet[int] = RETRYABLE_STATUS_CODES

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got: {self.max_retries}")
        if self.base_delay < 0 or self.max_delay < self.base_delay:
            raise ValueError(
                f"need 0 <= base_delay <= max_delay, got: {self.base_delay}, {self.max_delay}"
            )

    def delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        if self.jitter:
            delay = random.uniform(delay / 2, delay)
        return delay

    def is_retryable(self, error: BaseException) -> bool:
        if not isinstance(error, LLMProviderError):
            return False
        return error.transient or error.status_code in self.status_codes


def gateway_base_url(base_url: Optional[str]) -> Optional[str]:
    """Normalise a gateway base URL so that it ends with ``/v1``."""
    if not base_url:
        return None
    base_url = base_url.rstrip("/")
    return base_url if base_url.endswith("/v1") else f"{base_url}/v1"


@dataclass
class LLMConfig:
    """Configuration for a generation provider.

    ``temperature`` is only sent when set; otherwise the provider default
    applies.
    """

    model: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    timeout: float = 60.0
    retry_config: Optional[RetryConfig] = None

    def __post_init__(self):
        if not self.model:
            raise ValueError("model is required")
        if self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got: {self.timeout}")
        if self.retry_config is None:
            self.retry_config = RetryConfig()


@runtime_checkable
class LLMProvider(Protocol):
    """Anything with an async ``generate`` of this shape can be injected.

    The compaction engine only needs text in, text and token usage out.
    """

    config: LLMConfig

    async def generate(self, messages: List[Message], **kwargs: Any) -> LLMResponse:
        ...


class BaseLLMProvider(ABC):
    """Shared plumbing for providers: configuration and retries."""

    name = "llm"

    def __init__(self, config: LLMConfig):
        self.config = config

    @abstractmethod
    async def generate(self, messages: List[Message], **kwargs: Any) -> LLMResponse:
        """Run one generation call."""

    async def _with_retries(self, request: Callable[[], Awaitable[T]]) -> T:
        """Await ``request()``, retrying transient failures with backoff.

        Raises:
            The last error once it is not retryable or retries run out.
        """
        retry = self.config.retry_config or RetryConfig()
        attempt = 0
        while True:
            try:
                return await request()
            except Exception as e:
                if attempt >= retry.max_retries or not retry.is_retryable(e):
                    raise
                delay = retry.delay(attempt)
                logger.warning(
                    "llm.retry",
                    provider=self.name,
                    attempt=attempt + 1,
                    delay=round(delay, 3),
                    status_code=getattr(e, "status_code", None),
                    error=str(e),
                )
                attempt += 1
                await asyncio.sleep(delay)
