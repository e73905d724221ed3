"""LLM Provider abstraction layer."""

from .base import (
    AuthenticationError,
    BaseLLMProvider,
    LLMConfig,
    LLMProvider,
    LLMProviderError,
    LLMResponse,
    Message,
    MessageRole,
    RateLimitError,
    RetryConfig,
    gateway_base_url,
)

__all__ = [
    "AuthenticationError",
    "BaseLLMProvider",
    "LLMConfig",
    "LLMProvider",
    "LLMProviderError",
    "LLMResponse",
    "Message",
    "MessageRole",
    "RateLimitError",
    "RetryConfig",
    "gateway_base_url",
]
