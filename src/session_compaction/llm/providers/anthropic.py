"""Anthropic LLM Provider implementation."""

from __future__ import annotations

from typing import Any, Dict, List, NoReturn

from anthropic import APIConnectionError, APIStatusError, AsyncAnthropic
from anthropic import AuthenticationError as AnthropicAuthError
from anthropic import RateLimitError as AnthropicRateLimitError

from ..base import (
    AuthenticationError,
    BaseLLMProvider,
    LLMConfig,
    LLMProviderError,
    LLMResponse,
    Message,
    MessageRole,
    RateLimitError,
    gateway_base_url,
)


class AnthropicProvider(BaseLLMProvider):
    """Anthropic API provider for Claude models.

    Used both for the main conversation and as the summarization
    capability injected into the compaction engine. ``base_url`` may point
    at an API gateway; it is normalised to end with ``/v1``.
    """

    name = "anthropic"

    def __init__(self, config: LLMConfig):
        """Initialize Anthropic provider.

        Args:
            config: LLM configuration with model, api_key, etc.
        """
        super().__init__(config)
        self._client = AsyncAnthropic(
            api_key=config.api_key,
            base_url=gateway_base_url(config.base_url),
            timeout=config.timeout,
        )

    def _format_messages(self, messages: List[Message]) -> tuple[str, List[Dict[str, Any]]]:
        """Format messages for Anthropic API.

        Anthropic uses a separate system parameter, so system messages are
        joined into it and removed from the message list.

        Returns:
            Tuple of (system_prompt, formatted_messages)
        """
        system_parts: List[str] = []
        formatted: List[Dict[str, Any]] = []

        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system_parts.append(msg.content)
                continue
            formatted.append({"role": msg.role.value, "content": msg.content})

        return "\n\n".join(system_parts), formatted

    def _handle_error(self, error: Exception) -> NoReturn:
        """Convert Anthropic errors to our error types."""
        if isinstance(error, AnthropicRateLimitError):
            raise RateLimitError(
                str(error),
                provider="anthropic",
                status_code=429,
            ) from error
        if isinstance(error, AnthropicAuthError):
            raise AuthenticationError(
                str(error),
                provider="anthropic",
                status_code=401,
            ) from error
        if isinstance(error, APIConnectionError):
            # includes APITimeoutError
            raise LLMProviderError(str(error), provider="anthropic", transient=True) from error
        status_code = error.status_code if isinstance(error, APIStatusError) else None
        raise LLMProviderError(
            str(error), provider="anthropic", status_code=status_code
        ) from error

    async def generate(
        self,
        messages: List[Message],
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate a response using Anthropic API.

        Args:
            messages: List of messages in the conversation.
            **kwargs: Additional parameters passed to the API.

        Returns:
            LLMResponse with the generated content.
        """
        async def _make_request() -> LLMResponse:
            system_prompt, formatted_messages = self._format_messages(messages)

            request_params: Dict[str, Any] = {
                "model": self.config.model,
                "messages": formatted_messages,
                "max_tokens": self.config.max_tokens or 4096,
            }

            if system_prompt:
                request_params["system"] = system_prompt

            if self.config.temperature is not None:
                request_params["temperature"] = self.config.temperature

            request_params.update(kwargs)

            try:
                response = await self._client.messages.create(**request_params)
            except Exception as e:
                self._handle_error(e)

            content_parts = [
                block.text for block in response.content if block.type == "text"
            ]

            return LLMResponse(
                content="".join(content_parts),
                model=response.model,
                finish_reason=response.stop_reason,
                usage={
                    "input_tokens": response.usage.input_tokens,
                    "output_tokens": response.usage.output_tokens,
                    "total_tokens": response.usage.input_tokens + response.usage.output_tokens,
                },
            )

        return await self._with_retries(_make_request)
