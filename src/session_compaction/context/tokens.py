"""Token estimation and tagged token counts.

Exact tokenization is out of scope: the estimator approximates one token
per four characters. Counts reported by a model call are kept apart from
estimates with the ``ExactCount`` / ``EstimatedCount`` tags so budget math
can tell what it is consuming.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional, Union

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Approximate the token count of ``text`` as ``ceil(len / 4)``."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _get_content(message: Any) -> str:
    if isinstance(message, dict):
        return message.get("content", "") or ""
    return getattr(message, "content", "") or ""


def estimate_messages_tokens(messages: Iterable[Any]) -> int:
    """Sum the estimate over messages (dicts or objects with ``content``)."""
    return sum(estimate_tokens(_get_content(m)) for m in messages)


@dataclass(frozen=True)
class ExactCount:
    """Token count reported by a model call."""

    value: int
    exact: bool = True


@dataclass(frozen=True)
class EstimatedCount:
    """Token count produced by the length heuristic."""

    value: int
    exact: bool = False

    @classmethod
    def of(cls, text: str) -> "EstimatedCount":
        return cls(estimate_tokens(text))


TokenCount = Union[ExactCount, EstimatedCount]


def total_tokens(counts: Iterable[TokenCount]) -> int:
    return sum(c.value for c in counts)


def _usage_field(usage: Any, *names: str) -> int:
    """First reported value among ``names`` as an int, 0 when none is set."""
    for name in names:
        if isinstance(usage, Mapping):
            value = usage.get(name)
        else:
            value = getattr(usage, name, None)
        if value is None:
            continue
        if isinstance(value, bool):
            raise ValueError(f"usage field {name!r} is not a number: {value!r}")
        try:
            count = int(value)
        except (TypeError, ValueError):
            raise ValueError(f"usage field {name!r} is not a number: {value!r}") from None
        if count < 0:
            raise ValueError(f"usage field {name!r} is negative: {count}")
        if count:
            return count
    return 0


@dataclass(frozen=True)
class TokenUsage:
    """Token usage reported by a generation call."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_mapping(cls, usage: Any) -> Optional["TokenUsage"]:
        """Normalise provider usage; ``None`` when nothing was reported.

        ``usage`` is a mapping or an SDK usage object with the same fields.
        Accepts ``input_tokens``/``prompt_tokens`` and
        ``output_tokens``/``completion_tokens``. The total falls back to
        input + output when not reported.

        Raises:
            ValueError: A reported field is not a non-negative integer.
        """
        if not usage:
            return None
        input_tokens = _usage_field(usage, "input_tokens", "prompt_tokens")
        output_tokens = _usage_field(usage, "output_tokens", "completion_tokens")
        total = _usage_field(usage, "total_tokens") or input_tokens + output_tokens
        if not total:
            return None
        return cls(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total,
        )

    @property
    def context_tokens(self) -> int:
        """Tokens occupied by the exchange: prompt plus completion."""
        return self.input_tokens + self.output_tokens
