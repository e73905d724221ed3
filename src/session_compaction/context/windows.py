"""Context window sizes per model family.

Model identifiers arrive in many shapes ("anthropic/claude-opus-4-5-20251101",
"gpt-4o-mini", ...), so lookup is by substring: the longest known pattern
contained in the identifier wins. Unknown identifiers get a conservative
default and never fail a turn.
"""

from __future__ import annotations

import math
from typing import Dict, Optional, Tuple

DEFAULT_CONTEXT_WINDOW = 200_000

# Pattern to context window size (tokens)
MODEL_CONTEXT_WINDOWS: Dict[str, int] = {
    # Anthropic models
    "claude-opus-4-5": 200_000,
    "claude-sonnet-4-5": 200_000,
    "claude-haiku-4-5": 200_000,
    "claude-opus-4": 200_000,
    "claude-sonnet-4": 200_000,
    "claude-3-7-sonnet": 200_000,
    "claude-3-5": 200_000,
    "claude-3-haiku": 200_000,
    "claude-3": 200_000,
    # OpenAI models
    "gpt-4.1": 1_047_576,
    "gpt-4o": 128_000,
    "gpt-4-turbo": 128_000,
    "gpt-4": 8_192,
    "gpt-3.5-turbo": 16_385,
}


class ContextWindowRegistry:
    """Maps model identifiers to their maximum context size."""

    def __init__(
        self,
        windows: Optional[Dict[str, int]] = None,
        default: int = DEFAULT_CONTEXT_WINDOW,
    ):
        """Initialize the registry.

        Args:
            windows: Pattern to window size mapping. Defaults to
                ``MODEL_CONTEXT_WINDOWS``.
            default: Window size for unrecognized identifiers.
        """
        if default <= 0:
            raise ValueError(f"default window must be > 0, got: {default}")
        self._windows: Dict[str, int] = dict(
            MODEL_CONTEXT_WINDOWS if windows is None else windows
        )
        self._default = default

    @property
    def default(self) -> int:
        return self._default

    def register(self, pattern: str, size: int) -> None:
        """Add or override the window size for a model pattern."""
        if not pattern:
            raise ValueError("pattern must be a non-empty string")
        if size <= 0:
            raise ValueError(f"window size must be > 0, got: {size}")
        self._windows[pattern] = size

    def match(self, model: Optional[str]) -> Optional[Tuple[str, int]]:
        """Return the most specific ``(pattern, size)`` for ``model``, if any."""
        if not model:
            return None
        model = model.lower()
        best: Optional[Tuple[str, int]] = None
        for pattern, size in self._windows.items():
            if pattern.lower() in model and (best is None or len(pattern) > len(best[0])):
                best = (pattern, size)
        return best

    def window_size(self, model: Optional[str]) -> int:
        """Get the context window size for a model identifier.

        Args:
            model: The model identifier.

        Returns:
            The matched window size, or the default when nothing matches.
        """
        found = self.match(model)
        return found[1] if found else self._default


_default_registry = ContextWindowRegistry()


def get_context_window(model: Optional[str]) -> int:
    """Window size for ``model`` from the default registry."""
    return _default_registry.window_size(model)


def get_compaction_threshold(model: Optional[str], ratio: float = 0.75) -> int:
    """Token count at which ``model``'s context is considered full enough to compact."""
    return math.floor(get_context_window(model) * ratio)
