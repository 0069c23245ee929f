"""Model capability resolution: how (and whether) a model emits reasoning.

The pipeline only needs one decision per request: run the inline-tag classifier or not. That
decision is made here from the model name and handed to the pipeline at construction.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Iterable, Mapping, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class ReasoningMode(str, Enum):
    NATIVE = "native"  # separate delta field (reasoning_content / reasoning)
    INLINE_TAG = "inline_tag"  # <think>...</think> inside content
    NONE = "none"


class ModelCapabilities(BaseModel):
    model_config = ConfigDict(frozen=True)

    supports_reasoning: bool = False
    reasoning_mode: ReasoningMode = ReasoningMode.NONE

    @classmethod
    def for_mode(cls, mode: ReasoningMode | str) -> "ModelCapabilities":
        mode = ReasoningMode(mode)
        return cls(supports_reasoning=mode is not ReasoningMode.NONE, reasoning_mode=mode)

    @property
    def uses_inline_tags(self) -> bool:
        return self.reasoning_mode is ReasoningMode.INLINE_TAG


@runtime_checkable
class CapabilityResolver(Protocol):
    """Resolves capabilities for a model name."""

    def resolve(self, model: str) -> ModelCapabilities:
        ...


class StaticCapabilityResolver:
    """Same answer for every model. Useful when the caller already knows the mode."""

    def __init__(self, mode: ReasoningMode | str = ReasoningMode.NONE) -> None:
        self._caps = ModelCapabilities.for_mode(mode)

    def resolve(self, model: str) -> ModelCapabilities:
        return self._caps


# First match wins. Inline-tag families come first so "deepseek-r1" is not caught by a broader rule.
DEFAULT_MODEL_PATTERNS: tuple[tuple[str, ReasoningMode], ...] = (
    (r"deepseek-?r1", ReasoningMode.INLINE_TAG),
    (r"\bqwq\b|qwq-", ReasoningMode.INLINE_TAG),
    (r"qwen-?3", ReasoningMode.INLINE_TAG),
    (r"phi-?4.*reason", ReasoningMode.INLINE_TAG),
    (r"magistral", ReasoningMode.INLINE_TAG),
    (r"deepseek-reasoner", ReasoningMode.NATIVE),
    (r"gpt-oss", ReasoningMode.NATIVE),
    (r"(^|[/:\s-])o[134](-|$)", ReasoningMode.NATIVE),
    (r"reason|thinking", ReasoningMode.NATIVE),
)


class PatternCapabilityResolver:
    """Ordered regex table over lower-cased model names. Falls back to ``default``."""

    def __init__(
        self,
        patterns: Iterable[tuple[str, ReasoningMode | str]] | Mapping[str, ReasoningMode | str] | None = None,
        default: ReasoningMode | str = ReasoningMode.NONE,
    ) -> None:
        if patterns is None:
            patterns = DEFAULT_MODEL_PATTERNS
        elif isinstance(patterns, Mapping):
            patterns = list(patterns.items())
        self._rules = [(re.compile(p, re.IGNORECASE), ReasoningMode(m)) for p, m in patterns]
        self._default = ModelCapabilities.for_mode(default)

    def resolve(self, model: str) -> ModelCapabilities:
        name = (model or "").strip().lower()
        for pattern, mode in self._rules:
            if pattern.search(name):
                logger.debug("model capability resolved", extra={"model": name, "reasoning_mode": mode.value})
                return ModelCapabilities.for_mode(mode)
        return self._default
