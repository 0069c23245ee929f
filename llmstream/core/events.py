"""Stream payloads: fragments flowing to the sink and the final assembled response. All are frozen Pydantic models."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

FINISH_REASON_STOP = "stop"
FINISH_REASON_LENGTH = "length"
FINISH_REASON_CONTENT_FILTER = "content_filter"
FINISH_REASON_FUNCTION_CALL = "function_call"
FINISH_REASON_TOOL_CALLS = "tool_calls"
# Stream ended without the decoder ever seeing a finish reason (cut connection, bare [DONE]).
FINISH_REASON_UNKNOWN = "unknown"


class ContentType(str, Enum):
    """Kind of content carried by a fragment."""

    TEXT = "text"
    REASONING = "reasoning"
    TOOL_CALL = "tool_call"
    METADATA = "metadata"


class StreamOutcome(str, Enum):
    """How a stream ended. Mirrors the terminal callback that fired."""

    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


class Fragment(BaseModel):
    """Smallest unit delivered to a sink. Created once per classified delta."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(min_length=1)
    content_type: ContentType = ContentType.TEXT
    sequence_index: int = Field(ge=0, description="Monotonic within one stream")


class AccumulatedResponse(BaseModel):
    """Final artifact of one stream, returned exactly once."""

    model_config = ConfigDict(frozen=True)

    text: str = ""
    reasoning_text: str = ""
    tool_call_text: str = ""
    finish_reason: str = FINISH_REASON_UNKNOWN
    raw_metadata: dict[str, Any] = Field(default_factory=dict)
    outcome: StreamOutcome = StreamOutcome.COMPLETED
    error: Optional[str] = Field(default=None, description="Error message when outcome is errored")
    stream_id: Optional[str] = None
    fragment_count: int = 0

    @property
    def is_complete(self) -> bool:
        """True when the provider reported a finish reason and the stream ended cleanly."""
        return self.outcome is StreamOutcome.COMPLETED and self.finish_reason != FINISH_REASON_UNKNOWN

    @property
    def model(self) -> Optional[str]:
        value = self.raw_metadata.get("model")
        return str(value) if value is not None else None

    @property
    def usage(self) -> dict[str, Any]:
        return dict(self.raw_metadata.get("usage") or {})
