"""Per-stream mutable state. Owned by one pipeline; never shared between tasks."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class StreamState:
    """Threaded through decoding and classification for one logical stream."""

    inside_reasoning_block: bool = False
    pending_boundary_buffer: str = ""
    terminated: bool = False
    finish_reason: str | None = None
    _sequence: int = field(default=0, repr=False)

    def next_sequence(self) -> int:
        index = self._sequence
        self._sequence += 1
        return index
