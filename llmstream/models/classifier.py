"""Inline-tag reasoning classifier.

Some models (DeepSeek-R1 distills, QwQ, Qwen3 on plain OpenAI-compatible servers) write their
reasoning into the answer channel between ``<think>`` and ``</think>``. The classifier relabels
those spans as REASONING while the text streams, without waiting for the whole answer.

A delimiter can be split across chunks (``"<thi"`` + ``"nk>"``). When a chunk ends with a prefix
of the delimiter currently being looked for, that suffix is held in
``StreamState.pending_boundary_buffer`` and prepended to the next chunk. The buffer never holds
more than ``len(delimiter) - 1`` characters.
"""

from __future__ import annotations

import logging

from llmstream.core.events import ContentType
from llmstream.core.state import StreamState
from llmstream.models.decoder import Delta

logger = logging.getLogger(__name__)

DEFAULT_START_TAG = "<think>"
DEFAULT_END_TAG = "</think>"


def _partial_suffix_len(text: str, tag: str) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of ``tag``."""
    for size in range(min(len(text), len(tag) - 1), 0, -1):
        if text.endswith(tag[:size]):
            return size
    return 0


class InlineTagClassifier:
    """Splits TEXT deltas into TEXT / REASONING deltas on start/end delimiters."""

    def __init__(self, start_tag: str = DEFAULT_START_TAG, end_tag: str = DEFAULT_END_TAG) -> None:
        if not start_tag or not end_tag:
            raise ValueError("reasoning delimiters must be non-empty")
        if start_tag == end_tag:
            raise ValueError("start and end delimiters must differ")
        self.start_tag = start_tag
        self.end_tag = end_tag

    @property
    def max_pending(self) -> int:
        return max(len(self.start_tag), len(self.end_tag)) - 1

    def feed(self, text: str, state: StreamState) -> list[Delta]:
        """Classify one raw text delta. Toggles ``state.inside_reasoning_block`` on every delimiter."""
        buf = state.pending_boundary_buffer + text
        state.pending_boundary_buffer = ""
        out: list[Delta] = []
        while buf:
            inside = state.inside_reasoning_block
            tag = self.end_tag if inside else self.start_tag
            kind = ContentType.REASONING if inside else ContentType.TEXT
            idx = buf.find(tag)
            if idx >= 0:
                if idx:
                    out.append(Delta(kind, buf[:idx]))
                state.inside_reasoning_block = not inside
                buf = buf[idx + len(tag):]
                continue
            keep = _partial_suffix_len(buf, tag)
            if keep < len(buf):
                out.append(Delta(kind, buf[: len(buf) - keep]))
            state.pending_boundary_buffer = buf[len(buf) - keep:]
            break
        return out

    def flush(self, state: StreamState) -> list[Delta]:
        """Release a held suffix that never became a delimiter. Called once at clean stream end."""
        pending = state.pending_boundary_buffer
        state.pending_boundary_buffer = ""
        if not pending:
            return []
        kind = ContentType.REASONING if state.inside_reasoning_block else ContentType.TEXT
        return [Delta(kind, pending)]
