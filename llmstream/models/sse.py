"""SSE frame parsing: raw response lines -> data payloads, with the [DONE] sentinel reported separately.

Only ``data:`` lines matter for OpenAI-compatible streams. Blank lines, ``event:``, ``id:``,
``retry:`` and ``:`` comment lines (keep-alives) are ignored rather than treated as errors.
"""

from __future__ import annotations

import logging
from typing import NamedTuple

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class SSEFrame(NamedTuple):
    """One data frame. ``done`` is True for the termination sentinel, in which case ``data`` is empty."""

    data: str = ""
    done: bool = False


DONE_FRAME = SSEFrame(done=True)


def parse_sse_line(line: str | bytes | None) -> SSEFrame | None:
    """Return the frame for a data line, or None for any line that should be ignored."""
    if line is None:
        return None
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    line = line.rstrip("\r\n")
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):]
    if payload.startswith(" "):
        payload = payload[1:]
    payload = payload.strip()
    if payload == DONE_SENTINEL:
        return DONE_FRAME
    return SSEFrame(data=payload)


def is_stream_complete(frame: SSEFrame | None) -> bool:
    return frame is not None and frame.done

