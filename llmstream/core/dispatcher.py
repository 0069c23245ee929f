"""Stream Dispatcher: delivers fragments to the caller's sink in order and fires exactly one terminal callback."""

from __future__ import annotations

import inspect
import logging
from typing import Any

from llmstream.core.errors import SinkError
from llmstream.core.events import AccumulatedResponse, Fragment
from llmstream.models.streaming import SinkKind, StreamSink

logger = logging.getLogger(__name__)


async def _call(fn: Any, *args: Any) -> None:
    result = fn(*args)
    if inspect.isawaitable(result):
        await result


class StreamDispatcher:
    """One per stream. Not re-entrant: the pipeline awaits each delivery before the next."""

    def __init__(self, sink: StreamSink, kind: SinkKind = SinkKind.TYPED, *, stream_id: str | None = None) -> None:
        self._sink = sink
        self._kind = SinkKind(kind)
        self._stream_id = stream_id
        self._last_index = -1
        self._terminal: str | None = None
        self.delivered = 0

    @property
    def kind(self) -> SinkKind:
        return self._kind

    @property
    def terminated(self) -> bool:
        return self._terminal is not None

    @property
    def terminal(self) -> str | None:
        """Name of the terminal callback that fired, if any."""
        return self._terminal

    async def deliver(self, fragment: Fragment) -> None:
        """Hand one fragment to the sink. Sink exceptions come back as SinkError."""
        if self._terminal is not None:
            logger.debug(
                "fragment dropped after terminal",
                extra={"stream_id": self._stream_id, "sequence_index": fragment.sequence_index},
            )
            return
        if fragment.sequence_index < self._last_index:
            raise ValueError(
                f"fragment {fragment.sequence_index} delivered after {self._last_index}; order must be preserved"
            )
        self._last_index = fragment.sequence_index
        try:
            if self._kind is SinkKind.LEGACY:
                await _call(self._sink.on_fragment, fragment.text)
            else:
                await _call(self._sink.on_fragment, fragment.text, fragment.content_type)
        except Exception as e:
            raise SinkError(e) from e
        self.delivered += 1

    async def complete_normally(self, response: AccumulatedResponse) -> bool:
        return await self._finish("on_complete", response)

    async def complete_with_error(self, error: BaseException) -> bool:
        return await self._finish("on_error", error)

    async def complete_cancelled(self, response: AccumulatedResponse) -> bool:
        """Fire on_cancelled, or on_complete for sinks that predate it (``response.outcome`` says cancelled)."""
        if getattr(self._sink, "on_cancelled", None) is None:
            return await self._finish("on_complete", response)
        return await self._finish("on_cancelled", response)

    async def _finish(self, callback: str, arg: Any) -> bool:
        """Fire ``callback`` unless a terminal already fired. Returns whether it fired."""
        if self._terminal is not None:
            logger.warning(
                "second terminal callback suppressed",
                extra={"stream_id": self._stream_id, "fired": self._terminal, "suppressed": callback},
            )
            return False
        self._terminal = callback
        try:
            await _call(getattr(self._sink, callback), arg)
        except Exception:
            # Already terminal: nothing left to report the failure to.
            logger.exception("sink %s raised", callback, extra={"stream_id": self._stream_id})
        return True
