"""Stream pipeline: line source -> SSE frames -> decoded deltas -> classified fragments -> sink + accumulator.

State machine::

    IDLE --first line--> RECEIVING --[DONE] / finish reason / EOF--> COMPLETED
                             |--malformed chunk / transport / sink failure--> ERRORED
                             '--cancel()--> CANCELLED

Terminal states are absorbing. Whatever happens, the line source is closed, the response is frozen
and exactly one terminal callback fires, in that order.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from enum import Enum
from typing import Any, AsyncIterator

from llmstream.core.accumulator import ResponseAccumulator
from llmstream.core.dispatcher import StreamDispatcher
from llmstream.core.errors import StreamCancelled, StreamError, TransportError
from llmstream.core.events import AccumulatedResponse, ContentType, Fragment, StreamOutcome
from llmstream.core.state import StreamState
from llmstream.models.capabilities import ModelCapabilities, ReasoningMode
from llmstream.models.classifier import DEFAULT_END_TAG, DEFAULT_START_TAG, InlineTagClassifier
from llmstream.models.decoder import ChunkDecoder, DecodedChunk, Delta, FieldMapping
from llmstream.models.line_source import LineSource, aiter_lines, close_source
from llmstream.models.sse import is_stream_complete, parse_sse_line
from llmstream.models.streaming import SinkKind, StreamSink, sink_kind_of

logger = logging.getLogger(__name__)

_EOF = object()


class PipelineState(str, Enum):
    IDLE = "idle"
    RECEIVING = "receiving"
    COMPLETED = "completed"
    ERRORED = "errored"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({PipelineState.COMPLETED, PipelineState.ERRORED, PipelineState.CANCELLED})

_STATE_FOR_OUTCOME = {
    StreamOutcome.COMPLETED: PipelineState.COMPLETED,
    StreamOutcome.ERRORED: PipelineState.ERRORED,
    StreamOutcome.CANCELLED: PipelineState.CANCELLED,
}


class StreamPipeline:
    """Processes one stream, once. Not shared between tasks."""

    def __init__(
        self,
        sink: StreamSink,
        *,
        sink_kind: SinkKind | str | None = None,
        reasoning_mode: ReasoningMode | str = ReasoningMode.NONE,
        capabilities: ModelCapabilities | None = None,
        start_tag: str = DEFAULT_START_TAG,
        end_tag: str = DEFAULT_END_TAG,
        field_mapping: FieldMapping | None = None,
        complete_on_finish_reason: bool = True,
        stream_id: str | None = None,
    ) -> None:
        self.stream_id = stream_id or str(uuid.uuid4())
        mode = capabilities.reasoning_mode if capabilities is not None else ReasoningMode(reasoning_mode)
        self.reasoning_mode = mode
        self._classifier = InlineTagClassifier(start_tag, end_tag) if mode is ReasoningMode.INLINE_TAG else None
        self._decoder = ChunkDecoder(field_mapping)
        kind = SinkKind(sink_kind) if sink_kind is not None else sink_kind_of(sink)
        self._dispatcher = StreamDispatcher(sink, kind, stream_id=self.stream_id)
        self._accumulator = ResponseAccumulator(self.stream_id)
        self._stream_state = StreamState()
        self._complete_on_finish_reason = complete_on_finish_reason
        self._state = PipelineState.IDLE
        self._cancel_requested = False
        self._consuming = False
        self._error: BaseException | None = None
        self._response: AccumulatedResponse | None = None

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def consuming(self) -> bool:
        """True while reading and dispatching; the only phase in which interrupting the task is safe."""
        return self._consuming

    @property
    def stream_state(self) -> StreamState:
        return self._stream_state

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def response(self) -> AccumulatedResponse | None:
        return self._response

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def cancel(self) -> None:
        """Request a cooperative stop. Observed between line reads and between fragments."""
        if self._state not in TERMINAL_STATES:
            self._cancel_requested = True

    async def run(self, lines: LineSource) -> AccumulatedResponse:
        """Consume ``lines`` to the end and return the frozen response. Never raises stream errors."""
        if self._state is not PipelineState.IDLE:
            raise RuntimeError(f"pipeline {self.stream_id} already ran (state={self._state.value})")
        logger.debug("stream started", extra={"stream_id": self.stream_id, "reasoning_mode": self.reasoning_mode.value})
        iterator = aiter_lines(lines)
        error: BaseException | None = None
        reraise: BaseException | None = None
        self._consuming = True
        try:
            await self._consume(iterator)
            outcome = StreamOutcome.COMPLETED
        except StreamCancelled:
            outcome = StreamOutcome.CANCELLED
        except asyncio.CancelledError as e:
            outcome = StreamOutcome.CANCELLED
            if self._cancel_requested:
                task = asyncio.current_task()
                if task is not None and hasattr(task, "uncancel"):
                    task.uncancel()
            else:
                reraise = e
        except StreamError as e:
            outcome, error = StreamOutcome.ERRORED, e
        except Exception as e:
            logger.exception("unexpected failure in stream pipeline", extra={"stream_id": self.stream_id})
            outcome, error = StreamOutcome.ERRORED, e
        finally:
            self._consuming = False
        response = await self._finish(iterator, lines, outcome, error)
        if reraise is not None:
            raise reraise
        return response

    async def _consume(self, iterator: AsyncIterator[str]) -> None:
        while True:
            if self._cancel_requested:
                raise StreamCancelled(self.stream_id)
            line = await self._read(iterator)
            if line is _EOF:
                logger.debug("line source exhausted", extra={"stream_id": self.stream_id})
                return
            if self._cancel_requested:
                raise StreamCancelled(self.stream_id)
            if self._state is PipelineState.IDLE:
                self._state = PipelineState.RECEIVING
            frame = parse_sse_line(line)
            if frame is None:
                continue
            if is_stream_complete(frame):
                return
            chunk = self._decoder.decode(frame.data)
            await self._apply(chunk)
            if chunk.finish_reason and self._complete_on_finish_reason:
                return

    async def _read(self, iterator: AsyncIterator[str]) -> Any:
        try:
            return await iterator.__anext__()
        except StopAsyncIteration:
            return _EOF
        except StreamError:
            raise
        except Exception as e:
            raise TransportError(f"line source failed: {type(e).__name__}: {e}") from e

    async def _apply(self, chunk: DecodedChunk) -> None:
        for delta in chunk.deltas:
            if delta.content_type is ContentType.TEXT and self._classifier is not None:
                for classified in self._classifier.feed(delta.text, self._stream_state):
                    await self._emit(classified)
            else:
                await self._emit(delta)
        if chunk.metadata:
            self._accumulator.merge_metadata(chunk.metadata)
        if chunk.finish_reason:
            self._stream_state.finish_reason = chunk.finish_reason
            self._accumulator.set_finish_reason(chunk.finish_reason)

    async def _emit(self, delta: Delta) -> None:
        if not delta.text:
            return
        if self._cancel_requested:
            raise StreamCancelled(self.stream_id)
        fragment = Fragment(
            text=delta.text,
            content_type=delta.content_type,
            sequence_index=self._stream_state.next_sequence(),
        )
        self._accumulator.add(fragment)
        await self._dispatcher.deliver(fragment)

    async def _finish(
        self,
        iterator: AsyncIterator[str],
        lines: LineSource,
        outcome: StreamOutcome,
        error: BaseException | None,
    ) -> AccumulatedResponse:
        self._stream_state.terminated = True
        if outcome is StreamOutcome.COMPLETED and self._classifier is not None:
            try:
                for delta in self._classifier.flush(self._stream_state):
                    await self._emit(delta)
            except StreamError as e:
                outcome, error = StreamOutcome.ERRORED, e
            except StreamCancelled:
                outcome = StreamOutcome.CANCELLED
        await self._release(iterator, lines)
        self._state = _STATE_FOR_OUTCOME[outcome]
        self._error = error
        self._response = self._accumulator.freeze(outcome, error)
        if outcome is StreamOutcome.COMPLETED:
            await self._dispatcher.complete_normally(self._response)
        elif outcome is StreamOutcome.ERRORED:
            logger.warning("stream failed: %s", error, extra={"stream_id": self.stream_id})
            await self._dispatcher.complete_with_error(error)  # type: ignore[arg-type]
        else:
            logger.info("stream cancelled", extra={"stream_id": self.stream_id})
            await self._dispatcher.complete_cancelled(self._response)
        logger.debug(
            "stream finished",
            extra={
                "stream_id": self.stream_id,
                "state": self._state.value,
                "finish_reason": self._response.finish_reason,
                "fragments": self._response.fragment_count,
            },
        )
        return self._response

    async def _release(self, iterator: AsyncIterator[str], lines: LineSource) -> None:
        for source in (iterator, lines) if iterator is not lines else (iterator,):
            try:
                await close_source(source)
            except Exception as e:
                logger.warning("closing line source failed: %s", e, extra={"stream_id": self.stream_id})
