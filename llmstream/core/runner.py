"""Stream Runner: runs each pipeline on its own task so the caller is never blocked by a stream.

``submit`` schedules the pipeline as an asyncio task on the running loop. ``run_in_thread`` runs it
on a worker thread with a private event loop and returns a ``concurrent.futures.Future``, for
callers outside asyncio. Sink callbacks execute on that task/thread, not the caller's.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Generator

from llmstream.core.events import AccumulatedResponse
from llmstream.core.pipeline import PipelineState, StreamPipeline
from llmstream.models.line_source import LineSource

logger = logging.getLogger(__name__)


class StreamHandle:
    """Caller's view of a running stream."""

    def __init__(self, pipeline: StreamPipeline, task: asyncio.Task[AccumulatedResponse]) -> None:
        self._pipeline = pipeline
        self._task = task

    @property
    def stream_id(self) -> str:
        return self._pipeline.stream_id

    @property
    def state(self) -> PipelineState:
        return self._pipeline.state

    @property
    def pipeline(self) -> StreamPipeline:
        return self._pipeline

    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        """Request cancellation. A read blocked on the network is interrupted; the stream still ends with on_cancelled."""
        if self._task.done():
            return False
        self._pipeline.cancel()
        if self._pipeline.consuming:
            self._task.cancel()
        return True

    async def result(self, *, raise_on_error: bool = False) -> AccumulatedResponse:
        """Wait for the stream to end. Cancelling the waiter does not cancel the stream."""
        response = await asyncio.shield(self._task)
        if raise_on_error and self._pipeline.error is not None:
            raise self._pipeline.error
        return response

    def __await__(self) -> Generator[object, None, AccumulatedResponse]:
        return self.result().__await__()


def _run_blocking(pipeline: StreamPipeline, lines: LineSource) -> AccumulatedResponse:
    return asyncio.run(pipeline.run(lines))


class StreamRunner:
    """Tracks running streams by id. Streams never touch each other's state, so no locking is needed."""

    def __init__(self, max_workers: int = 4) -> None:
        self._handles: dict[str, StreamHandle] = {}
        self._max_workers = max_workers
        self._executor: ThreadPoolExecutor | None = None

    def create_id(self) -> str:
        return str(uuid.uuid4())

    def submit(self, pipeline: StreamPipeline, lines: LineSource) -> StreamHandle:
        """Start ``pipeline`` on a new task of the running loop and return immediately."""
        loop = asyncio.get_running_loop()
        task = loop.create_task(pipeline.run(lines), name=f"llmstream-{pipeline.stream_id}")
        handle = StreamHandle(pipeline, task)
        stream_id = pipeline.stream_id
        self._handles[stream_id] = handle
        task.add_done_callback(lambda _t: self._handles.pop(stream_id, None))
        logger.debug("stream submitted", extra={"stream_id": stream_id, "active": len(self._handles)})
        return handle

    def run_in_thread(self, pipeline: StreamPipeline, lines: LineSource) -> "Future[AccumulatedResponse]":
        """Run ``pipeline`` on a worker thread. Use ``pipeline.cancel()`` to stop it."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="llmstream")
        logger.debug("stream submitted to worker thread", extra={"stream_id": pipeline.stream_id})
        return self._executor.submit(_run_blocking, pipeline, lines)

    def get(self, stream_id: str) -> StreamHandle | None:
        return self._handles.get(stream_id)

    def active_streams(self) -> list[str]:
        return [sid for sid, h in self._handles.items() if not h.done()]

    def cancel(self, stream_id: str) -> bool:
        handle = self._handles.get(stream_id)
        if handle is None:
            return False
        return handle.cancel()

    async def cancel_all(self) -> None:
        handles = list(self._handles.values())
        for handle in handles:
            handle.cancel()
        if handles:
            await asyncio.gather(*(h.result() for h in handles), return_exceptions=True)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
