"""Tests for StreamRunner: background execution and cancellation of blocked reads."""

import asyncio
import threading

import pytest

from llmstream.core.errors import MalformedChunkError
from llmstream.core.events import StreamOutcome
from llmstream.core.pipeline import PipelineState, StreamPipeline
from llmstream.core.runner import StreamRunner

DONE = "data: [DONE]"


def chunk(text):
    return 'data: {"choices":[{"delta":{"content":"%s"}}]}' % text


async def _wait_for(predicate, attempts=200):
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.mark.asyncio
async def test_submit_returns_before_stream_finishes(sink):
    runner = StreamRunner()
    gate = asyncio.Event()

    async def lines():
        yield chunk("a")
        await gate.wait()
        yield chunk("b")
        yield DONE

    handle = runner.submit(StreamPipeline(sink), lines())
    assert not handle.done()
    assert handle.stream_id in runner.active_streams()
    await _wait_for(lambda: sink.fragments)
    assert sink.completed == []
    gate.set()
    resp = await handle
    assert resp.text == "ab"
    assert sink.completed == [resp]
    assert handle.state is PipelineState.COMPLETED
    await asyncio.sleep(0)
    assert runner.get(handle.stream_id) is None


@pytest.mark.asyncio
async def test_callbacks_run_on_stream_task(sink_cls):
    tasks = []

    class TaskSink(sink_cls):
        def on_fragment(self, text, content_type):
            tasks.append(asyncio.current_task())

    handle = StreamRunner().submit(StreamPipeline(TaskSink()), [chunk("x"), DONE])
    await handle
    assert tasks and tasks[0] is not asyncio.current_task()
    assert tasks[0].get_name() == f"llmstream-{handle.stream_id}"


@pytest.mark.asyncio
async def test_cancel_interrupts_blocked_read(sink):
    runner = StreamRunner()
    never = asyncio.Event()
    closed = []

    async def lines():
        try:
            yield chunk("a")
            await never.wait()
            yield chunk("b")
        finally:
            closed.append(True)

    pipeline = StreamPipeline(sink)
    handle = runner.submit(pipeline, lines())
    await _wait_for(lambda: sink.fragments)
    assert handle.cancel() is True
    resp = await handle
    assert resp.outcome is StreamOutcome.CANCELLED
    assert resp.text == "a"
    assert sink.cancelled == [resp]
    assert sink.completed == []
    assert sink.errors == []
    assert closed == [True]
    assert pipeline.state is PipelineState.CANCELLED


@pytest.mark.asyncio
async def test_cancel_before_task_starts(sink):
    handle = StreamRunner().submit(StreamPipeline(sink), [chunk("a"), DONE])
    assert handle.cancel() is True
    resp = await handle
    assert sink.cancelled == [resp]
    assert sink.fragments == []


@pytest.mark.asyncio
async def test_cancel_after_completion_returns_false(sink):
    handle = StreamRunner().submit(StreamPipeline(sink), [DONE])
    await handle
    assert handle.cancel() is False
    assert sink.terminal_count == 1


@pytest.mark.asyncio
async def test_result_can_raise_stream_error(sink):
    handle = StreamRunner().submit(StreamPipeline(sink), ["data: {not json}"])
    with pytest.raises(MalformedChunkError):
        await handle.result(raise_on_error=True)
    assert len(sink.errors) == 1


@pytest.mark.asyncio
async def test_concurrent_streams_do_not_interfere(sink_cls):
    runner = StreamRunner()
    gate_a, gate_b = asyncio.Event(), asyncio.Event()

    def source(prefix, gate):
        async def lines():
            yield chunk(prefix + "1")
            await gate.wait()
            yield chunk(prefix + "2")
            yield DONE

        return lines()

    sink_a, sink_b = sink_cls(), sink_cls()
    ha = runner.submit(StreamPipeline(sink_a), source("a", gate_a))
    hb = runner.submit(StreamPipeline(sink_b), source("b", gate_b))
    assert ha.stream_id != hb.stream_id
    gate_b.set()
    resp_b = await hb
    assert not ha.done()
    gate_a.set()
    resp_a = await ha
    assert (resp_a.text, resp_b.text) == ("a1a2", "b1b2")
    assert len(sink_a.completed) == len(sink_b.completed) == 1


@pytest.mark.asyncio
async def test_cancel_all(sink_cls):
    runner = StreamRunner()
    never = asyncio.Event()
    sinks = [sink_cls(), sink_cls()]

    async def lines():
        yield chunk("x")
        await never.wait()

    for s in sinks:
        runner.submit(StreamPipeline(s), lines())
    await _wait_for(lambda: all(s.fragments for s in sinks))
    await runner.cancel_all()
    assert [len(s.cancelled) for s in sinks] == [1, 1]
    assert runner.active_streams() == []


def test_run_in_thread(sink_cls):
    threads = []

    class ThreadSink(sink_cls):
        def on_fragment(self, text, content_type):
            threads.append(threading.current_thread().name)
            super().on_fragment(text, content_type)

    sink = ThreadSink()
    runner = StreamRunner(max_workers=1)
    try:
        future = runner.run_in_thread(StreamPipeline(sink), [chunk("x"), chunk("y"), DONE])
        resp = future.result(timeout=5)
    finally:
        runner.shutdown()
    assert resp.text == "xy"
    assert sink.completed == [resp]
    assert threads and all(name.startswith("llmstream") for name in threads)
    assert threading.current_thread().name not in threads


@pytest.mark.asyncio
async def test_blocking_sync_source_does_not_stall_other_streams(sink_cls):
    runner = StreamRunner()
    release = threading.Event()
    reader_threads = []

    def blocking_lines():
        reader_threads.append(threading.current_thread())
        yield chunk("slow")
        release.wait(timeout=5)
        yield DONE

    slow_sink, fast_sink = sink_cls(), sink_cls()
    slow = runner.submit(StreamPipeline(slow_sink), blocking_lines())
    fast = runner.submit(StreamPipeline(fast_sink), [chunk("fast"), DONE])
    resp_fast = await fast
    assert resp_fast.text == "fast"
    assert not slow.done()
    release.set()
    resp_slow = await slow
    assert resp_slow.text == "slow"
    assert reader_threads and reader_threads[0] is not threading.current_thread()
