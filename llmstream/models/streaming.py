"""Streaming contract between the pipeline and the caller.

A sink receives, in order:

- ``on_fragment`` zero or more times. Typed sinks get ``(text, content_type)``; legacy sinks
  get ``(text)`` for every fragment, reasoning and tool calls included, so consumers written
  before typed fragments existed keep working.
- exactly one terminal callback: ``on_complete(response)``, ``on_error(error)`` or
  ``on_cancelled(response)``. A sink without ``on_cancelled`` gets ``on_complete(response)``
  for a cancelled stream, with ``response.outcome == StreamOutcome.CANCELLED``.

Whether a sink takes typed fragments is declared once, as ``SinkKind``, when the pipeline is
built. Nothing inspects ``on_fragment`` to guess.

Threading: callbacks run on the task that processes the stream (an asyncio task from
``StreamRunner.submit``, or a worker thread from ``run_in_thread``), never on the caller's
original task or thread. Callers that touch shared or UI state from callbacks must do their own
synchronisation or hand the data back to their own loop/thread. Callbacks may be plain functions
or coroutine functions; coroutines are awaited before the next fragment is delivered.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Protocol, Union, runtime_checkable

from llmstream.core.events import ContentType

if TYPE_CHECKING:
    from llmstream.core.events import AccumulatedResponse

MaybeAwaitable = Union[None, Awaitable[None]]


class SinkKind(str, Enum):
    TYPED = "typed"
    LEGACY = "legacy"


@runtime_checkable
class TypedSink(Protocol):
    def on_fragment(self, text: str, content_type: ContentType) -> MaybeAwaitable:
        ...

    def on_complete(self, response: "AccumulatedResponse") -> MaybeAwaitable:
        ...

    def on_error(self, error: BaseException) -> MaybeAwaitable:
        ...

    def on_cancelled(self, response: "AccumulatedResponse") -> MaybeAwaitable:
        ...


@runtime_checkable
class LegacySink(Protocol):
    def on_fragment(self, text: str) -> MaybeAwaitable:
        ...

    def on_complete(self, response: "AccumulatedResponse") -> MaybeAwaitable:
        ...

    def on_error(self, error: BaseException) -> MaybeAwaitable:
        ...


StreamSink = Union[TypedSink, LegacySink]


def _noop(*_: Any) -> None:
    return None


@dataclass
class CallbackSink:
    """Sink assembled from callables. Pass ``on_typed`` for a typed sink or ``on_text`` for a legacy one."""

    on_typed: Optional[Callable[[str, ContentType], MaybeAwaitable]] = None
    on_text: Optional[Callable[[str], MaybeAwaitable]] = None
    complete: Callable[[Any], MaybeAwaitable] = _noop
    error: Callable[[BaseException], MaybeAwaitable] = _noop
    cancelled: Callable[[Any], MaybeAwaitable] = _noop

    def __post_init__(self) -> None:
        if (self.on_typed is None) == (self.on_text is None):
            raise ValueError("CallbackSink needs exactly one of on_typed or on_text")

    @property
    def sink_kind(self) -> SinkKind:
        return SinkKind.TYPED if self.on_typed is not None else SinkKind.LEGACY

    def on_fragment(self, text: str, content_type: ContentType = ContentType.TEXT) -> MaybeAwaitable:
        if self.on_typed is not None:
            return self.on_typed(text, content_type)
        return self.on_text(text)  # type: ignore[misc]

    def on_complete(self, response: "AccumulatedResponse") -> MaybeAwaitable:
        return self.complete(response)

    def on_error(self, error: BaseException) -> MaybeAwaitable:
        return self.error(error)

    def on_cancelled(self, response: "AccumulatedResponse") -> MaybeAwaitable:
        return self.cancelled(response)


def sink_kind_of(sink: Any, default: SinkKind = SinkKind.TYPED) -> SinkKind:
    """Declared kind of ``sink``: its ``sink_kind`` attribute if it has one, else ``default``."""
    kind = getattr(sink, "sink_kind", None)
    return SinkKind(kind) if kind is not None else default
