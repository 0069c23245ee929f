"""Streaming Gateway: single entrypoint stream(prompt, sink) against an OpenAI-compatible /chat/completions.

Streaming contract: see llmstream.models.streaming. The gateway only builds a minimal chat body,
opens the SSE response with httpx and hands the lines to a StreamPipeline on the runner. It does
not retry; a failed request reaches the sink as on_error(TransportError).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from llmstream.core.logging_config import setup_logging
from llmstream.core.pipeline import StreamPipeline
from llmstream.core.runner import StreamHandle, StreamRunner
from llmstream.models.capabilities import CapabilityResolver, PatternCapabilityResolver
from llmstream.models.decoder import FieldMapping, get_field_mapping
from llmstream.models.line_source import build_headers, stream_lines
from llmstream.models.streaming import SinkKind, StreamSink, sink_kind_of

if TYPE_CHECKING:
    from llmstream.config.loader import Config

logger = logging.getLogger(__name__)


def _completions_url(base_url: str) -> str:
    """OpenAI-compat base (e.g. http://localhost:11434/v1) -> its chat completions endpoint."""
    u = (base_url or "").rstrip("/")
    if u.endswith("/chat/completions"):
        return u
    return f"{u or 'http://localhost:11434/v1'}/chat/completions"


class StreamingGateway:
    """Typed streaming over one OpenAI-compatible endpoint. LLM does not control lifecycle."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434/v1",
        api_key: str = "",
        model_name: str = "llama3.2",
        *,
        resolver: CapabilityResolver | None = None,
        field_mapping: FieldMapping | None = None,
        start_tag: str = "<think>",
        end_tag: str = "</think>",
        complete_on_finish_reason: bool | None = None,
        include_usage: bool = True,
        timeout: float = 120.0,
        runner: StreamRunner | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = _completions_url(base_url)
        self._api_key = api_key
        self._model_name = model_name
        self._resolver = resolver or PatternCapabilityResolver()
        self._field_mapping = field_mapping or FieldMapping()
        self._start_tag = start_tag
        self._end_tag = end_tag
        # The usage chunk arrives after the finish-reason chunk; read on to [DONE] when it was requested.
        if complete_on_finish_reason is None:
            complete_on_finish_reason = not include_usage
        self._complete_on_finish_reason = complete_on_finish_reason
        self._include_usage = include_usage
        self._runner = runner or StreamRunner()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_config(cls, config: "Config", **kwargs: Any) -> "StreamingGateway":
        """Build from Config and install its logging settings."""
        from llmstream.config.loader import model_patterns

        setup_logging(config.logging.level, use_json=config.logging.json_output)
        s = config.streaming
        kwargs.setdefault(
            "resolver",
            PatternCapabilityResolver(model_patterns(s), default=s.default_reasoning_mode),
        )
        kwargs.setdefault("runner", StreamRunner(max_workers=s.max_workers))
        return cls(
            base_url=config.endpoint.base_url,
            api_key=config.endpoint.api_key,
            model_name=config.endpoint.model_name,
            field_mapping=get_field_mapping(s.field_mapping),
            start_tag=s.reasoning_start_tag,
            end_tag=s.reasoning_end_tag,
            complete_on_finish_reason=s.complete_on_finish_reason,
            include_usage=config.endpoint.include_usage,
            timeout=config.endpoint.timeout_seconds,
            **kwargs,
        )

    @property
    def runner(self) -> StreamRunner:
        return self._runner

    def build_body(self, prompt: str, *, model: str, system: str | None = None) -> dict[str, Any]:
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        body: dict[str, Any] = {"model": model, "messages": messages, "stream": True}
        if self._include_usage:
            body["stream_options"] = {"include_usage": True}
        return body

    def build_pipeline(
        self,
        sink: StreamSink,
        *,
        model: str | None = None,
        sink_kind: SinkKind | str | None = None,
    ) -> StreamPipeline:
        model = model or self._model_name
        caps = self._resolver.resolve(model)
        return StreamPipeline(
            sink,
            sink_kind=sink_kind if sink_kind is not None else sink_kind_of(sink),
            capabilities=caps,
            start_tag=self._start_tag,
            end_tag=self._end_tag,
            field_mapping=self._field_mapping,
            complete_on_finish_reason=self._complete_on_finish_reason,
            stream_id=self._runner.create_id(),
        )

    def stream(
        self,
        prompt: str,
        sink: StreamSink,
        *,
        system: str | None = None,
        model: str | None = None,
        sink_kind: SinkKind | str | None = None,
    ) -> StreamHandle:
        """Start streaming ``prompt``; returns at once. Fragments and the terminal callback go to ``sink``."""
        model = model or self._model_name
        pipeline = self.build_pipeline(sink, model=model, sink_kind=sink_kind)
        lines = stream_lines(
            self._client,
            self._url,
            json=self.build_body(prompt, model=model, system=system),
            headers=build_headers(self._api_key),
        )
        logger.info(
            "stream requested",
            extra={"stream_id": pipeline.stream_id, "model": model, "reasoning_mode": pipeline.reasoning_mode.value},
        )
        return self._runner.submit(pipeline, lines)

    async def aclose(self) -> None:
        await self._runner.cancel_all()
        self._runner.shutdown(wait=False)
        if self._owns_client:
            await self._client.aclose()
