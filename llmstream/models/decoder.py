"""Chunk decoding: one SSE data payload -> zero or more typed deltas plus an optional finish reason.

Field names differ slightly between OpenAI-compatible servers (``reasoning_content`` on DeepSeek and
LM Studio, ``reasoning`` on Ollama and OpenRouter). They are looked up through a FieldMapping
rather than by branching on provider identity.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict

from llmstream.core.errors import MalformedChunkError, ProviderError
from llmstream.core.events import ContentType

logger = logging.getLogger(__name__)


class Delta(NamedTuple):
    """Incremental content before classification and sequencing."""

    content_type: ContentType
    text: str


class FieldMapping(BaseModel):
    """Where to find each delta kind in a provider chunk."""

    model_config = ConfigDict(frozen=True)

    choices: str = "choices"
    delta: str = "delta"
    content: str = "content"
    reasoning: tuple[str, ...] = ("reasoning_content", "reasoning", "thoughts", "thoughts_content", "think")
    tool_calls: str = "tool_calls"
    function_call: str = "function_call"
    finish_reason: str = "finish_reason"
    usage: str = "usage"
    error: str = "error"
    metadata_keys: tuple[str, ...] = ("id", "model", "created", "system_fingerprint")


FIELD_MAPPINGS: dict[str, FieldMapping] = {
    "openai": FieldMapping(),
    "deepseek": FieldMapping(reasoning=("reasoning_content",)),
    "lmstudio": FieldMapping(reasoning=("reasoning_content", "reasoning")),
    "ollama": FieldMapping(reasoning=("reasoning", "thinking")),
}


def get_field_mapping(name: str) -> FieldMapping:
    try:
        return FIELD_MAPPINGS[name.strip().lower()]
    except KeyError:
        raise ValueError(f"unknown field mapping: {name!r} (known: {', '.join(sorted(FIELD_MAPPINGS))})") from None


@dataclass(frozen=True)
class DecodedChunk:
    """Deltas in wire order for one payload. ``metadata`` holds chunk-level keys (id, model, tool-call headers)."""

    deltas: tuple[Delta, ...] = ()
    finish_reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.deltas and self.finish_reason is None and not self.metadata


EMPTY_CHUNK = DecodedChunk()


class ChunkDecoder:
    """Stateless decoder for OpenAI-style ``chat.completion.chunk`` payloads."""

    def __init__(self, field_mapping: FieldMapping | None = None) -> None:
        self._fields = field_mapping or FieldMapping()

    @property
    def field_mapping(self) -> FieldMapping:
        return self._fields

    def decode(self, payload: str | None) -> DecodedChunk:
        """Decode one payload. Empty and ``null`` payloads are keep-alives; invalid JSON raises MalformedChunkError."""
        if payload is None or not payload.strip():
            return EMPTY_CHUNK
        try:
            data = json.loads(payload)
        except ValueError as e:
            logger.warning("malformed stream chunk", extra={"payload": payload[:200], "error": str(e)})
            raise MalformedChunkError(payload, reason=str(e)) from e
        if data is None:
            return EMPTY_CHUNK
        if not isinstance(data, dict):
            raise MalformedChunkError(payload, reason=f"expected a JSON object, got {type(data).__name__}")

        f = self._fields
        error = data.get(f.error)
        if error:
            raise ProviderError(error)

        deltas: list[Delta] = []
        metadata: dict[str, Any] = {k: data[k] for k in f.metadata_keys if data.get(k) is not None}
        finish_reason: str | None = None

        choices = data.get(f.choices)
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            choice = choices[0]
            delta = choice.get(f.delta)
            if isinstance(delta, dict):
                reasoning = self._first_text(delta, f.reasoning)
                if reasoning:
                    deltas.append(Delta(ContentType.REASONING, reasoning))
                content = delta.get(f.content)
                if isinstance(content, str) and content:
                    deltas.append(Delta(ContentType.TEXT, content))
                headers = self._tool_call_deltas(delta, deltas)
                if headers:
                    metadata["tool_calls"] = headers
            reason = choice.get(f.finish_reason)
            if isinstance(reason, str) and reason:
                finish_reason = reason

        usage = data.get(f.usage)
        if isinstance(usage, dict) and usage:
            deltas.append(Delta(ContentType.METADATA, json.dumps({"usage": usage}, separators=(",", ":"))))

        return DecodedChunk(deltas=tuple(deltas), finish_reason=finish_reason, metadata=metadata)

    @staticmethod
    def _first_text(delta: dict[str, Any], keys: tuple[str, ...]) -> str | None:
        for key in keys:
            value = delta.get(key)
            if isinstance(value, str) and value:
                return value
        return None

    def _tool_call_deltas(self, delta: dict[str, Any], out: list[Delta]) -> list[dict[str, Any]]:
        """Append argument deltas to ``out``; return identity headers (index, id, type, name)."""
        f = self._fields
        headers: list[dict[str, Any]] = []
        calls = delta.get(f.tool_calls)
        if isinstance(calls, list):
            for position, call in enumerate(calls):
                if not isinstance(call, dict):
                    continue
                fn = call.get("function") if isinstance(call.get("function"), dict) else {}
                header: dict[str, Any] = {"index": call.get("index", position)}
                for key in ("id", "type"):
                    if call.get(key):
                        header[key] = call[key]
                if fn.get("name"):
                    header["name"] = fn["name"]
                if len(header) > 1:
                    headers.append(header)
                args = fn.get("arguments")
                if isinstance(args, str) and args:
                    out.append(Delta(ContentType.TOOL_CALL, args))
        legacy = delta.get(f.function_call)
        if isinstance(legacy, dict):
            if legacy.get("name"):
                headers.append({"index": 0, "type": "function", "name": legacy["name"]})
            args = legacy.get("arguments")
            if isinstance(args, str) and args:
                out.append(Delta(ContentType.TOOL_CALL, args))
        return headers
