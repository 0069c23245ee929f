"""Accumulator: second subscriber of the fragment sequence; freezes into one AccumulatedResponse at stream end."""

from __future__ import annotations

import json
import logging
from typing import Any

from llmstream.core.events import (
    FINISH_REASON_UNKNOWN,
    AccumulatedResponse,
    ContentType,
    Fragment,
    StreamOutcome,
)

logger = logging.getLogger(__name__)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _merge_tool_calls(existing: list[dict[str, Any]], headers: list[dict[str, Any]]) -> list[dict[str, Any]]:
    by_index = {h.get("index"): dict(h) for h in existing}
    for header in headers:
        by_index.setdefault(header.get("index"), {}).update(header)
    return [by_index[i] for i in sorted(by_index, key=lambda i: (i is None, i if i is not None else 0))]


class ResponseAccumulator:
    """Buckets fragment text per content type. Owned by one stream."""

    def __init__(self, stream_id: str | None = None) -> None:
        self._stream_id = stream_id
        self._buckets: dict[ContentType, list[str]] = {
            ContentType.TEXT: [],
            ContentType.REASONING: [],
            ContentType.TOOL_CALL: [],
        }
        self._metadata: dict[str, Any] = {}
        self._finish_reason: str | None = None
        self._count = 0
        self._frozen: AccumulatedResponse | None = None

    @property
    def fragment_count(self) -> int:
        return self._count

    @property
    def finish_reason(self) -> str | None:
        return self._finish_reason

    def text_so_far(self, content_type: ContentType = ContentType.TEXT) -> str:
        return "".join(self._buckets.get(content_type, []))

    def add(self, fragment: Fragment) -> None:
        self._ensure_open()
        self._count += 1
        if fragment.content_type is ContentType.METADATA:
            try:
                data = json.loads(fragment.text)
            except ValueError:
                data = None
            if isinstance(data, dict):
                self.merge_metadata(data)
            else:
                self._metadata.setdefault("metadata_text", []).append(fragment.text)
            return
        self._buckets[fragment.content_type].append(fragment.text)

    def merge_metadata(self, metadata: dict[str, Any]) -> None:
        """Fold chunk-level metadata in. Tool-call headers are merged by index; nested dicts deep-merged."""
        self._ensure_open()
        if not metadata:
            return
        metadata = dict(metadata)
        headers = metadata.pop("tool_calls", None)
        if headers:
            self._metadata["tool_calls"] = _merge_tool_calls(self._metadata.get("tool_calls", []), headers)
        self._metadata = _deep_merge(self._metadata, metadata)

    def set_finish_reason(self, reason: str | None) -> None:
        if reason:
            self._finish_reason = reason

    def freeze(self, outcome: StreamOutcome = StreamOutcome.COMPLETED, error: BaseException | None = None) -> AccumulatedResponse:
        """Build the final response. Allowed exactly once."""
        self._ensure_open()
        self._frozen = AccumulatedResponse(
            text="".join(self._buckets[ContentType.TEXT]),
            reasoning_text="".join(self._buckets[ContentType.REASONING]),
            tool_call_text="".join(self._buckets[ContentType.TOOL_CALL]),
            finish_reason=self._finish_reason or FINISH_REASON_UNKNOWN,
            raw_metadata=self._metadata,
            outcome=outcome,
            error=str(error) if error is not None else None,
            stream_id=self._stream_id,
            fragment_count=self._count,
        )
        logger.debug(
            "response assembled",
            extra={
                "stream_id": self._stream_id,
                "outcome": outcome.value,
                "finish_reason": self._frozen.finish_reason,
                "fragments": self._count,
            },
        )
        return self._frozen

    @property
    def frozen(self) -> AccumulatedResponse | None:
        return self._frozen

    def _ensure_open(self) -> None:
        if self._frozen is not None:
            raise RuntimeError("accumulator already frozen")
