"""Line sources: the raw response body as text lines, as they arrive over the wire.

The pipeline accepts any async iterable of lines (``httpx.Response.aiter_lines()``, an async
generator) or a plain iterable. Lists and tuples are iterated in place. Any other sync iterable
(a generator, ``httpx.Response.iter_lines()``) may block, so each ``next()`` runs in
``asyncio.to_thread`` and a slow source never stalls other streams on the loop.

``stream_lines`` is the httpx adapter used by the gateway; it maps httpx failures to
TransportError and never retries.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, AsyncIterable, AsyncIterator, Iterable, Union

import httpx

from llmstream.core.errors import TransportError

logger = logging.getLogger(__name__)

LineSource = Union[AsyncIterable[str], Iterable[str]]

_ERROR_BODY_CHARS = 500
_EXHAUSTED = object()


def aiter_lines(source: LineSource) -> AsyncIterator[str]:
    """Return an async iterator over ``source``. Async iterables are used as-is so closing reaches them."""
    if hasattr(source, "__aiter__"):
        return source.__aiter__()  # type: ignore[union-attr]

    if isinstance(source, (list, tuple)):

        async def _from_memory() -> AsyncIterator[str]:
            for line in source:
                yield line

        return _from_memory()

    iterator = iter(source)

    async def _from_blocking() -> AsyncIterator[str]:
        while True:
            line = await asyncio.to_thread(next, iterator, _EXHAUSTED)
            if line is _EXHAUSTED:
                return
            yield line

    return _from_blocking()


async def close_source(source: Any) -> None:
    """Release a line source: ``aclose()`` for async generators/responses, ``close()`` otherwise."""
    aclose = getattr(source, "aclose", None)
    if aclose is not None:
        result = aclose()
        if inspect.isawaitable(result):
            await result
        return
    close = getattr(source, "close", None)
    if close is not None:
        close()


async def stream_lines(
    client: httpx.AsyncClient,
    url: str,
    *,
    json: dict[str, Any],
    headers: dict[str, str] | None = None,
) -> AsyncIterator[str]:
    """POST ``json`` to ``url`` and yield response lines. Closing the generator closes the connection."""
    try:
        async with client.stream("POST", url, json=json, headers=headers) as resp:
            if resp.status_code >= 400:
                body = (await resp.aread()).decode("utf-8", errors="replace")
                logger.warning("stream request rejected", extra={"status_code": resp.status_code, "url": url})
                raise TransportError(
                    f"HTTP {resp.status_code} from {url}: {body[:_ERROR_BODY_CHARS]}",
                    status_code=resp.status_code,
                )
            async for line in resp.aiter_lines():
                yield line
    except httpx.TimeoutException as e:
        raise TransportError(f"timed out reading stream from {url}: {e}") from e
    except httpx.HTTPError as e:
        raise TransportError(f"transport failure for {url}: {e}") from e


def build_headers(api_key: str = "") -> dict[str, str]:
    headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers
