"""Stream error taxonomy.

- TransportError: the line source failed (I/O, HTTP status, timeout). Not retried here.
- MalformedChunkError: a data payload is not a JSON object. Carries the raw payload.
- ProviderError: the provider reported an error object in the middle of the stream.
- SinkError: the caller's fragment callback raised. Original exception is ``__cause__``.
- StreamCancelled: cooperative stop. Reported via ``on_cancelled``, never via ``on_error``.
"""

from __future__ import annotations

_PAYLOAD_PREVIEW_CHARS = 200


class StreamError(Exception):
    """Base class for errors that end a stream through ``on_error``."""


class TransportError(StreamError):
    """Line source failure: connection reset, timeout, non-2xx status."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedChunkError(StreamError):
    """A data frame payload could not be decoded as a JSON object."""

    def __init__(self, payload: str, reason: str = "invalid JSON") -> None:
        self.payload = payload
        self.reason = reason
        preview = payload if len(payload) <= _PAYLOAD_PREVIEW_CHARS else payload[:_PAYLOAD_PREVIEW_CHARS] + "..."
        super().__init__(f"malformed stream chunk ({reason}): {preview!r}")


class ProviderError(StreamError):
    """The provider sent an ``{"error": ...}`` object inside the stream."""

    def __init__(self, error: dict | str) -> None:
        if isinstance(error, dict):
            message = str(error.get("message") or error)
            self.code = error.get("code")
        else:
            message = str(error)
            self.code = None
        super().__init__(f"provider reported error: {message}")
        self.error = error


class SinkError(StreamError):
    """The sink's fragment callback raised."""

    def __init__(self, original: BaseException) -> None:
        super().__init__(f"sink callback failed: {type(original).__name__}: {original}")
        self.original = original


class StreamCancelled(Exception):
    """Cooperative cancellation of a stream. Deliberately not a StreamError."""

    def __init__(self, stream_id: str | None = None) -> None:
        super().__init__(f"stream cancelled: {stream_id}" if stream_id else "stream cancelled")
        self.stream_id = stream_id
