"""Pytest fixtures and config."""

import pytest

from llmstream.models.streaming import SinkKind


class RecordingSink:
    """Typed sink that records everything it is handed."""

    sink_kind = SinkKind.TYPED

    def __init__(self):
        self.fragments = []
        self.completed = []
        self.errors = []
        self.cancelled = []

    def on_fragment(self, text, content_type):
        self.fragments.append((text, content_type))

    def on_complete(self, response):
        self.completed.append(response)

    def on_error(self, error):
        self.errors.append(error)

    def on_cancelled(self, response):
        self.cancelled.append(response)

    @property
    def terminal_count(self):
        return len(self.completed) + len(self.errors) + len(self.cancelled)


class LegacyRecordingSink(RecordingSink):
    """Sink written before typed fragments existed: on_fragment(text) only."""

    sink_kind = SinkKind.LEGACY

    def __init__(self):
        super().__init__()
        self.texts = []

    def on_fragment(self, text):
        self.texts.append(text)


@pytest.fixture(autouse=True)
def env_cleanup(monkeypatch):
    """Avoid picking up real endpoint settings in tests."""
    for name in ("OPENAI_API_KEY", "OPENAI_BASE_URL", "LLMSTREAM_ENV", "STREAM_REASONING_MODE"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def legacy_sink():
    return LegacyRecordingSink()


@pytest.fixture
def sink_cls():
    """RecordingSink class, for tests that subclass it."""
    return RecordingSink
