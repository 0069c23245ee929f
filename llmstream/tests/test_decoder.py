"""Tests for chunk decoding and field mappings."""

import json

import pytest

from llmstream.core.errors import MalformedChunkError, ProviderError
from llmstream.core.events import ContentType
from llmstream.models.decoder import ChunkDecoder, Delta, get_field_mapping


@pytest.fixture
def decoder():
    return ChunkDecoder()


def test_content_delta(decoder):
    chunk = decoder.decode('{"choices":[{"delta":{"content":"Hel"}}]}')
    assert chunk.deltas == (Delta(ContentType.TEXT, "Hel"),)
    assert chunk.finish_reason is None


def test_finish_reason_chunk_keeps_metadata(decoder):
    payload = json.dumps(
        {
            "id": "chatcmpl-test",
            "object": "chat.completion.chunk",
            "created": 1677652288,
            "model": "gpt-4",
            "choices": [{"delta": {}, "index": 0, "finish_reason": "stop"}],
        }
    )
    chunk = decoder.decode(payload)
    assert chunk.deltas == ()
    assert chunk.finish_reason == "stop"
    assert chunk.metadata == {"id": "chatcmpl-test", "model": "gpt-4", "created": 1677652288}


def test_native_reasoning_comes_before_text(decoder):
    chunk = decoder.decode('{"choices":[{"delta":{"reasoning_content":"hmm","content":"ans"}}]}')
    assert chunk.deltas == (Delta(ContentType.REASONING, "hmm"), Delta(ContentType.TEXT, "ans"))


def test_ollama_mapping_reads_reasoning_field():
    chunk = ChunkDecoder(get_field_mapping("ollama")).decode('{"choices":[{"delta":{"reasoning":"r"}}]}')
    assert chunk.deltas == (Delta(ContentType.REASONING, "r"),)


def test_deepseek_mapping_ignores_other_reasoning_keys():
    chunk = ChunkDecoder(get_field_mapping("deepseek")).decode('{"choices":[{"delta":{"reasoning":"x"}}]}')
    assert chunk.deltas == ()


def test_tool_call_delta_and_header(decoder):
    payload = json.dumps(
        {
            "choices": [
                {
                    "delta": {
                        "tool_calls": [
                            {
                                "index": 0,
                                "id": "call_1",
                                "type": "function",
                                "function": {"name": "get_weather", "arguments": '{"ci'},
                            }
                        ]
                    }
                }
            ]
        }
    )
    chunk = decoder.decode(payload)
    assert chunk.deltas == (Delta(ContentType.TOOL_CALL, '{"ci'),)
    assert chunk.metadata["tool_calls"] == [
        {"index": 0, "id": "call_1", "type": "function", "name": "get_weather"}
    ]


def test_text_and_tool_call_in_one_payload(decoder):
    payload = json.dumps(
        {"choices": [{"delta": {"content": "ok", "tool_calls": [{"index": 0, "function": {"arguments": "{}"}}]}}]}
    )
    chunk = decoder.decode(payload)
    assert chunk.deltas == (Delta(ContentType.TEXT, "ok"), Delta(ContentType.TOOL_CALL, "{}"))
    assert "tool_calls" not in chunk.metadata


def test_legacy_function_call(decoder):
    chunk = decoder.decode('{"choices":[{"delta":{"function_call":{"name":"f","arguments":"{\\"a\\""}}}]}')
    assert chunk.deltas == (Delta(ContentType.TOOL_CALL, '{"a"'),)
    assert chunk.metadata["tool_calls"][0]["name"] == "f"


def test_usage_becomes_metadata_delta(decoder):
    chunk = decoder.decode('{"choices":[],"usage":{"prompt_tokens":3,"completion_tokens":5}}')
    assert chunk.deltas == (
        Delta(ContentType.METADATA, '{"usage":{"prompt_tokens":3,"completion_tokens":5}}'),
    )


def test_empty_and_null_payloads_are_noop(decoder):
    for payload in [None, "", "   ", "null"]:
        assert decoder.decode(payload).is_empty


def test_malformed_payload_raises(decoder):
    with pytest.raises(MalformedChunkError) as exc_info:
        decoder.decode("{not json}")
    assert exc_info.value.payload == "{not json}"


def test_non_object_payload_is_malformed(decoder):
    with pytest.raises(MalformedChunkError):
        decoder.decode("[1, 2]")


def test_provider_error_object(decoder):
    with pytest.raises(ProviderError) as exc_info:
        decoder.decode('{"error":{"message":"overloaded","code":529}}')
    assert exc_info.value.code == 529
    assert "overloaded" in str(exc_info.value)


def test_unknown_field_mapping():
    with pytest.raises(ValueError, match="unknown field mapping"):
        get_field_mapping("nope")
