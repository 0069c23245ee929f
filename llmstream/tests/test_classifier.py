"""Tests for inline <think> tag classification across chunk boundaries."""

import pytest

from llmstream.core.events import ContentType
from llmstream.core.state import StreamState
from llmstream.models.classifier import InlineTagClassifier
from llmstream.models.decoder import Delta

TEXT = ContentType.TEXT
REASONING = ContentType.REASONING


def _run(chunks, classifier=None):
    classifier = classifier or InlineTagClassifier()
    state = StreamState()
    out = []
    for chunk in chunks:
        out.extend(classifier.feed(chunk, state))
    out.extend(classifier.flush(state))
    return out, state


def _joined(deltas, kind):
    return "".join(d.text for d in deltas if d.content_type is kind)


def test_start_tag_split_across_chunks():
    out, state = _run(["<thi", "nk>hello</think>world"])
    assert out == [Delta(REASONING, "hello"), Delta(TEXT, "world")]
    assert state.inside_reasoning_block is False
    assert state.pending_boundary_buffer == ""


def test_tag_pair_inside_one_chunk():
    out, _ = _run(["a<think>b</think>c"])
    assert out == [Delta(TEXT, "a"), Delta(REASONING, "b"), Delta(TEXT, "c")]


def test_end_tag_split_over_three_chunks():
    out, _ = _run(["<think>rea", "son</", "thi", "nk>answer"])
    assert out == [Delta(REASONING, "rea"), Delta(REASONING, "son"), Delta(TEXT, "answer")]


def test_multiple_blocks_toggle_independently():
    out, _ = _run(["<think>a</think>x<think>b</think>y"])
    assert out == [Delta(REASONING, "a"), Delta(TEXT, "x"), Delta(REASONING, "b"), Delta(TEXT, "y")]


def test_false_prefix_is_released_as_text():
    out, _ = _run(["2 <", " 3"])
    assert out == [Delta(TEXT, "2 "), Delta(TEXT, "< 3")]
    assert _joined(out, TEXT) == "2 < 3"


def test_trailing_partial_tag_flushed_at_end():
    out, _ = _run(["answer <thi"])
    assert out == [Delta(TEXT, "answer "), Delta(TEXT, "<thi")]


def test_unclosed_block_flushes_as_reasoning():
    out, state = _run(["<think>abc</th"])
    assert out == [Delta(REASONING, "abc"), Delta(REASONING, "</th")]
    assert state.inside_reasoning_block is True


def test_tags_only_emit_nothing():
    out, _ = _run(["<think>", "</think>"])
    assert out == []


def test_char_by_char_matches_whole_input():
    text = "x<think>y</think>z<thinkerr"
    classifier = InlineTagClassifier()
    state = StreamState()
    out = []
    for ch in text:
        out.extend(classifier.feed(ch, state))
        assert len(state.pending_boundary_buffer) <= classifier.max_pending
    out.extend(classifier.flush(state))
    assert all(d.text for d in out)
    assert _joined(out, TEXT) == "xz<thinkerr"
    assert _joined(out, REASONING) == "y"


def test_custom_delimiters():
    classifier = InlineTagClassifier("<reasoning>", "</reasoning>")
    out, _ = _run(["<reas", "oning>r</reasoning>t"], classifier)
    assert out == [Delta(REASONING, "r"), Delta(TEXT, "t")]
    assert classifier.max_pending == len("</reasoning>") - 1


@pytest.mark.parametrize("start,end", [("", "</think>"), ("<think>", ""), ("<t>", "<t>")])
def test_invalid_delimiters(start, end):
    with pytest.raises(ValueError):
        InlineTagClassifier(start, end)
