"""Tests for vendor payload extraction and completion detection."""

from __future__ import annotations

import pytest

from knowledge_chat.llm.payload import extract_text, is_finished


class TestExtractText:
    @pytest.mark.parametrize("payload, expected", [
        ({"result": {"output": {"content": "a"}}}, "a"),
        ({"results": [{"output": {"content": "b"}}]}, "b"),
        ({"choices": [{"delta": {"content": "c"}}]}, "c"),
        ({"choices": [{"message": {"content": "d"}}]}, "d"),
        ({"type": "content_block_delta", "delta": {"text": "e"}}, "e"),
        ({"type": "content_block_start", "content_block": {"text": "f"}}, "f"),
        ({"content": "g"}, "g"),
        ({"text": "h"}, "h"),
        ({"message": "i"}, "i"),
        ({"data": {"content": "j"}}, "j"),
        ({"data": {"text": "k"}}, "k"),
    ])
    def test_known_shapes(self, payload, expected):
        assert extract_text(payload) == expected

    def test_backend_shape_beats_openai(self):
        payload = {
            "result": {"output": {"content": "x"}},
            "choices": [{"delta": {"content": "y"}}],
        }
        assert extract_text(payload) == "x"

    def test_delta_beats_message_in_choices(self):
        payload = {"choices": [{"delta": {"content": "d"}, "message": {"content": "m"}}]}
        assert extract_text(payload) == "d"

    def test_empty_higher_priority_falls_through(self):
        payload = {"result": {"output": {"content": ""}}, "content": "fallback"}
        assert extract_text(payload) == "fallback"

    def test_openai_null_content(self):
        assert extract_text({"choices": [{"delta": {"content": None}}]}) == ""

    @pytest.mark.parametrize("payload", [
        {},
        {"foo": "bar"},
        {"results": []},
        {"choices": []},
        {"content": 42},
        {"message": {"role": "assistant"}},
        {"result": "not a dict"},
    ])
    def test_unrecognized_shapes(self, payload):
        assert extract_text(payload) == ""

    @pytest.mark.parametrize("payload", [None, 42, "text", [1, 2], True])
    def test_non_object_payload(self, payload):
        assert extract_text(payload) == ""


class TestIsFinished:
    @pytest.mark.parametrize("payload", [
        {"result": {"metadata": {"finishReason": "STOP"}}},
        {"results": [{"metadata": {"finishReason": "stop"}}]},
        {"choices": [{"delta": {}, "finish_reason": "stop"}]},
        {"done": True},
        {"type": "message_stop"},
        {"type": "content_block_stop"},
    ])
    def test_completion_signals(self, payload):
        assert is_finished(payload) is True

    @pytest.mark.parametrize("payload", [
        {},
        {"choices": [{"delta": {"content": "hi"}, "finish_reason": None}]},
        {"result": {"metadata": {"finishReason": ""}}},
        {"done": False},
        {"done": "true"},
        {"type": "content_block_delta"},
        {"type": ["message_stop"]},
    ])
    def test_not_finished(self, payload):
        assert is_finished(payload) is False

    @pytest.mark.parametrize("payload", [None, "done", [{"done": True}], 1])
    def test_non_object_payload(self, payload):
        assert is_finished(payload) is False

    def test_text_and_finish_together(self):
        payload = {
            "result": {
                "output": {"content": "last"},
                "metadata": {"finishReason": "STOP"},
            }
        }
        assert extract_text(payload) == "last"
        assert is_finished(payload)
