"""
Tests for core/interpretation_service.py

Run with: pytest tests/test_interpretation_service.py
"""

import os
from unittest.mock import MagicMock, patch

import pytest

from core.interpretation_service import INTERPRET_SCHEMA, interpret_streaming


def make_event(event_type: str, delta_type: str = "text_delta", text: str = "") -> MagicMock:
    event = MagicMock()
    event.type = event_type
    delta = MagicMock()
    delta.type = delta_type
    delta.text = text
    event.delta = delta
    return event


def fake_stream_of(events: list) -> MagicMock:
    fake_stream = MagicMock()
    fake_stream.__iter__ = MagicMock(return_value=iter(events))
    fake_stream.__enter__ = MagicMock(return_value=fake_stream)
    fake_stream.__exit__ = MagicMock(return_value=False)
    return fake_stream


class TestInterpretStreaming:
    def test_empty_text_raises(self):
        with pytest.raises(ValueError, match="empty"):
            list(interpret_streaming(""))

    def test_blank_text_raises(self):
        with pytest.raises(ValueError, match="empty"):
            list(interpret_streaming("   "))

    @patch.dict(os.environ, {"ANTHROPIC_API_KEY": "test-key"})
    @patch("core.interpretation_service.anthropic.Anthropic")
    def test_yields_text_deltas_only(self, mock_cls):
        events = [
            make_event("message_start"),
            make_event("content_block_delta", text='{"what": '),
            make_event("content_block_delta", delta_type="input_json_delta"),
            make_event("content_block_delta", text='{"topic": "AI news"}}'),
            make_event("message_stop"),
        ]
        mock_client = MagicMock()
        mock_client.messages.stream.return_value = fake_stream_of(events)
        mock_cls.return_value = mock_client

        chunks = list(interpret_streaming("  ai news "))

        assert chunks == ['{"what": ', '{"topic": "AI news"}}']
        kwargs = mock_client.messages.stream.call_args.kwargs
        assert kwargs["messages"] == [{"role": "user", "content": "ai news"}]
        assert kwargs["output_config"]["format"]["schema"] is INTERPRET_SCHEMA

    @patch.dict(os.environ, {"ANTHROPIC_API_KEY": "test-key"})
    @patch("core.interpretation_service.anthropic.Anthropic")
    def test_model_is_configurable(self, mock_cls):
        mock_client = MagicMock()
        mock_client.messages.stream.return_value = fake_stream_of([])
        mock_cls.return_value = mock_client

        list(interpret_streaming("ai news", model="claude-sonnet-4-5"))

        assert mock_client.messages.stream.call_args.kwargs["model"] == "claude-sonnet-4-5"


class TestSchema:
    def test_sections_required(self):
        assert INTERPRET_SCHEMA["required"] == ["what", "when", "why"]

    def test_options_carry_recommendation_flag(self):
        option = INTERPRET_SCHEMA["properties"]["when"]["properties"]["options"]["items"]
        assert "isRecommended" in option["required"]
