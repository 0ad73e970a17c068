"""Tests for Claude API client."""

from unittest.mock import MagicMock, patch

import anthropic
import pytest

from shared.exceptions import ModelCallError

MODEL_ID = "claude-sonnet-4-5-20250929"


def make_response(text: str = "Trample assigns excess damage.", input_tokens=100, output_tokens=200):
    """Build a mock Messages API response."""
    usage = MagicMock()
    usage.input_tokens = input_tokens
    usage.output_tokens = output_tokens
    usage.cache_creation_input_tokens = 0
    usage.cache_read_input_tokens = 50

    response = MagicMock()
    response.usage = usage
    response.stop_reason = "end_turn"
    response.content = [MagicMock(type="text", text=text)] if text else []
    return response


class TestClaudeClient:
    """Tests for ClaudeClient class."""

    def test_init_creates_anthropic_client(self) -> None:
        """Client should create Anthropic client with API key."""
        with patch("anthropic.Anthropic") as mock_anthropic:
            from chat.claude_client import ClaudeClient

            client = ClaudeClient("test-api-key", MODEL_ID)

            mock_anthropic.assert_called_once_with(api_key="test-api-key")
            assert client.client == mock_anthropic.return_value
            assert client.model_id == MODEL_ID

    def test_send_messages_calls_messages_create(self) -> None:
        """send_messages should cache the system prompt and pass history through."""
        with patch("anthropic.Anthropic") as mock_anthropic:
            mock_client = MagicMock()
            mock_anthropic.return_value = mock_client
            mock_client.messages.create.return_value = make_response()

            from chat.claude_client import ClaudeClient

            client = ClaudeClient("test-key", MODEL_ID)
            messages = [
                {"role": "user", "content": "What is trample?"},
                {"role": "assistant", "content": "A keyword."},
                {"role": "user", "content": "Explain more"},
            ]
            result = client.send_messages("You are an MTG assistant", messages, 2_000)

            assert result.text == "Trample assigns excess damage."
            assert result.input_tokens == 100
            assert result.output_tokens == 200
            assert result.total_tokens == 300

            call_kwargs = mock_client.messages.create.call_args.kwargs
            assert call_kwargs["model"] == MODEL_ID
            assert call_kwargs["max_tokens"] == 2_000
            assert call_kwargs["system"][0]["text"] == "You are an MTG assistant"
            assert call_kwargs["system"][0]["cache_control"] == {"type": "ephemeral"}
            assert call_kwargs["messages"] == messages

    def test_send_messages_logs_token_usage(self) -> None:
        with patch("anthropic.Anthropic") as mock_anthropic:
            mock_anthropic.return_value.messages.create.return_value = make_response()

            from chat.claude_client import ClaudeClient

            with patch("chat.claude_client.logger") as mock_logger:
                ClaudeClient("test-key", MODEL_ID).send_messages("system", [], 100)

                extra = mock_logger.info.call_args.kwargs["extra"]
                assert extra["input_tokens"] == 100
                assert extra["cache_read_input_tokens"] == 50

    def test_api_error_wrapped(self) -> None:
        """Provider errors become ModelCallError without usage."""
        with patch("anthropic.Anthropic") as mock_anthropic:
            mock_anthropic.return_value.messages.create.side_effect = (
                anthropic.APIConnectionError(request=MagicMock())
            )

            from chat.claude_client import ClaudeClient

            with pytest.raises(ModelCallError) as exc_info:
                ClaudeClient("test-key", MODEL_ID).send_messages("system", [], 100)

            assert not exc_info.value.has_partial_usage
            assert "APIConnectionError" in exc_info.value.message

    def test_empty_reply_carries_usage(self) -> None:
        """A billed response without text reports its usage on the error."""
        with patch("anthropic.Anthropic") as mock_anthropic:
            mock_anthropic.return_value.messages.create.return_value = make_response(
                text="", input_tokens=80, output_tokens=3
            )

            from chat.claude_client import ClaudeClient

            with pytest.raises(ModelCallError) as exc_info:
                ClaudeClient("test-key", MODEL_ID).send_messages("system", [], 100)

            assert exc_info.value.input_tokens == 80
            assert exc_info.value.output_tokens == 3
