"""
Unit tests for the Gemini and Claude clients with mocked SDKs.
"""

import httpx
import pytest
from unittest.mock import MagicMock, Mock, patch

import anthropic

from call_decision.ai.claude_client import ClaudeClient
from call_decision.ai.gemini_client import GeminiClient
from call_decision.core.config import ClaudeConfig, GeminiConfig
from call_decision.core.exceptions import ClaudeAPIError, GeminiAPIError


def anthropic_error(error_class, status_code, message):
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    response = httpx.Response(status_code, request=request)
    return error_class(message, response=response, body=None)


def claude_message(text="{}", input_tokens=1200, output_tokens=150):
    message = Mock()
    message.content = [Mock(text=text)]
    message.usage = Mock(input_tokens=input_tokens, output_tokens=output_tokens)
    message.stop_reason = "end_turn"
    return message


def gemini_response(text="{}", prompt_tokens=1000, output_tokens=100):
    response = Mock()
    response.text = text
    response.usage_metadata = Mock(prompt_token_count=prompt_tokens, candidates_token_count=output_tokens)
    return response


@pytest.fixture
def mock_genai():
    with patch("call_decision.ai.gemini_client.genai") as genai:
        yield genai


@pytest.fixture
def mock_anthropic():
    with patch("call_decision.ai.claude_client.Anthropic") as anthropic_class:
        yield anthropic_class.return_value


class TestGeminiClient:
    """Test the Gemini wrapper."""

    def test_requires_api_key(self, mock_genai):
        with pytest.raises(GeminiAPIError):
            GeminiClient(GeminiConfig(api_key=""))

    def test_generate_text(self, mock_genai):
        model = mock_genai.GenerativeModel.return_value
        model.generate_content.return_value = gemini_response('{"confidence": 0.9}')

        client = GeminiClient(GeminiConfig(api_key="test-key"))
        result = client.generate_text(system_prompt="Sistema", user_prompt="Usuario")

        mock_genai.configure.assert_called_once_with(api_key="test-key")
        prompt = model.generate_content.call_args.args[0]
        assert prompt == "Sistema\n\nUsuario"
        assert result["content"] == '{"confidence": 0.9}'
        assert result["total_tokens"] == 1100
        assert result["model"] == "gemini-2.0-flash"
        assert result["cost"] == pytest.approx(1000 / 1e6 * 0.10 + 100 / 1e6 * 0.40)

    def test_retries_transient_errors(self, mock_genai):
        model = mock_genai.GenerativeModel.return_value
        model.generate_content.side_effect = [RuntimeError("429 resource exhausted"), gemini_response("ok")]
        sleeps = []

        client = GeminiClient(GeminiConfig(api_key="test-key"), max_retries=2, sleep=sleeps.append)
        assert client.generate_text("s", "u")["content"] == "ok"
        assert model.generate_content.call_count == 2
        assert len(sleeps) == 1

    def test_permanent_error_wrapped(self, mock_genai):
        model = mock_genai.GenerativeModel.return_value
        model.generate_content.side_effect = RuntimeError("API key not valid")

        client = GeminiClient(GeminiConfig(api_key="test-key"), sleep=Mock())
        with pytest.raises(GeminiAPIError, match="API key not valid"):
            client.generate_text("s", "u")
        assert model.generate_content.call_count == 1


class TestClaudeClient:
    """Test the Claude wrapper."""

    def test_requires_api_key(self, mock_anthropic):
        with pytest.raises(ClaudeAPIError):
            ClaudeClient(ClaudeConfig(api_key=""))

    def test_generate_text(self, mock_anthropic):
        mock_anthropic.messages.create.return_value = claude_message('{"confidence": 0.7}')

        client = ClaudeClient(ClaudeConfig(api_key="sk-ant-test"))
        result = client.generate_text(system_prompt="Sistema", user_prompt="Usuario")

        kwargs = mock_anthropic.messages.create.call_args.kwargs
        assert kwargs["system"] == "Sistema"
        assert kwargs["messages"] == [{"role": "user", "content": "Usuario"}]
        assert kwargs["model"] == "claude-haiku-4-5"
        assert result["content"] == '{"confidence": 0.7}'
        assert result["total_tokens"] == 1350
        assert result["stop_reason"] == "end_turn"

    def test_retries_rate_limit(self, mock_anthropic):
        mock_anthropic.messages.create.side_effect = [
            anthropic_error(anthropic.RateLimitError, 429, "rate limited"),
            claude_message("ok"),
        ]
        sleeps = []

        client = ClaudeClient(ClaudeConfig(api_key="sk-ant-test"), max_retries=2, sleep=sleeps.append)
        assert client.generate_text("s", "u")["content"] == "ok"
        assert len(sleeps) == 1

    def test_client_error_not_retried(self, mock_anthropic):
        mock_anthropic.messages.create.side_effect = anthropic_error(anthropic.BadRequestError, 400, "bad request")

        client = ClaudeClient(ClaudeConfig(api_key="sk-ant-test"), sleep=Mock())
        with pytest.raises(ClaudeAPIError, match="bad request"):
            client.generate_text("s", "u")
        assert mock_anthropic.messages.create.call_count == 1

    def test_server_errors_exhaust_retries(self, mock_anthropic):
        mock_anthropic.messages.create.side_effect = anthropic_error(anthropic.InternalServerError, 500, "boom")
        sleeps = MagicMock()

        client = ClaudeClient(ClaudeConfig(api_key="sk-ant-test"), max_retries=2, sleep=sleeps)
        with pytest.raises(ClaudeAPIError):
            client.generate_text("s", "u")
        assert mock_anthropic.messages.create.call_count == 3
        assert sleeps.call_count == 2

    def test_unexpected_error_wrapped(self, mock_anthropic):
        mock_anthropic.messages.create.side_effect = RuntimeError("socket closed")

        client = ClaudeClient(ClaudeConfig(api_key="sk-ant-test"))
        with pytest.raises(ClaudeAPIError, match="Unexpected error"):
            client.generate_text("s", "u")
