"""
Claude API Client

Wrapper around Anthropic's Python SDK, used as the fallback oracle backend
when Gemini is not configured or fails.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from anthropic import Anthropic, APIError, RateLimitError as AnthropicRateLimitError

from ..core.config import ClaudeConfig
from ..core.exceptions import ClaudeAPIError
from ..utils.retry import RetryContext


logger = logging.getLogger(__name__)


class ClaudeClient:
    """
    Claude API client for call classification.

    Usage:
        config = ClaudeConfig(api_key='sk-ant-...', model='claude-haiku-4-5')
        client = ClaudeClient(config)
        response = client.generate_text(
            system_prompt="Eres un clasificador de llamadas",
            user_prompt="Clasifica esta llamada...",
        )
    """

    # Model pricing (per million tokens)
    MODEL_PRICING = {
        "claude-haiku-4-5": {"input": 1.00, "output": 5.00},
        "claude-sonnet-4-5": {"input": 3.00, "output": 15.00},
        "claude-3-5-haiku-20241022": {"input": 0.80, "output": 4.00},
    }

    def __init__(self, config: ClaudeConfig, max_retries: int = 3, sleep=None):
        """
        Initialize Claude API client.

        Args:
            config: ClaudeConfig with API key and model settings
            max_retries: Retries for transient errors
            sleep: Sleep function for backoff (injectable for tests)

        Raises:
            ClaudeAPIError: If no API key is configured
        """
        if not config.is_configured():
            raise ClaudeAPIError("CLAUDE_API_KEY not set in environment or config")

        self.config = config
        self.max_retries = max_retries
        self._sleep = sleep
        self._client = Anthropic(api_key=config.api_key)

        logger.info(f"ClaudeClient initialized (model: {config.model})")

    @staticmethod
    def _is_retryable(error: Exception) -> bool:
        """Rate limits, server errors (5xx) and overload are transient."""
        if isinstance(error, AnthropicRateLimitError):
            return True
        if isinstance(error, APIError):
            status_code = getattr(error, "status_code", None)
            return (status_code is not None and status_code >= 500) or "overloaded" in str(error).lower()
        return False

    def _make_api_call_with_retry(self, system: str, messages: List[Dict], max_tokens: int, temperature: float):
        """
        Make Claude API call with retry logic for transient errors.

        Raises:
            ClaudeAPIError: If the error is permanent or retries are exhausted
        """
        retry_kwargs = {"logger": logger}
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep
        retry_ctx = RetryContext("Claude API call", max_retries=self.max_retries, **retry_kwargs)

        for _ in retry_ctx:
            try:
                response = self._client.messages.create(
                    model=self.config.model,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    system=system,
                    messages=messages,
                )
                retry_ctx.success()
                return response
            except APIError as e:
                retry_ctx.failure(e)
                if not self._is_retryable(e) or retry_ctx.attempt > self.max_retries:
                    logger.error(f"Claude API error: {e}")
                    raise ClaudeAPIError(f"Claude API request failed: {e}") from e
                retry_ctx.wait()

        raise ClaudeAPIError(f"Claude API request failed: {retry_ctx.last_error}")

    def generate_text(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Generate text completion using Claude API.

        Args:
            system_prompt: System prompt (role/instructions)
            user_prompt: User prompt (content to process)
            max_tokens: Maximum tokens to generate (default from config)
            temperature: Sampling temperature (default from config)

        Returns:
            Dictionary with content, token counts, model, cost, stop_reason and
            generation_time_ms

        Raises:
            ClaudeAPIError: If API request fails
        """
        if max_tokens is None:
            max_tokens = self.config.max_tokens
        if temperature is None:
            temperature = self.config.temperature

        start_time = datetime.now()
        try:
            response = self._make_api_call_with_retry(
                system=system_prompt,
                messages=[{"role": "user", "content": user_prompt}],
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except ClaudeAPIError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error calling Claude API: {e}", exc_info=True)
            raise ClaudeAPIError(f"Unexpected error: {e}") from e

        duration_ms = int((datetime.now() - start_time).total_seconds() * 1000)
        content = response.content[0].text if response.content else ""
        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        cost = self._calculate_cost(input_tokens, output_tokens)

        logger.info(
            f"✓ Claude generated {output_tokens} tokens in {duration_ms}ms "
            f"(input: {input_tokens}, cost: ${cost:.4f}, stop: {response.stop_reason})"
        )

        return {
            "content": content,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
            "model": self.config.model,
            "cost": cost,
            "stop_reason": response.stop_reason,
            "generation_time_ms": duration_ms,
        }

    def _calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        pricing = self.MODEL_PRICING.get(self.config.model, {"input": 1.00, "output": 5.00})
        return (input_tokens / 1_000_000) * pricing["input"] + (output_tokens / 1_000_000) * pricing["output"]

    def test_connection(self) -> bool:
        """
        Test Claude API connection with a minimal request.

        Raises:
            ClaudeAPIError: If connection fails
        """
        logger.info("Testing Claude API connection...")
        response = self.generate_text(
            system_prompt="Eres un asistente.",
            user_prompt="Responde 'ok' si puedes leer esto.",
            max_tokens=10,
        )
        if not response["content"]:
            raise ClaudeAPIError("Empty response from Claude API")

        logger.info(f"✓ Claude API connection successful (model: {self.config.model})")
        return True
