"""
Gemini API Client

Wrapper around Google's generative AI library for the classification oracle.
Gemini is the primary backend; Claude Haiku is the fallback.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

import google.generativeai as genai
from google.generativeai.types import GenerationConfig

from ..core.config import GeminiConfig
from ..core.exceptions import GeminiAPIError
from ..utils.retry import RetryContext


logger = logging.getLogger(__name__)


class GeminiClient:
    """
    Gemini API client for call classification.

    Usage:
        config = GeminiConfig(api_key='...', model='gemini-2.0-flash')
        client = GeminiClient(config)
        response = client.generate_text(
            system_prompt="Eres un clasificador de llamadas",
            user_prompt="Clasifica esta llamada...",
        )
    """

    # Model pricing (per million tokens)
    MODEL_PRICING = {
        "gemini-2.0-flash": {"input": 0.10, "output": 0.40},
        "gemini-2.0-flash-lite": {"input": 0.075, "output": 0.30},
        "gemini-1.5-flash": {"input": 0.075, "output": 0.30},
        "gemini-1.5-pro": {"input": 1.25, "output": 5.00},
    }

    def __init__(self, config: GeminiConfig, max_retries: int = 3, sleep=None):
        """
        Initialize Gemini API client.

        Args:
            config: GeminiConfig with API key and model settings
            max_retries: Retries for transient errors
            sleep: Sleep function for backoff (injectable for tests)

        Raises:
            GeminiAPIError: If no API key is configured
        """
        if not config.is_configured():
            raise GeminiAPIError("GOOGLE_API_KEY not set in environment or config")

        self.config = config
        self.model_name = config.model
        self.max_retries = max_retries
        self._sleep = sleep

        genai.configure(api_key=config.api_key)
        self._model = genai.GenerativeModel(config.model)

        logger.info(f"GeminiClient initialized (model: {config.model})")

    def generate_text(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Generate text completion using Gemini API.

        Args:
            system_prompt: System prompt (role/instructions)
            user_prompt: User prompt (content to process)
            max_tokens: Maximum tokens to generate (default: config)
            temperature: Sampling temperature (default: config)

        Returns:
            Dictionary with:
                - content: Generated text
                - input_tokens / output_tokens / total_tokens
                - model: Model used
                - cost: Estimated cost in USD
                - generation_time_ms: Time taken in milliseconds

        Raises:
            GeminiAPIError: If API request fails after retries
        """
        start_time = datetime.now()

        # Gemini takes a single prompt
        full_prompt = f"{system_prompt}\n\n{user_prompt}"
        generation_config = GenerationConfig(
            max_output_tokens=max_tokens or self.config.max_tokens,
            temperature=self.config.temperature if temperature is None else temperature,
        )

        try:
            response = self._generate_with_retry(full_prompt, generation_config)
        except Exception as e:
            logger.error(f"Gemini API error: {e}")
            raise GeminiAPIError(f"Gemini API request failed: {e}") from e

        duration_ms = int((datetime.now() - start_time).total_seconds() * 1000)
        content = response.text if response.text else ""

        input_tokens = 0
        output_tokens = 0
        if getattr(response, "usage_metadata", None):
            input_tokens = getattr(response.usage_metadata, "prompt_token_count", 0) or 0
            output_tokens = getattr(response.usage_metadata, "candidates_token_count", 0) or 0

        cost = self._calculate_cost(input_tokens, output_tokens)
        logger.info(
            f"✓ Gemini generated {output_tokens} tokens in {duration_ms}ms "
            f"(input: {input_tokens}, cost: ${cost:.4f})"
        )

        return {
            "content": content,
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
            "model": self.model_name,
            "cost": cost,
            "generation_time_ms": duration_ms,
        }

    def _generate_with_retry(self, prompt: str, config: GenerationConfig):
        """
        Make Gemini API call with retry logic for transient errors.

        Raises:
            Exception: The last error once retries are exhausted or the error is permanent
        """
        retry_kwargs = {"logger": logger}
        if self._sleep is not None:
            retry_kwargs["sleep"] = self._sleep
        retry_ctx = RetryContext("Gemini API call", max_retries=self.max_retries, **retry_kwargs)

        for _ in retry_ctx:
            try:
                response = self._model.generate_content(prompt, generation_config=config)
                retry_ctx.success()
                return response
            except Exception as e:
                retry_ctx.failure(e)
                if not retry_ctx.should_continue():
                    raise
                retry_ctx.wait()

        raise GeminiAPIError(f"Gemini API call failed: {retry_ctx.last_error}")

    def _calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        pricing = self.MODEL_PRICING.get(self.model_name, {"input": 0.10, "output": 0.40})
        return (input_tokens / 1_000_000) * pricing["input"] + (output_tokens / 1_000_000) * pricing["output"]

    def test_connection(self) -> bool:
        """
        Test Gemini API connection with a minimal request.

        Returns:
            True if connection successful

        Raises:
            GeminiAPIError: If connection fails
        """
        logger.info("Testing Gemini API connection...")
        response = self.generate_text(
            system_prompt="Eres un asistente.",
            user_prompt="Responde 'ok' si puedes leer esto.",
            max_tokens=10,
        )
        if not response["content"]:
            raise GeminiAPIError("Empty response from Gemini API")

        logger.info(f"✓ Gemini API connection successful (model: {self.model_name})")
        return True
