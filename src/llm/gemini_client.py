"""
Gemini API Client

Implements LLMClient interface for Google Gemini API, including the
hosted Gemma models. Gemma does not support native JSON mode, so for
those models the JSON instructions are appended to the prompt instead.
"""
import logging
import time
from functools import wraps
from typing import Callable

import google.generativeai as genai

from src.config import config
from .client import LLMClient, LLMResponse


logger = logging.getLogger(__name__)


JSON_ONLY_INSTRUCTIONS = """
---
STRICT OUTPUT INSTRUCTIONS:
1. You are a JSON generator. You must output VALID JSON only.
2. Do not include markdown formatting.
3. Do not output any conversational text before or after the JSON.
---
"""


def rate_limit_aware(max_retries: int = 3, base_sleep: float = 2.0):
    """
    Decorator for handling Gemini API rate limits with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_sleep: Base sleep time in seconds (doubles each retry)
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    error_str = str(e).lower()
                    if "429" in error_str or "resource_exhausted" in error_str or "quota" in error_str:
                        if attempt < max_retries - 1:
                            sleep_time = base_sleep * (2 ** attempt)
                            logger.warning(
                                f"Rate limited. Sleeping {sleep_time}s before retry {attempt + 1}"
                            )
                            time.sleep(sleep_time)
                        else:
                            raise
                    else:
                        raise
            raise RuntimeError(f"Failed after {max_retries} retries")
        return wrapper
    return decorator


def supports_json_mode(model_name: str) -> bool:
    """Gemma models on the Gemini API reject response_mime_type."""
    return not model_name.startswith("gemma")


class GeminiClient(LLMClient):
    """Gemini API client implementation."""

    def __init__(self, api_key: str | None = None, default_model: str | None = None):
        """Initialize the Gemini client with API key from config."""
        api_key = api_key or config.llm.gemini_api_key
        if not api_key:
            raise ValueError("GEMINI_API_KEY is not set in environment variables")

        genai.configure(api_key=api_key)
        self._default_model = default_model or config.llm.scoring_model

    @rate_limit_aware(max_retries=3, base_sleep=2.0)
    def generate(
        self,
        prompt: str,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Generate a response using Gemini API.

        Args:
            prompt: The input prompt
            model: Model to use (defaults to the scoring model)
            temperature: Sampling temperature
            max_tokens: Maximum tokens in response
            json_mode: If True, request JSON-formatted output

        Returns:
            LLMResponse with the generated content
        """
        model_name = model or self._default_model
        gemini_model = genai.GenerativeModel(model_name)

        generation_config = {
            "temperature": temperature,
            "max_output_tokens": max_tokens,
        }

        if json_mode:
            if supports_json_mode(model_name):
                generation_config["response_mime_type"] = "application/json"
            else:
                prompt = f"{prompt}\n{JSON_ONLY_INSTRUCTIONS}"

        response = gemini_model.generate_content(
            prompt,
            generation_config=generation_config,
        )

        usage = None
        if hasattr(response, "usage_metadata"):
            usage = {
                "prompt_tokens": getattr(response.usage_metadata, "prompt_token_count", 0),
                "completion_tokens": getattr(response.usage_metadata, "candidates_token_count", 0),
                "total_tokens": getattr(response.usage_metadata, "total_token_count", 0),
            }

        return LLMResponse(
            content=response.text,
            model=model_name,
            usage=usage,
            raw_response=response,
        )
