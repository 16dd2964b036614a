"""
OpenAI-Compatible API Client

Implements LLMClient interface for any OpenAI-compatible endpoint:
- Ollama (with OpenAI compatibility layer, the default)
- vLLM
- OpenRouter
- Any other OpenAI API-compatible server

Point it at a server with OPENAI_BASE_URL, OPENAI_API_KEY and OPENAI_MODEL.
"""
import logging
import re
import time
from functools import wraps
from typing import Callable

import httpx

from src.config import config
from .client import LLMClient, LLMResponse


logger = logging.getLogger(__name__)


def retry_on_error(max_retries: int = 3, base_sleep: float = 2.0):
    """Retry decorator with exponential backoff for transient errors."""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except httpx.HTTPStatusError as e:
                    if e.response.status_code in (429, 502, 503) and attempt < max_retries - 1:
                        sleep_time = base_sleep * (2 ** attempt)
                        logger.warning(f"HTTP {e.response.status_code}. Retrying in {sleep_time}s...")
                        time.sleep(sleep_time)
                    else:
                        raise
                except (httpx.ConnectError, httpx.ReadTimeout, httpx.TimeoutException):
                    if attempt < max_retries - 1:
                        sleep_time = base_sleep * (2 ** attempt)
                        logger.warning(f"Connection/timeout error. Retrying in {sleep_time}s...")
                        time.sleep(sleep_time)
                    else:
                        raise
            raise RuntimeError(f"Failed after {max_retries} retries")
        return wrapper
    return decorator


class OpenAIClient(LLMClient):
    """OpenAI-compatible API client for local or hosted model endpoints."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        default_model: str | None = None,
    ):
        self._base_url = (base_url or config.llm.openai_base_url).rstrip("/")
        self._api_key = api_key or config.llm.openai_api_key or "ollama"
        self._default_model = default_model or config.llm.openai_model
        if not self._default_model:
            raise ValueError(
                "Model must be specified either via parameter or OPENAI_MODEL env var. "
                "Example: gemma3:4b"
            )
        self._client = httpx.Client(
            base_url=self._base_url,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            timeout=120.0,
        )
        logger.info(
            f"OpenAI client initialized: {self._base_url}, model={self._default_model}"
        )

    @retry_on_error(max_retries=3, base_sleep=2.0)
    def generate(
        self,
        prompt: str,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> LLMResponse:
        model_name = model or self._default_model

        payload: dict = {
            "model": model_name,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        response = self._client.post("/chat/completions", json=payload)
        response.raise_for_status()
        data = response.json()

        content = data["choices"][0]["message"]["content"] or ""
        finish_reason = data["choices"][0].get("finish_reason", "")
        if finish_reason == "length":
            logger.warning(
                f"Response truncated (finish_reason=length, max_tokens={max_tokens}). "
                f"Model: {model_name}"
            )

        # Reasoning models (qwen3, deepseek-r1) wrap their thoughts in <think> tags
        content = self._strip_think_tags(content)

        usage_data = data.get("usage")
        usage = None
        if usage_data:
            usage = {
                "prompt_tokens": usage_data.get("prompt_tokens", 0),
                "completion_tokens": usage_data.get("completion_tokens", 0),
                "total_tokens": usage_data.get("total_tokens", 0),
            }

        return LLMResponse(
            content=content,
            model=data.get("model", model_name),
            usage=usage,
            raw_response=data,
        )

    @staticmethod
    def _strip_think_tags(text: str) -> str:
        """Remove <think>...</think> blocks from model output.

        If stripping removes ALL content, fall back to the original text.
        """
        stripped = re.sub(r"<think>.*?</think>\s*", "", text, flags=re.DOTALL).strip()
        if not stripped and text.strip():
            logger.warning("_strip_think_tags removed all content, returning original")
            return text.strip()
        return stripped
