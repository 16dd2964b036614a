"""
LLM Client Abstraction Layer

Provides a unified interface for different LLM providers (Gemini, any
OpenAI-compatible endpoint such as Ollama). Switch providers with the
LLM_PROVIDER environment variable.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from src.config import config


@dataclass
class LLMResponse:
    """Standardized response from LLM."""
    content: str
    model: str
    usage: dict[str, int] | None = None
    raw_response: Any = None


class LLMClient(ABC):
    """Abstract base class for LLM clients."""

    @abstractmethod
    def generate(
        self,
        prompt: str,
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        json_mode: bool = False,
    ) -> LLMResponse:
        """
        Generate a response from the LLM.

        Args:
            prompt: The input prompt
            model: Model to use (defaults to the client's default model)
            temperature: Sampling temperature (0.0-1.0)
            max_tokens: Maximum tokens in response
            json_mode: If True, request JSON-formatted output

        Returns:
            LLMResponse with the generated content
        """
        pass


def get_llm_client(provider: str | None = None) -> LLMClient:
    """
    Factory function to get the appropriate LLM client based on configuration.

    Args:
        provider: Override for config.llm.provider

    Returns:
        LLMClient instance (GeminiClient or OpenAIClient)

    Raises:
        ValueError: If provider is not supported
    """
    provider = provider or config.llm.provider

    if provider == "gemini":
        from .gemini_client import GeminiClient
        return GeminiClient()
    elif provider == "openai":
        from .openai_client import OpenAIClient
        return OpenAIClient()
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}")
