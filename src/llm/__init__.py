"""LLM clients used by the feature proposer, scorer and bootstrapper."""
from .client import LLMClient, LLMResponse, get_llm_client

__all__ = [
    "LLMClient",
    "LLMResponse",
    "get_llm_client",
]
