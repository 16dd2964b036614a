"""
Title Reflexion - Configuration Management

Centralized configuration using environment variables.
"""
import os
from dataclasses import dataclass
from typing import Literal

from dotenv import load_dotenv

# Load environment variables from .env file (does NOT override existing vars)
load_dotenv(override=False)


LLMProvider = Literal["gemini", "openai"]


@dataclass
class LLMConfig:
    """LLM-related configuration."""
    provider: LLMProvider = "gemini"
    proposal_model: str = "gemma-3-27b-it"
    scoring_model: str = "gemma-3-12b-it"
    gemini_api_key: str | None = None
    # OpenAI-compatible endpoint (Ollama by default)
    openai_base_url: str = "http://localhost:11434/v1"
    openai_api_key: str | None = None
    openai_model: str = ""


@dataclass
class ReflexionConfig:
    """Feature-discovery loop settings."""
    max_iterations: int = 10
    feature_count: int = 5  # K, size of the active feature set
    worst_k: int = 20  # Worst predictions shown to the proposer
    train_fraction: float = 0.8
    recent_videos: int = 5  # Auxiliary covariates per video
    proposal_attempts: int = 3  # LLM proposal / bootstrap retries on bad replies
    seed: int | None = None


@dataclass
class ScoringConfig:
    """Batch scoring settings."""
    batch_size: int | None = None  # None = pick from provider
    max_attempts: int = 3
    max_concurrent: int = 4


@dataclass
class SupabaseConfig:
    """Supabase configuration."""
    url: str | None = None
    anon_key: str | None = None
    service_role_key: str | None = None


@dataclass
class Config:
    """Main configuration class."""
    llm: LLMConfig
    reflexion: ReflexionConfig
    scoring: ScoringConfig
    supabase: SupabaseConfig
    debug: bool = False


def _int_env(name: str, default: int | None) -> int | None:
    """Read an integer env var, falling back to default on empty/invalid values."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def load_config() -> Config:
    """Load configuration from environment variables."""
    provider = os.getenv("LLM_PROVIDER", "gemini")
    if provider not in ("gemini", "openai"):
        provider = "gemini"

    return Config(
        llm=LLMConfig(
            provider=provider,  # type: ignore
            proposal_model=os.getenv("PROPOSAL_MODEL", "gemma-3-27b-it"),
            scoring_model=os.getenv("SCORING_MODEL", "gemma-3-12b-it"),
            gemini_api_key=os.getenv("GEMINI_API_KEY"),
            openai_base_url=os.getenv("OPENAI_BASE_URL", "http://localhost:11434/v1"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_model=os.getenv("OPENAI_MODEL", ""),
        ),
        reflexion=ReflexionConfig(
            max_iterations=_int_env("REFLEXION_MAX_ITERATIONS", 10),
            feature_count=_int_env("REFLEXION_FEATURE_COUNT", 5),
            worst_k=_int_env("REFLEXION_WORST_K", 20),
            train_fraction=_float_env("REFLEXION_TRAIN_FRACTION", 0.8),
            recent_videos=_int_env("REFLEXION_RECENT_VIDEOS", 5),
            proposal_attempts=_int_env("REFLEXION_PROPOSAL_ATTEMPTS", 3),
            seed=_int_env("REFLEXION_SEED", None),
        ),
        scoring=ScoringConfig(
            batch_size=_int_env("SCORING_BATCH_SIZE", None),
            max_attempts=_int_env("SCORING_MAX_ATTEMPTS", 3),
            max_concurrent=_int_env("SCORING_MAX_CONCURRENT", 4),
        ),
        supabase=SupabaseConfig(
            url=os.getenv("SUPABASE_URL"),
            anon_key=os.getenv("SUPABASE_ANON_KEY"),
            service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY"),
        ),
        debug=os.getenv("DEBUG", "false").lower() == "true",
    )


# Global config instance
config = load_config()
