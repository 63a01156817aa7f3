"""
Settings Configuration
Pydantic-backed configuration for providers, routing and generation defaults.
"""
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class LLMSettings(BaseSettings):
    """Provider credentials and transport defaults."""
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API Key")
    openai_base_url: Optional[str] = Field(default=None, description="OpenAI-compatible base URL override")
    openrouter_api_key: Optional[str] = Field(default=None, description="OpenRouter API Key")
    openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1", description="OpenRouter base URL")
    openrouter_http_referer: str = Field(default="", description="HTTP-Referer header sent to OpenRouter")
    openrouter_app_name: str = Field(default="Authority Distribution Engine", description="X-Title header sent to OpenRouter")
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API Key")
    request_timeout_ms: int = Field(default=120_000, description="Default request timeout (ms)")

    class Config:
        env_prefix = "LLM_"


class AIRoutingSettings(BaseSettings):
    """Default provider routes for generation and judge calls."""
    provider_default: str = Field(default="heuristic", description="heuristic, openai, openrouter, anthropic")
    model_default: Optional[str] = Field(default=None, description="Model name (provider default when empty)")
    temperature_default: float = Field(default=0.3, description="Generation temperature")

    judge_provider_default: Optional[str] = Field(default=None, description="Judge provider (first configured key when empty)")
    judge_model_default: Optional[str] = Field(default=None, description="Judge model name")
    judge_temperature_default: float = Field(default=0.2, description="Judge temperature")

    # {"reels": {"provider": "openrouter", "model": "...", "temperature": 0.4}}
    routing_overrides: Dict[str, Dict[str, Any]] = Field(default_factory=dict, description="Per-task generation routes")
    judge_routing_overrides: Dict[str, Dict[str, Any]] = Field(default_factory=dict, description="Per-task judge routes")

    class Config:
        env_prefix = "AI_"


class GenerationSettings(BaseSettings):
    """Generation pipeline defaults."""
    quality_mode: str = Field(default="max", description="standard or max")
    variation_count: int = Field(default=4, description="Variants requested per task")
    refine_passes: int = Field(default=2, description="Refinement passes per task")
    diagnostics_path: Optional[str] = Field(default=None, description="JSONL file for diagnostics records")
    log_level: str = Field(default="INFO", description="Log level")

    class Config:
        env_prefix = "GENERATION_"


class Settings(BaseSettings):
    """Aggregated settings."""

    llm: LLMSettings = Field(default_factory=LLMSettings)
    routing: AIRoutingSettings = Field(default_factory=AIRoutingSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def load_from_env_file(cls, env_path: Optional[Path] = None) -> "Settings":
        """Load settings after applying an optional .env file."""
        if env_path is None:
            env_path = Path(__file__).parent / ".env"

        if env_path.exists():
            from dotenv import load_dotenv
            load_dotenv(env_path)

        return cls(
            llm=LLMSettings(),
            routing=AIRoutingSettings(),
            generation=GenerationSettings(),
        )


@lru_cache()
def get_settings() -> Settings:
    """Cached global settings."""
    return Settings.load_from_env_file()


def get_llm_settings() -> LLMSettings:
    return get_settings().llm


def get_routing_settings() -> AIRoutingSettings:
    return get_settings().routing


def get_generation_settings() -> GenerationSettings:
    return get_settings().generation


def is_provider_configured(provider: str, settings: Optional[LLMSettings] = None) -> bool:
    """`heuristic` needs no credentials; every other provider needs its key."""
    name = str(provider or "").strip().lower()
    if name == "heuristic":
        return True
    llm = settings or get_llm_settings()
    keys = {
        "openai": llm.openai_api_key,
        "openrouter": llm.openrouter_api_key,
        "anthropic": llm.anthropic_api_key,
    }
    return bool(str(keys.get(name) or "").strip())
