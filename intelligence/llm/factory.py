"""
LLM Factory
Builds provider adapters from settings.
"""
from typing import Optional
import logging

from .base import BaseLLM
from .openai_llm import OpenAILLM
from .anthropic_llm import AnthropicLLM


logger = logging.getLogger(__name__)


DEFAULT_MODELS = {
    "openai": "gpt-5-mini",
    "openrouter": "openrouter/auto",
    "anthropic": "claude-sonnet-4-5",
    "heuristic": "heuristic-v1",
}


def default_model_for(provider: str) -> str:
    return DEFAULT_MODELS.get(str(provider or "").strip().lower(), DEFAULT_MODELS["heuristic"])


def get_llm(
    provider: str,
    model: Optional[str] = None,
    **kwargs,
) -> BaseLLM:
    """
    Build an adapter for `provider`.

    Credentials and base URLs come from `config.get_llm_settings()` unless
    passed explicitly (api_key=..., base_url=...).

    Example:
        llm = get_llm("openrouter", "anthropic/claude-sonnet-4.5", temperature=0.2)
    """
    from config import get_llm_settings

    settings = get_llm_settings()
    provider = str(provider or "").strip().lower()
    model = model or default_model_for(provider)
    kwargs.setdefault("timeout", settings.request_timeout_ms / 1000.0)

    if provider == "openai":
        return OpenAILLM(
            model=model,
            api_key=kwargs.pop("api_key", None) or settings.openai_api_key,
            base_url=kwargs.pop("base_url", None) or settings.openai_base_url,
            provider_name="openai",
            **kwargs,
        )
    elif provider == "openrouter":
        headers = {}
        if settings.openrouter_http_referer:
            headers["HTTP-Referer"] = settings.openrouter_http_referer
        if settings.openrouter_app_name:
            headers["X-Title"] = settings.openrouter_app_name
        return OpenAILLM(
            model=model,
            api_key=kwargs.pop("api_key", None) or settings.openrouter_api_key,
            base_url=kwargs.pop("base_url", None) or settings.openrouter_base_url,
            provider_name="openrouter",
            default_headers=headers,
            **kwargs,
        )
    elif provider == "anthropic":
        return AnthropicLLM(
            model=model,
            api_key=kwargs.pop("api_key", None) or settings.anthropic_api_key,
            **kwargs,
        )
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}")
