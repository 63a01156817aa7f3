"""
Configuration Management Module
Environment-driven settings for providers, routing and generation.
"""
from .settings import (
    AIRoutingSettings,
    GenerationSettings,
    LLMSettings,
    Settings,
    get_generation_settings,
    get_llm_settings,
    get_routing_settings,
    get_settings,
    is_provider_configured,
)

__all__ = [
    "AIRoutingSettings",
    "GenerationSettings",
    "LLMSettings",
    "Settings",
    "get_generation_settings",
    "get_llm_settings",
    "get_routing_settings",
    "get_settings",
    "is_provider_configured",
]
