"""
Intelligence Module
Model provider layer used by the generation engine.
"""
from .llm import (
    BaseLLM,
    LLMResponse,
    Message,
    OpenAILLM,
    AnthropicLLM,
    get_llm,
)

__all__ = [
    "BaseLLM",
    "LLMResponse",
    "Message",
    "OpenAILLM",
    "AnthropicLLM",
    "get_llm",
]
