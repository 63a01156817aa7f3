"""
LLM Module
Multi-provider chat completion adapters.
"""
from .base import BaseLLM, LLMResponse, Message, MessageRole
from .openai_llm import OpenAILLM
from .anthropic_llm import AnthropicLLM
from .factory import DEFAULT_MODELS, default_model_for, get_llm

__all__ = [
    "BaseLLM",
    "LLMResponse",
    "Message",
    "MessageRole",
    "OpenAILLM",
    "AnthropicLLM",
    "DEFAULT_MODELS",
    "default_model_for",
    "get_llm",
]
