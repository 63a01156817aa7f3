"""
Utils Module
Logging and error types shared across packages.
"""
from .logger import setup_logger, get_logger, configure_package_logging
from .exceptions import (
    AuthorityEngineError,
    CompletionParseError,
    ConfigurationError,
    LLMError,
    PromptTemplateError,
    TranscriptParseError,
)

__all__ = [
    "setup_logger",
    "get_logger",
    "configure_package_logging",
    "AuthorityEngineError",
    "CompletionParseError",
    "ConfigurationError",
    "LLMError",
    "PromptTemplateError",
    "TranscriptParseError",
]
