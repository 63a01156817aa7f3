"""
Custom Exceptions
Error hierarchy shared by the generation engine and its collaborators.
"""


class AuthorityEngineError(Exception):
    """Base error for the content generation engine."""

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(AuthorityEngineError):
    """Invalid or missing configuration."""
    pass


class LLMError(AuthorityEngineError):
    """Model provider call failed."""

    def __init__(self, message: str, provider: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.provider = provider


class CompletionParseError(LLMError):
    """Model replied but no JSON object could be recovered from the text."""
    pass


class PromptTemplateError(AuthorityEngineError):
    """Prompt catalog lookup or activation failed."""
    pass


class TranscriptParseError(AuthorityEngineError):
    """Subtitle file could not be parsed into segments."""

    def __init__(self, message: str, filename: str = None, **kwargs):
        super().__init__(message, kwargs)
        self.filename = filename
