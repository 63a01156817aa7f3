"""
Base LLM
Abstract chat-completion provider.
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Dict, Any
from dataclasses import dataclass, field
from enum import Enum


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    """Chat message."""
    role: MessageRole
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=MessageRole.ASSISTANT, content=content)


@dataclass
class LLMResponse:
    """Provider reply."""
    content: str
    model: str
    usage: Dict[str, Any] = field(default_factory=dict)  # prompt_tokens, completion_tokens, total_tokens, cost
    finish_reason: Optional[str] = None
    raw_response: Optional[Any] = None


class BaseLLM(ABC):
    """
    Abstract provider.

    Every provider adapter implements `acomplete`; `json_mode=True` asks the
    provider for a JSON object reply when it supports it.
    """

    def __init__(
        self,
        model: str,
        temperature: Optional[float] = 0.3,
        max_tokens: Optional[int] = 4096,
        timeout: float = 120.0,
        **kwargs,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.extra_config = kwargs

    @property
    @abstractmethod
    def provider(self) -> str:
        """Provider name."""
        pass

    @abstractmethod
    async def acomplete(
        self,
        messages: List[Message],
        *,
        json_mode: bool = False,
        **kwargs,
    ) -> LLMResponse:
        """
        Generate one reply.

        Args:
            messages: conversation
            json_mode: request a JSON object reply
            **kwargs: temperature / max_tokens overrides

        Returns:
            LLMResponse
        """
        pass

    def complete(self, messages: List[Message], **kwargs) -> LLMResponse:
        """Blocking wrapper around `acomplete`."""
        import asyncio
        return asyncio.run(self.acomplete(messages, **kwargs))

    async def aclose(self) -> None:
        """Release the underlying client (no-op by default)."""
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self.model}, provider={self.provider})"
