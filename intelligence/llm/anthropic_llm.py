"""
Anthropic LLM
Messages API adapter.
"""
from typing import Any, Dict, List, Optional, Tuple
import logging
import inspect

from .base import BaseLLM, Message, MessageRole, LLMResponse


logger = logging.getLogger(__name__)

_JSON_ONLY_SUFFIX = "\n\nResponda somente com um objeto JSON valido, sem texto fora do JSON."


class AnthropicLLM(BaseLLM):
    """Anthropic provider; JSON mode is requested through the system prompt."""

    def __init__(
        self,
        model: str = "claude-sonnet-4-5",
        api_key: Optional[str] = None,
        temperature: Optional[float] = 0.3,
        max_tokens: Optional[int] = 4096,
        timeout: float = 120.0,
        **kwargs,
    ):
        super().__init__(model, temperature, max_tokens, timeout, **kwargs)
        self.api_key = api_key
        self._async_client = None

    @property
    def provider(self) -> str:
        return "anthropic"

    def _get_async_client(self):
        if self._async_client is None:
            from anthropic import AsyncAnthropic
            self._async_client = AsyncAnthropic(
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._async_client

    def _convert_messages(self, messages: List[Message]) -> Tuple[Optional[str], List[Dict[str, str]]]:
        """Split out the system prompt; Anthropic takes it as a separate field."""
        system_prompt = None
        converted = []

        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system_prompt = msg.content
            else:
                converted.append({"role": msg.role.value, "content": msg.content})

        return system_prompt, converted

    async def acomplete(
        self,
        messages: List[Message],
        *,
        json_mode: bool = False,
        **kwargs,
    ) -> LLMResponse:
        client = self._get_async_client()

        system_prompt, converted_messages = self._convert_messages(messages)
        if json_mode:
            system_prompt = (system_prompt or "") + _JSON_ONLY_SUFFIX

        request_params: Dict[str, Any] = {
            "model": self.model,
            "messages": converted_messages,
            "max_tokens": int(kwargs.get("max_tokens") or self.max_tokens or 4096),
        }
        temperature = kwargs.get("temperature", self.temperature)
        if temperature is not None:
            request_params["temperature"] = min(1.0, float(temperature))
        if system_prompt:
            request_params["system"] = system_prompt

        response = await client.messages.create(**request_params)

        content = "".join(block.text for block in response.content if block.type == "text")

        return LLMResponse(
            content=content,
            model=response.model,
            usage={
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
                "total_tokens": response.usage.input_tokens + response.usage.output_tokens,
            },
            finish_reason=response.stop_reason,
            raw_response=response,
        )

    async def aclose(self) -> None:
        client = self._async_client
        if client is None:
            return
        close_fn = getattr(client, "close", None)
        if callable(close_fn):
            maybe_awaitable = close_fn()
            if inspect.isawaitable(maybe_awaitable):
                await maybe_awaitable
        self._async_client = None
