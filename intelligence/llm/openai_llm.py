"""
OpenAI LLM
Chat completions for OpenAI and OpenAI-compatible gateways (OpenRouter).
"""
from typing import Any, Dict, List, Optional
import logging
import inspect
import re

from .base import BaseLLM, Message, LLMResponse


logger = logging.getLogger(__name__)

# reasoning models reject an explicit temperature on chat/completions
_NO_TEMPERATURE_MODEL_RE = re.compile(r"^gpt-5", re.IGNORECASE)


def _unsupported_parameters(error: Exception) -> List[str]:
    """Names of request parameters a 400 reply complained about."""
    status = getattr(error, "status_code", None)
    if status != 400:
        return []
    lowered = str(error).lower()
    if "unsupported_parameter" not in lowered and "unsupported_value" not in lowered:
        return []
    names = []
    for name in ("max_completion_tokens", "max_tokens", "temperature"):
        if name in lowered:
            names.append(name)
    if "max_completion_tokens" in names and "max_tokens" in names:
        names.remove("max_tokens")
    return names


class OpenAILLM(BaseLLM):
    """
    OpenAI-compatible provider.

    `provider_name="openrouter"` together with the OpenRouter `base_url`
    routes the same client through OpenRouter.
    """

    def __init__(
        self,
        model: str = "gpt-5-mini",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: Optional[float] = 0.3,
        max_tokens: Optional[int] = 4096,
        timeout: float = 120.0,
        provider_name: str = "openai",
        default_headers: Optional[Dict[str, str]] = None,
        **kwargs,
    ):
        super().__init__(model, temperature, max_tokens, timeout, **kwargs)
        self.api_key = api_key
        self.base_url = base_url
        self.provider_name = provider_name
        self.default_headers = dict(default_headers or {})
        self._async_client = None

    @property
    def provider(self) -> str:
        return self.provider_name

    def _get_async_client(self):
        if self._async_client is None:
            from openai import AsyncOpenAI
            self._async_client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=self.timeout,
                default_headers=self.default_headers or None,
                max_retries=0,
            )
        return self._async_client

    def _request_params(self, messages: List[Message], json_mode: bool, **kwargs) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
        }
        if json_mode:
            params["response_format"] = {"type": "json_object"}

        temperature = kwargs.get("temperature", self.temperature)
        if temperature is not None and not (
            self.provider_name == "openai" and _NO_TEMPERATURE_MODEL_RE.match(self.model.strip())
        ):
            params["temperature"] = temperature

        max_tokens = kwargs.get("max_tokens", self.max_tokens)
        if max_tokens is not None:
            key = "max_completion_tokens" if self.provider_name == "openai" else "max_tokens"
            params[key] = int(max_tokens)
        return params

    async def acomplete(
        self,
        messages: List[Message],
        *,
        json_mode: bool = False,
        **kwargs,
    ) -> LLMResponse:
        from openai import BadRequestError

        client = self._get_async_client()
        params = self._request_params(messages, json_mode, **kwargs)

        try:
            response = await client.chat.completions.create(**params)
        except BadRequestError as exc:
            rejected = _unsupported_parameters(exc)
            if not rejected:
                raise
            # single retry without the parameters the model refused
            retry_params = dict(params)
            limit = retry_params.pop("max_tokens", None) or retry_params.pop("max_completion_tokens", None)
            retry_params.pop("max_completion_tokens", None)
            retry_params.pop("temperature", None)
            if limit is not None and "max_tokens" in rejected:
                retry_params["max_completion_tokens"] = limit
            elif limit is not None and "max_completion_tokens" in rejected:
                retry_params["max_tokens"] = limit
            logger.info("Retrying %s without rejected parameters: %s", self.model, ", ".join(rejected))
            response = await client.chat.completions.create(**retry_params)

        choice = response.choices[0]
        content = choice.message.content or ""

        usage: Dict[str, Any] = {}
        if response.usage is not None:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }
            # OpenRouter reports the billed amount inside usage
            cost = getattr(response.usage, "cost", None)
            if cost is not None:
                usage["cost"] = cost

        return LLMResponse(
            content=content,
            model=response.model or self.model,
            usage=usage,
            finish_reason=choice.finish_reason,
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
