"""Typed JSON completion contract over the provider adapters."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import math
import re
from typing import Any, Callable, Dict, Mapping, Optional, Pattern, Protocol, Tuple

from core import CompletionUsage
from generation.json_repair import parse_json_content
from intelligence.llm import BaseLLM, Message, get_llm
from utils.exceptions import LLMError


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 120_000

# (pattern, prompt USD per 1M tokens, completion USD per 1M tokens)
_OPENAI_PRICE_HINTS: Tuple[Tuple[Pattern[str], float, float], ...] = (
    (re.compile(r"gpt-5(\.1)?$", re.IGNORECASE), 5.0, 15.0),
    (re.compile(r"gpt-5-mini", re.IGNORECASE), 0.5, 2.0),
    (re.compile(r"o4-mini", re.IGNORECASE), 3.0, 12.0),
    (re.compile(r"gpt-4\.1|gpt-4o", re.IGNORECASE), 5.0, 15.0),
)
_OPENROUTER_PRICE_HINTS: Tuple[Tuple[Pattern[str], float, float], ...] = (
    (re.compile(r"claude-sonnet-4\.5", re.IGNORECASE), 3.0, 15.0),
    (re.compile(r"claude-3\.7|claude-3\.5", re.IGNORECASE), 3.0, 15.0),
    (re.compile(r"claude-opus", re.IGNORECASE), 15.0, 75.0),
    (re.compile(r"gemini-2\.5-pro", re.IGNORECASE), 2.5, 10.0),
    (re.compile(r"gemini-2\.5-flash", re.IGNORECASE), 0.35, 1.4),
    (re.compile(r"gpt-5(\.1)?$", re.IGNORECASE), 5.0, 15.0),
    (re.compile(r"gpt-5-mini", re.IGNORECASE), 0.5, 2.0),
    (re.compile(r"deepseek-v3|deepseek-r1", re.IGNORECASE), 0.55, 2.2),
)
_ANTHROPIC_PRICE_HINTS: Tuple[Tuple[Pattern[str], float, float], ...] = (
    (re.compile(r"claude-sonnet-4", re.IGNORECASE), 3.0, 15.0),
    (re.compile(r"claude-opus", re.IGNORECASE), 15.0, 75.0),
)
_PRICE_HINTS = {
    "openai": _OPENAI_PRICE_HINTS,
    "openrouter": _OPENROUTER_PRICE_HINTS,
    "anthropic": _ANTHROPIC_PRICE_HINTS,
}


@dataclass(frozen=True)
class CompletionRequest:
    provider: str
    model: str
    system_prompt: str
    user_prompt: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    timeout_ms: Optional[int] = None


@dataclass
class CompletionResult:
    output: Dict[str, Any]
    usage: CompletionUsage = field(default_factory=CompletionUsage)


class CompletionClient(Protocol):
    """Anything that turns a `CompletionRequest` into a JSON object, or raises."""

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        ...


def _to_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _to_int(value: Any) -> Optional[int]:
    number = _to_number(value)
    return int(round(number)) if number is not None else None


def estimate_cost_usd(
    provider: str,
    model: str,
    prompt_tokens: Optional[int],
    completion_tokens: Optional[int],
) -> Optional[float]:
    """Cost from the per-model price table; None when the model is unknown."""
    for pattern, prompt_price, completion_price in _PRICE_HINTS.get(provider, ()):
        if pattern.search(model):
            cost = (prompt_tokens or 0) / 1_000_000 * prompt_price + (completion_tokens or 0) / 1_000_000 * completion_price
            return round(cost, 6) if math.isfinite(cost) else None
    return None


def usage_from_response(provider: str, model: str, usage: Optional[Mapping[str, Any]]) -> CompletionUsage:
    record = dict(usage or {})
    prompt = _to_int(record.get("prompt_tokens", record.get("input_tokens")))
    completion = _to_int(record.get("completion_tokens", record.get("output_tokens")))
    total = _to_int(record.get("total_tokens"))
    if total is None and prompt is not None and completion is not None:
        total = prompt + completion
    actual = _to_number(record.get("cost", record.get("total_cost", record.get("cost_usd"))))
    return CompletionUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=total,
        estimated_cost_usd=estimate_cost_usd(provider, model, prompt, completion),
        actual_cost_usd=actual,
    )


class LLMCompletionClient:
    """
    JSON completion over `intelligence.llm` adapters.

    One adapter is kept per (provider, model). Every call carries an
    explicit timeout; a timeout surfaces as an `LLMError` whose message
    reads as an abort to the circuit breaker.
    """

    def __init__(
        self,
        llm_factory: Callable[..., BaseLLM] = get_llm,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        self._llm_factory = llm_factory
        self._default_timeout_ms = default_timeout_ms
        self._adapters: Dict[Tuple[str, str], BaseLLM] = {}

    def _adapter(self, provider: str, model: str) -> BaseLLM:
        key = (provider, model)
        if key not in self._adapters:
            self._adapters[key] = self._llm_factory(provider, model)
        return self._adapters[key]

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        if request.provider == "heuristic":
            raise LLMError("heuristic provider has no completion endpoint", provider=request.provider)

        llm = self._adapter(request.provider, request.model)
        timeout_ms = request.timeout_ms or self._default_timeout_ms
        messages = [Message.system(request.system_prompt), Message.user(request.user_prompt)]

        try:
            response = await asyncio.wait_for(
                llm.acomplete(
                    messages,
                    json_mode=True,
                    temperature=request.temperature,
                    max_tokens=request.max_tokens,
                ),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError as exc:
            raise LLMError(f"Request timed out after {timeout_ms} ms", provider=request.provider) from exc

        content = str(response.content or "").strip()
        if not content:
            raise LLMError("LLM returned empty content", provider=request.provider)

        output = parse_json_content(content)
        usage = usage_from_response(request.provider, request.model, response.usage)
        logger.debug(
            "Completion %s/%s ok (tokens=%s)", request.provider, request.model, usage.total_tokens
        )
        return CompletionResult(output=output, usage=usage)

    async def aclose(self) -> None:
        adapters = list(self._adapters.values())
        self._adapters.clear()
        for adapter in adapters:
            await adapter.aclose()
