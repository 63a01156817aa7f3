from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

from generation.client import CompletionRequest, LLMCompletionClient, estimate_cost_usd, usage_from_response
from intelligence.llm import AnthropicLLM, BaseLLM, LLMResponse, Message, OpenAILLM, get_llm
from intelligence.llm.openai_llm import _unsupported_parameters
from utils.exceptions import CompletionParseError, LLMError


class FakeLLM(BaseLLM):
    def __init__(self, content: str = "", delay: float = 0.0, usage: Dict[str, Any] = None) -> None:
        super().__init__("fake-model")
        self.content = content
        self.delay = delay
        self.usage = usage or {}
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    @property
    def provider(self) -> str:
        return "fake"

    async def acomplete(self, messages, *, json_mode=False, **kwargs) -> LLMResponse:
        self.calls.append({"messages": messages, "json_mode": json_mode, **kwargs})
        if self.delay:
            await asyncio.sleep(self.delay)
        return LLMResponse(content=self.content, model=self.model, usage=self.usage)

    async def aclose(self) -> None:
        self.closed = True


def _request(provider: str = "openai", model: str = "gpt-5-mini", **kwargs: Any) -> CompletionRequest:
    return CompletionRequest(provider=provider, model=model, system_prompt="SYS", user_prompt="USER", **kwargs)


def test_estimate_cost_from_price_table() -> None:
    assert estimate_cost_usd("openai", "gpt-5-mini", 1000, 2000) == pytest.approx(0.0045)
    assert estimate_cost_usd("openai", "gpt-5", 1_000_000, 0) == pytest.approx(5.0)
    assert estimate_cost_usd("anthropic", "claude-sonnet-4-5", 0, 1_000_000) == pytest.approx(15.0)
    assert estimate_cost_usd("openai", "unknown-model", 10, 10) is None
    assert estimate_cost_usd("heuristic", "heuristic-v1", 10, 10) is None


def test_usage_from_response_reads_both_shapes() -> None:
    openai_usage = usage_from_response("openai", "gpt-5-mini", {"prompt_tokens": 10, "completion_tokens": 5})
    assert openai_usage.total_tokens == 15
    assert openai_usage.estimated_cost_usd is not None

    anthropic_usage = usage_from_response("anthropic", "claude-opus-4", {"input_tokens": 7, "output_tokens": 3})
    assert (anthropic_usage.prompt_tokens, anthropic_usage.completion_tokens) == (7, 3)

    billed = usage_from_response("openrouter", "openrouter/auto", {"total_tokens": 9, "cost": "0.0012"})
    assert billed.actual_cost_usd == pytest.approx(0.0012)
    assert billed.estimated_cost_usd is None

    assert usage_from_response("openai", "gpt-5", None).total_tokens is None


@pytest.mark.asyncio
async def test_client_parses_json_and_reuses_adapter() -> None:
    llm = FakeLLM('```json\n{"hook": "ok"}\n```', usage={"prompt_tokens": 100, "completion_tokens": 50})
    built: List[tuple] = []

    def factory(provider: str, model: str) -> BaseLLM:
        built.append((provider, model))
        return llm

    client = LLMCompletionClient(llm_factory=factory)

    first = await client.complete(_request(temperature=0.2, max_tokens=900))
    await client.complete(_request())

    assert first.output == {"hook": "ok"}
    assert first.usage.total_tokens == 150
    assert built == [("openai", "gpt-5-mini")]
    assert llm.calls[0]["json_mode"] is True
    assert llm.calls[0]["max_tokens"] == 900
    assert [m.content for m in llm.calls[0]["messages"]] == ["SYS", "USER"]

    await client.aclose()
    assert llm.closed


@pytest.mark.asyncio
async def test_client_refuses_heuristic_provider() -> None:
    client = LLMCompletionClient(llm_factory=lambda provider, model: FakeLLM("{}"))

    with pytest.raises(LLMError, match="heuristic"):
        await client.complete(_request(provider="heuristic", model="heuristic-v1"))


@pytest.mark.asyncio
async def test_client_empty_and_unparsable_content() -> None:
    empty = LLMCompletionClient(llm_factory=lambda provider, model: FakeLLM("   "))
    with pytest.raises(LLMError, match="empty content"):
        await empty.complete(_request())

    prose = LLMCompletionClient(llm_factory=lambda provider, model: FakeLLM("desculpe, nao consigo"))
    with pytest.raises(CompletionParseError):
        await prose.complete(_request())


@pytest.mark.asyncio
async def test_client_timeout_reads_as_abort() -> None:
    client = LLMCompletionClient(llm_factory=lambda provider, model: FakeLLM("{}", delay=1.0))

    with pytest.raises(LLMError, match="timed out after 20 ms"):
        await client.complete(_request(timeout_ms=20))


def test_openai_request_params() -> None:
    messages = [Message.system("s"), Message.user("u")]

    openai = OpenAILLM(model="gpt-5-mini", api_key="k")
    params = openai._request_params(messages, json_mode=True, max_tokens=500)
    assert params["response_format"] == {"type": "json_object"}
    assert params["max_completion_tokens"] == 500
    assert "temperature" not in params

    router = OpenAILLM(model="anthropic/claude-sonnet-4.5", api_key="k", provider_name="openrouter")
    params = router._request_params(messages, json_mode=False, temperature=0.4)
    assert params["max_tokens"] == 4096
    assert params["temperature"] == 0.4
    assert "response_format" not in params


def test_unsupported_parameter_detection() -> None:
    class FakeBadRequest(Exception):
        status_code = 400

    error = FakeBadRequest("Error code: 400 - unsupported_parameter: 'max_tokens' use 'max_completion_tokens'")
    assert _unsupported_parameters(error) == ["max_completion_tokens"]
    assert _unsupported_parameters(FakeBadRequest("unsupported_value: temperature")) == ["temperature"]
    assert _unsupported_parameters(ValueError("unsupported_parameter: temperature")) == []


@pytest.mark.asyncio
async def test_openai_adapter_maps_response() -> None:
    captured: Dict[str, Any] = {}

    async def create(**params: Any) -> Any:
        captured.update(params)
        return SimpleNamespace(
            model="gpt-5-mini-2025",
            choices=[SimpleNamespace(message=SimpleNamespace(content='{"a": 1}'), finish_reason="stop")],
            usage=SimpleNamespace(prompt_tokens=12, completion_tokens=4, total_tokens=16, cost=0.0003),
        )

    llm = OpenAILLM(model="gpt-5-mini", api_key="k")
    llm._async_client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))

    response = await llm.acomplete([Message.user("oi")], json_mode=True)

    assert response.content == '{"a": 1}'
    assert response.usage == {"prompt_tokens": 12, "completion_tokens": 4, "total_tokens": 16, "cost": 0.0003}
    assert captured["messages"] == [{"role": "user", "content": "oi"}]


@pytest.mark.asyncio
async def test_anthropic_adapter_moves_system_prompt() -> None:
    captured: Dict[str, Any] = {}

    async def create(**params: Any) -> Any:
        captured.update(params)
        return SimpleNamespace(
            model="claude-sonnet-4-5",
            content=[SimpleNamespace(type="text", text='{"b": 2}')],
            usage=SimpleNamespace(input_tokens=20, output_tokens=6),
            stop_reason="end_turn",
        )

    llm = AnthropicLLM(api_key="k", temperature=1.4)
    llm._async_client = SimpleNamespace(messages=SimpleNamespace(create=create))

    response = await llm.acomplete([Message.system("regras"), Message.user("oi")], json_mode=True)

    assert response.content == '{"b": 2}'
    assert response.usage["total_tokens"] == 26
    assert captured["system"].startswith("regras\n\nResponda somente com um objeto JSON")
    assert captured["messages"] == [{"role": "user", "content": "oi"}]
    assert captured["temperature"] == 1.0


def test_factory_builds_provider_adapters() -> None:
    router = get_llm("openrouter", "anthropic/claude-sonnet-4.5", api_key="k")
    assert isinstance(router, OpenAILLM)
    assert router.provider == "openrouter"

    claude = get_llm("anthropic", api_key="k")
    assert isinstance(claude, AnthropicLLM)
    assert claude.model == "claude-sonnet-4-5"

    with pytest.raises(ValueError, match="Unsupported LLM provider"):
        get_llm("heuristic")
