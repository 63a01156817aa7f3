from __future__ import annotations

from typing import Any, List

import pytest

from core import CompletionUsage
from generation.client import CompletionRequest, CompletionResult
from generation.requester import (
    CompletionRequester,
    TaskRequestResult,
    RequestTrace,
    UsageMetrics,
    build_initial_variant_diagnostics,
    compact_variant_record,
    summarize_variant_trace,
)
from generation.routing import CircuitBreaker, RoutingTable


class ScriptedClient:
    """Returns (or raises) the scripted items in order; repeats the last one."""

    def __init__(self, script: List[Any]) -> None:
        self.script = list(script)
        self.requests: List[CompletionRequest] = []

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        self.requests.append(request)
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return item


def _requester(client: ScriptedClient, provider: str = "openai") -> CompletionRequester:
    routing = RoutingTable(configured=lambda name: name != "anthropic")
    for task in ("analysis", "reels", "newsletter", "linkedin", "x"):
        routing.set_route(task, "generation", provider=provider, model="test-model")
    return CompletionRequester(routing, CircuitBreaker(lambda: 1_000_000.0), client)


@pytest.mark.asyncio
async def test_heuristic_route_makes_no_call() -> None:
    client = ScriptedClient([CompletionResult(output={"ok": True})])
    requester = _requester(client, provider="heuristic")

    result = await requester.request("analysis", "sys", "user")

    assert result.output is None
    assert result.trace.used_heuristic_fallback is True
    assert result.trace.fallback_reason == "provider configured as heuristic"
    assert client.requests == []


@pytest.mark.asyncio
async def test_missing_credentials_skip_call() -> None:
    client = ScriptedClient([CompletionResult(output={"ok": True})])
    requester = _requester(client, provider="anthropic")

    result = await requester.request("x", "sys", "user")

    assert result.output is None
    assert "key not configured" in result.trace.fallback_reason
    assert client.requests == []


@pytest.mark.asyncio
async def test_request_passes_task_budget_and_records_usage() -> None:
    usage = CompletionUsage(prompt_tokens=100, completion_tokens=50, total_tokens=150, estimated_cost_usd=0.001)
    client = ScriptedClient([CompletionResult(output={"thesis": "t"}, usage=usage)])
    requester = _requester(client)
    metrics = UsageMetrics()

    result = await requester.request("newsletter", "sys", "user", usage_recorder=metrics.add)

    assert result.output == {"thesis": "t"}
    assert result.trace.used_heuristic_fallback is False
    assert client.requests[0].max_tokens == 7000
    assert client.requests[0].timeout_ms == 240_000
    assert metrics.to_fields()["total_tokens"] == 150
    assert metrics.to_fields()["actual_cost_usd"] is None


@pytest.mark.asyncio
async def test_analysis_abort_stops_after_fail_fast_limit() -> None:
    client = ScriptedClient([TimeoutError("Request timed out after 300000 ms")])
    requester = _requester(client)

    results = await requester.request_variants("analysis", "sys", "user", 4)

    # analysis tolerates a single abort-like failure
    assert len(client.requests) == 1
    assert len(results) == 1
    assert results[0].output is None


@pytest.mark.asyncio
async def test_two_aborts_never_issue_a_third_request() -> None:
    client = ScriptedClient([RuntimeError("This operation was aborted")])
    requester = _requester(client)

    await requester.request_variants("reels", "sys", "user", 4)

    assert len(client.requests) == 2


@pytest.mark.asyncio
async def test_success_resets_fail_fast_counters() -> None:
    ok = CompletionResult(output={"clips": []})
    client = ScriptedClient([RuntimeError("aborted"), ok, RuntimeError("aborted"), ok])
    requester = _requester(client)

    results = await requester.request_variants("linkedin", "sys", "user", 4)

    assert len(results) == 4
    assert [item.output is not None for item in results] == [False, True, False, True]


@pytest.mark.asyncio
async def test_variant_prompts_carry_variation_directive() -> None:
    client = ScriptedClient([CompletionResult(output={"a": 1})])
    requester = _requester(client)

    await requester.request_variants("x", "sys", "base prompt", 2)

    assert "Variacao 1/2" in client.requests[0].user_prompt
    assert "Variacao 2/2" in client.requests[1].user_prompt
    assert client.requests[1].user_prompt.startswith("base prompt")


def test_summarize_variant_trace_prefers_live_route() -> None:
    results = [
        TaskRequestResult(None, RequestTrace("openai", "m", True, "timeout")),
        TaskRequestResult({"a": 1}, RequestTrace("openai", "m", False, None)),
        TaskRequestResult(None, RequestTrace("openai", "m", True, "timeout")),
    ]
    trace = summarize_variant_trace(results)
    assert trace.used_heuristic_fallback is False
    assert trace.fallback_reason == "timeout"

    empty = summarize_variant_trace([])
    assert empty.provider == "heuristic"
    assert empty.fallback_reason == "no_variant_result"


def test_initial_variant_diagnostics_rows() -> None:
    results = [
        TaskRequestResult({"a": {"b": [1, 2]}}, RequestTrace("openai", "m", False, None)),
        TaskRequestResult(None, RequestTrace("openai", "m", True, "429 rate limit")),
    ]
    rows = build_initial_variant_diagnostics(results)

    assert [row.variant for row in rows] == [1, 2]
    assert rows[0].status == "ok"
    assert rows[0].model_output == {"a": {"b": [1, 2]}}
    assert rows[1].status == "request_failed"
    assert rows[1].reason == "429 rate limit"


def test_compact_variant_record_rejects_non_objects() -> None:
    assert compact_variant_record([1, 2]) is None
    assert compact_variant_record({}) is None
    assert compact_variant_record({"when": object()})["when"].startswith("<object")
