"""Single choke point for model calls: routing, circuit breaking and variant fan-out."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Dict, List, Optional

from core import CompletionUsage, VariantDiagnostics, task_name
from generation.client import CompletionClient, CompletionRequest
from generation.prompts import variation_directive
from generation.quality import (
    ABORT_FAIL_FAST_LIMIT,
    JSON_PARSE_FAIL_FAST_LIMIT,
    TASK_MAX_TOKENS,
    TASK_REQUEST_TIMEOUT_MS,
)
from generation.routing import (
    CircuitBreaker,
    RoutingTable,
    circuit_key,
    is_abort_like,
    is_circuit_open_reason,
    is_json_parse_like,
)


logger = logging.getLogger(__name__)

UsageRecorder = Callable[[CompletionUsage], None]

MAX_VARIANTS = 8


@dataclass(frozen=True)
class RequestTrace:
    provider: str
    model: str
    used_heuristic_fallback: bool
    fallback_reason: Optional[str] = None


@dataclass(frozen=True)
class TaskRequestResult:
    output: Optional[Dict[str, Any]]
    trace: RequestTrace
    usage: CompletionUsage = field(default_factory=CompletionUsage)


@dataclass
class UsageMetrics:
    """Running token/cost totals; a field stays None until some call reports it."""

    prompt_tokens: float = 0
    completion_tokens: float = 0
    total_tokens: float = 0
    estimated_cost_usd: float = 0.0
    actual_cost_usd: float = 0.0
    seen: set = field(default_factory=set)

    def add(self, usage: Optional[CompletionUsage]) -> None:
        if usage is None:
            return
        for name in ("prompt_tokens", "completion_tokens", "total_tokens", "estimated_cost_usd", "actual_cost_usd"):
            value = getattr(usage, name)
            if isinstance(value, (int, float)):
                setattr(self, name, getattr(self, name) + value)
                self.seen.add(name)

    def to_fields(self) -> Dict[str, Any]:
        total: Optional[int] = None
        if "total_tokens" in self.seen:
            total = int(round(self.total_tokens))
        elif "prompt_tokens" in self.seen or "completion_tokens" in self.seen:
            total = int(round(self.prompt_tokens + self.completion_tokens))
        return {
            "prompt_tokens": int(round(self.prompt_tokens)) if "prompt_tokens" in self.seen else None,
            "completion_tokens": int(round(self.completion_tokens)) if "completion_tokens" in self.seen else None,
            "total_tokens": total,
            "estimated_cost_usd": round(self.estimated_cost_usd, 6) if "estimated_cost_usd" in self.seen else None,
            "actual_cost_usd": round(self.actual_cost_usd, 6) if "actual_cost_usd" in self.seen else None,
        }


class CompletionRequester:
    """
    Routes a task prompt to its configured provider.

    No network call is made when the route is the `heuristic` provider,
    when the provider has no credentials or when the route's circuit is
    open; the result then carries `output=None` and the reason. Failures
    never raise: they become a reason string fed to the circuit breaker.
    """

    def __init__(self, routing: RoutingTable, breaker: CircuitBreaker, client: CompletionClient) -> None:
        self.routing = routing
        self.breaker = breaker
        self.client = client

    def route_available(self, task: Any, route_kind: str = "generation") -> bool:
        route = self.routing.get_route(task, route_kind)
        return route.provider != "heuristic" and self.routing.is_provider_configured(route.provider)

    async def request(
        self,
        task: Any,
        system_prompt: str,
        user_prompt: str,
        *,
        max_tokens: Optional[int] = None,
        timeout_ms: Optional[int] = None,
        route_kind: str = "generation",
        usage_recorder: Optional[UsageRecorder] = None,
    ) -> TaskRequestResult:
        name = task_name(task)
        route = self.routing.get_route(name, route_kind)

        def skipped(reason: str) -> TaskRequestResult:
            return TaskRequestResult(
                output=None,
                trace=RequestTrace(route.provider, route.model, True, reason),
            )

        if route.provider == "heuristic":
            return skipped("provider configured as heuristic")

        if not self.routing.is_provider_configured(route.provider):
            logger.warning(
                "Provider '%s' is not configured for task '%s', using heuristic fallback", route.provider, name
            )
            return skipped(f"provider '{route.provider}' key not configured")

        key = circuit_key(name, route_kind, route.provider, route.model)
        open_reason = self.breaker.check(key)
        if open_reason:
            return skipped(open_reason)

        request = CompletionRequest(
            provider=route.provider,
            model=route.model,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            temperature=route.temperature,
            max_tokens=max_tokens or TASK_MAX_TOKENS.get(name),
            timeout_ms=timeout_ms or TASK_REQUEST_TIMEOUT_MS.get(name),
        )
        try:
            completion = await self.client.complete(request)
        except Exception as exc:
            reason = str(exc) or exc.__class__.__name__
            logger.warning("Task '%s' failed on %s/%s: %s", name, route.provider, route.model, reason)
            self.breaker.record_failure(name, key, reason)
            return skipped(reason)

        if usage_recorder is not None:
            usage_recorder(completion.usage)
        self.breaker.record_success(key)
        return TaskRequestResult(
            output=completion.output,
            trace=RequestTrace(route.provider, route.model, False, None),
            usage=completion.usage,
        )

    async def request_variants(
        self,
        task: Any,
        system_prompt: str,
        user_prompt: str,
        variation_count: int,
        usage_recorder: Optional[UsageRecorder] = None,
    ) -> List[TaskRequestResult]:
        """
        Request up to `variation_count` (1-8) candidates one after another.

        Stops early when the circuit reports open, or when consecutive
        abort-like or JSON-parse-like failures reach the task's fail-fast
        limit. A successful variant resets both counters.
        """
        name = task_name(task)
        total = max(1, min(MAX_VARIANTS, variation_count))
        responses: List[TaskRequestResult] = []
        abort_failures = 0
        json_failures = 0

        for index in range(total):
            prompt = f"{user_prompt}\n\n{variation_directive(name, index, total)}"
            response = await self.request(name, system_prompt, prompt, usage_recorder=usage_recorder)
            responses.append(response)

            if response.output is not None:
                abort_failures = 0
                json_failures = 0
                continue

            reason = response.trace.fallback_reason
            if is_circuit_open_reason(reason):
                break
            if is_abort_like(reason):
                abort_failures += 1
                if abort_failures >= ABORT_FAIL_FAST_LIMIT.get(name, 2):
                    logger.info("Task '%s' stopped after %d abort-like failures", name, abort_failures)
                    break
                continue
            if is_json_parse_like(reason):
                json_failures += 1
                if json_failures >= JSON_PARSE_FAIL_FAST_LIMIT.get(name, 2):
                    logger.info("Task '%s' stopped after %d JSON parse failures", name, json_failures)
                    break

        return responses


def summarize_variant_trace(results: List[TaskRequestResult]) -> RequestTrace:
    if not results:
        return RequestTrace("heuristic", "heuristic-v1", True, "no_variant_result")

    preferred = next((item.trace for item in results if not item.trace.used_heuristic_fallback), results[0].trace)
    reasons: List[str] = []
    for item in results:
        reason = item.trace.fallback_reason
        if reason and reason not in reasons:
            reasons.append(reason)
    return RequestTrace(
        provider=preferred.provider,
        model=preferred.model,
        used_heuristic_fallback=all(item.trace.used_heuristic_fallback for item in results),
        fallback_reason=" | ".join(reasons) if reasons else None,
    )


def _compact_value(value: Any, depth: int = 0) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)) or depth >= 12:
        return value
    if isinstance(value, (list, tuple)):
        return [_compact_value(item, depth + 1) for item in value]
    if isinstance(value, dict):
        return {str(key): _compact_value(item, depth + 1) for key, item in value.items()}
    return str(value)


def compact_variant_record(value: Any) -> Optional[Dict[str, Any]]:
    """JSON-safe copy of a model output for diagnostics; None unless it is an object."""
    if not isinstance(value, dict) or not value:
        return None
    return _compact_value(value)


def build_initial_variant_diagnostics(results: List[TaskRequestResult]) -> List[VariantDiagnostics]:
    return [
        VariantDiagnostics(
            variant=index + 1,
            status="ok" if result.output is not None else "request_failed",
            reason=None if result.output is not None else result.trace.fallback_reason,
            model_output=compact_variant_record(result.output),
            estimated_cost_usd=result.usage.estimated_cost_usd,
            actual_cost_usd=result.usage.actual_cost_usd,
            prompt_tokens=result.usage.prompt_tokens,
            completion_tokens=result.usage.completion_tokens,
            total_tokens=result.usage.total_tokens,
        )
        for index, result in enumerate(results)
    ]
