"""Provider routing table and per-route circuit breaker."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from threading import Lock
import time
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from config import AIRoutingSettings, is_provider_configured
from core import AI_TASKS, AIRoute, task_name
from intelligence.llm import default_model_for


logger = logging.getLogger(__name__)

CIRCUIT_OPEN_MS = 90_000
RATE_LIMIT_CIRCUIT_OPEN_MS = 30_000
JSON_PARSE_CIRCUIT_OPEN_MS = 60_000

CIRCUIT_ABORT_THRESHOLD = {"analysis": 1, "reels": 2, "newsletter": 2, "linkedin": 2, "x": 2}
CIRCUIT_JSON_PARSE_THRESHOLD = {"analysis": 2, "reels": 2, "newsletter": 2, "linkedin": 2, "x": 2}

CIRCUIT_OPEN_PREFIX = "circuit_open_until_"

FAILURE_ABORT = "abort"
FAILURE_RATE_LIMIT = "rate_limit"
FAILURE_JSON_PARSE = "json_parse"
FAILURE_OTHER = "other"

_ROUTE_KINDS = ("generation", "judge")


def is_abort_like(reason: Optional[str]) -> bool:
    if not reason:
        return False
    lowered = reason.lower()
    return any(
        marker in lowered
        for marker in ("aborted", "aborterror", "timeout", "timed out", "terminated", "cancelled", "canceled")
    )


def is_rate_limit_like(reason: Optional[str]) -> bool:
    if not reason:
        return False
    lowered = reason.lower()
    return "429" in lowered or "rate limit" in lowered or "quota" in lowered


def is_json_parse_like(reason: Optional[str]) -> bool:
    if not reason:
        return False
    lowered = reason.lower()
    return "json" in lowered and any(
        marker in lowered
        for marker in ("unexpected end", "unterminated string", "invalid json", "expected ','", "expected '}'")
    )


def is_circuit_open_reason(reason: Optional[str]) -> bool:
    return isinstance(reason, str) and reason.startswith(CIRCUIT_OPEN_PREFIX)


def classify_failure(reason: Optional[str]) -> str:
    """Abort checks run first: a timeout while streaming JSON is still an abort."""
    if is_abort_like(reason):
        return FAILURE_ABORT
    if is_json_parse_like(reason):
        return FAILURE_JSON_PARSE
    if is_rate_limit_like(reason):
        return FAILURE_RATE_LIMIT
    return FAILURE_OTHER


def circuit_key(task: Any, route_kind: str, provider: str, model: str) -> str:
    return f"{task_name(task)}:{route_kind}:{provider}:{model}"


def _wall_clock_ms() -> float:
    return time.time() * 1000


@dataclass(frozen=True)
class CircuitState:
    abort_failures: int = 0
    json_parse_failures: int = 0
    open_until_ms: float = 0
    reason: str = ""


class CircuitBreaker:
    """Thread-safe failure tracker keyed by `task:routeKind:provider:model`."""

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or _wall_clock_ms
        self._states: Dict[str, CircuitState] = {}
        self._lock = Lock()

    def now_ms(self) -> float:
        return self._clock()

    def check(self, key: str) -> Optional[str]:
        """Return the open-circuit reason, or None when calls may proceed. Expired entries are dropped."""
        with self._lock:
            state = self._states.get(key)
            if state is None:
                return None
            now = self._clock()
            if state.open_until_ms > now:
                opened_until = datetime.fromtimestamp(state.open_until_ms / 1000, tz=timezone.utc)
                return f"{CIRCUIT_OPEN_PREFIX}{opened_until.isoformat(timespec='milliseconds')}"
            if 0 < state.open_until_ms <= now:
                del self._states[key]
                logger.info("Circuit closed for %s", key)
            return None

    def record_success(self, key: str) -> None:
        with self._lock:
            self._states.pop(key, None)

    def record_failure(self, task: Any, key: str, reason: str) -> str:
        """Update counters for one failed call and return the failure kind."""
        name = task_name(task)
        kind = classify_failure(reason)
        with self._lock:
            current = self._states.get(key) or CircuitState()
            now = self._clock()

            if kind == FAILURE_ABORT:
                count = current.abort_failures + 1
                opens = count >= CIRCUIT_ABORT_THRESHOLD.get(name, 2)
                self._states[key] = CircuitState(
                    abort_failures=count,
                    open_until_ms=now + CIRCUIT_OPEN_MS if opens else 0,
                    reason=reason,
                )
            elif kind == FAILURE_JSON_PARSE:
                count = current.json_parse_failures + 1
                opens = count >= CIRCUIT_JSON_PARSE_THRESHOLD.get(name, 2)
                self._states[key] = CircuitState(
                    json_parse_failures=count,
                    open_until_ms=now + JSON_PARSE_CIRCUIT_OPEN_MS if opens else 0,
                    reason=reason,
                )
            elif kind == FAILURE_RATE_LIMIT:
                opens = True
                self._states[key] = CircuitState(open_until_ms=now + RATE_LIMIT_CIRCUIT_OPEN_MS, reason=reason)
            else:
                opens = False
                self._states.pop(key, None)

        if opens:
            logger.warning("Circuit opened for %s after %s failure: %s", key, kind, reason)
        return kind

    def state(self, key: str) -> Optional[CircuitState]:
        with self._lock:
            return self._states.get(key)

    def reset(self) -> None:
        with self._lock:
            self._states.clear()


def preferred_judge_provider(configured: Callable[[str], bool] = is_provider_configured) -> str:
    if configured("openai"):
        return "openai"
    if configured("openrouter"):
        return "openrouter"
    return "heuristic"


class RoutingTable:
    """Thread-safe `(task, routeKind) -> AIRoute` map."""

    def __init__(
        self,
        routes: Optional[Mapping[Tuple[str, str], AIRoute]] = None,
        *,
        configured: Callable[[str], bool] = is_provider_configured,
    ) -> None:
        self._routes: Dict[Tuple[str, str], AIRoute] = {}
        self._configured = configured
        self._lock = Lock()
        for task in AI_TASKS:
            for kind in _ROUTE_KINDS:
                self._routes[(task, kind)] = AIRoute()
        for key, route in dict(routes or {}).items():
            self._routes[(task_name(key[0]), key[1])] = route

    @classmethod
    def from_settings(
        cls,
        settings: Optional[AIRoutingSettings] = None,
        *,
        configured: Callable[[str], bool] = is_provider_configured,
    ) -> "RoutingTable":
        if settings is None:
            from config import get_routing_settings

            settings = get_routing_settings()

        routes: Dict[Tuple[str, str], AIRoute] = {}
        defaults = {
            "generation": (settings.provider_default, settings.model_default, settings.temperature_default),
            "judge": (
                settings.judge_provider_default or preferred_judge_provider(configured),
                settings.judge_model_default or settings.model_default,
                settings.judge_temperature_default,
            ),
        }
        overrides = {"generation": settings.routing_overrides, "judge": settings.judge_routing_overrides}

        for kind, (provider, model, temperature) in defaults.items():
            provider = str(provider or "heuristic").strip().lower()
            default_model = str(model or "").strip() or default_model_for(provider)
            for task in AI_TASKS:
                patch = dict(overrides[kind].get(task) or {})
                task_provider = str(patch.get("provider") or provider).strip().lower()
                task_model = str(patch.get("model") or "").strip() or (
                    default_model if task_provider == provider else default_model_for(task_provider)
                )
                routes[(task, kind)] = AIRoute(
                    provider=task_provider,
                    model=task_model,
                    temperature=patch.get("temperature", temperature),
                )
        return cls(routes, configured=configured)

    def get_route(self, task: Any, route_kind: str = "generation") -> AIRoute:
        with self._lock:
            return self._routes[(task_name(task), route_kind)].model_copy(deep=True)

    def set_route(self, task: Any, route_kind: str = "generation", **patch: Any) -> AIRoute:
        """Patch provider/model/temperature; an empty model keeps the current one."""
        key = (task_name(task), route_kind)
        with self._lock:
            current = self._routes[key]
            route = AIRoute(
                provider=patch.get("provider") or current.provider,
                model=str(patch.get("model") or "").strip() or current.model,
                temperature=patch.get("temperature", current.temperature),
            )
            self._routes[key] = route
            return route.model_copy(deep=True)

    def is_provider_configured(self, provider: str) -> bool:
        return self._configured(provider)

    def snapshot(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        with self._lock:
            result: Dict[str, Dict[str, Dict[str, Any]]] = {kind: {} for kind in _ROUTE_KINDS}
            for (task, kind), route in self._routes.items():
                result[kind][task] = route.model_dump()
            return result


__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "RoutingTable",
    "circuit_key",
    "classify_failure",
    "is_abort_like",
    "is_circuit_open_reason",
    "is_json_parse_like",
    "is_rate_limit_like",
    "preferred_judge_provider",
]
