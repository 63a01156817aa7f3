"""Generation core: routing, requests, normalization, guardrails, scoring and refinement."""

from .client import CompletionRequest, CompletionResult, LLMCompletionClient
from .evidence import EvidenceMap, build_evidence_map
from .guardrails import ValidationResult, blocking_issues, validate_payload
from .judge import QualityJudge
from .prompts import PromptCatalog
from .refinement import QualityRefiner, QualityRefineResult
from .requester import CompletionRequester, TaskRequestResult, UsageMetrics
from .routing import CircuitBreaker, RoutingTable

__all__ = [
    "CircuitBreaker",
    "CompletionRequest",
    "CompletionRequester",
    "CompletionResult",
    "EvidenceMap",
    "LLMCompletionClient",
    "PromptCatalog",
    "QualityJudge",
    "QualityRefineResult",
    "QualityRefiner",
    "RoutingTable",
    "TaskRequestResult",
    "UsageMetrics",
    "ValidationResult",
    "blocking_issues",
    "build_evidence_map",
    "validate_payload",
]
