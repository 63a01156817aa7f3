"""Per-task request budgets, quality plans and acceptance thresholds."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from core import GenerationProfile, task_name
from generation.text import round_score


TASK_MAX_TOKENS = {"analysis": 6500, "reels": 5200, "newsletter": 7000, "linkedin": 5000, "x": 7000}
TASK_REQUEST_TIMEOUT_MS = {
    "analysis": 300_000,
    "reels": 240_000,
    "newsletter": 240_000,
    "linkedin": 220_000,
    "x": 240_000,
}
JUDGE_CONTEXT_MAX_CHARS = {"analysis": 10_000, "reels": 7500, "newsletter": 8500, "linkedin": 6500, "x": 6500}
TASK_JUDGE_TIMEOUT_MS = {
    "analysis": 120_000,
    "reels": 95_000,
    "newsletter": 95_000,
    "linkedin": 90_000,
    "x": 90_000,
}

ABORT_FAIL_FAST_LIMIT = {"analysis": 1, "reels": 2, "newsletter": 2, "linkedin": 2, "x": 2}
JSON_PARSE_FAIL_FAST_LIMIT = {"analysis": 2, "reels": 2, "newsletter": 2, "linkedin": 2, "x": 2}

TASK_QUALITY_THRESHOLD = {"analysis": 7.2, "reels": 7.5, "newsletter": 7.8, "linkedin": 7.4, "x": 7.4}
TASK_PUBLISHABILITY_THRESHOLD = {"analysis": 7.1, "reels": 7.7, "newsletter": 7.9, "linkedin": 7.5, "x": 7.5}

# minimum reconstruction signal before a coerced payload is trusted
COERCE_ACCEPTANCE_THRESHOLD = {"analysis": 3, "reels": 3, "newsletter": 2, "linkedin": 2, "x": 2}

_QUALITY_BOOST = {"analysis": 0.4, "reels": 0.3, "newsletter": 0.25}
_PUBLISHABILITY_BOOST = {"analysis": 0.2, "reels": 0.25, "newsletter": 0.2}
_THRESHOLD_CEILING = 9.2


@dataclass(frozen=True)
class QualityPlan:
    variation_count: int
    refine_passes: int


def quality_plan(profile: GenerationProfile, task: Any) -> QualityPlan:
    """Clamp the requested variant/refine budget to what the quality mode allows."""
    name = task_name(task)
    is_max = profile.quality.mode == "max"
    min_variations = 2 if is_max else 1
    if is_max:
        variation_cap = 3 if name == "analysis" else 4
    else:
        variation_cap = 1 if name == "analysis" else 2
    refine_cap = 3 if is_max else 1
    return QualityPlan(
        variation_count=max(min_variations, min(variation_cap, min(8, profile.quality.variation_count))),
        refine_passes=max(1, min(refine_cap, min(3, profile.quality.refine_passes))),
    )


def quality_threshold(task: Any, profile: GenerationProfile) -> float:
    name = task_name(task)
    base = TASK_QUALITY_THRESHOLD[name]
    if profile.quality.mode != "max":
        return base
    return round_score(min(_THRESHOLD_CEILING, base + _QUALITY_BOOST.get(name, 0.2)))


def publishability_threshold(task: Any, profile: GenerationProfile) -> float:
    name = task_name(task)
    base = TASK_PUBLISHABILITY_THRESHOLD[name]
    if profile.quality.mode != "max":
        return base
    return round_score(min(_THRESHOLD_CEILING, base + _PUBLISHABILITY_BOOST.get(name, 0.15)))
