"""Blend heuristic and judge verdicts; cap displayed scores the judge does not back."""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Any, Mapping, Optional, Union

from core import QualityEvaluation, QualitySubscores, TaskScoreWeights, task_name
from generation.evidence import collect_task_string_blocks
from generation.guardrails import repeated_text_ratio
from generation.sanitize import has_cta_intent
from generation.text import contains_ellipsis_artifact, round_score


DEFAULT_JUDGE_WEIGHT = 0.72
DEFAULT_HEURISTIC_WEIGHT = 0.28

WEAK_AXIS_FLOOR = 3.0
WEAK_AXIS_PENALTY = 0.06


@dataclass(frozen=True)
class ScoreWeights:
    judge: float
    heuristic: float


@dataclass(frozen=True)
class InflationGuardResult:
    display_score: float
    applied: bool
    reason: Optional[str] = None


def _weight(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return default
    return max(0.05, min(0.95, float(value)))


def normalize_score_weights(weights: Union[TaskScoreWeights, Mapping[str, Any], None] = None) -> ScoreWeights:
    """Clamp each weight to [0.05, 0.95] and rescale so the pair sums to 1."""
    if weights is None:
        raw_judge, raw_heuristic = DEFAULT_JUDGE_WEIGHT, DEFAULT_HEURISTIC_WEIGHT
    elif isinstance(weights, Mapping):
        raw_judge, raw_heuristic = weights.get("judge"), weights.get("heuristic")
    else:
        raw_judge, raw_heuristic = weights.judge, weights.heuristic

    judge = _weight(raw_judge, DEFAULT_JUDGE_WEIGHT)
    heuristic = _weight(raw_heuristic, DEFAULT_HEURISTIC_WEIGHT)
    total = judge + heuristic
    return ScoreWeights(judge=round(judge / total, 3), heuristic=round(heuristic / total, 3))


def clamp_subscores(subscores: QualitySubscores) -> QualitySubscores:
    return QualitySubscores(
        clarity=round_score(subscores.clarity),
        depth=round_score(subscores.depth),
        originality=round_score(subscores.originality),
        applicability=round_score(subscores.applicability),
        retention_potential=round_score(subscores.retention_potential),
    )


def composite_score(
    heuristic: QualityEvaluation,
    judge: QualityEvaluation,
    weights: Union[TaskScoreWeights, Mapping[str, Any], None] = None,
) -> float:
    """Weighted blend, minus a small penalty when the judge's weakest axis is below 3."""
    normalized = normalize_score_weights(weights)
    weak_penalty = max(0.0, WEAK_AXIS_FLOOR - judge.subscores.minimum()) * WEAK_AXIS_PENALTY
    return round_score(judge.overall * normalized.judge + heuristic.overall * normalized.heuristic - weak_penalty)


def apply_inflation_guard(
    heuristic: QualityEvaluation, judge: QualityEvaluation, composite: float
) -> InflationGuardResult:
    """
    Cap the display score when the heuristic runs ahead of the judge.

    Only the reported number changes; ranking always uses the raw
    composite.
    """
    min_judge = judge.subscores.minimum()
    display = composite
    reason: Optional[str] = None

    if heuristic.overall >= 9.7 and judge.overall <= 8.6:
        display = round_score(min(display, judge.overall + 0.45))
        reason = "high_heuristic_without_judge_support"
    elif heuristic.subscores.minimum() >= 9.2 and min_judge < 8.6:
        display = round_score(min(display, judge.overall + 0.35))
        reason = "subscore_mismatch_guard"

    if display > 9.95 and not (judge.overall >= 9.7 and min_judge >= 9.1):
        display = 9.45
        reason = "hard_cap_without_judge_confirmation"

    return InflationGuardResult(display_score=round_score(display), applied=reason is not None, reason=reason)


def publishability_score(
    task: Any, payload: Mapping[str, Any], heuristic: QualityEvaluation, judge: QualityEvaluation
) -> float:
    """How ready the copy is to ship as-is: judge-weighted, with penalties for artifacts and missing intent."""
    name = task_name(task)
    score = (
        judge.overall * 0.34
        + judge.subscores.applicability * 0.24
        + judge.subscores.clarity * 0.15
        + judge.subscores.retention_potential * 0.11
        + heuristic.subscores.applicability * 0.1
        + heuristic.subscores.clarity * 0.06
    )

    texts = [block.text for block in collect_task_string_blocks(name, payload)]
    if any(contains_ellipsis_artifact(text) for text in texts):
        score -= 1.1

    repetition = repeated_text_ratio(texts)
    if repetition >= 0.22:
        score -= 0.55
    elif repetition >= 0.14:
        score -= 0.25

    if name == "reels":
        clips = list(payload.get("clips") or [])
        if not all(has_cta_intent(str(clip.get("caption") or ""), "comment") for clip in clips):
            score -= 0.35
    elif name == "newsletter":
        cta = next((section for section in payload.get("sections") or [] if section.get("type") == "cta"), None)
        if cta is None or not has_cta_intent(str(cta.get("text") or ""), "lead"):
            score -= 0.35
    elif name == "linkedin":
        if not has_cta_intent(str(payload.get("ctaQuestion") or ""), "comment"):
            score -= 0.3
    elif name == "x":
        posts = list(payload.get("standalone") or []) + list(payload.get("thread") or [])
        if not any(has_cta_intent(str(post), "share") for post in posts):
            score -= 0.3

    return round_score(score)
