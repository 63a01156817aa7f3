"""Content guardrails: per-task rule checks against the evidence map, with a fixed blocking table."""

from __future__ import annotations

from dataclasses import dataclass, field
import math
import re
import unicodedata
from typing import Any, Dict, List, Mapping, Optional, Sequence

from core import TaskGenerationConfig, TranscriptSegment, default_generation_profile, task_name
from generation.evidence import (
    EvidenceMap,
    build_source_attribution,
    collect_task_string_blocks,
    normalize_for_numeric_guard,
)
from generation.requester import compact_variant_record
from generation.sanitize import has_cta_intent, min_by_length
from generation.text import (
    contains_ellipsis_artifact,
    count_ungrounded_numeric_tokens,
    ms_to_timestamp,
    opening_hook_strength,
    timestamp_to_ms,
    transcript_window_text,
)


MAX_REPORTED_ISSUES = 8


@dataclass(frozen=True)
class NumericGuardLimits:
    soft: int
    hard: int
    payload_overflow_cap: int


_NUMERIC_LIMITS = {
    "analysis": NumericGuardLimits(2, 5, 6),
    "reels": NumericGuardLimits(2, 4, 5),
    "newsletter": NumericGuardLimits(3, 5, 7),
    "linkedin": NumericGuardLimits(2, 4, 5),
    "x": NumericGuardLimits(3, 6, 7),
}

_ILLUSTRATIVE_RE = re.compile(
    r"(por exemplo|exemplo|hipotetic|simulac|cenario|suponha|imagine|digamos|estimativa|ilustrativo|caso ficticio)",
    re.IGNORECASE,
)
_HARD_METRIC_RE = re.compile(
    r"(mrr|arr|cac|ltv|nps|roi|churn|taxa|convers|fatur|receita|margem|ticket|clientes|contratos|dias|meses|anos|"
    r"percentual|%|r\$)",
    re.IGNORECASE,
)
_MECHANISM_RE = re.compile(r"(porque|causa|mecanismo|alavanca|efeito|consequencia|logo)", re.IGNORECASE)
_PROOF_RE = re.compile(r"(\d|r\$|%|exemplo|caso|dados|metrica|resultado)", re.IGNORECASE)
_FRAMEWORK_RE = re.compile(r"(framework|passo|etapa|checklist|1\)|2\)|3\)|primeiro|segundo|terceiro)", re.IGNORECASE)
_SPECIFIC_QUESTION_RE = re.compile(r"(qual|quanto|quando|em quantos|que metrica|que resultado)", re.IGNORECASE)

# Matched in order; first hit decides. Anything unlisted is soft.
_BLOCKING_TABLE = (
    ("missing_cta_intent", False),
    ("weak_intent", False),
    ("low_specificity", False),
    ("invalid_timestamp_window", True),
    ("duration_too_short", True),
    ("duration_too_long", True),
    ("truncation_artifact", True),
    ("exceeds_280", True),
    ("missing_application", True),
    ("sections: missing_cta", True),
    ("headline: too_short", True),
    ("subheadline: too_short", True),
    ("hook: too_short", True),
    ("must_end_with_question", False),
    ("body: too_short_for_linkedin", True),
    ("thread: too_short", True),
    ("standalone: too_few", False),
    ("numeric_claim_outside_source_excessive", True),
    ("numeric_claim_outside_source_hard", True),
)


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    issues: List[str]
    attribution: Dict[str, Any] = field(default_factory=dict)
    # classified over every issue raised, not only the reported ones
    blocking: List[str] = field(default_factory=list)


def numeric_guard_limits(task: Any) -> NumericGuardLimits:
    return _NUMERIC_LIMITS[task_name(task)]


def has_illustrative_numeric_context(text: str) -> bool:
    return bool(_ILLUSTRATIVE_RE.search(text))


def has_hard_metric_context(text: str) -> bool:
    return bool(_HARD_METRIC_RE.search(text))


def canonical_text(text: str) -> str:
    lowered = unicodedata.normalize("NFD", str(text or "").lower())
    stripped = "".join(ch for ch in lowered if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", re.sub(r"[^a-z0-9\s]", " ", stripped)).strip()


def repeated_text_ratio(values: Sequence[str]) -> float:
    normalized = [item for item in (canonical_text(value) for value in values) if len(item) >= 12]
    if len(normalized) <= 1:
        return 0.0
    return 1 - len(set(normalized)) / len(normalized)


def is_blocking_issue(issue: str) -> bool:
    lowered = issue.lower()
    for marker, blocking in _BLOCKING_TABLE[:3]:
        if marker in lowered:
            return blocking
    for marker, blocking in _BLOCKING_TABLE[3:]:
        if marker in issue:
            return blocking
    return False


def blocking_issues(validation: ValidationResult) -> List[str]:
    return list(validation.blocking)


def _numeric_issues(task: Any, payload: Mapping[str, Any], evidence_map: EvidenceMap) -> List[str]:
    issues: List[str] = []
    limits = numeric_guard_limits(task)
    soft_overflows = 0

    for block in collect_task_string_blocks(task, payload):
        text = block.text.strip()
        if not text:
            continue
        if contains_ellipsis_artifact(text):
            issues.append(f"{block.path}: truncation_artifact")
            continue

        guarded = normalize_for_numeric_guard(task, block.path, text)
        ungrounded = count_ungrounded_numeric_tokens(guarded, evidence_map.numbers)
        illustrative = has_illustrative_numeric_context(guarded)
        hard_metric = has_hard_metric_context(guarded)
        soft_limit = limits.soft + (1 if illustrative else 0)
        hard_limit = limits.hard + (2 if illustrative and not hard_metric else 0)

        if ungrounded > hard_limit:
            issues.append(f"{block.path}: numeric_claim_outside_source_hard")
            continue
        if ungrounded > soft_limit:
            soft_overflows += 1
            kind = "numeric_claim_example_context" if illustrative and not hard_metric else "numeric_claim_outside_source"
            issues.append(f"{block.path}: {kind}")

    if soft_overflows >= limits.payload_overflow_cap:
        issues.append("payload: numeric_claim_outside_source_excessive")
    return issues


def _reels_issues(payload: Mapping[str, Any], segments: Sequence[TranscriptSegment], config: TaskGenerationConfig) -> List[str]:
    issues: List[str] = []
    starts = {ms_to_timestamp(segment.start_ms) for segment in segments}
    ends = {ms_to_timestamp(segment.end_ms) for segment in segments}
    total_sec = max(1, round(segments[-1].end_ms / 1000)) if segments else 0
    min_duration_sec = 14 if total_sec >= 90 else 10 if total_sec >= 45 else 6
    min_caption = min_by_length(config.length, 140, 190, 260)
    min_hashtags = 5 if config.target_outcome in ("followers", "shares") else 4

    for idx, clip in enumerate(list(payload.get("clips") or [])):
        start, end = str(clip.get("start") or ""), str(clip.get("end") or "")
        duration_ms = (timestamp_to_ms(end) or 0) - (timestamp_to_ms(start) or 0)
        duration_sec = round(duration_ms / 1000)
        if start not in starts or end not in ends or duration_ms <= 0:
            issues.append(f"clips[{idx}]: invalid_timestamp_window")
        if duration_sec < min_duration_sec:
            issues.append(f"clips[{idx}]: duration_too_short")
        if duration_sec > 65:
            issues.append(f"clips[{idx}]: duration_too_long")
        if len(str(clip.get("title") or "").strip()) < 16:
            issues.append(f"clips[{idx}]: title_too_short")
        caption = str(clip.get("caption") or "")
        if len(caption.strip()) < min_caption:
            issues.append(f"clips[{idx}]: caption_too_short")
        if len(str(clip.get("whyItWorks") or "").strip()) < 90:
            issues.append(f"clips[{idx}]: rationale_too_shallow")
        if len(list(clip.get("hashtags") or [])) < min_hashtags:
            issues.append(f"clips[{idx}]: hashtag_count_low")
        if not has_cta_intent(caption, config.cta_mode):
            issues.append(f"clips[{idx}]: missing_cta_intent")
        window_text = transcript_window_text(segments, start, end)
        if window_text and opening_hook_strength(window_text) < 2.5:
            issues.append(f"clips[{idx}]: weak_opening_hook")
    return issues


def _newsletter_issues(payload: Mapping[str, Any], config: TaskGenerationConfig) -> List[str]:
    issues: List[str] = []
    sections = list(payload.get("sections") or [])
    application = next((section for section in sections if section.get("type") == "application"), None)
    cta = next((section for section in sections if section.get("type") == "cta"), None)
    insights = [str(section.get("text") or "") for section in sections if section.get("type") == "insight"]

    if application is None:
        issues.append("sections: missing_application")
    if cta is None:
        issues.append("sections: missing_cta")
    if len(str(payload.get("headline") or "").strip()) < 24:
        issues.append("headline: too_short")
    if len(str(payload.get("subheadline") or "").strip()) < 48:
        issues.append("subheadline: too_short")
    if len(insights) < min_by_length(config.length, 2, 3, 4):
        issues.append("sections: insight_count_low")
    bullets = list(application.get("bullets") or []) if application else []
    if application is not None and len(bullets) < min_by_length(config.length, 3, 4, 5):
        issues.append("sections: application_bullets_low")
    if repeated_text_ratio(insights) >= 0.2:
        issues.append("sections: repeated_insights")
    if sum(1 for text in insights if _MECHANISM_RE.search(text)) < min(2, len(insights)):
        issues.append("sections: weak_causal_mechanism")
    if any(len(str(bullet).strip()) < 28 for bullet in bullets):
        issues.append("sections: checklist_bullets_too_generic")
    if config.cta_mode != "none" and (cta is None or not has_cta_intent(str(cta.get("text") or ""), config.cta_mode)):
        issues.append("cta: missing_intent")
    return issues


def _linkedin_issues(payload: Mapping[str, Any], config: TaskGenerationConfig) -> List[str]:
    issues: List[str] = []
    body = [str(paragraph) for paragraph in list(payload.get("body") or [])]
    question = str(payload.get("ctaQuestion") or "").strip()

    if len(body) < min_by_length(config.length, 4, 5, 7):
        issues.append("body: too_short_for_linkedin")
    if len(str(payload.get("hook") or "").strip()) < 35:
        issues.append("hook: too_short")
    if not question.endswith("?"):
        issues.append("ctaQuestion: must_end_with_question")
    if not has_cta_intent(question, "comment" if config.cta_mode == "none" else config.cta_mode):
        issues.append("ctaQuestion: weak_intent")
    if not any(_PROOF_RE.search(paragraph) for paragraph in body):
        issues.append("body: missing_proof_layer")
    if not any(_FRAMEWORK_RE.search(paragraph) for paragraph in body):
        issues.append("body: missing_framework_layer")
    if not _SPECIFIC_QUESTION_RE.search(question):
        issues.append("ctaQuestion: low_specificity")
    return issues


def _x_issues(payload: Mapping[str, Any], config: TaskGenerationConfig) -> List[str]:
    issues: List[str] = []
    standalone = [str(post) for post in list(payload.get("standalone") or [])]
    thread = [str(post) for post in list(payload.get("thread") or [])]
    min_chars = min_by_length(config.length, 45, 65, 85)

    if len(thread) < min_by_length(config.length, 3, 4, 5):
        issues.append("thread: too_short")
    if len(standalone) < min_by_length(config.length, 2, 3, 4):
        issues.append("standalone: too_few")
    for idx, post in enumerate(standalone + thread):
        if len(post) > 280:
            issues.append(f"x_post[{idx}]: exceeds_280")
        if len(post) < min_chars:
            issues.append(f"x_post[{idx}]: too_short")
    if not any(has_cta_intent(post, config.cta_mode) for post in standalone + thread):
        issues.append("x: missing_cta_intent")
    return issues


def _analysis_issues(payload: Mapping[str, Any], segments: Sequence[TranscriptSegment], config: TaskGenerationConfig) -> List[str]:
    issues: List[str] = []
    count = len(segments)
    checks = (
        ("topics", max(2, min(4, math.ceil(count / 18)))),
        ("retentionMoments", max(1, min(3, math.ceil(count / 24)))),
        ("recommendations", min_by_length(config.length, 3, 4, 5)),
        ("weakSpots", min_by_length(config.length, 1, 2, 3)),
        ("editorialAngles", min_by_length(config.length, 2, 3, 4)),
    )
    for key, minimum in checks:
        if len(list(payload.get(key) or [])) < minimum:
            issues.append(f"{key}: too_few")
    return issues


def validate_payload(
    task: Any,
    payload: Mapping[str, Any],
    evidence_map: EvidenceMap,
    segments: Sequence[TranscriptSegment],
    config: Optional[TaskGenerationConfig] = None,
) -> ValidationResult:
    """
    Evaluate a sanitized candidate against the task's rules.

    Issues are `path: code` strings, deduplicated in first-seen order and
    capped at eight for reporting; `blocking` is classified before the cap so
    a late blocking issue is never hidden. `ok` only when none were raised.
    Attribution maps every text field to its best-supporting evidence lines.
    """
    name = task_name(task)
    config = config or default_generation_profile().task(name)
    issues = _numeric_issues(name, payload, evidence_map)

    if name == "reels":
        issues.extend(_reels_issues(payload, segments, config))
    elif name == "newsletter":
        issues.extend(_newsletter_issues(payload, config))
    elif name == "linkedin":
        issues.extend(_linkedin_issues(payload, config))
    elif name == "x":
        issues.extend(_x_issues(payload, config))
    elif name == "analysis":
        issues.extend(_analysis_issues(payload, segments, config))

    unique = list(dict.fromkeys(issues))
    return ValidationResult(
        ok=not unique,
        issues=unique[:MAX_REPORTED_ISSUES],
        attribution=build_source_attribution(name, payload, evidence_map),
        blocking=[issue for issue in unique if is_blocking_issue(issue)],
    )


def output_with_evidence(
    task: Any,
    payload: Mapping[str, Any],
    evidence_map: EvidenceMap,
    segments: Sequence[TranscriptSegment],
    validation: Optional[ValidationResult] = None,
    config: Optional[TaskGenerationConfig] = None,
) -> Dict[str, Any]:
    """Compacted payload annotated with `_sourceAttribution` and `_validation` for diagnostics."""
    result = validation or validate_payload(task, payload, evidence_map, segments, config)
    return {
        **(compact_variant_record(dict(payload)) or {}),
        "_sourceAttribution": result.attribution,
        "_validation": {"ok": result.ok, "issues": list(result.issues)},
    }
