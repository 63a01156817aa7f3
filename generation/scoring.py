"""Deterministic heuristic rubric: five axes from payload shape and text statistics."""

from __future__ import annotations

import re
from typing import Any, Callable, Dict, Mapping, Sequence

from core import QualityEvaluation, QualitySubscores, task_name
from generation.sanitize import is_generic_token
from generation.text import clean_token, round_score


_CORTE_TITLE_RE = re.compile(r"^corte\s+\d+", re.IGNORECASE)
_REELS_CTA_RE = re.compile(r"(comente|compartilhe|direct|responda)", re.IGNORECASE)
_LINKEDIN_PRACTICAL_RE = re.compile(
    r"(exemplo|passo|aplique|na pratica|resultado|erro|framework|metodo)", re.IGNORECASE
)
_X_ACTION_RE = re.compile(r"(passo|aplique|faca|execute|teste)", re.IGNORECASE)


def avg_length(values: Sequence[str]) -> float:
    if not values:
        return 0.0
    return sum(len(value) for value in values) / len(values)


def unique_ratio(values: Sequence[str]) -> float:
    if not values:
        return 1.0
    normalized = {clean_token(re.sub(r"\s+", " ", value.lower())) for value in values}
    normalized.discard("")
    return len(normalized) / len(values)


def average_subscores(subscores: QualitySubscores) -> float:
    values = subscores.values()
    return round_score(sum(values) / len(values))


def _subscores(clarity: float, depth: float, originality: float, applicability: float, retention: float) -> QualitySubscores:
    return QualitySubscores(
        clarity=round_score(clarity),
        depth=round_score(depth),
        originality=round_score(originality),
        applicability=round_score(applicability),
        retention_potential=round_score(retention),
    )


def subscores_analysis(payload: Mapping[str, Any]) -> QualitySubscores:
    thesis = str(payload.get("thesis") or "")
    topics = [str(item) for item in payload.get("topics") or []]
    recommendations = [str(item) for item in payload.get("recommendations") or []]
    structure = payload.get("structure") or {}
    generic_topics = sum(1 for topic in topics if is_generic_token(topic))
    avg_rec = avg_length(recommendations)
    structure_filled = sum(
        1
        for key in ("problem", "tension", "insight", "application")
        if len(str(structure.get(key) or "").strip()) >= 10
    )
    retention_count = len(payload.get("retentionMoments") or [])
    angles_count = len(payload.get("editorialAngles") or [])
    weak_spots_count = len(payload.get("weakSpots") or [])
    declared_density = float((payload.get("qualityScores") or {}).get("insightDensity") or 0)
    polarity = float(payload.get("polarityScore") or 0)

    return _subscores(
        5.2
        + (1.8 if len(thesis) >= 70 else 1.1 if len(thesis) >= 45 else 0.4)
        + (1.2 if len(topics) >= 4 else 0.5)
        + (0.8 if structure_filled >= 3 else 0.2)
        - generic_topics * 0.25,
        4.8
        + (1.7 if len(recommendations) >= 4 else 0.9)
        + (1.4 if avg_rec >= 80 else 0.8 if avg_rec >= 55 else 0.2)
        + (0.8 if retention_count >= 4 else 0.2)
        + (0.8 if angles_count >= 3 else 0.2),
        4.9
        + (1.3 if unique_ratio(topics) >= 0.85 else 0.7)
        + (0.8 if payload.get("contentType") in ("provocative", "framework") else 0.3)
        - generic_topics * 0.3,
        5.0
        + (1.5 if len(recommendations) >= 4 else 0.8)
        + (1.0 if avg_rec >= 65 else 0.4)
        + (0.7 if structure_filled >= 4 else 0.2)
        + (0.4 if weak_spots_count >= 2 else 0.0),
        4.8
        + (1.4 if 4 <= polarity <= 8 else 0.8)
        + (0.8 if len(thesis) >= 55 else 0.3)
        + (0.9 if retention_count >= 4 else 0.3)
        + (0.5 if declared_density >= 8 else 0.0),
    )


def subscores_reels(payload: Mapping[str, Any]) -> QualitySubscores:
    clips = list(payload.get("clips") or [])
    count = max(1, len(clips))
    captions = [str(clip.get("caption") or "") for clip in clips]
    caption_avg = avg_length(captions)
    why_avg = avg_length([str(clip.get("whyItWorks") or "") for clip in clips])
    hashtags_avg = sum(len(clip.get("hashtags") or []) for clip in clips) / count
    starts_with_corte = sum(1 for clip in clips if _CORTE_TITLE_RE.match(str(clip.get("title") or "")))
    line_break_ratio = sum(1 for caption in captions if "\n" in caption) / count

    return _subscores(
        4.9 + (1.7 if caption_avg >= 220 else 1.1 if caption_avg >= 170 else 0.4) + (1.2 if why_avg >= 90 else 0.6),
        4.6 + (1.8 if why_avg >= 110 else 1.1 if why_avg >= 75 else 0.4) + (1.2 if caption_avg >= 210 else 0.5),
        4.8
        + (1.2 if unique_ratio([str(clip.get("title") or "") for clip in clips]) >= 0.8 else 0.6)
        + (0.7 if starts_with_corte == 0 else 0.0)
        + (0.7 if hashtags_avg >= 4 else 0.2),
        4.8
        + (1.4 if any(_REELS_CTA_RE.search(caption) for caption in captions) else 0.6)
        + (0.8 if hashtags_avg >= 4 else 0.3),
        5.0
        + (1.0 if len(clips) >= 2 else 0.4)
        + (1.0 if line_break_ratio >= 0.8 else 0.3)
        + (0.8 if starts_with_corte == 0 else 0.1),
    )


def subscores_newsletter(payload: Mapping[str, Any]) -> QualitySubscores:
    sections = list(payload.get("sections") or [])
    headline = str(payload.get("headline") or "")
    subheadline = str(payload.get("subheadline") or "")
    insights = [str(section.get("text") or "") for section in sections if section.get("type") == "insight"]
    intro = next((section for section in sections if section.get("type") == "intro"), None)
    application = next((section for section in sections if section.get("type") == "application"), None)
    cta = next((section for section in sections if section.get("type") == "cta"), None)
    bullets_count = len(application.get("bullets") or []) if application else 0
    insights_avg = avg_length(insights)
    intro_len = len(str(intro.get("text") or "")) if intro else 0
    cta_len = len(str(cta.get("text") or "")) if cta else 0

    return _subscores(
        5.0
        + (1.2 if len(headline) >= 45 else 0.6)
        + (1.1 if len(subheadline) >= 70 else 0.4)
        + (0.9 if intro_len >= 130 else 0.3),
        4.9 + (1.4 if len(insights) >= 2 else 0.7) + (1.4 if insights_avg >= 170 else 0.8 if insights_avg >= 120 else 0.3),
        4.8 + (1.2 if unique_ratio(insights) >= 0.8 else 0.6) + (0.8 if len(headline) >= 40 else 0.3),
        5.0 + (1.6 if bullets_count >= 4 else 1.0 if bullets_count >= 3 else 0.4) + (0.8 if cta_len >= 40 else 0.3),
        4.7 + (1.1 if len(headline) >= 40 else 0.5) + (1.0 if len(insights) >= 2 else 0.4) + (0.7 if cta else 0.2),
    )


def subscores_linkedin(payload: Mapping[str, Any]) -> QualitySubscores:
    hook = str(payload.get("hook") or "")
    body = [str(item) for item in payload.get("body") or []]
    question = str(payload.get("ctaQuestion") or "").strip()
    body_avg = avg_length(body)
    practical = sum(1 for paragraph in body if _LINKEDIN_PRACTICAL_RE.search(paragraph))

    return _subscores(
        5.0 + (1.3 if len(hook) >= 45 else 0.6) + (1.2 if body_avg >= 95 else 0.8 if body_avg >= 70 else 0.3),
        4.7 + (1.3 if len(body) >= 5 else 0.7) + (1.4 if practical >= 2 else 0.7),
        4.8 + (1.3 if unique_ratio(body) >= 0.82 else 0.7) + (0.7 if len(hook) >= 35 else 0.2),
        4.9 + (1.6 if practical >= 2 else 0.8) + (0.8 if question.endswith("?") else 0.3),
        4.9 + (1.2 if len(hook) >= 45 else 0.5) + (1.0 if len(body) >= 5 else 0.4),
    )


def subscores_x(payload: Mapping[str, Any]) -> QualitySubscores:
    standalone = [str(item) for item in payload.get("standalone") or []]
    thread = [str(item) for item in payload.get("thread") or []]
    posts = standalone + thread
    style = str((payload.get("notes") or {}).get("style") or "")
    standalone_avg = avg_length(standalone)
    thread_avg = avg_length(thread)

    return _subscores(
        4.9 + (1.2 if standalone_avg >= 80 else 0.6) + (1.2 if thread_avg >= 85 else 0.6),
        4.7 + (1.3 if len(thread) >= 5 else 0.7) + (1.2 if thread_avg >= 90 else 0.6),
        4.8 + (1.5 if unique_ratio(posts) >= 0.82 else 0.7) + (0.7 if len(style) >= 12 else 0.2),
        4.8
        + (1.4 if any(_X_ACTION_RE.search(post) for post in posts) else 0.7)
        + (0.8 if any(re.match(r"^\d+/", post.strip()) for post in thread) else 0.3),
        5.0 + (1.0 if len(standalone) >= 4 else 0.4) + (1.1 if len(thread) >= 5 else 0.5),
    )


_SUBSCORERS: Dict[str, Callable[[Mapping[str, Any]], QualitySubscores]] = {
    "analysis": subscores_analysis,
    "reels": subscores_reels,
    "newsletter": subscores_newsletter,
    "linkedin": subscores_linkedin,
    "x": subscores_x,
}


def heuristic_evaluation(task: Any, payload: Mapping[str, Any]) -> QualityEvaluation:
    """Score a payload without any model call; overall is the mean of the five axes."""
    subscores = _SUBSCORERS[task_name(task)](payload)
    return QualityEvaluation(
        overall=average_subscores(subscores),
        subscores=subscores,
        summary="Heuristic rubric",
        weaknesses=[],
    )