"""Keep one transcript's channels from repeating each other verbatim."""

from __future__ import annotations

import copy
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from core import GenerationProfile, merge_generation_profile, task_name
from generation.sanitize import normalize_thread_numbering
from generation.text import clean_token


MIN_SIGNAL_CHARS = 20
MAX_AVOID_SIGNALS = 10
MAX_AVOID_CHARS = 500
SELF_OVERLAP = 0.9
FALLBACK_SELF_OVERLAP = 0.92

AVOID_HINT_PREFIX = "Evite repetir literalmente estas frases/angulos de outros canais: "


def _token_set(text: str) -> set:
    tokens = (clean_token(item) for item in str(text or "").split())
    return {token for token in tokens if len(token) >= 4}


def cross_channel_overlap(a: str, b: str) -> float:
    """Share of `a`'s tokens (4+ chars, accents folded) also present in `b`."""
    a_set = _token_set(a)
    b_set = _token_set(b)
    if not a_set or not b_set:
        return 0.0
    return len(a_set & b_set) / len(a_set)


def _strings(values: Iterable[Any]) -> List[str]:
    return [str(value) for value in values if isinstance(value, str)]


def extract_text_signals(task: Any, payload: Mapping[str, Any]) -> List[str]:
    """Headline-level strings of a payload that another channel should not echo."""
    name = task_name(task)
    values: List[str] = []

    if name == "analysis":
        values = [payload.get("thesis")] + list(payload.get("recommendations") or []) + list(payload.get("topics") or [])
    elif name == "reels":
        for clip in payload.get("clips") or []:
            values.extend([clip.get("title"), clip.get("caption"), clip.get("whyItWorks")])
    elif name == "newsletter":
        values = [payload.get("headline"), payload.get("subheadline")]
        for section in payload.get("sections") or []:
            if section.get("type") == "application":
                values.extend(section.get("bullets") or [])
            elif section.get("type") == "insight":
                values.extend([section.get("title"), section.get("text")])
            else:
                values.append(section.get("text"))
    elif name == "linkedin":
        values = [payload.get("hook")] + list(payload.get("body") or []) + [payload.get("ctaQuestion")]
    elif name == "x":
        values = list(payload.get("standalone") or []) + list(payload.get("thread") or [])

    return [value for value in _strings(values) if len(value.strip()) >= MIN_SIGNAL_CHARS]


def cross_channel_pool(task: Any, generated: Mapping[str, Mapping[str, Any]]) -> List[str]:
    name = task_name(task)
    pool: List[str] = []
    for other, payload in generated.items():
        if task_name(other) != name and payload:
            pool.extend(extract_text_signals(other, payload))
    return pool


def cross_channel_avoid_profile(
    task: Any, profile: GenerationProfile, generated: Mapping[str, Mapping[str, Any]]
) -> GenerationProfile:
    """Fold up to ten signals from the other channels into this task's `avoid` memory."""
    name = task_name(task)
    signals = cross_channel_pool(name, generated)[:MAX_AVOID_SIGNALS]
    if not signals:
        return profile

    hint = (AVOID_HINT_PREFIX + " || ".join(signals))[:MAX_AVOID_CHARS]
    existing = profile.memory(name).avoid
    avoid = " | ".join(item for item in (existing, hint) if item and item.strip())[:MAX_AVOID_CHARS]
    return merge_generation_profile(profile, {"performanceMemory": {name: {"avoid": avoid}}})


def filter_unique_by_cross_channel(
    values: Sequence[str], pool: Sequence[str], min_items: int, overlap_threshold: float
) -> List[str]:
    """
    Drop values that echo the pool or an already kept value.

    When fewer than `min_items` survive, only near-identical repeats
    inside `values` are dropped instead, capped at `min_items`.
    """
    result: List[str] = []
    for value in values:
        normalized = str(value or "").strip()
        if not normalized:
            continue
        in_pool = any(cross_channel_overlap(normalized, item) >= overlap_threshold for item in pool)
        in_self = any(cross_channel_overlap(normalized, item) >= SELF_OVERLAP for item in result)
        if not in_pool and not in_self:
            result.append(normalized)

    if len(result) >= min_items:
        return result

    fallback: List[str] = []
    for value in values:
        normalized = str(value or "").strip()
        if not normalized:
            continue
        if not any(cross_channel_overlap(normalized, item) >= FALLBACK_SELF_OVERLAP for item in fallback):
            fallback.append(normalized)
        if len(fallback) >= min_items:
            break
    return fallback


def dedupe_payload_cross_channel(
    task: Any, payload: Mapping[str, Any], generated: Mapping[str, Mapping[str, Any]]
) -> Dict[str, Any]:
    name = task_name(task)
    pool = cross_channel_pool(name, generated)
    result = copy.deepcopy(dict(payload))
    if not pool:
        return result

    if name == "newsletter":
        sections = []
        for section in result.get("sections") or []:
            if section.get("type") == "application":
                section = {"type": "application", "bullets": filter_unique_by_cross_channel(
                    section.get("bullets") or [], pool, 3, 0.86
                )}
            elif section.get("type") == "insight":
                text = str(section.get("text") or "")
                kept = filter_unique_by_cross_channel([text], pool, 1, 0.88)
                section = {**section, "text": kept[0] if kept else text}
            sections.append(section)
        result["sections"] = sections
    elif name == "linkedin":
        result["body"] = filter_unique_by_cross_channel(result.get("body") or [], pool, 4, 0.86)
    elif name == "x":
        result["standalone"] = filter_unique_by_cross_channel(result.get("standalone") or [], pool, 3, 0.84)
        thread = filter_unique_by_cross_channel(result.get("thread") or [], pool, 4, 0.84)
        result["thread"] = normalize_thread_numbering(thread)
    elif name == "reels":
        clips = []
        for clip in result.get("clips") or []:
            caption = str(clip.get("caption") or "")
            kept = filter_unique_by_cross_channel([caption], pool, 1, 0.9)
            clips.append({**clip, "caption": kept[0] if kept else caption})
        result["clips"] = clips

    return result
