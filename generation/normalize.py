"""Envelope unwrapping, strict schema parsing and best-effort coercion of model replies."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import math
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Type

from pydantic import BaseModel, ValidationError

from core import GenerationProfile, TranscriptSegment, task_name
from generation.builders import compute_reels_scores
from generation.quality import COERCE_ACCEPTANCE_THRESHOLD
from generation.sanitize import (
    anchor_reels_to_windows,
    hashtags_by_strategy,
    normalize_analysis_quality_scores,
    normalize_analysis_structure,
    normalize_content_type,
    normalize_editorial_angles,
    normalize_retention_moments,
    normalize_weak_spots,
    sanitize_analysis_payload,
    sanitize_hashtags,
    sanitize_linkedin_payload,
    sanitize_newsletter_payload,
    sanitize_recommendations,
    sanitize_reels_payload,
    sanitize_topic_list,
    sanitize_x_payload,
)
from generation.schemas import (
    AnalysisSchema,
    LinkedinSchema,
    NewsletterSchema,
    ReelsAISchema,
    ReelsFinalSchema,
    ReelsOverlaySchema,
    XSchema,
    issue_summary,
)
from generation.text import (
    clamp,
    clean_token,
    ms_to_timestamp,
    normalize_text,
    normalize_timestamp_token,
    parse_timestamp_range,
    split_list_lines,
    split_paragraphs,
    timestamp_to_ms,
)
from generation.windows import ClipWindow, DurationPolicy, build_window_from_range


_WRAPPER_KEYS = ("output", "result", "data", "payload", "content", "response", "completion")
_TASK_KEYS = {
    "analysis": ("analysis",),
    "reels": ("reels", "clips"),
    "newsletter": ("newsletter",),
    "linkedin": ("linkedin",),
    "x": ("x", "posts", "tweets", "twitter"),
}
_STRING_ITEM_KEYS = (
    "text", "content", "body", "copy", "value", "line", "bullet", "tweet", "post", "title", "headline",
)
_NESTED_LIST_KEYS = ("items", "lines", "list", "bullets", "posts", "tweets", "thread", "values")
_THREAD_NUMBER_RE = re.compile(r"^\s*\d+\s*/\s*\d*")


@dataclass(frozen=True)
class NormalizedOutput:
    """Outcome for one raw reply: a sanitized payload with its label, or the reason it was dropped."""

    payload: Optional[Dict[str, Any]] = None
    normalization: Optional[str] = None
    note: Optional[str] = None
    reason: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.payload is not None


def as_record(value: Any) -> Optional[Dict[str, Any]]:
    return value if isinstance(value, dict) else None


def as_record_array(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def as_string(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def pick_string(*values: Any) -> Optional[str]:
    for value in values:
        normalized = as_string(value)
        if normalized:
            return normalized
    return None


def first_present(record: Mapping[str, Any], *keys: str) -> Any:
    """First value that is not None among `keys` (a `??` chain)."""
    for key in keys:
        value = record.get(key)
        if value is not None:
            return value
    return None


def as_string_array(value: Any) -> List[str]:
    """
    Flatten whatever the model sent into a list of non-empty strings.

    Lists keep strings, finite numbers and the text-like field of objects;
    a bare string is split on commas, semicolons and newlines; an object is
    searched for a nested list, then for a single text field.
    """
    if isinstance(value, list):
        result = []
        for item in value:
            if isinstance(item, str):
                text = item.strip()
            elif isinstance(item, (int, float)) and not isinstance(item, bool) and math.isfinite(item):
                text = str(item).strip()
            elif isinstance(item, dict):
                text = pick_string(*(item.get(key) for key in _STRING_ITEM_KEYS)) or ""
            else:
                text = ""
            if text:
                result.append(text)
        return result

    if isinstance(value, str):
        return [item.strip() for item in re.split(r"[,\n;]+", value) if item.strip()]

    record = as_record(value)
    if record:
        for key in _NESTED_LIST_KEYS:
            parsed = as_string_array(record.get(key))
            if parsed:
                return parsed
        single = pick_string(record.get("text"), record.get("content"), record.get("body"), record.get("value"))
        if single:
            return as_string_array(single)
    return []


def unwrap_task_output(task: Any, output: Any) -> Any:
    """Strip generic envelopes (`output`, `data`, ...) and task-named wrappers."""
    direct = as_record(output)
    if direct is None:
        return output
    name = task_name(task)

    for key in _WRAPPER_KEYS:
        nested = as_record(direct.get(key))
        if nested is not None:
            return unwrap_task_output(name, nested)

    for key in _TASK_KEYS.get(name, ()):
        if key == "clips" and isinstance(direct.get(key), list):
            return {"clips": direct[key]}
        nested = as_record(direct.get(key))
        if nested is None:
            continue
        if name == "x" and key == "posts":
            return {
                "standalone": first_present(nested, "standalone", "standalonePosts", "standalone_posts", "posts"),
                "thread": first_present(nested, "thread", "threadPosts", "thread_posts", "threadTweets"),
                "notes": first_present(nested, "notes") or direct.get("notes"),
            }
        return nested
    return direct


def strict_parse(schema: Type[BaseModel], data: Any) -> Tuple[Optional[BaseModel], Optional[ValidationError]]:
    try:
        return schema.model_validate(data), None
    except ValidationError as exc:
        return None, exc


def payload_fingerprint(payload: Mapping[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, ensure_ascii=False)


# Analysis


def coerce_analysis(output: Mapping[str, Any], fallback: Mapping[str, Any]) -> Dict[str, Any]:
    thesis_raw = output.get("thesis") if isinstance(output.get("thesis"), str) else None
    if thesis_raw is None and isinstance(output.get("mainThesis"), str):
        thesis_raw = output["mainThesis"]
    fallback_polarity = float(fallback.get("polarityScore") or 0)
    try:
        polarity = float(output.get("polarityScore", fallback_polarity))
    except (TypeError, ValueError):
        polarity = fallback_polarity
    if not math.isfinite(polarity):
        polarity = fallback_polarity

    fallback_recs = list(fallback.get("recommendations") or [])
    fallback_structure = fallback.get("structure") or {
        "problem": "Problema central do conteudo nao explicitado.",
        "tension": "Existe friccao entre estado atual e resultado esperado.",
        "insight": fallback.get("thesis") or "",
        "application": fallback_recs[0] if fallback_recs else "Transformar a tese em acao concreta.",
    }
    retention = normalize_retention_moments(first_present(output, "retentionMoments", "retention_moments"))
    angles = normalize_editorial_angles(first_present(output, "editorialAngles", "editorial_angles"))
    weak_spots = normalize_weak_spots(first_present(output, "weakSpots", "weak_spots"))
    quality_scores = normalize_analysis_quality_scores(
        first_present(output, "qualityScores", "scores"), fallback_polarity
    )

    coerced = {
        "thesis": normalize_text(thesis_raw or fallback.get("thesis") or "", 1600, 20, fallback.get("thesis") or ""),
        "topics": sanitize_topic_list(as_string_array(output.get("topics")), list(fallback.get("topics") or [])),
        "contentType": normalize_content_type(
            first_present(output, "contentType", "content_type"), fallback.get("contentType") or "educational"
        ),
        "polarityScore": int(round(clamp(polarity, 0, 10))),
        "recommendations": sanitize_recommendations(as_string_array(output.get("recommendations")), fallback_recs),
        "structure": normalize_analysis_structure(output.get("structure"), fallback_structure),
        "retentionMoments": retention or list(fallback.get("retentionMoments") or []),
        "editorialAngles": angles or list(fallback.get("editorialAngles") or []),
        "weakSpots": weak_spots or list(fallback.get("weakSpots") or []),
    }
    scores = quality_scores or fallback.get("qualityScores")
    if scores:
        coerced["qualityScores"] = dict(scores)
    return coerced


def analysis_coercion_signal(output: Mapping[str, Any], coerced: Mapping[str, Any], fallback: Mapping[str, Any]) -> int:
    """How much of the reconstruction came from the reply rather than the fallback."""
    signal = 0
    if as_string(output.get("thesis")) or as_string(output.get("mainThesis")):
        signal += 2
    if len(as_string_array(output.get("topics"))) >= 3:
        signal += 1
    if len(as_string_array(output.get("recommendations"))) >= 2:
        signal += 1
    if as_record(output.get("structure")) is not None:
        signal += 1
    if isinstance(output.get("retentionMoments"), list) or isinstance(output.get("retention_moments"), list):
        signal += 1
    if coerced.get("thesis") != fallback.get("thesis"):
        signal += 1
    if list(coerced.get("topics") or []) != list(fallback.get("topics") or []):
        signal += 1
    if list(coerced.get("recommendations") or []) != list(fallback.get("recommendations") or []):
        signal += 1
    return signal


def normalize_analysis_output(raw: Any, fallback: Mapping[str, Any]) -> NormalizedOutput:
    output = unwrap_task_output("analysis", raw)
    parsed, error = strict_parse(AnalysisSchema, output)
    if parsed is not None:
        return NormalizedOutput(sanitize_analysis_payload(parsed.to_payload()), "analysis_schema")

    record = as_record(output) or {}
    coerced = coerce_analysis(record, fallback)
    signal = analysis_coercion_signal(record, coerced, fallback)
    if signal < COERCE_ACCEPTANCE_THRESHOLD["analysis"]:
        return NormalizedOutput(reason=f"schema_mismatch · {issue_summary(error)} · coerce_low_signal({signal})")
    return NormalizedOutput(
        sanitize_analysis_payload(coerced), "analysis_coerced_schema", f"coerced_schema(signal={signal})"
    )


# LinkedIn


def coerce_linkedin(output: Mapping[str, Any], fallback: Mapping[str, Any]) -> Tuple[Dict[str, Any], int]:
    hook = pick_string(
        *(output.get(key) for key in (
            "hook", "headline", "title", "opening", "firstLine", "first_line", "openingLine", "opening_line",
        ))
    )
    question = pick_string(
        *(output.get(key) for key in ("ctaQuestion", "cta_question", "cta", "question", "finalQuestion", "final_question"))
    )

    body: List[str] = []
    for key in ("body", "paragraphs", "postBody", "post_body"):
        body = as_string_array(output.get(key))
        if body:
            break
    if not body:
        text = as_string(output.get("body")) or as_string(output.get("post")) or as_string(output.get("text")) or ""
        body = split_paragraphs(text) or split_list_lines(text)

    confidence = int(bool(hook)) + int(len(body) >= 2) + int(bool(question))
    if not question:
        question = next((item for item in body if item.strip().endswith("?")), None)
    payload = sanitize_linkedin_payload(
        {
            "hook": hook or fallback.get("hook"),
            "body": body or list(fallback.get("body") or []),
            "ctaQuestion": question or fallback.get("ctaQuestion"),
        }
    )
    confidence += int(payload["hook"] != fallback.get("hook"))
    confidence += int(payload["body"] != list(fallback.get("body") or []))
    confidence += int(payload["ctaQuestion"] != fallback.get("ctaQuestion"))
    return payload, confidence


def normalize_linkedin_output(raw: Any, fallback: Mapping[str, Any]) -> NormalizedOutput:
    output = unwrap_task_output("linkedin", raw)
    parsed, error = strict_parse(LinkedinSchema, output)
    if parsed is not None:
        return NormalizedOutput(sanitize_linkedin_payload(parsed.to_payload()), "linkedin_schema")

    payload, confidence = coerce_linkedin(as_record(output) or {}, fallback)
    if confidence >= COERCE_ACCEPTANCE_THRESHOLD["linkedin"]:
        return NormalizedOutput(payload, "linkedin_coerced_schema", f"coerced_schema(signal={confidence})")
    return NormalizedOutput(reason=f"schema_mismatch · {issue_summary(error, 2)}")


# Newsletter


def normalize_newsletter_section_type(raw_type: Optional[str]) -> Optional[str]:
    value = str(raw_type or "").strip().lower()
    if not value:
        return None
    if re.search(r"intro|abertura|opening|lead|context", value):
        return "intro"
    if re.search(r"insight|aprendizado|ponto|lesson|argument", value):
        return "insight"
    if re.search(r"application|aplic|checklist|passo|steps|framework|acao", value):
        return "application"
    if re.search(r"cta|calltoaction|call_to_action|pergunta|question|fechamento", value):
        return "cta"
    return None


def normalize_insight_section(value: Mapping[str, Any]) -> Optional[Dict[str, str]]:
    title = pick_string(value.get("title"), value.get("headline"), value.get("topic"), value.get("name"))
    text = pick_string(value.get("text"), value.get("body"), value.get("insight"), value.get("description"))
    if not title or not text:
        return None
    return {"title": title, "text": text}


def _sections_from_list(raw_sections: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], int]:
    sections: List[Dict[str, Any]] = []
    confidence = 0
    for section in raw_sections:
        kind = normalize_newsletter_section_type(
            pick_string(section.get("type"), section.get("kind"), section.get("role"))
        )
        if kind == "intro":
            text = pick_string(section.get("text"), section.get("body"))
            if text:
                sections.append({"type": "intro", "text": text})
                confidence += 1
        elif kind == "insight":
            insight = normalize_insight_section(section)
            if insight:
                sections.append({"type": "insight", **insight})
                confidence += 1
        elif kind == "application":
            bullets = as_string_array(first_present(section, "bullets", "items", "steps", "checklist"))
            if bullets:
                sections.append({"type": "application", "bullets": bullets})
                confidence += 1
        elif kind == "cta":
            text = pick_string(
                *(section.get(key) for key in ("text", "body", "question", "prompt", "callToAction", "call_to_action"))
            )
            if text:
                sections.append({"type": "cta", "text": text})
                confidence += 1
    return sections, confidence


def _sections_from_fields(output: Mapping[str, Any]) -> Tuple[List[Dict[str, Any]], int]:
    sections: List[Dict[str, Any]] = []
    confidence = 0
    intro = pick_string(output.get("intro"), output.get("opening"), output.get("lead"))
    if intro:
        sections.append({"type": "intro", "text": intro})
        confidence += 1

    insight_records = as_record_array(first_present(output, "insights", "keyInsights", "key_insights", "mainInsights"))
    if insight_records:
        for item in insight_records[:5]:
            insight = normalize_insight_section(item)
            if insight:
                sections.append({"type": "insight", **insight})
                confidence += 1
    else:
        for item in as_string_array(first_present(output, "insights", "keyInsights", "key_insights"))[:5]:
            title = re.split(r"[.!?]", item)[0] or "Insight"
            sections.append({"type": "insight", "title": title, "text": item})
            confidence += 1

    application = as_record(output.get("application")) or {}
    bullets = as_string_array(
        application.get("bullets")
        if application.get("bullets") is not None
        else first_present(output, "checklist", "steps", "framework", "actionPlan", "action_plan")
    )
    if bullets:
        sections.append({"type": "application", "bullets": bullets})
        confidence += 1

    cta = pick_string(output.get("cta"), output.get("callToAction"), output.get("call_to_action"), output.get("question"))
    if cta:
        sections.append({"type": "cta", "text": cta})
        confidence += 1
    return sections, confidence


def coerce_newsletter(output: Mapping[str, Any], fallback: Mapping[str, Any]) -> Tuple[Dict[str, Any], int]:
    headline = pick_string(
        *(output.get(key) for key in ("headline", "title", "subject", "chosenHeadline", "bestHeadline", "best_headline"))
    )
    subheadline = pick_string(
        *(output.get(key) for key in ("subheadline", "subtitle", "dek", "subTitle", "sub_title"))
    )

    sections, confidence = _sections_from_list(as_record_array(output.get("sections")))
    if not sections:
        sections, confidence = _sections_from_fields(output)

    if len(sections) < 3:
        raw_body = pick_string(output.get("body"), output.get("text"), output.get("newsletter"))
        paragraphs = split_paragraphs(raw_body or "")
        if paragraphs:
            sections.append({"type": "intro", "text": paragraphs[0]})
            if len(paragraphs) > 1:
                sections.append({"type": "insight", "title": "Insight central", "text": paragraphs[1]})
            if len(paragraphs) > 2:
                sections.append({"type": "cta", "text": paragraphs[2]})
            confidence += 1

    payload = sanitize_newsletter_payload(
        {
            "headline": headline or fallback.get("headline"),
            "subheadline": subheadline or fallback.get("subheadline"),
            "sections": sections or list(fallback.get("sections") or []),
        }
    )
    confidence += int(payload["headline"] != fallback.get("headline"))
    confidence += int(payload["subheadline"] != fallback.get("subheadline"))
    confidence += int(payload_fingerprint({"s": payload["sections"]}) != payload_fingerprint({"s": list(fallback.get("sections") or [])}))
    return payload, confidence


def normalize_newsletter_output(raw: Any, fallback: Mapping[str, Any]) -> NormalizedOutput:
    output = unwrap_task_output("newsletter", raw)
    parsed, error = strict_parse(NewsletterSchema, output)
    if parsed is not None:
        return NormalizedOutput(sanitize_newsletter_payload(parsed.to_payload()), "newsletter_schema")

    payload, confidence = coerce_newsletter(as_record(output) or {}, fallback)
    if confidence >= COERCE_ACCEPTANCE_THRESHOLD["newsletter"]:
        return NormalizedOutput(payload, "newsletter_coerced_schema", f"coerced_schema(signal={confidence})")
    return NormalizedOutput(reason=f"schema_mismatch · {issue_summary(error, 2)}")


# X


def coerce_x(
    output: Mapping[str, Any], fallback: Mapping[str, Any], cta_mode: str = "comment", length: str = "standard"
) -> Tuple[Dict[str, Any], int]:
    notes = as_record(output.get("notes")) or {}
    posts = as_record(output.get("posts")) or {}
    standalone = as_string_array(
        first_present(output, "standalone", "standalonePosts", "standalone_posts")
        if first_present(output, "standalone", "standalonePosts", "standalone_posts") is not None
        else first_present(posts, "standalone", "standalonePosts", "standalone_posts")
        if first_present(posts, "standalone", "standalonePosts", "standalone_posts") is not None
        else first_present(output, "posts", "tweets", "avulsos")
    )
    thread = as_string_array(
        first_present(
            output, "thread", "threadPosts", "thread_posts", "threadTweets", "thread_tweets", "tweetThread", "tweet_thread"
        )
        if first_present(
            output, "thread", "threadPosts", "thread_posts", "threadTweets", "thread_tweets", "tweetThread", "tweet_thread"
        ) is not None
        else first_present(posts, "thread", "threadPosts", "thread_posts", "threadTweets")
    )
    style = pick_string(
        notes.get("style"),
        *(output.get(key) for key in ("style", "tone", "voice", "writingStyle", "writing_style")),
    )

    plain = [item for item in standalone if not _THREAD_NUMBER_RE.match(item)]
    inferred_thread = [item for item in standalone if _THREAD_NUMBER_RE.match(item)]
    final_thread = thread or inferred_thread
    final_standalone = plain or standalone

    fallback_notes = fallback.get("notes") or {}
    payload = sanitize_x_payload(
        {
            "standalone": final_standalone or list(fallback.get("standalone") or []),
            "thread": final_thread or list(fallback.get("thread") or []),
            "notes": {"style": style or fallback_notes.get("style") or ""},
        },
        cta_mode,
        length,
    )
    confidence = int(bool(standalone)) + int(bool(thread)) + int(bool(style))
    confidence += int(payload["standalone"] != list(fallback.get("standalone") or []))
    confidence += int(payload["thread"] != list(fallback.get("thread") or []))
    return payload, confidence


def normalize_x_output(
    raw: Any, fallback: Mapping[str, Any], cta_mode: str = "comment", length: str = "standard"
) -> NormalizedOutput:
    output = unwrap_task_output("x", raw)
    parsed, error = strict_parse(XSchema, output)
    if parsed is not None:
        return NormalizedOutput(sanitize_x_payload(parsed.to_payload(), cta_mode, length), "x_schema")

    payload, confidence = coerce_x(as_record(output) or {}, fallback, cta_mode, length)
    if confidence >= COERCE_ACCEPTANCE_THRESHOLD["x"]:
        return NormalizedOutput(payload, "x_coerced_schema", f"coerced_schema(signal={confidence})")
    return NormalizedOutput(reason=f"schema_mismatch · {issue_summary(error, 2)}")


# Reels


@dataclass(frozen=True)
class ReelsContext:
    """Everything reels normalization needs besides the reply itself."""

    segments: Sequence[TranscriptSegment]
    windows: Sequence[ClipWindow]
    fallback: Dict[str, Any]
    analysis: Mapping[str, Any]
    profile: GenerationProfile
    duration_sec: float
    clip_count: int
    policy: DurationPolicy
    ctas: List[str] = field(default_factory=list)

    @property
    def strategy(self) -> str:
        return self.profile.tasks.reels.strategy

    def anchor(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return anchor_reels_to_windows(payload, self.windows, self.fallback, self.ctas)


def _clip_candidates(output: Mapping[str, Any]) -> List[Dict[str, Any]]:
    for key in ("clips", "reels", "items", "results"):
        value = output.get(key)
        if not isinstance(value, list):
            continue
        items = [{"caption": item} if isinstance(item, str) else item for item in value]
        records = [item for item in items if isinstance(item, dict)]
        if records:
            return records
    return []


def _number(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def coerce_reels(
    output: Mapping[str, Any], ctx: ReelsContext, fallback: Optional[Mapping[str, Any]] = None
) -> Tuple[Dict[str, Any], int]:
    fallback = dict(fallback if fallback is not None else ctx.fallback)
    fallback_clips = list(fallback.get("clips") or [])
    candidates = _clip_candidates(output)
    if not candidates:
        return fallback, 0

    thesis = str(ctx.analysis.get("thesis") or "")
    confidence = 0
    clips: List[Dict[str, Any]] = []
    for index, item in enumerate(candidates[: ctx.clip_count]):
        fallback_clip = fallback_clips[index] if index < len(fallback_clips) else (fallback_clips[0] if fallback_clips else {})
        title = pick_string(item.get("title"), item.get("hook"), item.get("headline"), *as_string_array(item.get("titles"))[:1])
        caption_base = pick_string(
            *(item.get(key) for key in ("caption", "legenda", "copy", "body")), *as_string_array(item.get("captions"))[:1]
        )
        cta = pick_string(item.get("cta"), item.get("callToAction"), item.get("call_to_action"))
        caption = f"{caption_base}\n\n{cta}" if caption_base and cta else caption_base
        why = pick_string(item.get("whyItWorks"), item.get("why_it_works"), item.get("rationale"), item.get("reason"))
        hashtags = as_string_array(first_present(item, "hashtags", "tags", "hashTags"))

        start: Optional[str] = fallback_clip.get("start")
        end: Optional[str] = fallback_clip.get("end")
        start_idx = _number(first_present(item, "startIdx", "start_idx", "startSegment"))
        end_idx = _number(first_present(item, "endIdx", "end_idx", "endSegment"))
        time_range = pick_string(item.get("range"), item.get("timeRange"), item.get("time_range"), item.get("timestamps"))
        start_raw = pick_string(item.get("start"), item.get("startTime"), item.get("start_time"))
        end_raw = pick_string(item.get("end"), item.get("endTime"), item.get("end_time"))

        if start_idx is not None and end_idx is not None:
            window = build_window_from_range(ctx.segments, int(start_idx), int(end_idx), ctx.policy)
            if window is not None:
                start, end = ms_to_timestamp(window.start_ms), ms_to_timestamp(window.end_ms)
                confidence += 1
        elif start_raw and end_raw:
            normalized_start = normalize_timestamp_token(start_raw)
            normalized_end = normalize_timestamp_token(end_raw)
            if normalized_start and normalized_end:
                start, end = normalized_start, normalized_end
                confidence += 1
        elif time_range:
            parsed_range = parse_timestamp_range(time_range)
            if parsed_range:
                start, end = parsed_range
                confidence += 1

        scores = compute_reels_scores(
            ClipWindow(
                start_idx=0,
                end_idx=0,
                start_ms=(timestamp_to_ms(start) if start else None) or 0,
                end_ms=(timestamp_to_ms(end) if end else None) or 0,
                avg_score=0.0,
                text=caption or fallback_clip.get("caption") or thesis,
            ),
            ctx.duration_sec,
            ctx.analysis,
            ctx.strategy,
        )
        declared = as_record(item.get("scores"))
        if declared is not None:
            for key in scores:
                value = _number(declared.get(key))
                if value is not None:
                    scores[key] = value
            confidence += 1

        clips.append(
            {
                "title": normalize_text(title or fallback_clip.get("title") or thesis, 220, 6),
                "start": start or "00:00:00.000",
                "end": end or "00:00:20.000",
                "caption": normalize_text(caption or fallback_clip.get("caption") or thesis, 5000, 40),
                "hashtags": sanitize_hashtags(
                    hashtags, list(fallback_clip.get("hashtags") or hashtags_by_strategy(ctx.strategy))
                ),
                "scores": {key: int(round(clamp(value, 0, 10))) for key, value in scores.items()},
                "whyItWorks": normalize_text(why or fallback_clip.get("whyItWorks") or "", 2400, 8),
            }
        )
        confidence += int(bool(title)) + int(bool(caption)) + int(bool(why)) + int(bool(hashtags))

    if not clips:
        return fallback, 0
    return sanitize_reels_payload({"clips": clips[: ctx.clip_count]}), confidence


def _clips_from_ai_schema(parsed: ReelsAISchema, ctx: ReelsContext) -> List[Dict[str, Any]]:
    thesis = str(ctx.analysis.get("thesis") or "")
    topic_tags = [
        tag for tag in (f"#{clean_token(topic)}" for topic in list(ctx.analysis.get("topics") or [])[:4]) if len(tag) >= 4
    ]
    fallback_clips = list(ctx.fallback.get("clips") or [])
    clips = []
    for index, clip in enumerate(parsed.clips):
        window = build_window_from_range(ctx.segments, clip.start_idx, clip.end_idx, ctx.policy)
        if window is None:
            continue
        fallback_clip = fallback_clips[index] if index < len(fallback_clips) else {}
        if clip.scores is not None:
            scores = clip.scores.to_payload()
        else:
            scores = compute_reels_scores(window, ctx.duration_sec, ctx.analysis, ctx.strategy)
        clips.append(
            {
                "title": normalize_text(clip.title, 220, 6, fallback_clip.get("title") or thesis),
                "start": ms_to_timestamp(window.start_ms),
                "end": ms_to_timestamp(window.end_ms),
                "caption": normalize_text(
                    clip.caption,
                    5000,
                    80,
                    fallback_clip.get("caption") or normalize_text(window.text, 5000, 24, thesis),
                ),
                "hashtags": sanitize_hashtags(
                    clip.hashtags, list(fallback_clip.get("hashtags") or (hashtags_by_strategy(ctx.strategy) + topic_tags))
                ),
                "scores": {key: int(round(clamp(float(value), 0, 10))) for key, value in scores.items()},
                "whyItWorks": normalize_text(clip.why_it_works, 2400, 10, fallback_clip.get("whyItWorks") or ""),
            }
        )
    return clips[: ctx.clip_count]


def _clips_from_overlay(parsed: ReelsOverlaySchema, ctx: ReelsContext) -> List[Dict[str, Any]]:
    overlays = {clip.idx: clip for clip in parsed.clips}
    clips = []
    for index, clip in enumerate(list(ctx.fallback.get("clips") or [])):
        overlay = overlays.get(index + 1)
        if overlay is None:
            clips.append(clip)
            continue
        clips.append(
            {
                **clip,
                "title": normalize_text(overlay.title, 220, 6, clip.get("title") or ""),
                "caption": normalize_text(overlay.caption, 5000, 80, clip.get("caption") or ""),
                "hashtags": sanitize_hashtags(overlay.hashtags, list(clip.get("hashtags") or [])),
                "whyItWorks": normalize_text(overlay.why_it_works, 2400, 10, clip.get("whyItWorks") or ""),
            }
        )
    return clips


def normalize_reels_output(
    raw: Any, ctx: ReelsContext, coerce_fallback: Optional[Mapping[str, Any]] = None
) -> NormalizedOutput:
    """
    Try, in order: the timestamped final shape, index-based proposals,
    copy overlays for the preselected windows, then coercion. Every
    accepted shape is re-anchored to the selected windows.
    """
    output = unwrap_task_output("reels", raw)

    final, final_error = strict_parse(ReelsFinalSchema, output)
    if final is not None:
        return NormalizedOutput(ctx.anchor(sanitize_reels_payload(final.to_payload())), "reels_final_schema")

    proposals, ai_error = strict_parse(ReelsAISchema, output)
    if proposals is not None:
        clips = _clips_from_ai_schema(proposals, ctx)
        if not clips:
            return NormalizedOutput(reason="empty_ai_clips")
        return NormalizedOutput(ctx.anchor(sanitize_reels_payload({"clips": clips})), "reels_ai_schema")

    overlay, _ = strict_parse(ReelsOverlaySchema, output)
    if overlay is not None:
        payload = sanitize_reels_payload({"clips": _clips_from_overlay(overlay, ctx)})
        return NormalizedOutput(ctx.anchor(payload), "reels_overlay_schema")

    payload, confidence = coerce_reels(as_record(output) or {}, ctx, coerce_fallback)
    if confidence >= COERCE_ACCEPTANCE_THRESHOLD["reels"]:
        return NormalizedOutput(ctx.anchor(payload), "reels_coerced_schema", f"coerced_schema(signal={confidence})")

    summary = f"final: {issue_summary(final_error, 1)} | ai: {issue_summary(ai_error, 1)}"
    return NormalizedOutput(reason=f"schema_mismatch · {summary}")
