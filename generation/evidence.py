"""Evidence map: the numbers and vocabulary a generated claim may rely on."""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Any, Dict, FrozenSet, List, Mapping, Sequence, Tuple

from core import TranscriptSegment, task_name
from generation.text import (
    count_ungrounded_numeric_tokens,
    extract_numeric_tokens,
    lexical_overlap_ratio,
    lexical_token_set,
    ms_to_timestamp,
    normalize_text,
    pick_coverage_segments,
)


@dataclass(frozen=True)
class EvidenceLine:
    idx: int
    start: str
    end: str
    text: str
    numeric_tokens: Tuple[str, ...]
    lexical_tokens: FrozenSet[str]


@dataclass(frozen=True)
class EvidenceMap:
    """Read-only snapshot built once per generation run."""

    source_text: str
    numbers: FrozenSet[str]
    lexical_tokens: FrozenSet[str]
    lines: Tuple[EvidenceLine, ...]
    # first-seen order of `numbers`, for stable prompt rendering
    ordered_numbers: Tuple[str, ...] = ()

    def model_dump(self) -> Dict[str, Any]:
        return {
            "numbers": list(self.ordered_numbers),
            "lexicalTokenCount": len(self.lexical_tokens),
            "lines": [
                {
                    "idx": line.idx,
                    "start": line.start,
                    "end": line.end,
                    "text": line.text,
                    "numericTokens": list(line.numeric_tokens),
                }
                for line in self.lines
            ],
        }


@dataclass(frozen=True)
class StringBlock:
    path: str
    text: str


def build_evidence_map(segments: Sequence[TranscriptSegment], max_lines: int = 80) -> EvidenceMap:
    selected = pick_coverage_segments(segments, min(max_lines, max(1, len(segments))))
    lines: List[EvidenceLine] = []
    for segment in selected:
        text = normalize_text(segment.text, 900, 8, segment.text)
        lines.append(
            EvidenceLine(
                idx=segment.idx,
                start=ms_to_timestamp(segment.start_ms),
                end=ms_to_timestamp(segment.end_ms),
                text=text,
                numeric_tokens=tuple(extract_numeric_tokens(text)),
                lexical_tokens=frozenset(lexical_token_set(text)),
            )
        )

    source_text = " ".join(segment.text for segment in segments)
    ordered: List[str] = []
    for token in extract_numeric_tokens(source_text):
        if token not in ordered:
            ordered.append(token)
    lexical = set(lexical_token_set(source_text))

    # sampled lines are normalized text, so their tokens can differ from the raw source
    for line in lines:
        for token in line.numeric_tokens:
            if token not in ordered:
                ordered.append(token)
        lexical.update(line.lexical_tokens)

    return EvidenceMap(
        source_text=source_text,
        numbers=frozenset(ordered),
        lexical_tokens=frozenset(lexical),
        lines=tuple(lines),
        ordered_numbers=tuple(ordered),
    )


def evidence_map_prompt_block(evidence_map: EvidenceMap, max_lines: int = 22) -> str:
    numbers = ", ".join(evidence_map.ordered_numbers[:80])
    lines = "\n".join(
        f"[{line.idx}] {line.start}-{line.end}: {normalize_text(line.text, 320, 8, line.text)}"
        for line in evidence_map.lines[:max_lines]
    )
    return "\n".join(
        [
            "EVIDENCE_MAP:",
            f"NUMEROS_OBSERVADOS: {numbers}" if numbers else "NUMEROS_OBSERVADOS: nenhum",
            "TRECHOS_PRIORITARIOS:",
            lines or "sem_trechos",
        ]
    )


def _texts(value: Any) -> List[str]:
    return [str(item or "") for item in list(value or [])]


def collect_task_string_blocks(task: Any, payload: Mapping[str, Any]) -> List[StringBlock]:
    """Every user-visible text field of a payload, keyed by its JSON path."""
    name = task_name(task)
    blocks: List[StringBlock] = []

    if name == "analysis":
        blocks.append(StringBlock("thesis", str(payload.get("thesis") or "")))
        blocks.extend(StringBlock(f"topics[{i}]", text) for i, text in enumerate(_texts(payload.get("topics"))))
        blocks.extend(
            StringBlock(f"recommendations[{i}]", text)
            for i, text in enumerate(_texts(payload.get("recommendations")))
        )
        structure = payload.get("structure")
        if isinstance(structure, Mapping):
            for key in ("problem", "tension", "insight", "application"):
                blocks.append(StringBlock(f"structure.{key}", str(structure.get(key) or "")))
        for i, item in enumerate(list(payload.get("retentionMoments") or [])):
            blocks.append(StringBlock(f"retentionMoments[{i}].text", str(item.get("text") or "")))
            blocks.append(StringBlock(f"retentionMoments[{i}].whyItGrabs", str(item.get("whyItGrabs") or "")))
        for i, item in enumerate(list(payload.get("editorialAngles") or [])):
            blocks.append(StringBlock(f"editorialAngles[{i}].angle", str(item.get("angle") or "")))
            blocks.append(StringBlock(f"editorialAngles[{i}].whyStronger", str(item.get("whyStronger") or "")))
        for i, item in enumerate(list(payload.get("weakSpots") or [])):
            blocks.append(StringBlock(f"weakSpots[{i}].issue", str(item.get("issue") or "")))
            blocks.append(StringBlock(f"weakSpots[{i}].why", str(item.get("why") or "")))
        return blocks

    if name == "reels":
        for i, clip in enumerate(list(payload.get("clips") or [])):
            blocks.append(StringBlock(f"clips[{i}].title", str(clip.get("title") or "")))
            blocks.append(StringBlock(f"clips[{i}].caption", str(clip.get("caption") or "")))
            blocks.append(StringBlock(f"clips[{i}].whyItWorks", str(clip.get("whyItWorks") or "")))
        return blocks

    if name == "newsletter":
        blocks.append(StringBlock("headline", str(payload.get("headline") or "")))
        blocks.append(StringBlock("subheadline", str(payload.get("subheadline") or "")))
        for i, section in enumerate(list(payload.get("sections") or [])):
            if section.get("type") == "application":
                blocks.extend(
                    StringBlock(f"sections[{i}].bullets[{j}]", text)
                    for j, text in enumerate(_texts(section.get("bullets")))
                )
                continue
            if "title" in section:
                blocks.append(StringBlock(f"sections[{i}].title", str(section.get("title") or "")))
            blocks.append(StringBlock(f"sections[{i}].text", str(section.get("text") or "")))
        return blocks

    if name == "linkedin":
        blocks.append(StringBlock("hook", str(payload.get("hook") or "")))
        blocks.extend(StringBlock(f"body[{i}]", text) for i, text in enumerate(_texts(payload.get("body"))))
        blocks.append(StringBlock("ctaQuestion", str(payload.get("ctaQuestion") or "")))
        return blocks

    blocks.extend(StringBlock(f"standalone[{i}]", text) for i, text in enumerate(_texts(payload.get("standalone"))))
    blocks.extend(StringBlock(f"thread[{i}]", text) for i, text in enumerate(_texts(payload.get("thread"))))
    notes = payload.get("notes") or {}
    blocks.append(StringBlock("notes.style", str(notes.get("style") or "")))
    return blocks


def evidence_attribution_for_text(text: str, evidence_map: EvidenceMap) -> List[Dict[str, Any]]:
    """Top-2 evidence lines supporting `text` (score = 0.78 * overlap + 0.22 if numbers are covered)."""
    normalized = normalize_text(text, 2000, 1, text)
    if not normalized:
        return []

    scored = []
    for line in evidence_map.lines:
        overlap = lexical_overlap_ratio(normalized, line.text)
        numeric_penalty = count_ungrounded_numeric_tokens(normalized, line.numeric_tokens)
        score = overlap * 0.78 + (0.22 if numeric_penalty == 0 else 0.0)
        scored.append((score, line))

    scored.sort(key=lambda item: item[0], reverse=True)
    return [
        {
            "idx": line.idx,
            "start": line.start,
            "end": line.end,
            "score": round(score, 3),
            "excerpt": normalize_text(line.text, 220, 8, line.text),
        }
        for score, line in scored[:2]
        if score >= 0.08
    ]


def build_source_attribution(task: Any, payload: Mapping[str, Any], evidence_map: EvidenceMap) -> Dict[str, Any]:
    return {
        block.path: evidence_attribution_for_text(block.text, evidence_map)
        for block in collect_task_string_blocks(task, payload)
    }


_THREAD_PREFIX_RE = re.compile(r"^\s*\d+\s*/\s*\d*\s*")
_CLIP_TITLE_PREFIX_RE = re.compile(r"^\s*corte\s+\d+\s*[:.)-]?\s*", re.IGNORECASE)


def normalize_for_numeric_guard(task: Any, path: str, text: str) -> str:
    """Drop numbering that is layout, not a claim (thread counters, "Corte 2:")."""
    name = task_name(task)
    current = text
    if name == "x" and path.startswith("thread["):
        current = _THREAD_PREFIX_RE.sub("", current, count=1)
    if name == "reels" and path.endswith(".title"):
        current = _CLIP_TITLE_PREFIX_RE.sub("", current, count=1)
    return current
