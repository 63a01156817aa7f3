"""Transcript window selection for short clips."""

from __future__ import annotations

from dataclasses import dataclass, replace
import json
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

from pydantic import ValidationError

from core import GenerationProfile, TranscriptSegment
from generation.schemas import ReelsScoutSchema
from generation.text import (
    INTRO_RE,
    OUTRO_RE,
    STRONG_HOOK_RE,
    opening_hook_strength,
    segment_score,
    transcript_excerpt,
    word_count,
)


logger = logging.getLogger(__name__)

WINDOW_OVERLAP_BUFFER_MS = 2_500
_SEED_LIMIT = 90


@dataclass(frozen=True)
class DurationPolicy:
    min_duration_ms: int
    target_duration_ms: int
    max_duration_ms: int


@dataclass(frozen=True)
class ClipWindow:
    """Contiguous run of segments; `start_idx`/`end_idx` are list positions, not segment numbers."""

    start_idx: int
    end_idx: int
    start_ms: int
    end_ms: int
    avg_score: float
    text: str
    editorial_score: float = 0.0
    # produced by a last-resort stage; may sit outside the duration policy
    relaxed: bool = False

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms

    @property
    def key(self) -> str:
        return f"{self.start_idx}:{self.end_idx}"


def resolve_clip_count(duration_sec: float, length: str) -> int:
    base = 2 if duration_sec < 240 else 3
    if length == "long":
        offset = 1 if duration_sec >= 600 else 0
    elif length == "short":
        offset = -1
    else:
        offset = 0
    return max(2, min(4, base + offset))


_LENGTH_PRESETS = {
    "short": (16_000, 22_000, 34_000),
    "standard": (20_000, 30_000, 45_000),
    "long": (24_000, 34_000, 52_000),
}
_OUTCOME_OFFSETS = {
    "followers": (-2_000, -4_000, -4_000),
    "shares": (0, 1_000, 2_000),
    "leads": (2_000, 4_000, 5_000),
    "authority": (1_000, 3_000, 4_000),
}


def resolve_duration_policy(duration_sec: float, length: str, target_outcome: str = "followers") -> DurationPolicy:
    """Clip duration bounds by requested length and outcome; short sources get shorter clips."""
    base_min, base_target, base_max = _LENGTH_PRESETS.get(length, _LENGTH_PRESETS["standard"])
    off_min, off_target, off_max = _OUTCOME_OFFSETS.get(target_outcome, (0, 0, 0))
    preset_min = max(10_000, base_min + off_min)
    preset_target = max(14_000, base_target + off_target)
    preset_max = max(22_000, base_max + off_max)

    if duration_sec < 120:
        return DurationPolicy(
            min_duration_ms=max(14_000, preset_min - 4_000),
            target_duration_ms=max(18_000, preset_target - 6_000),
            max_duration_ms=max(30_000, preset_max - 6_000),
        )
    return DurationPolicy(preset_min, preset_target, preset_max)


def make_window_from_bounds(segments: Sequence[TranscriptSegment], start_idx: int, end_idx: int) -> ClipWindow:
    chunk = segments[start_idx : end_idx + 1]
    avg = sum(segment_score(seg) for seg in chunk) / max(1, len(chunk))
    return ClipWindow(
        start_idx=start_idx,
        end_idx=end_idx,
        start_ms=segments[start_idx].start_ms,
        end_ms=segments[end_idx].end_ms,
        avg_score=avg,
        text=" ".join(seg.text for seg in chunk),
    )


def build_window_from_seed(
    segments: Sequence[TranscriptSegment],
    seed_index: int,
    policy: DurationPolicy,
) -> ClipWindow:
    """Grow around the seed until the minimum, then toward the target without passing the maximum."""
    last = len(segments) - 1
    left = right = seed_index

    def duration() -> int:
        return segments[right].end_ms - segments[left].start_ms

    while duration() < policy.min_duration_ms and (left > 0 or right < last):
        if right < last:
            right += 1
        if duration() >= policy.min_duration_ms:
            break
        if left > 0:
            left -= 1

    while duration() < policy.target_duration_ms and (left > 0 or right < last):
        right_duration = segments[right + 1].end_ms - segments[left].start_ms if right < last else float("inf")
        left_duration = segments[right].end_ms - segments[left - 1].start_ms if left > 0 else float("inf")
        can_right = right < last and right_duration <= policy.max_duration_ms
        can_left = left > 0 and left_duration <= policy.max_duration_ms

        if not can_right and not can_left:
            break
        if can_right and (not can_left or right_duration <= left_duration):
            right += 1
        else:
            left -= 1

    return make_window_from_bounds(segments, left, right)


def build_window_from_range(
    segments: Sequence[TranscriptSegment],
    start_segment_idx: int,
    end_segment_idx: int,
    policy: DurationPolicy,
) -> Optional[ClipWindow]:
    """Window for a proposed segment-number range; regrown from its midpoint when out of bounds."""
    positions = {seg.idx: position for position, seg in enumerate(segments)}
    start_pos = positions.get(start_segment_idx)
    end_pos = positions.get(end_segment_idx)
    if start_pos is None or end_pos is None:
        return None

    left, right = min(start_pos, end_pos), max(start_pos, end_pos)
    initial = make_window_from_bounds(segments, left, right)
    if policy.min_duration_ms <= initial.duration_ms <= policy.max_duration_ms:
        return initial
    return build_window_from_seed(segments, (left + right) // 2, policy)


def windows_overlap(a: ClipWindow, b: ClipWindow, buffer_ms: int = WINDOW_OVERLAP_BUFFER_MS) -> bool:
    return not (a.end_ms + buffer_ms < b.start_ms or b.end_ms + buffer_ms < a.start_ms)


def seed_context_score(
    segment: TranscriptSegment,
    index: int,
    segments: Sequence[TranscriptSegment],
    duration_sec: float,
) -> float:
    progress = index / max(1, len(segments) - 1)
    start_sec = segment.start_ms / 1000
    remaining_sec = duration_sec - start_sec
    text = segment.text
    score = 0.0

    if duration_sec >= 120 and start_sec < 20:
        score -= 3.4
    elif duration_sec >= 120 and start_sec < 40:
        score -= 1.8
    elif duration_sec >= 75 and start_sec < 10:
        score -= 1.5

    if remaining_sec < 15 and duration_sec > 40:
        score -= 1.7
    if progress > 0.9:
        score -= 0.8

    if INTRO_RE.search(text):
        score -= 3
    if OUTRO_RE.search(text):
        score -= 2.4
    if STRONG_HOOK_RE.search(text):
        score += 1.1
    if re.search(r"\d", text):
        score += 0.5
    score += opening_hook_strength(text) * 0.55

    words = word_count(text)
    if 14 <= words <= 60:
        score += 0.8
    if words < 8:
        score -= 0.8
    return score


def window_editorial_score(window: ClipWindow, duration_sec: float) -> float:
    duration = window.duration_ms / 1000
    start_sec = window.start_ms / 1000
    remaining_sec = duration_sec - start_sec
    words = word_count(window.text)
    score = window.avg_score

    if 18 <= duration <= 42:
        score += 1.2
    elif duration < 14:
        score -= 1.2
    elif duration > 50:
        score -= 0.7

    if 26 <= words <= 120:
        score += 1
    elif words < 20:
        score -= 1

    if INTRO_RE.search(window.text):
        score -= 3.1
    if OUTRO_RE.search(window.text):
        score -= 2.2
    if STRONG_HOOK_RE.search(window.text):
        score += 1.2
    score += opening_hook_strength(window.text)

    if duration_sec >= 120 and start_sec < 20:
        score -= 2.2
    if remaining_sec < 15 and duration_sec > 50:
        score -= 1.8
    return score


def _weak_intro(window: ClipWindow, duration_sec: float) -> bool:
    if duration_sec < 80 or window.start_ms / 1000 > 20:
        return False
    return bool(INTRO_RE.search(window.text)) and opening_hook_strength(window.text) < 2.4


def _weak_outro(window: ClipWindow, duration_sec: float) -> bool:
    if duration_sec < 70 or duration_sec - window.start_ms / 1000 > 18:
        return False
    return bool(OUTRO_RE.search(window.text)) and opening_hook_strength(window.text) < 2.6


def _early_without_elite_hook(window: ClipWindow, duration_sec: float) -> bool:
    if duration_sec < 150 or window.start_ms / 1000 > 30:
        return False
    return opening_hook_strength(window.text) < 3.1


def _rejected_by_position(window: ClipWindow, duration_sec: float) -> bool:
    return (
        _weak_intro(window, duration_sec)
        or _weak_outro(window, duration_sec)
        or _early_without_elite_hook(window, duration_sec)
    )


def _within_policy(window: ClipWindow, policy: DurationPolicy) -> bool:
    return policy.min_duration_ms <= window.duration_ms <= policy.max_duration_ms


def _fits(window: ClipWindow, selected: Sequence[ClipWindow]) -> bool:
    return not any(existing.key == window.key or windows_overlap(existing, window) for existing in selected)


def select_clip_windows(
    segments: Sequence[TranscriptSegment],
    clip_count: int,
    duration_sec: float,
    length: str = "standard",
    target_outcome: str = "followers",
) -> List[ClipWindow]:
    """
    Pick up to `clip_count` non-overlapping windows ranked by editorial score.

    Back-fill stages, each only when the previous left slots open:
    full policy, relaxed hook threshold, single-segment windows, then
    the first available window when nothing survived at all. The last
    two stages are flagged `relaxed` and are the only ones that may return
    a window outside the duration policy.
    """
    if not segments or clip_count <= 0:
        return []

    policy = resolve_duration_policy(duration_sec, length, target_outcome)
    ranked_seeds = sorted(
        (
            (index, segment_score(seg) + seed_context_score(seg, index, segments, duration_sec))
            for index, seg in enumerate(segments)
        ),
        key=lambda item: item[1],
        reverse=True,
    )

    candidates: Dict[str, ClipWindow] = {}
    for index, seed_score in ranked_seeds[:_SEED_LIMIT]:
        window = build_window_from_seed(segments, index, policy)
        if not _within_policy(window, policy):
            continue
        if _rejected_by_position(window, duration_sec) or opening_hook_strength(window.text) < 2.5:
            continue
        editorial = window_editorial_score(window, duration_sec) + seed_score * 0.35
        existing = candidates.get(window.key)
        if existing is None or editorial > existing.editorial_score:
            candidates[window.key] = replace(window, editorial_score=editorial)

    selected: List[ClipWindow] = []
    for candidate in sorted(candidates.values(), key=lambda win: win.editorial_score, reverse=True):
        if len(selected) >= clip_count:
            break
        if _fits(candidate, selected):
            selected.append(candidate)

    if len(selected) < clip_count:
        for index, _ in ranked_seeds:
            if len(selected) >= clip_count:
                break
            window = build_window_from_seed(segments, index, policy)
            if not _within_policy(window, policy):
                continue
            if _rejected_by_position(window, duration_sec) or opening_hook_strength(window.text) < 2.1:
                continue
            if _fits(window, selected):
                selected.append(window)

    if len(selected) < clip_count:
        for index, _ in ranked_seeds:
            if len(selected) >= clip_count:
                break
            window = replace(make_window_from_bounds(segments, index, index), relaxed=True)
            if _rejected_by_position(window, duration_sec) or opening_hook_strength(window.text) < 1.8:
                continue
            if _fits(window, selected):
                selected.append(window)

    if not selected:
        emergency: Optional[ClipWindow] = None
        for index, _ in ranked_seeds:
            window = build_window_from_seed(segments, index, policy)
            if not _rejected_by_position(window, duration_sec) and opening_hook_strength(window.text) >= 1.6:
                emergency = window
                break
            if emergency is None:
                emergency = window
        if emergency is not None:
            logger.info("Clip window selection fell back to the first available window")
            selected.append(replace(emergency, relaxed=True))

    return sorted(selected[:clip_count], key=lambda win: win.start_ms)


SCOUT_SYSTEM_PROMPT = "\n".join(
    [
        "Voce e Head de Conteudo para Reels com foco em crescimento de audiencia e retencao real.",
        "Sua tarefa e escolher os melhores recortes da transcricao com base em potencial editorial, nao em ordem cronologica.",
        "Voce deve evitar abertura protocolar e encerramento fraco, exceto se houver gancho forte verificavel no texto.",
        "Selecione janelas com tese clara, friccao, aplicabilidade e potencial de compartilhamento.",
        "Nunca invente indice fora da transcricao.",
        "Nunca use travessao em nenhum texto.",
        "Retorne SOMENTE JSON valido no formato:",
        '{ "clips": [ { "startIdx": 1, "endIdx": 3, "angle": "provocative", "rationale": "motivo curto" } ] }',
    ]
)


def scout_user_prompt(
    segments: Sequence[TranscriptSegment],
    analysis: Mapping[str, Any],
    profile: GenerationProfile,
    clip_count: int,
    policy: DurationPolicy,
) -> str:
    reels = profile.tasks.reels
    memory = profile.performance_memory.reels
    return "\n".join(
        [
            "ANALISE (JSON):",
            json.dumps(dict(analysis), ensure_ascii=False),
            "TRANSCRICAO COM INDICES:",
            transcript_excerpt(segments, 140),
            "CONFIG:",
            f"- publico: {profile.audience}",
            f"- objetivo: {profile.goal}",
            f"- tom: {profile.tone}",
            f"- estrategia reels: {reels.strategy}",
            f"- foco reels: {reels.focus}",
            f"- outcome reels: {reels.target_outcome}",
            f"- nivel audiencia reels: {reels.audience_level}",
            f"- intensidade: {reels.length}",
            f"- voz marca: {profile.voice.identity}",
            f"- regras voz: {profile.voice.writing_rules}",
            f"- aprendizados vencedores: {memory.wins or 'sem historico'}",
            f"- evitar padroes: {memory.avoid or 'sem historico'}",
            f"- clips desejados: {clip_count}",
            f"- duracao minima (s): {policy.min_duration_ms / 1000:.0f}",
            f"- duracao alvo (s): {policy.target_duration_ms / 1000:.0f}",
            f"- duracao maxima (s): {policy.max_duration_ms / 1000:.0f}",
            "REGRAS DE SELECAO:",
            "1) Escolha cortes que maximizem retencao e compartilhamento para ganhar seguidores.",
            "2) Prefira cortes com problema claro, contraste e aplicacao pratica.",
            "3) Evite cortes com inicio protocolar no comeco do video sem gancho forte.",
            "4) Distribua os cortes ao longo do video quando possivel.",
            "Saida final: SOMENTE JSON.",
        ]
    )


def windows_from_proposals(
    segments: Sequence[TranscriptSegment],
    proposals: Sequence[Mapping[str, Any]],
    clip_count: int,
    duration_sec: float,
    length: str = "standard",
    target_outcome: str = "followers",
) -> List[ClipWindow]:
    """Turn model-proposed `{startIdx, endIdx}` ranges into windows, filling gaps heuristically."""
    policy = resolve_duration_policy(duration_sec, length, target_outcome)
    candidates: Dict[str, ClipWindow] = {}
    for proposal in proposals:
        try:
            start_idx = int(proposal.get("startIdx"))
            end_idx = int(proposal.get("endIdx"))
        except (TypeError, ValueError):
            continue
        window = build_window_from_range(segments, start_idx, end_idx, policy)
        if window is None or not _within_policy(window, policy) or _rejected_by_position(window, duration_sec):
            continue
        if opening_hook_strength(window.text) < 2.5 or window.key in candidates:
            continue
        candidates[window.key] = replace(window, editorial_score=window_editorial_score(window, duration_sec))

    selected: List[ClipWindow] = []
    for candidate in sorted(candidates.values(), key=lambda win: win.editorial_score, reverse=True):
        if len(selected) >= clip_count:
            break
        if _fits(candidate, selected):
            selected.append(candidate)

    if len(selected) < clip_count:
        for window in select_clip_windows(segments, clip_count, duration_sec, length, target_outcome):
            if len(selected) >= clip_count:
                break
            if _fits(window, selected):
                selected.append(window)

    return sorted(selected[:clip_count], key=lambda win: win.start_ms)


async def select_clip_windows_by_ai(
    requester: Any,
    segments: Sequence[TranscriptSegment],
    analysis: Mapping[str, Any],
    profile: GenerationProfile,
    clip_count: int,
    duration_sec: float,
    usage_recorder: Any = None,
) -> List[ClipWindow]:
    """Ask the reels route to scout windows; any failure falls back to `select_clip_windows`."""
    reels = profile.tasks.reels

    def heuristic() -> List[ClipWindow]:
        return select_clip_windows(segments, clip_count, duration_sec, reels.length, reels.target_outcome)

    if not requester.route_available("reels"):
        return heuristic()

    policy = resolve_duration_policy(duration_sec, reels.length, reels.target_outcome)
    result = await requester.request(
        "reels",
        SCOUT_SYSTEM_PROMPT,
        scout_user_prompt(segments, analysis, profile, clip_count, policy),
        max_tokens=1400,
        usage_recorder=usage_recorder,
    )
    if result.output is None:
        return heuristic()

    try:
        scout = ReelsScoutSchema.model_validate(result.output)
    except ValidationError as exc:
        logger.info("Scout output rejected: %s", exc.error_count())
        return heuristic()

    proposals = [clip.model_dump(by_alias=True) for clip in scout.clips]
    return windows_from_proposals(segments, proposals, clip_count, duration_sec, reels.length, reels.target_outcome)


def premium_windows(windows: Sequence[ClipWindow], duration_sec: float, clip_count: int) -> List[ClipWindow]:
    """Windows passing every position and hook check, unless that leaves fewer than two."""
    strict = [
        window
        for window in windows
        if not _rejected_by_position(window, duration_sec) and opening_hook_strength(window.text) >= 2.5
    ]
    if len(strict) >= min(2, len(windows)):
        return strict[:clip_count]
    return list(windows)[:clip_count]
