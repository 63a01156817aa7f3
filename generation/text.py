"""Text normalization, transcript formatting and sentence-signal helpers."""

from __future__ import annotations

import math
import re
import unicodedata
from typing import Iterable, List, Optional, Pattern, Sequence, Tuple

from core import TranscriptSegment


STOPWORDS = frozenset(
    {
        "a", "o", "as", "os", "de", "da", "do", "das", "dos", "e", "ou", "que", "com",
        "para", "por", "na", "no", "nas", "nos", "em", "um", "uma", "ser", "se", "como",
        "mais", "menos", "ao", "aos", "voce", "voces", "eu", "ele", "ela", "eles", "elas",
    }
)

INTRO_RE = re.compile(
    r"\b(nesse video|neste video|no video de hoje|hoje eu vou|hoje vou|se eu tivesse um conselho|"
    r"antes de mais nada|fala galera|bom dia|boa noite|deixa eu te contar)\b",
    re.IGNORECASE,
)
OUTRO_RE = re.compile(
    r"\b(se inscreva|deixa o like|curte ai|ate o proximo|obrigado por assistir|valeu pessoal)\b",
    re.IGNORECASE,
)
STRONG_HOOK_RE = re.compile(
    r"\b(erro|ninguem te conta|evite|nao faca|regra|framework|metodo|passo|faturamento|venda|"
    r"cliente|lucro|escala|crescer|trava)\b",
    re.IGNORECASE,
)
ACTION_SIGNAL_RE = re.compile(
    r"\b(aplique|aplicar|teste|testar|mapeie|mapear|ajuste|ajustar|defina|definir|valide|validar|"
    r"priorize|priorizar|pare|evite|execute|executar|compare|medir|acompanhe)\b",
    re.IGNORECASE,
)
PAIN_SIGNAL_RE = re.compile(
    r"\b(erro|trava|travando|perde|perder|custo|quebra|fracassa|fracasso|nao vende|não vende|"
    r"nao fecha|não fecha|desperdica|gargalo|risco)\b",
    re.IGNORECASE,
)
_HOOK_TRIGGER_RE = re.compile(r"\b(erro|cuidado|pare|nunca|evite|segredo|ninguem te conta)\b", re.IGNORECASE)
_SEGMENT_KEYWORD_RE = re.compile(r"(erro|resultado|estrategia|passo|metodo|segredo|importante)", re.IGNORECASE)
_ELLIPSIS_RE = re.compile(r"(?:\.{3,}|…)")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_LEADING_FILLER_RE = re.compile(
    r"^(ent[aã]o|tipo|assim|cara|galera|beleza|bom|olha|veja|vamos la|vamos lá|"
    r"se eu tivesse um conselho[,.:]?)\s*",
    re.IGNORECASE,
)


def clean_token(token: str) -> str:
    lowered = unicodedata.normalize("NFD", str(token or "").lower())
    stripped = "".join(ch for ch in lowered if not unicodedata.combining(ch))
    return re.sub(r"[^a-z0-9]", "", stripped)


def ms_to_timestamp(ms: int) -> str:
    """`HH:MM:SS.mmm` (the separator used by clip payloads)."""
    value = max(0, int(ms))
    hours = value // 3_600_000
    minutes = (value % 3_600_000) // 60_000
    seconds = (value % 60_000) // 1_000
    millis = value % 1_000
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}.{millis:03d}"


_TIMESTAMP_RE = re.compile(r"^(\d{1,2}):(\d{2}):(\d{2})(?:\.(\d{1,3}))?$")
_TIMESTAMP_TOKEN_RE = re.compile(r"\d{1,2}:\d{2}:\d{2}(?:[.,]\d{1,3})?")


def normalize_timestamp_token(raw: str) -> Optional[str]:
    """`H:MM:SS,m` style tokens to `HH:MM:SS.mmm`; None when unrecognized."""
    match = _TIMESTAMP_RE.match(str(raw or "").strip().replace(",", ".", 1))
    if not match:
        return None
    hours, minutes, seconds, millis = match.groups()
    return f"{int(hours):02d}:{int(minutes):02d}:{int(seconds):02d}.{(millis or '0').ljust(3, '0')[:3]}"


def timestamp_to_ms(value: str) -> Optional[int]:
    normalized = normalize_timestamp_token(value)
    if normalized is None:
        return None
    hours, minutes, rest = normalized.split(":")
    seconds, millis = rest.split(".")
    return ((int(hours) * 60 + int(minutes)) * 60 + int(seconds)) * 1000 + int(millis)


def parse_timestamp_range(raw: str) -> Optional[Tuple[str, str]]:
    tokens = _TIMESTAMP_TOKEN_RE.findall(str(raw or ""))
    if len(tokens) < 2:
        return None
    start = normalize_timestamp_token(tokens[0])
    end = normalize_timestamp_token(tokens[1])
    if not start or not end:
        return None
    return start, end


def transcript_window_text(segments: Sequence[TranscriptSegment], start_token: str, end_token: str) -> str:
    """Text of the segments fully inside a timestamp range."""
    start_ms = timestamp_to_ms(start_token)
    end_ms = timestamp_to_ms(end_token)
    if start_ms is None or end_ms is None or end_ms <= start_ms:
        return ""
    return " ".join(seg.text for seg in segments if seg.start_ms >= start_ms and seg.end_ms <= end_ms).strip()


def word_count(text: str) -> int:
    return len(str(text or "").split())


def first_words(text: str, count: int) -> str:
    return " ".join(str(text or "").split()[:count])


def segment_score(segment: TranscriptSegment) -> float:
    length_score = min(4.0, segment.tokens_est / 6)
    hook_bonus = 2.0 if re.search(r"[?!]", segment.text) else 0.0
    number_bonus = 1.5 if re.search(r"\d", segment.text) else 0.0
    keyword_bonus = 2.0 if _SEGMENT_KEYWORD_RE.search(segment.text) else 0.0
    return round(length_score + hook_bonus + number_bonus + keyword_bonus, 2)


def opening_hook_strength(text: str) -> float:
    """Hook signal of the first 16 words."""
    opening = first_words(text, 16)
    if not opening:
        return 0.0

    score = 0.0
    if STRONG_HOOK_RE.search(opening):
        score += 2.4
    if re.search(r"[?!]", opening):
        score += 1.2
    if re.search(r"\d", opening):
        score += 1.0
    if _HOOK_TRIGGER_RE.search(opening):
        score += 1.3
    if word_count(opening) < 6:
        score -= 0.8
    return score


def take_best_segments(segments: Sequence[TranscriptSegment], count: int) -> List[TranscriptSegment]:
    ranked = sorted(segments, key=segment_score, reverse=True)[: max(0, count)]
    return sorted(ranked, key=lambda seg: seg.start_ms)


def pick_top_topics(segments: Sequence[TranscriptSegment], limit: int = 5) -> List[str]:
    counter: dict = {}
    for segment in segments:
        for raw in segment.text.split():
            token = clean_token(raw)
            if len(token) < 4 or token in STOPWORDS:
                continue
            counter[token] = counter.get(token, 0) + 1
    ranked = sorted(counter.items(), key=lambda item: item[1], reverse=True)
    return [token for token, _ in ranked[:limit]]


def pick_coverage_segments(segments: Sequence[TranscriptSegment], target_count: int) -> List[TranscriptSegment]:
    """Split the list into `target_count` buckets and keep the best segment of each."""
    if len(segments) <= target_count:
        return list(segments)

    safe_target = max(1, target_count)
    interval = len(segments) / safe_target
    selected: dict = {}

    for bucket in range(safe_target):
        start = math.floor(bucket * interval)
        end = min(len(segments), math.floor((bucket + 1) * interval) + 1)
        chunk = segments[start : max(start + 1, end)]
        if not chunk:
            continue
        best = chunk[0]
        for current in chunk[1:]:
            if segment_score(current) > segment_score(best):
                best = current
        selected[best.idx] = best

    return sorted(selected.values(), key=lambda seg: seg.start_ms)


def format_transcript_segments(segments: Iterable[TranscriptSegment], max_chars: Optional[int] = None) -> str:
    lines: List[str] = []
    budget = max_chars
    for segment in segments:
        line = f"[{segment.idx}] {ms_to_timestamp(segment.start_ms)}-{ms_to_timestamp(segment.end_ms)}: {segment.text}"
        if budget is not None and len(line) + 1 > budget:
            break
        lines.append(line)
        if budget is not None:
            budget -= len(line) + 1
    return "\n".join(lines)


def transcript_excerpt(segments: Sequence[TranscriptSegment], max_segments: int = 80) -> str:
    return format_transcript_segments(segments[:max_segments])


def analysis_transcript_excerpt(segments: Sequence[TranscriptSegment], quality_mode: str) -> str:
    """Coverage sample plus the highest-signal segments, under a char budget."""
    if not segments:
        return ""

    is_max = quality_mode == "max"
    max_segments = 160 if is_max else 120
    coverage_target = 70 if is_max else 45
    max_chars = 42_000 if is_max else 28_000

    selected = {seg.idx: seg for seg in pick_coverage_segments(segments, min(coverage_target, len(segments)))}
    limit = min(max_segments, len(segments))
    for segment in sorted(segments, key=segment_score, reverse=True):
        if len(selected) >= limit:
            break
        selected.setdefault(segment.idx, segment)

    ordered = sorted(selected.values(), key=lambda seg: seg.start_ms)
    return "\n".join(
        [
            f"META total_segments={len(segments)} selecionados={len(ordered)} modo_qualidade={quality_mode}",
            "CRITERIO cobertura_total + trechos_de_alto_potencial",
            format_transcript_segments(ordered, max_chars),
        ]
    )


def truncate(text: str, max_chars: int) -> str:
    """Clip at a sentence break when one sits in the last 40%, else at a word boundary."""
    if len(text) <= max_chars:
        return text

    clipped = text[:max_chars].rstrip()
    sentence_break = max(clipped.rfind(". "), clipped.rfind("! "), clipped.rfind("? "), clipped.rfind("\n"))
    if sentence_break >= math.floor(max_chars * 0.6):
        return clipped[: sentence_break + 1].strip()

    last_space = clipped.rfind(" ")
    if last_space >= math.floor(max_chars * 0.8):
        return clipped[:last_space].strip()

    return clipped


def strip_em_dash(text: str) -> str:
    return re.sub(r"[—–]", ", ", text)


def strip_trailing_truncation_artifacts(text: str) -> str:
    current = text.strip()
    if not current:
        return current
    if _ELLIPSIS_RE.search(current):
        current = re.sub(r"\s+\S*(?:\.{3,}|…)\s*$", "", current).strip()
        current = re.sub(r"(?:\.{3,}|…)\s*$", "", current).strip()
    return current


def strip_ellipsis_artifacts(text: str) -> str:
    return re.sub(r"\s{2,}", " ", _ELLIPSIS_RE.sub(" ", text)).strip()


def normalize_text(text: str, max_chars: int, min_chars: int = 0, fallback: str = "") -> str:
    """Strip dash/ellipsis artifacts, collapse whitespace, fall back when too short, then clip."""
    cleaned = strip_ellipsis_artifacts(strip_em_dash(str(text or "")))
    cleaned = re.sub(r"[ \t]{2,}", " ", cleaned)
    cleaned = re.sub(r"\n{3,}", "\n\n", cleaned).strip()
    normalized = strip_trailing_truncation_artifacts(cleaned)

    if len(normalized) < min_chars:
        fallback_normalized = strip_trailing_truncation_artifacts(
            strip_ellipsis_artifacts(strip_em_dash(str(fallback or "")))
        ).strip()
        return truncate(fallback_normalized, max_chars)

    return truncate(normalized, max_chars)


def contains_ellipsis_artifact(text: str) -> bool:
    return bool(_ELLIPSIS_RE.search(str(text or "")))


def first_sentence(text: str) -> str:
    trimmed = str(text or "").strip()
    if not trimmed:
        return ""
    parts = [part.strip() for part in _SENTENCE_SPLIT_RE.split(trimmed) if part.strip()]
    return parts[0] if parts else trimmed


def split_sentences(text: str) -> List[str]:
    normalized = normalize_text(text, 5000, 1, text)
    if not normalized:
        return []
    return [part.strip() for part in _SENTENCE_SPLIT_RE.split(normalized) if len(part.strip()) >= 14]


def split_raw_sentences(text: str) -> List[str]:
    return [part.strip() for part in _SENTENCE_SPLIT_RE.split(str(text or "")) if part.strip()]


def trim_leading_filler(text: str) -> str:
    return _LEADING_FILLER_RE.sub("", str(text or "")).strip()


def pick_sentence_by_signal(sentences: Sequence[str], signal: Pattern[str], fallback: str = "") -> str:
    if not sentences:
        return fallback

    best = fallback
    best_score = float("-inf")
    for index, sentence in enumerate(sentences):
        score = opening_hook_strength(sentence)
        if signal.search(sentence):
            score += 2.2
        if re.search(r"\d|%|r\$", sentence, re.IGNORECASE):
            score += 0.9
        if re.search(r"[?!]", sentence):
            score += 0.7
        if index == 0:
            score += 0.35
        if score > best_score:
            best, best_score = sentence, score
    return best


def sentence_without_trailing_punctuation(text: str) -> str:
    return re.sub(r"[.!?]+$", "", str(text or "")).strip()


def split_paragraphs(text: str) -> List[str]:
    return [part.strip() for part in re.split(r"\n{2,}", str(text or "")) if part.strip()]


def split_list_lines(text: str) -> List[str]:
    lines = []
    for raw in str(text or "").split("\n"):
        line = re.sub(r"^\s*[-*•\d.)]+\s*", "", raw).strip()
        if line:
            lines.append(line)
    return lines


_NUMERIC_TOKEN_RE = re.compile(r"\d+(?:[.,]\d+)?%?")


def extract_numeric_tokens(text: str) -> List[str]:
    return [token.replace(",", ".").strip() for token in _NUMERIC_TOKEN_RE.findall(str(text or ""))]


def lexical_token_set(text: str) -> set:
    tokens = (clean_token(item) for item in str(text or "").split())
    return {token for token in tokens if len(token) >= 4 and token not in STOPWORDS}


def lexical_overlap_ratio(candidate: str, source: str) -> float:
    """Share of the candidate's lexical tokens that also appear in `source`."""
    candidate_set = lexical_token_set(candidate)
    source_set = lexical_token_set(source)
    if not candidate_set or not source_set:
        return 0.0
    return len(candidate_set & source_set) / len(candidate_set)


def count_ungrounded_numeric_tokens(candidate: str, source_numbers: Iterable[str]) -> int:
    known = set(source_numbers)
    tokens = extract_numeric_tokens(candidate)
    if not known:
        return len(tokens)
    return sum(1 for token in tokens if token not in known)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def meets_threshold(score: float, threshold: float, tolerance: float = 0.05) -> bool:
    if not math.isfinite(score) or not math.isfinite(threshold):
        return False
    return score + tolerance >= threshold


def round_score(value: float) -> float:
    return round(clamp(float(value), 0, 10), 2)
