from __future__ import annotations

from itertools import combinations
from typing import List

from core import TranscriptSegment
from generation.windows import (
    ClipWindow,
    make_window_from_bounds,
    premium_windows,
    resolve_clip_count,
    resolve_duration_policy,
    select_clip_windows,
    windows_from_proposals,
    windows_overlap,
)


_LINES = [
    "Erro {i}: por que o seu funil perde clientes toda semana sem voce perceber?",
    "Pare de postar sem estrategia, o resultado aparece quando existe um metodo claro.",
    "Na pratica, cada conteudo precisa de uma tese e de uma prova concreta.",
    "Quando eu mudei isso, a taxa de resposta subiu {i}% em poucas semanas!",
    "Evite abrir com contexto longo, comece pela dor do seu cliente.",
]


def _segments(count: int = 60, step_ms: int = 5000) -> List[TranscriptSegment]:
    segments = []
    for i in range(count):
        text = _LINES[i % len(_LINES)].format(i=i + 1)
        segments.append(
            TranscriptSegment(
                idx=i + 1,
                start_ms=i * step_ms,
                end_ms=(i + 1) * step_ms,
                text=text,
                tokens_est=len(text.split()),
            )
        )
    return segments


def _assert_disjoint(windows: List[ClipWindow]) -> None:
    for a, b in combinations(windows, 2):
        assert not windows_overlap(a, b)


def test_clip_count_by_duration_and_length() -> None:
    assert resolve_clip_count(100, "standard") == 2
    assert resolve_clip_count(300, "standard") == 3
    assert resolve_clip_count(700, "long") == 4
    assert resolve_clip_count(300, "short") == 2
    assert resolve_clip_count(100, "short") == 2


def test_short_sources_get_shorter_clips() -> None:
    long_source = resolve_duration_policy(300, "standard", "followers")
    short_source = resolve_duration_policy(100, "standard", "followers")

    assert (long_source.min_duration_ms, long_source.target_duration_ms, long_source.max_duration_ms) == (
        18_000,
        26_000,
        41_000,
    )
    assert (short_source.min_duration_ms, short_source.target_duration_ms, short_source.max_duration_ms) == (
        14_000,
        20_000,
        35_000,
    )


def test_selected_windows_never_overlap() -> None:
    segments = _segments()
    duration_sec = 300

    windows = select_clip_windows(segments, 3, duration_sec)

    assert 1 <= len(windows) <= 3
    _assert_disjoint(windows)
    assert [w.start_ms for w in windows] == sorted(w.start_ms for w in windows)


def test_policy_windows_respect_duration_bounds() -> None:
    segments = _segments()
    policy = resolve_duration_policy(300, "standard", "followers")

    for window in select_clip_windows(segments, 3, 300):
        if window.relaxed:
            continue
        assert policy.min_duration_ms <= window.duration_ms <= policy.max_duration_ms


def test_uneven_segments_keep_policy_windows_in_bounds() -> None:
    segments = []
    start = 0
    for i in range(8):
        end = start + (8_000 if i % 2 == 0 else 40_000)
        text = _LINES[i % len(_LINES)].format(i=i + 1)
        segments.append(TranscriptSegment(idx=i + 1, start_ms=start, end_ms=end, text=text))
        start = end
    policy = resolve_duration_policy(192, "standard", "followers")
    assert (policy.min_duration_ms, policy.max_duration_ms) == (18_000, 41_000)

    windows = select_clip_windows(segments, 3, 192)

    assert windows
    _assert_disjoint(windows)
    for window in windows:
        if not window.relaxed:
            assert policy.min_duration_ms <= window.duration_ms <= policy.max_duration_ms


def test_empty_transcript_yields_no_windows() -> None:
    assert select_clip_windows([], 3, 300) == []
    assert select_clip_windows(_segments(10), 0, 50) == []


def test_tiny_transcript_still_returns_a_window() -> None:
    segments = _segments(2, step_ms=3000)

    windows = select_clip_windows(segments, 2, 6)

    assert len(windows) >= 1
    _assert_disjoint(windows)


def test_proposals_skip_bad_ranges_and_backfill() -> None:
    segments = _segments()
    proposals = [
        {"startIdx": "abc", "endIdx": 3},
        {"startIdx": 999, "endIdx": 1000},
        {"startIdx": 21, "endIdx": 26},
        {"startIdx": 22, "endIdx": 27},
    ]

    windows = windows_from_proposals(segments, proposals, 3, 300)

    assert 1 <= len(windows) <= 3
    _assert_disjoint(windows)


def test_premium_windows_keeps_weak_list_when_filter_is_too_strict() -> None:
    segments = [
        TranscriptSegment(idx=i + 1, start_ms=i * 10_000, end_ms=(i + 1) * 10_000, text="ok entao vamos la")
        for i in range(6)
    ]
    weak = [make_window_from_bounds(segments, 0, 1), make_window_from_bounds(segments, 3, 4)]

    assert premium_windows(weak, 60, 2) == weak
