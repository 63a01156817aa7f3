from __future__ import annotations

from typing import List

from core import AITask, TranscriptSegment, default_generation_profile, merge_generation_profile
from generation.builders import (
    DEFAULT_THESIS,
    build_analysis,
    build_linkedin,
    build_newsletter,
    build_reels,
    build_x_posts,
)
from generation.scoring import heuristic_evaluation, unique_ratio
from generation.text import contains_ellipsis_artifact, timestamp_to_ms
from generation.windows import resolve_clip_count


_LINES = [
    "O erro que trava o seu faturamento e publicar sem uma tese clara por canal!",
    "Primeiro passo: defina o metodo e a metrica antes de escrever qualquer post.",
    "Na pratica, 3 de cada 10 posts geram conversa com cliente qualificado.",
    "Evite abrir com contexto longo, comece pela dor real do seu cliente.",
    "Framework simples: tese, prova, aplicacao e uma pergunta no final?",
    "Pare de medir alcance isolado e compare resposta qualificada por semana.",
]


def _segments(count: int = 48, step_ms: int = 5000) -> List[TranscriptSegment]:
    segments = []
    for i in range(count):
        text = _LINES[i % len(_LINES)]
        segments.append(
            TranscriptSegment(
                idx=i + 1, start_ms=i * step_ms, end_ms=(i + 1) * step_ms, text=text, tokens_est=len(text.split())
            )
        )
    return segments


def test_analysis_builder_reads_transcript() -> None:
    segments = _segments()

    analysis = build_analysis(segments)

    assert analysis["thesis"] == segments[0].text
    assert analysis["contentType"] == "framework"
    assert 0 <= analysis["polarityScore"] <= 10
    assert set(analysis["structure"]) == {"problem", "tension", "insight", "application"}
    assert analysis["retentionMoments"][0]["type"] == "hook"
    assert len(analysis["editorialAngles"]) == 3
    assert len(analysis["recommendations"]) == 4


def test_analysis_builder_handles_empty_transcript() -> None:
    analysis = build_analysis([])

    assert analysis["thesis"] == DEFAULT_THESIS
    assert analysis["polarityScore"] == 5
    assert analysis["retentionMoments"] == []


def test_reels_builder_clips_are_anchored() -> None:
    segments = _segments()
    analysis = build_analysis(segments)
    duration_sec = 240

    reels = build_reels(segments, analysis, duration_sec)

    assert 1 <= len(reels["clips"]) <= resolve_clip_count(duration_sec, "standard")
    for clip in reels["clips"]:
        assert len(clip["hashtags"]) >= 3
        assert not contains_ellipsis_artifact(clip["caption"])
        assert timestamp_to_ms(clip["start"]) < timestamp_to_ms(clip["end"])
        assert all(5 <= score <= 9 for score in clip["scores"].values())


def test_newsletter_builder_section_order() -> None:
    segments = _segments()
    newsletter = build_newsletter(segments, build_analysis(segments))

    kinds = [section["type"] for section in newsletter["sections"]]
    assert kinds[0] == "intro"
    assert kinds[-2:] == ["application", "cta"]
    # default profile asks for a long newsletter
    assert kinds.count("insight") == 4
    assert newsletter["sections"][1]["text"].startswith("Mecanismo:")


def test_linkedin_builder_has_proof_and_question() -> None:
    segments = _segments()
    linkedin = build_linkedin(segments, build_analysis(segments))

    assert linkedin["hook"].startswith("Tese forte:")
    assert linkedin["body"][0].startswith("Prova:")
    assert sum(1 for paragraph in linkedin["body"] if paragraph.startswith("Framework")) == 3
    assert "?" in linkedin["ctaQuestion"]


def test_x_builder_respects_length_and_numbering() -> None:
    segments = _segments()
    posts = build_x_posts(segments, build_analysis(segments))

    assert all(len(post) <= 280 for post in posts["standalone"] + posts["thread"])
    # default profile: short x length, five thread posts
    assert [post.split(" ", 1)[0] for post in posts["thread"]] == ["1/5", "2/5", "3/5", "4/5", "5/5"]
    assert 2 <= len(posts["standalone"]) <= 4


def test_x_builder_long_profile() -> None:
    segments = _segments()
    profile = merge_generation_profile(default_generation_profile(), {"tasks": {"x": {"length": "long"}}})

    posts = build_x_posts(segments, build_analysis(segments, profile), profile)

    assert len(posts["thread"]) == 8


def test_heuristic_scores_stay_in_range() -> None:
    segments = _segments()
    analysis = build_analysis(segments)
    payloads = {
        AITask.ANALYSIS: analysis,
        AITask.REELS: build_reels(segments, analysis, 240),
        AITask.NEWSLETTER: build_newsletter(segments, analysis),
        AITask.LINKEDIN: build_linkedin(segments, analysis),
        AITask.X: build_x_posts(segments, analysis),
    }
    for task, payload in payloads.items():
        evaluation = heuristic_evaluation(task, payload)
        assert 0 <= evaluation.overall <= 10
        for value in evaluation.subscores.values():
            assert 0 <= value <= 10


def test_empty_payload_scores_low() -> None:
    empty = heuristic_evaluation("linkedin", {"hook": "", "body": [], "ctaQuestion": ""})
    rich = heuristic_evaluation("linkedin", build_linkedin(_segments(), build_analysis(_segments())))
    assert empty.overall < rich.overall


def test_unique_ratio() -> None:
    assert unique_ratio([]) == 1.0
    assert unique_ratio(["a", "A ", "b"]) == 2 / 3
