from __future__ import annotations

from typing import List

from core import TranscriptSegment, default_generation_profile
from generation.builders import build_analysis, build_linkedin, build_reels, build_x_posts
from generation.normalize import (
    ReelsContext,
    as_string_array,
    normalize_analysis_output,
    normalize_linkedin_output,
    normalize_newsletter_output,
    normalize_reels_output,
    normalize_x_output,
    unwrap_task_output,
)
from generation.sanitize import (
    cta_variants,
    sanitize_analysis_payload,
    sanitize_linkedin_payload,
    sanitize_reels_payload,
)
from generation.text import ms_to_timestamp
from generation.windows import resolve_duration_policy, select_clip_windows


_LINES = [
    "O erro que trava o seu faturamento e publicar sem uma tese clara por canal!",
    "Primeiro passo: defina o metodo e a metrica antes de escrever qualquer post.",
    "Na pratica, 3 de cada 10 posts geram conversa com cliente qualificado.",
    "Evite abrir com contexto longo, comece pela dor real do seu cliente.",
    "Framework simples: tese, prova, aplicacao e uma pergunta no final?",
    "Pare de medir alcance isolado e compare resposta qualificada por semana.",
]


def _segments(count: int = 48) -> List[TranscriptSegment]:
    return [
        TranscriptSegment(
            idx=i + 1,
            start_ms=i * 5000,
            end_ms=(i + 1) * 5000,
            text=_LINES[i % len(_LINES)],
            tokens_est=len(_LINES[i % len(_LINES)].split()),
        )
        for i in range(count)
    ]


def _reels_context(duration_sec: float = 240) -> ReelsContext:
    segments = _segments()
    profile = default_generation_profile()
    reels = profile.tasks.reels
    analysis = build_analysis(segments, profile)
    windows = select_clip_windows(segments, 3, duration_sec, reels.length, reels.target_outcome)
    return ReelsContext(
        segments=segments,
        windows=windows,
        fallback=sanitize_reels_payload(build_reels(segments, analysis, duration_sec, profile, windows)),
        analysis=analysis,
        profile=profile,
        duration_sec=duration_sec,
        clip_count=len(windows),
        policy=resolve_duration_policy(duration_sec, reels.length, reels.target_outcome),
        ctas=cta_variants(reels.cta_mode, profile.goal, reels.target_outcome),
    )


def test_as_string_array_flattens_shapes() -> None:
    assert as_string_array(["a", 2, True, float("nan"), {"text": "b"}, {"x": 1}, "  "]) == ["a", "2", "b"]
    assert as_string_array("um, dois;tres\nquatro") == ["um", "dois", "tres", "quatro"]
    assert as_string_array({"items": ["x", "y"]}) == ["x", "y"]
    assert as_string_array({"text": "so um"}) == ["so um"]
    assert as_string_array(None) == []


def test_unwrap_generic_and_task_wrappers() -> None:
    inner = {"hook": "h", "body": [], "ctaQuestion": "q"}
    assert unwrap_task_output("linkedin", {"data": {"linkedin": inner}}) == inner
    assert unwrap_task_output("reels", {"result": {"clips": [1, 2]}}) == {"clips": [1, 2]}

    x = unwrap_task_output("x", {"posts": {"standalonePosts": ["a"], "threadTweets": ["b"]}, "notes": {"style": "s"}})
    assert x == {"standalone": ["a"], "thread": ["b"], "notes": {"style": "s"}}
    assert unwrap_task_output("x", "not a record") == "not a record"


def test_linkedin_strict_schema() -> None:
    raw = {
        "hook": "Postar todo dia nao resolve distribuicao",
        "body": ["Exemplo: 3 posts por semana com tese clara.", "Framework: tese, prova e pergunta final."],
        "ctaQuestion": "Qual metrica voce acompanha hoje? Comente aqui",
    }
    result = normalize_linkedin_output({"output": raw}, {})

    assert result.accepted
    assert result.normalization == "linkedin_schema"
    assert result.payload["ctaQuestion"].endswith("?")


def test_linkedin_coerced_from_aliases() -> None:
    fallback = sanitize_linkedin_payload(build_linkedin(_segments(), build_analysis(_segments())))
    raw = {
        "title": "O erro invisivel que trava a sua distribuicao",
        "paragraphs": ["Primeiro: uma ideia por post.", "Exemplo: 3 de 10 posts geram conversa."],
        "question": "Qual formato voce vai testar primeiro?",
    }

    result = normalize_linkedin_output(raw, fallback)

    assert result.normalization == "linkedin_coerced_schema"
    assert result.note.startswith("coerced_schema(signal=")
    assert result.payload["hook"] == raw["title"]


def test_linkedin_empty_reply_is_rejected() -> None:
    fallback = sanitize_linkedin_payload(build_linkedin(_segments(), build_analysis(_segments())))

    result = normalize_linkedin_output({}, fallback)

    assert not result.accepted
    assert result.reason.startswith("schema_mismatch · ")


def test_analysis_low_signal_is_rejected() -> None:
    fallback = sanitize_analysis_payload(build_analysis(_segments()))

    result = normalize_analysis_output({"unrelated": True}, fallback)

    assert result.payload is None
    assert "coerce_low_signal(" in result.reason


def test_analysis_coerced_from_alias_fields() -> None:
    fallback = sanitize_analysis_payload(build_analysis(_segments()))
    raw = {
        "mainThesis": "Distribuicao sem tese clara por canal vira volume sem resultado",
        "topics": "distribuicao, funil, metricas",
        "recommendations": ["Defina uma tese por post.", "Meca respostas qualificadas por semana."],
        "content_type": "framework de passos",
    }

    result = normalize_analysis_output(raw, fallback)

    assert result.normalization == "analysis_coerced_schema"
    assert result.payload["thesis"] == raw["mainThesis"]
    assert result.payload["topics"] == ["distribuicao", "funil", "metricas"]
    assert result.payload["contentType"] == "framework"


def test_x_numbered_posts_become_thread() -> None:
    fallback = build_x_posts(_segments(), build_analysis(_segments()))
    raw = {
        "tweets": [
            "1/3 Comece pelo diagnostico do seu funil atual e anote onde as pessoas param.",
            "2/3 Depois escolha uma unica metrica de resposta para acompanhar toda semana.",
            "3/3 Ajuste o formato que mais perde atencao e compare o resultado em 7 dias.",
            "Consistencia nao e volume. Consistencia e sistema com tese, prova e pergunta.",
        ]
    }

    result = normalize_x_output(raw, fallback, "comment", "standard")

    assert result.normalization == "x_coerced_schema"
    assert len(result.payload["thread"]) == 3
    assert result.payload["thread"][0].startswith("1/3 ")
    assert result.payload["standalone"][0].startswith("Consistencia nao e volume.")


def test_newsletter_coerced_from_flat_fields() -> None:
    raw = {
        "title": "Como transformar um video em quatro canais",
        "subtitle": "Uma tese, quatro formatos e uma metrica por semana.",
        "intro": "Publicar o mesmo texto em todo canal derruba a resposta.",
        "insights": ["Cada canal pede um gatilho. Reels pede ritmo.", "Prova vence opiniao. Mostre um caso."],
        "checklist": ["Escolha a tese do video.", "Extraia tres trechos com conflito."],
        "cta": "Responda com o canal que mais trava voce hoje.",
    }

    result = normalize_newsletter_output(raw, {})

    assert result.normalization == "newsletter_coerced_schema"
    kinds = [section["type"] for section in result.payload["sections"]]
    assert kinds == ["intro", "insight", "insight", "application", "cta"]
    assert result.payload["sections"][1]["title"] == "Cada canal pede um gatilho"


def test_reels_ai_proposals_are_anchored_to_windows() -> None:
    ctx = _reels_context()
    raw = {
        "clips": [
            {
                "startIdx": 20,
                "endIdx": 25,
                "title": "O erro que trava o seu faturamento",
                "caption": "Publicar sem tese clara por canal derruba o resultado. Defina o metodo antes do post.",
                "hashtags": ["#conteudo", "#funil"],
                "whyItWorks": "Abre com dor concreta e fecha com passo pratico.",
            }
        ]
    }

    result = normalize_reels_output(raw, ctx)

    assert result.normalization == "reels_ai_schema"
    clip = result.payload["clips"][0]
    assert clip["start"] == ms_to_timestamp(ctx.windows[0].start_ms)
    assert clip["end"] == ms_to_timestamp(ctx.windows[0].end_ms)


def test_reels_final_schema_is_reanchored() -> None:
    ctx = _reels_context()
    final = {
        "clips": [
            dict(clip, start="00:00:00.000", end="00:00:05.000") for clip in ctx.fallback["clips"]
        ]
    }

    result = normalize_reels_output(final, ctx)

    assert result.normalization == "reels_final_schema"
    for clip, window in zip(result.payload["clips"], ctx.windows):
        assert clip["start"] == ms_to_timestamp(window.start_ms)


def test_reels_garbage_is_rejected() -> None:
    result = normalize_reels_output({"nothing": "here"}, _reels_context())

    assert not result.accepted
    assert result.reason.startswith("schema_mismatch · final: ")
