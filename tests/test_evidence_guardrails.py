from __future__ import annotations

from typing import List

from core import TranscriptSegment, default_generation_profile
from generation.evidence import (
    build_evidence_map,
    collect_task_string_blocks,
    evidence_map_prompt_block,
    normalize_for_numeric_guard,
)
from generation.guardrails import (
    blocking_issues,
    is_blocking_issue,
    output_with_evidence,
    repeated_text_ratio,
    validate_payload,
)
from generation.text import extract_numeric_tokens


def _segments(texts: List[str], step_ms: int = 4000) -> List[TranscriptSegment]:
    return [
        TranscriptSegment(idx=i + 1, start_ms=i * step_ms, end_ms=(i + 1) * step_ms, text=text)
        for i, text in enumerate(texts)
    ]


def _numeric_transcript(count: int = 150) -> List[TranscriptSegment]:
    return _segments(
        [f"No mes {i} a receita subiu {i * 3}% com {i + 7} clientes novos e ticket de R$ {i * 10},50." for i in range(count)]
    )


def test_evidence_numbers_cover_every_sampled_line() -> None:
    evidence_map = build_evidence_map(_numeric_transcript(), 72)

    assert 0 < len(evidence_map.lines) <= 72
    for line in evidence_map.lines:
        assert set(line.numeric_tokens) <= evidence_map.numbers
        assert set(extract_numeric_tokens(line.text)) <= evidence_map.numbers
    assert list(evidence_map.ordered_numbers) == list(dict.fromkeys(evidence_map.ordered_numbers))
    assert set(evidence_map.ordered_numbers) == set(evidence_map.numbers)


def test_evidence_lines_keep_transcript_order() -> None:
    evidence_map = build_evidence_map(_numeric_transcript(40), 10)
    starts = [line.idx for line in evidence_map.lines]
    assert starts == sorted(starts)


def test_prompt_block_without_numbers() -> None:
    evidence_map = build_evidence_map(_segments(["Sem numeros aqui, apenas ideias sobre conteudo."]))
    block = evidence_map_prompt_block(evidence_map)
    assert "NUMEROS_OBSERVADOS: nenhum" in block
    assert "[1] 00:00:00.000-00:00:04.000" in block


def test_numeric_guard_ignores_layout_numbering() -> None:
    assert normalize_for_numeric_guard("x", "thread[0]", "1/5 Comece pelo diagnostico") == "Comece pelo diagnostico"
    assert normalize_for_numeric_guard("reels", "clips[0].title", "Corte 2: O erro do funil") == "O erro do funil"
    assert normalize_for_numeric_guard("x", "standalone[0]", "1/5 nada muda") == "1/5 nada muda"


def test_collect_blocks_for_newsletter_paths() -> None:
    payload = {
        "headline": "h",
        "subheadline": "s",
        "sections": [
            {"type": "intro", "text": "abre"},
            {"type": "insight", "title": "t", "text": "corpo"},
            {"type": "application", "bullets": ["a", "b"]},
        ],
    }
    paths = [block.path for block in collect_task_string_blocks("newsletter", payload)]
    assert paths == [
        "headline",
        "subheadline",
        "sections[0].text",
        "sections[1].title",
        "sections[1].text",
        "sections[2].bullets[0]",
        "sections[2].bullets[1]",
    ]


def test_truncated_caption_is_blocking() -> None:
    segments = _segments(["Pare de postar todo dia sem estrategia.", "O erro mais comum e ignorar metricas."] * 10)
    evidence_map = build_evidence_map(segments)
    payload = {
        "clips": [
            {
                "title": "O erro que trava seu crescimento",
                "start": "00:00:00.000",
                "end": "00:00:20.000",
                "caption": "Voce ainda posta sem estrategia e...",
                "hashtags": ["#conteudo"],
                "whyItWorks": "Gancho forte.",
            }
        ]
    }

    result = validate_payload("reels", payload, evidence_map, segments)

    assert not result.ok
    assert "clips[0].caption: truncation_artifact" in result.issues
    assert "clips[0].caption: truncation_artifact" in blocking_issues(result)


def test_late_blocking_issue_survives_report_cap() -> None:
    segments = _segments(["Hoje vamos falar sobre conteudo e distribuicao no seu canal."] * 20, step_ms=5000)
    evidence_map = build_evidence_map(segments)
    weak_clip = {"title": "Curto", "start": "00:00:00.000", "end": "00:00:20.000", "caption": "curta", "hashtags": []}
    payload = {
        "clips": [
            dict(weak_clip),
            dict(weak_clip),
            {**weak_clip, "start": "00:00:07.000", "end": "00:00:30.000"},
        ]
    }

    result = validate_payload("reels", payload, evidence_map, segments)

    assert not result.ok
    assert len(result.issues) == 8
    assert "clips[2]: invalid_timestamp_window" not in result.issues
    assert blocking_issues(result) == ["clips[2]: invalid_timestamp_window"]


def test_blocking_table_keeps_soft_markers_soft() -> None:
    assert is_blocking_issue("clips[0]: missing_cta_intent") is False
    assert is_blocking_issue("ctaQuestion: WEAK_INTENT") is False
    assert is_blocking_issue("ctaQuestion: must_end_with_question") is False
    assert is_blocking_issue("standalone: too_few") is False
    assert is_blocking_issue("x_post[2]: exceeds_280") is True
    assert is_blocking_issue("payload: numeric_claim_outside_source_excessive") is True
    assert is_blocking_issue("thread[0]: numeric_claim_outside_source") is False
    assert is_blocking_issue("sections: missing_cta") is True


def test_hard_numeric_overflow_blocks_linkedin_hook() -> None:
    segments = _segments(["Sem numeros no texto original, so estrategia de conteudo."] * 4)
    evidence_map = build_evidence_map(segments)
    payload = {
        "hook": "Cresci 10% 20% 30% 40% 50% de receita em 6 meses com esta estrategia",
        "body": ["a"],
        "ctaQuestion": "Qual metrica voce acompanha?",
    }

    result = validate_payload("linkedin", payload, evidence_map, segments)

    assert "hook: numeric_claim_outside_source_hard" in result.issues
    assert result.issues.count("hook: numeric_claim_outside_source_hard") == 1
    assert len(result.issues) <= 8


def test_illustrative_numbers_get_extra_room() -> None:
    segments = _segments(["Conteudo sem numeros."] * 3)
    evidence_map = build_evidence_map(segments)
    payload = {
        "hook": "Por exemplo, imagine 3 posts, 4 stories e 5 lives por semana como exercicio hipotetico",
        "body": [],
        "ctaQuestion": "Qual formato voce testaria primeiro?",
    }

    result = validate_payload("linkedin", payload, evidence_map, segments)

    assert not any(issue.startswith("hook: numeric") for issue in result.issues)


def test_output_with_evidence_annotations() -> None:
    segments = _segments(["Nossa conversao saiu de 2% para 5% em tres meses."])
    evidence_map = build_evidence_map(segments)
    payload = {"standalone": ["Conversao de 2% para 5% em tres meses"], "thread": [], "notes": {"style": "direto"}}

    annotated = output_with_evidence("x", payload, evidence_map, segments, config=default_generation_profile().task("x"))

    assert annotated["standalone"] == payload["standalone"]
    assert annotated["_validation"]["ok"] is False
    assert annotated["_sourceAttribution"]["standalone[0]"][0]["idx"] == 1


def test_repeated_text_ratio_ignores_short_strings() -> None:
    assert repeated_text_ratio(["ok", "ok"]) == 0.0
    assert repeated_text_ratio(["Mesmo texto longo aqui", "mesmo texto longo aqui!"]) == 0.5
