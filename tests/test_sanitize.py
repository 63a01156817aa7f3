from __future__ import annotations

import random
from functools import partial
from typing import Any, Dict, List

from generation.sanitize import (
    DEFAULT_HASHTAGS,
    DEFAULT_QUESTION,
    DEFAULT_WHY_IT_WORKS,
    fit_x_post_length,
    has_cta_intent,
    normalize_hashtag,
    normalize_thread_numbering,
    sanitize_analysis_payload,
    sanitize_hashtags,
    sanitize_linkedin_payload,
    sanitize_newsletter_payload,
    sanitize_reels_payload,
    sanitize_x_payload,
    to_question_sentence,
)
from generation.text import contains_ellipsis_artifact


def _analysis() -> Dict[str, Any]:
    return {
        "thesis": "Distribuicao sem tese clara vira volume sem resultado — e ninguem percebe...",
        "topics": ["Funil", "funil", "isso", "Estrategia de Conteudo", "ok"],
        "contentType": "framework",
        "polarityScore": 7.6,
        "recommendations": ["Defina uma tese por conteudo antes de publicar.", "curta"],
        "structure": {"problem": "Publicar sem tese.", "tension": 3, "insight": "Uma ideia por post."},
        "retentionMoments": [{"text": "Pare de postar sem criterio.", "type": "Hook", "whyItGrabs": "Quebra o padrao."}],
        "editorialAngles": [],
        "weakSpots": [{"issue": "Abertura lenta", "why": "Demora a chegar na dor."}],
        "qualityScores": {"insightDensity": "8.2", "polarity": None},
    }


def _reels() -> Dict[str, Any]:
    return {
        "clips": [
            {
                "title": "O erro que trava — o seu funil",
                "start": "00:00:10.000",
                "end": "00:00:40.000",
                "caption": "Curta demais...",
                "hashtags": ["#Conteúdo", "conteudo", "#12345", "#a"],
                "scores": {"hook": 8.6, "clarity": "7", "retention": None},
                "whyItWorks": "Gancho.",
            }
        ]
    }


def _newsletter() -> Dict[str, Any]:
    return {
        "headline": "Como sair do volume e chegar no resultado",
        "subheadline": "Uma tese, uma prova e um passo por semana.",
        "sections": [
            {"type": "intro", "text": "Publicar mais nao resolve distribuicao."},
            {"type": "insight", "title": "Tese", "text": "Uma ideia por post aumenta a clareza do leitor."},
            {"type": "insight", "title": "Repetida", "text": "Uma ideia por post aumenta a clareza do leitor!"},
            {"type": "application", "bullets": ["Defina a tese.", "Defina a tese!", "", "Meca a resposta."]},
            {"type": "cta", "text": "Responda este email com a sua maior trava."},
        ],
    }


def _linkedin() -> Dict[str, Any]:
    return {
        "hook": "Voce nao precisa postar mais — precisa postar melhor...",
        "body": ["Postar todo dia sem tese cansa a audiencia.", "Postar todo dia sem tese cansa a audiencia!"],
        "ctaQuestion": "Fim",
    }


def _x() -> Dict[str, Any]:
    long_post = " ".join(
        [
            "Publicar mais nao resolve distribuicao.",
            "O erro e tratar alcance como meta quando a meta e resposta qualificada.",
            "Resultado: 3 de cada 10 posts geram conversa real.",
            "Regra pratica: uma tese por post e uma prova concreta logo depois.",
            "Evite abrir com contexto longo porque o leitor decide em segundos.",
        ]
    )
    return {
        "standalone": ["Curto", long_post, long_post],
        "thread": [
            "1/3 Comece pelo diagnostico do seu funil atual e anote onde as pessoas param.",
            "2/3 Depois escolha uma unica metrica de resposta para acompanhar toda semana.",
            "3/3 Ajuste o formato que mais perde atencao e compare o resultado em 7 dias.",
            "Sem numero no fim, mas com uma ideia diferente sobre ritmo de publicacao semanal.",
        ],
        "notes": {"style": "direto — sem enrolacao"},
    }


_WORDS = [
    "funil", "cliente", "venda", "teste", "metrica", "resultado", "tese", "canal", "erro", "prova",
    "passo", "hoje", "semana", "qual", "Comente", "compartilhe", "direct", "material", "R$", "1.200",
    "30%", "1/", "2/5", "...", "…", "—", "–", "Ponto.", "final!", "isso?",
]


def _words(rng: random.Random, low: int, high: int) -> str:
    return " ".join(rng.choice(_WORDS) for _ in range(rng.randint(low, high)))


def _texts(rng: random.Random, count: int, low: int, high: int) -> List[str]:
    return [_words(rng, low, high) for _ in range(rng.randint(0, count))]


def _random_analysis(rng: random.Random) -> Dict[str, Any]:
    structure = rng.choice(
        [None, "sem estrutura", {key: _words(rng, 0, 8) for key in ("problem", "insight") if rng.random() < 0.7}]
    )
    return {
        "thesis": _words(rng, 0, 14),
        "topics": _texts(rng, 6, 1, 3),
        "contentType": rng.choice(["educational", "framework", "story"]),
        "polarityScore": rng.uniform(0, 12),
        "recommendations": _texts(rng, 4, 1, 10),
        "structure": structure,
        "retentionMoments": [
            {"text": _words(rng, 1, 8), "type": _words(rng, 1, 2), "whyItGrabs": _words(rng, 1, 8)}
            for _ in range(rng.randint(0, 3))
        ],
        "weakSpots": [{"issue": _words(rng, 1, 5), "why": _words(rng, 1, 8)} for _ in range(rng.randint(0, 2))],
        "qualityScores": rng.choice([None, {"insightDensity": rng.uniform(0, 10), "polarity": None}]),
    }


def _random_reels(rng: random.Random) -> Dict[str, Any]:
    return {
        "clips": [
            {
                "title": _words(rng, 0, 8),
                "start": "00:00:10.000",
                "end": "00:00:40.000",
                "caption": _words(rng, 0, 40),
                "hashtags": [rng.choice(["#", ""]) + rng.choice(_WORDS) for _ in range(rng.randint(0, 10))],
                "scores": {"hook": rng.uniform(0, 11), "clarity": rng.choice([None, "7", 8.5])},
                "whyItWorks": _words(rng, 0, 20),
            }
            for _ in range(rng.randint(0, 3))
        ]
    }


def _random_newsletter(rng: random.Random) -> Dict[str, Any]:
    sections = []
    for _ in range(rng.randint(0, 6)):
        kind = rng.choice(["intro", "insight", "application", "cta", "outro"])
        sections.append(
            {"type": kind, "title": _words(rng, 0, 4), "text": _words(rng, 0, 16), "bullets": _texts(rng, 5, 0, 8)}
        )
    return {"headline": _words(rng, 0, 8), "subheadline": _words(rng, 0, 12), "sections": sections}


def _random_linkedin(rng: random.Random) -> Dict[str, Any]:
    return {"hook": _words(rng, 0, 10), "body": _texts(rng, 8, 0, 14), "ctaQuestion": _words(rng, 0, 10)}


def _random_x(rng: random.Random) -> Dict[str, Any]:
    thread = [rng.choice(["", f"{index + 1}/5 "]) + _words(rng, 0, 24) for index in range(rng.randint(0, 6))]
    return {"standalone": _texts(rng, 6, 0, 45), "thread": thread, "notes": {"style": _words(rng, 0, 4)}}


def _strings(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, dict):
        return [text for item in value.values() for text in _strings(item)]
    if isinstance(value, list):
        return [text for item in value for text in _strings(item)]
    return []


def test_every_sanitizer_is_idempotent_on_generated_payloads() -> None:
    cases = [
        (sanitize_analysis_payload, _random_analysis),
        (sanitize_reels_payload, _random_reels),
        (sanitize_newsletter_payload, _random_newsletter),
        (sanitize_linkedin_payload, _random_linkedin),
        (sanitize_x_payload, _random_x),
        (partial(sanitize_x_payload, cta_mode="share", length="long"), _random_x),
        (partial(sanitize_x_payload, cta_mode="none", length="short"), _random_x),
        (partial(sanitize_x_payload, cta_mode="lead", length="long"), _random_x),
    ]
    for index, (sanitize, generate) in enumerate(cases):
        rng = random.Random(1000 + index)
        for attempt in range(150):
            payload = generate(rng)
            once = sanitize(payload)
            assert sanitize(once) == once, (index, attempt, payload)
            for text in _strings(once):
                assert not contains_ellipsis_artifact(text), (index, attempt, text)
                assert "—" not in text and "–" not in text, (index, attempt, text)


def test_analysis_structure_fallback_is_normalized() -> None:
    payload = {
        "thesis": "Publicar sem tese — e sem metrica — trava o funil...",
        "recommendations": ["Defina uma tese por canal… antes de publicar.", "Meca a resposta qualificada por semana."],
    }

    structure = sanitize_analysis_payload(payload)["structure"]

    assert structure["insight"] == "Publicar sem tese , e sem metrica , trava o funil"
    assert structure["application"] == "Defina uma tese por canal antes de publicar."
    assert all(not contains_ellipsis_artifact(text) for text in structure.values())


def test_x_sanitizer_second_pass_keeps_enriched_thread() -> None:
    payload = {
        "standalone": [],
        "thread": ["2/5 R$ 30%", "venda teste e funil certo", "Cliente novo chega pelo canal certo"],
    }

    once = sanitize_x_payload(payload)
    twice = sanitize_x_payload(once)

    assert twice == once
    assert len(once["standalone"]) == 2
    assert any(has_cta_intent(post, "comment") for post in once["standalone"] + once["thread"])


def test_analysis_sanitizer_cleans_topics_and_scores() -> None:
    result = sanitize_analysis_payload(_analysis())

    assert result["topics"] == ["funil", "estrategia de conteudo"]
    assert result["polarityScore"] == 8
    assert result["qualityScores"]["insightDensity"] == 8.2
    assert "—" not in result["thesis"]
    assert not contains_ellipsis_artifact(result["thesis"])
    assert len(result["recommendations"]) == 2
    assert result["structure"]["tension"] == "Tensao argumentativa fraca."


def test_reels_sanitizer_fills_defaults() -> None:
    clip = sanitize_reels_payload(_reels())["clips"][0]

    assert clip["hashtags"] == DEFAULT_HASHTAGS
    assert clip["whyItWorks"] == DEFAULT_WHY_IT_WORKS
    assert clip["scores"] == {"hook": 9, "clarity": 7, "retention": 0, "share": 0}
    assert "—" not in clip["title"]
    assert clip["start"] == "00:00:10.000"


def test_newsletter_sanitizer_drops_repeated_insights_and_bullets() -> None:
    result = sanitize_newsletter_payload(_newsletter())

    kinds = [section["type"] for section in result["sections"]]
    assert kinds == ["intro", "insight", "application", "cta"]
    assert result["sections"][2]["bullets"] == ["Defina a tese.", "Meca a resposta."]


def test_linkedin_sanitizer_adds_proof_framework_and_question() -> None:
    result = sanitize_linkedin_payload(_linkedin())

    assert len(result["body"]) == 3
    assert result["body"][-2].startswith("Prova:") or result["body"][-1].startswith("Framework:")
    assert result["ctaQuestion"].endswith("?")
    assert has_cta_intent(result["ctaQuestion"], "comment") or result["ctaQuestion"].startswith("Qual")
    assert not contains_ellipsis_artifact(result["hook"])


def test_x_sanitizer_fits_posts_and_keeps_cta() -> None:
    result = sanitize_x_payload(_x())

    posts = result["standalone"] + result["thread"]
    assert all(len(post) <= 280 for post in posts)
    assert len(result["standalone"]) == 2
    assert any(has_cta_intent(post, "comment") for post in posts)
    assert [post.split(" ", 1)[0] for post in result["thread"]] == ["1/4", "2/4", "3/4", "4/4"]
    assert result["notes"]["style"] == "direto , sem enrolacao"


def test_hashtags_are_normalized_and_capped() -> None:
    assert normalize_hashtag("#Conteúdo") == "#conteudo"
    assert normalize_hashtag("#12345") is None
    assert normalize_hashtag("ab") is None

    tags = sanitize_hashtags([f"#tag{i:02d}" for i in range(12)], ["#extra"])
    assert len(tags) == 8
    assert tags[0] == "#tag00"
    assert sanitize_hashtags(["#ok"], []) == DEFAULT_HASHTAGS


def test_question_sentence() -> None:
    assert to_question_sentence("Qual metrica voce acompanha.") == "Qual metrica voce acompanha?"
    assert to_question_sentence("Qual o proximo passo") == "Qual o proximo passo?"
    assert to_question_sentence("") == DEFAULT_QUESTION


def test_fit_x_post_length_keeps_thread_prefix() -> None:
    text = "2/5 " + " ".join(["Sentenca longa sobre distribuicao de conteudo com prova concreta."] * 8)
    fitted = fit_x_post_length(text)

    assert len(fitted) <= 280
    assert fitted.startswith("2/5 ")


def test_thread_numbering_needs_half_numbered() -> None:
    posts = ["1/9 primeiro post", "segundo post", "terceiro post"]
    assert normalize_thread_numbering(posts) == posts
