"""Idempotent payload sanitizers plus the CTA, hashtag and microblog-fitting helpers they share."""

from __future__ import annotations

import math
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from generation.text import (
    ACTION_SIGNAL_RE,
    PAIN_SIGNAL_RE,
    STOPWORDS,
    STRONG_HOOK_RE,
    clamp,
    clean_token,
    contains_ellipsis_artifact,
    count_ungrounded_numeric_tokens,
    extract_numeric_tokens,
    first_sentence,
    lexical_overlap_ratio,
    ms_to_timestamp,
    normalize_text,
    opening_hook_strength,
    pick_sentence_by_signal,
    round_score,
    sentence_without_trailing_punctuation,
    split_sentences,
    trim_leading_filler,
    truncate,
)


_CTA_INTENT_RES = {
    "comment": re.compile(
        r"(coment|responda|qual a sua|qual foi|qual dessas|qual destes|qual voce|você|me diz|escreva|me conta|"
        r"conta aqui|deixa nos comentarios|deixa nos comentários|nos comentarios|nos comentários)",
        re.IGNORECASE,
    ),
    "share": re.compile(
        r"(compartilh|manda para|envia para|envie para|marque alguem|marque alguém|salva esse|salve esse|"
        r"reposta|repost)",
        re.IGNORECASE,
    ),
    "dm": re.compile(r"(direct|dm|inbox|me chama|mensagem privada|chama no privado)", re.IGNORECASE),
    "lead": re.compile(
        r"(template|material|guia|diagnostic|diagnóstico|link|aplicar|falar com|checklist|planilha|"
        r"comenta .*mapa|comente .*mapa|comenta .*material|comente .*material)",
        re.IGNORECASE,
    ),
}
_GROWTH_GOAL_RE = re.compile(r"(seguidor|seguidores|audiencia|audiência|alcance|crescer perfil)", re.IGNORECASE)
_GENERIC_TOKENS = frozenset({"coisa", "pessoa", "cara", "negocio", "isso", "aquilo", "tema", "assunto"})
_THREAD_NUMBER_RE = re.compile(r"^\s*\d+\s*/\s*\d+\s+")
_THREAD_PREFIX_RE = re.compile(r"^\s*(\d+\s*/\s*\d+\s*)")
_SENTENCE_BREAK_RE = re.compile(r"(?<=[.!?])\s+")
_PUNCHLINE_WORD_RE = re.compile(r"\b(erro|regra|framework|passo|resultado|prova|cuidado|pare|nunca|evite)\b", re.IGNORECASE)
_NUMERIC_SIGNAL_RE = re.compile(r"\d|%|r\$", re.IGNORECASE)
_INSIGHT_SIGNAL_RE = re.compile(r"(porque|por isso|quando|se|regra|metodo|framework|resultado|cliente|venda)", re.IGNORECASE)
_PROOF_SIGNAL_RE = re.compile(r"(\d|%|r\$|caso|exemplo|resultado|metrica|prova)", re.IGNORECASE)
_LINKEDIN_PROOF_RE = re.compile(r"(\d|r\$|%|exemplo|caso|dados|metrica|resultado)", re.IGNORECASE)
_LINKEDIN_FRAMEWORK_RE = re.compile(
    r"(framework|passo|etapa|checklist|1\)|2\)|3\)|primeiro|segundo|terceiro)", re.IGNORECASE
)
_QUESTION_WORD_RE = re.compile(r"(qual|quanto|quando|que metrica|que resultado)", re.IGNORECASE)

DEFAULT_HASHTAGS = ["#conteudo", "#negocios", "#crescimento"]
DEFAULT_QUESTION = "Qual metrica concreta voce vai acompanhar na proxima semana?"
DEFAULT_WHY_IT_WORKS = (
    "A abertura cria tensao clara, conecta dor real e leva para aplicacao pratica com CTA especifico."
)


def min_by_length(length: str, short_value: float, standard_value: float, long_value: float) -> float:
    if length == "short":
        return short_value
    if length == "long":
        return long_value
    return standard_value


def has_cta_intent(text: str, mode: str) -> bool:
    if mode == "none":
        return True
    pattern = _CTA_INTENT_RES.get(mode)
    return bool(pattern and pattern.search(str(text or "").lower()))


def to_question_sentence(text: str) -> str:
    normalized = normalize_text(text, 2000, 8).strip()
    if not normalized:
        return DEFAULT_QUESTION
    if re.search(r"\?\s*$", normalized):
        return normalized
    if re.search(r"[.!]\s*$", normalized):
        return f"{normalized[:-1]}?"
    return f"{normalized}?"


def is_growth_goal(goal: Optional[str] = None, target_outcome: Optional[str] = None) -> bool:
    return target_outcome == "followers" or bool(goal and _GROWTH_GOAL_RE.search(goal))


_CTA_VARIANTS = {
    "comment": (
        [
            "Comente sua maior trava e a metrica que vai acompanhar pelos proximos 7 dias. Siga para mais recortes praticos.",
            "Comente qual etapa voce vai executar hoje e volte em 7 dias com o resultado. Siga para os proximos cortes.",
            "Comente o seu principal bloqueio e a meta da semana para eu sugerir o proximo passo.",
        ],
        [
            "Comente sua maior trava e o prazo que voce vai usar para testar este passo.",
            "Comente qual acao voce vai executar hoje e que metrica vai medir ate a proxima semana.",
            "Comente o contexto da sua operacao para eu sugerir um proximo passo objetivo.",
        ],
    ),
    "share": (
        [
            "Compartilhe com quem precisa aplicar isso hoje e siga para receber os proximos cortes.",
            "Envie para um parceiro de operacao e comparem a metrica em 7 dias.",
            "Marque alguem que precisa ajustar este ponto ainda esta semana.",
        ],
        [
            "Compartilhe com um parceiro que precisa aplicar isso hoje.",
            "Envie para o time e definam a metrica de validacao para os proximos 7 dias.",
            "Marque alguem que precisa executar este passo no ciclo atual.",
        ],
    ),
    "dm": (
        [
            "Me chama no direct com a palavra diagnostico e siga para a serie completa.",
            "Me chama no direct com a palavra mapa que eu envio a estrutura aplicada.",
            "Me chama no direct com a palavra roteiro para receber o passo a passo.",
        ],
        [
            "Me chama no direct com a palavra diagnostico para receber um plano inicial.",
            "Me chama no direct com a palavra mapa e eu envio a estrutura base.",
            "Me chama no direct com a palavra roteiro para iniciar com prioridade.",
        ],
    ),
    "lead": (
        [
            "Se quiser o template completo, comente material e siga para os proximos.",
            "Comente mapa que eu envio o checklist completo para aplicar hoje.",
            "Comente plano e eu envio o modelo de execucao em etapas.",
        ],
        [
            "Se quiser o template completo, responda este post e eu envio o material.",
            "Comente mapa para receber o checklist com o passo a passo inicial.",
            "Comente plano e eu envio o modelo com estrutura de execucao.",
        ],
    ),
    "none": (
        [
            "Se isso te ajudou, siga para os proximos recortes.",
            "Siga para receber a proxima parte com aplicacao por canal.",
            "Siga e salve este conteudo para aplicar no proximo ciclo.",
        ],
        [
            "Aplique este passo no proximo conteudo que voce publicar.",
            "Implemente hoje e compare o resultado em 7 dias.",
            "Execute este ajuste no proximo ciclo e me conte o resultado.",
        ],
    ),
}


def cta_variants(mode: str, goal: Optional[str] = None, target_outcome: Optional[str] = None) -> List[str]:
    growth, regular = _CTA_VARIANTS.get(mode, _CTA_VARIANTS["none"])
    return list(growth if is_growth_goal(goal, target_outcome) else regular)


def cta_by_mode(mode: str, goal: Optional[str] = None, target_outcome: Optional[str] = None) -> str:
    options = cta_variants(mode, goal, target_outcome)
    return options[0] if options else ""


_STRATEGY_HASHTAGS = {
    "provocative": ["#opiniao", "#autoridade", "#negocios"],
    "educational": ["#aprendizado", "#conteudoeducativo", "#estrategia"],
    "contrarian": ["#contrarian", "#marketingsmart", "#posicionamento"],
    "framework": ["#framework", "#metodo", "#execucao"],
    "storytelling": ["#storytelling", "#narrativa", "#comunicacao"],
}


def hashtags_by_strategy(strategy: str) -> List[str]:
    return list(_STRATEGY_HASHTAGS.get(strategy, ["#conteudo", "#distribuicao", "#crescimento"]))


def normalize_hashtag(tag: str) -> Optional[str]:
    normalized = clean_token(re.sub(r"^#", "", str(tag or "")))
    if len(normalized) < 3 or len(normalized) > 24:
        return None
    if normalized.isdigit():
        return None
    return f"#{normalized}"


def sanitize_hashtags(tags: Sequence[str], fallback_tags: Sequence[str]) -> List[str]:
    """Normalized, deduplicated tags (max 8); the default trio when fewer than 3 survive."""
    result: List[str] = []
    for source in list(tags) + list(fallback_tags):
        hashtag = normalize_hashtag(source)
        if not hashtag or hashtag in result:
            continue
        result.append(hashtag)
        if len(result) >= 8:
            break
    return result if len(result) >= 3 else list(DEFAULT_HASHTAGS)


def is_generic_token(raw: str) -> bool:
    normalized = clean_token(raw)
    return len(normalized) < 4 or normalized in STOPWORDS or normalized in _GENERIC_TOKENS


# Analysis


def sanitize_topic_list(topics: Sequence[str], fallback_topics: Sequence[str]) -> List[str]:
    seen = set()
    cleaned: List[str] = []
    for topic in topics:
        normalized = normalize_text(topic, 1600).lower()
        key = clean_token(normalized) or normalized
        if not key or len(key) < 3 or key in STOPWORDS:
            continue
        if is_generic_token(normalized) or is_generic_token(key):
            continue
        if key not in seen:
            seen.add(key)
            cleaned.append(normalized)
        if len(cleaned) >= 8:
            break
    if cleaned:
        return cleaned

    fallback = [
        item
        for item in (normalize_text(topic, 1600).lower() for topic in fallback_topics)
        if len(item) >= 3 and not is_generic_token(item)
    ][:5]
    return fallback or ["estrategia", "aquisicao", "narrativa", "oferta", "distribuicao"]


def sanitize_recommendations(recommendations: Sequence[str], fallback: Sequence[str]) -> List[str]:
    cleaned = [item for item in (normalize_text(rec, 3000, 10) for rec in recommendations) if len(item) >= 12][:10]
    return cleaned if len(cleaned) >= 2 else list(fallback)[:4]


def normalize_analysis_structure(raw: Any, fallback: Mapping[str, str]) -> Dict[str, str]:
    """Four-part argument structure; missing or non-text parts come from `fallback`, normalized the same way."""
    if not isinstance(raw, Mapping):
        raw = {}
    result = {}
    for key in ("problem", "tension", "insight", "application"):
        value = raw.get(key)
        result[key] = normalize_text(value if isinstance(value, str) else fallback[key], 3000, 8, fallback[key])
    return result


def _to_score(value: Any, fallback: float) -> float:
    try:
        number = float(value if value is not None else fallback)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    return round_score(clamp(number, 0, 10))


def normalize_analysis_quality_scores(raw: Any, fallback_polarity: float) -> Optional[Dict[str, float]]:
    if not isinstance(raw, Mapping):
        return None
    return {
        "insightDensity": _to_score(raw.get("insightDensity"), 7),
        "standaloneClarity": _to_score(raw.get("standaloneClarity"), 7),
        "polarity": _to_score(raw.get("polarity"), fallback_polarity),
        "practicalValue": _to_score(raw.get("practicalValue"), 7),
    }


def _string_field(item: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        value = item.get(key)
        if isinstance(value, str):
            return value
    return ""


def normalize_retention_moments(raw: Any) -> List[Dict[str, str]]:
    if not isinstance(raw, list):
        return []
    result = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        text = normalize_text(_string_field(item, "text"), 2400, 8)
        kind = normalize_text(_string_field(item, "type"), 120, 3).lower()
        why = normalize_text(_string_field(item, "whyItGrabs", "why_it_grabs"), 2400, 8)
        if text and kind and why:
            result.append({"text": text, "type": kind, "whyItGrabs": why})
    return result[:16]


def normalize_editorial_angles(raw: Any) -> List[Dict[str, str]]:
    if not isinstance(raw, list):
        return []
    result = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        angle = normalize_text(_string_field(item, "angle"), 2000, 8)
        channel = normalize_text(_string_field(item, "idealChannel", "ideal_channel"), 180, 2)
        fmt = normalize_text(_string_field(item, "format"), 260, 2)
        why = normalize_text(_string_field(item, "whyStronger", "why_stronger"), 2400, 8)
        if angle and channel and fmt and why:
            result.append({"angle": angle, "idealChannel": channel, "format": fmt, "whyStronger": why})
    return result[:16]


def normalize_weak_spots(raw: Any) -> List[Dict[str, str]]:
    if not isinstance(raw, list):
        return []
    result = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        issue = normalize_text(_string_field(item, "issue"), 2000, 5)
        why = normalize_text(_string_field(item, "why"), 2400, 8)
        if issue and why:
            result.append({"issue": issue, "why": why})
    return result[:16]


def normalize_content_type(value: Any, fallback: str) -> str:
    if not isinstance(value, str):
        return fallback
    normalized = value.strip().lower()
    if normalized in ("educational", "provocative", "story", "framework"):
        return normalized
    if re.search(r"provoc|polar|contrar", normalized):
        return "provocative"
    if re.search(r"story|histori|narrat", normalized):
        return "story"
    if re.search(r"framework|modelo|metod|passo|process", normalized):
        return "framework"
    return "educational"


def sanitize_analysis_payload(payload: Mapping[str, Any]) -> Dict[str, Any]:
    thesis = normalize_text(str(payload.get("thesis") or ""), 1600, 20, "Tese principal do conteudo.")
    recommendations = sanitize_recommendations(
        list(payload.get("recommendations") or []),
        [
            "Defina uma promessa clara para os primeiros segundos de cada formato.",
            "Converta a tese em exemplos concretos para elevar clareza e conversao.",
        ],
    )
    polarity = float(payload.get("polarityScore") or 0)
    structure_fallback = {
        "problem": "Problema central sem clareza suficiente.",
        "tension": "Tensao argumentativa fraca.",
        "insight": thesis,
        "application": recommendations[0],
    }
    quality_scores = normalize_analysis_quality_scores(payload.get("qualityScores"), polarity) or {
        "insightDensity": round_score(7),
        "standaloneClarity": round_score(7),
        "polarity": round_score(polarity),
        "practicalValue": round_score(7),
    }
    return {
        "thesis": thesis,
        "topics": sanitize_topic_list(list(payload.get("topics") or []), ["estrategia", "conteudo", "distribuicao"]),
        "contentType": payload.get("contentType") or "educational",
        "polarityScore": int(round(clamp(polarity, 0, 10))),
        "recommendations": recommendations,
        "structure": normalize_analysis_structure(payload.get("structure"), structure_fallback),
        "retentionMoments": normalize_retention_moments(payload.get("retentionMoments")),
        "editorialAngles": normalize_editorial_angles(payload.get("editorialAngles")),
        "weakSpots": normalize_weak_spots(payload.get("weakSpots")),
        "qualityScores": quality_scores,
    }


# Reels


def _clip_scores(raw: Any) -> Dict[str, int]:
    scores = raw if isinstance(raw, Mapping) else {}
    return {key: int(round(_to_score(scores.get(key), 0))) for key in ("hook", "clarity", "retention", "share")}


def sanitize_reels_payload(payload: Mapping[str, Any]) -> Dict[str, Any]:
    clips = []
    for clip in list(payload.get("clips") or []):
        clips.append(
            {
                **clip,
                "title": normalize_text(clip.get("title"), 220, 6),
                "caption": normalize_text(clip.get("caption"), 5000, 40),
                "hashtags": sanitize_hashtags(list(clip.get("hashtags") or []), []),
                "scores": _clip_scores(clip.get("scores")),
                "whyItWorks": normalize_text(clip.get("whyItWorks"), 2400, 90, DEFAULT_WHY_IT_WORKS),
            }
        )
    return {"clips": clips}


def source_anchored_caption(source_text: str, cta: str, fallback: str = "") -> str:
    """Hook, insight and action lines rebuilt from the clip's own transcript text."""
    sentences = split_sentences(source_text)
    fallback_seed = first_sentence(source_text) or fallback
    hook_seed = trim_leading_filler(pick_sentence_by_signal(sentences, PAIN_SIGNAL_RE, fallback_seed))
    insight_seed = trim_leading_filler(
        pick_sentence_by_signal(
            [sentence for sentence in sentences if lexical_overlap_ratio(sentence, hook_seed) < 0.86],
            _INSIGHT_SIGNAL_RE,
            fallback_seed,
        )
    )
    action_seed = trim_leading_filler(
        pick_sentence_by_signal(
            [
                sentence
                for sentence in sentences
                if lexical_overlap_ratio(sentence, hook_seed) < 0.9
                and lexical_overlap_ratio(sentence, insight_seed) < 0.9
            ],
            ACTION_SIGNAL_RE,
            insight_seed or hook_seed or fallback_seed,
        )
    )

    hook_core = sentence_without_trailing_punctuation(normalize_text(hook_seed, 170, 18, fallback_seed))
    insight_core = sentence_without_trailing_punctuation(
        normalize_text(insight_seed, 190, 24, hook_core or fallback_seed)
    )
    action_core = sentence_without_trailing_punctuation(
        normalize_text(action_seed, 170, 22, insight_core or hook_core or fallback_seed)
    )

    if hook_seed.strip().endswith("?"):
        hook_line = normalize_text(hook_seed, 180, 18, hook_core or fallback_seed)
    else:
        prefix = "Ponto critico" if PAIN_SIGNAL_RE.search(hook_core) else "Insight que muda o resultado"
        hook_line = normalize_text(f"{prefix}: {hook_core}.", 220, 18, hook_core or fallback_seed)
    insight_line = normalize_text(f"No corte: {insight_core}.", 260, 26, insight_core or hook_core or fallback_seed)
    default_action = "Aplicacao imediata: execute este ajuste hoje e compare o resultado em 7 dias."
    action_line = normalize_text(
        f"Aplicacao imediata: {action_core}." if ACTION_SIGNAL_RE.search(action_core) else default_action,
        260,
        24,
        default_action,
    )

    lines: List[str] = []
    for line in (hook_line, insight_line, action_line):
        line = normalize_text(line, 300, 8, line)
        if not any(lexical_overlap_ratio(existing, line) >= 0.92 for existing in lines):
            lines.append(line)
    if cta:
        lines.append(normalize_text(cta, 260, 8, cta))

    return normalize_text("\n\n".join(lines), 5000, 140, fallback_seed or fallback)


def source_anchored_title(source_text: str, fallback: str = "") -> str:
    sentences = split_sentences(source_text)
    seed = trim_leading_filler(
        pick_sentence_by_signal(sentences, STRONG_HOOK_RE, first_sentence(source_text) or fallback)
    )
    base = sentence_without_trailing_punctuation(normalize_text(seed or source_text, 200, 8, fallback))
    if not base:
        return normalize_text(fallback or source_text, 220, 6, fallback)
    if PAIN_SIGNAL_RE.search(base):
        return normalize_text(base, 220, 6, fallback)
    if len(base.split()) < 6:
        return normalize_text(f"Erro recorrente: {base}", 220, 6, fallback)
    return normalize_text(base, 220, 6, fallback)


def source_anchored_why_it_works(source_text: str, cta: str, fallback: str = "") -> str:
    opening = first_sentence(source_text)
    strength = opening_hook_strength(source_text)
    if strength >= 2.8:
        hook_label = "gancho forte"
    elif strength >= 2.2:
        hook_label = "gancho claro"
    else:
        hook_label = "gancho moderado"
    if _PROOF_SIGNAL_RE.search(source_text):
        proof = "O trecho tem sinal concreto que aumenta credibilidade e favorece compartilhamento."
    else:
        proof = "O trecho expõe uma dor real com linguagem direta e permite aplicacao pratica sem contexto externo."
    if cta:
        closing = "O CTA final direciona uma acao objetiva para transformar atencao em interacao qualificada."
    else:
        closing = "A mensagem fecha com proximo passo claro para manter retencao ate o final."
    return normalize_text(
        f'A abertura trabalha {hook_label} com frase de impacto: "{opening}". {proof} {closing}',
        2400,
        120,
        fallback,
    )


def apply_reels_source_grounding(
    clip: Mapping[str, str],
    source_text: str,
    fallback: Optional[Mapping[str, str]],
    cta: str,
) -> Dict[str, str]:
    """Rewrite title/caption/whyItWorks from the window text when they drift from it."""
    source = source_text.strip()
    title = str(clip.get("title") or "")
    caption = str(clip.get("caption") or "")
    why = str(clip.get("whyItWorks") or "")
    if not source:
        return {"title": title, "caption": caption, "whyItWorks": why}

    source_numbers = extract_numeric_tokens(source)
    rewrite_caption = (
        count_ungrounded_numeric_tokens(caption, source_numbers) > 0
        or contains_ellipsis_artifact(caption)
        or len(caption.strip()) < 130
        or (len(caption) > 220 and lexical_overlap_ratio(caption, source) >= 0.9)
    )
    rewrite_title = (
        count_ungrounded_numeric_tokens(title, source_numbers) > 0
        or bool(re.match(r"^corte\s+\d+", title.strip(), re.IGNORECASE))
        or len(title.strip()) < 16
        or (len(title) > 80 and lexical_overlap_ratio(title, source) >= 0.95)
    )

    fallback_title = (fallback or {}).get("title") or title
    fallback_caption = (fallback or {}).get("caption") or caption
    fallback_why = (fallback or {}).get("whyItWorks") or why

    grounded_title = (
        source_anchored_title(source, fallback_title)
        if rewrite_title
        else normalize_text(title, 220, 6, fallback_title)
    )
    grounded_caption = (
        source_anchored_caption(source, cta, fallback_caption)
        if rewrite_caption
        else normalize_text(caption, 5000, 40, fallback_caption)
    )
    anchored_why = source_anchored_why_it_works(source, cta, fallback_why)
    grounded_why = anchored_why if (rewrite_caption or rewrite_title) else normalize_text(why, 2400, 90, anchored_why)
    return {"title": grounded_title, "caption": grounded_caption, "whyItWorks": grounded_why}


def anchor_reels_to_windows(
    payload: Mapping[str, Any],
    windows: Sequence[Any],
    fallback: Mapping[str, Any],
    cta_source: Union[str, Sequence[str]],
) -> Dict[str, Any]:
    """Pin each clip to its selected window's timestamps and ground its copy in the window text."""
    if not windows:
        return sanitize_reels_payload(payload)

    if isinstance(cta_source, str):
        ctas = [cta_source for _ in windows]
    else:
        pool = list(cta_source)
        ctas = [pool[index % max(1, len(pool))] if pool else "" for index in range(len(windows))]

    fallback_clips = list(fallback.get("clips") or [])
    clips = []
    for index, clip in enumerate(list(payload.get("clips") or [])[: len(windows)]):
        window = windows[index]
        fallback_clip = fallback_clips[index] if index < len(fallback_clips) else (fallback_clips[0] if fallback_clips else None)
        grounded = apply_reels_source_grounding(clip, window.text, fallback_clip, ctas[index])
        fallback_tags = fallback_clip.get("hashtags") if fallback_clip else hashtags_by_strategy("balanced")
        clips.append(
            {
                "title": grounded["title"],
                "start": ms_to_timestamp(window.start_ms),
                "end": ms_to_timestamp(window.end_ms),
                "caption": grounded["caption"],
                "hashtags": sanitize_hashtags(list(clip.get("hashtags") or []), list(fallback_tags or [])),
                "scores": _clip_scores(clip.get("scores")),
                "whyItWorks": grounded["whyItWorks"],
            }
        )

    if not clips:
        return sanitize_reels_payload(fallback)
    return sanitize_reels_payload({"clips": clips})


# Newsletter


def sanitize_newsletter_payload(payload: Mapping[str, Any]) -> Dict[str, Any]:
    insights_seen: List[str] = []
    sections = []
    for section in list(payload.get("sections") or []):
        kind = section.get("type")
        if kind == "intro":
            sections.append({"type": "intro", "text": normalize_text(section.get("text"), 5000, 10)})
        elif kind == "insight":
            text = normalize_text(section.get("text"), 5000, 10)
            if any(lexical_overlap_ratio(existing, text) >= 0.88 for existing in insights_seen):
                continue
            insights_seen.append(text)
            sections.append({"type": "insight", "title": normalize_text(section.get("title"), 300, 3), "text": text})
        elif kind == "application":
            bullets: List[str] = []
            for raw in list(section.get("bullets") or []):
                normalized = normalize_text(raw, 2400, 3)
                if not normalized:
                    continue
                if not any(lexical_overlap_ratio(existing, normalized) >= 0.9 for existing in bullets):
                    bullets.append(normalized)
                if len(bullets) >= 16:
                    break
            sections.append({"type": "application", "bullets": bullets})
        else:
            sections.append({"type": "cta", "text": normalize_text(section.get("text"), 2400, 10)})
    return {
        "headline": normalize_text(payload.get("headline"), 300, 8, "Newsletter estrategica"),
        "subheadline": normalize_text(payload.get("subheadline"), 2400, 8, "Resumo pratico da tese principal."),
        "sections": sections,
    }


# LinkedIn


def _append_unique_paragraph(body: List[str], paragraph: str) -> None:
    # appended paragraphs pass the same overlap check a second sanitize pass applies
    if not any(lexical_overlap_ratio(existing, paragraph) >= 0.9 for existing in body):
        body.append(paragraph)


def sanitize_linkedin_payload(payload: Mapping[str, Any]) -> Dict[str, Any]:
    body: List[str] = []
    for paragraph in list(payload.get("body") or []):
        normalized = normalize_text(paragraph, 3200, 8)
        if not normalized:
            continue
        _append_unique_paragraph(body, normalized)
        if len(body) >= 20:
            break

    if not any(_LINKEDIN_PROOF_RE.search(paragraph) for paragraph in body):
        _append_unique_paragraph(
            body, normalize_text("Prova: inclua ao menos uma metrica ou caso concreto para validar a tese.", 3200, 20)
        )
    if not any(_LINKEDIN_FRAMEWORK_RE.search(paragraph) for paragraph in body):
        _append_unique_paragraph(
            body,
            normalize_text(
                "Framework: primeiro diagnostique, depois ajuste o canal, e por fim meca a resposta por metrica.",
                3200,
                20,
            ),
        )

    question = to_question_sentence(str(payload.get("ctaQuestion") or ""))
    # the repaired question must carry comment intent itself, or a second pass repairs it again
    if not has_cta_intent(question, "comment"):
        question = to_question_sentence(f"Comente aqui: {question}")
    if not _QUESTION_WORD_RE.search(question):
        question = "Comente aqui: qual metrica concreta voce vai acompanhar na proxima semana para validar essa tese?"

    return {
        "hook": normalize_text(payload.get("hook"), 2200, 8),
        "body": body[:20],
        "ctaQuestion": to_question_sentence(normalize_text(question, 2000, 8)),
    }


# X


def fit_x_post_length(text: str, fallback: str = "") -> str:
    """Fit a post into 280 chars, keeping the opening plus the strongest punchline sentences."""
    normalized = normalize_text(text, 1600, 8, fallback)
    if len(normalized) <= 280:
        return normalized

    sentences = [item.strip() for item in _SENTENCE_BREAK_RE.split(normalized) if item.strip()]
    prefix_match = _THREAD_PREFIX_RE.match(normalized)
    prefix = prefix_match.group(1).strip() if prefix_match else ""
    content = normalized[len(prefix):].strip() if prefix else normalized
    core = [item.strip() for item in _SENTENCE_BREAK_RE.split(content) if item.strip()]

    def punchline_score(sentence: str) -> float:
        score = 0.0
        if _NUMERIC_SIGNAL_RE.search(sentence):
            score += 1.3
        if _PUNCHLINE_WORD_RE.search(sentence):
            score += 1.6
        if re.search(r"\?|!", sentence):
            score += 0.8
        return score + min(1.2, len(sentence) / 180)

    ranked = sorted(
        ((punchline_score(sentence) + (0.7 if index == 0 else 0), sentence) for index, sentence in enumerate(core)),
        key=lambda item: item[0],
        reverse=True,
    )
    selected: List[str] = []
    for _, sentence in ranked:
        if sentence not in selected:
            selected.append(sentence)
        if len(selected) >= 2:
            break

    parts: List[str] = []
    for sentence in ([core[0]] if core else []) + selected:
        if sentence and sentence not in parts:
            parts.append(sentence)
    base = " ".join(parts)
    compact = normalize_text(f"{prefix} {base}".strip() if prefix else base, 280, 8, fallback)
    if len(compact) >= 80:
        return compact

    sequential = ""
    for sentence in sentences:
        following = f"{sequential} {sentence}" if sequential else sentence
        if len(following) > 280:
            break
        sequential = following
    if len(sequential) >= 80:
        return sequential

    return normalize_text(normalized, 280, 8, fallback)


_X_STANDALONE_TAILS = {
    "share": "Compartilhe com um parceiro e acompanhe a resposta em 7 dias.",
    "dm": "Me chama no direct com a palavra mapa para receber o roteiro completo.",
    "lead": "Comente mapa para receber o material completo e aplicar hoje.",
}
_X_DEFAULT_STANDALONE_TAIL = "Comente sua principal trava e a metrica que vai acompanhar nesta semana."
_X_THREAD_TAIL = "Proximo passo: aplique isso hoje e compare o resultado em 7 dias."
_X_CTA_BY_MODE = {
    "none": "",
    "comment": "Comente sua principal trava e a metrica que vai acompanhar esta semana.",
    "share": "Compartilhe com quem precisa aplicar isso hoje.",
    "dm": "Me chama no direct com a palavra mapa.",
    "lead": "Comente mapa que eu envio o material.",
}
_X_APPENDED_PHRASES = tuple(
    phrase
    for phrase in [*_X_STANDALONE_TAILS.values(), _X_DEFAULT_STANDALONE_TAIL, _X_THREAD_TAIL, *_X_CTA_BY_MODE.values()]
    if phrase
)


def _x_dedupe_key(post: str) -> str:
    content = _THREAD_NUMBER_RE.sub("", post, count=1).strip()
    key = content
    for phrase in _X_APPENDED_PHRASES:
        key = key.replace(phrase, " ")
    return " ".join(key.split()) or content


def is_x_near_duplicate(existing: str, candidate: str, threshold: float = 0.92) -> bool:
    """Overlap check that ignores thread numbers and the tails/CTAs this module appends."""
    existing_key = _x_dedupe_key(existing)
    candidate_key = _x_dedupe_key(candidate)
    return existing_key == candidate_key or lexical_overlap_ratio(existing_key, candidate_key) >= threshold


def dedupe_x_posts(posts: Sequence[str]) -> List[str]:
    result: List[str] = []
    for post in posts:
        normalized = normalize_text(post, 1600, 8)
        if normalized and not any(is_x_near_duplicate(existing, normalized) for existing in result):
            result.append(normalized)
    return result


def enrich_x_post(post: str, min_chars: float, fallback_tail: str) -> str:
    normalized = fit_x_post_length(post, fallback_tail)
    # a post that already carries an appended tail or CTA is not enriched twice
    if len(normalized) >= min_chars or any(phrase in normalized for phrase in (fallback_tail, *_X_APPENDED_PHRASES)):
        return normalized
    enriched = fit_x_post_length(f"{normalized} {fallback_tail}".strip(), fallback_tail)
    return enriched if len(enriched) > len(normalized) else normalized


def append_x_cta(post: str, cta: str) -> str:
    """Append `cta`, cutting the post at a sentence or word boundary so the CTA fits in 280 chars."""
    room = 280 - len(cta) - 1
    base = truncate(post, room) if len(post) > room else post
    return normalize_text(f"{base} {cta}".strip(), 280, 8, cta)


def normalize_thread_numbering(posts: Sequence[str]) -> List[str]:
    """Renumber `n/m` prefixes when at least half of the posts already carry one."""
    numbered = [post for post in posts if _THREAD_NUMBER_RE.match(post)]
    if len(numbered) < max(2, math.ceil(len(posts) / 2)):
        return list(posts)
    total = len(posts)
    result = []
    for index, post in enumerate(posts):
        prefix = f"{index + 1}/{total}"
        content = _THREAD_NUMBER_RE.sub("", post, count=1).strip()
        # cut the content rather than re-fit it, so renumbering never reorders sentences
        content = truncate(content, 280 - len(prefix) - 1)
        result.append(f"{prefix} {content}".strip())
    return result


def sanitize_x_payload(payload: Mapping[str, Any], cta_mode: str = "comment", length: str = "standard") -> Dict[str, Any]:
    min_chars = min_by_length(length, 45, 65, 85)
    standalone_tail = _X_STANDALONE_TAILS.get(cta_mode, _X_DEFAULT_STANDALONE_TAIL)

    # dedupe runs on enriched text so a second pass sees the same duplicates
    standalone = dedupe_x_posts(
        [enrich_x_post(item, min_chars, standalone_tail) for item in list(payload.get("standalone") or [])]
    )[:12]
    thread = dedupe_x_posts(
        [enrich_x_post(item, min_chars, _X_THREAD_TAIL) for item in list(payload.get("thread") or [])]
    )[:16]
    thread = normalize_thread_numbering(thread)

    min_standalone = 1 if cta_mode == "none" else 2
    for candidate in thread:
        if len(standalone) >= min_standalone:
            break
        if not any(is_x_near_duplicate(item, candidate, 0.9) for item in standalone):
            standalone.append(candidate)

    if not standalone and not thread:
        standalone.append(
            enrich_x_post(
                "Venda sem sistema gera volume sem margem. Produto sem canal gera custo sem receita.",
                min_chars,
                standalone_tail,
            )
        )

    if not any(has_cta_intent(post, cta_mode) for post in standalone + thread):
        cta = _X_CTA_BY_MODE.get(cta_mode, "")
        if cta:
            standalone[-1] = append_x_cta(standalone[-1], cta)

    notes = payload.get("notes") or {}
    return {
        "standalone": standalone,
        "thread": thread,
        "notes": {"style": normalize_text(notes.get("style"), 300, 3)},
    }
