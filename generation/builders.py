"""Heuristic payload builders: the offline default for every task, built from the transcript alone."""

from __future__ import annotations

import math
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

from core import GenerationProfile, TranscriptSegment, default_generation_profile
from generation.sanitize import (
    cta_by_mode,
    cta_variants,
    dedupe_x_posts,
    fit_x_post_length,
    hashtags_by_strategy,
    sanitize_hashtags,
    sanitize_x_payload,
    source_anchored_caption,
    source_anchored_title,
    source_anchored_why_it_works,
)
from generation.text import (
    clamp,
    clean_token,
    lexical_overlap_ratio,
    ms_to_timestamp,
    normalize_text,
    pick_top_topics,
    round_score,
    take_best_segments,
)
from generation.windows import ClipWindow, resolve_clip_count, select_clip_windows, window_editorial_score


_STORY_RE = re.compile(r"historia|quando|aconteceu|experiencia", re.IGNORECASE)
_FRAMEWORK_RE = re.compile(r"framework|modelo|passo|processo|metodo", re.IGNORECASE)
_PROVOCATIVE_RE = re.compile(r"discorda|polemica|controvers", re.IGNORECASE)
_ALERT_RE = re.compile(r"erro|nao faca|evite|alerta", re.IGNORECASE)
_ALERT_WHY_RE = re.compile(r"erro|evite|alerta", re.IGNORECASE)
_METHOD_RE = re.compile(r"passo|metodo|framework|regra", re.IGNORECASE)
_PROOF_RE = re.compile(r"\d|%|r\$", re.IGNORECASE)

DEFAULT_THESIS = "Conteudo orientado a distribuicao multicanal"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _content_type(full_text: str) -> str:
    if _STORY_RE.search(full_text):
        return "story"
    if _FRAMEWORK_RE.search(full_text):
        return "framework"
    if _PROVOCATIVE_RE.search(full_text):
        return "provocative"
    return "educational"


def build_analysis(
    segments: Sequence[TranscriptSegment], profile: Optional[GenerationProfile] = None
) -> Dict[str, Any]:
    profile = profile or default_generation_profile()
    full_text = " ".join(segment.text for segment in segments)
    topics = pick_top_topics(segments, 6)
    content_type = _content_type(full_text)
    thesis_source = segments[0].text if segments else ""
    thesis = normalize_text(thesis_source or DEFAULT_THESIS, 1600, 20, DEFAULT_THESIS)

    excitement = len(re.findall(r"[!?]", full_text))
    polarity = int(clamp(_round_half_up(4 + excitement / 3 + (2 if content_type == "provocative" else 1)), 0, 10))
    highlights = take_best_segments(segments, 6)

    def highlight(index: int) -> Optional[str]:
        return highlights[index].text if index < len(highlights) else None

    structure = {
        "problem": normalize_text(
            highlight(0) or "Conteudo sem problema explicito. Necessario declarar dor central com clareza.", 3000, 8
        ),
        "tension": normalize_text(
            highlight(1) or "Tensao narrativa pouco explicita entre estado atual e resultado desejado.", 3000, 8
        ),
        "insight": normalize_text(highlight(2) or thesis, 3000, 8, thesis),
        "application": normalize_text(
            highlight(3) or "Converter o insight em passo pratico executavel para o publico-alvo.", 3000, 8
        ),
    }

    retention_moments = []
    for index, segment in enumerate(highlights[:5]):
        if index == 0:
            kind = "hook"
        elif _ALERT_RE.search(segment.text):
            kind = "alerta"
        elif _METHOD_RE.search(segment.text):
            kind = "framework"
        else:
            kind = "insight"
        if _ALERT_WHY_RE.search(segment.text):
            why = "Abre loop de risco e gera urgencia para continuar assistindo."
        elif _METHOD_RE.search(segment.text):
            why = "Entrega estrutura acionavel que aumenta salvamentos e compartilhamentos."
        else:
            why = "Trecho com contraste e clareza suficiente para prender atencao sem contexto."
        retention_moments.append(
            {
                "text": normalize_text(segment.text, 2400, 8, thesis),
                "type": kind,
                "whyItGrabs": normalize_text(why, 2400, 8),
            }
        )

    first_topic = topics[0] if topics else None
    second_topic = topics[1] if len(topics) > 1 else first_topic
    editorial_angles = [
        {
            "angle": normalize_text(f"Diagnostico pratico sobre {first_topic or 'execucao de conteudo'}", 180, 8),
            "idealChannel": "linkedin",
            "format": "post com framework",
            "whyStronger": "Canal favorece argumentacao e comentarios qualificados.",
        },
        {
            "angle": normalize_text(f"Erro recorrente em {second_topic or 'distribuicao'}", 180, 8),
            "idealChannel": "reels",
            "format": "corte com alerta",
            "whyStronger": "Gancho forte com aplicacao imediata tende a elevar retencao.",
        },
        {
            "angle": normalize_text(f"Checklist de aplicacao para {profile.audience}", 180, 8),
            "idealChannel": "newsletter",
            "format": "guia estruturado",
            "whyStronger": "Formato permite aprofundamento com passos claros.",
        },
    ]
    weak_spots = [
        {
            "issue": "Termos genericos em partes da transcricao",
            "why": "Generalidades reduzem memorabilidade e dificultam transformacao em cortes fortes.",
        },
        {
            "issue": "Possivel dependencia de contexto externo",
            "why": "Algumas frases isoladas podem perder clareza quando publicadas sem explicacao adicional.",
        },
    ]

    return {
        "thesis": thesis,
        "topics": topics,
        "contentType": content_type,
        "polarityScore": polarity,
        "recommendations": [
            f"Refine a tese para o publico-alvo: {profile.audience}.",
            f"Aplique o objetivo central no texto: {profile.goal}.",
            f"Use estrategia {profile.tasks.analysis.strategy} com tom {profile.tone.lower()}.",
            "Estruture a narrativa em problema, tensao, insight e aplicacao para elevar clareza.",
        ],
        "structure": structure,
        "retentionMoments": retention_moments,
        "editorialAngles": editorial_angles,
        "weakSpots": weak_spots,
        "qualityScores": {
            "insightDensity": round_score(6.8),
            "standaloneClarity": round_score(7.2),
            "polarity": round_score(polarity),
            "practicalValue": round_score(7.1),
        },
    }


def compute_reels_scores(
    window: ClipWindow, duration_sec: float, analysis: Mapping[str, Any], strategy: str
) -> Dict[str, int]:
    """Integer 5-9 clip scores derived from window position, length and the analysis polarity."""
    clip_sec = _round_half_up(window.duration_ms / 1000)
    hook_bonus = 1 if strategy in ("provocative", "contrarian") else 0
    editorial = window_editorial_score(window, duration_sec)
    hook = _round_half_up(clamp(editorial + 2.8 + hook_bonus, 5, 9))
    clarity = _round_half_up(clamp(8.8 - abs(clip_sec - 30) / 8, 5, 9))
    retention = _round_half_up(clamp((hook + clarity + clamp(editorial, 0, 10)) / 3, 5, 9))
    share = _round_half_up(clamp((retention + float(analysis.get("polarityScore") or 0)) / 2, 5, 9))
    return {"hook": hook, "clarity": clarity, "retention": retention, "share": share}


def build_reels(
    segments: Sequence[TranscriptSegment],
    analysis: Mapping[str, Any],
    duration_sec: float,
    profile: Optional[GenerationProfile] = None,
    windows: Optional[Sequence[ClipWindow]] = None,
) -> Dict[str, Any]:
    profile = profile or default_generation_profile()
    config = profile.tasks.reels
    clip_count = resolve_clip_count(duration_sec, config.length)
    selected = (
        list(windows)[:clip_count]
        if windows
        else select_clip_windows(segments, clip_count, duration_sec, config.length, config.target_outcome)
    )
    strategy_tags = hashtags_by_strategy(config.strategy)
    ctas = cta_variants(config.cta_mode, profile.goal, config.target_outcome)
    thesis = str(analysis.get("thesis") or "")
    topic_tags = [tag for tag in (f"#{clean_token(topic)}" for topic in list(analysis.get("topics") or [])[:4]) if len(tag) >= 4]

    clips = []
    for index, window in enumerate(selected):
        cta = ctas[index % max(1, len(ctas))] if ctas else ""
        excerpt = normalize_text(window.text, 2200, 24, thesis)
        clips.append(
            {
                "title": normalize_text(source_anchored_title(window.text, thesis), 220, 12, thesis),
                "start": ms_to_timestamp(window.start_ms),
                "end": ms_to_timestamp(window.end_ms),
                "caption": source_anchored_caption(excerpt, cta, thesis),
                "hashtags": sanitize_hashtags(strategy_tags + topic_tags, strategy_tags),
                "scores": compute_reels_scores(window, duration_sec, analysis, config.strategy),
                "whyItWorks": source_anchored_why_it_works(
                    window.text,
                    cta,
                    f"Trecho alinhado ao angulo {config.strategy}, com gancho inicial claro e fechamento acionavel "
                    f"para {profile.audience.lower()}.",
                ),
            }
        )
    return {"clips": clips}


def build_newsletter(
    segments: Sequence[TranscriptSegment],
    analysis: Mapping[str, Any],
    profile: Optional[GenerationProfile] = None,
) -> Dict[str, Any]:
    profile = profile or default_generation_profile()
    config = profile.tasks.newsletter
    thesis = str(analysis.get("thesis") or "")
    recommendations = [str(item) for item in analysis.get("recommendations") or []]
    structure = analysis.get("structure") or {}
    strongest = [segment.text for segment in take_best_segments(segments, 8)]
    insight_count = {"short": 2, "long": 4}.get(config.length, 3)

    bodies: List[str] = []
    for body in (normalize_text(line, 5000, 30, thesis) for line in strongest[:insight_count]):
        if body and not any(lexical_overlap_ratio(body, existing) >= 0.86 for existing in bodies):
            bodies.append(body)
    while len(bodies) < insight_count:
        seed = recommendations[len(bodies) % len(recommendations)] if recommendations else thesis
        bodies.append(normalize_text(seed, 5000, 30, thesis))

    insight_sections = []
    for index, text in enumerate(bodies[:insight_count]):
        if index == 0:
            insight_sections.append(
                {
                    "type": "insight",
                    "title": "Mecanismo causal central",
                    "text": normalize_text(f"Mecanismo: {text}", 5000, 30, text),
                }
            )
        else:
            insight_sections.append({"type": "insight", "title": f"Implicacao pratica {index}", "text": text})

    candidates = [
        str(structure.get("application") or ""),
        *(recommendations[i] if i < len(recommendations) else "" for i in range(3)),
        strongest[insight_count] if insight_count < len(strongest) else "",
        f"Aplique o angulo {config.strategy} com criterio de {config.target_outcome}.",
        f"Defina metrica principal: {profile.performance_memory.newsletter.kpi or 'respostas qualificadas'}.",
    ]
    checklist: List[str] = []
    max_items = 6 if config.length == "long" else 5
    for item in (normalize_text(candidate, 2400, 24) for candidate in candidates):
        if len(item) < 24:
            continue
        if not any(lexical_overlap_ratio(existing, item) >= 0.84 for existing in checklist):
            checklist.append(item)
        if len(checklist) >= max_items:
            break

    topics = list(analysis.get("topics") or [])
    cta = cta_by_mode(config.cta_mode, profile.goal, config.target_outcome)
    tension = structure.get("tension") or "o problema cresce quando nao existe distribuicao por canal."
    return {
        "headline": normalize_text(
            f"Como aplicar {topics[0] if topics else 'a mensagem central'} para {profile.audience}", 300, 12
        ),
        "subheadline": normalize_text(
            f"Objetivo: {profile.goal}. Estrategia: {config.strategy}. "
            f"Mecanismo causal: {structure.get('insight') or thesis}",
            2400,
            42,
        ),
        "sections": [
            {
                "type": "intro",
                "text": normalize_text(
                    f"{structure.get('problem') or thesis} Tensao: {tension} Contexto: publico {profile.audience}.",
                    5000,
                    90,
                ),
            },
            *insight_sections,
            {"type": "application", "bullets": checklist},
            {
                "type": "cta",
                "text": normalize_text(
                    f"{cta} Qual metrica voce vai acompanhar na proxima semana para validar a execucao?", 2400, 26
                ),
            },
        ],
    }


def build_linkedin(
    segments: Sequence[TranscriptSegment],
    analysis: Mapping[str, Any],
    profile: Optional[GenerationProfile] = None,
) -> Dict[str, Any]:
    profile = profile or default_generation_profile()
    config = profile.tasks.linkedin
    thesis = str(analysis.get("thesis") or "")
    recommendations = [str(item) for item in analysis.get("recommendations") or []]
    structure = analysis.get("structure") or {}
    best = take_best_segments(segments, 6)

    proof_seed = next((segment.text for segment in best if _PROOF_RE.search(segment.text)), None)
    proof_seed = proof_seed or (best[0].text if best else None) or structure.get("insight") or thesis
    mechanism = (
        structure.get("insight")
        or (recommendations[0] if recommendations else None)
        or "Sem mecanismo causal claro, a execucao vira tentativa e erro."
    )
    default_steps = [
        "Defina uma tese operacional clara.",
        "Transforme em rotina de distribuicao por canal.",
        "Meça resultado e ajuste com frequencia semanal.",
    ]
    steps = [
        normalize_text(recommendations[i] if i < len(recommendations) else default_steps[i], 3200, 18)
        for i in range(3)
    ]
    extra = []
    if config.length == "long":
        extra = [
            normalize_text(f"Publico foco: {profile.audience}. Objetivo: {profile.goal}.", 2400, 18),
            normalize_text(
                "KPI principal para validar progresso: "
                f"{profile.performance_memory.linkedin.kpi or 'comentarios qualificados e salvamentos'}.",
                2400,
                18,
            ),
        ]

    cta = cta_by_mode(config.cta_mode, profile.goal, config.target_outcome)
    return {
        "hook": normalize_text(f"Tese forte: {thesis}", 2200, 26),
        "body": [
            normalize_text(f"Prova: {proof_seed}", 3200, 24, thesis),
            normalize_text(f"Mecanismo: {mechanism}", 3200, 24, thesis),
            normalize_text(f"Framework 1/3: {steps[0]}", 3200, 24),
            normalize_text(f"Framework 2/3: {steps[1]}", 3200, 24),
            normalize_text(f"Framework 3/3: {steps[2]}", 3200, 24),
            *extra,
            normalize_text(
                f"Aplicacao imediata: rode essa estrutura por duas semanas com estrategia {config.strategy} "
                f"e compare a evolucao de {config.target_outcome}.",
                2400,
                24,
            ),
        ],
        "ctaQuestion": normalize_text(
            f"{cta} Qual metrica concreta voce vai reportar na proxima semana para provar que isso funcionou?",
            2000,
            30,
        ),
    }


def build_x_posts(
    segments: Sequence[TranscriptSegment],
    analysis: Mapping[str, Any],
    profile: Optional[GenerationProfile] = None,
) -> Dict[str, Any]:
    profile = profile or default_generation_profile()
    config = profile.tasks.x
    thesis = str(analysis.get("thesis") or "")
    recommendations = [str(item) for item in analysis.get("recommendations") or []]
    structure = analysis.get("structure") or {}
    segment_ideas = [normalize_text(segment.text, 6000, 20, thesis) for segment in take_best_segments(segments, 14)]
    ideas = dedupe_x_posts(
        [thesis]
        + [str(structure.get(key) or "") for key in ("problem", "tension", "insight", "application")]
        + recommendations
        + segment_ideas
    )

    def idea(index: int, fallback: str) -> str:
        return ideas[index] if index < len(ideas) else fallback

    first_rec = recommendations[0] if recommendations else thesis
    second_rec = recommendations[1] if len(recommendations) > 1 else thesis
    standalone_count = {"long": 6, "short": 4}.get(config.length, 5)
    thread_count = {"long": 8, "short": 5}.get(config.length, 6)
    ctas = cta_variants(config.cta_mode, profile.goal, config.target_outcome)
    primary_cta = ctas[0] if ctas else cta_by_mode(config.cta_mode, profile.goal, config.target_outcome)
    secondary_cta = ctas[1] if len(ctas) > 1 else primary_cta

    standalone_seed = [
        normalize_text(
            f"Tese central: {thesis}. Se voce publica o mesmo texto em todos os canais, voce perde retencao e "
            "resposta qualificada.",
            6000,
            40,
            thesis,
        ),
        normalize_text(
            "Erro recorrente: confundir consistencia com volume. Consistencia real e sistema com hook, formato e "
            "CTA adaptados por canal.",
            6000,
            40,
        ),
        normalize_text(
            "Mecanismo pratico: uma ideia forte vira 1 reel, 1 post de LinkedIn, 1 thread e 1 newsletter com "
            "angulos diferentes.",
            6000,
            40,
        ),
        normalize_text(
            f"Publico alvo: {profile.audience}. Objetivo atual: {profile.goal}. Sem criterio por canal, o alcance "
            "nao vira resultado.",
            6000,
            40,
        ),
        normalize_text(
            "Framework rapido: tese, prova, aplicacao e CTA. Se faltar uma dessas etapas, a distribuicao perde "
            "eficiencia.",
            6000,
            40,
        ),
        normalize_text(
            f"{idea(0, thesis)} Aplicacao imediata: rode esse ajuste por 7 dias e compare com a semana anterior.",
            6000,
            40,
        ),
        normalize_text(f"{idea(1, first_rec)} {secondary_cta}", 6000, 40),
    ]
    thread_seed = [
        normalize_text(
            f"{thesis} Esse e o ponto que separa conteudo que gera alcance de conteudo que gera crescimento real.",
            6000,
            40,
        ),
        normalize_text(
            "Problema: publicar igual em todos os canais. Resultado: queda de retencao, resposta superficial e "
            "baixa conversao de audiencia em acao.",
            6000,
            40,
        ),
        normalize_text(
            "Friccao: voce acredita que o volume resolve. Na pratica, sem adaptacao de hook e CTA, o algoritmo "
            "entrega e a audiencia ignora.",
            6000,
            40,
        ),
        normalize_text(
            "Insight: cada canal responde a um gatilho diferente. Reels pede gancho e ritmo, LinkedIn pede prova "
            "e framework, X pede tensao e punchline.",
            6000,
            40,
        ),
        normalize_text(
            "Aplicacao 1: escolha um video e extraia 3 trechos com conflitos distintos. Cada trecho vira um ativo "
            "com promessa propria.",
            6000,
            40,
        ),
        normalize_text(
            "Aplicacao 2: no fechamento, use CTA observavel com prazo. Exemplo: comentar a metrica que vai "
            "acompanhar em 7 dias.",
            6000,
            40,
        ),
        normalize_text(f"{idea(2, second_rec)} {primary_cta}", 6000, 40),
        normalize_text(
            "Fechamento: execute por 7 dias, compare as metricas de retencao e compartilhe o resultado para "
            "ajustar a proxima rodada.",
            6000,
            40,
        ),
    ]

    thread = thread_seed[:thread_count]
    total = len(thread)
    numbered = [fit_x_post_length(f"{index + 1}/{total} {post}".strip(), post) for index, post in enumerate(thread)]
    style = normalize_text(
        f"{config.strategy}, {config.length}, tom {profile.tone.lower()}, foco em substancia e aplicacao", 300, 3
    )
    return sanitize_x_payload(
        {"standalone": standalone_seed[:standalone_count], "thread": numbered, "notes": {"style": style}},
        config.cta_mode,
        config.length,
    )
