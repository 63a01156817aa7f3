"""LLM judge: rubric prompts, strict/adversarial panel and the penalized fallback verdict."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import math
import re
from typing import Any, Dict, List, Mapping, Optional

from pydantic import ValidationError

from core import QualityEvaluation, QualitySubscores, task_name
from generation.composite import clamp_subscores
from generation.evidence import collect_task_string_blocks
from generation.guardrails import repeated_text_ratio
from generation.normalize import as_string_array, first_present, pick_string
from generation.quality import JUDGE_CONTEXT_MAX_CHARS, TASK_JUDGE_TIMEOUT_MS
from generation.requester import CompletionRequester, UsageRecorder
from generation.routing import is_abort_like, is_circuit_open_reason, is_json_parse_like
from generation.sanitize import has_cta_intent
from generation.schemas import QualityJudgeSchema
from generation.scoring import average_subscores
from generation.text import clamp, contains_ellipsis_artifact, normalize_text, round_score, truncate


logger = logging.getLogger(__name__)

JUDGE_MAX_TOKENS = 700
JUDGE_MAX_WEAKNESSES = 6
PANEL_MAX_WEAKNESSES = 8
STRICT_WEIGHT = 0.55
ADVERSARIAL_WEIGHT = 0.45
NO_REMARKS = "Judge sem observacoes"

_RUBRICS = {
    "analysis": (
        "thesis: mecanica causal explicita e falsificavel",
        "topics: concretos, sem placeholders vagos",
        "recommendations: acionaveis em 30-90 dias",
        "structure: problema, tensao, insight e aplicacao coerentes",
        "retentionMoments/editorialAngles: utilidade real por canal",
        "penalizar inflacao de nota sem evidencia textual",
    ),
    "reels": (
        "clip com janela temporal forte e sem introducao fraca",
        "title com tensao imediata e promessa concreta",
        "caption com aplicacao pratica e CTA aderente ao objetivo",
        "hashtags especificas e sem poluicao",
        "whyItWorks com racional objetivo de retencao",
    ),
    "newsletter": (
        "progressao logica sem repeticao",
        "insights densos com mecanismo causal",
        "aplicacao com checklist operacional",
        "cta com intencao qualificada e criterio",
    ),
    "linkedin": (
        "hook forte sem clickbait raso",
        "corpo progressivo com evidencias e aplicacao",
        "clareza sem contexto externo",
        "cta final especifico e nao binario",
    ),
    "x": (
        "standalone com punchline e substancia",
        "thread com progressao real por etapas",
        "baixa repeticao lexical e argumentativa",
        "aplicabilidade e memorabilidade",
    ),
}

_TASK_PUNISHMENTS = {
    "analysis": (
        "Para analysis, punir tese superficial, topicos vagos, recomendacoes nao acionaveis, ausencia de "
        "mecanismo causal, retention moments fracos e notas infladas sem evidencia."
    ),
    "reels": "Para reels, punir corte sem gancho, legenda generica, CTA fraco, hashtag ruim e justificativa vaga.",
    "newsletter": (
        "Para newsletter, punir abstracao, falta de progressao, falta de aplicacao e cta sem especificidade."
    ),
    "linkedin": "Para linkedin, punir hook fraco, repeticao, corpo sem argumento e pergunta final generica.",
    "x": "Para x, punir thread sem progressao, baixa densidade e posts sem memorabilidade.",
}

_GENERIC_TOPIC_RE = re.compile(r"^(coisa|pessoa|isso|tema|negocio|assunto)$", re.IGNORECASE)
_CORTE_TITLE_RE = re.compile(r"^corte\s+\d+", re.IGNORECASE)
_LINKEDIN_PRACTICAL_RE = re.compile(
    r"(exemplo|passo|aplique|na pratica|resultado|framework|metodo|dados)", re.IGNORECASE
)
_THREAD_NUMBER_RE = re.compile(r"^\s*\d+\s*/\s*\d*")
_X_ACTION_RE = re.compile(r"(passo|aplique|execute|teste|comente|compartilhe)", re.IGNORECASE)


def quality_rubric(task: Any) -> str:
    return "; ".join(_RUBRICS[task_name(task)])


def judge_system_prompt(task: Any, mode: str) -> str:
    lines = [
        "Voce e um Juiz Editorial Senior.",
        "Avalie o JSON candidato sem reescrever o conteudo.",
        "Modo adversarial: atue como auditor rigoroso buscando falhas ocultas."
        if mode == "adversarial"
        else "Modo strict: avalie com criterio tecnico duro, sem inflar nota.",
        "Seja rigido contra texto generico e score inflado.",
        "Se houver truncamento, repeticao excessiva ou schema parcial, aplique penalidade forte.",
        "Retorne SOMENTE JSON valido.",
        _TASK_PUNISHMENTS[task_name(task)],
    ]
    return "\n".join(lines)


def judge_user_prompt(task: Any, candidate: Mapping[str, Any], context: str, mode: str) -> str:
    name = task_name(task)
    parts = [
        f"TAREFA: {name}",
        f"MODO_AVALIACAO: {mode}",
        f"RUBRICA: {quality_rubric(name)}",
        "ANCORAS_DE_NOTA:",
        "10 = elite publicavel sem ajustes | 8 = bom com poucos ajustes | 6 = mediano | 4 = fraco | 2 = inutilizavel",
        "ANCORAS_POR_SUBNOTA:",
        "clarity: sem contexto externo, sem ambiguidades",
        "depth: mecanismo causal, nao apenas opiniao",
        "originality: angulo proprio e baixa repeticao",
        "applicability: proximo passo concreto e executavel",
        "retentionPotential: ritmo, tensao e memorabilidade",
        "REQUISITO: penalize genericidade, repeticao, abstracao vazia e falta de aplicacao concreta.",
        "REQUISITO: se houver erro de formato, reduza drasticamente clarity e applicability.",
        "REQUISITO: se detectar texto truncado com ... ou [continua], nota maxima 6.5.",
        "REQUISITO: nunca inflar nota apenas por tamanho de texto.",
        "CONTEXTO:",
        truncate(context, JUDGE_CONTEXT_MAX_CHARS[name]),
        "JSON_CANDIDATO:",
        json.dumps(candidate, ensure_ascii=False, indent=2),
        "FORMATO DE RESPOSTA:",
        '{ "qualityScore": 0-10, "subscores": { "clarity": 0-10, "depth": 0-10, "originality": 0-10, '
        '"applicability": 0-10, "retentionPotential": 0-10 }, "summary": "justificativa curta em ate 220 chars", '
        '"weaknesses": ["falha 1", "falha 2"], "confidence": 0-1 }',
    ]
    return "\n\n".join(parts)


@dataclass(frozen=True)
class JudgeVerdict:
    evaluation: Optional[QualityEvaluation]
    unavailable_reason: Optional[str] = None


def normalize_judge_unavailable_reason(reason: Optional[str]) -> str:
    """Map a transport/parse failure message to a stable snake_case code."""
    if not reason or not reason.strip():
        return "judge_empty_response"
    if "provider configured as heuristic" in reason:
        return "judge_provider_set_heuristic"
    if "key not configured" in reason:
        return "judge_provider_key_missing"
    if is_circuit_open_reason(reason):
        return "judge_circuit_open"
    if is_abort_like(reason):
        return "judge_request_aborted_or_timeout"
    if is_json_parse_like(reason):
        return "judge_invalid_json_response"

    compact = re.sub(r"[^a-z0-9]+", "_", reason.lower()).strip("_")
    return compact[:80] if compact else "judge_request_failed"


def _judge_score(value: Any, fallback: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    return round_score(clamp(number, 0, 10))


def coerce_judge_evaluation(output: Mapping[str, Any]) -> Optional[QualityEvaluation]:
    """Salvage a verdict from a reply that missed the schema; None when there is no overall score."""
    score = _judge_score(first_present(output, "qualityScore", "score", "overall"), -1)
    if score < 0:
        return None

    raw = first_present(output, "subscores", "scores")
    raw = raw if isinstance(raw, dict) else {}
    subscores = clamp_subscores(
        QualitySubscores(
            clarity=_judge_score(raw.get("clarity"), score),
            depth=_judge_score(raw.get("depth"), score),
            originality=_judge_score(raw.get("originality"), score),
            applicability=_judge_score(raw.get("applicability"), score),
            retention_potential=_judge_score(first_present(raw, "retentionPotential", "retention"), score),
        )
    )
    summary = pick_string(output.get("summary"), output.get("rationale"), output.get("reason")) or NO_REMARKS
    return QualityEvaluation(
        overall=score,
        subscores=subscores,
        summary=normalize_text(summary, 220, 8, NO_REMARKS),
        weaknesses=as_string_array(first_present(output, "weaknesses", "issues"))[:JUDGE_MAX_WEAKNESSES],
    )


def parse_judge_output(output: Mapping[str, Any]) -> Optional[QualityEvaluation]:
    try:
        parsed = QualityJudgeSchema.model_validate(output)
    except ValidationError:
        return coerce_judge_evaluation(output)

    return QualityEvaluation(
        overall=round_score(parsed.quality_score),
        subscores=clamp_subscores(
            QualitySubscores(
                clarity=parsed.subscores.clarity,
                depth=parsed.subscores.depth,
                originality=parsed.subscores.originality,
                applicability=parsed.subscores.applicability,
                retention_potential=parsed.subscores.retention_potential,
            )
        ),
        summary=normalize_text(parsed.summary, 220, 8, NO_REMARKS),
        weaknesses=[normalize_text(item, 140, 4) for item in parsed.weaknesses or []][:JUDGE_MAX_WEAKNESSES],
    )


def combine_judge_evaluations(strict: QualityEvaluation, adversarial: QualityEvaluation) -> QualityEvaluation:
    """Per-axis 0.55/0.45 blend of the two passes, weaknesses unioned in order."""

    def merge(a: float, b: float) -> float:
        return round_score(a * STRICT_WEIGHT + b * ADVERSARIAL_WEIGHT)

    weaknesses: List[str] = []
    for item in list(strict.weaknesses) + list(adversarial.weaknesses):
        if item not in weaknesses:
            weaknesses.append(item)

    return QualityEvaluation(
        overall=merge(strict.overall, adversarial.overall),
        subscores=QualitySubscores(
            clarity=merge(strict.subscores.clarity, adversarial.subscores.clarity),
            depth=merge(strict.subscores.depth, adversarial.subscores.depth),
            originality=merge(strict.subscores.originality, adversarial.subscores.originality),
            applicability=merge(strict.subscores.applicability, adversarial.subscores.applicability),
            retention_potential=merge(
                strict.subscores.retention_potential, adversarial.subscores.retention_potential
            ),
        ),
        summary=normalize_text(f"{strict.summary} Auditoria: {adversarial.summary}", 220, 8, strict.summary),
        weaknesses=weaknesses[:PANEL_MAX_WEAKNESSES],
    )


def _structural_penalties(task: str, payload: Mapping[str, Any]) -> List[tuple]:
    penalties = []
    if task == "analysis":
        topics = [str(topic) for topic in payload.get("topics") or []]
        if len(payload.get("recommendations") or []) < 4:
            penalties.append(("applicability", 0.8, "recommendations_shallow"))
        if len(str(payload.get("thesis") or "")) < 70:
            penalties.append(("depth", 0.7, "thesis_too_short"))
        if any(_GENERIC_TOPIC_RE.match(topic.strip()) for topic in topics):
            penalties.append(("clarity", 0.5, "generic_topics_detected"))
        if len(payload.get("weakSpots") or []) < 2:
            penalties.append(("depth", 0.5, "weak_spot_diagnosis_thin"))

    elif task == "reels":
        clips = list(payload.get("clips") or [])
        if any(len(str(clip.get("caption") or "").strip()) < 180 for clip in clips):
            penalties.append(("retention_potential", 0.8, "caption_density_low"))
        if any(_CORTE_TITLE_RE.match(str(clip.get("title") or "")) for clip in clips):
            penalties.append(("originality", 0.7, "generic_reels_titles"))
        if any(len(str(clip.get("whyItWorks") or "").strip()) < 110 for clip in clips):
            penalties.append(("depth", 0.8, "why_it_works_shallow"))

    elif task == "newsletter":
        sections = list(payload.get("sections") or [])
        application = next((section for section in sections if section.get("type") == "application"), None)
        cta = next((section for section in sections if section.get("type") == "cta"), None)
        if sum(1 for section in sections if section.get("type") == "insight") < 3:
            penalties.append(("depth", 0.8, "insight_count_low"))
        if application is None or len(application.get("bullets") or []) < 4:
            penalties.append(("applicability", 0.9, "application_checklist_weak"))
        if cta is None or not has_cta_intent(str(cta.get("text") or ""), "lead"):
            penalties.append(("applicability", 0.6, "cta_without_clear_intent"))

    elif task == "linkedin":
        body = [str(paragraph) for paragraph in payload.get("body") or []]
        if len(body) < 5:
            penalties.append(("depth", 0.8, "linkedin_body_short"))
        if sum(1 for paragraph in body if _LINKEDIN_PRACTICAL_RE.search(paragraph)) < 2:
            penalties.append(("applicability", 0.8, "linkedin_low_practical_density"))
        if not str(payload.get("ctaQuestion") or "").strip().endswith("?"):
            penalties.append(("clarity", 0.4, "linkedin_cta_not_question"))

    elif task == "x":
        thread = [str(post) for post in payload.get("thread") or []]
        posts = [str(post) for post in payload.get("standalone") or []] + thread
        numbered = sum(1 for post in thread if _THREAD_NUMBER_RE.match(post.strip()))
        if any(len(post.strip()) < 90 for post in posts):
            penalties.append(("depth", 0.7, "x_posts_too_short"))
        if numbered < min(3, len(thread)):
            penalties.append(("retention_potential", 0.6, "thread_progression_weak"))
        if not any(_X_ACTION_RE.search(post) for post in posts):
            penalties.append(("applicability", 0.7, "x_low_actionability"))

    return penalties


def fallback_judge_evaluation(
    task: Any,
    payload: Mapping[str, Any],
    heuristic: QualityEvaluation,
    unavailable_reason: str = "judge_unavailable",
) -> QualityEvaluation:
    """
    Conservative stand-in verdict when the judge cannot be used.

    Starts below the heuristic on every axis and subtracts more for each
    detected deficiency, so an unaudited candidate never outscores what a
    working judge would plausibly give it.
    """
    name = task_name(task)
    axes: Dict[str, float] = {
        "clarity": heuristic.subscores.clarity - 0.35,
        "depth": heuristic.subscores.depth - 0.45,
        "originality": heuristic.subscores.originality - 0.4,
        "applicability": heuristic.subscores.applicability - 0.3,
        "retention_potential": heuristic.subscores.retention_potential - 0.25,
    }
    weaknesses = [unavailable_reason]
    penalties: List[tuple] = []

    texts = [block.text for block in collect_task_string_blocks(name, payload)]
    if any(contains_ellipsis_artifact(text) for text in texts):
        penalties.append(("clarity", 1.1, "truncation_artifact_detected"))
        penalties.append(("applicability", 0.7, "truncated_copy_not_publish_ready"))

    repetition = repeated_text_ratio(texts)
    if repetition >= 0.22:
        penalties.append(("originality", 0.9, "argument_repetition_high"))
    elif repetition >= 0.14:
        penalties.append(("originality", 0.5, "argument_repetition_moderate"))

    for axis, amount, reason in penalties + _structural_penalties(name, payload):
        axes[axis] -= amount
        weaknesses.append(reason)

    subscores = clamp_subscores(QualitySubscores(**axes))
    unique: List[str] = []
    for item in weaknesses:
        if item not in unique:
            unique.append(item)

    return QualityEvaluation(
        overall=round_score(max(0.0, average_subscores(subscores) - 0.1)),
        subscores=subscores,
        summary=(
            f"Judge indisponivel para {name} ({unavailable_reason}); fallback rigoroso aplicado com "
            f"{max(0, len(unique) - 1)} alertas"
        ),
        weaknesses=unique[:JUDGE_MAX_WEAKNESSES],
    )


class QualityJudge:
    """Runs the judge route; never raises, a failed call yields a verdict with an unavailable reason."""

    def __init__(self, requester: CompletionRequester) -> None:
        self.requester = requester

    async def evaluate_once(
        self,
        task: Any,
        candidate: Mapping[str, Any],
        context: str,
        mode: str = "strict",
        usage_recorder: Optional[UsageRecorder] = None,
    ) -> JudgeVerdict:
        name = task_name(task)
        result = await self.requester.request(
            name,
            judge_system_prompt(name, mode),
            judge_user_prompt(name, candidate, context, mode),
            max_tokens=JUDGE_MAX_TOKENS,
            timeout_ms=TASK_JUDGE_TIMEOUT_MS[name],
            route_kind="judge",
            usage_recorder=usage_recorder,
        )
        if result.output is None:
            return JudgeVerdict(None, normalize_judge_unavailable_reason(result.trace.fallback_reason))

        evaluation = parse_judge_output(result.output)
        if evaluation is None:
            logger.info("Judge reply for task '%s' (%s) did not match any verdict shape", name, mode)
            return JudgeVerdict(None, "judge_schema_parse_failed")
        return JudgeVerdict(evaluation)

    async def evaluate(
        self,
        task: Any,
        candidate: Mapping[str, Any],
        context: str,
        use_panel: bool = False,
        usage_recorder: Optional[UsageRecorder] = None,
    ) -> JudgeVerdict:
        """Strict pass, plus an adversarial pass merged in when `use_panel` is set."""
        strict = await self.evaluate_once(task, candidate, context, "strict", usage_recorder)
        if not use_panel or strict.evaluation is None:
            return strict

        adversarial = await self.evaluate_once(task, candidate, context, "adversarial", usage_recorder)
        if adversarial.evaluation is None:
            return JudgeVerdict(strict.evaluation, adversarial.unavailable_reason)
        return JudgeVerdict(combine_judge_evaluations(strict.evaluation, adversarial.evaluation))
