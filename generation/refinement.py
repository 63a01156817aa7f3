"""Rank candidates, then rewrite the current best until it clears the thresholds or passes run out."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from core import QualityEvaluation, TaskScoreWeights, task_name
from generation.composite import apply_inflation_guard, composite_score, publishability_score
from generation.judge import QualityJudge, fallback_judge_evaluation, quality_rubric
from generation.quality import TASK_MAX_TOKENS, TASK_PUBLISHABILITY_THRESHOLD, TASK_QUALITY_THRESHOLD
from generation.requester import CompletionRequester, UsageRecorder
from generation.scoring import heuristic_evaluation
from generation.text import clamp


logger = logging.getLogger(__name__)

Payload = Dict[str, Any]
ParseRefined = Callable[[Dict[str, Any]], Optional[Payload]]

ACCEPT_TOLERANCE = 0.05
MAX_REFINE_PASSES = 3

REFINE_SYSTEM_PROMPT = "\n".join(
    [
        "Voce e um Editor-Chefe de conteudo premium.",
        "Sua missao e reescrever o JSON candidato para elevar qualidade editorial sem quebrar schema.",
        "Priorize especificidade, densidade de insight, progressao logica e aplicabilidade pratica.",
        "Seu trabalho e transformar respostas medianas em respostas de nivel senior.",
        "Remova frases vagas, repeticao, cliche e qualquer tom motivacional vazio.",
        "Nao invente fatos fora do contexto fornecido.",
        "Nunca use travessao em nenhum texto.",
        "Retorne SOMENTE JSON valido.",
    ]
)


def refinement_user_prompt(
    task: Any,
    payload: Mapping[str, Any],
    context: str,
    current_score: float,
    threshold: float,
    weaknesses: Sequence[str],
    pass_index: int,
    pass_target: int,
) -> str:
    name = task_name(task)
    return "\n\n".join(
        [
            f"TAREFA: {name}",
            f"PASSE_REFINO: {pass_index}/{pass_target}",
            f"SCORE_ATUAL: {current_score:.2f}/10",
            f"META_MINIMA: {threshold:.1f}/10",
            f"RUBRICA: {quality_rubric(name)}",
            "CONTEXTO:",
            context,
            "JSON_CANDIDATO:",
            json.dumps(payload, ensure_ascii=False, indent=2),
            "REGRAS DE MELHORIA OBRIGATORIAS:",
            "1) Aumente especificidade sem extrapolar o contexto.",
            "2) Substitua termos vagos por formulacoes concretas.",
            "3) Entregue mais profundidade pratica e menos slogan.",
            "4) Mantenha o mesmo schema e os mesmos campos.",
            f"5) Corrija estas fraquezas: {' | '.join(weaknesses) if weaknesses else 'n/a'}.",
            "INSTRUCAO FINAL: entregue uma versao claramente superior no mesmo schema.",
        ]
    )


@dataclass(frozen=True)
class CandidateEvaluation:
    candidate_index: int
    heuristic_score: float
    judge_score: float
    composite_score: float


@dataclass(frozen=True)
class RefinementStep:
    """One pass of the loop; `outcome` is threshold_met, request_failed, invalid_schema, accepted or rejected."""

    pass_index: int
    outcome: str
    composite_before: float
    composite_after: Optional[float] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "pass": self.pass_index,
            "outcome": self.outcome,
            "compositeBefore": self.composite_before,
            "compositeAfter": self.composite_after,
        }


@dataclass
class QualityRefineResult:
    candidate: Payload
    initial_eval: QualityEvaluation
    final_eval: QualityEvaluation
    judge_eval: QualityEvaluation
    quality_score: float
    publishability_score: float
    refinement_requested: bool = False
    refinement_applied: bool = False
    candidate_count: int = 1
    selected_candidate: int = 1
    refine_passes_target: int = 0
    refine_passes_applied_count: int = 0
    candidate_evaluations: List[CandidateEvaluation] = field(default_factory=list)
    inflation_guard_applied: bool = False
    inflation_guard_reason: Optional[str] = None
    display_score: float = 0.0
    composite: float = 0.0
    steps: List[RefinementStep] = field(default_factory=list)


@dataclass(frozen=True)
class _Scored:
    candidate: Payload
    heuristic: QualityEvaluation
    judge: QualityEvaluation
    composite: float
    index: int


class QualityRefiner:
    """
    Per-task selection and refinement.

    Rank: score every candidate (heuristic + judge) and keep the best
    composite. Evaluate: refine only while below a threshold or when
    forced. Refine and re-score, then accept the rewrite unless it lands
    more than 0.05 below the current composite. The loop runs at most
    `MAX_REFINE_PASSES` times; a failed call or an unparsable rewrite
    only ends that pass.
    """

    def __init__(self, requester: CompletionRequester, judge: Optional[QualityJudge] = None) -> None:
        self.requester = requester
        self.judge = judge or QualityJudge(requester)

    def _default_unavailable_reason(self, task: Any) -> str:
        route = self.requester.routing.get_route(task, "judge")
        if route.provider == "heuristic":
            return "judge_provider_set_heuristic"
        if not self.requester.routing.is_provider_configured(route.provider):
            return "judge_provider_key_missing"
        return "judge_unavailable"

    async def _score(
        self,
        task: Any,
        candidate: Payload,
        index: int,
        context: str,
        use_panel: bool,
        weights: Optional[TaskScoreWeights],
        usage_recorder: Optional[UsageRecorder],
    ) -> _Scored:
        heuristic = heuristic_evaluation(task, candidate)
        verdict = await self.judge.evaluate(task, candidate, context, use_panel, usage_recorder)
        judge = verdict.evaluation or fallback_judge_evaluation(
            task, candidate, heuristic, verdict.unavailable_reason or "judge_request_failed_or_invalid"
        )
        return _Scored(candidate, heuristic, judge, composite_score(heuristic, judge, weights), index)

    def _single_result(
        self, task: Any, candidate: Payload, heuristic: QualityEvaluation, judge: QualityEvaluation,
        weights: Optional[TaskScoreWeights],
    ) -> QualityRefineResult:
        composite = composite_score(heuristic, judge, weights)
        guard = apply_inflation_guard(heuristic, judge, composite)
        return QualityRefineResult(
            candidate=candidate,
            initial_eval=heuristic,
            final_eval=heuristic,
            judge_eval=judge,
            quality_score=guard.display_score,
            publishability_score=publishability_score(task, candidate, heuristic, judge),
            candidate_evaluations=[CandidateEvaluation(1, heuristic.overall, judge.overall, composite)],
            inflation_guard_applied=guard.applied,
            inflation_guard_reason=guard.reason,
            display_score=guard.display_score,
            composite=composite,
        )

    def heuristic_only_result(
        self,
        task: Any,
        candidate: Payload,
        weights: Optional[TaskScoreWeights] = None,
        unavailable_reason: Optional[str] = None,
    ) -> QualityRefineResult:
        heuristic = heuristic_evaluation(task, candidate)
        reason = unavailable_reason or self._default_unavailable_reason(task)
        judge = fallback_judge_evaluation(task, candidate, heuristic, reason)
        return self._single_result(task, candidate, heuristic, judge, weights)

    async def fallback_result_with_judge(
        self,
        task: Any,
        candidate: Payload,
        context: str,
        use_panel: bool = False,
        weights: Optional[TaskScoreWeights] = None,
        usage_recorder: Optional[UsageRecorder] = None,
    ) -> QualityRefineResult:
        """Score the locally built payload; nothing is rewritten."""
        verdict = await self.judge.evaluate(task, candidate, context, use_panel, usage_recorder)
        if verdict.evaluation is None:
            return self.heuristic_only_result(
                task, candidate, weights, verdict.unavailable_reason or "judge_request_failed_or_invalid"
            )
        return self._single_result(task, candidate, heuristic_evaluation(task, candidate), verdict.evaluation, weights)

    async def refine_if_low_quality(
        self,
        task: Any,
        candidate: Payload,
        context: str,
        parse_refined: ParseRefined,
        additional_candidates: Sequence[Payload] = (),
        force_refine: bool = False,
        max_refine_passes: int = 1,
        quality_threshold: Optional[float] = None,
        publishability_threshold: Optional[float] = None,
        use_panel: bool = False,
        weights: Optional[TaskScoreWeights] = None,
        usage_recorder: Optional[UsageRecorder] = None,
    ) -> QualityRefineResult:
        name = task_name(task)
        pool = [candidate, *additional_candidates]

        # rank
        scored = [
            await self._score(name, item, index, context, use_panel, weights, usage_recorder)
            for index, item in enumerate(pool)
        ]
        best = max(scored, key=lambda item: item.composite)
        evaluations = [
            CandidateEvaluation(item.index + 1, item.heuristic.overall, item.judge.overall, item.composite)
            for item in scored
        ]

        current = best
        current_publishability = publishability_score(name, best.candidate, best.heuristic, best.judge)
        target = max(1, min(MAX_REFINE_PASSES, max_refine_passes))
        threshold = clamp(TASK_QUALITY_THRESHOLD[name] if quality_threshold is None else quality_threshold, 0, 10)
        publish_threshold = clamp(
            TASK_PUBLISHABILITY_THRESHOLD[name] if publishability_threshold is None else publishability_threshold,
            0,
            10,
        )
        requested = False
        applied = 0
        steps: List[RefinementStep] = []

        for pass_index in range(1, target + 1):
            # evaluate
            below = current.composite < threshold or current_publishability < publish_threshold
            if not (force_refine or below):
                steps.append(RefinementStep(pass_index, "threshold_met", current.composite))
                continue

            # refine
            requested = True
            response = await self.requester.request(
                name,
                REFINE_SYSTEM_PROMPT,
                refinement_user_prompt(
                    name,
                    current.candidate,
                    context,
                    current.composite,
                    threshold,
                    current.judge.weaknesses,
                    pass_index,
                    target,
                ),
                max_tokens=TASK_MAX_TOKENS[name],
                usage_recorder=usage_recorder,
            )
            if response.output is None:
                steps.append(RefinementStep(pass_index, "request_failed", current.composite))
                continue

            refined = parse_refined(response.output)
            if refined is None:
                logger.warning("Task '%s' refinement returned invalid schema", name)
                steps.append(RefinementStep(pass_index, "invalid_schema", current.composite))
                continue

            # re-score, accept if not meaningfully worse
            rescored = await self._score(name, refined, current.index, context, use_panel, weights, usage_recorder)
            if rescored.composite + ACCEPT_TOLERANCE >= current.composite:
                steps.append(RefinementStep(pass_index, "accepted", current.composite, rescored.composite))
                current = rescored
                current_publishability = publishability_score(
                    name, rescored.candidate, rescored.heuristic, rescored.judge
                )
                applied += 1
            else:
                steps.append(RefinementStep(pass_index, "rejected", current.composite, rescored.composite))

        # finalize
        guard = apply_inflation_guard(current.heuristic, current.judge, current.composite)
        return QualityRefineResult(
            candidate=current.candidate,
            initial_eval=best.heuristic,
            final_eval=current.heuristic,
            judge_eval=current.judge,
            quality_score=guard.display_score,
            publishability_score=current_publishability,
            refinement_requested=requested,
            refinement_applied=applied > 0,
            candidate_count=len(pool),
            selected_candidate=best.index + 1,
            refine_passes_target=target,
            refine_passes_applied_count=applied,
            candidate_evaluations=evaluations,
            inflation_guard_applied=guard.applied,
            inflation_guard_reason=guard.reason,
            display_score=guard.display_score,
            composite=current.composite,
            steps=steps,
        )
