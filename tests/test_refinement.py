from __future__ import annotations

from typing import Any, Dict, List, Optional

import pytest

from generation.judge import normalize_judge_unavailable_reason
from generation.refinement import MAX_REFINE_PASSES, QualityRefiner
from generation.requester import RequestTrace, TaskRequestResult
from generation.routing import RoutingTable


def _verdict(score: float) -> Dict[str, Any]:
    return {
        "qualityScore": score,
        "subscores": {
            "clarity": score,
            "depth": score,
            "originality": score,
            "applicability": score,
            "retentionPotential": score,
        },
        "summary": f"Avaliacao com nota {score}",
        "weaknesses": ["falta prova concreta"],
    }


def _post(label: str) -> Dict[str, Any]:
    return {
        "hook": f"O erro que trava a sua distribuicao de conteudo {label}",
        "body": [
            "Primeiro passo: mapeie onde o conteudo perde alcance.",
            "Exemplo: um post com 3 ideias diferentes confunde o leitor.",
            "Na pratica, uma ideia por post aumenta o resultado.",
            "Framework: tese, prova, aplicacao e pergunta.",
        ],
        "ctaQuestion": "Qual metrica voce acompanha hoje? Comente aqui.",
    }


class StubRequester:
    """Judge replies come from `judge_scores` in order; generation replies from `rewrites`."""

    def __init__(self, judge_scores: List[float], rewrites: List[Optional[Dict[str, Any]]]) -> None:
        self.routing = RoutingTable(configured=lambda provider: True)
        self.judge_scores = list(judge_scores)
        self.rewrites = list(rewrites)
        self.generation_calls = 0
        self.judge_calls = 0

    async def request(self, task, system_prompt, user_prompt, *, max_tokens=None, timeout_ms=None,
                      route_kind="generation", usage_recorder=None) -> TaskRequestResult:
        trace = RequestTrace("openai", "test-model", False, None)
        if route_kind == "judge":
            self.judge_calls += 1
            score = self.judge_scores.pop(0) if len(self.judge_scores) > 1 else self.judge_scores[0]
            return TaskRequestResult(_verdict(score), trace)

        self.generation_calls += 1
        output = self.rewrites.pop(0) if len(self.rewrites) > 1 else self.rewrites[0]
        if output is None:
            return TaskRequestResult(None, RequestTrace("openai", "test-model", True, "timeout"))
        return TaskRequestResult(output, trace)


def _accept_all(output: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return output


@pytest.mark.asyncio
async def test_worse_rewrite_is_rejected() -> None:
    requester = StubRequester([8.0, 2.0], [_post("v2")])
    refiner = QualityRefiner(requester)
    original = _post("v1")

    result = await refiner.refine_if_low_quality(
        "linkedin", original, "ctx", _accept_all, max_refine_passes=2, quality_threshold=9.9
    )

    assert result.candidate == original
    assert [step.outcome for step in result.steps] == ["rejected", "rejected"]
    assert result.refinement_requested is True
    assert result.refinement_applied is False
    assert result.composite == result.candidate_evaluations[0].composite_score


@pytest.mark.asyncio
async def test_better_rewrite_is_accepted_and_never_drops_score() -> None:
    requester = StubRequester([5.0, 9.0], [_post("v2")])
    refiner = QualityRefiner(requester)

    result = await refiner.refine_if_low_quality(
        "linkedin", _post("v1"), "ctx", _accept_all, max_refine_passes=1, quality_threshold=9.9
    )

    assert result.steps[0].outcome == "accepted"
    assert result.candidate == _post("v2")
    assert result.refine_passes_applied_count == 1
    assert result.composite + 0.05 >= result.candidate_evaluations[0].composite_score
    assert result.steps[0].composite_after > result.steps[0].composite_before


@pytest.mark.asyncio
async def test_refinement_pass_count_is_bounded() -> None:
    requester = StubRequester([7.0], [_post("again")])
    refiner = QualityRefiner(requester)

    result = await refiner.refine_if_low_quality(
        "linkedin", _post("v1"), "ctx", _accept_all, force_refine=True, max_refine_passes=10
    )

    assert requester.generation_calls == MAX_REFINE_PASSES
    assert result.refine_passes_target == MAX_REFINE_PASSES
    assert len(result.steps) == MAX_REFINE_PASSES


@pytest.mark.asyncio
async def test_failed_and_invalid_rewrites_only_end_their_pass() -> None:
    requester = StubRequester([6.0], [None, {"broken": True}])
    refiner = QualityRefiner(requester)

    def parse(output: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return None if "broken" in output else output

    result = await refiner.refine_if_low_quality(
        "linkedin", _post("v1"), "ctx", parse, max_refine_passes=3, quality_threshold=9.9
    )

    assert [step.outcome for step in result.steps] == ["request_failed", "invalid_schema", "invalid_schema"]
    assert result.candidate == _post("v1")


@pytest.mark.asyncio
async def test_best_initial_candidate_is_selected() -> None:
    requester = StubRequester([6.0, 9.5, 7.0], [None])
    refiner = QualityRefiner(requester)

    result = await refiner.refine_if_low_quality(
        "linkedin",
        _post("a"),
        "ctx",
        _accept_all,
        additional_candidates=[_post("b"), _post("c")],
        max_refine_passes=1,
        quality_threshold=0,
        publishability_threshold=0,
    )

    assert result.selected_candidate == 2
    assert result.candidate == _post("b")
    assert result.candidate_count == 3
    assert [step.outcome for step in result.steps] == ["threshold_met"]
    assert requester.generation_calls == 0


@pytest.mark.asyncio
async def test_panel_runs_two_judge_passes() -> None:
    requester = StubRequester([9.0, 7.0], [None])
    refiner = QualityRefiner(requester)

    result = await refiner.fallback_result_with_judge("linkedin", _post("a"), "ctx", use_panel=True)

    assert requester.judge_calls == 2
    assert result.judge_eval.overall == pytest.approx(9.0 * 0.55 + 7.0 * 0.45, abs=0.01)


def test_heuristic_only_reason_reflects_route() -> None:
    requester = StubRequester([7.0], [None])
    refiner = QualityRefiner(requester)

    result = refiner.heuristic_only_result("x", {"standalone": [], "thread": [], "notes": {"style": ""}})

    assert result.judge_eval.weaknesses[0] == "judge_provider_set_heuristic"
    assert result.quality_score == result.display_score


def test_heuristic_only_reason_for_missing_key_matches_judge_code() -> None:
    requester = StubRequester([7.0], [None])
    requester.routing = RoutingTable(configured=lambda provider: False)
    requester.routing.set_route("x", "judge", provider="openai", model="gpt-5-mini")
    refiner = QualityRefiner(requester)

    result = refiner.heuristic_only_result("x", {"standalone": [], "thread": [], "notes": {"style": ""}})

    assert result.judge_eval.weaknesses[0] == normalize_judge_unavailable_reason("provider 'openai' key not configured")
    assert result.judge_eval.weaknesses[0] == "judge_provider_key_missing"
