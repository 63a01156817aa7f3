from __future__ import annotations

from typing import Any, Dict, List

import pytest

from core import CompletionUsage, TranscriptSegment, default_generation_profile, merge_generation_profile
from generation.builders import build_analysis
from generation.client import CompletionRequest, CompletionResult
from generation.refinement import REFINE_SYSTEM_PROMPT
from generation.requester import CompletionRequester
from generation.routing import CircuitBreaker, RoutingTable
from generation.sanitize import sanitize_analysis_payload
from generation.text import contains_ellipsis_artifact
from generation.windows import SCOUT_SYSTEM_PROMPT
from orchestrator import GenerationEngine, transcript_duration_sec
from storage.diagnostics import MemoryDiagnosticsSink
from utils.exceptions import LLMError


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
        TranscriptSegment(idx=i + 1, start_ms=i * 5000, end_ms=(i + 1) * 5000, text=_LINES[i % len(_LINES)])
        for i in range(count)
    ]


def _standard_profile():
    return merge_generation_profile(default_generation_profile(), {"quality": {"mode": "standard"}})


def _engine(client: Any = None, sink: MemoryDiagnosticsSink = None, reels_provider: str = "heuristic") -> GenerationEngine:
    routing = RoutingTable(configured=lambda provider: True)
    routing.set_route("reels", "generation", provider=reels_provider, model="gpt-5-mini")
    requester = CompletionRequester(routing, CircuitBreaker(lambda: 1_000_000.0), client)
    return GenerationEngine(requester, sink=sink)


class ReelsClient:
    """Scout is offline, rewrites come back off-schema, reels variants follow the script."""

    def __init__(self, variants: List[Dict[str, Any]]) -> None:
        self.variants = list(variants)
        self.requests: List[CompletionRequest] = []

    async def complete(self, request: CompletionRequest) -> CompletionResult:
        self.requests.append(request)
        if request.system_prompt == SCOUT_SYSTEM_PROMPT:
            raise LLMError("scout offline", provider=request.provider)
        if request.system_prompt == REFINE_SYSTEM_PROMPT:
            return CompletionResult(output={"unrelated": True})
        if "CONTRATO_JSON_REELS" in request.user_prompt and self.variants:
            return CompletionResult(
                output=self.variants.pop(0), usage=CompletionUsage(prompt_tokens=100, completion_tokens=40)
            )
        raise LLMError("unexpected request", provider=request.provider)


def _clip(caption: str) -> Dict[str, Any]:
    return {
        "startIdx": 20,
        "endIdx": 25,
        "title": "O erro que trava o seu faturamento",
        "caption": caption,
        "hashtags": ["#conteudo", "#funil", "#estrategia"],
        "whyItWorks": "Abre com dor concreta e fecha com um passo pratico para aplicar hoje.",
    }


@pytest.mark.asyncio
async def test_short_transcript_without_credentials_still_yields_clips() -> None:
    segments = [
        TranscriptSegment(idx=1, start_ms=0, end_ms=9000, text="Hoje vamos falar sobre como organizar o seu conteudo semanal"),
        TranscriptSegment(idx=2, start_ms=9000, end_ms=19000, text="O ponto principal e escolher um tema e manter a constancia"),
        TranscriptSegment(idx=3, start_ms=19000, end_ms=30000, text="Assim o publico entende o que esperar de voce toda semana"),
    ]
    engine = _engine()
    profile = _standard_profile()
    analysis = await engine.generate_analysis(segments, profile)

    reels = await engine.generate_reels(segments, analysis, profile=profile)

    assert len(reels["clips"]) >= 1
    for clip in reels["clips"]:
        assert clip["hashtags"]
        assert not contains_ellipsis_artifact(clip["caption"])
        assert not contains_ellipsis_artifact(clip["title"])


@pytest.mark.asyncio
async def test_run_all_heuristic_covers_every_channel() -> None:
    sink = MemoryDiagnosticsSink()
    engine = _engine(sink=sink)
    segments = _segments()

    run = await engine.run_all(segments, _standard_profile(), asset_id="asset-1")

    assert run.asset_id == "asset-1"
    assert run.duration_sec == transcript_duration_sec(segments) == 240
    assert list(run.outputs) == ["analysis", "reels", "newsletter", "linkedin", "x"]
    assert run.outputs["analysis"]["thesis"]
    assert run.outputs["reels"]["clips"]
    assert run.outputs["newsletter"]["sections"][-1]["type"] == "cta"
    assert "?" in run.outputs["linkedin"]["ctaQuestion"]
    assert all(len(post) <= 280 for post in run.outputs["x"]["standalone"] + run.outputs["x"]["thread"])

    entries = sink.entries("asset-1")
    assert len(entries) == 5
    for entry in entries:
        assert entry.used_heuristic_fallback
        assert entry.fallback_reason == "provider configured as heuristic"
        assert entry.successful_variants == 0
        assert 0 <= entry.quality_final <= 10


@pytest.mark.asyncio
async def test_run_all_task_filter_keeps_analysis_internal() -> None:
    sink = MemoryDiagnosticsSink()
    engine = _engine(sink=sink)

    run = await engine.run_all(_segments(), _standard_profile(), asset_id="asset-2", tasks=["linkedin"])

    assert list(run.outputs) == ["linkedin"]
    assert {entry.task.value for entry in sink.entries("asset-2")} == {"analysis", "linkedin"}


@pytest.mark.asyncio
async def test_run_all_generates_asset_id() -> None:
    run = await _engine().run_all(_segments(12), _standard_profile(), tasks=["x"])

    assert run.asset_id.startswith("srt_")
    assert list(run.outputs) == ["x"]


@pytest.mark.asyncio
async def test_truncated_variant_never_ships() -> None:
    client = ReelsClient(
        [
            {"clips": [_clip("Voce ainda publica sem uma tese clara por canal e...")]},
            {
                "clips": [
                    _clip(
                        "Publicar sem tese clara por canal derruba o resultado. Defina o metodo e a metrica "
                        "antes do post e compare a resposta qualificada por semana. Comente qual metrica voce usa."
                    )
                ]
            },
        ]
    )
    sink = MemoryDiagnosticsSink()
    engine = _engine(client, sink, reels_provider="openai")
    segments = _segments()
    profile = _standard_profile()
    analysis = sanitize_analysis_payload(build_analysis(segments, profile))

    reels = await engine.generate_reels(segments, analysis, profile=profile, asset_id="asset-3")

    assert reels["clips"]
    for clip in reels["clips"]:
        assert not contains_ellipsis_artifact(clip["caption"])

    assert client.requests[0].system_prompt == SCOUT_SYSTEM_PROMPT
    entry = sink.latest("asset-3", "reels")
    assert entry.provider == "openai"
    assert not entry.used_heuristic_fallback
    assert entry.requested_variants == 2
    assert entry.prompt_tokens == 200
