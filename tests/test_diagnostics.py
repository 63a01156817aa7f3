from __future__ import annotations

from core import AITask, QualitySubscores, TaskGenerationDiagnostics
from storage.diagnostics import JsonlDiagnosticsSink, MemoryDiagnosticsSink, get_diagnostics_sink


def _entry(asset_id: str, task: AITask, score: float = 7.5) -> TaskGenerationDiagnostics:
    subscores = QualitySubscores(clarity=7, depth=7, originality=6, applicability=8, retention_potential=7)
    return TaskGenerationDiagnostics(
        asset_id=asset_id,
        task=task,
        provider="heuristic",
        model="heuristic-v1",
        prompt_name="linkedin-pro-v6",
        used_heuristic_fallback=True,
        fallback_reason="provider_not_configured",
        quality_initial=score,
        quality_final=score,
        quality_score=score,
        quality_threshold=8.4,
        publishability_score=score,
        publishability_threshold=7.6,
        meets_quality_threshold=False,
        meets_publishability_threshold=False,
        ready_for_publish=False,
        quality_subscores_initial=subscores,
        quality_subscores_final=subscores,
        judge_quality_score=score,
        judge_subscores=subscores,
    )


def test_memory_sink_keeps_latest_per_task() -> None:
    sink = MemoryDiagnosticsSink()

    sink.record(_entry("a1", AITask.LINKEDIN, 6.0))
    sink.record(_entry("a1", AITask.X, 7.0))
    sink.record(_entry("a1", AITask.LINKEDIN, 8.0))
    sink.record(_entry("a2", AITask.LINKEDIN, 5.0))

    assert len(sink.entries()) == 3
    assert [entry.task for entry in sink.entries("a1")] == [AITask.X, AITask.LINKEDIN]
    assert sink.latest("a1", "linkedin").quality_score == 8.0
    assert sink.latest("a1", "reels") is None

    sink.clear()
    assert sink.entries() == []


def test_jsonl_sink_appends_and_reads_back(tmp_path) -> None:
    sink = JsonlDiagnosticsSink(str(tmp_path / "nested" / "diagnostics.jsonl"))

    sink.record(_entry("a1", AITask.REELS, 6.5))
    sink.record(_entry("a1", AITask.REELS, 7.25))
    sink.record(_entry("a2", AITask.X))

    lines = sink.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 3
    assert len(sink.entries("a1")) == 2
    assert sink.latest("a1", AITask.REELS).quality_score == 7.25
    assert sink.entries("a1")[0].judge_subscores.applicability == 8


def test_jsonl_sink_skips_unreadable_lines(tmp_path) -> None:
    path = tmp_path / "diagnostics.jsonl"
    sink = JsonlDiagnosticsSink(str(path))
    sink.record(_entry("a1", AITask.ANALYSIS))
    with open(path, "a", encoding="utf-8") as f:
        f.write("{broken\n\n")

    assert len(sink.entries()) == 1


def test_missing_file_reads_empty(tmp_path) -> None:
    assert JsonlDiagnosticsSink(str(tmp_path / "none.jsonl")).entries() == []


def test_factory(tmp_path) -> None:
    assert isinstance(get_diagnostics_sink(), MemoryDiagnosticsSink)
    assert isinstance(get_diagnostics_sink(str(tmp_path / "d.jsonl")), JsonlDiagnosticsSink)
