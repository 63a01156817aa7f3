from __future__ import annotations

import pytest
from pydantic import ValidationError

from core import (
    AITask,
    TaskScoreWeights,
    TranscriptSegment,
    default_generation_profile,
    merge_generation_profile,
    resolve_generation_profile,
    task_name,
)


def test_default_profile_task_knobs() -> None:
    profile = default_generation_profile()

    assert profile.task("x").length == "short"
    assert profile.task("x").cta_mode == "share"
    assert profile.task("newsletter").cta_mode == "lead"
    assert profile.task("reels").target_outcome == "followers"
    assert profile.memory("reels").kpi == "follows e compartilhamentos"
    assert profile.quality.mode == "max"


def test_merge_accepts_camel_and_snake_patches() -> None:
    base = default_generation_profile()

    camel = merge_generation_profile(base, {"tasks": {"linkedin": {"ctaMode": "dm"}}})
    snake = merge_generation_profile(base, {"tasks": {"linkedin": {"cta_mode": "dm"}}})

    assert camel.task("linkedin").cta_mode == "dm"
    assert snake == camel
    # untouched siblings survive the deep merge
    assert camel.task("linkedin").target_outcome == "comments"
    assert base.task("linkedin").cta_mode == "comment"


def test_invalid_patch_keeps_base() -> None:
    base = default_generation_profile()

    assert merge_generation_profile(base, {"quality": {"variationCount": 99}}) is base
    assert merge_generation_profile(base, {"tasks": {"x": {"length": "huge"}}}) is base
    assert merge_generation_profile(base, {"unknownKnob": 1}) is base
    assert merge_generation_profile(base, "not a dict") is base
    assert merge_generation_profile(base, {}) is base


def test_text_fields_are_cleaned() -> None:
    profile = resolve_generation_profile(
        {"audience": "  Donos   de agencia  ", "language": "", "voice": {"identity": "x" * 400}}
    )

    assert profile.audience == "Donos de agencia"
    assert profile.language == "pt-BR"
    assert len(profile.voice.identity) == 220


def test_score_weights_are_renormalized() -> None:
    weights = TaskScoreWeights(judge=0.6, heuristic=0.2)

    assert weights.judge == pytest.approx(0.75)
    assert weights.judge + weights.heuristic == pytest.approx(1.0)

    default = TaskScoreWeights()
    assert (default.judge, default.heuristic) == (0.72, 0.28)


def test_profile_is_frozen() -> None:
    profile = default_generation_profile()

    with pytest.raises(ValidationError):
        profile.tone = "outro"


def test_segment_bounds_are_validated() -> None:
    with pytest.raises(ValidationError):
        TranscriptSegment(idx=1, start_ms=500, end_ms=500, text="x")


def test_task_name_accepts_enum_and_string() -> None:
    assert task_name(AITask.LINKEDIN) == "linkedin"
    assert task_name("reels") == "reels"
