"""Generation orchestration: the per-task engine and cross-channel helpers."""

from .cross_channel import (
    cross_channel_avoid_profile,
    dedupe_payload_cross_channel,
    extract_text_signals,
    filter_unique_by_cross_channel,
)
from .engine import GenerationEngine, GenerationRun, TASK_ORDER, transcript_duration_sec

__all__ = [
    "GenerationEngine",
    "GenerationRun",
    "TASK_ORDER",
    "cross_channel_avoid_profile",
    "dedupe_payload_cross_channel",
    "extract_text_signals",
    "filter_unique_by_cross_channel",
    "transcript_duration_sec",
]
