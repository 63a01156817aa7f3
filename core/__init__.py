"""Core contracts and shared types for the generation engine."""

from .contracts import (
    AI_TASKS,
    AIRoute,
    AITask,
    CompletionUsage,
    GenerationProfile,
    QualityEvaluation,
    QualitySubscores,
    TaskGenerationConfig,
    TaskGenerationDiagnostics,
    TaskScoreWeights,
    TranscriptSegment,
    VariantDiagnostics,
    default_generation_profile,
    merge_generation_profile,
    resolve_generation_profile,
    task_name,
)

__all__ = [
    "AI_TASKS",
    "AIRoute",
    "AITask",
    "CompletionUsage",
    "GenerationProfile",
    "QualityEvaluation",
    "QualitySubscores",
    "TaskGenerationConfig",
    "TaskGenerationDiagnostics",
    "TaskScoreWeights",
    "TranscriptSegment",
    "VariantDiagnostics",
    "default_generation_profile",
    "merge_generation_profile",
    "resolve_generation_profile",
    "task_name",
]
