"""Canonical data contracts for the content generation engine."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
import re
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel


class AITask(str, Enum):
    """Artifact types produced from one transcript."""

    ANALYSIS = "analysis"
    REELS = "reels"
    NEWSLETTER = "newsletter"
    LINKEDIN = "linkedin"
    X = "x"


AI_TASKS: List[str] = [task.value for task in AITask]


def task_name(task: Any) -> str:
    if isinstance(task, AITask):
        return task.value
    return str(task or "").strip().lower()


RouteKind = Literal["generation", "judge"]
Strategy = Literal["balanced", "provocative", "educational", "contrarian", "framework", "storytelling"]
Focus = Literal[
    "balanced",
    "provocative",
    "educational",
    "authority",
    "conversion",
    "contrarian",
    "framework",
    "storytelling",
]
TargetOutcome = Literal["followers", "comments", "shares", "leads", "authority"]
AudienceLevel = Literal["cold", "warm", "hot"]
Length = Literal["short", "standard", "long"]
CtaMode = Literal["none", "comment", "share", "dm", "lead"]
QualityMode = Literal["standard", "max"]


def _clean_text(value: Any, max_chars: int) -> str:
    text = str(value or "")
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()[:max_chars]


class _ProfileModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )


class TranscriptSegment(BaseModel):
    """One timed subtitle unit; immutable once parsed."""

    model_config = ConfigDict(frozen=True)

    idx: int
    start_ms: int
    end_ms: int
    text: str
    tokens_est: int = 0

    @model_validator(mode="after")
    def _ordered_bounds(self) -> "TranscriptSegment":
        if self.end_ms <= self.start_ms:
            raise ValueError("end_ms must be greater than start_ms")
        return self


class TaskScoreWeights(_ProfileModel):
    """Composite blend weights; always renormalized to sum to 1."""

    judge: float = 0.72
    heuristic: float = 0.28

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        raw = dict(value)
        judge = raw.get("judge", 0.72)
        heuristic = raw.get("heuristic", 0.28)
        if not isinstance(judge, (int, float)) or not isinstance(heuristic, (int, float)):
            return raw
        judge = max(0.1, min(0.95, float(judge)))
        heuristic = max(0.05, min(0.9, float(heuristic)))
        total = judge + heuristic
        raw["judge"] = round(judge / total, 3)
        raw["heuristic"] = round(heuristic / total, 3)
        return raw


class TaskGenerationConfig(_ProfileModel):
    strategy: Strategy = "balanced"
    focus: Focus = "balanced"
    target_outcome: TargetOutcome = "authority"
    audience_level: AudienceLevel = "warm"
    length: Length = "standard"
    cta_mode: CtaMode = "none"
    score_weights: TaskScoreWeights = Field(default_factory=TaskScoreWeights)


class QualityConfig(_ProfileModel):
    mode: QualityMode = "max"
    variation_count: int = Field(default=4, ge=1, le=8)
    refine_passes: int = Field(default=2, ge=1, le=3)


class VoiceConfig(_ProfileModel):
    identity: str = "Estrategista direto, pratico, sem autoajuda"
    writing_rules: str = "Frases curtas, especificidade, linguagem concreta, sem jargao vazio e sem travessao."
    banned_terms: str = "incrivel, revolucionario, sem esforco, segredo absoluto"
    signature_phrases: str = "na pratica, proximo passo, decisao editorial"

    @field_validator("identity", mode="before")
    @classmethod
    def _identity(cls, value: Any) -> str:
        return _clean_text(value, 220)

    @field_validator("writing_rules", mode="before")
    @classmethod
    def _rules(cls, value: Any) -> str:
        return _clean_text(value, 800)

    @field_validator("banned_terms", "signature_phrases", mode="before")
    @classmethod
    def _lists(cls, value: Any) -> str:
        return _clean_text(value, 600)


class TaskPerformanceMemory(_ProfileModel):
    wins: str = ""
    avoid: str = ""
    kpi: str = ""

    @field_validator("wins", "avoid", mode="before")
    @classmethod
    def _notes(cls, value: Any) -> str:
        return _clean_text(value, 500)

    @field_validator("kpi", mode="before")
    @classmethod
    def _kpi(cls, value: Any) -> str:
        return _clean_text(value, 180)


class PerformanceMemory(_ProfileModel):
    analysis: TaskPerformanceMemory = TaskPerformanceMemory(kpi="clareza e densidade de insight")
    reels: TaskPerformanceMemory = TaskPerformanceMemory(kpi="follows e compartilhamentos")
    newsletter: TaskPerformanceMemory = TaskPerformanceMemory(kpi="tempo de leitura e respostas")
    linkedin: TaskPerformanceMemory = TaskPerformanceMemory(kpi="comentarios qualificados e reposts")
    x: TaskPerformanceMemory = TaskPerformanceMemory(kpi="shares e replies qualificados")


class TaskConfigs(_ProfileModel):
    analysis: TaskGenerationConfig = TaskGenerationConfig(
        strategy="balanced",
        focus="authority",
        target_outcome="authority",
        audience_level="cold",
        length="standard",
        cta_mode="none",
        score_weights=TaskScoreWeights(judge=0.72, heuristic=0.28),
    )
    reels: TaskGenerationConfig = TaskGenerationConfig(
        strategy="provocative",
        focus="provocative",
        target_outcome="followers",
        audience_level="warm",
        length="standard",
        cta_mode="comment",
        score_weights=TaskScoreWeights(judge=0.76, heuristic=0.24),
    )
    newsletter: TaskGenerationConfig = TaskGenerationConfig(
        strategy="educational",
        focus="authority",
        target_outcome="authority",
        audience_level="warm",
        length="long",
        cta_mode="lead",
        score_weights=TaskScoreWeights(judge=0.74, heuristic=0.26),
    )
    linkedin: TaskGenerationConfig = TaskGenerationConfig(
        strategy="contrarian",
        focus="authority",
        target_outcome="comments",
        audience_level="warm",
        length="standard",
        cta_mode="comment",
        score_weights=TaskScoreWeights(judge=0.72, heuristic=0.28),
    )
    x: TaskGenerationConfig = TaskGenerationConfig(
        strategy="provocative",
        focus="provocative",
        target_outcome="shares",
        audience_level="cold",
        length="short",
        cta_mode="share",
        score_weights=TaskScoreWeights(judge=0.73, heuristic=0.27),
    )


class GenerationProfile(_ProfileModel):
    """Audience, tone and per-task knobs. Frozen: use `merge_generation_profile` to derive a new one."""

    audience: str = "Empreendedores e criadores digitais B2B"
    goal: str = "Gerar autoridade com aplicacao pratica e ampliar distribuicao multicanal"
    tone: str = "Direto, estrategico e didatico"
    language: str = "pt-BR"
    quality: QualityConfig = Field(default_factory=QualityConfig)
    voice: VoiceConfig = Field(default_factory=VoiceConfig)
    performance_memory: PerformanceMemory = Field(default_factory=PerformanceMemory)
    tasks: TaskConfigs = Field(default_factory=TaskConfigs)

    @field_validator("audience", mode="before")
    @classmethod
    def _audience(cls, value: Any) -> str:
        return _clean_text(value, 220)

    @field_validator("goal", mode="before")
    @classmethod
    def _goal(cls, value: Any) -> str:
        return _clean_text(value, 240)

    @field_validator("tone", mode="before")
    @classmethod
    def _tone(cls, value: Any) -> str:
        return _clean_text(value, 180)

    @field_validator("language", mode="before")
    @classmethod
    def _language(cls, value: Any) -> str:
        return _clean_text(value, 24) or "pt-BR"

    def task(self, task: str) -> TaskGenerationConfig:
        return getattr(self.tasks, task_name(task))

    def memory(self, task: str) -> TaskPerformanceMemory:
        return getattr(self.performance_memory, task_name(task))


def default_generation_profile() -> GenerationProfile:
    return GenerationProfile()


def _deep_merge(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def merge_generation_profile(base: GenerationProfile, patch: Any) -> GenerationProfile:
    """Apply a (camelCase or snake_case) patch; an invalid patch leaves the base untouched."""
    if not isinstance(patch, dict) or not patch:
        return base
    try:
        merged = _deep_merge(base.model_dump(by_alias=True), _camelize_keys(patch))
        return GenerationProfile.model_validate(merged)
    except ValidationError:
        return base


def _camelize_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            (to_camel(str(key)) if "_" in str(key) else str(key)): _camelize_keys(item)
            for key, item in value.items()
        }
    return value


def resolve_generation_profile(raw: Any) -> GenerationProfile:
    return merge_generation_profile(default_generation_profile(), raw)


class QualitySubscores(BaseModel):
    """Five-axis quality breakdown, each in [0, 10]."""

    model_config = ConfigDict(frozen=True)

    clarity: float = 0.0
    depth: float = 0.0
    originality: float = 0.0
    applicability: float = 0.0
    retention_potential: float = 0.0

    def values(self) -> List[float]:
        return [self.clarity, self.depth, self.originality, self.applicability, self.retention_potential]

    def minimum(self) -> float:
        return min(self.values())

    def to_payload(self) -> Dict[str, float]:
        return {
            "clarity": self.clarity,
            "depth": self.depth,
            "originality": self.originality,
            "applicability": self.applicability,
            "retentionPotential": self.retention_potential,
        }


class QualityEvaluation(BaseModel):
    """Heuristic or judge verdict; combining two evaluations always builds a new one."""

    model_config = ConfigDict(frozen=True)

    overall: float
    subscores: QualitySubscores
    summary: str = ""
    weaknesses: List[str] = Field(default_factory=list)


class AIRoute(BaseModel):
    provider: str = "heuristic"
    model: str = "heuristic-v1"
    temperature: float = 0.3

    @field_validator("provider", mode="before")
    @classmethod
    def _provider(cls, value: Any) -> str:
        return str(value or "heuristic").strip().lower() or "heuristic"

    @field_validator("temperature", mode="before")
    @classmethod
    def _temperature(cls, value: Any) -> float:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return 0.3
        return max(0.0, min(1.5, number))


class CompletionUsage(BaseModel):
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    estimated_cost_usd: Optional[float] = None
    actual_cost_usd: Optional[float] = None


class VariantDiagnostics(BaseModel):
    """Per-variant audit row."""

    variant: int
    status: Literal["ok", "request_failed", "schema_failed"]
    reason: Optional[str] = None
    heuristic_score: Optional[float] = None
    judge_score: Optional[float] = None
    selected: bool = False
    normalization: Optional[str] = None
    model_output: Optional[Dict[str, Any]] = None
    normalized_output: Optional[Dict[str, Any]] = None
    estimated_cost_usd: Optional[float] = None
    actual_cost_usd: Optional[float] = None
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None


class TaskGenerationDiagnostics(BaseModel):
    """Audit record written once per task run."""

    asset_id: str
    task: AITask
    provider: str
    model: str
    prompt_name: str
    used_heuristic_fallback: bool
    fallback_reason: Optional[str] = None
    quality_initial: float
    quality_final: float
    quality_score: float
    quality_threshold: float
    publishability_score: float
    publishability_threshold: float
    meets_quality_threshold: bool
    meets_publishability_threshold: bool
    ready_for_publish: bool
    quality_subscores_initial: QualitySubscores
    quality_subscores_final: QualitySubscores
    judge_quality_score: float
    judge_subscores: QualitySubscores
    judge_summary: str = ""
    requested_variants: int = 0
    successful_variants: int = 0
    selected_variant: int = 0
    variants: List[VariantDiagnostics] = Field(default_factory=list)
    refinement_requested: bool = False
    refinement_applied: bool = False
    candidate_count: int = 0
    selected_candidate: int = 0
    refine_passes_target: int = 0
    refine_passes_applied_count: int = 0
    inflation_guard_applied: bool = False
    inflation_guard_reason: Optional[str] = None
    refinement_trace: List[Dict[str, Any]] = Field(default_factory=list)
    estimated_cost_usd: Optional[float] = None
    actual_cost_usd: Optional[float] = None
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
