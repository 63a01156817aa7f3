"""Strict output schemas for model replies (camelCase on the wire)."""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


Score = Annotated[float, Field(ge=0, le=10)]


def _text(min_length: int, max_length: int) -> Any:
    return Field(min_length=min_length, max_length=max_length)


class AnalysisStructure(_Schema):
    problem: str = _text(8, 3000)
    tension: str = _text(8, 3000)
    insight: str = _text(8, 3000)
    application: str = _text(8, 3000)


class RetentionMoment(_Schema):
    text: str = _text(8, 2400)
    type: str = _text(3, 120)
    why_it_grabs: str = _text(8, 2400)


class EditorialAngle(_Schema):
    angle: str = _text(8, 2000)
    ideal_channel: str = _text(2, 180)
    format: str = _text(2, 260)
    why_stronger: str = _text(8, 2400)


class WeakSpot(_Schema):
    issue: str = _text(5, 2000)
    why: str = _text(8, 2400)


class AnalysisQualityScores(_Schema):
    insight_density: Score
    standalone_clarity: Score
    polarity: Score
    practical_value: Score


class AnalysisSchema(_Schema):
    thesis: str = _text(20, 1600)
    topics: List[Annotated[str, Field(min_length=3, max_length=1600)]] = Field(min_length=1, max_length=12)
    content_type: Literal["educational", "provocative", "story", "framework"]
    polarity_score: Score
    recommendations: List[Annotated[str, Field(min_length=10, max_length=3000)]] = Field(
        min_length=2, max_length=10
    )
    structure: Optional[AnalysisStructure] = None
    retention_moments: Optional[List[RetentionMoment]] = Field(default=None, max_length=16)
    editorial_angles: Optional[List[EditorialAngle]] = Field(default=None, max_length=16)
    weak_spots: Optional[List[WeakSpot]] = Field(default=None, max_length=16)
    quality_scores: Optional[AnalysisQualityScores] = None


class IntroSection(_Schema):
    type: Literal["intro"]
    text: str = _text(10, 5000)


class InsightSection(_Schema):
    type: Literal["insight"]
    title: str = _text(3, 300)
    text: str = _text(10, 5000)


class ApplicationSection(_Schema):
    type: Literal["application"]
    bullets: List[Annotated[str, Field(min_length=3, max_length=2400)]] = Field(min_length=2, max_length=16)


class CtaSection(_Schema):
    type: Literal["cta"]
    text: str = _text(10, 2400)


NewsletterSection = Annotated[
    Union[IntroSection, InsightSection, ApplicationSection, CtaSection],
    Field(discriminator="type"),
]


class NewsletterSchema(_Schema):
    headline: str = _text(8, 300)
    subheadline: str = _text(8, 2400)
    sections: List[NewsletterSection] = Field(min_length=3, max_length=16)


class LinkedinSchema(_Schema):
    hook: str = _text(8, 2200)
    body: List[Annotated[str, Field(min_length=8, max_length=3200)]] = Field(min_length=2, max_length=20)
    cta_question: str = _text(8, 2000)


class XNotes(_Schema):
    style: str = _text(3, 300)


XPost = Annotated[str, Field(min_length=8, max_length=280)]


class XSchema(_Schema):
    standalone: List[XPost] = Field(min_length=2, max_length=12)
    thread: List[XPost] = Field(min_length=2, max_length=16)
    notes: XNotes


class ClipScores(_Schema):
    hook: Score
    clarity: Score
    retention: Score
    share: Score


Hashtag = Annotated[str, Field(min_length=2, max_length=40)]


class ReelsAIClip(_Schema):
    start_idx: int = Field(ge=1)
    end_idx: int = Field(ge=1)
    title: str = _text(6, 220)
    caption: str = _text(40, 5000)
    hashtags: List[Hashtag] = Field(min_length=1, max_length=12)
    why_it_works: str = _text(8, 2400)
    scores: Optional[ClipScores] = None


class ReelsAISchema(_Schema):
    """Index-based clip proposals with copy, as the reels prompt requests them."""

    clips: List[ReelsAIClip] = Field(min_length=1, max_length=5)


class ReelsScoutClip(_Schema):
    start_idx: int = Field(ge=1)
    end_idx: int = Field(ge=1)
    angle: Optional[str] = Field(default=None, min_length=3, max_length=40)
    rationale: Optional[str] = Field(default=None, min_length=8, max_length=220)


class ReelsScoutSchema(_Schema):
    clips: List[ReelsScoutClip] = Field(min_length=1, max_length=5)


class ReelsOverlayClip(_Schema):
    idx: int = Field(ge=1, le=5)
    title: str = _text(6, 220)
    caption: str = _text(40, 5000)
    hashtags: List[Hashtag] = Field(min_length=1, max_length=12)
    why_it_works: str = _text(8, 2400)


class ReelsOverlaySchema(_Schema):
    """Copy for already-selected windows, keyed by 1-based window position."""

    clips: List[ReelsOverlayClip] = Field(min_length=1, max_length=5)


class ReelsFinalClip(_Schema):
    title: str = _text(6, 220)
    start: str = _text(8, 24)
    end: str = _text(8, 24)
    caption: str = _text(40, 5000)
    hashtags: List[Hashtag] = Field(min_length=1, max_length=12)
    scores: ClipScores
    why_it_works: str = _text(8, 2400)


class ReelsFinalSchema(_Schema):
    """Timestamp-anchored clip set: the stored reels payload shape."""

    clips: List[ReelsFinalClip] = Field(min_length=1, max_length=5)


class JudgeSubscores(_Schema):
    clarity: Score
    depth: Score
    originality: Score
    applicability: Score
    retention_potential: Score


class QualityJudgeSchema(_Schema):
    quality_score: Score
    subscores: JudgeSubscores
    summary: str = _text(8, 260)
    weaknesses: Optional[List[Annotated[str, Field(min_length=4, max_length=140)]]] = Field(
        default=None, max_length=6
    )


TASK_SCHEMAS: Dict[str, Type[_Schema]] = {
    "analysis": AnalysisSchema,
    "reels": ReelsFinalSchema,
    "newsletter": NewsletterSchema,
    "linkedin": LinkedinSchema,
    "x": XSchema,
}


def issue_summary(error: ValidationError, max_issues: int = 3) -> str:
    """`path: message` for the first few validation errors, joined with ` | `."""
    parts = []
    for issue in error.errors()[:max_issues]:
        path = ".".join(str(part) for part in issue.get("loc", ())) or "root"
        parts.append(f"{path}: {issue.get('msg', 'invalid')}")
    return " | ".join(parts)
