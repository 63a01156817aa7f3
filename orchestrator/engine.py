"""Generation engine: one pass per task from variants to the selected, validated payload."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import math
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence
from uuid import uuid4

from core import (
    AITask,
    GenerationProfile,
    TaskGenerationDiagnostics,
    TranscriptSegment,
    VariantDiagnostics,
    default_generation_profile,
    merge_generation_profile,
    task_name,
)
from generation.builders import build_analysis, build_linkedin, build_newsletter, build_reels, build_x_posts
from generation.client import CompletionClient, LLMCompletionClient
from generation.evidence import EvidenceMap, build_evidence_map, evidence_map_prompt_block
from generation.guardrails import blocking_issues, output_with_evidence, validate_payload
from generation.normalize import (
    NormalizedOutput,
    ReelsContext,
    normalize_analysis_output,
    normalize_linkedin_output,
    normalize_newsletter_output,
    normalize_reels_output,
    normalize_x_output,
    payload_fingerprint,
)
from generation.prompts import PromptCatalog, prompt_variables, with_prompt_controls
from generation.quality import publishability_threshold, quality_plan, quality_threshold
from generation.refinement import QualityRefiner, QualityRefineResult
from generation.requester import (
    CompletionRequester,
    RequestTrace,
    UsageMetrics,
    build_initial_variant_diagnostics,
    summarize_variant_trace,
)
from generation.routing import CircuitBreaker, RoutingTable
from generation.sanitize import (
    cta_variants,
    sanitize_analysis_payload,
    sanitize_linkedin_payload,
    sanitize_newsletter_payload,
    sanitize_reels_payload,
    sanitize_x_payload,
)
from generation.text import analysis_transcript_excerpt, meets_threshold, ms_to_timestamp, transcript_excerpt, truncate
from generation.windows import (
    ClipWindow,
    premium_windows,
    resolve_clip_count,
    resolve_duration_policy,
    select_clip_windows_by_ai,
)
from storage.diagnostics import BaseDiagnosticsSink, get_diagnostics_sink
from .cross_channel import cross_channel_avoid_profile, dedupe_payload_cross_channel


logger = logging.getLogger(__name__)

Payload = Dict[str, Any]
Normalizer = Callable[[Any, Optional[Mapping[str, Any]]], NormalizedOutput]

TASK_ORDER = [task.value for task in AITask]


@dataclass
class TaskPlan:
    """What one task run needs besides the shared machinery."""

    task: str
    fallback: Payload
    context: str
    extra: Dict[str, Any]
    normalize: Normalizer
    # calls made before the variant loop (the reels window scout) count toward the task
    usage: UsageMetrics = field(default_factory=UsageMetrics)


@dataclass
class GenerationRun:
    asset_id: str
    duration_sec: float
    outputs: Dict[str, Payload] = field(default_factory=dict)


def transcript_duration_sec(segments: Sequence[TranscriptSegment]) -> float:
    if not segments:
        return 0.0
    return float(math.ceil(max(segment.end_ms for segment in segments) / 1000))


def _context(*blocks: tuple) -> str:
    return "\n\n".join(f"{label}:\n{value}" for label, value in blocks)


def _evidence_json(evidence_map: EvidenceMap, max_lines: int = 40) -> str:
    dump = evidence_map.model_dump()
    return json.dumps(
        {"numbers": dump["numbers"][:80], "lines": dump["lines"][:max_lines]}, ensure_ascii=False
    )


def clips_context(segments: Sequence[TranscriptSegment], windows: Sequence[ClipWindow]) -> str:
    lines = []
    for index, window in enumerate(windows):
        lines.append(
            "; ".join(
                [
                    f"idx={index + 1}",
                    f"startIdx={segments[window.start_idx].idx}",
                    f"endIdx={segments[window.end_idx].idx}",
                    f"start={ms_to_timestamp(window.start_ms)}",
                    f"end={ms_to_timestamp(window.end_ms)}",
                    f"source_text={truncate(window.text, 280)}",
                ]
            )
        )
    return "\n".join(lines)


class GenerationEngine:
    """
    Runs the five content tasks over one transcript.

    Every task follows the same path: request variants, normalize and
    guard each reply, rank and refine the accepted candidates, record
    diagnostics and return the winner. Without credentials every task
    still returns its locally built payload.
    """

    def __init__(
        self,
        requester: CompletionRequester,
        *,
        catalog: Optional[PromptCatalog] = None,
        sink: Optional[BaseDiagnosticsSink] = None,
        refiner: Optional[QualityRefiner] = None,
        defaults: Optional[GenerationProfile] = None,
    ) -> None:
        self.requester = requester
        self.catalog = catalog or PromptCatalog()
        self.sink = sink
        self.refiner = refiner or QualityRefiner(requester)
        self.defaults = defaults or default_generation_profile()

    @classmethod
    def from_settings(
        cls,
        client: Optional[CompletionClient] = None,
        sink: Optional[BaseDiagnosticsSink] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> "GenerationEngine":
        from config import get_generation_settings

        settings = get_generation_settings()
        requester = CompletionRequester(
            RoutingTable.from_settings(), CircuitBreaker(clock), client or LLMCompletionClient()
        )
        defaults = merge_generation_profile(
            default_generation_profile(),
            {
                "quality": {
                    "mode": settings.quality_mode,
                    "variationCount": settings.variation_count,
                    "refinePasses": settings.refine_passes,
                }
            },
        )
        return cls(
            requester,
            sink=sink or get_diagnostics_sink(settings.diagnostics_path),
            defaults=defaults,
        )

    def _profile(self, profile: Optional[GenerationProfile]) -> GenerationProfile:
        return profile or self.defaults

    # -- shared task path --

    async def _run_task(
        self,
        plan: TaskPlan,
        segments: Sequence[TranscriptSegment],
        profile: GenerationProfile,
        evidence_map: EvidenceMap,
        asset_id: Optional[str],
    ) -> Payload:
        task = plan.task
        config = profile.task(task)
        settings = quality_plan(profile, task)
        is_max = profile.quality.mode == "max"
        threshold = quality_threshold(task, profile)
        publish_threshold = publishability_threshold(task, profile)
        refine_target = max(3, settings.refine_passes) if task == "analysis" and is_max else settings.refine_passes
        usage = plan.usage

        prompt = self.catalog.render(task, prompt_variables(profile, task, plan.extra))
        responses = await self.requester.request_variants(
            task,
            prompt["system_prompt"],
            with_prompt_controls(prompt["user_prompt"], profile, task, evidence_map),
            settings.variation_count,
            usage.add,
        )
        trace = summarize_variant_trace(responses)
        variants = build_initial_variant_diagnostics(responses)

        candidates: List[Payload] = []
        accepted: List[int] = []
        seen = set()
        for index, response in enumerate(responses):
            if response.output is None:
                continue
            row = variants[index]
            result = plan.normalize(response.output, None)
            if not result.accepted:
                row.status = "schema_failed"
                row.reason = result.reason
                continue

            payload = result.payload
            validation = validate_payload(task, payload, evidence_map, segments, config)
            row.normalization = result.normalization
            row.normalized_output = output_with_evidence(task, payload, evidence_map, segments, validation, config)
            blocking = blocking_issues(validation)
            fingerprint = payload_fingerprint(payload)
            if blocking:
                row.status = "schema_failed"
                row.reason = "quality_guard · " + " | ".join(blocking[:2])
                continue
            if fingerprint in seen:
                row.status = "schema_failed"
                row.reason = "duplicate_candidate"
                continue

            notes = []
            if not validation.ok:
                notes.append("quality_guard_soft · " + " | ".join(validation.issues[:2]))
            if result.note:
                notes.append(result.note)
            row.reason = " · ".join(notes) or None
            seen.add(fingerprint)
            candidates.append(payload)
            accepted.append(index + 1)

        if len(candidates) < len(responses):
            logger.info("Task '%s' kept %d of %d variants", task, len(candidates), len(responses))

        candidate = candidates[0] if candidates else plan.fallback
        if task == "reels" and not candidate.get("clips"):
            candidate = plan.fallback

        def parse_refined(output: Dict[str, Any]) -> Optional[Payload]:
            refined = plan.normalize(output, candidate)
            if not refined.accepted:
                return None
            check = validate_payload(task, refined.payload, evidence_map, segments, config)
            return None if blocking_issues(check) else refined.payload

        if not candidates:
            result = await self.refiner.fallback_result_with_judge(
                task, candidate, plan.context, use_panel=is_max, weights=config.score_weights,
                usage_recorder=usage.add,
            )
        else:
            result = await self.refiner.refine_if_low_quality(
                task,
                candidate,
                plan.context,
                parse_refined,
                additional_candidates=candidates[1:],
                max_refine_passes=refine_target,
                quality_threshold=threshold,
                publishability_threshold=publish_threshold,
                use_panel=is_max,
                weights=config.score_weights,
                usage_recorder=usage.add,
            )

        selected_variant = 0
        if candidates:
            for position, evaluation in enumerate(result.candidate_evaluations):
                if position >= len(accepted):
                    break
                row = variants[accepted[position] - 1]
                row.heuristic_score = round(evaluation.heuristic_score, 2)
                row.judge_score = round(evaluation.judge_score, 2)
                row.selected = evaluation.candidate_index == result.selected_candidate
            selected_variant = accepted[result.selected_candidate - 1]

        if asset_id:
            self._record(
                asset_id, task, prompt["name"], trace, result, threshold, publish_threshold,
                variants, len(responses), len(candidates), selected_variant, usage,
            )

        final = validate_payload(task, result.candidate, evidence_map, segments, config)
        if blocking_issues(final):
            logger.warning("Task '%s' final payload failed guardrails, using fallback", task)
            return plan.fallback
        return result.candidate

    def _record(
        self,
        asset_id: str,
        task: str,
        prompt_name: str,
        trace: RequestTrace,
        result: QualityRefineResult,
        threshold: float,
        publish_threshold: float,
        variants: List[VariantDiagnostics],
        requested: int,
        successful: int,
        selected_variant: int,
        usage: UsageMetrics,
    ) -> None:
        if self.sink is None:
            return
        meets_quality = meets_threshold(result.quality_score, threshold)
        meets_publish = meets_threshold(result.publishability_score, publish_threshold)
        entry = TaskGenerationDiagnostics(
            asset_id=asset_id,
            task=task,
            provider=trace.provider,
            model=trace.model,
            prompt_name=prompt_name,
            used_heuristic_fallback=trace.used_heuristic_fallback,
            fallback_reason=trace.fallback_reason,
            quality_initial=result.initial_eval.overall,
            quality_final=result.display_score,
            quality_score=result.quality_score,
            quality_threshold=threshold,
            publishability_score=result.publishability_score,
            publishability_threshold=publish_threshold,
            meets_quality_threshold=meets_quality,
            meets_publishability_threshold=meets_publish,
            ready_for_publish=meets_quality and meets_publish,
            quality_subscores_initial=result.initial_eval.subscores,
            quality_subscores_final=result.final_eval.subscores,
            judge_quality_score=result.judge_eval.overall,
            judge_subscores=result.judge_eval.subscores,
            judge_summary=result.judge_eval.summary,
            requested_variants=requested,
            successful_variants=successful,
            selected_variant=selected_variant,
            variants=variants,
            refinement_requested=result.refinement_requested,
            refinement_applied=result.refinement_applied,
            candidate_count=result.candidate_count,
            selected_candidate=result.selected_candidate,
            refine_passes_target=result.refine_passes_target,
            refine_passes_applied_count=result.refine_passes_applied_count,
            inflation_guard_applied=result.inflation_guard_applied,
            inflation_guard_reason=result.inflation_guard_reason,
            refinement_trace=[step.to_payload() for step in result.steps],
            **usage.to_fields(),
        )
        self.sink.record(entry)

    # -- tasks --

    async def generate_analysis(
        self,
        segments: Sequence[TranscriptSegment],
        profile: Optional[GenerationProfile] = None,
        asset_id: Optional[str] = None,
    ) -> Payload:
        profile = self._profile(profile)
        evidence_map = build_evidence_map(segments, 96 if profile.quality.mode == "max" else 72)
        fallback = sanitize_analysis_payload(build_analysis(segments, profile))
        variables = prompt_variables(profile, "analysis")
        plan = TaskPlan(
            task="analysis",
            fallback=fallback,
            context=_context(
                ("transcript", transcript_excerpt(segments, 90)),
                ("evidence_map", evidence_map_prompt_block(evidence_map, 26)),
                ("profile", json.dumps(variables, ensure_ascii=False, indent=2)),
            ),
            extra={
                "transcript_excerpt": analysis_transcript_excerpt(segments, profile.quality.mode),
                "evidence_map_json": _evidence_json(evidence_map),
                "evidence_map_excerpt": evidence_map_prompt_block(evidence_map, 20),
            },
            normalize=lambda raw, coerce: normalize_analysis_output(raw, coerce or fallback),
        )
        return await self._run_task(plan, segments, profile, evidence_map, asset_id)

    async def generate_reels(
        self,
        segments: Sequence[TranscriptSegment],
        analysis: Mapping[str, Any],
        duration_sec: Optional[float] = None,
        profile: Optional[GenerationProfile] = None,
        asset_id: Optional[str] = None,
    ) -> Payload:
        profile = self._profile(profile)
        duration = transcript_duration_sec(segments) if duration_sec is None else duration_sec
        evidence_map = build_evidence_map(segments, 96 if profile.quality.mode == "max" else 72)
        usage = UsageMetrics()
        reels = profile.tasks.reels

        clip_count = resolve_clip_count(duration, reels.length)
        policy = resolve_duration_policy(duration, reels.length, reels.target_outcome)
        windows = await select_clip_windows_by_ai(
            self.requester, segments, analysis, profile, clip_count, duration, usage.add
        )
        premium = premium_windows(windows, duration, clip_count)
        fallback = sanitize_reels_payload(build_reels(segments, analysis, duration, profile, premium))
        ctx = ReelsContext(
            segments=segments,
            windows=premium,
            fallback=fallback,
            analysis=analysis,
            profile=profile,
            duration_sec=duration,
            clip_count=clip_count,
            policy=policy,
            ctas=cta_variants(reels.cta_mode, profile.goal, reels.target_outcome),
        )
        analysis_json = json.dumps(analysis, ensure_ascii=False, indent=2)
        context_clips = clips_context(segments, premium)
        variables = prompt_variables(profile, "reels")
        plan = TaskPlan(
            task="reels",
            fallback=ctx.anchor(fallback),
            context=_context(
                ("analysis", analysis_json),
                ("clips", context_clips),
                ("evidence_map", evidence_map_prompt_block(evidence_map, 24)),
                ("transcript", transcript_excerpt(segments, 180)),
                ("profile", json.dumps(variables, ensure_ascii=False, indent=2)),
            ),
            extra={
                "transcript_excerpt": transcript_excerpt(segments, 180),
                "analysis_json": analysis_json,
                "duration_sec": str(duration),
                "clips_context": context_clips,
                "evidence_map_json": _evidence_json(evidence_map),
                "evidence_map_excerpt": evidence_map_prompt_block(evidence_map, 20),
            },
            normalize=lambda raw, coerce: normalize_reels_output(raw, ctx, coerce),
            usage=usage,
        )
        return await self._run_task(plan, segments, profile, evidence_map, asset_id)

    def _text_plan(
        self,
        task: str,
        segments: Sequence[TranscriptSegment],
        analysis: Mapping[str, Any],
        profile: GenerationProfile,
        evidence_map: EvidenceMap,
        fallback: Payload,
        transcript_segments: int,
        normalize: Normalizer,
    ) -> TaskPlan:
        analysis_json = json.dumps(analysis, ensure_ascii=False, indent=2)
        variables = prompt_variables(profile, task)
        return TaskPlan(
            task=task,
            fallback=fallback,
            context=_context(
                ("analysis", analysis_json),
                ("evidence_map", evidence_map_prompt_block(evidence_map, 24)),
                ("transcript", transcript_excerpt(segments, transcript_segments)),
                ("profile", json.dumps(variables, ensure_ascii=False, indent=2)),
            ),
            extra={
                "transcript_excerpt": transcript_excerpt(segments, transcript_segments),
                "analysis_json": analysis_json,
                "evidence_map_json": _evidence_json(evidence_map),
                "evidence_map_excerpt": evidence_map_prompt_block(evidence_map, 18),
            },
            normalize=normalize,
        )

    async def generate_newsletter(
        self,
        segments: Sequence[TranscriptSegment],
        analysis: Mapping[str, Any],
        profile: Optional[GenerationProfile] = None,
        asset_id: Optional[str] = None,
    ) -> Payload:
        profile = self._profile(profile)
        evidence_map = build_evidence_map(segments, 96 if profile.quality.mode == "max" else 72)
        fallback = sanitize_newsletter_payload(build_newsletter(segments, analysis, profile))
        plan = self._text_plan(
            "newsletter", segments, analysis, profile, evidence_map, fallback, 120,
            lambda raw, coerce: normalize_newsletter_output(raw, coerce or fallback),
        )
        return await self._run_task(plan, segments, profile, evidence_map, asset_id)

    async def generate_linkedin(
        self,
        segments: Sequence[TranscriptSegment],
        analysis: Mapping[str, Any],
        profile: Optional[GenerationProfile] = None,
        asset_id: Optional[str] = None,
    ) -> Payload:
        profile = self._profile(profile)
        evidence_map = build_evidence_map(segments, 96 if profile.quality.mode == "max" else 72)
        fallback = sanitize_linkedin_payload(build_linkedin(segments, analysis, profile))
        plan = self._text_plan(
            "linkedin", segments, analysis, profile, evidence_map, fallback, 110,
            lambda raw, coerce: normalize_linkedin_output(raw, coerce or fallback),
        )
        return await self._run_task(plan, segments, profile, evidence_map, asset_id)

    async def generate_x_posts(
        self,
        segments: Sequence[TranscriptSegment],
        analysis: Mapping[str, Any],
        profile: Optional[GenerationProfile] = None,
        asset_id: Optional[str] = None,
    ) -> Payload:
        profile = self._profile(profile)
        config = profile.tasks.x
        evidence_map = build_evidence_map(segments, 96 if profile.quality.mode == "max" else 72)
        fallback = sanitize_x_payload(build_x_posts(segments, analysis, profile), config.cta_mode, config.length)
        plan = self._text_plan(
            "x", segments, analysis, profile, evidence_map, fallback, 110,
            lambda raw, coerce: normalize_x_output(raw, coerce or fallback, config.cta_mode, config.length),
        )
        return await self._run_task(plan, segments, profile, evidence_map, asset_id)

    # -- whole transcript --

    async def run_all(
        self,
        segments: Sequence[TranscriptSegment],
        profile: Optional[GenerationProfile] = None,
        duration_sec: Optional[float] = None,
        asset_id: Optional[str] = None,
        tasks: Optional[Sequence[str]] = None,
    ) -> GenerationRun:
        """
        Chain the tasks in order. Analysis always runs since every other
        task reads it; later tasks are told what earlier channels said and
        their output is trimmed of lines that repeat it.
        """
        profile = self._profile(profile)
        wanted = {task_name(item) for item in tasks} if tasks else set(TASK_ORDER)
        run = GenerationRun(
            asset_id=asset_id or f"srt_{uuid4().hex[:10]}",
            duration_sec=transcript_duration_sec(segments) if duration_sec is None else duration_sec,
        )
        generated: Dict[str, Payload] = {}

        analysis = await self.generate_analysis(segments, profile, run.asset_id)
        generated["analysis"] = analysis
        logger.info("Asset %s: analysis ready", run.asset_id)

        for task in TASK_ORDER[1:]:
            if task not in wanted:
                continue
            task_profile = cross_channel_avoid_profile(task, profile, generated)
            if task == "reels":
                payload = await self.generate_reels(
                    segments, analysis, run.duration_sec, task_profile, run.asset_id
                )
            elif task == "newsletter":
                payload = await self.generate_newsletter(segments, analysis, task_profile, run.asset_id)
            elif task == "linkedin":
                payload = await self.generate_linkedin(segments, analysis, task_profile, run.asset_id)
            else:
                payload = await self.generate_x_posts(segments, analysis, task_profile, run.asset_id)
            generated[task] = dedupe_payload_cross_channel(task, payload, generated)
            logger.info("Asset %s: %s ready", run.asset_id, task)

        run.outputs = {task: payload for task, payload in generated.items() if task in wanted}
        return run
