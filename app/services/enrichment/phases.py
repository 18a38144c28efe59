"""The model-backed steps of an enrichment job."""

from __future__ import annotations

import logging
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from app.config.settings import settings
from app.services.ai.gateway import CallOptions, ModelGateway
from app.services.ai.schemas import (
    ComplexityAnalysis,
    ContributionAreas,
    ReadmeSummary,
    SuitabilityVerdict,
    TaskSuggestions,
    TechStackProfile,
)
from app.services.ai.structured import StructuredCallWrapper, structured_options
from app.services.ai.text_utils import ensure_string_list, safe_slice, sanitize_input, try_parse_json
from app.services.enrichment import prompts
from app.services.enrichment.errors import PhaseFailedError
from app.services.file_tree import FileTreeMetrics
from app.services.log_sanitizer import sanitize_log_extra

logger = logging.getLogger(__name__)

MAX_README_LENGTH = 5000
MAX_TOPICS = 20
MAX_ISSUE_SAMPLES = 20
MAX_TASK_ISSUE_SAMPLES = 10
MAX_CONTRIBUTING_LENGTH = 2000
MAX_SUITABILITY_README = 4000
LOW_FRIENDLINESS_BEGINNER_TASK_CAP = 2
LOW_FRIENDLINESS_THRESHOLD = 30

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def prepare_text(text: Optional[str], limit: int) -> str:
    return safe_slice(sanitize_input(text), limit)


def prepare_issue_samples(samples: Any, limit: int, *, with_labels: bool = True) -> list[dict[str, Any]]:
    prepared: list[dict[str, Any]] = []
    for sample in (samples or [])[:limit]:
        if not isinstance(sample, dict):
            continue
        title = sanitize_input(str(sample.get("title") or ""))
        if not title:
            continue
        item: dict[str, Any] = {"title": title}
        if with_labels:
            item["labels"] = ensure_string_list(sample.get("labels"))
        prepared.append(item)
    return prepared


def cap_beginner_tasks(tasks: TaskSuggestions, *, beginner_friendliness: int, level: str) -> TaskSuggestions:
    if beginner_friendliness < LOW_FRIENDLINESS_THRESHOLD and level == "advanced":
        return tasks.model_copy(
            update={"beginner_tasks": tasks.beginner_tasks[:LOW_FRIENDLINESS_BEGINNER_TASK_CAP]}
        )
    return tasks


class EnrichmentPhases:
    """One method per phase. Free-text phases parse and validate post hoc; structured ones use native schemas."""

    def __init__(self, gateway: ModelGateway, structured: StructuredCallWrapper) -> None:
        self._gateway = gateway
        self._structured = structured

    async def _text_phase(self, phase: str, prompt: str, schema: Type[SchemaT], *, max_tokens: int) -> SchemaT:
        text = await self._gateway.call(
            prompt,
            CallOptions(model=settings.GEMINI_MODEL, max_tokens=max_tokens, temperature=0.0),
            label=phase,
        )
        if not text:
            raise PhaseFailedError(phase, "empty model response")

        parsed = try_parse_json(text)
        if not isinstance(parsed, dict):
            raise PhaseFailedError(phase, "response was not a JSON object")
        try:
            return schema.model_validate(parsed)
        except ValidationError as exc:
            raise PhaseFailedError(phase, f"response failed validation ({exc.error_count()} errors)") from exc

    async def summarize_readme(self, readme: str, metadata: dict[str, Any]) -> ReadmeSummary:
        prompt = prompts.summary_prompt(readme=prepare_text(readme, MAX_README_LENGTH), metadata=metadata)
        return await self._text_phase("summary", prompt, ReadmeSummary, max_tokens=900)

    async def analyze_tech_stack(self, readme: str, *, language: Optional[str], topics: list[str]) -> TechStackProfile:
        prompt = prompts.tech_stack_prompt(
            readme=prepare_text(readme, MAX_README_LENGTH),
            languages=[language] if language else [],
            topics=ensure_string_list(topics)[:MAX_TOPICS],
        )
        return await self._text_phase("tech_stack", prompt, TechStackProfile, max_tokens=600)

    async def identify_contribution_areas(
        self,
        *,
        issue_counts: dict[str, Any],
        issue_samples: list[dict[str, Any]],
        topics: list[str],
        summary: ReadmeSummary,
        tech_stack: TechStackProfile,
        contributing: Optional[str],
    ) -> ContributionAreas:
        prompt = prompts.contribution_areas_prompt(
            issue_counts=issue_counts or {},
            issue_samples=prepare_issue_samples(issue_samples, MAX_ISSUE_SAMPLES),
            topics=ensure_string_list(topics)[:MAX_TOPICS],
            summary=summary.model_dump(),
            tech_stack=tech_stack.model_dump(),
            contributing=prepare_text(contributing, MAX_CONTRIBUTING_LENGTH),
        )
        return await self._text_phase("contribution_areas", prompt, ContributionAreas, max_tokens=600)

    async def analyze_complexity(
        self,
        *,
        readme: str,
        metrics: Optional[FileTreeMetrics],
        tree_paths: list[str],
        language: Optional[str],
        topics: list[str],
        contributing: Optional[str],
    ) -> Optional[ComplexityAnalysis]:
        """Best effort: None when the model cannot produce a valid analysis."""
        prompt = prompts.complexity_prompt(
            readme=prepare_text(readme, MAX_README_LENGTH),
            language=language or "unknown",
            topics=ensure_string_list(topics)[:MAX_TOPICS],
            metrics=metrics.to_dict() if metrics is not None else None,
            tree_paths=tree_paths,
            contributing=prepare_text(contributing, MAX_CONTRIBUTING_LENGTH),
        )
        return await self._structured.call(
            prompt,
            ComplexityAnalysis,
            structured_options(max_tokens=600, temperature=0.0),
            label="complexity_analysis",
        )

    async def suggest_tasks(
        self,
        *,
        summary: ReadmeSummary,
        tech_stack: TechStackProfile,
        areas: ContributionAreas,
        issue_samples: list[dict[str, Any]],
        scores: dict[str, Any],
    ) -> TaskSuggestions:
        prompt = prompts.tasks_prompt(
            summary=summary.model_dump(),
            tech_stack=tech_stack.model_dump(),
            areas=[area.model_dump() for area in areas.main_contrib_areas],
            issue_samples=prepare_issue_samples(issue_samples, MAX_TASK_ISSUE_SAMPLES, with_labels=False),
            scores=scores,
        )
        tasks = await self._structured.call(
            prompt,
            TaskSuggestions,
            structured_options(max_tokens=1500, temperature=0.0),
            label="task_suggestions",
        )
        if tasks is None:
            raise PhaseFailedError("task_suggestions", "no valid structured response")
        return cap_beginner_tasks(
            tasks,
            beginner_friendliness=int(scores.get("beginner_friendliness") or 0),
            level=str(scores.get("recommended_level") or ""),
        )

    async def check_suitability(
        self,
        *,
        readme: str,
        description: str,
        topics: list[str],
        tree_paths: list[str],
    ) -> SuitabilityVerdict:
        prompt = prompts.suitability_prompt(
            readme=prepare_text(readme, MAX_SUITABILITY_README),
            description=sanitize_input(description),
            topics=ensure_string_list(topics)[:MAX_TOPICS],
            tree_paths=tree_paths,
        )
        verdict = await self._structured.call(
            prompt,
            SuitabilityVerdict,
            structured_options(max_tokens=300, temperature=0.0),
            label="suitability",
        )
        if verdict is None:
            raise PhaseFailedError("suitability", "no valid structured response")
        logger.info(
            "Suitability evaluated",
            extra=sanitize_log_extra(suitable=verdict.is_suitable, confidence=verdict.confidence, reason=verdict.reason),
        )
        return verdict
