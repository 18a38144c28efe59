"""Single-repository enrichment: fetch, five model phases, scoring, one atomic persist."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
import logging
from typing import Any, Awaitable, Callable, Optional

from app.config.settings import settings
from app.crawlers.github.community_files import CommunityFiles, CommunityFilesFetcher
from app.services.ai.schemas import (
    ComplexityAnalysis,
    ContributionAreas,
    ReadmeSummary,
    TaskSuggestions,
    TechStackProfile,
)
from app.services.enrichment.errors import MissingReadmeError, ValidationGateError
from app.services.enrichment.phases import EnrichmentPhases
from app.services.enrichment.records import HEAVY_RAW_FIELDS, STATUS_ACTIVE, STATUS_REJECTED, RepositoryRecord
from app.services.enrichment.store import RecordStore
from app.services.file_tree import FileTreeMetrics, analyze_file_tree, file_tree_paths
from app.services.log_sanitizer import sanitize_for_log, sanitize_log_extra
from app.services.scoring.types import ScoreResult, ScoringSignals
from app.services.scoring.unified import UnifiedScorer

logger = logging.getLogger(__name__)

MIN_SUMMARY_LENGTH = 10
MAX_ERROR_LENGTH = 1000


class JobState(str, Enum):
    FETCHING = "fetching"
    SUITABILITY = "suitability"
    SUMMARY = "summary"
    TECH_STACK = "tech_stack"
    CONTRIBUTION_AREAS = "contribution_areas"
    VALIDATE = "validate"
    COMPLEXITY_ANALYSIS = "complexity_analysis"
    SCORING = "scoring"
    TASK_SUGGESTIONS = "task_suggestions"
    PERSIST_SUCCESS = "persist_success"
    PERSIST_FAILURE = "persist_failure"
    REJECTED = "rejected"


@dataclass(slots=True)
class JobOutcome:
    repo_id: str
    identifier: str
    status: str
    state: JobState
    error: Optional[str] = None
    scores: Optional[ScoreResult] = None

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


def passes_validation_gate(summary: ReadmeSummary, tech_stack: TechStackProfile) -> bool:
    return (
        len(summary.summary.strip()) > MIN_SUMMARY_LENGTH
        or bool(tech_stack.tech_stack)
        or bool(tech_stack.required_skills)
    )


def build_metadata(record: RepositoryRecord) -> dict[str, Any]:
    return {
        "stars": record.stars,
        "forks": record.forks,
        "contributors": record.contributors,
        "topics": record.topics,
        "language": record.language,
        "issue_counts": record.issue_data,
        "activity": record.activity,
    }


def build_scoring_signals(
    record: RepositoryRecord,
    *,
    files: CommunityFiles,
    readme: str,
    metrics: Optional[FileTreeMetrics],
    analysis: Optional[ComplexityAnalysis],
    tech_stack: TechStackProfile,
) -> ScoringSignals:
    return ScoringSignals(
        repo_name=record.identifier,
        description=record.description,
        language=record.language,
        topics=record.topics,
        stars=record.stars,
        forks=record.forks,
        contributors=record.contributors,
        readme=readme,
        contributing=files.contributing or record.contributing_raw,
        has_code_of_conduct=bool(files.code_of_conduct or record.code_of_conduct_raw),
        has_issue_templates=files.has_issue_templates,
        issue_data=record.issue_data,
        pr_merge_ratio=record.activity_value("pr_merge_ratio"),
        avg_pr_merge_hours=record.activity_value("avg_pr_merge_hours"),
        avg_issue_response_hours=record.activity_value("avg_issue_response_hours"),
        maintainer_activity_score=record.activity_value("maintainer_activity_score"),
        file_tree=metrics,
        analysis=analysis,
        tech_stack=tech_stack.tech_stack,
    )


class EnrichmentJob:
    """Runs the enrichment state machine for one record at a time.

    Any exception between FETCHING and PERSIST_SUCCESS routes to
    PERSIST_FAILURE, which only increments the attempt counter and records
    the error. Result fields are written together or not at all.
    """

    def __init__(
        self,
        *,
        store: RecordStore,
        fetcher: CommunityFilesFetcher,
        phases: EnrichmentPhases,
        scorer: UnifiedScorer,
        enable_ai_analysis: Optional[bool] = None,
        enable_suitability_check: Optional[bool] = None,
        phase_delay_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        now: Callable[[], datetime] = datetime.utcnow,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._phases = phases
        self._scorer = scorer
        self._enable_ai_analysis = settings.ENABLE_AI_ANALYSIS if enable_ai_analysis is None else enable_ai_analysis
        self._enable_suitability_check = (
            settings.ENABLE_SUITABILITY_CHECK if enable_suitability_check is None else enable_suitability_check
        )
        self._phase_delay = settings.AI_PHASE_DELAY_SECONDS if phase_delay_seconds is None else phase_delay_seconds
        self._sleep = sleep
        self._now = now

    async def run(self, record: RepositoryRecord) -> JobOutcome:
        state = JobState.FETCHING
        try:
            logger.info(
                "Enrichment job started",
                extra=sanitize_log_extra(repo=record.identifier, attempts=record.summarization_attempts),
            )
            files = await self._fetcher.fetch_community_files(record.identifier)
            readme = files.readme or record.readme_raw
            if not readme or not readme.strip():
                raise MissingReadmeError(record.identifier)

            metrics = analyze_file_tree(files.file_tree) if files.file_tree else None
            tree_paths = file_tree_paths(files.file_tree)

            if self._enable_suitability_check:
                state = JobState.SUITABILITY
                verdict = await self._phases.check_suitability(
                    readme=readme,
                    description=record.description,
                    topics=record.topics,
                    tree_paths=tree_paths,
                )
                if not verdict.is_suitable:
                    return self._persist_rejection(record, verdict.reason)
                await self._pause()

            metadata = build_metadata(record)

            state = JobState.SUMMARY
            summary = await self._phases.summarize_readme(readme, metadata)
            await self._pause()

            state = JobState.TECH_STACK
            tech_stack = await self._phases.analyze_tech_stack(readme, language=record.language, topics=record.topics)
            await self._pause()

            state = JobState.CONTRIBUTION_AREAS
            areas = await self._phases.identify_contribution_areas(
                issue_counts=record.issue_data,
                issue_samples=record.issue_samples,
                topics=record.topics,
                summary=summary,
                tech_stack=tech_stack,
                contributing=files.contributing or record.contributing_raw,
            )

            state = JobState.VALIDATE
            if not passes_validation_gate(summary, tech_stack):
                raise ValidationGateError()

            analysis: Optional[ComplexityAnalysis] = None
            if self._enable_ai_analysis:
                state = JobState.COMPLEXITY_ANALYSIS
                await self._pause()
                analysis = await self._phases.analyze_complexity(
                    readme=readme,
                    metrics=metrics,
                    tree_paths=tree_paths,
                    language=record.language,
                    topics=record.topics,
                    contributing=files.contributing or record.contributing_raw,
                )
                if analysis is None:
                    logger.warning(
                        "Complexity analysis unavailable, scoring without it",
                        extra=sanitize_log_extra(repo=record.identifier),
                    )

            state = JobState.SCORING
            scores = await self._scorer.score(
                build_scoring_signals(
                    record,
                    files=files,
                    readme=readme,
                    metrics=metrics,
                    analysis=analysis,
                    tech_stack=tech_stack,
                )
            )
            await self._pause()

            state = JobState.TASK_SUGGESTIONS
            tasks = await self._phases.suggest_tasks(
                summary=summary,
                tech_stack=tech_stack,
                areas=areas,
                issue_samples=record.issue_samples,
                scores={
                    "beginner_friendliness": scores.beginner_friendliness,
                    "technical_complexity": scores.technical_complexity,
                    "contribution_readiness": scores.contribution_readiness,
                    "recommended_level": scores.recommended_level,
                },
            )

            state = JobState.PERSIST_SUCCESS
            self._persist_success(record, files, metrics, summary, tech_stack, areas, tasks, scores)
            logger.info(
                "Enrichment job succeeded",
                extra=sanitize_log_extra(
                    repo=record.identifier,
                    overall_score=scores.overall_score,
                    level=scores.recommended_level,
                    scoring_method=scores.scoring_method,
                ),
            )
            return JobOutcome(
                repo_id=record.repo_id,
                identifier=record.identifier,
                status="success",
                state=JobState.PERSIST_SUCCESS,
                scores=scores,
            )
        except Exception as exc:
            return self._persist_failure(record, state, exc)

    async def _pause(self) -> None:
        if self._phase_delay > 0:
            await self._sleep(self._phase_delay)

    def _persist_success(
        self,
        record: RepositoryRecord,
        files: CommunityFiles,
        metrics: Optional[FileTreeMetrics],
        summary: ReadmeSummary,
        tech_stack: TechStackProfile,
        areas: ContributionAreas,
        tasks: TaskSuggestions,
        scores: ScoreResult,
    ) -> None:
        completed_at = self._now()
        community_health = files.community_health
        community_health["has_readme"] = True
        set_fields: dict[str, Any] = {
            "summary": summary.summary,
            "categories": summary.repo_categories,
            "tech_stack": tech_stack.tech_stack,
            "required_skills": tech_stack.required_skills,
            "main_contrib_areas": [area.model_dump() for area in areas.main_contrib_areas],
            "beginner_tasks": [task.model_dump() for task in tasks.beginner_tasks],
            "intermediate_tasks": [task.model_dump() for task in tasks.intermediate_tasks],
            **scores.as_record_fields(),
            "status": STATUS_ACTIVE,
            "file_tree_metrics": metrics.to_dict() if metrics is not None else {},
            "community_health": community_health,
            "summarization_attempts": 0,
            "last_summarization_error": None,
            "last_summarization_attempt": completed_at,
            "summarized_at": completed_at,
        }
        self._store.update_fields(record.repo_id, set_fields=set_fields, unset_fields=HEAVY_RAW_FIELDS)

    def _persist_rejection(self, record: RepositoryRecord, reason: str) -> JobOutcome:
        logger.info(
            "Repository rejected as unsuitable",
            extra=sanitize_log_extra(repo=record.identifier, reason=reason),
        )
        self._store.update_fields(
            record.repo_id,
            set_fields={
                "status": STATUS_REJECTED,
                "rejection_reason": reason,
                "summarization_attempts": 0,
                "last_summarization_error": None,
                "last_summarization_attempt": self._now(),
            },
            unset_fields=HEAVY_RAW_FIELDS,
        )
        return JobOutcome(
            repo_id=record.repo_id,
            identifier=record.identifier,
            status="rejected",
            state=JobState.REJECTED,
            error=reason,
        )

    def _persist_failure(self, record: RepositoryRecord, state: JobState, exc: Exception) -> JobOutcome:
        message = str(sanitize_for_log(str(exc) or exc.__class__.__name__))[:MAX_ERROR_LENGTH]
        logger.warning(
            "Enrichment job failed",
            extra=sanitize_log_extra(
                repo=record.identifier,
                state=state.value,
                error_type=exc.__class__.__name__,
                error=message,
                attempts=record.summarization_attempts + 1,
            ),
        )
        self._store.update_fields(
            record.repo_id,
            set_fields={
                "last_summarization_error": message,
                "last_summarization_attempt": self._now(),
            },
            increment_fields={"summarization_attempts": 1},
        )
        return JobOutcome(
            repo_id=record.repo_id,
            identifier=record.identifier,
            status="failed",
            state=state,
            error=message,
        )
