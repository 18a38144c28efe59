from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

import pytest

from app.crawlers.github.community_files import CommunityFiles
from app.services.ai.schemas import (
    ComplexityAnalysis,
    ContributionAreas,
    ReadmeSummary,
    SuitabilityVerdict,
    TaskSuggestions,
    TechStackProfile,
)
from app.services.enrichment.errors import PhaseFailedError
from app.services.enrichment.job import EnrichmentJob, JobState, passes_validation_gate
from app.services.enrichment.records import HEAVY_RAW_FIELDS, RepositoryRecord
from app.services.scoring.rules import score_with_rules
from app.services.scoring.types import ScoreResult, ScoringSignals

NOW = datetime(2024, 6, 1, 9, 30, 0)

RESULT_FIELDS = (
    "summary",
    "categories",
    "tech_stack",
    "required_skills",
    "main_contrib_areas",
    "beginner_tasks",
    "intermediate_tasks",
    "overall_score",
    "file_tree_metrics",
)


class FakeStore:
    def __init__(self) -> None:
        self.updates: list[dict[str, Any]] = []

    def update_fields(self, repo_id, *, set_fields=None, unset_fields=(), increment_fields=None) -> bool:
        self.updates.append(
            {
                "repo_id": repo_id,
                "set": dict(set_fields or {}),
                "unset": tuple(unset_fields),
                "increment": dict(increment_fields or {}),
            }
        )
        return True


class FakeFetcher:
    def __init__(self, files: CommunityFiles) -> None:
        self.files = files
        self.identifiers: list[str] = []

    async def fetch_community_files(self, identifier: str) -> CommunityFiles:
        self.identifiers.append(identifier)
        return self.files


class FakePhases:
    def __init__(
        self,
        *,
        fail_at: Optional[str] = None,
        summary: Optional[ReadmeSummary] = None,
        tech_stack: Optional[TechStackProfile] = None,
        suitable: bool = True,
        analysis: Optional[ComplexityAnalysis] = None,
    ) -> None:
        self.fail_at = fail_at
        self.calls: list[str] = []
        self.summary = summary or ReadmeSummary(
            summary="A toolkit for building widgets quickly.", level="beginner", repo_categories=["ui"]
        )
        self.tech_stack = tech_stack or TechStackProfile(tech_stack=["Python"], required_skills=["pytest"])
        self.suitable = suitable
        self.analysis = analysis
        self.task_scores: Optional[dict[str, Any]] = None

    def _enter(self, phase: str) -> None:
        self.calls.append(phase)
        if phase == self.fail_at:
            raise PhaseFailedError(phase, "empty model response")

    async def check_suitability(self, **_: Any) -> SuitabilityVerdict:
        self._enter("suitability")
        return SuitabilityVerdict(is_suitable=self.suitable, reason="awesome list, not software", confidence=0.9)

    async def summarize_readme(self, readme: str, metadata: dict[str, Any]) -> ReadmeSummary:
        self._enter("summary")
        return self.summary

    async def analyze_tech_stack(self, readme: str, **_: Any) -> TechStackProfile:
        self._enter("tech_stack")
        return self.tech_stack

    async def identify_contribution_areas(self, **_: Any) -> ContributionAreas:
        self._enter("contribution_areas")
        return ContributionAreas.model_validate(
            {"main_contrib_areas": [{"area": "Docs", "confidence": 0.8, "reasons": ["docs label"]}]}
        )

    async def analyze_complexity(self, **_: Any) -> Optional[ComplexityAnalysis]:
        self._enter("complexity_analysis")
        return self.analysis

    async def suggest_tasks(self, *, scores: dict[str, Any], **_: Any) -> TaskSuggestions:
        self._enter("task_suggestions")
        self.task_scores = scores
        return TaskSuggestions.model_validate(
            {"beginner_tasks": [{"title": "Fix typo in README", "why": "docs"}], "intermediate_tasks": []}
        )


class FakeScorer:
    def __init__(self) -> None:
        self.signals: list[ScoringSignals] = []

    async def score(self, signals: ScoringSignals) -> ScoreResult:
        self.signals.append(signals)
        return score_with_rules(signals)


def record(**overrides: Any) -> RepositoryRecord:
    values: dict[str, Any] = {
        "repo_id": "101",
        "repo_name": "widgets",
        "owner": "acme",
        "description": "Widgets",
        "language": "Python",
        "topics": ["ui"],
        "stars": 120,
        "contributors": 6,
        "issue_data": {"total_open_issues": 12, "good_first_issue_count": 2},
        "activity": {"pr_merge_ratio": 0.7, "avg_pr_merge_hours": 30},
        "readme_raw": "stored readme",
        "summarization_attempts": 1,
    }
    values.update(overrides)
    return RepositoryRecord(**values)


def files(**overrides: Any) -> CommunityFiles:
    values: dict[str, Any] = {
        "readme": "# Widgets\nBuild widgets fast.",
        "contributing": "Open a PR.",
        "code_of_conduct": None,
        "has_issue_templates": True,
        "file_tree": [
            {"name": "src", "path": "src", "type": "tree"},
            {"name": "app.py", "path": "src/app.py", "type": "blob"},
            {"name": "test_app.py", "path": "tests/test_app.py", "type": "blob"},
        ],
    }
    values.update(overrides)
    return CommunityFiles(**values)


def build_job(store: FakeStore, fetcher: FakeFetcher, phases: FakePhases, **kwargs: Any) -> EnrichmentJob:
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return EnrichmentJob(
        store=store,
        fetcher=fetcher,
        phases=phases,
        scorer=kwargs.pop("scorer", FakeScorer()),
        enable_ai_analysis=kwargs.pop("enable_ai_analysis", True),
        enable_suitability_check=kwargs.pop("enable_suitability_check", False),
        phase_delay_seconds=1,
        sleep=fake_sleep,
        now=lambda: NOW,
    )


@pytest.mark.asyncio
async def test_successful_job_persists_everything_in_one_update() -> None:
    store = FakeStore()
    phases = FakePhases()
    scorer = FakeScorer()
    job = build_job(store, FakeFetcher(files()), phases, scorer=scorer)

    outcome = await job.run(record())

    assert outcome.succeeded
    assert outcome.state == JobState.PERSIST_SUCCESS
    assert phases.calls == [
        "summary",
        "tech_stack",
        "contribution_areas",
        "complexity_analysis",
        "task_suggestions",
    ]
    assert len(store.updates) == 1
    update = store.updates[0]
    assert update["repo_id"] == "101"
    assert update["unset"] == HEAVY_RAW_FIELDS
    assert update["increment"] == {}
    written = update["set"]
    assert written["summary"] == "A toolkit for building widgets quickly."
    assert written["main_contrib_areas"] == [{"area": "docs", "confidence": 0.8, "reasons": ["docs label"]}]
    assert written["beginner_tasks"][0]["title"] == "Fix typo in README"
    assert written["summarization_attempts"] == 0
    assert written["last_summarization_error"] is None
    assert written["summarized_at"] == NOW
    assert written["scoring_method"] == "fallback"
    assert written["file_tree_metrics"]["total_files"] == 2
    assert written["community_health"] == {
        "has_readme": True,
        "has_contributing": True,
        "has_code_of_conduct": False,
        "has_issue_templates": True,
    }
    assert phases.task_scores["recommended_level"] == written["recommended_level"]
    assert scorer.signals[0].pr_merge_ratio == 0.7
    assert scorer.signals[0].file_tree.has_tests is True


@pytest.mark.asyncio
async def test_missing_readme_fails_before_any_model_call() -> None:
    store = FakeStore()
    phases = FakePhases()
    job = build_job(store, FakeFetcher(files(readme=None)), phases)

    outcome = await job.run(record(readme_raw="   "))

    assert outcome.status == "failed"
    assert outcome.state == JobState.FETCHING
    assert phases.calls == []
    assert store.updates == [
        {
            "repo_id": "101",
            "set": {"last_summarization_error": "No README available for acme/widgets", "last_summarization_attempt": NOW},
            "unset": (),
            "increment": {"summarization_attempts": 1},
        }
    ]


@pytest.mark.asyncio
async def test_stored_readme_is_used_when_fetch_returns_none() -> None:
    store = FakeStore()
    job = build_job(store, FakeFetcher(files(readme=None)), FakePhases())

    outcome = await job.run(record())

    assert outcome.succeeded


@pytest.mark.asyncio
async def test_failure_after_earlier_phases_writes_no_result_fields() -> None:
    store = FakeStore()
    phases = FakePhases(fail_at="contribution_areas")
    job = build_job(store, FakeFetcher(files()), phases)

    outcome = await job.run(record())

    assert outcome.status == "failed"
    assert outcome.state == JobState.CONTRIBUTION_AREAS
    assert outcome.error == "contribution_areas phase failed: empty model response"
    assert len(store.updates) == 1
    update = store.updates[0]
    assert update["increment"] == {"summarization_attempts": 1}
    assert update["unset"] == ()
    assert not set(update["set"]) & set(RESULT_FIELDS)


@pytest.mark.asyncio
async def test_validation_gate_blocks_empty_ai_output() -> None:
    store = FakeStore()
    phases = FakePhases(summary=ReadmeSummary(summary="short"), tech_stack=TechStackProfile())
    job = build_job(store, FakeFetcher(files()), phases)

    outcome = await job.run(record())

    assert outcome.status == "failed"
    assert outcome.state == JobState.VALIDATE
    assert "complexity_analysis" not in phases.calls
    assert store.updates[0]["increment"] == {"summarization_attempts": 1}


def test_validation_gate_accepts_any_single_signal() -> None:
    assert passes_validation_gate(ReadmeSummary(summary="x" * 11), TechStackProfile())
    assert passes_validation_gate(ReadmeSummary(), TechStackProfile(required_skills=["sql"]))
    assert not passes_validation_gate(ReadmeSummary(summary="x" * 10), TechStackProfile())


@pytest.mark.asyncio
async def test_unsuitable_repository_is_rejected_without_further_phases() -> None:
    store = FakeStore()
    phases = FakePhases(suitable=False)
    job = build_job(store, FakeFetcher(files()), phases, enable_suitability_check=True)

    outcome = await job.run(record())

    assert outcome.status == "rejected"
    assert phases.calls == ["suitability"]
    update = store.updates[0]
    assert update["set"]["status"] == "rejected"
    assert update["set"]["rejection_reason"] == "awesome list, not software"
    assert update["unset"] == HEAVY_RAW_FIELDS


@pytest.mark.asyncio
async def test_complexity_analysis_skipped_when_disabled_and_empty_tree_persists_empty_metrics() -> None:
    store = FakeStore()
    phases = FakePhases()
    job = build_job(store, FakeFetcher(files(file_tree=[])), phases, enable_ai_analysis=False)

    outcome = await job.run(record())

    assert outcome.succeeded
    assert "complexity_analysis" not in phases.calls
    assert store.updates[0]["set"]["file_tree_metrics"] == {}


@pytest.mark.asyncio
async def test_scorer_exception_is_recorded_as_failure() -> None:
    class ExplodingScorer:
        async def score(self, signals: ScoringSignals) -> ScoreResult:
            raise RuntimeError("x" * 2000)

    store = FakeStore()
    job = build_job(store, FakeFetcher(files()), FakePhases(), scorer=ExplodingScorer())

    outcome = await job.run(record())

    assert outcome.state == JobState.SCORING
    assert len(store.updates[0]["set"]["last_summarization_error"]) <= 1000
