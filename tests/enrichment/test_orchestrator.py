from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, Optional

import pytest

from app.jobs.enrichment_pass import run_enrichment_pass
from app.orchestrator import EnrichmentOrchestrator, build_model_services
from app.services.enrichment.job import JobOutcome, JobState
from app.services.enrichment.records import RepositoryRecord
from app.services.scheduling.queues import RecordQueue


class FakeStore:
    def __init__(self, candidates: list[RepositoryRecord], failed: Optional[list[RepositoryRecord]] = None) -> None:
        self.candidates = candidates
        self.failed = failed or []
        self.candidate_calls: list[dict[str, Any]] = []

    def find_enrichment_candidates(self, **kwargs: Any) -> list[RepositoryRecord]:
        self.candidate_calls.append(kwargs)
        return list(self.candidates)

    def update_fields(self, repo_id, **kwargs: Any) -> bool:
        return True

    def find_failed(self, *, limit: int) -> list[RepositoryRecord]:
        return self.failed[:limit]

    def retry_distribution(self) -> dict[int, int]:
        return {0: len(self.candidates)}


class FakeGitHubClient:
    instances: list["FakeGitHubClient"] = []

    def __init__(self, *, request_queue: Any = None) -> None:
        self.request_queue = request_queue
        self.closed = False
        FakeGitHubClient.instances.append(self)

    async def __aenter__(self) -> "FakeGitHubClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.closed = True


class FakeJob:
    outcomes: dict[str, Any] = {}
    gate: Optional[asyncio.Event] = None

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs

    async def run(self, record: RepositoryRecord) -> JobOutcome:
        if FakeJob.gate is not None:
            await FakeJob.gate.wait()
        self.kwargs["scorer"].call_queue.total_admitted += 2
        outcome = FakeJob.outcomes.get(record.repo_id, "success")
        if isinstance(outcome, BaseException):
            raise outcome
        return JobOutcome(
            repo_id=record.repo_id,
            identifier=record.identifier,
            status=outcome,
            state=JobState.PERSIST_SUCCESS if outcome == "success" else JobState.PERSIST_FAILURE,
        )


def fake_services() -> SimpleNamespace:
    call_queue = SimpleNamespace(total_admitted=0)
    return SimpleNamespace(
        gateway=None, structured=None, scorer=SimpleNamespace(call_queue=call_queue), call_queue=call_queue
    )


def build_orchestrator(store: FakeStore, *, keys: Optional[list[str]] = None) -> EnrichmentOrchestrator:
    return EnrichmentOrchestrator(
        store=store,
        github_client_factory=FakeGitHubClient,
        services_factory=fake_services,
        record_queue_factory=lambda: RecordQueue(
            concurrency=3, spacing_seconds=0, batch_size=10, batch_cooldown_seconds=0
        ),
        job_factory=FakeJob,
        key_provider=lambda: ["key-1"] if keys is None else keys,
    )


def record(repo_id: str) -> RepositoryRecord:
    return RepositoryRecord(repo_id=repo_id, repo_name=f"repo-{repo_id}", owner="acme")


@pytest.fixture(autouse=True)
def reset_fakes():
    FakeJob.outcomes = {}
    FakeJob.gate = None
    FakeGitHubClient.instances = []
    yield


@pytest.mark.asyncio
async def test_pass_tallies_outcomes_and_reports_failures() -> None:
    FakeJob.outcomes = {"2": "failed", "3": "rejected", "4": RuntimeError("token=abc123 leaked")}
    failed = [RepositoryRecord(repo_id="2", repo_name="repo-2", owner="acme", summarization_attempts=1,
                               last_summarization_error="summary phase failed: empty model response")]
    store = FakeStore([record("1"), record("2"), record("3"), record("4")], failed=failed)

    result = await build_orchestrator(store).run_pass()

    assert result["stats"] == {
        "selected": 4,
        "succeeded": 1,
        "failed": 1,
        "rejected": 1,
        "errored": 1,
        "model_calls": 8,
    }
    assert result["success"] is False
    assert "abc123" not in result["errors"][0]
    assert result["failed_records"] == [
        {"repo": "acme/repo-2", "attempts": 1, "error": "summary phase failed: empty model response"}
    ]
    assert FakeGitHubClient.instances[0].closed is True
    assert FakeGitHubClient.instances[0].request_queue.max_calls == 66
    assert store.candidate_calls[0]["max_attempts"] == 3
    assert store.candidate_calls[0]["limit"] == 60


@pytest.mark.asyncio
async def test_empty_batch_is_a_successful_skip() -> None:
    result = await build_orchestrator(FakeStore([])).run_pass()

    assert result["success"] is True
    assert result["skipped"] is True
    assert result["stats"]["selected"] == 0
    assert FakeGitHubClient.instances == []


@pytest.mark.asyncio
async def test_pass_aborts_without_model_keys() -> None:
    store = FakeStore([record("1")])

    result = await build_orchestrator(store, keys=[]).run_pass()

    assert result["success"] is False
    assert result["errors"] == ["No model API keys configured"]
    assert store.candidate_calls == []


@pytest.mark.asyncio
async def test_concurrent_trigger_is_skipped_while_pass_runs() -> None:
    FakeJob.gate = asyncio.Event()
    orchestrator = build_orchestrator(FakeStore([record("1")]))

    first = asyncio.create_task(run_enrichment_pass(orchestrator=orchestrator))
    for _ in range(10):
        await asyncio.sleep(0)
    assert orchestrator.is_running

    second = await run_enrichment_pass(orchestrator=orchestrator)
    FakeJob.gate.set()
    completed = await first

    assert second["skipped"] is True
    assert second["reason"] == "Pass already in progress"
    assert completed["stats"]["succeeded"] == 1
    assert not orchestrator.is_running


class FakeTransport:
    async def generate_text(self, **_: Any) -> str:
        return "{}"


def test_model_services_share_one_call_queue_sized_by_distinct_keys() -> None:
    services = build_model_services(
        keys=["a", "b"], scoring_keys=["b", "c"], transport=FakeTransport(), enable_ai_scoring=True
    )

    assert services.call_queue.key_count == 3
    assert services.gateway._queue is services.call_queue
    assert services.scorer._model_scorer is not None

    without_scoring = build_model_services(keys=["a"], scoring_keys=[], transport=FakeTransport(), enable_ai_scoring=False)
    assert without_scoring.scorer._model_scorer is None


@pytest.mark.asyncio
async def test_model_services_are_built_once_and_reused_across_passes() -> None:
    built: list[SimpleNamespace] = []

    def counting_services() -> SimpleNamespace:
        built.append(fake_services())
        return built[-1]

    orchestrator = EnrichmentOrchestrator(
        store=FakeStore([record("1")]),
        github_client_factory=FakeGitHubClient,
        services_factory=counting_services,
        record_queue_factory=lambda: RecordQueue(concurrency=1, spacing_seconds=0, batch_size=10, batch_cooldown_seconds=0),
        job_factory=FakeJob,
        key_provider=lambda: ["key-1"],
    )

    first = await orchestrator.run_pass()
    second = await orchestrator.run_pass()

    assert len(built) == 1
    assert first["stats"]["model_calls"] == 2
    assert second["stats"]["model_calls"] == 2
    assert built[0].call_queue.total_admitted == 4


class IdleJob:
    def __init__(self, **kwargs: Any) -> None:
        pass

    async def run(self, record: RepositoryRecord) -> JobOutcome:
        return JobOutcome(
            repo_id=record.repo_id, identifier=record.identifier, status="success", state=JobState.PERSIST_SUCCESS
        )


def test_call_budget_and_key_cooldowns_carry_over_between_passes() -> None:
    orchestrator = EnrichmentOrchestrator(
        store=FakeStore([record("1")]),
        github_client_factory=FakeGitHubClient,
        services_factory=lambda: build_model_services(
            keys=["key-a", "key-b"], scoring_keys=[], transport=FakeTransport(), enable_ai_scoring=False
        ),
        record_queue_factory=lambda: RecordQueue(concurrency=1, spacing_seconds=0, batch_size=10, batch_cooldown_seconds=0),
        job_factory=IdleJob,
        key_provider=lambda: ["key-a", "key-b"],
    )

    async def admit_one() -> None:
        async with orchestrator.model_services().call_queue.slot():
            pass

    asyncio.run(orchestrator.run_pass())
    services = orchestrator.model_services()
    asyncio.run(admit_one())
    services.key_pool.mark_rate_limited("key-a", 600)

    asyncio.run(orchestrator.run_pass())
    asyncio.run(admit_one())

    assert orchestrator.model_services() is services
    assert services.call_queue.admitted_in_window() == 2
    assert services.key_pool.is_cooling("key-a")
    assert services.key_pool.next_key() == "key-b"
