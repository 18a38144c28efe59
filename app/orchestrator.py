"""Enrichment pass orchestrator: selects a batch and drives jobs through the record queue."""

from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
import logging
import threading
from typing import Any, Callable, Optional

from app.config.settings import parse_key_list, settings
from app.crawlers.github.client import GitHubClient
from app.crawlers.github.community_files import CommunityFilesFetcher
from app.services.ai.gateway import ModelGateway
from app.services.ai.keys import KeyPool
from app.services.ai.structured import StructuredCallWrapper
from app.services.ai.transport import GeminiTransport
from app.services.enrichment.job import EnrichmentJob, JobOutcome
from app.services.enrichment.phases import EnrichmentPhases
from app.services.enrichment.store import RecordStore, SQLAlchemyRecordStore
from app.services.log_sanitizer import sanitize_for_log, sanitize_log_extra
from app.services.scheduling.queues import ModelCallQueue, RecordQueue, build_github_queue
from app.services.scoring.model_scorer import ModelScorer
from app.services.scoring.unified import UnifiedScorer

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ModelServices:
    gateway: ModelGateway
    structured: StructuredCallWrapper
    scorer: UnifiedScorer
    call_queue: ModelCallQueue
    key_pool: KeyPool


def build_model_services(
    *,
    keys: Optional[list[str]] = None,
    scoring_keys: Optional[list[str]] = None,
    transport: Optional[GeminiTransport] = None,
    enable_ai_scoring: Optional[bool] = None,
) -> ModelServices:
    """One key pool per functional area, all admitted through a single call queue.

    Build once per process: the call budget and key cooldowns must outlive a pass.
    """

    main_keys = keys if keys is not None else parse_key_list(settings.GEMINI_KEYS)
    dedicated_scoring_keys = scoring_keys if scoring_keys is not None else parse_key_list(settings.GEMINI_SCORING_KEYS)
    use_ai_scoring = settings.ENABLE_AI_SCORING if enable_ai_scoring is None else enable_ai_scoring

    transport = transport or GeminiTransport()
    key_pool = KeyPool(main_keys)
    scoring_pool = KeyPool(dedicated_scoring_keys) if dedicated_scoring_keys else key_pool
    distinct_keys = set(main_keys) | set(dedicated_scoring_keys)
    call_queue = ModelCallQueue(key_count=len(distinct_keys))

    gateway = ModelGateway(key_pool=key_pool, call_queue=call_queue, transport=transport)
    structured = StructuredCallWrapper(key_pool=key_pool, call_queue=call_queue, transport=transport)
    model_scorer = None
    if use_ai_scoring:
        scoring_wrapper = StructuredCallWrapper(key_pool=scoring_pool, call_queue=call_queue, transport=transport)
        model_scorer = ModelScorer(scoring_wrapper)

    return ModelServices(
        gateway=gateway,
        structured=structured,
        scorer=UnifiedScorer(model_scorer),
        call_queue=call_queue,
        key_pool=key_pool,
    )


class EnrichmentOrchestrator:
    """Runs one bounded enrichment pass at a time."""

    def __init__(
        self,
        *,
        store: Optional[RecordStore] = None,
        github_client_factory: Callable[..., Any] = GitHubClient,
        services_factory: Callable[[], ModelServices] = build_model_services,
        record_queue_factory: Callable[[], RecordQueue] = RecordQueue,
        job_factory: Optional[Callable[..., EnrichmentJob]] = None,
        key_provider: Optional[Callable[[], list[str]]] = None,
    ) -> None:
        self._store = store
        self._github_client_factory = github_client_factory
        self._services_factory = services_factory
        self._record_queue_factory = record_queue_factory
        self._job_factory = job_factory or EnrichmentJob
        self._key_provider = key_provider or (lambda: parse_key_list(settings.GEMINI_KEYS))
        self._pass_lock = threading.Lock()
        self._services: Optional[ModelServices] = None

    def model_services(self) -> ModelServices:
        """Model services shared by every pass this orchestrator runs."""
        if self._services is None:
            self._services = self._services_factory()
        return self._services

    @property
    def is_running(self) -> bool:
        return self._pass_lock.locked()

    async def run_pass(self) -> dict[str, Any]:
        """Enrich up to ENRICH_BATCH_LIMIT eligible records. A concurrent call is skipped."""

        if not self._pass_lock.acquire(blocking=False):
            logger.info("Enrichment pass already running, skipping trigger")
            return {"mode": "enrichment", "success": True, "skipped": True, "reason": "Pass already in progress"}
        try:
            return await self._run_pass()
        finally:
            self._pass_lock.release()

    async def _run_pass(self) -> dict[str, Any]:
        store = self._store or SQLAlchemyRecordStore()
        run_stats: dict[str, Any] = {
            "mode": "enrichment",
            "started_at": datetime.utcnow().isoformat(),
            "stats": {"selected": 0, "succeeded": 0, "failed": 0, "rejected": 0, "errored": 0},
            "errors": [],
            "failed_records": [],
        }

        if not self._key_provider():
            run_stats["errors"].append("No model API keys configured")
            run_stats["completed_at"] = datetime.utcnow().isoformat()
            run_stats["success"] = False
            logger.error("Enrichment pass aborted: no model API keys configured")
            return run_stats

        self._log_retry_distribution(store)

        candidates = store.find_enrichment_candidates(
            max_attempts=settings.ENRICH_MAX_ATTEMPTS,
            limit=settings.ENRICH_BATCH_LIMIT,
            retry_base_delay_seconds=settings.ENRICH_RETRY_BASE_DELAY_SECONDS,
        )
        run_stats["stats"]["selected"] = len(candidates)
        logger.info(
            "Enrichment pass started",
            extra=sanitize_log_extra(selected=len(candidates), batch_limit=settings.ENRICH_BATCH_LIMIT),
        )

        if not candidates:
            run_stats["skipped"] = True
            run_stats["completed_at"] = datetime.utcnow().isoformat()
            run_stats["success"] = True
            return run_stats

        services = self.model_services()
        admitted_before = services.call_queue.total_admitted
        async with self._github_client_factory(request_queue=build_github_queue()) as client:
            job = self._job_factory(
                store=store,
                fetcher=CommunityFilesFetcher(client),
                phases=EnrichmentPhases(services.gateway, services.structured),
                scorer=services.scorer,
            )
            record_queue = self._record_queue_factory()
            handles = [record_queue.submit(lambda record=record: job.run(record)) for record in candidates]
            results = await asyncio.gather(*handles, return_exceptions=True)

        for record, result in zip(candidates, results):
            if isinstance(result, BaseException):
                error = sanitize_for_log(str(result), key="error")
                run_stats["stats"]["errored"] += 1
                run_stats["errors"].append(f"{record.identifier}: {error}")
                logger.error(
                    "Enrichment job raised outside its failure path",
                    extra=sanitize_log_extra(repo=record.identifier, error=error),
                )
                continue
            self._count_outcome(run_stats["stats"], result)

        run_stats["stats"]["model_calls"] = services.call_queue.total_admitted - admitted_before
        run_stats["failed_records"] = self._failed_report(store)
        run_stats["completed_at"] = datetime.utcnow().isoformat()
        run_stats["success"] = not run_stats["errors"]
        logger.info(
            "Enrichment pass completed",
            extra=sanitize_log_extra(success=run_stats["success"], stats=run_stats["stats"], errors=run_stats["errors"]),
        )
        return run_stats

    @staticmethod
    def _count_outcome(stats: dict[str, int], outcome: JobOutcome) -> None:
        if outcome.status == "success":
            stats["succeeded"] += 1
        elif outcome.status == "rejected":
            stats["rejected"] += 1
        else:
            stats["failed"] += 1

    @staticmethod
    def _log_retry_distribution(store: RecordStore) -> None:
        try:
            distribution = store.retry_distribution()
        except Exception as exc:
            logger.warning("Could not load retry distribution", extra=sanitize_log_extra(error=str(exc)))
            return
        logger.info(
            "Retry distribution",
            extra=sanitize_log_extra(distribution={str(k): v for k, v in sorted(distribution.items())}),
        )

    @staticmethod
    def _failed_report(store: RecordStore) -> list[dict[str, Any]]:
        try:
            failed = store.find_failed(limit=settings.ENRICH_FAILED_REPORT_LIMIT)
        except Exception as exc:
            logger.warning("Could not load failed records report", extra=sanitize_log_extra(error=str(exc)))
            return []
        report = [
            {
                "repo": record.identifier,
                "attempts": record.summarization_attempts,
                "error": sanitize_for_log(record.last_summarization_error or "", key="error"),
            }
            for record in failed
        ]
        if report:
            logger.warning("Records with enrichment failures", extra=sanitize_log_extra(failed=report))
        return report
