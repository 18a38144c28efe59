"""Scheduler-facing enrichment entrypoint."""

from __future__ import annotations

from typing import Any, Optional

from app.orchestrator import EnrichmentOrchestrator

_default_orchestrator: Optional[EnrichmentOrchestrator] = None


def get_orchestrator() -> EnrichmentOrchestrator:
    """Process-wide orchestrator so concurrent triggers share one pass lock."""
    global _default_orchestrator
    if _default_orchestrator is None:
        _default_orchestrator = EnrichmentOrchestrator()
    return _default_orchestrator


async def run_enrichment_pass(*, orchestrator: Optional[EnrichmentOrchestrator] = None) -> dict[str, Any]:
    """Run one bounded enrichment pass; safe to call repeatedly."""
    return await (orchestrator or get_orchestrator()).run_pass()
