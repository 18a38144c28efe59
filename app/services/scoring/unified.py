"""Confidence-gated choice between model scores and rule scores."""

from __future__ import annotations

import logging
from typing import Optional

from app.config.settings import settings
from app.services.log_sanitizer import sanitize_log_extra
from app.services.scoring.model_scorer import ModelScorer
from app.services.scoring.rules import score_with_rules
from app.services.scoring.types import ScoreResult, ScoringSignals

logger = logging.getLogger(__name__)


class UnifiedScorer:
    """Uses the model score when it is confident enough, otherwise the rule score. Never raises."""

    def __init__(
        self,
        model_scorer: Optional[ModelScorer] = None,
        *,
        confidence_threshold: Optional[float] = None,
    ) -> None:
        self._model_scorer = model_scorer
        self._threshold = (
            confidence_threshold if confidence_threshold is not None else settings.AI_SCORING_CONFIDENCE_THRESHOLD
        )

    async def score(self, signals: ScoringSignals) -> ScoreResult:
        if self._model_scorer is not None:
            try:
                result = await self._model_scorer.score(signals)
            except Exception as exc:
                logger.warning(
                    "Model scoring raised, using rule scores",
                    extra=sanitize_log_extra(repo=signals.repo_name, error=str(exc)),
                )
                result = None

            if result is not None and result.confidence >= self._threshold:
                return result
            if result is not None:
                logger.info(
                    "Model scoring confidence below threshold, using rule scores",
                    extra=sanitize_log_extra(
                        repo=signals.repo_name,
                        confidence=result.confidence,
                        threshold=self._threshold,
                    ),
                )

        return score_with_rules(signals)
