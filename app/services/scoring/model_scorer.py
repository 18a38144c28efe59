"""Model-derived repository scores using the structured call path."""

from __future__ import annotations

import json
import logging
from typing import Optional

from app.services.ai.schemas import ModelScoreResponse
from app.services.ai.structured import StructuredCallWrapper, structured_options
from app.services.ai.text_utils import safe_slice, sanitize_input
from app.services.scoring.types import ScoreResult, ScoringSignals
from app.services.scoring.utils import clamp, overall_score, recommended_level

logger = logging.getLogger(__name__)

MAX_README_CONTEXT = 3000
MAX_CONTRIBUTING_CONTEXT = 1000

SCORING_PROMPT = """You are an expert at evaluating open-source repositories for contributor friendliness.

Score this repository on three dimensions (each 0-100):
1. beginner_friendliness: documentation, labeled starter issues, community responsiveness, community size, codebase simplicity, setup ease.
2. technical_complexity: codebase size, architecture depth, dependency ecosystem, language features, domain difficulty, setup complexity.
3. contribution_readiness: issue quality, PR activity, maintainer response, test coverage, CI/CD, documentation quality.

Provide every sub-score in score_breakdown on a 0-100 scale.
Be realistic: most repositories land between 40 and 70.
confidence (0-1) must reflect how complete the data below is; lower it when signals are missing.

REPOSITORY DATA:
{context}
"""


def build_scoring_context(signals: ScoringSignals) -> str:
    metrics = signals.file_tree.to_dict() if signals.file_tree is not None else None
    payload = {
        "name": signals.repo_name,
        "description": sanitize_input(signals.description),
        "language": signals.language,
        "topics": signals.topics[:20],
        "stars": signals.stars,
        "forks": signals.forks,
        "contributors": signals.contributors,
        "issue_data": signals.issue_data,
        "pr_merge_ratio": signals.pr_merge_ratio,
        "avg_pr_merge_hours": signals.avg_pr_merge_hours,
        "avg_issue_response_hours": signals.avg_issue_response_hours,
        "has_contributing": signals.has_contributing,
        "has_code_of_conduct": signals.has_code_of_conduct,
        "file_tree_metrics": metrics,
        "tech_stack": signals.tech_stack,
    }
    sections = [json.dumps(payload, ensure_ascii=False, default=str)]
    sections.append("README:\n" + safe_slice(sanitize_input(signals.readme), MAX_README_CONTEXT))
    if signals.has_contributing:
        sections.append("CONTRIBUTING:\n" + safe_slice(sanitize_input(signals.contributing), MAX_CONTRIBUTING_CONTEXT))
    return "\n\n".join(sections)


class ModelScorer:
    def __init__(self, wrapper: StructuredCallWrapper) -> None:
        self._wrapper = wrapper

    async def score(self, signals: ScoringSignals) -> Optional[ScoreResult]:
        prompt = SCORING_PROMPT.format(context=build_scoring_context(signals))
        response = await self._wrapper.call(
            prompt,
            ModelScoreResponse,
            structured_options(max_tokens=1200, temperature=0.1),
            label="model-scoring",
        )
        if response is None:
            return None

        bf = int(round(clamp(response.beginner_friendliness)))
        tc = int(round(clamp(response.technical_complexity)))
        cr = int(round(clamp(response.contribution_readiness)))
        breakdown = {
            dimension: {name: round(clamp(value), 2) for name, value in values.items()}
            for dimension, values in response.score_breakdown.model_dump().items()
        }
        return ScoreResult(
            beginner_friendliness=bf,
            technical_complexity=tc,
            contribution_readiness=cr,
            overall_score=overall_score(bf, tc, cr),
            recommended_level=recommended_level(bf, tc),
            confidence=clamp(response.confidence, 0.0, 1.0),
            score_breakdown=breakdown,
            scoring_method="ai",
        )
