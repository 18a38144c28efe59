"""Inputs and outputs shared by the rule and model scorers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from app.services.ai.schemas import ComplexityAnalysis
from app.services.file_tree import FileTreeMetrics

ScoringMethod = Literal["ai", "fallback"]


@dataclass(slots=True)
class ScoringSignals:
    """Everything a scorer may look at for one repository. All optional fields may be None."""

    repo_name: str = ""
    description: str = ""
    language: Optional[str] = None
    topics: list[str] = field(default_factory=list)
    stars: int = 0
    forks: int = 0
    contributors: int = 0
    readme: str = ""
    contributing: Optional[str] = None
    has_code_of_conduct: bool = False
    has_issue_templates: bool = False
    issue_data: dict[str, Any] = field(default_factory=dict)
    pr_merge_ratio: Optional[float] = None
    avg_pr_merge_hours: Optional[float] = None
    avg_issue_response_hours: Optional[float] = None
    maintainer_activity_score: Optional[float] = None
    file_tree: Optional[FileTreeMetrics] = None
    analysis: Optional[ComplexityAnalysis] = None
    tech_stack: list[str] = field(default_factory=list)

    @property
    def readme_length(self) -> int:
        return len(self.readme or "")

    @property
    def has_contributing(self) -> bool:
        return bool(self.contributing and self.contributing.strip())

    def issue_count(self, name: str) -> int:
        try:
            return max(0, int(self.issue_data.get(name) or 0))
        except (TypeError, ValueError):
            return 0

    @property
    def open_issues(self) -> int:
        return self.issue_count("total_open_issues")


@dataclass(slots=True)
class ScoreResult:
    beginner_friendliness: int
    technical_complexity: int
    contribution_readiness: int
    overall_score: int
    recommended_level: str
    confidence: float
    score_breakdown: dict[str, dict[str, float]]
    scoring_method: ScoringMethod

    def as_record_fields(self) -> dict[str, Any]:
        return {
            "beginner_friendliness": self.beginner_friendliness,
            "technical_complexity": self.technical_complexity,
            "contribution_readiness": self.contribution_readiness,
            "overall_score": self.overall_score,
            "recommended_level": self.recommended_level,
            "scoring_confidence": self.confidence,
            "score_breakdown": self.score_breakdown,
            "scoring_method": self.scoring_method,
        }
