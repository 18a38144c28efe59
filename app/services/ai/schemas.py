"""Pydantic result types for each enrichment phase and model scoring."""

from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from app.services.ai.text_utils import ensure_string_list

MAX_CATEGORIES = 5
MAX_TECH_STACK = 10
MAX_REQUIRED_SKILLS = 10
MAX_CONTRIB_AREAS = 6
MAX_AREA_REASONS = 3
MAX_TASKS = 6
MAX_AREA_NAME = 50

Level = Literal["beginner", "intermediate", "advanced"]
LEVELS = ("beginner", "intermediate", "advanced")


def normalize_area_name(raw: Any) -> str:
    area = re.sub(r"\s+", "-", str(raw or "").strip().lower())
    return re.sub(r"[^a-z0-9-]", "", area)[:MAX_AREA_NAME]


def _clamp_unit(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(1.0, number))


class ReadmeSummary(BaseModel):
    summary: str = ""
    level: Level = "intermediate"
    repo_categories: list[str] = Field(default_factory=list)

    @field_validator("summary", mode="before")
    @classmethod
    def _strip_summary(cls, value: Any) -> str:
        return value.strip() if isinstance(value, str) else ""

    @field_validator("level", mode="before")
    @classmethod
    def _coerce_level(cls, value: Any) -> str:
        return value if value in LEVELS else "intermediate"

    @field_validator("repo_categories", mode="before")
    @classmethod
    def _cap_categories(cls, value: Any) -> list[str]:
        return ensure_string_list(value)[:MAX_CATEGORIES]


class TechStackProfile(BaseModel):
    tech_stack: list[str] = Field(default_factory=list)
    required_skills: list[str] = Field(default_factory=list)

    @field_validator("tech_stack", mode="before")
    @classmethod
    def _cap_stack(cls, value: Any) -> list[str]:
        return ensure_string_list(value)[:MAX_TECH_STACK]

    @field_validator("required_skills", mode="before")
    @classmethod
    def _cap_skills(cls, value: Any) -> list[str]:
        return ensure_string_list(value)[:MAX_REQUIRED_SKILLS]


class ContributionArea(BaseModel):
    area: str
    confidence: float = 0.0
    reasons: list[str] = Field(default_factory=list)

    @field_validator("area", mode="before")
    @classmethod
    def _normalize_area(cls, value: Any) -> str:
        return normalize_area_name(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return _clamp_unit(value)

    @field_validator("reasons", mode="before")
    @classmethod
    def _cap_reasons(cls, value: Any) -> list[str]:
        return ensure_string_list(value)[:MAX_AREA_REASONS]


class ContributionAreas(BaseModel):
    main_contrib_areas: list[ContributionArea] = Field(default_factory=list)

    @field_validator("main_contrib_areas", mode="before")
    @classmethod
    def _cap_areas(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            return []
        items = [item for item in value[:MAX_CONTRIB_AREAS] if isinstance(item, dict)]
        return [item for item in items if normalize_area_name(item.get("area"))]


class ComplexityAnalysis(BaseModel):
    """Model judgment of codebase difficulty, each score on a 0-10 scale."""

    architecture_score: float = Field(ge=0, le=10, description="Architectural complexity (0-10)")
    abstraction_level: float = Field(ge=0, le=10, description="Depth of abstractions and patterns (0-10)")
    domain_difficulty: float = Field(ge=0, le=10, description="Specialisation of the problem domain (0-10)")
    setup_complexity: float = Field(ge=0, le=10, description="Effort to get a dev environment running (0-10)")
    recommended_experience: Level = Field(description="Contributor experience level this codebase suits")


class SuggestedTask(BaseModel):
    title: str = Field(description="Specific, actionable task with file or feature names")
    why: str = Field(description="One-line reason the task is valuable")
    approx_effort: Literal["low", "medium", "high"] = "low"
    example_issue_title: str = ""


class TaskSuggestions(BaseModel):
    beginner_tasks: list[SuggestedTask] = Field(default_factory=list, max_length=MAX_TASKS)
    intermediate_tasks: list[SuggestedTask] = Field(default_factory=list, max_length=MAX_TASKS)


class SuitabilityVerdict(BaseModel):
    is_suitable: bool = Field(description="Whether this is a real software project open to contributions")
    reason: str = Field(description="Brief explanation of the decision")
    confidence: float = Field(ge=0, le=1)


class BeginnerBreakdown(BaseModel):
    documentation: float = Field(ge=0, le=100)
    issue_labels: float = Field(ge=0, le=100)
    community_response: float = Field(ge=0, le=100)
    community_size: float = Field(ge=0, le=100)
    codebase_simplicity: float = Field(ge=0, le=100)
    setup_ease: float = Field(ge=0, le=100)


class ComplexityBreakdown(BaseModel):
    codebase_size: float = Field(ge=0, le=100)
    architecture_depth: float = Field(ge=0, le=100)
    dependencies: float = Field(ge=0, le=100)
    language_features: float = Field(ge=0, le=100)
    domain_difficulty: float = Field(ge=0, le=100)
    setup_complexity: float = Field(ge=0, le=100)


class ContributionBreakdown(BaseModel):
    issue_quality: float = Field(ge=0, le=100)
    pr_activity: float = Field(ge=0, le=100)
    maintainer_response: float = Field(ge=0, le=100)
    test_coverage: float = Field(ge=0, le=100)
    cicd: float = Field(ge=0, le=100)
    documentation_quality: float = Field(ge=0, le=100)


class ModelScoreBreakdown(BaseModel):
    beginner: BeginnerBreakdown
    complexity: ComplexityBreakdown
    contribution: ContributionBreakdown


class ModelScoreResponse(BaseModel):
    beginner_friendliness: float = Field(ge=0, le=100)
    technical_complexity: float = Field(ge=0, le=100)
    contribution_readiness: float = Field(ge=0, le=100)
    confidence: float = Field(ge=0, le=1, description="Confidence reflecting data completeness")
    score_breakdown: ModelScoreBreakdown
