"""Prompt templates for the enrichment phases."""

from __future__ import annotations

import json
from typing import Any


def _dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


SUMMARY_TEMPLATE = """SYSTEM: You are an assistant that MUST respond ONLY with a single JSON object and nothing else. Do not return prose, code fences or commentary. If a value cannot be determined, return an empty string or empty array.

OUTPUT_SCHEMA:
{{
  "summary": "<6-7 sentence summary describing the project purpose and where contributors are most useful>",
  "level": "beginner" | "intermediate" | "advanced",
  "repo_categories": ["<category>", "..."]
}}

ALLOWED CATEGORIES:
- web-frontend, web-backend, mobile, desktop, cli, library, framework, devops, security,
  machine-learning, blockchain, game-dev, embedded, compiler, utility, education
- Invent a new category only when none of these fit.

RULES:
- summary: at most 100-120 words, present tense. Describe what the project does and, in 1-2 sentences, likely contribution areas.
- level: the single best label using README and metadata.
- repo_categories: up to 5 categories.
- Use metadata as supporting signals; do not repeat it in the summary.

README:
{readme}

REPO_METADATA:
{metadata}"""


TECH_STACK_TEMPLATE = """SYSTEM: Respond ONLY with raw JSON and nothing else.

OUTPUT_SCHEMA:
{{
  "tech_stack": ["<TechName>", "..."],
  "required_skills": ["<Skill>", "..."]
}}

INSTRUCTIONS:
1. Identify the concrete technologies from the README, languages and topics. Prefer canonical names ("Node.js", "TypeScript", "React", "Docker", "Postgres", "GitHub Actions").
2. required_skills: 3-8 practical, contributor-focused skills such as "React + JSX" or "unit testing (pytest)".
3. Return arrays only. If uncertain, return empty arrays.

README_SNIPPET:
{readme}

LANGUAGES:
{languages}

TOPICS:
{topics}"""


CONTRIBUTION_AREAS_TEMPLATE = """SYSTEM: Output ONLY raw JSON matching the schema. No extra text.

OUTPUT_SCHEMA:
{{
  "main_contrib_areas": [
    {{"area": "<short-hyphenated-name>", "confidence": 0.0-1.0, "reasons": ["1-3 short evidence strings"]}}
  ]
}}

RULES:
- Return 3-6 items ranked by relevance.
- area: short hyphenated name, e.g. "documentation", "frontend-components", "ci-workflows", "tests", "bug-fixes".
- reasons must reference evidence from the inputs (issue labels and counts, sample issue titles, CONTRIBUTING).
- If there is no strong evidence, return an empty array.

ISSUE_COUNTS: {issue_counts}
ISSUE_SAMPLES: {issue_samples}
TOPICS: {topics}
SUMMARY: {summary}
TECH_STACK: {tech_stack}
CONTRIBUTING_SNIPPET:
{contributing}"""


COMPLEXITY_TEMPLATE = """You are reviewing an open-source codebase to judge how hard it is to contribute to.

Score each dimension from 0 (trivial) to 10 (extremely demanding):
- architecture_score: layering, module boundaries, structural depth
- abstraction_level: use of advanced language features, generics, metaprogramming, patterns
- domain_difficulty: how specialised the problem domain is
- setup_complexity: effort to get a working development environment
Then choose recommended_experience: beginner, intermediate or advanced.

PRIMARY LANGUAGE: {language}
TOPICS: {topics}
FILE_TREE_METRICS: {metrics}
FILE_TREE_SAMPLE: {tree_paths}

README:
{readme}

CONTRIBUTING:
{contributing}"""


TASKS_TEMPLATE = """Suggest concrete contribution tasks for this repository.

RULES:
1. Provide 3-6 beginner tasks (prefer low effort) and 3-6 intermediate tasks (medium effort).
2. Each task must be actionable, with a one-line "why".
3. If an open issue closely matches a task, set example_issue_title to its title.
4. Be concrete: mention files, paths or features from the inputs.
5. If beginner friendliness is below 30 and the recommended level is advanced, give at most 2 beginner tasks.

SUMMARY: {summary}
TECH_STACK: {tech_stack}
CONTRIBUTION_AREAS: {areas}
ISSUE_SAMPLES: {issue_samples}
SCORES: {scores}"""


SUITABILITY_TEMPLATE = """You are a strict filter for an open-source contribution platform. Reject repositories that are not suitable for meaningful code contributions.

REJECT:
- Learning material: algorithm collections, coding-challenge solutions, tutorials, courses, homework.
- Reference-only content: style guides, awesome lists, books, cheat sheets, resource compilations.
- Personal content: dotfiles, resumes, portfolios, blogs, personal notes.
- Empty, template or clearly abandoned repositories.

ACCEPT production libraries, frameworks, tools, applications and services with real users.
Do not reject a project because it is large, complex or hard for beginners.

DESCRIPTION: {description}
TOPICS: {topics}
FILE_STRUCTURE: {tree_paths}

README (first 4000 chars):
{readme}"""


def summary_prompt(*, readme: str, metadata: dict[str, Any]) -> str:
    return SUMMARY_TEMPLATE.format(readme=readme, metadata=_dump(metadata))


def tech_stack_prompt(*, readme: str, languages: list[str], topics: list[str]) -> str:
    return TECH_STACK_TEMPLATE.format(readme=readme, languages=_dump(languages), topics=_dump(topics))


def contribution_areas_prompt(
    *,
    issue_counts: dict[str, Any],
    issue_samples: list[dict[str, Any]],
    topics: list[str],
    summary: dict[str, Any],
    tech_stack: dict[str, Any],
    contributing: str,
) -> str:
    return CONTRIBUTION_AREAS_TEMPLATE.format(
        issue_counts=_dump(issue_counts),
        issue_samples=_dump(issue_samples),
        topics=_dump(topics),
        summary=_dump(summary),
        tech_stack=_dump(tech_stack),
        contributing=contributing or "(none)",
    )


def complexity_prompt(
    *,
    readme: str,
    language: str,
    topics: list[str],
    metrics: dict[str, Any] | None,
    tree_paths: list[str],
    contributing: str,
) -> str:
    return COMPLEXITY_TEMPLATE.format(
        readme=readme,
        language=language or "unknown",
        topics=_dump(topics),
        metrics=_dump(metrics or {}),
        tree_paths=_dump(tree_paths),
        contributing=contributing or "(none)",
    )


def tasks_prompt(
    *,
    summary: dict[str, Any],
    tech_stack: dict[str, Any],
    areas: list[dict[str, Any]],
    issue_samples: list[dict[str, Any]],
    scores: dict[str, Any],
) -> str:
    return TASKS_TEMPLATE.format(
        summary=_dump(summary),
        tech_stack=_dump(tech_stack),
        areas=_dump(areas),
        issue_samples=_dump(issue_samples),
        scores=_dump(scores),
    )


def suitability_prompt(*, readme: str, description: str, topics: list[str], tree_paths: list[str]) -> str:
    return SUITABILITY_TEMPLATE.format(
        readme=readme,
        description=description or "(none)",
        topics=", ".join(topics) or "(none)",
        tree_paths=", ".join(tree_paths) or "Not available",
    )
