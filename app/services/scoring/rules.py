"""Deterministic repository scoring from structural and activity signals."""

from __future__ import annotations

import math
from typing import Optional

from app.services.scoring.types import ScoreResult, ScoringSignals
from app.services.scoring.utils import (
    latency_bucket,
    log_normalize,
    overall_score,
    recommended_level,
    sigmoid,
    sub_score,
    weighted_score,
)
from app.services.scoring.weights import (
    ADVANCED_LANGUAGES,
    BEGINNER_LANGUAGES,
    BEGINNER_WEIGHTS,
    COMPLEX_DEPENDENCY_LANGUAGES,
    COMPLEX_DOMAINS,
    COMPLEXITY_WEIGHTS,
    CONTRIBUTION_WEIGHTS,
    ISSUE_RESPONSE_BUCKETS,
    PR_MERGE_BUCKETS,
    SIMPLE_DOMAINS,
)

NEUTRAL = 50.0


def _language(signals: ScoringSignals) -> str:
    return (signals.language or "").strip().lower()


# Beginner friendliness


def documentation_score(signals: ScoringSignals) -> float:
    score = 40.0 if signals.readme_length > 500 else min(15.0, 15.0 * signals.readme_length / 500)
    if signals.has_contributing:
        score += 30
    if len(signals.description or "") > 50:
        score += 15
    if signals.has_code_of_conduct:
        score += 15
    return sub_score(score)


def issue_label_score(signals: ScoringSignals) -> float:
    good_first = signals.issue_count("good_first_issue_count")
    score = 0.0
    if good_first > 0:
        score += 40
        if good_first >= 5:
            score += 10
    if signals.issue_count("help_wanted_count") > 0:
        score += 25
    if signals.issue_count("beginner_count") + signals.issue_count("first_timers_count") > 0:
        score += 25
    return sub_score(score)


def response_score(signals: ScoringSignals) -> float:
    """Issue-response latency bucket blended with maintainer activity (0-1)."""
    score = latency_bucket(signals.avg_issue_response_hours, ISSUE_RESPONSE_BUCKETS, NEUTRAL)
    if signals.maintainer_activity_score is not None:
        activity = max(0.0, min(1.0, float(signals.maintainer_activity_score)))
        score = (score + activity * 100) / 2
    return sub_score(score)


def community_size_score(signals: ScoringSignals) -> float:
    contributors = signals.contributors or 0
    if contributors < 2:
        score = 10.0
    elif contributors < 10:
        score = 40.0 + (contributors - 2) * 5
    elif contributors <= 50:
        score = 100.0
    elif contributors <= 200:
        score = 80.0
    else:
        score = 60.0

    if signals.stars > 50_000:
        score *= 0.7
    elif signals.stars > 10_000:
        score *= 0.85
    return sub_score(score)


def codebase_simplicity_score(signals: ScoringSignals) -> float:
    metrics = signals.file_tree
    if metrics is not None:
        score = 100.0
        if metrics.total_files > 1000:
            score -= 40
        elif metrics.total_files > 300:
            score -= 25
        elif metrics.total_files > 100:
            score -= 10
        score -= max(0, metrics.max_depth - 3) * 8
        if metrics.has_monorepo:
            score -= 20
        return sub_score(score)

    if signals.analysis is not None:
        analysis = signals.analysis
        average = (analysis.architecture_score + analysis.abstraction_level + analysis.domain_difficulty) / 3
        return sub_score(100 - average * 10)

    return NEUTRAL


def setup_ease_score(signals: ScoringSignals) -> float:
    if signals.file_tree is not None:
        return sub_score(100 - signals.file_tree.build_complexity * 8)
    if signals.analysis is not None:
        return sub_score(100 - signals.analysis.setup_complexity * 10)
    return NEUTRAL


def beginner_breakdown(signals: ScoringSignals) -> dict[str, float]:
    return {
        "documentation": documentation_score(signals),
        "issue_labels": issue_label_score(signals),
        "community_response": response_score(signals),
        "community_size": community_size_score(signals),
        "codebase_simplicity": codebase_simplicity_score(signals),
        "setup_ease": setup_ease_score(signals),
    }


# Technical complexity


def codebase_size_score(signals: ScoringSignals) -> float:
    metrics = signals.file_tree
    if metrics is None:
        proxy = (log_normalize(signals.stars) + log_normalize(signals.contributors)) / 2
        return sub_score(proxy * 100)

    files = metrics.total_files
    if files < 50:
        return 15.0
    if files < 200:
        return 35.0
    if files < 500:
        return 55.0
    if files < 1000:
        return 75.0
    return sub_score(75 + 25 * min(1.0, math.log10(files / 1000 + 1) / math.log10(11)))


def architecture_depth_score(signals: ScoringSignals) -> float:
    metrics = signals.file_tree
    if metrics is not None:
        score = metrics.max_depth * 8 + metrics.avg_depth * 6
        if metrics.has_monorepo:
            score += 25
        return sub_score(score)
    if signals.analysis is not None:
        return sub_score(signals.analysis.architecture_score * 10)
    return NEUTRAL


def dependency_score(signals: ScoringSignals) -> float:
    metrics = signals.file_tree
    language_bonus = 10.0 if _language(signals) in COMPLEX_DEPENDENCY_LANGUAGES else 0.0
    if metrics is None:
        return sub_score(40 + language_bonus)

    score = 30.0
    if metrics.lock_files:
        score += 20
        if len(metrics.lock_files) > 1:
            score += 15
    if len(metrics.config_files) > 3:
        score += 20
    return sub_score(score + language_bonus)


def language_features_score(signals: ScoringSignals) -> float:
    score = signals.analysis.abstraction_level * 10 if signals.analysis is not None else NEUTRAL
    language = _language(signals)
    if language in ADVANCED_LANGUAGES:
        score += 20
    elif language in BEGINNER_LANGUAGES:
        score -= 15
    return sub_score(score)


def domain_difficulty_score(signals: ScoringSignals) -> float:
    score = signals.analysis.domain_difficulty * 10 if signals.analysis is not None else NEUTRAL
    topics = [topic.lower() for topic in signals.topics or []]
    if any(domain in topic for topic in topics for domain in COMPLEX_DOMAINS):
        score += 30
    elif any(domain in topic for topic in topics for domain in SIMPLE_DOMAINS):
        score -= 20
    return sub_score(score)


def setup_complexity_score(signals: ScoringSignals) -> float:
    if signals.file_tree is not None:
        return sub_score(signals.file_tree.build_complexity * 10)
    if signals.analysis is not None:
        return sub_score(signals.analysis.setup_complexity * 10)
    return NEUTRAL


def complexity_breakdown(signals: ScoringSignals) -> dict[str, float]:
    return {
        "codebase_size": codebase_size_score(signals),
        "architecture_depth": architecture_depth_score(signals),
        "dependencies": dependency_score(signals),
        "language_features": language_features_score(signals),
        "domain_difficulty": domain_difficulty_score(signals),
        "setup_complexity": setup_complexity_score(signals),
    }


# Contribution readiness


def issue_quality_score(signals: ScoringSignals) -> float:
    total = signals.open_issues
    if total <= 0:
        return 40.0

    labeled = sum(
        signals.issue_count(name)
        for name in ("good_first_issue_count", "help_wanted_count", "bug_count", "enhancement_count")
    )
    ratio = min(1.0, labeled / total)
    diversity = sum(
        1 for name in ("bug_count", "enhancement_count", "documentation_count") if signals.issue_count(name) > 0
    )

    if 5 <= total <= 30:
        sweet_spot = 30.0
    elif 30 < total <= 100:
        sweet_spot = 20.0
    elif total > 100:
        sweet_spot = 10.0
    else:
        sweet_spot = 5.0

    return sub_score(ratio * 40 + diversity / 3 * 30 + sweet_spot)


def pr_activity_score(signals: ScoringSignals) -> float:
    ratio = signals.pr_merge_ratio or 0.0
    ratio_score = sigmoid(ratio * 100, 70, 0.08) * 100
    latency_score = latency_bucket(signals.avg_pr_merge_hours, PR_MERGE_BUCKETS, 20.0)
    return sub_score(ratio_score * 0.5 + latency_score * 0.5)


def test_coverage_score(signals: ScoringSignals) -> float:
    metrics = signals.file_tree
    if metrics is None:
        return 40.0
    ratio = metrics.test_to_code_ratio
    if ratio >= 0.3:
        return 100.0
    if ratio >= 0.15:
        return 80.0
    if ratio >= 0.05:
        return 60.0
    if ratio > 0:
        return 40.0
    return 30.0 if metrics.has_tests else 10.0


def cicd_score(signals: ScoringSignals) -> float:
    if signals.file_tree is None:
        return 40.0
    return 90.0 if signals.file_tree.has_ci else 30.0


def documentation_quality_score(signals: ScoringSignals) -> float:
    length = signals.readme_length
    if length > 5000:
        score = 50.0
    elif length > 2000:
        score = 40.0
    elif length > 500:
        score = 30.0
    elif length > 0:
        score = 10.0
    else:
        score = 0.0
    if signals.has_contributing:
        score += 25
    if signals.file_tree is not None and signals.file_tree.has_docs:
        score += 15
    if signals.has_issue_templates:
        score += 10
    return sub_score(score)


def contribution_breakdown(signals: ScoringSignals) -> dict[str, float]:
    return {
        "issue_quality": issue_quality_score(signals),
        "pr_activity": pr_activity_score(signals),
        "maintainer_response": response_score(signals),
        "test_coverage": test_coverage_score(signals),
        "cicd": cicd_score(signals),
        "documentation_quality": documentation_quality_score(signals),
    }


def rule_confidence(signals: ScoringSignals) -> float:
    confidence = 0.3
    if signals.readme_length > 1000:
        confidence += 0.15
    if signals.has_contributing:
        confidence += 0.15
    if signals.file_tree is not None:
        confidence += 0.15
    if signals.open_issues > 5:
        confidence += 0.10
    if signals.pr_merge_ratio:
        confidence += 0.15
    return round(min(confidence, 1.0), 2)


def score_with_rules(signals: Optional[ScoringSignals]) -> ScoreResult:
    """Total: any signals, including all-default ones, produce a complete bounded result."""

    signals = signals or ScoringSignals()
    beginner = beginner_breakdown(signals)
    complexity = complexity_breakdown(signals)
    contribution = contribution_breakdown(signals)

    bf = weighted_score(beginner, BEGINNER_WEIGHTS)
    tc = weighted_score(complexity, COMPLEXITY_WEIGHTS)
    cr = weighted_score(contribution, CONTRIBUTION_WEIGHTS)

    return ScoreResult(
        beginner_friendliness=bf,
        technical_complexity=tc,
        contribution_readiness=cr,
        overall_score=overall_score(bf, tc, cr),
        recommended_level=recommended_level(bf, tc),
        confidence=rule_confidence(signals),
        score_breakdown={"beginner": beginner, "complexity": complexity, "contribution": contribution},
        scoring_method="fallback",
    )
