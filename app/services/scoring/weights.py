"""Dimension weights and classification tables for rule scoring."""

import math

BEGINNER_WEIGHTS = {
    "documentation": 0.20,
    "issue_labels": 0.20,
    "community_response": 0.15,
    "community_size": 0.15,
    "codebase_simplicity": 0.15,
    "setup_ease": 0.15,
}

COMPLEXITY_WEIGHTS = {
    "codebase_size": 0.20,
    "architecture_depth": 0.20,
    "dependencies": 0.15,
    "language_features": 0.15,
    "domain_difficulty": 0.15,
    "setup_complexity": 0.15,
}

CONTRIBUTION_WEIGHTS = {
    "issue_quality": 0.20,
    "pr_activity": 0.20,
    "maintainer_response": 0.15,
    "test_coverage": 0.15,
    "cicd": 0.15,
    "documentation_quality": 0.15,
}

OVERALL_WEIGHTS = {
    "beginner": 0.35,
    "ease": 0.25,
    "contribution": 0.40,
}

# (upper bound in hours, score)
ISSUE_RESPONSE_BUCKETS = ((24, 90.0), (48, 75.0), (168, 60.0), (math.inf, 40.0))
PR_MERGE_BUCKETS = ((24, 100.0), (48, 80.0), (168, 60.0), (720, 40.0), (math.inf, 20.0))

ADVANCED_LANGUAGES = frozenset({"rust", "haskell", "scala", "c++", "go", "c", "ocaml", "elixir", "erlang", "zig"})
BEGINNER_LANGUAGES = frozenset({"python", "javascript", "html", "css", "markdown", "ruby"})
COMPLEX_DEPENDENCY_LANGUAGES = frozenset({"javascript", "typescript", "java", "rust", "kotlin", "scala"})

COMPLEX_DOMAINS = (
    "compiler",
    "operating-system",
    "database",
    "blockchain",
    "machine-learning",
    "crypto",
    "kernel",
    "distributed-systems",
    "virtualization",
    "graphics",
    "emulator",
)
SIMPLE_DOMAINS = (
    "website",
    "portfolio",
    "documentation",
    "todo",
    "template",
    "starter",
    "landing-page",
    "cli-tool",
)
