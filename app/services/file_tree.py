"""Structural metrics derived from a repository file tree."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import re
from typing import Any, Iterable, Mapping, Optional

_TEST_PATTERNS = (
    re.compile(r"test", re.IGNORECASE),
    re.compile(r"spec", re.IGNORECASE),
    re.compile(r"__tests__"),
    re.compile(r"\.test\."),
    re.compile(r"\.spec\."),
    re.compile(r"cypress", re.IGNORECASE),
    re.compile(r"jest\.config"),
    re.compile(r"vitest\.config"),
)
_TEST_RATIO_PATTERNS = (
    re.compile(r"test", re.IGNORECASE),
    re.compile(r"spec", re.IGNORECASE),
    re.compile(r"__tests__"),
)
_DOC_PATTERNS = (
    re.compile(r"^docs?/"),
    re.compile(r"^documentation/"),
    re.compile(r"\.md$", re.IGNORECASE),
)
_CI_PATTERNS = (
    re.compile(r"\.github/workflows"),
    re.compile(r"\.gitlab-ci"),
    re.compile(r"\.travis\.yml"),
    re.compile(r"Jenkinsfile"),
    re.compile(r"\.circleci"),
    re.compile(r"azure-pipelines"),
)
_MONOREPO_PATTERNS = (
    re.compile(r"^packages/"),
    re.compile(r"^apps/"),
    re.compile(r"lerna\.json"),
    re.compile(r"pnpm-workspace\.yaml"),
    re.compile(r"workspace"),
)
_CONFIG_PATTERNS = (
    re.compile(r"webpack\.config"),
    re.compile(r"vite\.config"),
    re.compile(r"rollup\.config"),
    re.compile(r"tsconfig\.json"),
    re.compile(r"babel\.config"),
    re.compile(r"\.eslintrc"),
    re.compile(r"\.prettierrc"),
    re.compile(r"jest\.config"),
    re.compile(r"vitest\.config"),
    re.compile(r"playwright\.config"),
    re.compile(r"cypress\.config"),
    re.compile(r"docker-compose"),
    re.compile(r"Dockerfile"),
    re.compile(r"\.env"),
    re.compile(r"Makefile"),
)
_LOCK_PATTERNS = (
    re.compile(r"package-lock\.json"),
    re.compile(r"yarn\.lock"),
    re.compile(r"pnpm-lock\.yaml"),
    re.compile(r"Gemfile\.lock"),
    re.compile(r"Cargo\.lock"),
    re.compile(r"composer\.lock"),
    re.compile(r"poetry\.lock"),
    re.compile(r"Pipfile\.lock"),
    re.compile(r"go\.sum"),
)

MAX_BUILD_COMPLEXITY = 10.0


@dataclass(slots=True)
class FileTreeMetrics:
    total_files: int = 0
    total_directories: int = 0
    max_depth: int = 0
    avg_depth: float = 0.0
    has_tests: bool = False
    has_docs: bool = False
    has_ci: bool = False
    has_monorepo: bool = False
    config_files: list[str] = field(default_factory=list)
    lock_files: list[str] = field(default_factory=list)
    build_complexity: float = 0.0
    test_to_code_ratio: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Optional[Mapping[str, Any]]) -> Optional["FileTreeMetrics"]:
        if not raw:
            return None
        known = {name: raw[name] for name in cls.__dataclass_fields__ if name in raw}
        return cls(**known)


def _matches(path: str, patterns: Iterable[re.Pattern]) -> bool:
    return any(pattern.search(path) for pattern in patterns)


def _depth(path: str) -> int:
    return len(path.split("/"))


def analyze_file_tree(entries: Iterable[Mapping[str, Any]]) -> FileTreeMetrics:
    """Compute metrics over flat `{name, path, type}` entries (`type` is `tree` or `blob`)."""

    nodes = [
        (str(entry.get("path") or entry.get("name") or ""), entry.get("type"))
        for entry in entries or []
    ]
    nodes = [(path, kind) for path, kind in nodes if path]
    if not nodes:
        return FileTreeMetrics()

    files = [path for path, kind in nodes if kind == "blob"]
    directories = [path for path, kind in nodes if kind == "tree"]
    paths = [path for path, _ in nodes]

    config_files = [path.rsplit("/", 1)[-1] for path in files if _matches(path, _CONFIG_PATTERNS)]
    lock_files = [path.rsplit("/", 1)[-1] for path in files if _matches(path, _LOCK_PATTERNS)]
    has_monorepo = any(_matches(path, _MONOREPO_PATTERNS) for path in paths)

    test_files = [path for path in files if _matches(path, _TEST_RATIO_PATTERNS)]

    return FileTreeMetrics(
        total_files=len(files),
        total_directories=len(directories),
        max_depth=max(_depth(path) for path in paths),
        avg_depth=(sum(_depth(path) for path in files) / len(files)) if files else 0.0,
        has_tests=any(_matches(path, _TEST_PATTERNS) for path in paths),
        has_docs=any(_matches(path, _DOC_PATTERNS) for path in paths),
        has_ci=any(_matches(path, _CI_PATTERNS) for path in paths),
        has_monorepo=has_monorepo,
        config_files=config_files,
        lock_files=lock_files,
        build_complexity=_build_complexity(paths, config_files, has_monorepo),
        test_to_code_ratio=(len(test_files) / len(files)) if files else 0.0,
    )


def _build_complexity(paths: list[str], config_files: list[str], has_monorepo: bool) -> float:
    complexity = min(len(config_files) * 0.5, 3.0)
    if any("Dockerfile" in path for path in paths):
        complexity += 1.5
    if any("docker-compose" in path for path in paths):
        complexity += 2.0
    if any("Makefile" in path for path in paths):
        complexity += 1.0
    if len(config_files) > 3:
        complexity += 1.5
    if has_monorepo:
        complexity += 2.0
    return min(complexity, MAX_BUILD_COMPLEXITY)


def file_tree_paths(entries: Iterable[Mapping[str, Any]], *, max_depth: int = 3, max_items: int = 100) -> list[str]:
    """Sorted shallow path listing used as model context."""
    paths = [
        str(entry.get("path"))
        for entry in entries or []
        if entry.get("path") and _depth(str(entry.get("path"))) <= max_depth
    ]
    return sorted(paths[:max_items])
