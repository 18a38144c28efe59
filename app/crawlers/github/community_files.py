"""Fetches README, community docs and the file tree for one repository."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import re
from typing import Any, Optional, Sequence

from app.config.settings import settings
from app.crawlers.github.client import GitHubClient
from app.services.log_sanitizer import sanitize_log_extra

logger = logging.getLogger(__name__)

CONTRIBUTING_PATHS = (
    "CONTRIBUTING.md",
    "CONTRIBUTING",
    ".github/CONTRIBUTING.md",
    "docs/CONTRIBUTING.md",
)
CODE_OF_CONDUCT_PATHS = (
    "CODE_OF_CONDUCT.md",
    "CODE_OF_CONDUCT",
    ".github/CODE_OF_CONDUCT.md",
    "docs/CODE_OF_CONDUCT.md",
)
ISSUE_TEMPLATE_PATHS = (
    ".github/ISSUE_TEMPLATE",
    ".github/ISSUE_TEMPLATE.md",
    "ISSUE_TEMPLATE",
    "ISSUE_TEMPLATE.md",
)

_MARKDOWN_IMAGE = re.compile(r"!\[[^\]]*\]\([^)]*\)")
_HTML_IMAGE = re.compile(r"<img\b[^>]*>", re.IGNORECASE)
_HTML_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
_BLANK_RUN = re.compile(r"\n{3,}")


def clean_markdown(text: Optional[str]) -> str:
    """Strip images, badges and comments that only cost model tokens."""
    if not text:
        return ""
    cleaned = _HTML_COMMENT.sub("", text)
    cleaned = _MARKDOWN_IMAGE.sub("", cleaned)
    cleaned = _HTML_IMAGE.sub("", cleaned)
    cleaned = _BLANK_RUN.sub("\n\n", cleaned)
    return cleaned.strip()


def split_identifier(identifier: str) -> tuple[str, str]:
    """`owner/name` (or a github.com URL) into its two parts."""
    value = identifier.strip().rstrip("/")
    if value.endswith(".git"):
        value = value[:-4]
    if "github.com/" in value:
        value = value.split("github.com/", 1)[1]
    parts = [part for part in value.split("/") if part]
    if len(parts) < 2:
        raise ValueError(f"Invalid repository identifier: {identifier}")
    return parts[0], parts[1]


@dataclass(slots=True)
class CommunityFiles:
    readme: Optional[str] = None
    contributing: Optional[str] = None
    code_of_conduct: Optional[str] = None
    has_issue_templates: bool = False
    file_tree: list[dict[str, Any]] = field(default_factory=list)

    @property
    def community_health(self) -> dict[str, bool]:
        return {
            "has_readme": bool(self.readme),
            "has_contributing": bool(self.contributing),
            "has_code_of_conduct": bool(self.code_of_conduct),
            "has_issue_templates": self.has_issue_templates,
        }


class CommunityFilesFetcher:
    """Parallel fetch of the repository documents the enrichment job needs."""

    def __init__(self, client: GitHubClient, *, max_tree_depth: Optional[int] = None) -> None:
        self._client = client
        self._max_tree_depth = max_tree_depth or settings.GITHUB_FILE_TREE_MAX_DEPTH

    async def fetch_community_files(self, identifier: str) -> CommunityFiles:
        owner, repo = split_identifier(identifier)
        readme, contributing, code_of_conduct, has_templates, tree = await asyncio.gather(
            self._fetch_readme(owner, repo),
            self._fetch_first(owner, repo, CONTRIBUTING_PATHS),
            self._fetch_first(owner, repo, CODE_OF_CONDUCT_PATHS),
            self._has_any(owner, repo, ISSUE_TEMPLATE_PATHS),
            self._fetch_tree(owner, repo),
        )
        logger.info(
            "Fetched community files",
            extra=sanitize_log_extra(
                repo=f"{owner}/{repo}",
                has_readme=bool(readme),
                has_contributing=bool(contributing),
                has_code_of_conduct=bool(code_of_conduct),
                tree_entries=len(tree),
            ),
        )
        return CommunityFiles(
            readme=readme,
            contributing=contributing,
            code_of_conduct=code_of_conduct,
            has_issue_templates=has_templates,
            file_tree=tree,
        )

    async def _fetch_readme(self, owner: str, repo: str) -> Optional[str]:
        result = await self._client.get_readme(owner, repo)
        if not result.is_ok:
            return None
        return clean_markdown(result.data) or None

    async def _fetch_first(self, owner: str, repo: str, paths: Sequence[str]) -> Optional[str]:
        for path in paths:
            result = await self._client.get_content(owner, repo, path)
            if result.is_ok and result.data:
                return clean_markdown(result.data) or None
        return None

    async def _has_any(self, owner: str, repo: str, paths: Sequence[str]) -> bool:
        for path in paths:
            if await self._client.path_exists(owner, repo, path):
                return True
        return False

    async def _fetch_tree(self, owner: str, repo: str) -> list[dict[str, Any]]:
        result = await self._client.get_tree(owner, repo)
        if not result.is_ok:
            return []
        return [
            entry
            for entry in result.data or []
            if entry["path"].count("/") + 1 <= self._max_tree_depth
        ]
