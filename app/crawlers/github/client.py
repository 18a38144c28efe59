"""Async GitHub REST client used to fetch community files and file trees."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import time
from typing import Any, Optional
from urllib.parse import quote

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config.settings import settings
from app.crawlers.github.contracts import (
    ContentContract,
    FetchResult,
    FetchState,
    RepoContract,
    TreeContract,
)
from app.services.log_sanitizer import sanitize_log_extra
from app.services.scheduling.queues import CallBudgetQueue

logger = logging.getLogger(__name__)

TREE_ENTRY_TYPES = ("tree", "blob")


class GitHubRateLimited(Exception):
    """Raised inside the retry loop when GitHub asks us to slow down."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"GitHub rate limit hit (HTTP {status_code})")
        self.status_code = status_code


def is_rate_limited(response: httpx.Response) -> bool:
    """429 always; 403 only when GitHub says the quota is spent."""
    if response.status_code == 429:
        return True
    if response.status_code != 403:
        return False
    return response.headers.get("x-ratelimit-remaining") == "0" or "retry-after" in response.headers


def rate_limit_wait_seconds(headers: httpx.Headers, *, buffer_seconds: float, fallback_seconds: float) -> float:
    """Seconds to wait before retrying, from `retry-after` or the quota reset epoch."""
    retry_after = headers.get("retry-after")
    if retry_after is not None:
        try:
            return max(float(retry_after), 0.0)
        except ValueError:
            logger.debug("Ignoring non-numeric retry-after header", extra={"retry_after": retry_after})

    reset_at = headers.get("x-ratelimit-reset")
    if reset_at is not None and reset_at.isdigit():
        return max(int(reset_at) - time.time() + buffer_seconds, 0.0)

    return fallback_seconds


def decode_content(payload: Any) -> Optional[str]:
    """Text of a contents-API payload; `None` when it cannot be decoded."""
    if not isinstance(payload, dict):
        return ""
    content = payload.get("content")
    if not isinstance(content, str) or not content:
        return ""
    if payload.get("encoding") != "base64":
        return content
    try:
        return base64.b64decode(content).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError):
        return None


def flatten_tree(raw_entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Git tree entries as `{name, path, type}`; submodules and symlink targets are dropped."""
    entries = []
    for entry in raw_entries:
        path = str(entry.get("path") or "")
        if not path or entry.get("type") not in TREE_ENTRY_TYPES:
            continue
        entries.append({"name": path.rsplit("/", 1)[-1], "path": path, "type": entry["type"]})
    return entries


def _relay(result: FetchResult[Any]) -> FetchResult[Any]:
    """Carry a non-OK outcome of an intermediate request to the caller."""
    return FetchResult(state=result.state, error=result.error, status_code=result.status_code)


class GitHubClient:
    """Read-only GitHub client.

    Every request is admitted through the shared GitHub budget queue when
    one is given. 404 maps to EMPTY, rate limits are retried with backoff,
    and any other failure comes back as a FAILED contract instead of raising.
    """

    BASE_URL = "https://api.github.com"
    API_VERSION = "2022-11-28"
    ACCEPT_JSON = "application/vnd.github+json"

    def __init__(
        self,
        *,
        token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
        rate_limit_buffer_seconds: Optional[int] = None,
        base_url: Optional[str] = None,
        transport: Optional[Any] = None,
        request_queue: Optional[CallBudgetQueue] = None,
    ) -> None:
        self._token = token or settings.GITHUB_TOKEN
        self._timeout_seconds = timeout_seconds or settings.GITHUB_TIMEOUT_SECONDS
        self._max_retries = max_retries or settings.GITHUB_MAX_RETRIES
        self._backoff_base_seconds = backoff_base_seconds or settings.GITHUB_BACKOFF_BASE_SECONDS
        self._backoff_max_seconds = backoff_max_seconds or settings.GITHUB_BACKOFF_MAX_SECONDS
        self._rate_limit_buffer_seconds = rate_limit_buffer_seconds or settings.GITHUB_RATE_LIMIT_BUFFER_SECONDS
        self._base_url = base_url or self.BASE_URL
        self._transport = transport
        self._request_queue = request_queue
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "GitHubClient":
        self._http()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get_repo(self, owner: str, repo: str) -> RepoContract:
        return await self._get_json(f"/repos/{owner}/{repo}")

    async def get_readme(self, owner: str, repo: str) -> ContentContract:
        return await self._get_text(f"/repos/{owner}/{repo}/readme")

    async def get_content(self, owner: str, repo: str, path: str) -> ContentContract:
        return await self._get_text(f"/repos/{owner}/{repo}/contents/{quote(path)}")

    async def path_exists(self, owner: str, repo: str, path: str) -> bool:
        result = await self._request(f"/repos/{owner}/{repo}/contents/{quote(path)}")
        return result.is_ok

    async def get_tree(self, owner: str, repo: str, *, branch: Optional[str] = None) -> TreeContract:
        """Recursive tree of `branch`, or of the default branch when none is given."""

        if not branch:
            repo_result = await self.get_repo(owner, repo)
            if not repo_result.is_ok:
                return _relay(repo_result)
            branch = (repo_result.data or {}).get("default_branch") or "main"

        branch_result = await self._get_json(f"/repos/{owner}/{repo}/branches/{quote(branch)}")
        if not branch_result.is_ok:
            return _relay(branch_result)

        head = (branch_result.data or {}).get("commit") or {}
        tree_sha = ((head.get("commit") or {}).get("tree") or {}).get("sha") or head.get("sha")
        if not tree_sha:
            return FetchResult(state=FetchState.EMPTY, data=[])

        tree_result = await self._get_json(f"/repos/{owner}/{repo}/git/trees/{tree_sha}", params={"recursive": "1"})
        if not tree_result.is_ok:
            return _relay(tree_result)

        entries = flatten_tree((tree_result.data or {}).get("tree") or [])
        state = FetchState.OK if entries else FetchState.EMPTY
        return FetchResult(state=state, data=entries, status_code=tree_result.status_code)

    async def _get_text(self, path: str) -> ContentContract:
        result = await self._request(path)
        if not result.is_ok:
            return FetchResult(state=result.state, etag=result.etag, status_code=result.status_code, error=result.error)

        text = decode_content(result.data)
        if text is None:
            return FetchResult(
                state=FetchState.FAILED,
                error=f"Undecodable base64 content at {path}",
                etag=result.etag,
                status_code=result.status_code,
            )
        state = FetchState.OK if text.strip() else FetchState.EMPTY
        return FetchResult(state=state, data=text, etag=result.etag, status_code=result.status_code)

    async def _get_json(self, path: str, *, params: Optional[dict[str, Any]] = None) -> FetchResult[Any]:
        result = await self._request(path, params=params)
        if result.is_ok and not result.data:
            result.state = FetchState.EMPTY
        return result

    async def _request(self, path: str, *, params: Optional[dict[str, Any]] = None) -> FetchResult[Any]:
        if self._request_queue is None:
            return await self._send(path, params)
        async with self._request_queue.slot():
            return await self._send(path, params)

    async def _send(self, path: str, params: Optional[dict[str, Any]]) -> FetchResult[Any]:
        client = self._http()
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=self._backoff_base_seconds, max=self._backoff_max_seconds),
            retry=retry_if_exception_type(GitHubRateLimited),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await client.get(path, params=params)
                    if response.status_code == 404:
                        return FetchResult(state=FetchState.EMPTY, status_code=404)
                    if is_rate_limited(response):
                        await self._wait_out_rate_limit(path, response)
                        raise GitHubRateLimited(response.status_code)
                    response.raise_for_status()
                    return FetchResult(
                        state=FetchState.OK,
                        data=response.json(),
                        etag=response.headers.get("etag"),
                        status_code=response.status_code,
                    )
        except GitHubRateLimited as exc:
            logger.warning("GitHub rate limit retries exhausted", extra=sanitize_log_extra(path=path, error=str(exc)))
            return FetchResult(state=FetchState.FAILED, error=str(exc), status_code=429)
        except httpx.HTTPError as exc:
            response = getattr(exc, "response", None)
            status_code = response.status_code if response is not None else None
            logger.warning(
                "GitHub request failed",
                extra=sanitize_log_extra(path=path, error=str(exc), status_code=status_code),
            )
            return FetchResult(state=FetchState.FAILED, error=str(exc), status_code=status_code)
        return FetchResult(state=FetchState.FAILED, error=f"No response for {path}")

    async def _wait_out_rate_limit(self, path: str, response: httpx.Response) -> None:
        wait_seconds = rate_limit_wait_seconds(
            response.headers,
            buffer_seconds=self._rate_limit_buffer_seconds,
            fallback_seconds=self._backoff_base_seconds,
        )
        logger.warning(
            "GitHub rate limit hit",
            extra=sanitize_log_extra(path=path, status_code=response.status_code, retry_after_seconds=wait_seconds),
        )
        if wait_seconds > 0:
            await asyncio.sleep(wait_seconds)

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {
                "Accept": self.ACCEPT_JSON,
                "User-Agent": settings.USER_AGENT,
                "X-GitHub-Api-Version": self.API_VERSION,
            }
            if self._token:
                headers["Authorization"] = f"Bearer {self._token}"
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=headers,
                timeout=self._timeout_seconds,
                transport=self._transport,
            )
        return self._client
