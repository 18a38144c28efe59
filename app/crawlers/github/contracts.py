"""Typed fetch contracts returned by the GitHub client."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

T = TypeVar("T")


class FetchState(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass(slots=True)
class FetchResult(Generic[T]):
    """Outcome of one GitHub fetch, never raised."""

    state: FetchState
    data: Optional[T] = None
    etag: Optional[str] = None
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_ok(self) -> bool:
        return self.state == FetchState.OK

    @property
    def is_failed(self) -> bool:
        return self.state == FetchState.FAILED


RepoContract = FetchResult[dict[str, Any]]
ContentContract = FetchResult[str]
TreeContract = FetchResult[list[dict[str, Any]]]
