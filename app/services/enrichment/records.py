"""In-memory view of a repository record as the enrichment job sees it."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Optional

STATUS_ACTIVE = "active"
STATUS_REJECTED = "rejected"

HEAVY_RAW_FIELDS = ("readme_raw", "contributing_raw", "code_of_conduct_raw")


@dataclass(slots=True)
class RepositoryRecord:
    repo_id: str
    repo_name: str
    owner: str
    repo_url: str = ""
    description: str = ""
    language: Optional[str] = None
    license: Optional[str] = None
    topics: list[str] = field(default_factory=list)
    stars: int = 0
    forks: int = 0
    contributors: int = 0
    is_archived: bool = False
    status: str = STATUS_ACTIVE
    activity: dict[str, Any] = field(default_factory=dict)
    issue_data: dict[str, Any] = field(default_factory=dict)
    issue_samples: list[dict[str, Any]] = field(default_factory=list)
    file_tree_metrics: Optional[dict[str, Any]] = None
    readme_raw: Optional[str] = None
    contributing_raw: Optional[str] = None
    code_of_conduct_raw: Optional[str] = None
    summary: Optional[str] = None
    summarization_attempts: int = 0
    last_summarization_error: Optional[str] = None
    last_summarization_attempt: Optional[datetime] = None

    @property
    def identifier(self) -> str:
        return f"{self.owner}/{self.repo_name}"

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "RepositoryRecord":
        values = {name: raw.get(name) for name in cls.__dataclass_fields__ if name in raw}
        for name in ("topics", "issue_samples"):
            values[name] = list(values.get(name) or [])
        for name in ("activity", "issue_data"):
            values[name] = dict(values.get(name) or {})
        for name in ("stars", "forks", "contributors", "summarization_attempts"):
            values[name] = int(values.get(name) or 0)
        values["description"] = values.get("description") or ""
        values["status"] = values.get("status") or STATUS_ACTIVE
        return cls(**values)

    @classmethod
    def from_row(cls, row: Any) -> "RepositoryRecord":
        return cls.from_mapping({name: getattr(row, name, None) for name in cls.__dataclass_fields__})

    def activity_value(self, name: str) -> Optional[float]:
        value = self.activity.get(name)
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None


def is_enrichment_candidate(record: RepositoryRecord, *, max_attempts: int) -> bool:
    missing_summary = not (record.summary or "").strip()
    missing_metrics = record.file_tree_metrics is None
    return (
        (missing_summary or missing_metrics)
        and record.status != STATUS_REJECTED
        and record.summarization_attempts < max_attempts
    )
