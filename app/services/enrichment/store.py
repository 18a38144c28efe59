"""Persistence seam for enrichment: candidate selection and atomic field updates."""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Callable, Iterable, Mapping, Optional, Protocol

from sqlalchemy import func, or_, update

from app.config.database import SessionLocal
from app.models.repository import Repository
from app.services.enrichment.records import STATUS_REJECTED, RepositoryRecord
from app.services.log_sanitizer import sanitize_log_extra
from app.services.scheduling.queues import is_retry_due

logger = logging.getLogger(__name__)

_COLUMNS = frozenset(column.name for column in Repository.__table__.columns)
_PROTECTED = frozenset({"id", "repo_id"})


class RecordStore(Protocol):
    def find_enrichment_candidates(
        self,
        *,
        max_attempts: int,
        limit: int,
        now: Optional[datetime] = None,
        retry_base_delay_seconds: Optional[float] = None,
    ) -> list[RepositoryRecord]: ...

    def update_fields(
        self,
        repo_id: str,
        *,
        set_fields: Optional[Mapping[str, Any]] = None,
        unset_fields: Iterable[str] = (),
        increment_fields: Optional[Mapping[str, int]] = None,
    ) -> bool: ...

    def find_failed(self, *, limit: int) -> list[RepositoryRecord]: ...

    def retry_distribution(self) -> dict[int, int]: ...


def validate_field_names(names: Iterable[str]) -> None:
    unknown = [name for name in names if name not in _COLUMNS or name in _PROTECTED]
    if unknown:
        raise ValueError(f"Unknown or protected repository fields: {sorted(unknown)}")


class SQLAlchemyRecordStore:
    """`RecordStore` over the `repositories` table."""

    def __init__(self, session_factory: Callable[[], Any] = SessionLocal) -> None:
        self._session_factory = session_factory

    def find_enrichment_candidates(
        self,
        *,
        max_attempts: int,
        limit: int,
        now: Optional[datetime] = None,
        retry_base_delay_seconds: Optional[float] = None,
    ) -> list[RepositoryRecord]:
        """Records missing enrichment, fewest attempts first then most stars, that are due for a retry."""

        current = now or datetime.utcnow()
        db = self._session_factory()
        try:
            query = (
                db.query(Repository)
                .filter(
                    or_(
                        Repository.summary.is_(None),
                        func.trim(Repository.summary) == "",
                        Repository.file_tree_metrics.is_(None),
                    ),
                    Repository.status != STATUS_REJECTED,
                    Repository.summarization_attempts < max_attempts,
                )
                .order_by(Repository.summarization_attempts.asc(), Repository.stars.desc())
            )

            selected: list[RepositoryRecord] = []
            skipped_not_due = 0
            for row in query.yield_per(200):
                if not is_retry_due(
                    row.summarization_attempts or 0,
                    row.last_summarization_attempt,
                    now=current,
                    base_delay_seconds=retry_base_delay_seconds,
                ):
                    skipped_not_due += 1
                    continue
                selected.append(RepositoryRecord.from_row(row))
                if len(selected) >= limit:
                    break

            if skipped_not_due:
                logger.info(
                    "Skipped records still in retry backoff",
                    extra=sanitize_log_extra(skipped=skipped_not_due),
                )
            return selected
        finally:
            db.close()

    def update_fields(
        self,
        repo_id: str,
        *,
        set_fields: Optional[Mapping[str, Any]] = None,
        unset_fields: Iterable[str] = (),
        increment_fields: Optional[Mapping[str, int]] = None,
    ) -> bool:
        """Apply set/unset/increment as one UPDATE statement."""

        values: dict[str, Any] = dict(set_fields or {})
        unset = list(unset_fields)
        increments = dict(increment_fields or {})
        validate_field_names([*values, *unset, *increments])

        overlap = (set(values) & set(unset)) | (set(values) & set(increments)) | (set(unset) & set(increments))
        if overlap:
            raise ValueError(f"Fields appear in more than one operation: {sorted(overlap)}")

        for name in unset:
            values[name] = None
        for name, amount in increments.items():
            column = getattr(Repository, name)
            values[name] = func.coalesce(column, 0) + int(amount)
        if not values:
            return False
        values["updated_at"] = datetime.utcnow()

        db = self._session_factory()
        try:
            result = db.execute(update(Repository).where(Repository.repo_id == repo_id).values(**values))
            db.commit()
            return bool(result.rowcount)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def find_failed(self, *, limit: int) -> list[RepositoryRecord]:
        db = self._session_factory()
        try:
            rows = (
                db.query(Repository)
                .filter(
                    Repository.summarization_attempts > 0,
                    Repository.last_summarization_error.isnot(None),
                    Repository.status != STATUS_REJECTED,
                )
                .order_by(Repository.summarization_attempts.desc(), Repository.last_summarization_attempt.desc())
                .limit(limit)
                .all()
            )
            return [RepositoryRecord.from_row(row) for row in rows]
        finally:
            db.close()

    def retry_distribution(self) -> dict[int, int]:
        db = self._session_factory()
        try:
            rows = (
                db.query(Repository.summarization_attempts, func.count(Repository.id))
                .filter(Repository.status != STATUS_REJECTED)
                .group_by(Repository.summarization_attempts)
                .all()
            )
            return {int(attempts or 0): int(count) for attempts, count in rows}
        finally:
            db.close()
