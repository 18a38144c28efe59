"""Repository record model backing the enrichment pipeline."""

from datetime import datetime

from sqlalchemy import JSON, BigInteger, Boolean, Column, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from app.config.database import Base

JSONDocument = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")


class Repository(Base):
    """Discovered open-source repository mapped to `repositories` table."""

    __tablename__ = "repositories"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    repo_id = Column(String(100), unique=True, nullable=False, index=True)
    repo_name = Column(String(255), nullable=False)
    owner = Column(String(255), nullable=False)
    repo_url = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    language = Column(String(100), nullable=True)
    license = Column(String(100), nullable=True)
    topics = Column(JSONDocument, nullable=True)
    stars = Column(Integer, nullable=False, default=0)
    forks = Column(Integer, nullable=False, default=0)
    contributors = Column(Integer, nullable=False, default=0)
    is_archived = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default="active")
    rejection_reason = Column(Text, nullable=True)

    activity = Column(JSONDocument, nullable=True)
    issue_data = Column(JSONDocument, nullable=True)
    issue_samples = Column(JSONDocument, nullable=True)
    file_tree_metrics = Column(JSONDocument, nullable=True)
    community_health = Column(JSONDocument, nullable=True)

    readme_raw = Column(Text, nullable=True)
    contributing_raw = Column(Text, nullable=True)
    code_of_conduct_raw = Column(Text, nullable=True)

    summary = Column(Text, nullable=True)
    categories = Column(JSONDocument, nullable=True)
    tech_stack = Column(JSONDocument, nullable=True)
    required_skills = Column(JSONDocument, nullable=True)
    main_contrib_areas = Column(JSONDocument, nullable=True)
    beginner_tasks = Column(JSONDocument, nullable=True)
    intermediate_tasks = Column(JSONDocument, nullable=True)

    beginner_friendliness = Column(Integer, nullable=True)
    technical_complexity = Column(Integer, nullable=True)
    contribution_readiness = Column(Integer, nullable=True)
    overall_score = Column(Integer, nullable=True)
    recommended_level = Column(String(20), nullable=True)
    scoring_confidence = Column(Float, nullable=True)
    score_breakdown = Column(JSONDocument, nullable=True)
    scoring_method = Column(String(20), nullable=True)

    summarization_attempts = Column(Integer, nullable=False, default=0)
    last_summarization_error = Column(Text, nullable=True)
    last_summarization_attempt = Column(DateTime, nullable=True)
    summarized_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_repositories_status_attempts", "status", "summarization_attempts"),
        Index("idx_repositories_stars", "stars"),
    )

    def __repr__(self):
        return f"<Repository {self.owner}/{self.repo_name}>"
