"""SQLAlchemy ORM models for the challenge store."""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    ARRAY,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from challenge_engine.shared.utils.datetime_utils import utcnow


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        dict[str, Any]: JSONB,
        list[str]: ARRAY(String),
    }


# ===========================================
# CHALLENGES
# ===========================================


class ChallengeRow(Base):
    """A challenge definition."""

    __tablename__ = "challenges"

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    difficulty: Mapped[str] = mapped_column(String(20), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    tier: Mapped[str] = mapped_column(String(20), nullable=False, default="SOLO")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rewards: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    series_id: Mapped[str | None] = mapped_column(String(200))
    series_order: Mapped[int | None] = mapped_column(Integer)
    participant_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_participants: Mapped[int | None] = mapped_column(Integer)
    max_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    time_estimate_minutes: Mapped[int | None] = mapped_column(Integer)
    template_id: Mapped[str | None] = mapped_column(String(150))
    tags: Mapped[list[str]] = mapped_column(ARRAY(String), nullable=False, default=list)
    created_by: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'scheduled', 'active', 'completed', 'archived')",
            name="ck_challenges_status",
        ),
        CheckConstraint(
            "start_date IS NULL OR end_date IS NULL OR start_date <= end_date",
            name="ck_challenges_window",
        ),
        CheckConstraint("participant_count >= 0", name="ck_challenges_participants"),
        Index("idx_challenges_status_start", "status", "start_date"),
        Index("idx_challenges_status_end", "status", "end_date"),
        Index("idx_challenges_template", "template_id"),
    )


class UserChallengeRow(Base):
    """One user's participation in one challenge."""

    __tablename__ = "user_challenges"

    id: Mapped[str] = mapped_column(String(1400), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    challenge_id: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="joined")
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    abandoned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completion_time_minutes: Mapped[int | None] = mapped_column(Integer)
    xp_earned: Mapped[int | None] = mapped_column(Integer)
    badges_earned: Mapped[list[str] | None] = mapped_column(ARRAY(String))
    submissions: Mapped[list[str]] = mapped_column(ARRAY(String), nullable=False, default=list)
    reward_breakdown: Mapped[dict[str, Any] | None] = mapped_column(JSONB)
    reward_credited_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "challenge_id", name="uq_user_challenges_user_challenge"),
        CheckConstraint(
            "progress >= 0 AND progress <= max_progress",
            name="ck_user_challenges_progress",
        ),
        Index("idx_user_challenges_user_status", "user_id", "status"),
        Index("idx_user_challenges_challenge_status", "challenge_id", "status"),
        Index(
            "idx_user_challenges_credit_pending",
            "status",
            postgresql_where=text("reward_credited_at IS NULL"),
        ),
    )


class ChallengeSubmissionRow(Base):
    """Immutable submission."""

    __tablename__ = "challenge_submissions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    challenge_id: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    evidence_links: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB, nullable=False, default=list
    )
    submission_type: Mapped[str] = mapped_column(String(30), nullable=False)
    progress_increment: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    difficulty_rating: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("idx_challenge_submissions_participation", "user_id", "challenge_id", "created_at"),
    )


class ChallengeTemplateRow(Base):
    """Template for recurring challenge instances."""

    __tablename__ = "challenge_templates"

    id: Mapped[str] = mapped_column(String(150), primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    difficulty: Mapped[str] = mapped_column(String(20), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    tier: Mapped[str] = mapped_column(String(20), nullable=False, default="SOLO")
    rewards: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    recurrence: Mapped[str | None] = mapped_column(String(10))
    max_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_participants: Mapped[int | None] = mapped_column(Integer)
    time_estimate_minutes: Mapped[int | None] = mapped_column(Integer)
    tags: Mapped[list[str]] = mapped_column(ARRAY(String), nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
