"""Core SQLAlchemy models (2.x style) for the problem hub schema.

Problems, votes and experts are the only persisted records; clusters,
similarity verdicts and match results are derived on request.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Category(str, Enum):
    """Fixed problem categories. OTHER is the catch-all."""
    TRAFFIC = "Traffic"
    ENVIRONMENT = "Environment"
    EDUCATION = "Education"
    HEALTHCARE = "Healthcare"
    GOVERNANCE = "Governance"
    TECHNOLOGY = "Technology"
    OTHER = "Other"


class ProblemOrigin(str, Enum):
    """Where a problem statement came from."""
    EXTERNAL_FEED = "External-Feed"
    DIRECT = "Direct"


ANONYMOUS_VOTER = "anonymous"


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class Problem(Base):
    """Problem statements, enriched once by the text classifier."""
    __tablename__ = "problems"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    origin: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    channel: Mapped[str | None] = mapped_column(String(255))
    author_handle: Mapped[str | None] = mapped_column(String(255))
    author_reputation: Mapped[int | None] = mapped_column(Integer)
    original_text: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[str | None] = mapped_column(Text)
    keywords: Mapped[list[str] | None] = mapped_column(JSON)
    category: Mapped[str | None] = mapped_column(String(32), index=True)
    popularity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    # Relationships
    votes: Mapped[list[Vote]] = relationship(
        "Vote",
        back_populates="problem",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_problems_created_at", "created_at"),
        Index("ix_problems_popularity", "popularity"),
    )


class Vote(Base):
    """Votes on problems. Immutable once created."""
    __tablename__ = "votes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    problem_id: Mapped[str] = mapped_column(
        ForeignKey("problems.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    voter: Mapped[str] = mapped_column(String(255), default=ANONYMOUS_VOTER, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    # Relationship
    problem: Mapped[Problem] = relationship("Problem", back_populates="votes")


class Expert(Base):
    """Domain experts that can be matched against problems."""
    __tablename__ = "experts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    affiliation: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    # Relationships
    expertise_tags: Mapped[list[ExpertiseTag]] = relationship(
        "ExpertiseTag",
        back_populates="expert",
        order_by="ExpertiseTag.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def expertise(self) -> list[str]:
        return [t.tag for t in self.expertise_tags]


class ExpertiseTag(Base):
    """One expertise tag of an expert, kept in submission order."""
    __tablename__ = "expertise_tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    expert_id: Mapped[str] = mapped_column(
        ForeignKey("experts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tag: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationship
    expert: Mapped[Expert] = relationship("Expert", back_populates="expertise_tags")

    __table_args__ = (
        Index("ix_expertise_tags_expert_tag", "expert_id", "tag"),
    )
