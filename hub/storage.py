"""Storage layer over an async SQLAlchemy session.

Owns every persisted record; analysis components only ever see plain
digests built from these queries.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ai.classifier import ProblemAnalysis
from ai.clustering import ProblemDigest
from ai.similarity import PriorProblem

from . import models

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a storage operation fails."""
    pass


class ProblemNotFoundError(StorageError):
    """Raised when a referenced problem does not exist."""

    def __init__(self, problem_id: str):
        super().__init__(f"Problem {problem_id} not found")
        self.problem_id = problem_id


@dataclass
class ProblemFilters:
    """Listing filters for problems."""
    category: str | None = None
    origin: str | None = None
    search: str | None = None
    sort_by: Literal["created_at", "popularity"] = "created_at"
    order: Literal["asc", "desc"] = "desc"
    page: int = 1
    limit: int = 20


class Storage:
    """Queries and atomic writes for problems, votes and experts."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Problems

    async def get_problem(self, problem_id: str) -> models.Problem | None:
        return await self.session.get(models.Problem, problem_id)

    async def recent_problems(self, limit: int) -> list[PriorProblem]:
        """Most recent problems, newest first, for duplicate checks.

        Unenriched problems are represented by the first 200 characters of
        their text.
        """
        query = (
            select(models.Problem)
            .order_by(models.Problem.created_at.desc(), models.Problem.id)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [
            PriorProblem(id=p.id, summary=p.summary or p.original_text[:200])
            for p in result.scalars().all()
        ]

    async def problems_for_clustering(self, limit: int = 100) -> list[ProblemDigest]:
        """The ``limit`` most recent enriched problems, returned oldest first."""
        query = (
            select(models.Problem)
            .where(models.Problem.processed.is_(True), models.Problem.summary.is_not(None))
            .order_by(models.Problem.created_at.desc(), models.Problem.id)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return [
            ProblemDigest(id=p.id, summary=p.summary or "", keywords=list(p.keywords or []))
            for p in reversed(result.scalars().all())
        ]

    async def list_problems(self, filters: ProblemFilters | None = None) -> list[models.Problem]:
        filters = filters or ProblemFilters()
        query = select(models.Problem)

        if filters.category:
            query = query.where(models.Problem.category == filters.category)
        if filters.origin:
            query = query.where(models.Problem.origin == filters.origin)
        if filters.search:
            pattern = f"%{filters.search}%"
            query = query.where(
                or_(
                    models.Problem.summary.ilike(pattern),
                    models.Problem.original_text.ilike(pattern),
                )
            )

        column = models.Problem.popularity if filters.sort_by == "popularity" else models.Problem.created_at
        query = query.order_by(column.desc() if filters.order == "desc" else column.asc(), models.Problem.id)

        page = max(filters.page, 1)
        query = query.limit(filters.limit).offset((page - 1) * filters.limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def create_problem(
        self,
        *,
        origin: models.ProblemOrigin | str,
        original_text: str,
        analysis: ProblemAnalysis | None = None,
        channel: str | None = None,
        author_handle: str | None = None,
        author_reputation: int | None = None,
    ) -> models.Problem:
        """Insert a problem, enriched in the same statement when ``analysis`` is given."""
        problem = models.Problem(
            origin=models.ProblemOrigin(origin).value,
            original_text=original_text,
            channel=channel,
            author_handle=author_handle,
            author_reputation=author_reputation,
            popularity=0,
            processed=analysis is not None,
        )
        if analysis is not None:
            problem.summary = analysis.summary
            problem.keywords = list(analysis.keywords)
            problem.category = analysis.category.value

        self.session.add(problem)
        await self._commit()
        await self.session.refresh(problem)
        return problem

    # Votes

    async def create_vote(
        self,
        problem_id: str,
        voter: str | None = None,
    ) -> tuple[models.Vote, models.Problem]:
        """Insert a vote and recount popularity in the same transaction.

        Popularity is set from a count subquery in one UPDATE, so concurrent
        votes never write back a stale count.

        Returns:
            The vote and the problem with its refreshed popularity

        Raises:
            ProblemNotFoundError: If the problem does not exist
        """
        problem = await self.get_problem(problem_id)
        if problem is None:
            raise ProblemNotFoundError(problem_id)

        vote = models.Vote(problem_id=problem_id, voter=voter or models.ANONYMOUS_VOTER)
        self.session.add(vote)
        await self.session.flush()

        vote_count = (
            select(func.count(models.Vote.id))
            .where(models.Vote.problem_id == problem_id)
            .scalar_subquery()
        )
        await self.session.execute(
            update(models.Problem)
            .where(models.Problem.id == problem_id)
            .values(popularity=vote_count)
            .execution_options(synchronize_session=False)
        )
        await self._commit()
        await self.session.refresh(vote)
        await self.session.refresh(problem)
        return vote, problem

    # Experts

    async def create_expert(
        self,
        *,
        name: str,
        affiliation: str,
        expertise: list[str],
        description: str,
        email: str,
    ) -> models.Expert:
        expert = models.Expert(
            name=name,
            affiliation=affiliation,
            description=description,
            email=email,
            expertise_tags=[
                models.ExpertiseTag(tag=tag, position=position)
                for position, tag in enumerate(expertise)
            ],
        )
        self.session.add(expert)
        await self._commit()
        await self.session.refresh(expert, attribute_names=["expertise_tags"])
        return expert

    async def list_experts(self, expertise: str | None = None, search: str | None = None) -> list[models.Expert]:
        """Experts ordered by name, optionally filtered by exact tag and free text."""
        query = select(models.Expert)

        if expertise:
            tagged = select(models.ExpertiseTag.expert_id).where(models.ExpertiseTag.tag == expertise)
            query = query.where(models.Expert.id.in_(tagged))
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    models.Expert.name.ilike(pattern),
                    models.Expert.affiliation.ilike(pattern),
                    models.Expert.description.ilike(pattern),
                )
            )

        query = query.order_by(models.Expert.name, models.Expert.created_at, models.Expert.id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count_experts(self) -> int:
        return (await self.session.execute(select(func.count(models.Expert.id)))).scalar_one()

    async def _commit(self) -> None:
        try:
            await self.session.commit()
        except Exception as e:
            await self.session.rollback()
            logger.error(f"Storage commit failed: {e}")
            raise StorageError(f"Failed to persist changes: {e}") from e
