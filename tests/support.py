"""Shared fakes and database helpers for the test suite."""
from __future__ import annotations

import json
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from ai.semantic import SemanticServiceError, parse_structured
from hub import models
from hub.db import create_schema

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


class FakeAnalyzer:
    """Scripted stand-in for the semantic service.

    Each call pops the next scripted result: an exception is raised, a
    callable is invoked with the prompt, anything else is serialized to JSON
    and validated against the requested schema like a real reply. With no
    results left, the call fails as if the service were down.
    """

    def __init__(self, *results: Any) -> None:
        self.results = list(results)
        self.calls: list[dict[str, Any]] = []

    def script(self, *results: Any) -> None:
        self.results.extend(results)

    async def analyze(
        self,
        prompt: str,
        schema: Any,
        *,
        system_instruction: str | None = None,
        temperature: float | None = None,
        model: str | None = None,
    ) -> Any:
        self.calls.append(
            {
                "prompt": prompt,
                "schema": schema,
                "system_instruction": system_instruction,
                "temperature": temperature,
                "model": model,
            }
        )
        if not self.results:
            raise SemanticServiceError("no scripted result")

        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        if callable(result):
            result = result(prompt)
        raw = result if isinstance(result, str) else json.dumps(result)
        return parse_structured(raw, schema)


def analysis_reply(summary: str = "Potholes damage cars", keywords=None, category: str = "Traffic") -> dict:
    return {
        "summary": summary,
        "keywords": ["potholes", "roads"] if keywords is None else keywords,
        "category": category,
    }


@asynccontextmanager
async def database() -> AsyncIterator[AsyncSession]:
    """Fresh in-memory schema and a session bound to it."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_schema(engine)

    maker = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)
    try:
        async with maker() as session:
            yield session
    finally:
        await engine.dispose()


async def add_problem(
    session: AsyncSession,
    text: str = "The bus schedule changes every week without notice to riders.",
    *,
    minutes: int = 0,
    summary: str | None = "Unannounced bus schedule changes",
    keywords: list[str] | None = None,
    category: str | None = "Traffic",
    origin: str = models.ProblemOrigin.DIRECT.value,
    popularity: int = 0,
) -> models.Problem:
    """Insert a problem with a controlled creation time."""
    problem = models.Problem(
        origin=origin,
        original_text=text,
        summary=summary,
        keywords=["bus", "schedule"] if keywords is None else keywords,
        category=category,
        popularity=popularity,
        processed=summary is not None,
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )
    session.add(problem)
    await session.commit()
    return problem


def make_expert(name: str, expertise: list[str], description: str = "") -> models.Expert:
    """Unsaved expert, for scoring tests that need no database."""
    expert = models.Expert(
        id=f"expert-{name.lower()}",
        name=name,
        affiliation="City Lab",
        description=description,
        email=f"{name.lower()}@example.org",
        expertise_tags=[models.ExpertiseTag(tag=t, position=i) for i, t in enumerate(expertise)],
    )
    return expert


def make_problem(category: str | None, keywords: list[str], problem_id: str = "p1") -> models.Problem:
    """Unsaved problem, for scoring tests that need no database."""
    return models.Problem(
        id=problem_id,
        origin=models.ProblemOrigin.DIRECT.value,
        original_text="placeholder",
        summary="placeholder",
        keywords=keywords,
        category=category,
        popularity=0,
        processed=True,
    )


class FakeFeedClient:
    """Feed client returning canned raw items."""

    def __init__(self, items: list[dict] | None = None) -> None:
        self.items = items or []
        self.requested: list[str] | None = None

    async def fetch_items(self, channels: list[str] | None = None) -> list[dict]:
        self.requested = channels
        return self.items
