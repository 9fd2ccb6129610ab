"""Matching pipeline: Problem -> ranked, explainable expert matches.

Scoring is local and deterministic; no external service is involved.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from hub import models
from hub.config import MatchingSettings
from hub.rules import RuleEngine, RuleTrace, load_rules_config
from hub.storage import Storage

logger = logging.getLogger(__name__)


@dataclass
class MatchResult:
    """Single expert match result."""
    expert: models.Expert
    match_score: float
    reasons: list[str]
    rule_trace: list[RuleTrace] = field(default_factory=list)


def problem_features(problem: models.Problem) -> dict[str, Any]:
    """Features of a problem used by the rule engine."""
    return {
        "problem_id": problem.id,
        "category": problem.category,
        "keywords": list(problem.keywords or []),
    }


def expert_features(expert: models.Expert) -> dict[str, Any]:
    """Features of an expert used by the rule engine."""
    return {
        "expert_id": expert.id,
        "expertise": expert.expertise,
        "description": expert.description or "",
    }


class ExpertMatcher:
    """Scores a roster of experts against one problem."""

    def __init__(self, config: MatchingSettings | None = None) -> None:
        self.rule_engine = RuleEngine(load_rules_config(config))

    def match_experts(self, problem: models.Problem, experts: list[models.Expert]) -> list[MatchResult]:
        """Rank experts for a problem.

        Experts scoring zero are left out; ties keep roster order.

        Args:
            problem: Problem to match
            experts: Expert roster

        Returns:
            MatchResult list, best first
        """
        problem_data = problem_features(problem)
        results = []

        for expert in experts:
            score, traces = self.rule_engine.score(problem_data, expert_features(expert))
            if score <= 0:
                continue
            results.append(
                MatchResult(
                    expert=expert,
                    match_score=score,
                    reasons=[t.reason for t in traces if t.fired],
                    rule_trace=traces,
                )
            )

        # sorted() is stable, so equal scores keep roster order
        return sorted(results, key=lambda r: r.match_score, reverse=True)


async def match_problem_to_experts(
    session: AsyncSession,
    problem_id: str,
    *,
    config: MatchingSettings | None = None,
) -> list[MatchResult]:
    """Load a problem and the expert roster, then score them.

    An unknown problem id yields an empty list.
    """
    storage = Storage(session)
    problem = await storage.get_problem(problem_id)
    if problem is None:
        logger.info(f"No problem {problem_id}, returning no matches")
        return []

    experts = await storage.list_experts()
    matches = ExpertMatcher(config).match_experts(problem, experts)
    logger.info(f"Matched {len(matches)} of {len(experts)} experts for problem {problem_id}")
    return matches
