"""Duplicate detection for new problem statements.

The semantic service judges whether a candidate restates one of a bounded
window of recent problems. Its choice of nearest match is taken as-is; no
local re-ranking happens here. Failures fail open.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from pydantic import BaseModel, Field

from .semantic import SemanticServiceError, StructuredTextAnalyzer

logger = logging.getLogger(__name__)


@dataclass
class PriorProblem:
    """A recent problem offered for comparison."""
    id: str
    summary: str


@dataclass
class SimilarityVerdict:
    """Outcome of a duplicate check."""
    is_duplicate: bool
    similar_problem_id: str | None = None
    similarity: float | None = None
    rationale: str = ""

    @classmethod
    def not_duplicate(cls, rationale: str = "") -> SimilarityVerdict:
        return cls(is_duplicate=False, rationale=rationale)


class SimilarityResponse(BaseModel):
    """Schema the service must answer with."""
    is_duplicate: bool
    similar_problem_id: str | None = None
    similarity_score: float = Field(default=0.0, ge=0.0, le=1.0)
    reasoning: str = ""


SYSTEM_PROMPT = """You compare a newly submitted problem against existing problems.

Instructions:
- Decide whether the new problem describes the same underlying issue as any existing problem
- Name the single most similar existing problem by its id, or null if none is related
- Give a similarity score between 0 (unrelated) and 1 (same problem)
- Explain your judgment in one short sentence
- Only mark it as a duplicate when the core issue is the same, not merely the same topic"""


class SimilarityDetector:
    """Checks a candidate text against prior problems."""

    def __init__(self, analyzer: StructuredTextAnalyzer) -> None:
        self.analyzer = analyzer

    async def check_similarity(
        self,
        candidate_text: str,
        prior_problems: list[PriorProblem],
    ) -> SimilarityVerdict:
        """Judge whether ``candidate_text`` duplicates a prior problem.

        Args:
            candidate_text: New problem text (length enforced by the caller)
            prior_problems: Recent problems, most recent first

        Returns:
            SimilarityVerdict; "not duplicate" when there is nothing to
            compare against or the service fails
        """
        if not prior_problems:
            return SimilarityVerdict.not_duplicate()

        known_ids = {p.id for p in prior_problems}
        existing = [{"id": p.id, "summary": p.summary} for p in prior_problems]
        prompt = (
            f'New problem: "{candidate_text}"\n\n'
            f"Existing problems:\n{json.dumps(existing, indent=2)}"
        )

        try:
            response = await self.analyzer.analyze(
                prompt,
                SimilarityResponse,
                system_instruction=SYSTEM_PROMPT,
            )
        except SemanticServiceError as e:
            logger.warning(f"Similarity check failed, treating as not duplicate: {e}")
            return SimilarityVerdict.not_duplicate()

        match_id = response.similar_problem_id or None
        if match_id is not None and match_id not in known_ids:
            logger.warning(f"Similarity check named unknown problem {match_id}, treating as not duplicate")
            return SimilarityVerdict.not_duplicate()
        if response.is_duplicate and match_id is None:
            logger.warning("Similarity check flagged a duplicate without naming it, treating as not duplicate")
            return SimilarityVerdict.not_duplicate()

        return SimilarityVerdict(
            is_duplicate=response.is_duplicate,
            similar_problem_id=match_id,
            similarity=response.similarity_score if match_id is not None else None,
            rationale=response.reasoning.strip(),
        )
