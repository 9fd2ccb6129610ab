"""Direct submission pipeline: similarity gate -> classify -> persist.

Also hosts voting, which is the only mutation a problem sees after creation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from ai.classifier import TextClassifier
from ai.similarity import SimilarityDetector, SimilarityVerdict
from hub import models
from hub.config import SimilaritySettings, SubmissionSettings
from hub.storage import Storage

from .normalization import normalize_text

logger = logging.getLogger(__name__)


class SubmissionRejected(Exception):
    """Raised when submitted input fails validation."""
    pass


class DuplicateProblemError(Exception):
    """Raised when a submission duplicates a recent problem."""

    def __init__(self, verdict: SimilarityVerdict):
        super().__init__(f"Similar problem detected: {verdict.similar_problem_id}")
        self.verdict = verdict


@dataclass
class VoteOutcome:
    """A recorded vote and the problem with its refreshed popularity."""
    vote: models.Vote
    problem: models.Problem


async def check_submission_similarity(
    session: AsyncSession,
    detector: SimilarityDetector,
    text: str,
    *,
    config: SimilaritySettings | None = None,
) -> SimilarityVerdict:
    """Compare text against the recent window without submitting it.

    Raises:
        SubmissionRejected: If text is shorter than the minimum check length
    """
    config = config or SimilaritySettings()
    text = normalize_text(text or "", clean_html_tags=False)
    if len(text) < config.min_check_length:
        raise SubmissionRejected(f"Problem text must be at least {config.min_check_length} characters")

    prior = await Storage(session).recent_problems(config.window)
    return await detector.check_similarity(text, prior)


async def submit_problem(
    session: AsyncSession,
    detector: SimilarityDetector,
    classifier: TextClassifier,
    text: str,
    *,
    origin: models.ProblemOrigin = models.ProblemOrigin.DIRECT,
    force: bool = False,
    similarity_config: SimilaritySettings | None = None,
    submission_config: SubmissionSettings | None = None,
) -> models.Problem:
    """Submit a problem statement.

    Steps:
    1. Normalize whitespace and punctuation, then validate length
    2. Duplicate check against the recent window
    3. Classify (never fails; falls back locally)
    4. Persist the enriched problem in one insert

    Args:
        session: Database session
        detector: Similarity detector
        classifier: Text classifier
        text: Problem statement
        origin: Origin tag
        force: Persist even when a duplicate is detected

    Returns:
        The persisted problem

    Raises:
        SubmissionRejected: If text is too short
        DuplicateProblemError: If a duplicate is detected and not forced
    """
    similarity_config = similarity_config or SimilaritySettings()
    submission_config = submission_config or SubmissionSettings()

    text = normalize_text(text or "", clean_html_tags=False)
    if len(text) < submission_config.min_text_length:
        raise SubmissionRejected(
            f"Problem description must be at least {submission_config.min_text_length} characters"
        )

    storage = Storage(session)
    prior = await storage.recent_problems(similarity_config.window)
    verdict = await detector.check_similarity(text, prior)
    if verdict.is_duplicate and not force:
        logger.info(f"Submission rejected as duplicate of {verdict.similar_problem_id}")
        raise DuplicateProblemError(verdict)

    analysis = await classifier.classify(text, origin)
    problem = await storage.create_problem(origin=origin, original_text=text, analysis=analysis)

    logger.info(f"Created problem {problem.id} ({problem.category})")
    return problem


async def cast_vote(session: AsyncSession, problem_id: str, voter: str | None = None) -> VoteOutcome:
    """Record a vote; popularity is recounted in the same commit.

    Raises:
        ProblemNotFoundError: If the problem does not exist
    """
    vote, problem = await Storage(session).create_vote(problem_id, voter)
    return VoteOutcome(vote=vote, problem=problem)


async def register_expert(
    session: AsyncSession,
    *,
    name: str,
    affiliation: str,
    expertise: list[str],
    description: str,
    email: str,
) -> models.Expert:
    """Validate and persist an expert profile.

    Raises:
        SubmissionRejected: If a required field is blank or no expertise tag is given
    """
    fields = {
        "name": (name or "").strip(),
        "affiliation": (affiliation or "").strip(),
        "description": (description or "").strip(),
        "email": (email or "").strip(),
    }
    missing = [key for key, value in fields.items() if not value]
    if missing:
        raise SubmissionRejected(f"Missing required fields: {', '.join(missing)}")

    tags = [t.strip() for t in expertise or [] if t and t.strip()]
    if not tags:
        raise SubmissionRejected("At least one expertise tag is required")

    expert = await Storage(session).create_expert(expertise=tags, **fields)
    logger.info(f"Registered expert {expert.id} with {len(tags)} expertise tags")
    return expert
