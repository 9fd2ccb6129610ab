"""Tests for the submission pipeline: length gate, duplicate gate, enrichment."""
import asyncio

import pytest

from ai.classifier import TextClassifier
from ai.similarity import SimilarityDetector
from hub.config import SimilaritySettings, SubmissionSettings
from hub.pipelines.submission import (
    DuplicateProblemError,
    SubmissionRejected,
    cast_vote,
    check_submission_similarity,
    register_expert,
    submit_problem,
)
from hub.storage import ProblemNotFoundError, Storage
from tests.support import FakeAnalyzer, add_problem, analysis_reply, database

TEXT = "The only pharmacy in our neighborhood closes at 5pm, leaving shift workers with no access."


class TestSubmitProblem:

    def setup_method(self):
        self.analyzer = FakeAnalyzer()
        self.detector = SimilarityDetector(self.analyzer)
        self.classifier = TextClassifier(self.analyzer)

    def submit(self, text=TEXT, *, force=False, seed=0):
        async def scenario():
            async with database() as session:
                seeded = [await add_problem(session, minutes=i, summary=f"seed {i}") for i in range(seed)]
                problem = await submit_problem(
                    session, self.detector, self.classifier, text,
                    force=force,
                    similarity_config=SimilaritySettings(),
                    submission_config=SubmissionSettings(),
                )
                total = len(await Storage(session).list_problems())
                return seeded, problem, total
        return asyncio.run(scenario())

    def test_first_submission_skips_similarity_call(self):
        self.analyzer.script(analysis_reply("Pharmacy hours too short", ["pharmacy"], "Healthcare"))

        _, problem, total = self.submit()

        assert len(self.analyzer.calls) == 1
        assert problem.origin == "Direct"
        assert problem.category == "Healthcare"
        assert problem.processed is True
        assert total == 1

    def test_text_is_normalized_before_length_check(self):
        messy = "  The only   pharmacy\tclosed at “5pm”.\n\n\n\nShift workers   lose access!!!!!!  "

        _, problem, _ = self.submit(messy)

        assert problem.original_text == 'The only pharmacy closed at "5pm".\n\nShift workers lose access!!!'
        assert "pharmacy closed" in self.analyzer.calls[0]["prompt"]

    def test_whitespace_padding_does_not_reach_min_length(self):
        with pytest.raises(SubmissionRejected):
            self.submit("short text" + " " * 60)

    def test_short_text_rejected_before_any_call(self):
        with pytest.raises(SubmissionRejected):
            self.submit("x" * 49)
        assert self.analyzer.calls == []

    def test_duplicate_raises_with_verdict(self):
        self.analyzer.script(lambda prompt: {
            "is_duplicate": True,
            "similar_problem_id": prompt.split('"id": "')[1].split('"')[0],
            "similarity_score": 0.95,
            "reasoning": "Same pharmacy hours issue",
        })

        with pytest.raises(DuplicateProblemError) as excinfo:
            self.submit(seed=2)

        verdict = excinfo.value.verdict
        assert verdict.is_duplicate is True
        assert verdict.similarity == 0.95
        assert len(self.analyzer.calls) == 1

    def test_forced_duplicate_is_persisted(self):
        self.analyzer.script(
            lambda prompt: {
                "is_duplicate": True,
                "similar_problem_id": prompt.split('"id": "')[1].split('"')[0],
                "similarity_score": 0.9,
            },
            analysis_reply(),
        )

        _, problem, total = self.submit(force=True, seed=1)

        assert total == 2
        assert problem.summary == "Potholes damage cars"

    def test_similarity_failure_fails_open(self):
        # Nothing scripted: similarity and classification both fall back
        _, problem, total = self.submit(seed=1)

        assert total == 2
        assert problem.category == "Other"
        assert problem.keywords == []


class TestCheckSimilarity:

    def test_min_length(self):
        async def scenario():
            async with database() as session:
                await check_submission_similarity(
                    session, SimilarityDetector(FakeAnalyzer()), "too short", config=SimilaritySettings(),
                )

        with pytest.raises(SubmissionRejected):
            asyncio.run(scenario())

    def test_window_bounds_prior_set(self):
        analyzer = FakeAnalyzer({"is_duplicate": False})

        async def scenario():
            async with database() as session:
                for i in range(4):
                    await add_problem(session, minutes=i, summary=f"seed {i}")
                return await check_submission_similarity(
                    session, SimilarityDetector(analyzer), TEXT, config=SimilaritySettings(window=2),
                )

        verdict = asyncio.run(scenario())

        assert verdict.is_duplicate is False
        prompt = analyzer.calls[0]["prompt"]
        assert "seed 3" in prompt and "seed 2" in prompt
        assert "seed 1" not in prompt


class TestVotingAndExperts:

    def test_cast_vote(self):
        async def scenario():
            async with database() as session:
                problem = await add_problem(session)
                await cast_vote(session, problem.id)
                return await cast_vote(session, problem.id, "lee")

        outcome = asyncio.run(scenario())

        assert outcome.vote.voter == "lee"
        assert outcome.problem.popularity == 2

    def test_cast_vote_unknown_problem(self):
        async def scenario():
            async with database() as session:
                await cast_vote(session, "missing")

        with pytest.raises(ProblemNotFoundError):
            asyncio.run(scenario())

    def test_register_expert_requires_fields(self):
        async def scenario(**overrides):
            fields = {
                "name": "Ana", "affiliation": "Lab", "expertise": ["Traffic"],
                "description": "Transit", "email": "ana@x.org",
            }
            fields.update(overrides)
            async with database() as session:
                return await register_expert(session, **fields)

        assert asyncio.run(scenario(expertise=[" Traffic ", ""])).expertise == ["Traffic"]
        with pytest.raises(SubmissionRejected):
            asyncio.run(scenario(name="  "))
        with pytest.raises(SubmissionRejected):
            asyncio.run(scenario(expertise=["", " "]))
