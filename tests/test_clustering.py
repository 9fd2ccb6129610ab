"""Tests for the cluster engine and its partition guarantee."""
import asyncio

from ai.clustering import (
    FALLBACK_THEMES,
    MISCELLANEOUS_NAME,
    ClusterDraft,
    ClusterEngine,
    ProblemDigest,
)
from ai.semantic import SemanticServiceError
from hub.config import ClusteringSettings, GeminiSettings
from tests.support import FakeAnalyzer


def digests(n: int) -> list[ProblemDigest]:
    keywords = [["traffic", "buses"], ["water"], ["traffic"], [], ["schools", "funding"]]
    return [
        ProblemDigest(id=f"p{i}", summary=f"Problem number {i}", keywords=keywords[i % len(keywords)])
        for i in range(n)
    ]


def assert_partition(clusters, problems):
    ids = [i for c in clusters for i in c.problem_ids]
    assert sorted(ids) == sorted({p.id for p in problems})
    assert len(ids) == len(set(ids))
    assert all(c.problem_ids for c in clusters)


class TestClusterEngine:

    def setup_method(self):
        self.analyzer = FakeAnalyzer()
        self.engine = ClusterEngine(self.analyzer, ClusteringSettings(), GeminiSettings())

    def cluster(self, problems):
        return asyncio.run(self.engine.cluster(problems))

    def test_empty_input(self):
        assert self.cluster([]) == []
        assert self.analyzer.calls == []

    def test_small_batch_gives_singletons_without_call(self):
        problems = digests(2)

        clusters = self.cluster(problems)

        assert self.analyzer.calls == []
        assert [c.problem_ids for c in clusters] == [["p0"], ["p1"]]
        assert clusters[0].name == "traffic"
        assert clusters[0].common_themes == ["traffic", "buses"]
        assert all(c.innovation_gap == 7 for c in clusters)

    def test_singleton_without_keywords_is_miscellaneous(self):
        clusters = self.cluster([ProblemDigest(id="x", summary="s", keywords=[])])
        assert clusters[0].name == MISCELLANEOUS_NAME
        assert clusters[0].common_themes == []

    def test_well_formed_reply_kept(self):
        problems = digests(4)
        self.analyzer.script([
            {"cluster_name": "Transit", "problem_ids": ["p0", "p2"], "common_themes": ["traffic"], "innovation_gap": 8},
            {"cluster_name": "Utilities", "problem_ids": ["p1", "p3"], "common_themes": ["water"], "innovation_gap": 4},
        ])

        clusters = self.cluster(problems)

        assert [c.name for c in clusters] == ["Transit", "Utilities"]
        assert clusters[0].innovation_gap == 8
        assert_partition(clusters, problems)

    def test_call_uses_cluster_model_and_truncated_summaries(self):
        long_summary = "x" * 400
        problems = [ProblemDigest(id=f"p{i}", summary=long_summary, keywords=["k"]) for i in range(3)]
        self.analyzer.script([{"cluster_name": "All", "problem_ids": ["p0", "p1", "p2"], "innovation_gap": 5}])

        self.cluster(problems)

        call = self.analyzer.calls[0]
        assert call["model"] == "gemini-2.0-flash-exp"
        assert call["temperature"] == 0.3
        assert "x" * 150 + "..." in call["prompt"]
        assert "x" * 151 not in call["prompt"]

    def test_partial_reply_gets_miscellaneous_cluster(self):
        problems = digests(5)
        self.analyzer.script([
            {"cluster_name": "Transit", "problem_ids": ["p0", "p2"], "common_themes": [], "innovation_gap": 6},
        ])

        clusters = self.cluster(problems)

        assert_partition(clusters, problems)
        misc = clusters[-1]
        assert misc.name == MISCELLANEOUS_NAME
        assert misc.problem_ids == ["p1", "p3", "p4"]
        assert misc.common_themes == ["other", "miscellaneous"]
        assert misc.innovation_gap == 5

    def test_unknown_and_repeated_ids_dropped(self):
        problems = digests(3)
        self.analyzer.script([
            {"cluster_name": "A", "problem_ids": ["p0", "ghost", "p1"], "innovation_gap": 3},
            {"cluster_name": "B", "problem_ids": ["p1", "p2"], "innovation_gap": 3},
            {"cluster_name": "C", "problem_ids": ["ghost", "p0"], "innovation_gap": 3},
        ])

        clusters = self.cluster(problems)

        assert [c.name for c in clusters] == ["A", "B"]
        assert clusters[0].problem_ids == ["p0", "p1"]
        assert clusters[1].problem_ids == ["p2"]
        assert_partition(clusters, problems)

    def test_malformed_reply_uses_keyword_fallback(self):
        problems = digests(5)
        self.analyzer.script('[{"cluster_name": "A"}]')

        clusters = self.cluster(problems)

        assert_partition(clusters, problems)
        assert [c.name for c in clusters] == [
            "Traffic Related Issues",
            "Water Related Issues",
            "Other Related Issues",
            "Schools Related Issues",
        ]
        assert clusters[0].problem_ids == ["p0", "p2"]
        assert clusters[0].common_themes == ["traffic", *FALLBACK_THEMES]
        assert all(c.innovation_gap == 6 for c in clusters)

    def test_service_failure_uses_keyword_fallback(self):
        problems = digests(3)
        self.analyzer.script(SemanticServiceError("quota"))

        clusters = self.cluster(problems)

        assert len(self.analyzer.calls) == 1
        assert [c.name for c in clusters] == ["Traffic Related Issues", "Water Related Issues"]
        assert_partition(clusters, problems)

    def test_duplicate_input_ids_collapsed(self):
        problems = digests(3) + digests(3)
        self.analyzer.script(SemanticServiceError("down"))

        clusters = self.cluster(problems)

        assert_partition(clusters, problems)

    def test_innovation_gap_range_enforced(self):
        problems = digests(3)
        self.analyzer.script([{"cluster_name": "A", "problem_ids": ["p0", "p1", "p2"], "innovation_gap": 11}])

        clusters = self.cluster(problems)

        assert clusters[0].name == "Traffic Related Issues"


class TestClusterDraft:

    def test_float_gap_rounded(self):
        draft = ClusterDraft(cluster_name="A", problem_ids=["p0"], innovation_gap=6.6)
        assert draft.innovation_gap == 7
