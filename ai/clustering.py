"""Cluster engine: partitions summarized problems into thematic groups.

Whatever the semantic service returns, the output is a partition of the
distinct input ids: every id lands in exactly one cluster.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field, field_validator

from hub.config import ClusteringSettings, GeminiSettings

from .semantic import SemanticServiceError, StructuredTextAnalyzer

logger = logging.getLogger(__name__)

MISCELLANEOUS_NAME = "Miscellaneous Issues"
MISCELLANEOUS_THEMES = ["other", "miscellaneous"]
FALLBACK_KEYWORD = "other"
FALLBACK_THEMES = ["user-reported", "community-driven"]


@dataclass
class ProblemDigest:
    """The slice of a problem the clusterer looks at."""
    id: str
    summary: str
    keywords: list[str] = field(default_factory=list)

    @property
    def primary_keyword(self) -> str | None:
        if self.keywords and self.keywords[0].strip():
            return self.keywords[0].strip()
        return None


@dataclass
class Cluster:
    """A named group of problems."""
    name: str
    problem_ids: list[str]
    common_themes: list[str]
    innovation_gap: int


class ClusterDraft(BaseModel):
    """One cluster as proposed by the service."""
    cluster_name: str = Field(min_length=1)
    problem_ids: list[str]
    common_themes: list[str] = Field(default_factory=list)
    innovation_gap: int = Field(ge=1, le=10)

    @field_validator("innovation_gap", mode="before")
    @classmethod
    def round_gap(cls, v: Any) -> Any:
        if isinstance(v, float):
            return round(v)
        return v


SYSTEM_PROMPT = """Analyze these problems and group them into meaningful clusters based on similarity.

Instructions:
- Group similar problems together based on themes, keywords, and problem domains
- Create {min_clusters}-{max_clusters} meaningful clusters (fewer clusters for better coherence)
- Give each cluster a descriptive name that captures the essence of the problems
- Identify common themes that span across problems in each cluster
- Estimate innovation gaps (1-10 scale) where 10 = highly innovative opportunity, 1 = already well solved
- Ensure every problem ID appears in exactly one cluster

Format your response as a JSON array of cluster objects."""


def _dedupe(problems: list[ProblemDigest]) -> list[ProblemDigest]:
    seen: set[str] = set()
    unique = []
    for p in problems:
        if p.id not in seen:
            seen.add(p.id)
            unique.append(p)
    return unique


def _truncate(text: str, length: int) -> str:
    return text[:length] + ("..." if len(text) > length else "")


class ClusterEngine:
    """Groups problems via the semantic service, with deterministic fallbacks."""

    def __init__(
        self,
        analyzer: StructuredTextAnalyzer,
        config: ClusteringSettings | None = None,
        gemini: GeminiSettings | None = None,
    ) -> None:
        self.analyzer = analyzer
        self.config = config or ClusteringSettings()
        self.gemini = gemini or GeminiSettings()
        self.system_prompt = SYSTEM_PROMPT.format(
            min_clusters=self.config.min_clusters,
            max_clusters=self.config.max_clusters,
        )

    async def cluster(self, problems: list[ProblemDigest]) -> list[Cluster]:
        """Partition problems into clusters.

        Args:
            problems: Enriched problems to group

        Returns:
            Clusters whose problem ids cover every distinct input id once
        """
        problems = _dedupe(problems)
        if not problems:
            return []

        if len(problems) < self.config.min_batch_size:
            return self.singleton_clusters(problems)

        payload = [
            {
                "id": p.id,
                "summary": _truncate(p.summary, self.config.summary_prompt_length),
                "keywords": p.keywords,
            }
            for p in problems
        ]
        prompt = f"Problems to analyze and cluster:\n{json.dumps(payload, indent=2)}"

        try:
            drafts = await self.analyzer.analyze(
                prompt,
                list[ClusterDraft],
                system_instruction=self.system_prompt,
                temperature=self.gemini.cluster_temperature,
                model=self.gemini.cluster_model,
            )
        except SemanticServiceError as e:
            logger.warning(f"Clustering failed, using keyword fallback: {e}")
            return self.fallback_clusters(problems)

        return self.repair_partition(problems, drafts)

    def singleton_clusters(self, problems: list[ProblemDigest]) -> list[Cluster]:
        """One cluster per problem, for batches too small to find structure in."""
        return [
            Cluster(
                name=p.primary_keyword or MISCELLANEOUS_NAME,
                problem_ids=[p.id],
                common_themes=[k for k in p.keywords if k.strip()][:3],
                innovation_gap=self.config.singleton_gap,
            )
            for p in problems
        ]

    def repair_partition(self, problems: list[ProblemDigest], drafts: list[ClusterDraft]) -> list[Cluster]:
        """Turn service drafts into a true partition of the input ids.

        Unknown ids are dropped, an id claimed twice stays in its first
        cluster, unassigned ids go to a miscellaneous cluster and empty
        clusters are discarded.
        """
        input_ids = [p.id for p in problems]
        known = set(input_ids)
        assigned: set[str] = set()
        clusters: list[Cluster] = []
        dropped = 0

        for draft in drafts:
            member_ids = []
            for problem_id in draft.problem_ids:
                if problem_id in known and problem_id not in assigned:
                    assigned.add(problem_id)
                    member_ids.append(problem_id)
                else:
                    dropped += 1
            if not member_ids:
                continue
            clusters.append(
                Cluster(
                    name=draft.cluster_name.strip() or MISCELLANEOUS_NAME,
                    problem_ids=member_ids,
                    common_themes=draft.common_themes,
                    innovation_gap=draft.innovation_gap,
                )
            )

        missing = [i for i in input_ids if i not in assigned]
        if missing:
            clusters.append(
                Cluster(
                    name=MISCELLANEOUS_NAME,
                    problem_ids=missing,
                    common_themes=list(MISCELLANEOUS_THEMES),
                    innovation_gap=self.config.miscellaneous_gap,
                )
            )

        if dropped or missing:
            logger.info(
                f"Repaired cluster assignment: {dropped} unknown/duplicate ids dropped, "
                f"{len(missing)} unassigned ids moved to {MISCELLANEOUS_NAME}"
            )
        return clusters

    def fallback_clusters(self, problems: list[ProblemDigest]) -> list[Cluster]:
        """Group strictly by first keyword. Never calls the service."""
        groups: dict[str, list[str]] = {}
        for p in problems:
            keyword = p.primary_keyword or FALLBACK_KEYWORD
            groups.setdefault(keyword, []).append(p.id)

        return [
            Cluster(
                name=f"{keyword[:1].upper()}{keyword[1:]} Related Issues",
                problem_ids=ids,
                common_themes=[keyword, *FALLBACK_THEMES],
                innovation_gap=self.config.fallback_gap,
            )
            for keyword, ids in groups.items()
        ]
