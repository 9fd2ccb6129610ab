"""Clustering pipeline: load enriched problems and group them on demand."""
from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ai.clustering import Cluster, ClusterEngine, ProblemDigest
from hub import models
from hub.storage import Storage

logger = logging.getLogger(__name__)


def digest_problems(problems: list[models.Problem]) -> list[ProblemDigest]:
    """Digests for already-loaded problems; unenriched ones are skipped."""
    return [
        ProblemDigest(id=p.id, summary=p.summary, keywords=list(p.keywords or []))
        for p in problems
        if p.processed and p.summary is not None
    ]


async def cluster_recent_problems(
    session: AsyncSession,
    engine: ClusterEngine,
    *,
    limit: int | None = None,
) -> list[Cluster]:
    """Cluster up to ``limit`` enriched problems."""
    limit = limit or engine.config.batch_limit
    digests = await Storage(session).problems_for_clustering(limit)
    clusters = await engine.cluster(digests)
    logger.info(f"Grouped {len(digests)} problems into {len(clusters)} clusters")
    return clusters
