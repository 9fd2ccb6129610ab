"""CSV/JSON export of problems, clusters and analytics.

CSV is produced with pandas, every field quoted. Values that a spreadsheet
would evaluate as a formula are prefixed with a single quote.
"""
from __future__ import annotations

import csv
import logging
from collections import Counter
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

import pandas as pd

from ai.clustering import Cluster

from . import models

logger = logging.getLogger(__name__)

FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")
TEXT_EXPORT_LENGTH = 500
TOP_KEYWORDS = 20


def sanitize_csv_field(value: Any) -> str:
    """Stringify a value and neutralize spreadsheet formula injection."""
    if value is None:
        return ""
    text = str(value)
    if text.startswith(FORMULA_PREFIXES):
        text = "'" + text
    return text


def _to_csv(rows: list[list[Any]], columns: list[str]) -> str:
    frame = pd.DataFrame(
        [[sanitize_csv_field(v) for v in row] for row in rows],
        columns=columns,
    )
    return frame.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")


def problem_to_dict(problem: models.Problem) -> dict[str, Any]:
    return {
        "id": problem.id,
        "origin": problem.origin,
        "channel": problem.channel,
        "author_handle": problem.author_handle,
        "author_reputation": problem.author_reputation,
        "original_text": problem.original_text,
        "summary": problem.summary,
        "keywords": problem.keywords,
        "category": problem.category,
        "popularity": problem.popularity,
        "processed": problem.processed,
        "created_at": problem.created_at.isoformat() if problem.created_at else None,
    }


def expert_to_dict(expert: models.Expert) -> dict[str, Any]:
    return {
        "id": expert.id,
        "name": expert.name,
        "affiliation": expert.affiliation,
        "expertise": expert.expertise,
        "description": expert.description,
        "email": expert.email,
        "created_at": expert.created_at.isoformat() if expert.created_at else None,
    }


def cluster_to_dict(cluster: Cluster, problems_by_id: dict[str, models.Problem] | None = None) -> dict[str, Any]:
    data = asdict(cluster)
    if problems_by_id is not None:
        data["problems"] = [
            problem_to_dict(problems_by_id[i]) for i in cluster.problem_ids if i in problems_by_id
        ]
    return data


def problems_to_csv(problems: list[models.Problem]) -> str:
    columns = ["ID", "Summary", "Category", "Origin", "Original Text", "Keywords", "Popularity", "Created At"]
    rows = [
        [
            p.id,
            p.summary,
            p.category,
            p.origin,
            sanitize_csv_field(p.original_text)[:TEXT_EXPORT_LENGTH],
            ", ".join(p.keywords or []),
            p.popularity or 0,
            p.created_at.isoformat() if p.created_at else "",
        ]
        for p in problems
    ]
    return _to_csv(rows, columns)


def clusters_to_csv(clusters: list[Cluster]) -> str:
    columns = ["Cluster Name", "Innovation Gap", "Problem Count", "Themes", "Problem IDs"]
    rows = [
        [
            c.name,
            c.innovation_gap,
            len(c.problem_ids),
            ", ".join(c.common_themes),
            ", ".join(c.problem_ids),
        ]
        for c in clusters
    ]
    return _to_csv(rows, columns)


def analytics_summary(
    problems: list[models.Problem],
    clusters: list[Cluster],
    total_experts: int,
) -> dict[str, Any]:
    """Counts by category/origin/gap plus the most frequent keywords."""
    keyword_counts = Counter(k for p in problems for k in (p.keywords or []))
    return {
        "total_problems": len(problems),
        "total_clusters": len(clusters),
        "total_experts": total_experts,
        "problems_by_category": dict(Counter(p.category or "Unknown" for p in problems)),
        "problems_by_origin": dict(Counter(p.origin for p in problems)),
        "clusters_by_innovation_gap": {str(k): v for k, v in Counter(c.innovation_gap for c in clusters).items()},
        "top_keywords": [
            {"keyword": keyword, "count": count}
            for keyword, count in keyword_counts.most_common(TOP_KEYWORDS)
        ],
    }


def analytics_to_csv(summary: dict[str, Any]) -> str:
    rows: list[list[Any]] = [
        ["Total Problems", summary["total_problems"]],
        ["Total Clusters", summary["total_clusters"]],
        ["Total Experts", summary["total_experts"]],
        ["", ""],
        ["Problems by Category", ""],
        *[[k, v] for k, v in summary["problems_by_category"].items()],
        ["", ""],
        ["Problems by Origin", ""],
        *[[k, v] for k, v in summary["problems_by_origin"].items()],
        ["", ""],
        ["Clusters by Innovation Gap", ""],
        *[[k, v] for k, v in summary["clusters_by_innovation_gap"].items()],
        ["", ""],
        ["Top Keywords", ""],
        *[[kw["keyword"], kw["count"]] for kw in summary["top_keywords"]],
    ]
    return _to_csv(rows, ["Metric", "Value"])


def export_envelope(filters: dict[str, Any], **payload: Any) -> dict[str, Any]:
    """JSON export wrapper with the export timestamp and applied filters."""
    return {
        "export_date": datetime.now(timezone.utc).isoformat(),
        "filters": filters,
        **payload,
    }


def export_filename(kind: str, filters: dict[str, Any], extension: str) -> str:
    parts = [kind, datetime.now(timezone.utc).date().isoformat()]
    parts += [str(filters[key]) for key in ("category", "origin") if filters.get(key)]
    return f"{'-'.join(parts)}.{extension}"
