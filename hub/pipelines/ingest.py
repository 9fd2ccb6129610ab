"""Feed ingestion: raw feed items -> enriched, persisted problems.

Items are normalized and filtered first, classified concurrently (bounded),
then persisted one by one. A failing item never aborts the batch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from ai.classifier import ProblemAnalysis, TextClassifier
from hub import models
from hub.config import FeedSettings
from hub.feeds import RedditFeedClient
from hub.storage import Storage

from .normalization import is_removed, normalize_text

logger = logging.getLogger(__name__)


@dataclass
class FeedEntry:
    """A feed item in problem shape, ready for the classifier."""
    channel: str
    author_handle: str | None
    author_reputation: int
    text: str
    feed_score: int = 0


@dataclass
class IngestionReport:
    """Outcome of one batch."""
    created: list[models.Problem]
    failed: int
    skipped: int


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def normalize_feed_item(
    raw: Mapping[str, Any],
    *,
    min_selftext_length: int = 50,
) -> FeedEntry | None:
    """Map a raw feed payload to a FeedEntry.

    Returns:
        None for unusable content: short, removed or deleted bodies
    """
    selftext = raw.get("selftext") or ""
    if len(selftext) <= min_selftext_length or is_removed(selftext):
        return None

    title = normalize_text(raw.get("title") or "")
    body = normalize_text(selftext)
    text = f"{title}\n\n{body}" if title else body
    if not body:
        return None

    return FeedEntry(
        channel=raw.get("subreddit") or "",
        author_handle=raw.get("author") or None,
        author_reputation=_as_int(raw.get("author_link_karma")) + _as_int(raw.get("author_comment_karma")),
        text=text,
        feed_score=_as_int(raw.get("score")),
    )


def normalize_feed_items(items: list[Mapping[str, Any]], config: FeedSettings | None = None) -> list[FeedEntry]:
    config = config or FeedSettings()
    entries = []
    for raw in items:
        entry = normalize_feed_item(raw, min_selftext_length=config.min_selftext_length)
        if entry is not None:
            entries.append(entry)
    logger.info(f"Kept {len(entries)} of {len(items)} feed items")
    return entries


async def ingest_feed_entries(
    session: AsyncSession,
    entries: list[FeedEntry],
    classifier: TextClassifier,
    *,
    concurrency: int = 4,
) -> IngestionReport:
    """Classify and persist feed entries, best effort.

    Args:
        session: Database session
        entries: Normalized feed entries
        classifier: Text classifier
        concurrency: Maximum classifier calls in flight

    Returns:
        IngestionReport with the created problems and the failure count
    """
    semaphore = asyncio.Semaphore(max(concurrency, 1))

    async def classify(entry: FeedEntry) -> ProblemAnalysis:
        async with semaphore:
            return await classifier.classify(entry.text, models.ProblemOrigin.EXTERNAL_FEED)

    analyses = await asyncio.gather(*(classify(e) for e in entries), return_exceptions=True)

    storage = Storage(session)
    created: list[models.Problem] = []
    failed = 0
    for entry, analysis in zip(entries, analyses):
        if isinstance(analysis, BaseException):
            failed += 1
            logger.error(f"Failed to classify item from r/{entry.channel}: {analysis}")
            continue
        try:
            problem = await storage.create_problem(
                origin=models.ProblemOrigin.EXTERNAL_FEED,
                original_text=entry.text,
                analysis=analysis,
                channel=entry.channel,
                author_handle=entry.author_handle,
                author_reputation=entry.author_reputation,
            )
        except Exception as e:
            failed += 1
            logger.error(f"Failed to persist item from r/{entry.channel}: {e}", exc_info=True)
            continue
        created.append(problem)

    logger.info(f"Ingested {len(created)} problems ({failed} failed)")
    return IngestionReport(created=created, failed=failed, skipped=0)


async def load_feed(
    session: AsyncSession,
    feed_client: RedditFeedClient,
    classifier: TextClassifier,
    *,
    channels: list[str] | None = None,
    config: FeedSettings | None = None,
) -> IngestionReport:
    """Fetch, filter, classify and persist one round of feed items."""
    config = config or FeedSettings()
    items = await feed_client.fetch_items(channels or config.channels)
    entries = normalize_feed_items(items, config)

    report = await ingest_feed_entries(session, entries, classifier, concurrency=config.concurrency)
    report.skipped = len(items) - len(entries)
    return report
