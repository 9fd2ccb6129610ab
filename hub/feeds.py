"""Reddit feed client.

Reads public listing JSON (no authentication) and hands raw post payloads to
the ingestion pipeline. A failing channel is logged and skipped.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .config import FeedSettings

logger = logging.getLogger(__name__)


class FeedError(Exception):
    """Raised when a feed channel cannot be read."""
    pass


class RedditFeedClient:
    """Async client for subreddit hot listings."""

    def __init__(self, config: FeedSettings | None = None, client: httpx.AsyncClient | None = None) -> None:
        self.config = config or FeedSettings()
        self.client = client or httpx.AsyncClient(
            base_url=self.config.base_url,
            headers={"User-Agent": self.config.user_agent},
            timeout=self.config.timeout_seconds,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> RedditFeedClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def _get_listing(self, channel: str) -> dict:
        response = await self.client.get(
            f"/r/{channel}/hot.json",
            params={"limit": self.config.limit},
        )
        response.raise_for_status()
        return response.json()

    async def fetch_channel(self, channel: str) -> list[dict[str, Any]]:
        """Fetch raw post payloads for one channel.

        Raises:
            FeedError: If the listing cannot be fetched or decoded
        """
        try:
            listing = await self._get_listing(channel)
        except httpx.HTTPStatusError as e:
            raise FeedError(f"r/{channel} returned HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise FeedError(f"Failed to fetch r/{channel}: {e}") from e

        children = (listing.get("data") or {}).get("children") or []
        return [child.get("data", {}) for child in children if isinstance(child, dict)]

    async def fetch_items(self, channels: list[str] | None = None) -> list[dict[str, Any]]:
        """Fetch raw items across channels, skipping channels that fail."""
        channels = channels or self.config.channels
        items: list[dict[str, Any]] = []
        for channel in channels:
            try:
                channel_items = await self.fetch_channel(channel)
            except FeedError as e:
                logger.error(f"Skipping channel: {e}")
                continue
            logger.info(f"Fetched {len(channel_items)} items from r/{channel}")
            items.extend(channel_items)
        return items
