"""Tests for the Reddit feed client using httpx.MockTransport."""
import asyncio

import httpx
import pytest

from hub.config import FeedSettings
from hub.feeds import FeedError, RedditFeedClient


def listing(*posts):
    return {"data": {"children": [{"kind": "t3", "data": post} for post in posts]}}


def make_client(handler):
    config = FeedSettings()
    transport = httpx.MockTransport(handler)
    return RedditFeedClient(config, client=httpx.AsyncClient(transport=transport, base_url=config.base_url))


class TestRedditFeedClient:

    def test_fetch_channel(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=listing({"title": "t", "selftext": "body"}))

        async def scenario():
            async with make_client(handler) as client:
                return await client.fetch_channel("LifeProTips")

        items = asyncio.run(scenario())

        assert items == [{"title": "t", "selftext": "body"}]
        assert seen[0].url.path == "/r/LifeProTips/hot.json"
        assert seen[0].url.params["limit"] == "25"

    def test_http_error_raises_feed_error(self):
        async def scenario():
            async with make_client(lambda request: httpx.Response(503)) as client:
                await client.fetch_channel("x")

        with pytest.raises(FeedError, match="HTTP 503"):
            asyncio.run(scenario())

    def test_invalid_json_raises_feed_error(self):
        async def scenario():
            async with make_client(lambda request: httpx.Response(200, text="<html>")) as client:
                await client.fetch_channel("x")

        with pytest.raises(FeedError):
            asyncio.run(scenario())

    def test_failing_channel_is_skipped(self):
        def handler(request):
            if "broken" in request.url.path:
                return httpx.Response(500)
            return httpx.Response(200, json=listing({"title": request.url.path}))

        async def scenario():
            async with make_client(handler) as client:
                return await client.fetch_items(["one", "broken", "two"])

        items = asyncio.run(scenario())

        assert [i["title"] for i in items] == ["/r/one/hot.json", "/r/two/hot.json"]
