"""
Unit tests for the Twitter adapter.

Tests cover timeline instruction walking, tweet parsing, entity
replacement and the GraphQL requests.
"""

import re
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from aioresponses import aioresponses

from herald.config import TwitterAccount, TwitterSpec
from herald.errors import FetchError
from herald.platforms.http import HttpClient
from herald.platforms.twitter import (
    TwitterAdapter,
    parse_tweet,
    replace_entities,
    timeline_tweets,
)

USER_PATTERN = re.compile(r"^https://x\.com/i/api/graphql/[^/]+/UserByScreenName\?.*$")
TWEETS_PATTERN = re.compile(r"^https://x\.com/i/api/graphql/[^/]+/UserTweets\?.*$")

ACCOUNT = TwitterAccount(cookies="auth_token=abc; ct0=csrf123")


def tweet(rest_id: str, text: str, screen_name: str = "alice", name: str = "Alice", **legacy):
    return {
        "__typename": "Tweet",
        "rest_id": rest_id,
        "core": {"user_results": {"result": {"legacy": {"screen_name": screen_name, "name": name}}}},
        "legacy": {
            "full_text": text,
            "created_at": "Mon Jan 01 12:00:00 +0000 2024",
            "entities": {},
            **legacy,
        },
    }


def item_entry(result: dict) -> dict:
    return {
        "content": {
            "entryType": "TimelineTimelineItem",
            "itemContent": {"itemType": "TimelineTweet", "tweet_results": {"result": result}},
        }
    }


def timeline(*instructions: dict) -> dict:
    return {
        "data": {
            "user": {"result": {"timeline_v2": {"timeline": {"instructions": list(instructions)}}}}
        }
    }


@pytest_asyncio.fixture
async def http():
    """Create an HTTP client without retries."""
    client = HttpClient(max_retries=1)
    yield client
    await client.close()


class TestTimelineTweets:
    """Tests for walking timeline instructions."""

    def test_pinned_and_added_entries(self) -> None:
        """Test that pinned and regular entries are both collected."""
        instructions = [
            {"type": "TimelineClearCache"},
            {"type": "TimelinePinEntry", "entry": item_entry(tweet("1", "pinned"))},
            {"type": "TimelineAddEntries", "entries": [item_entry(tweet("2", "regular"))]},
        ]

        assert [t["rest_id"] for t in timeline_tweets(instructions)] == ["1", "2"]

    def test_conversation_module(self) -> None:
        """Test that tweets inside conversation modules are collected."""
        module = {
            "content": {
                "entryType": "TimelineTimelineModule",
                "items": [
                    {"item": item_entry(tweet(i, "thread"))["content"]} for i in ("3", "4")
                ],
            }
        }

        result = timeline_tweets([{"type": "TimelineAddEntries", "entries": [module]}])

        assert [t["rest_id"] for t in result] == ["3", "4"]

    def test_visibility_wrapper_unwrapped(self) -> None:
        """Test that limited visibility tweets are unwrapped."""
        wrapped = {"__typename": "TweetWithVisibilityResults", "tweet": tweet("5", "limited")}

        result = timeline_tweets(
            [{"type": "TimelineAddEntries", "entries": [item_entry(wrapped)]}]
        )

        assert result[0]["rest_id"] == "5"

    def test_cursors_and_tombstones_ignored(self) -> None:
        """Test that non-tweet entries are skipped."""
        cursor = {"content": {"entryType": "TimelineTimelineCursor", "value": "abc"}}
        tombstone = item_entry({"__typename": "TweetTombstone"})

        result = timeline_tweets(
            [{"type": "TimelineAddEntries", "entries": [cursor, tombstone]}]
        )

        assert result == []


class TestParseTweet:
    """Tests for tweet conversion."""

    def test_plain_tweet(self) -> None:
        """Test the fields of a plain tweet."""
        item = parse_tweet(tweet("1745", "hello world"))

        assert item.id == "1745"
        assert item.content == "hello world"
        assert item.url == "https://x.com/alice/status/1745"
        assert item.author == "Alice"
        assert item.published == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_media_collected_and_link_removed(self) -> None:
        """Test that media become images and their t.co link disappears."""
        media = [
            {"indices": [6, 29], "media_url_https": "https://pbs.twimg.com/media/a.jpg"},
            {"indices": [6, 29], "media_url_https": "https://pbs.twimg.com/media/b.jpg"},
        ]
        item = parse_tweet(
            tweet("1", "photo https://t.co/abcdefghij", entities={"media": media})
        )

        assert item.content == "photo"
        assert item.images == (
            "https://pbs.twimg.com/media/a.jpg",
            "https://pbs.twimg.com/media/b.jpg",
        )

    def test_retweet(self) -> None:
        """Test that retweets carry the original text and author."""
        original = tweet("1", "original", screen_name="bob", name="Bob")
        retweet = tweet(
            "2",
            "RT @bob: orig…",
            retweeted_status_result={"result": original},
        )

        item = parse_tweet(retweet)

        assert item.content == "RT @bob: original"
        assert item.id == "2"
        assert item.url == "https://x.com/alice/status/2"

    def test_quote(self) -> None:
        """Test that quoted tweets are appended to the text."""
        quoted = tweet("1", "quoted words", screen_name="bob")
        quote = tweet("2", "my take", is_quote_status=True)
        quote["quoted_status_result"] = {"result": quoted}

        item = parse_tweet(quote)

        assert item.content == "my take\n\n// @bob: quoted words"


class TestReplaceEntities:
    """Tests for entity replacement."""

    def test_expands_urls(self) -> None:
        """Test that t.co links are expanded."""
        text = "read https://t.co/xyz now"
        entities = {"urls": [{"indices": [5, 21], "expanded_url": "https://example.com/a"}]}

        assert replace_entities(text, entities) == "read https://example.com/a now"

    def test_multiple_entities(self) -> None:
        """Test that replacements do not shift each other."""
        text = "a https://t.co/1 b https://t.co/2"
        entities = {
            "urls": [
                {"indices": [2, 16], "expanded_url": "https://one.example"},
                {"indices": [19, 33], "expanded_url": "https://two.example"},
            ]
        }

        assert replace_entities(text, entities) == "a https://one.example b https://two.example"

    def test_overlap_leaves_text(self) -> None:
        """Test that overlapping ranges leave the text untouched."""
        text = "a https://t.co/1 b"
        entities = {
            "urls": [
                {"indices": [2, 16], "expanded_url": "x"},
                {"indices": [10, 18], "expanded_url": "y"},
            ]
        }

        assert replace_entities(text, entities) == text

    def test_out_of_range_leaves_text(self) -> None:
        """Test that indices past the end leave the text untouched."""
        entities = {"urls": [{"indices": [0, 99], "expanded_url": "x"}]}

        assert replace_entities("short", entities) == "short"

    def test_no_entities(self) -> None:
        """Test that plain text is returned as is."""
        assert replace_entities("plain", {}) == "plain"


class TestTwitterAdapter:
    """Tests for the GraphQL requests."""

    async def test_fetch_sorted_by_id(self, http: HttpClient) -> None:
        """Test that tweets come back oldest first, pinned one included."""
        adapter = TwitterAdapter(http)
        body = timeline(
            {"type": "TimelinePinEntry", "entry": item_entry(tweet("100", "pinned"))},
            {
                "type": "TimelineAddEntries",
                "entries": [item_entry(tweet("300", "new")), item_entry(tweet("200", "old"))],
            },
        )

        with aioresponses() as m:
            m.get(USER_PATTERN, payload={"data": {"user": {"result": {"rest_id": "42"}}}})
            m.get(TWEETS_PATTERN, payload=body)

            state = await adapter.fetch(TwitterSpec(username="alice", account="main"), ACCOUNT)

            calls = [call for calls in m.requests.values() for call in calls]

        assert state.item_ids == ["100", "200", "300"]
        headers = calls[0].kwargs["headers"]
        assert headers["x-csrf-token"] == "csrf123"
        assert headers["Cookie"] == "auth_token=abc; ct0=csrf123"
        assert headers["Authorization"].startswith("Bearer ")
        assert '"userId":"42"' in calls[1].kwargs["params"]["variables"]

    async def test_user_id_cached(self, http: HttpClient) -> None:
        """Test that the handle lookup happens once."""
        adapter = TwitterAdapter(http)

        with aioresponses() as m:
            m.get(USER_PATTERN, payload={"data": {"user": {"result": {"rest_id": "42"}}}})

            assert await adapter.user_id("Alice", ACCOUNT) == "42"
            assert await adapter.user_id("alice", ACCOUNT) == "42"

    async def test_unknown_user(self, http: HttpClient) -> None:
        """Test that a missing user is a fetch error."""
        adapter = TwitterAdapter(http)

        with aioresponses() as m:
            m.get(USER_PATTERN, payload={"data": {}})

            with pytest.raises(FetchError, match="not found"):
                await adapter.fetch(TwitterSpec(username="ghost", account="main"), ACCOUNT)

    async def test_requires_account(self, http: HttpClient) -> None:
        """Test that fetching without a session fails."""
        adapter = TwitterAdapter(http)

        with pytest.raises(FetchError, match="account"):
            await adapter.fetch(TwitterSpec(username="alice", account="main"))

    async def test_unexpected_response(self, http: HttpClient) -> None:
        """Test that a response without timeline is a fetch error."""
        adapter = TwitterAdapter(http)

        with aioresponses() as m:
            m.get(USER_PATTERN, payload={"data": {"user": {"result": {"rest_id": "42"}}}})
            m.get(TWEETS_PATTERN, payload={"errors": [{"message": "Rate limit exceeded"}]})

            with pytest.raises(FetchError, match="Unexpected"):
                await adapter.fetch(TwitterSpec(username="alice", account="main"), ACCOUNT)
