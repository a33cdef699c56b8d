"""
Shared fixtures for Herald tests.

Provides common test fixtures for use across all test modules.
"""

import asyncio
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from herald.config import (
    BilibiliLiveSpec,
    NotifyRef,
    NotifyTarget,
    RssSpec,
    Subscription,
)
from herald.models import FeedItem, FeedState, LiveStatus
from herald.storage import StateStore


# Path to test fixtures directory
FIXTURES_DIR = Path(__file__).parent / "fixtures"

DETECTED_AT = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def fixtures_dir() -> Path:
    """Return path to fixtures directory."""
    return FIXTURES_DIR


@pytest.fixture
def sample_config_path(fixtures_dir: Path) -> Path:
    """Return path to sample config file."""
    return fixtures_dir / "sample_config.yaml"


@pytest.fixture
def sample_rss_content(fixtures_dir: Path) -> str:
    """Return contents of sample RSS feed."""
    return (fixtures_dir / "sample_rss.xml").read_text()


@pytest.fixture
def sample_atom_content(fixtures_dir: Path) -> str:
    """Return contents of sample Atom feed."""
    return (fixtures_dir / "sample_atom.xml").read_text()


@pytest.fixture
def live_subscription() -> Subscription:
    """Create a live subscription with default reporting options."""
    return Subscription(
        name="alice@bilibili.live:123456",
        platform=BilibiliLiveSpec(user_id=123456),
        notify=(NotifyRef(target="tg_main"),),
    )


@pytest.fixture
def feed_subscription() -> Subscription:
    """Create a feed subscription."""
    return Subscription(
        name="alice@rss:https://example.com/feed.xml",
        platform=RssSpec(url="https://example.com/feed.xml"),
        notify=(NotifyRef(target="tg_main"),),
    )


@pytest.fixture
def online_status() -> LiveStatus:
    """
    Create an online live status.

    Returns
    -------
    LiveStatus
        A stream that is live with a title.
    """
    return LiveStatus(
        online=True,
        title="Playing games",
        streamer_name="Alice",
        live_url="https://live.bilibili.com/1",
        cover_url="https://i0.hdslb.com/cover.jpg",
    )


@pytest.fixture
def sample_item() -> FeedItem:
    """
    Create a sample feed item.

    Returns
    -------
    FeedItem
        A fully populated item.
    """
    return FeedItem(
        id="item-1",
        content="<p>Hello <b>world</b> &amp; friends</p>",
        url="https://example.com/posts/1",
        title="First post",
        author="Alice",
        published=DETECTED_AT,
        images=("https://example.com/1.jpg",),
    )


def feed(*ids: str, seen: tuple[str, ...] = ()) -> FeedState:
    """Build a feed state whose items carry the given ids, oldest first."""
    return FeedState(items=tuple(FeedItem(id=i, content=f"post {i}") for i in ids), seen=seen)


@pytest.fixture
def minimal_config_dict() -> dict[str, Any]:
    """
    Create a minimal valid configuration dictionary.

    Returns
    -------
    dict
        Configuration dictionary that can be used to create AppConfig.
    """
    return {
        "interval": "1min",
        "telegram": {"token": "1234567890:ABCdefGHIjklMNOpqrsTUVwxyz"},
        "notify": {
            "tg_main": {"channel": "telegram", "chat_id": -1001234567890},
        },
        "subscriptions": {
            "alice": [
                {
                    "platform": {"kind": "bilibili.live", "user_id": 123456},
                    "notify": ["tg_main"],
                }
            ]
        },
    }


@pytest.fixture
def full_config_dict(minimal_config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Create a configuration dictionary using every section.

    Returns
    -------
    dict
        Complete configuration dictionary.
    """
    config = dict(minimal_config_dict)
    config["storage"] = {"database_path": ":memory:", "seen_cap": 100}
    config["defaults"] = {"request_timeout": 10, "max_retries": 2, "proxy": None}
    config["heartbeat"] = {"url": "https://hc.example.com/ping", "interval": "30s"}
    config["accounts"] = {
        "main_twitter": {"platform": "twitter", "cookies": "auth_token=abc; ct0=csrf123"},
        "bili": {"platform": "bilibili", "cookies": "SESSDATA=xyz"},
        "my_qq": {"platform": "qq", "http_url": "http://localhost:8000", "access_token": "t"},
    }
    config["notify"] = {
        "tg_main": {"channel": "telegram", "chat_id": -1001234567890, "thread_id": 114},
        "qq_group": {"channel": "qq", "account": "my_qq", "group_id": 123456},
        "phone": {"channel": "simplex", "contact": "alice"},
    }
    config["subscriptions"] = {
        "alice": [
            {
                "platform": {"kind": "bilibili.live", "user_id": 123456},
                "interval": "30s",
                "report_offline": True,
                "notify": [
                    "tg_main",
                    {"ref": "qq_group"},
                    {"to": "tg_main", "thread_id": 514},
                ],
            },
            {
                "platform": {"kind": "twitter", "username": "@alice", "account": "main_twitter"},
                "notify": ["phone"],
            },
        ],
        "bob": [
            {
                "platform": {"kind": "bilibili.space", "user_id": 42, "account": "bili"},
                "notify": [{"ref": "tg_main", "notifications": {"post": False}}],
            },
        ],
    }
    return config


@pytest.fixture
def telegram_target() -> NotifyTarget:
    """Create a Telegram notify target posting into a forum topic."""
    return NotifyTarget(
        name="tg_main", channel="telegram", config={"chat_id": -100123, "thread_id": 114}
    )


@pytest_asyncio.fixture
async def in_memory_store() -> AsyncGenerator[StateStore, None]:
    """
    Create an in-memory state store for testing.

    Yields
    ------
    StateStore
        An initialized in-memory store.
    """
    store = StateStore(":memory:")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def mock_channel() -> MagicMock:
    """
    Create a mock notification channel.

    Returns
    -------
    MagicMock
        A channel whose render echoes the event kind and whose deliver
        records calls.
    """
    channel = MagicMock()
    channel.kind = "telegram"
    channel.render = MagicMock(side_effect=lambda event, config: f"{event.kind.value}")
    channel.deliver = AsyncMock()
    channel.test_connection = AsyncMock(return_value=True)
    channel.close = AsyncMock()
    return channel


@pytest.fixture
def mock_telegram_bot() -> MagicMock:
    """
    Create a mock Telegram bot.

    Returns
    -------
    MagicMock
        A mock Bot instance with common methods mocked.
    """
    bot = MagicMock()
    bot.send_message = AsyncMock(return_value=MagicMock(message_id=1))
    bot.send_photo = AsyncMock(return_value=MagicMock(message_id=2))
    bot.send_media_group = AsyncMock(
        return_value=(MagicMock(message_id=3), MagicMock(message_id=4))
    )
    bot.edit_message_text = AsyncMock()
    bot.edit_message_caption = AsyncMock()
    bot.get_me = AsyncMock(return_value=MagicMock(username="test_bot"))
    bot.shutdown = AsyncMock()
    return bot


class StubAdapter:
    """
    Adapter returning scripted snapshots and recording concurrency.

    Each script element is either a snapshot to return or an exception
    to raise. The last element repeats once the script is exhausted.
    """

    kind = "bilibili.live"
    display_name = "stub"

    def __init__(self, script: list[Any], delay: float = 0.0):
        self.script = list(script)
        self.delay = delay
        self.calls = 0
        self.in_flight: dict[Any, int] = {}
        self.max_in_flight: dict[Any, int] = {}

    async def fetch(self, spec: Any, account: Any = None) -> Any:
        key = id(account) if account is not None else None
        self.in_flight[key] = self.in_flight.get(key, 0) + 1
        self.max_in_flight[key] = max(self.max_in_flight.get(key, 0), self.in_flight[key])
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            result = self.script[min(self.calls, len(self.script) - 1)]
            self.calls += 1
            if isinstance(result, BaseException):
                raise result
            return result
        finally:
            self.in_flight[key] -= 1


@pytest.fixture
def make_feed():
    """Return the ``feed`` builder."""
    return feed


@pytest.fixture
def make_adapter():
    """Return the ``StubAdapter`` class."""
    return StubAdapter
