"""
Platform adapters, one per supported source kind.
"""

from herald.platforms.base import PlatformAdapter
from herald.platforms.bilibili import (
    BilibiliLiveAdapter,
    BilibiliSpaceAdapter,
    BilibiliVideoAdapter,
)
from herald.platforms.http import HttpClient
from herald.platforms.rss import RssAdapter
from herald.platforms.twitter import TwitterAdapter

__all__ = [
    "BilibiliLiveAdapter",
    "BilibiliSpaceAdapter",
    "BilibiliVideoAdapter",
    "HttpClient",
    "PlatformAdapter",
    "RssAdapter",
    "TwitterAdapter",
    "build_adapters",
]


def build_adapters(http: HttpClient) -> dict[str, PlatformAdapter]:
    """
    Create one adapter per supported platform kind.

    Parameters
    ----------
    http : HttpClient
        Shared HTTP client.

    Returns
    -------
    dict[str, PlatformAdapter]
        Adapters keyed by platform kind.
    """
    adapters = [
        BilibiliLiveAdapter(http),
        BilibiliVideoAdapter(http),
        BilibiliSpaceAdapter(http),
        TwitterAdapter(http),
        RssAdapter(http),
    ]
    return {adapter.kind: adapter for adapter in adapters}
