"""
RSS/Atom feed adapter.

Fetches feeds through the shared HTTP client and parses them with
feedparser.
"""

import calendar
import logging
from datetime import datetime, timezone
from typing import Any

import feedparser

from herald.config import RssSpec
from herald.errors import FetchError
from herald.models import FeedItem, FeedState
from herald.platforms.http import HttpClient

logger = logging.getLogger(__name__)


class RssAdapter:
    """RSS or Atom feed, as a feed of entries."""

    kind = "rss"
    display_name = RssSpec.display_name

    def __init__(self, http: HttpClient):
        self.http = http

    async def fetch(self, spec: RssSpec, account: Any = None) -> FeedState:
        logger.debug("Fetching feed %s%s", spec.url, " with cookies" if spec.cookies else "")
        content = await self.http.get_text(spec.url, cookies=spec.cookies)
        return parse_feed(content, spec.url)


def parse_feed(content: str, source: str = "") -> FeedState:
    """
    Parse feed content into a feed state.

    Parameters
    ----------
    content : str
        Raw feed XML/content.
    source : str
        Feed URL, for logging.

    Returns
    -------
    FeedState
        Entries oldest first.

    Raises
    ------
    FetchError
        If the content is not a feed at all.
    """
    # Strip leading whitespace - some servers return content with
    # leading newlines which breaks XML declaration parsing
    content = content.lstrip()
    parsed: Any = feedparser.parse(content)

    if parsed.bozo and parsed.bozo_exception:
        if not parsed.entries and not parsed.get("version"):
            raise FetchError(f"Could not parse feed {source}: {parsed.bozo_exception}")
        logger.warning("Feed '%s' has parsing issues: %s", source, parsed.bozo_exception)

    items = []
    for entry in parsed.entries:
        item = entry_to_item(entry)
        if item is None:
            logger.warning("Skipping entry without id or link in feed '%s'", source)
            continue
        items.append(item)

    # Feeds list newest first.
    items.reverse()
    return FeedState(items=tuple(items))


def entry_to_item(entry: Any) -> FeedItem | None:
    """
    Create a FeedItem from a feedparser entry.

    Parameters
    ----------
    entry : Any
        A feedparser entry object.

    Returns
    -------
    FeedItem | None
        The item, or None if the entry has neither id nor link.
    """
    item_id = entry.get("id") or entry.get("link")
    if not item_id:
        return None

    # Prefer full content over summary
    content = ""
    if entry.get("content"):
        content = entry.content[0].get("value", "")
    elif entry.get("summary"):
        content = entry.summary

    author = entry.get("author") or (entry.get("author_detail") or {}).get("name", "")

    published = None
    parsed_time = entry.get("published_parsed") or entry.get("updated_parsed")
    if parsed_time:
        published = datetime.fromtimestamp(calendar.timegm(parsed_time), tz=timezone.utc)

    images = tuple(
        enclosure["href"]
        for enclosure in entry.get("enclosures") or []
        if enclosure.get("type", "").startswith("image/") and enclosure.get("href")
    )

    return FeedItem(
        id=item_id,
        content=content,
        url=entry.get("link", ""),
        title=entry.get("title", ""),
        author=author or "",
        published=published,
        images=images,
    )
