"""
bilibili adapters: live room status, video series and user dynamics.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from herald.config import BilibiliAccount, BilibiliLiveSpec, BilibiliSpaceSpec, BilibiliVideoSpec
from herald.errors import FetchError
from herald.models import FeedItem, FeedState, LiveStatus
from herald.platforms.http import HttpClient

logger = logging.getLogger(__name__)

LIVE_API = "https://api.live.bilibili.com/room/v1/Room/get_status_info_by_uids"
SERIES_API = "https://api.bilibili.com/x/series/archives"
SPACE_API = "https://api.bilibili.com/x/polymer/web-dynamic/v1/feed/space"

# Returned by the dynamics API when the request lacks a valid session.
AUTH_ERROR_CODE = -352


def _check_code(response: Any, what: str) -> Any:
    """
    Unwrap the ``data`` of a bilibili API response.

    Raises
    ------
    FetchError
        If the response is malformed or carries a non-zero code.
    """
    if not isinstance(response, dict) or "code" not in response:
        raise FetchError(f"Unexpected {what} response: {response!r:.200}")
    if response["code"] != 0:
        raise FetchError(
            f"{what} returned code {response['code']}: {response.get('message', '')}"
        )
    return response.get("data")


class BilibiliLiveAdapter:
    """Live room status of a bilibili user."""

    kind = "bilibili.live"
    display_name = BilibiliLiveSpec.display_name

    def __init__(self, http: HttpClient):
        self.http = http

    async def fetch(self, spec: BilibiliLiveSpec, account: Any = None) -> LiveStatus:
        response = await self.http.post_json(LIVE_API, {"uids": [spec.user_id]})
        data = _check_code(response, "bilibili live status")

        if not isinstance(data, dict) or not data:
            raise FetchError(f"No live room found for bilibili user {spec.user_id}")

        room = data.get(str(spec.user_id)) or next(iter(data.values()))
        try:
            started_at = None
            if room.get("live_time"):
                started_at = datetime.fromtimestamp(int(room["live_time"]), tz=timezone.utc)
            return LiveStatus(
                online=room["live_status"] == 1,
                title=room.get("title", ""),
                started_at=started_at,
                streamer_name=room.get("uname", ""),
                live_url=f"https://live.bilibili.com/{room['room_id']}",
                cover_url=room.get("cover_from_user", ""),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"Malformed live room data for {spec.user_id}: {e}") from e


class BilibiliVideoAdapter:
    """Videos of a bilibili series, as a feed."""

    kind = "bilibili.video"
    display_name = BilibiliVideoSpec.display_name

    def __init__(self, http: HttpClient):
        self.http = http

    async def fetch(self, spec: BilibiliVideoSpec, account: Any = None) -> FeedState:
        response = await self.http.get_json(
            SERIES_API, params={"mid": spec.user_id, "series_id": spec.series_id}
        )
        data = _check_code(response, "bilibili series")

        items = []
        for archive in (data or {}).get("archives") or []:
            try:
                items.append(
                    FeedItem(
                        id=str(archive["aid"]),
                        title=archive.get("title", ""),
                        url=f"https://www.bilibili.com/video/{archive['bvid']}",
                        images=(archive["pic"],) if archive.get("pic") else (),
                        published=_from_timestamp(archive.get("pubdate")),
                    )
                )
            except KeyError as e:
                logger.warning("Skipping malformed archive in series %s: %s", spec.series_id, e)

        # The API lists newest first.
        items.reverse()
        return FeedState(items=tuple(items))


class BilibiliSpaceAdapter:
    """
    Dynamics ("space" feed) of a bilibili user.

    Reposts are flattened into the reposting item's text. Live
    recommendation cards are ignored.
    """

    kind = "bilibili.space"
    display_name = BilibiliSpaceSpec.display_name

    def __init__(self, http: HttpClient):
        self.http = http

    async def fetch(
        self, spec: BilibiliSpaceSpec, account: BilibiliAccount | None = None
    ) -> FeedState:
        headers = {"Referer": f"https://space.bilibili.com/{spec.user_id}/dynamic"}
        if account is not None:
            headers["Cookie"] = account.cookies

        response = await self.http.get_json(
            SPACE_API, params={"host_mid": spec.user_id}, headers=headers
        )
        if isinstance(response, dict) and response.get("code") == AUTH_ERROR_CODE:
            raise FetchError(
                "bilibili rejected the request as unauthenticated (code -352), "
                "check the account cookies"
            )
        data = _check_code(response, "bilibili space")

        items = []
        for raw in (data or {}).get("items") or []:
            if _major_type(raw) == "MAJOR_TYPE_LIVE_RCMD":
                continue
            try:
                item = parse_space_item(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(
                    "Skipping unparsable dynamic %s of %s: %s", raw.get("id_str"), spec.user_id, e
                )
                continue
            items.append(item)

        items.reverse()
        return FeedState(items=tuple(items))


def _major_type(raw: dict[str, Any]) -> str | None:
    major = ((raw.get("modules") or {}).get("module_dynamic") or {}).get("major")
    return major.get("type") if major else None


def _from_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def parse_space_item(raw: dict[str, Any]) -> FeedItem:
    """
    Convert one dynamics API item into a feed item.

    Parameters
    ----------
    raw : dict[str, Any]
        An element of ``data.items``.

    Returns
    -------
    FeedItem
        The parsed item.

    Raises
    ------
    ValueError
        If the item has no displayable content.
    """
    id_str = raw["id_str"]
    modules = raw["modules"]
    author = modules.get("module_author") or {}
    dynamic = modules.get("module_dynamic") or {}

    desc = (dynamic.get("desc") or {}).get("text") or ""
    major = dynamic.get("major") or {}
    major_type = major.get("type")

    title = ""
    major_text = ""
    url = f"https://www.bilibili.com/opus/{id_str}"
    images: list[str] = []

    if major_type == "MAJOR_TYPE_OPUS":
        opus = major["opus"]
        title = opus.get("title") or ""
        major_text = (opus.get("summary") or {}).get("text") or ""
        images = [pic["url"] for pic in opus.get("pics") or []]
    elif major_type == "MAJOR_TYPE_ARCHIVE":
        archive = major["archive"]
        title = archive["title"]
        major_text = f"投稿了视频《{archive['title']}》"
        url = f"https://www.bilibili.com/video/{archive['bvid']}"
        images = [archive["cover"]] if archive.get("cover") else []
    elif major_type == "MAJOR_TYPE_ARTICLE":
        article = major["article"]
        title = article["title"]
        major_text = f"投稿了文章《{article['title']}》"
        url = f"https://www.bilibili.com/read/cv{article['id']}"
        images = list(article.get("covers") or [])
    elif major_type == "MAJOR_TYPE_DRAW":
        images = [item["src"] for item in major["draw"].get("items") or []]
    elif major_type == "MAJOR_TYPE_PGC":
        pgc = major["pgc"]
        title = pgc["title"]
        major_text = f"番剧《{pgc['title']}》"
        url = f"https://www.bilibili.com/bangumi/play/ep{pgc['epid']}"
        images = [pgc["cover"]] if pgc.get("cover") else []

    content = "\n\n".join(part for part in (desc, major_text) if part)

    orig = raw.get("orig")
    if orig:
        original = parse_space_item(orig)
        quoted = original.content
        if original.author:
            quoted = f"// @{original.author}: {quoted}"
        content = f"{content}\n\n{quoted}" if content else quoted

    if not content and not images:
        raise ValueError("dynamic has no content")

    return FeedItem(
        id=id_str,
        content=content,
        url=url,
        title=title,
        author=author.get("name", ""),
        published=_from_timestamp(author.get("pub_ts")),
        images=tuple(images),
    )
