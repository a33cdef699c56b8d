"""
Twitter adapter.

Reads a user's timeline through the web client's GraphQL API using the
session of a shared account.
"""

import asyncio
import json
import logging
from datetime import datetime
from typing import Any

from herald.config import TwitterAccount, TwitterSpec
from herald.errors import FetchError
from herald.models import FeedItem, FeedState
from herald.platforms.http import HttpClient

logger = logging.getLogger(__name__)

USER_BY_SCREEN_NAME_URL = "https://x.com/i/api/graphql/xmU6X_CKVnQ5lSrCbAmJsg/UserByScreenName"
USER_TWEETS_URL = "https://x.com/i/api/graphql/V7H0Ap3_Hh2FyS75OCDO3Q/UserTweets"

# Public token of the web client.
BEARER_TOKEN = (
    "AAAAAAAAAAAAAAAAAAAAANRILgAAAAAAnNwIzUejRCOuH5E6I8xnZz4puTs"
    "%3D1Zv7ttfk8LF81IUq16cHjhLTvJu4FA33AGWWjCpTnA"
)

USER_FEATURES = {
    "hidden_profile_subscriptions_enabled": True,
    "rweb_tipjar_consumption_enabled": True,
    "responsive_web_graphql_exclude_directive_enabled": True,
    "verified_phone_label_enabled": False,
    "subscriptions_verification_info_is_identity_verified_enabled": True,
    "subscriptions_verification_info_verified_since_enabled": True,
    "highlights_tweets_tab_ui_enabled": True,
    "responsive_web_twitter_article_notes_tab_enabled": True,
    "subscriptions_feature_can_gift_premium": False,
    "creator_subscriptions_tweet_preview_api_enabled": True,
    "responsive_web_graphql_skip_user_profile_image_extensions_enabled": False,
    "responsive_web_graphql_timeline_navigation_enabled": True,
}

TWEETS_FEATURES = {
    "rweb_tipjar_consumption_enabled": True,
    "responsive_web_graphql_exclude_directive_enabled": True,
    "verified_phone_label_enabled": False,
    "creator_subscriptions_tweet_preview_api_enabled": True,
    "responsive_web_graphql_timeline_navigation_enabled": True,
    "responsive_web_graphql_skip_user_profile_image_extensions_enabled": False,
    "communities_web_enable_tweet_community_results_fetch": True,
    "c9s_tweet_anatomy_moderator_badge_enabled": True,
    "articles_preview_enabled": True,
    "tweetypie_unmention_optimization_enabled": True,
    "responsive_web_edit_tweet_api_enabled": True,
    "graphql_is_translatable_rweb_tweet_is_translatable_enabled": True,
    "view_counts_everywhere_api_enabled": True,
    "longform_notetweets_consumption_enabled": True,
    "responsive_web_twitter_article_tweet_consumption_enabled": True,
    "tweet_awards_web_tipping_enabled": False,
    "creator_subscriptions_quote_tweet_preview_enabled": False,
    "freedom_of_speech_not_reach_fetch_enabled": True,
    "standardized_nudges_misinfo": True,
    "tweet_with_visibility_results_prefer_gql_limited_actions_policy_enabled": True,
    "rweb_video_timestamps_enabled": True,
    "longform_notetweets_rich_text_read_enabled": True,
    "longform_notetweets_inline_media_enabled": True,
    "responsive_web_enhance_cards_enabled": False,
}

CREATED_AT_FORMAT = "%a %b %d %H:%M:%S %z %Y"


class TwitterAdapter:
    """
    Timeline of a Twitter user.

    User ids are resolved once per handle and cached. Pinned tweets and
    conversation modules are included; retweets and quotes are
    flattened into the item text.
    """

    kind = "twitter"
    display_name = TwitterSpec.display_name

    def __init__(self, http: HttpClient):
        self.http = http
        self._user_ids: dict[str, str] = {}
        self._lock = asyncio.Lock()

    def _headers(self, account: TwitterAccount) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {BEARER_TOKEN}",
            "Cookie": account.cookies,
            "x-csrf-token": account.csrf_token,
        }

    async def user_id(self, username: str, account: TwitterAccount) -> str:
        """
        Resolve a handle to its numeric user id.

        Parameters
        ----------
        username : str
            Handle without the leading '@'.
        account : TwitterAccount
            Session used for the lookup.

        Returns
        -------
        str
            The user's ``rest_id``.
        """
        async with self._lock:
            cached = self._user_ids.get(username.lower())
            if cached is not None:
                return cached

            response = await self.http.get_json(
                USER_BY_SCREEN_NAME_URL,
                params={
                    "variables": _compact(
                        {"screen_name": username, "withSafetyModeUserFields": True}
                    ),
                    "features": _compact(USER_FEATURES),
                    "fieldToggles": _compact({"withAuxiliaryUserLabels": False}),
                },
                headers=self._headers(account),
            )
            try:
                user_id = response["data"]["user"]["result"]["rest_id"]
            except (KeyError, TypeError) as e:
                raise FetchError(f"Twitter user '{username}' not found") from e

            self._user_ids[username.lower()] = user_id
            return user_id

    async def fetch(self, spec: TwitterSpec, account: TwitterAccount | None = None) -> FeedState:
        if account is None:
            raise FetchError("Twitter requires an account")

        user_id = await self.user_id(spec.username, account)
        response = await self.http.get_json(
            USER_TWEETS_URL,
            params={
                "variables": _compact(
                    {
                        "userId": user_id,
                        "count": 20,
                        "includePromotedContent": True,
                        "withQuickPromoteEligibilityTweetFields": True,
                        "withVoice": True,
                        "withV2Timeline": True,
                    }
                ),
                "features": _compact(TWEETS_FEATURES),
                "fieldToggles": _compact({"withArticlePlainText": False}),
            },
            headers=self._headers(account),
        )

        try:
            instructions = response["data"]["user"]["result"]["timeline_v2"]["timeline"][
                "instructions"
            ]
        except (KeyError, TypeError) as e:
            raise FetchError(f"Unexpected UserTweets response for '{spec.username}'") from e

        items = []
        for tweet in timeline_tweets(instructions):
            try:
                items.append(parse_tweet(tweet))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(
                    "Skipping unparsable tweet %s of '%s': %s", tweet.get("rest_id"), spec.username, e
                )

        # Tweet ids grow with time; this also moves a pinned tweet into place.
        items.sort(key=lambda item: int(item.id))
        return FeedState(items=tuple(items))


def _compact(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


def timeline_tweets(instructions: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Collect tweet objects from timeline instructions.

    Parameters
    ----------
    instructions : list[dict[str, Any]]
        ``timeline.instructions`` of a UserTweets response.

    Returns
    -------
    list[dict[str, Any]]
        Tweet results, unwrapped from visibility wrappers.
    """
    entries = []
    for instruction in instructions:
        kind = instruction.get("type")
        if kind == "TimelinePinEntry":
            entries.append(instruction["entry"])
        elif kind == "TimelineAddEntries":
            entries.extend(instruction.get("entries") or [])

    item_contents = []
    for entry in entries:
        content = entry.get("content") or {}
        entry_type = content.get("entryType")
        if entry_type == "TimelineTimelineItem":
            item_contents.append(content.get("itemContent") or {})
        elif entry_type == "TimelineTimelineModule":
            for module_item in content.get("items") or []:
                item_contents.append((module_item.get("item") or {}).get("itemContent") or {})

    tweets = []
    for item_content in item_contents:
        if item_content.get("itemType") != "TimelineTweet":
            continue
        result = _unwrap((item_content.get("tweet_results") or {}).get("result"))
        if result is not None:
            tweets.append(result)
    return tweets


def _unwrap(result: dict[str, Any] | None) -> dict[str, Any] | None:
    if not result:
        return None
    typename = result.get("__typename")
    if typename == "TweetWithVisibilityResults":
        return result.get("tweet")
    if typename == "Tweet":
        return result
    return None


def parse_tweet(tweet: dict[str, Any]) -> FeedItem:
    """
    Convert a GraphQL tweet object into a feed item.

    Parameters
    ----------
    tweet : dict[str, Any]
        An unwrapped ``Tweet`` result.

    Returns
    -------
    FeedItem
        The parsed item.
    """
    legacy = tweet["legacy"]
    user = tweet["core"]["user_results"]["result"]["legacy"]
    screen_name = user["screen_name"]

    retweeted = _unwrap((legacy.get("retweeted_status_result") or {}).get("result"))
    quoted = _unwrap((tweet.get("quoted_status_result") or {}).get("result"))

    if retweeted is not None:
        original = parse_tweet(retweeted)
        content = f"RT @{_screen_name(retweeted)}: {original.content}"
        images = original.images
    else:
        content = replace_entities(legacy.get("full_text", ""), legacy.get("entities") or {})
        images = tuple(
            media["media_url_https"]
            for media in (legacy.get("entities") or {}).get("media") or []
            if media.get("media_url_https")
        )
        if quoted is not None and legacy.get("is_quote_status"):
            original = parse_tweet(quoted)
            content = f"{content}\n\n// @{_screen_name(quoted)}: {original.content}"

    published = None
    if legacy.get("created_at"):
        published = datetime.strptime(legacy["created_at"], CREATED_AT_FORMAT)

    return FeedItem(
        id=tweet["rest_id"],
        content=content,
        url=f"https://x.com/{screen_name}/status/{tweet['rest_id']}",
        author=user.get("name", screen_name),
        published=published,
        images=images,
    )


def _screen_name(tweet: dict[str, Any]) -> str:
    return tweet["core"]["user_results"]["result"]["legacy"]["screen_name"]


def replace_entities(text: str, entities: dict[str, Any]) -> str:
    """
    Expand t.co links and drop media links from a tweet's text.

    Gives up and returns the text unchanged when entity ranges overlap
    or fall outside the text.

    Parameters
    ----------
    text : str
        ``legacy.full_text`` of the tweet.
    entities : dict[str, Any]
        ``legacy.entities`` of the tweet.

    Returns
    -------
    str
        Text with entities replaced.
    """
    replacements: dict[tuple[int, int], str] = {}
    # Several media of one tweet share the same indices.
    for media in entities.get("media") or []:
        start, end = media["indices"]
        replacements[(start, end)] = ""
    for url in entities.get("urls") or []:
        start, end = url["indices"]
        replacements[(start, end)] = url.get("expanded_url", url.get("url", ""))

    spans = sorted(replacements)
    for (_, previous_end), (start, _) in zip(spans, spans[1:]):
        if start < previous_end:
            logger.warning("Overlapping entities in tweet, leaving text as is: %r", text)
            return text
    if spans and spans[-1][1] > len(text):
        logger.warning("Entity indices out of range in tweet, leaving text as is: %r", text)
        return text

    for start, end in reversed(spans):
        text = text[:start] + replacements[(start, end)] + text[end:]
    return text.strip()
