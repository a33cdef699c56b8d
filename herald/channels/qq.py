"""
QQ notification channel.

Sends text and image notifications through a OneBot v11 HTTP endpoint, as
exposed by Lagrange.OneBot and compatible implementations.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import aiohttp

from herald.channels.base import event_images, item_summary, live_headline, truncate
from herald.config import QQAccount, QQParams
from herald.errors import DeliveryError
from herald.models import ChangeEvent, EventKind, FeedItem

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4500


class QQChannel:
    """
    QQ notification channel.

    Posts ``send_group_msg`` / ``send_private_msg`` actions to the OneBot
    HTTP API of the account named by each target.
    """

    kind = "qq"

    def __init__(self, accounts: Mapping[str, QQAccount], timeout: int = 30):
        """
        Initialize the QQ channel.

        Parameters
        ----------
        accounts : Mapping[str, QQAccount]
            Configured QQ accounts by name.
        timeout : int
            HTTP request timeout in seconds.
        """
        self.accounts = dict(accounts)
        self.timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    def render(self, event: ChangeEvent, config: Mapping[str, Any]) -> str:
        """
        Format a change event as plain text.

        Parameters
        ----------
        event : ChangeEvent
            The event to format.
        config : Mapping[str, Any]
            Resolved target parameters (unused, QQ has a single format).

        Returns
        -------
        str
            Message text.
        """
        lines = [f"[{event.source or event.subscription_name}]"]

        if event.kind is not EventKind.NEW_ITEM:
            lines[0] += f" {live_headline(event)}"
            if event.payload.live_url:
                lines.append(event.payload.live_url)
            return truncate("\n".join(lines), MAX_MESSAGE_LENGTH)

        item: FeedItem = event.payload
        if item.author:
            lines[0] += f" {item.author}"
        if item.title:
            lines.append(item.title)
        summary = item_summary(item)
        if summary:
            lines.append(summary)
        if item.url:
            lines.append(item.url)

        return truncate("\n".join(lines), MAX_MESSAGE_LENGTH)

    async def deliver(
        self, config: Mapping[str, Any], body: str, event: ChangeEvent | None = None
    ) -> None:
        """
        Send a message to the configured group or friend.

        Images of the event are appended as OneBot image segments.

        Parameters
        ----------
        config : Mapping[str, Any]
            Resolved target parameters.
        body : str
            Message text.
        event : ChangeEvent | None
            The event the message was rendered from.

        Raises
        ------
        DeliveryError
            If the endpoint is unreachable or reports a failure.
        """
        params = QQParams.model_validate(dict(config))
        account = self._account(params.account)

        images = event_images(event) if event is not None else ()
        message: str | list[dict[str, Any]] = body
        if images:
            message = [{"type": "text", "data": {"text": body}}]
            message.extend({"type": "image", "data": {"file": url}} for url in images)

        if params.group_id is not None:
            action = "send_group_msg"
            payload = {"group_id": params.group_id, "message": message}
        else:
            action = "send_private_msg"
            payload = {"user_id": params.user_id, "message": message}

        await self._call(account, action, payload)
        logger.debug("Sent QQ message via %s (%s)", params.account, action)

    def _account(self, name: str) -> QQAccount:
        try:
            return self.accounts[name]
        except KeyError:
            raise DeliveryError(f"Unknown QQ account '{name}'") from None

    async def _call(
        self, account: QQAccount, action: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Invoke a OneBot action.

        Returns
        -------
        dict
            The ``data`` part of the response.

        Raises
        ------
        DeliveryError
            On transport errors or a non-zero ``retcode``.
        """
        session = await self._get_session()
        headers = {}
        if account.access_token:
            headers["Authorization"] = f"Bearer {account.access_token}"

        url = f"{account.http_url.rstrip('/')}/{action}"
        try:
            async with session.post(url, json=payload, headers=headers) as response:
                response.raise_for_status()
                data = await response.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise DeliveryError(f"OneBot request '{action}' failed: {e}") from e

        if not isinstance(data, dict) or data.get("retcode") != 0:
            raise DeliveryError(f"OneBot action '{action}' returned an error: {data}")

        return data.get("data") or {}

    async def test_connection(self, configs: Iterable[Mapping[str, Any]]) -> bool:
        """
        Check the OneBot endpoints used by the given targets.

        Returns
        -------
        bool
            True if every endpoint answered ``get_login_info``.
        """
        ok = True
        names = {QQParams.model_validate(dict(config)).account for config in configs}
        for name in sorted(names):
            try:
                info = await self._call(self._account(name), "get_login_info", {})
                logger.info("Connected to QQ account '%s' as %s", name, info.get("nickname"))
            except DeliveryError as e:
                logger.error("Failed to connect to QQ account '%s': %s", name, e)
                ok = False
        return ok

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
            logger.debug("QQ HTTP session closed")
