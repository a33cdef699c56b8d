"""
SimpleX Chat notification channel.

Sends notifications to SimpleX Chat via the CLI WebSocket interface.
Requires the simplex-chat CLI to be running externally with -p <port> flag.
"""

import asyncio
import contextlib
import json
import logging
import uuid
from collections.abc import Iterable, Mapping
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    ConnectionClosed,
    InvalidHandshake,
    InvalidURI,
)

from herald.channels.base import event_images, item_summary, live_headline, truncate
from herald.config import SimpleXParams
from herald.errors import DeliveryError
from herald.models import ChangeEvent, EventKind, FeedItem

logger = logging.getLogger(__name__)

# Maximum message length for SimpleX (conservative estimate)
MAX_MESSAGE_LENGTH = 14000


class SimpleXConnection:
    """
    Request/response session with one simplex-chat CLI.

    Commands carry a correlation ID; a background task dispatches
    responses to the waiting futures.
    """

    def __init__(self, websocket_url: str, connect_timeout: int = 10, message_timeout: int = 30):
        self.websocket_url = websocket_url
        self.connect_timeout = connect_timeout
        self.message_timeout = message_timeout
        self._ws: ClientConnection | None = None
        self._pending_responses: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._receive_task: asyncio.Task | None = None
        self._connected = False
        self._connect_lock = asyncio.Lock()

    async def connect(self) -> bool:
        """
        Establish WebSocket connection to simplex-chat CLI.

        Returns
        -------
        bool
            True if connection was established successfully.
        """
        async with self._connect_lock:
            if self._ws is not None and self._connected:
                return True

            try:
                self._ws = await asyncio.wait_for(
                    websockets.connect(self.websocket_url),
                    timeout=self.connect_timeout,
                )
            except TimeoutError:
                logger.error("Timeout connecting to SimpleX WebSocket at %s", self.websocket_url)
                return False
            except InvalidURI as e:
                logger.error("Invalid SimpleX WebSocket URL: %s", e)
                return False
            except InvalidHandshake as e:
                logger.error("SimpleX WebSocket handshake failed: %s", e)
                return False
            except OSError as e:
                logger.error("Failed to connect to SimpleX WebSocket: %s", e)
                return False

            self._connected = True
            logger.info("Connected to SimpleX WebSocket at %s", self.websocket_url)
            self._receive_task = asyncio.create_task(self._receive_loop())
            return True

    async def _receive_loop(self) -> None:
        """Background task to receive and dispatch WebSocket responses."""
        if self._ws is None:
            return

        try:
            async for message in self._ws:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON from SimpleX: %s", message[:100])
                    continue

                corr_id = data.get("corrId")
                if corr_id and corr_id in self._pending_responses:
                    future = self._pending_responses.pop(corr_id)
                    if not future.done():
                        future.set_result(data)
                else:
                    logger.debug("SimpleX async event: %s", data.get("resp", {}).get("type"))

        except ConnectionClosed as e:
            logger.warning("SimpleX WebSocket connection closed: %s", e)
        finally:
            self._connected = False

    async def send_command(self, command: str) -> dict[str, Any]:
        """
        Send a command to simplex-chat and wait for its response.

        Parameters
        ----------
        command : str
            The command to send (e.g., "@contact message").

        Returns
        -------
        dict
            Response data.

        Raises
        ------
        DeliveryError
            If the CLI is unreachable, the connection drops or no response
            arrives in time.
        """
        if not await self.connect() or self._ws is None:
            raise DeliveryError(f"SimpleX CLI at {self.websocket_url} is unreachable")

        corr_id = str(uuid.uuid4())
        request = json.dumps({"corrId": corr_id, "cmd": command})
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending_responses[corr_id] = future

        try:
            await self._ws.send(request)
            logger.debug("Sent SimpleX command: %s", command[:100])
            return await asyncio.wait_for(future, timeout=self.message_timeout)
        except TimeoutError as e:
            raise DeliveryError("Timeout waiting for SimpleX response") from e
        except ConnectionClosed as e:
            self._connected = False
            raise DeliveryError(f"SimpleX connection closed while sending: {e}") from e
        finally:
            self._pending_responses.pop(corr_id, None)

    async def close(self) -> None:
        """Close the WebSocket connection and cleanup resources."""
        if self._receive_task is not None:
            self._receive_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._receive_task
            self._receive_task = None

        for future in self._pending_responses.values():
            if not future.done():
                future.cancel()
        self._pending_responses.clear()

        if self._ws is not None:
            with contextlib.suppress(ConnectionClosed, OSError):
                await self._ws.close()
            self._ws = None

        self._connected = False


class SimpleXChannel:
    """
    SimpleX Chat notification channel.

    Holds one connection per simplex-chat CLI and sends messages to
    pre-established contacts.
    """

    kind = "simplex"

    def __init__(self):
        self._connections: dict[str, SimpleXConnection] = {}

    def _params(self, config: Mapping[str, Any]) -> SimpleXParams:
        return SimpleXParams.model_validate(dict(config))

    def _connection(self, params: SimpleXParams) -> SimpleXConnection:
        connection = self._connections.get(params.websocket_url)
        if connection is None:
            connection = SimpleXConnection(
                params.websocket_url,
                connect_timeout=params.connect_timeout,
                message_timeout=params.message_timeout,
            )
            self._connections[params.websocket_url] = connection
        return connection

    def render(self, event: ChangeEvent, config: Mapping[str, Any]) -> str:
        """
        Format a change event as a SimpleX message.

        Uses Markdown-like formatting supported by SimpleX.

        Parameters
        ----------
        event : ChangeEvent
            The event to format.
        config : Mapping[str, Any]
            Resolved target parameters (unused).

        Returns
        -------
        str
            Formatted message string.
        """
        parts = [f"*[{event.source or event.subscription_name}]*"]

        if event.kind is not EventKind.NEW_ITEM:
            parts.append(f"\n{live_headline(event)}")
            if event.payload.live_url:
                parts.append(f"\n{event.payload.live_url}")
            parts.extend(f"\n{url}" for url in event_images(event))
            return truncate("".join(parts), MAX_MESSAGE_LENGTH)

        item: FeedItem = event.payload
        if item.author:
            parts.append(f" _{item.author}_")
        if item.title:
            parts.append(f"\n*{item.title}*")
        summary = item_summary(item)
        if summary:
            parts.append(f"\n\n{summary}")
        if item.url:
            parts.append(f"\n{item.url}")
        images = event_images(event)
        if images:
            parts.append("\n\n" + "\n".join(images))

        return truncate("".join(parts), MAX_MESSAGE_LENGTH)

    async def deliver(
        self, config: Mapping[str, Any], body: str, event: ChangeEvent | None = None
    ) -> None:
        """
        Send a message to the target contact.

        Parameters
        ----------
        config : Mapping[str, Any]
            Resolved target parameters.
        body : str
            Message text, image links included.
        event : ChangeEvent | None
            The event the message was rendered from (unused).

        Raises
        ------
        DeliveryError
            If the message could not be sent.
        """
        params = self._params(config)
        response = await self._connection(params).send_command(f"@{params.contact} {body}")

        resp = response.get("resp", {})
        resp_type = resp.get("type", "")

        if resp_type == "chatCmdError" or "error" in resp:
            error = resp.get("chatError", resp.get("error", "Unknown error"))
            raise DeliveryError(f"SimpleX error: {error}")

        if resp_type != "newChatItems" and "chatItems" not in resp:
            logger.debug("SimpleX response type: %s", resp_type)

        logger.debug("Sent SimpleX message to %s", params.contact)

    async def test_connection(self, configs: Iterable[Mapping[str, Any]]) -> bool:
        """
        Check every simplex-chat CLI used by the given targets.

        Uses "/u" (show user profile) as a harmless test command.

        Returns
        -------
        bool
            True if every CLI answered.
        """
        ok = True
        for config in configs:
            params = self._params(config)
            try:
                await self._connection(params).send_command("/u")
                logger.info(
                    "Connected to SimpleX Chat at %s, will send to contact: %s",
                    params.websocket_url,
                    params.contact,
                )
            except DeliveryError as e:
                logger.error("Failed to verify SimpleX connection: %s", e)
                ok = False
        return ok

    async def close(self) -> None:
        """Close all connections."""
        for connection in self._connections.values():
            await connection.close()
        self._connections.clear()
        logger.debug("SimpleX client closed")
