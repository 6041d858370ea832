"""
Relay transport for Paygate.

This module provides an abstract base class for the one multiplexed connection
a client holds to a Nostr relay, and a websocket implementation. The transport
only frames NIP-01 control messages; it never interprets filters or event
content. Decoding and correlation are the caller's job.
"""

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from .event import Event
from .types import DEFAULT_CONNECT_TIMEOUT, TransportError


logger = logging.getLogger(__name__)

MessageHandler = Callable[[list[Any]], None]
CloseHandler = Callable[[Optional[Exception]], None]


class Transport(ABC):
    """Abstract base class for a relay connection.

    Outbound wire messages: ``["REQ", id, filter]``, ``["EVENT", event]``,
    ``["CLOSE", id]``. Inbound messages are delivered raw (as decoded JSON
    arrays) to every handler registered with ``on_message``.
    """

    def __init__(self) -> None:
        self._message_handlers: list[MessageHandler] = []
        self._close_handlers: list[CloseHandler] = []
        self._subscriptions: set[str] = set()

    # MARK: - Connection

    @property
    @abstractmethod
    def connected(self) -> bool:
        """Whether the connection is open and usable."""
        pass

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection (joins an attempt already in flight)."""
        pass

    @abstractmethod
    async def send(self, message: list[Any]) -> None:
        """Send one control message."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection and notify close handlers."""
        pass

    # MARK: - Subscriptions

    @property
    def subscriptions(self) -> frozenset[str]:
        """Subscription ids opened and not yet closed."""
        return frozenset(self._subscriptions)

    async def subscribe(self, subscription_filter: dict[str, Any], subscription_id: Optional[str] = None) -> str:
        """
        Open a subscription.

        Args:
            subscription_filter: NIP-01 filter, passed through untouched.
            subscription_id: Id to use (a random one is generated if omitted).

        Returns:
            The subscription id.
        """
        subscription_id = subscription_id or uuid.uuid4().hex
        self._subscriptions.add(subscription_id)
        logger.debug("REQ %s", subscription_id)
        try:
            await self.send(["REQ", subscription_id, subscription_filter])
        except TransportError:
            self._subscriptions.discard(subscription_id)
            raise
        return subscription_id

    async def publish(self, event: Event) -> None:
        """Publish a signed event."""
        logger.debug("EVENT %s kind=%d", event.id, event.kind)
        await self.send(["EVENT", event.to_dict()])

    async def unsubscribe(self, subscription_id: str) -> None:
        """Close a subscription. No-op if it is unknown, already closed, or the connection is down."""
        if subscription_id not in self._subscriptions:
            return
        self._subscriptions.discard(subscription_id)

        if not self.connected:
            return

        logger.debug("CLOSE %s", subscription_id)
        await self.send(["CLOSE", subscription_id])

    # MARK: - Handlers

    def on_message(self, handler: MessageHandler) -> Callable[[], None]:
        """Register a raw inbound message handler. Returns an unregister callable."""
        self._message_handlers.append(handler)
        return lambda: self._remove(self._message_handlers, handler)

    def on_close(self, handler: CloseHandler) -> Callable[[], None]:
        """Register a handler called once per connection teardown. Returns an unregister callable."""
        self._close_handlers.append(handler)
        return lambda: self._remove(self._close_handlers, handler)

    def dispatch(self, message: list[Any]) -> None:
        """Deliver an inbound message to every handler."""
        for handler in list(self._message_handlers):
            try:
                handler(message)
            except Exception:
                logger.exception("Relay message handler failed")

    def _closed(self, error: Optional[Exception] = None) -> None:
        """Forget subscriptions and notify close handlers."""
        self._subscriptions.clear()
        for handler in list(self._close_handlers):
            try:
                handler(error)
            except Exception:
                logger.exception("Relay close handler failed")

    @staticmethod
    def _remove(handlers: list, handler: Any) -> None:
        if handler in handlers:
            handlers.remove(handler)


class RelayTransport(Transport):
    """
    Websocket connection to a single relay.

    Example usage:
        ```python
        relay = RelayTransport("wss://relay.example.com")
        relay.on_message(lambda msg: print(msg))
        await relay.connect()
        sub_id = await relay.subscribe({"kinds": [23195], "#p": [my_pubkey]})
        ...
        await relay.close()
        ```
    """

    def __init__(self, url: str, connect_timeout: float = DEFAULT_CONNECT_TIMEOUT) -> None:
        """
        Initialize the transport.

        Args:
            url: ws:// or wss:// relay URL.
            connect_timeout: Seconds to wait for the connection to open.
        """
        super().__init__()
        self.url = url
        self.connect_timeout = connect_timeout
        self._ws: Optional[ClientConnection] = None
        self._connecting: Optional[asyncio.Task] = None
        self._reader: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        """
        Open the connection.

        A second call while an attempt is outstanding awaits the same attempt.

        Raises:
            TransportError: If the relay cannot be reached or does not open in time.
        """
        if self.connected:
            return

        if self._connecting is None:
            self._connecting = asyncio.ensure_future(self._open())

        task = self._connecting
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise TransportError("Relay connection closed while connecting") from None
            raise
        finally:
            if task.done() and self._connecting is task:
                self._connecting = None

    async def _open(self) -> None:
        logger.info("Connecting to relay %s", self.url)
        try:
            ws = await ws_connect(self.url, open_timeout=self.connect_timeout)
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise TransportError(f"Relay connection timeout: {self.url}") from e
        except (OSError, WebSocketException) as e:
            raise TransportError(f"Relay connection failed: {e}") from e

        self._ws = ws
        self._reader = asyncio.ensure_future(self._read_loop(ws))
        logger.info("Connected to relay %s", self.url)

    async def _read_loop(self, ws: ClientConnection) -> None:
        error: Optional[Exception] = None
        try:
            async for raw in ws:
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.debug("Ignoring non-JSON relay frame")
                    continue

                if not isinstance(message, list) or not message:
                    continue

                self.dispatch(message)
        except ConnectionClosed as e:
            error = TransportError(f"Relay connection closed: {e}")

        if self._ws is ws:
            self._ws = None
            self._reader = None
            logger.info("Relay connection to %s closed", self.url)
            self._closed(error or TransportError("Relay connection closed"))

    async def send(self, message: list[Any]) -> None:
        """
        Send one control message.

        Raises:
            TransportError: If the connection is not open or drops while sending.
        """
        ws = self._ws
        if ws is None:
            raise TransportError("Relay is not connected")

        try:
            await ws.send(json.dumps(message, separators=(",", ":"), ensure_ascii=False))
        except ConnectionClosed as e:
            raise TransportError(f"Relay connection closed: {e}") from e

    async def close(self) -> None:
        """Close the connection. Outstanding subscriptions become invalid."""
        if self._connecting is not None:
            self._connecting.cancel()
            self._connecting = None

        ws, reader = self._ws, self._reader
        self._ws = None
        self._reader = None

        if reader is not None:
            reader.cancel()
        if ws is not None:
            await ws.close()
            logger.info("Disconnected from relay %s", self.url)
            self._closed(TransportError("Relay connection closed"))
