"""Broadcast transport interface and in-process broker."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterable

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], None]


class TransportError(Exception):
    """Raised when the broadcast transport cannot be reached."""


class Subscriber(ABC):
    """A single subscriber connection bound to one message handler."""

    @abstractmethod
    async def start(self, channels: Iterable[str]) -> None:
        """Open the connection and subscribe to the given channels.

        Raises:
            TransportError: If the connection cannot be established.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Unsubscribe and close. No message is handled after this returns."""
        pass


class Transport(ABC):
    """Channel-scoped publish/subscribe with best-effort delivery.

    Messages reach only subscribers connected at publish time. There is no
    replay and no delivery acknowledgement.
    """

    async def connect(self) -> bool:
        """Open the publishing connection. Returns True when usable."""
        return True

    async def disconnect(self) -> None:
        """Close the publishing connection."""
        pass

    @abstractmethod
    async def publish(self, channel: str, payload: bytes) -> bool:
        """Publish a payload on a channel.

        Returns:
            True if the transport accepted the message.
        """
        pass

    @abstractmethod
    def subscriber(self, handler: MessageHandler) -> Subscriber:
        """Create an unstarted subscriber that feeds handler(channel, payload).

        The handler is always invoked on the event loop that started the
        subscriber.
        """
        pass


class MemoryBroker:
    """In-process fan-out shared by any number of MemoryTransports."""

    def __init__(self):
        self._subscribers: dict[str, list["MemorySubscriber"]] = {}
        self.published = 0

    def publish(self, channel: str, payload: bytes) -> int:
        """Schedule delivery to every subscriber of channel.

        Returns:
            Number of subscribers the message was scheduled for.
        """
        self.published += 1
        subscribers = list(self._subscribers.get(channel, []))
        for subscriber in subscribers:
            subscriber._schedule(channel, payload)
        return len(subscribers)

    def _attach(self, channel: str, subscriber: "MemorySubscriber") -> None:
        subscribers = self._subscribers.setdefault(channel, [])
        if subscriber not in subscribers:
            subscribers.append(subscriber)

    def _detach(self, subscriber: "MemorySubscriber") -> None:
        for channel in list(self._subscribers):
            subscribers = self._subscribers[channel]
            if subscriber in subscribers:
                subscribers.remove(subscriber)
            if not subscribers:
                del self._subscribers[channel]

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, []))


class MemorySubscriber(Subscriber):
    def __init__(self, broker: MemoryBroker, handler: MessageHandler):
        self._broker = broker
        self._handler = handler
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False

    async def start(self, channels: Iterable[str]) -> None:
        if self._closed:
            raise TransportError("Subscriber already closed")
        self._loop = asyncio.get_running_loop()
        for channel in channels:
            self._broker._attach(channel, self)
            logger.debug(f"Subscribed to channel: {channel}")

    async def close(self) -> None:
        self._closed = True
        self._broker._detach(self)

    def _schedule(self, channel: str, payload: bytes) -> None:
        if self._loop is None or self._closed:
            return
        self._loop.call_soon_threadsafe(self._dispatch, channel, payload)

    def _dispatch(self, channel: str, payload: bytes) -> None:
        # Closed between publish and delivery
        if self._closed:
            return
        self._handler(channel, payload)


class MemoryTransport(Transport):
    """Transport backed by a MemoryBroker; registries sharing a broker see each other."""

    def __init__(self, broker: MemoryBroker | None = None):
        self.broker = broker or MemoryBroker()

    async def publish(self, channel: str, payload: bytes) -> bool:
        count = self.broker.publish(channel, payload)
        logger.debug(f"Published {len(payload)} bytes on {channel} to {count} subscribers")
        return True

    def subscriber(self, handler: MessageHandler) -> MemorySubscriber:
        return MemorySubscriber(self.broker, handler)
