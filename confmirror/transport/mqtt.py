"""MQTT broadcast transport built on paho-mqtt."""

import asyncio
import logging
from typing import Any, Callable, Iterable
from urllib.parse import unquote

import paho.mqtt.client as mqtt

from ..config import MQTTConfig
from .base import MessageHandler, Subscriber, Transport, TransportError

logger = logging.getLogger(__name__)

# At-most-once delivery
QOS = 0

# Characters MQTT reserves in topic names; "%" is escaped so unquote() reverses exactly
_TOPIC_ESCAPES = {"%": "%25", "+": "%2B", "#": "%23", "\x00": "%00"}


class MQTTTransport(Transport):
    """Publishes registry broadcasts as MQTT messages.

    Channel "ConfigSet:global" maps to topic "<topic_prefix>/ConfigSet:global".
    "+", "#", NUL and "%" in a channel are percent-encoded so a namespace
    can never turn a subscription into a wildcard filter.
    The publishing client is shared; each subscriber gets its own client.
    """

    def __init__(self, config: MQTTConfig):
        self.config = config
        self._connected = False
        self._connect_lock = asyncio.Lock()

        self._client = self._new_client()
        self._client.on_connect = self._handle_connect
        self._client.on_disconnect = self._handle_disconnect

    def _new_client(self) -> mqtt.Client:
        client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        if self.config.username and self.config.password:
            client.username_pw_set(self.config.username, self.config.password)
        return client

    def topic_for(self, channel: str) -> str:
        """Map a channel to a topic with wildcard and NUL characters percent-encoded."""
        escaped = "".join(_TOPIC_ESCAPES.get(c, c) for c in channel)
        return f"{self.config.topic_prefix}/{escaped}"

    def channel_for(self, topic: str) -> str:
        prefix = f"{self.config.topic_prefix}/"
        if topic.startswith(prefix):
            return unquote(topic[len(prefix):])
        return topic

    async def _open(self, client: mqtt.Client, is_connected: Callable[[], bool]) -> bool:
        """Connect a paho client and wait for the broker to accept it."""
        try:
            client.connect(
                self.config.broker, self.config.port, keepalive=self.config.keepalive
            )
            client.loop_start()
        except (OSError, ValueError) as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            return False

        polls = max(1, int(self.config.connect_timeout_seconds / 0.1))
        for _ in range(polls):
            if is_connected():
                return True
            await asyncio.sleep(0.1)

        client.loop_stop()
        logger.error("Timeout waiting for MQTT connection")
        return False

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        if reason_code == 0:
            self._connected = True
            logger.info(f"Connected to MQTT broker at {self.config.broker}:{self.config.port}")
        else:
            logger.error(f"Failed to connect to MQTT broker: {reason_code}")

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        self._connected = False
        logger.warning(f"Disconnected from MQTT broker: {reason_code}")

    async def connect(self) -> bool:
        """Connect the publishing client.

        Returns:
            True if connection successful.
        """
        async with self._connect_lock:
            # Another publish may have connected while this one waited
            if self._connected:
                return True
            return await self._open(self._client, lambda: self._connected)

    async def disconnect(self) -> None:
        self._client.loop_stop()
        self._client.disconnect()
        self._connected = False

    async def publish(self, channel: str, payload: bytes) -> bool:
        """Publish a payload, connecting first if needed.

        Returns:
            True if paho queued the message.
        """
        if not self._connected and not await self.connect():
            logger.error(f"Cannot publish on {channel}: not connected to broker")
            return False

        try:
            result = self._client.publish(self.topic_for(channel), payload, qos=QOS)
        except ValueError as e:
            raise TransportError(f"Cannot publish on {channel}: {e}") from e
        return result.rc == mqtt.MQTT_ERR_SUCCESS

    def subscriber(self, handler: MessageHandler) -> "MQTTSubscriber":
        return MQTTSubscriber(self, handler)

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def check_connection(self) -> bool:
        """Check if broker is reachable."""
        if self._connected:
            return True

        try:
            test_client = self._new_client()
            test_client.connect(self.config.broker, self.config.port, keepalive=5)
            test_client.disconnect()
            return True
        except (OSError, ValueError):
            return False


class MQTTSubscriber(Subscriber):
    """One dedicated MQTT connection subscribed to a fixed set of channels.

    Paho delivers on its network thread; messages are handed to the event
    loop with call_soon_threadsafe.
    """

    def __init__(self, transport: MQTTTransport, handler: MessageHandler):
        self._transport = transport
        self._handler = handler
        self._channels: list[str] = []
        self._connected = False
        self._closed = False
        self._loop: asyncio.AbstractEventLoop | None = None

        self._client = transport._new_client()
        self._client.on_connect = self._handle_connect
        self._client.on_message = self._handle_message
        self._client.on_disconnect = self._handle_disconnect

    def _handle_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        if reason_code != 0:
            logger.error(f"Subscriber failed to connect to MQTT broker: {reason_code}")
            return

        self._connected = True
        # Runs again on every reconnect
        for channel in self._channels:
            client.subscribe(self._transport.topic_for(channel), qos=QOS)
            logger.info(f"Subscribed to topic: {self._transport.topic_for(channel)}")

    def _handle_message(
        self,
        client: mqtt.Client,
        userdata: Any,
        msg: mqtt.MQTTMessage,
    ) -> None:
        if self._closed or self._loop is None:
            return

        channel = self._transport.channel_for(msg.topic)
        logger.debug(f"Received {len(msg.payload)} bytes on {msg.topic}")
        self._loop.call_soon_threadsafe(self._dispatch, channel, bytes(msg.payload))

    def _handle_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        disconnect_flags: Any,
        reason_code: Any,
        properties: Any = None,
    ) -> None:
        self._connected = False
        if not self._closed:
            logger.warning(f"Subscriber disconnected from MQTT broker: {reason_code}")

    def _dispatch(self, channel: str, payload: bytes) -> None:
        if self._closed:
            return
        self._handler(channel, payload)

    async def start(self, channels: Iterable[str]) -> None:
        if self._closed:
            raise TransportError("Subscriber already closed")

        self._loop = asyncio.get_running_loop()
        self._channels = list(channels)

        if not await self._transport._open(self._client, lambda: self._connected):
            raise TransportError(
                f"Could not subscribe at {self._transport.config.broker}:"
                f"{self._transport.config.port}"
            )

    async def close(self) -> None:
        self._closed = True
        self._client.loop_stop()
        self._client.disconnect()
        self._connected = False
