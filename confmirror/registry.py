"""Replicated configuration registry.

A Registry mirrors one namespace of a durable hash store in memory. Local
writes update the mirror immediately and are persisted and broadcast in the
background; broadcasts from sibling registries are applied to the mirror when
monitoring is enabled, so every mirror eventually converges.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Coroutine, Iterator

from .codec import Envelope, EnvelopeError, decode_envelope, encode_envelope
from .signals import Signal, Subscription
from .store import NamespaceStore, StoreError, create_store
from .transport import Subscriber, Transport, TransportError, create_transport

logger = logging.getLogger(__name__)

# Broadcast action for a key write
CHANNEL_CONFIG_SET = "ConfigSet"

# Broadcast action for a key removal
CHANNEL_CONFIG_CLEAR = "ConfigClear"

DEFAULT_KEY_PREFIX = "config:"


class _NotSet:
    """Sentinel for "no value", distinct from None and other falsy values."""

    def __repr__(self) -> str:
        return "NOTSET"


NOTSET: Any = _NotSet()


class PullStatus(Enum):
    """Outcome of a bootstrap pull."""

    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class PullResult:
    """Result of a bootstrap pull."""

    status: PullStatus
    loaded: int = 0
    skipped: list[str] = field(default_factory=list)
    error: str | None = None
    timestamp: datetime | None = None

    @property
    def ok(self) -> bool:
        return self.status == PullStatus.SUCCESS


def _serialize(key: str, value: Any) -> str:
    try:
        return json.dumps(value, sort_keys=True, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Value for '{key}' is not JSON-serializable: {e}") from e


class Watch:
    """Caller-owned subscription to changes of a single key.

    The callback receives the new value when the key is set and NOTSET when
    it is cleared. Cancelling is final; the callback is never invoked again.
    """

    def __init__(self, registry: "Registry", key: str, callback: Callable[[Any], Any]):
        self.key = key
        self._callback = callback
        self._subscriptions: list[Subscription] = [
            registry.on_set.connect(self._handle_set),
            registry.on_cleared.connect(self._handle_cleared),
        ]

    def _handle_set(self, key: str, value: Any, previous: Any) -> None:
        if key == self.key:
            self._callback(value)

    def _handle_cleared(self, key: str) -> None:
        if key == self.key:
            self._callback(NOTSET)

    @property
    def active(self) -> bool:
        return any(s.active for s in self._subscriptions)

    def cancel(self) -> None:
        """Stop watching. Safe to call more than once."""
        for subscription in self._subscriptions:
            subscription.cancel()

    def __call__(self) -> None:
        self.cancel()

    def __repr__(self) -> str:
        return f"Watch(key={self.key!r}, active={self.active})"


class Registry:
    """Namespaced key/value mirror kept in sync through a store and a transport.

    Must be constructed inside a running event loop; all methods are expected
    to be called from that loop. Construction schedules a bootstrap pull.

    Events (see on()): "ready", "error", "updated", "set", "cleared".
    """

    def __init__(
        self,
        store: NamespaceStore,
        transport: Transport,
        namespace: str = "global",
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        publish_on_store_error: bool = True,
        monitor: bool = False,
    ):
        """Initialize the registry.

        Args:
            store: Durable hash store to persist writes to.
            transport: Broadcast transport shared with sibling registries.
            namespace: Partition of the key space, also used in channel names.
            key_prefix: Prefix of the store key holding this namespace.
            publish_on_store_error: Broadcast a change even if persisting it
                failed. Peers may then hold a value the store never recorded.
            monitor: Start monitoring sibling broadcasts immediately.
        """
        self._loop = asyncio.get_running_loop()
        self._store = store
        self._transport = transport
        self._namespace = namespace
        self._key_prefix = key_prefix
        self.publish_on_store_error = publish_on_store_error

        self._mirror: dict[str, Any] = {}
        self._instance_id = uuid.uuid4().hex
        self._subscriber: Subscriber | None = None
        self._pending: set[asyncio.Task] = set()

        self.on_ready = Signal("ready")
        self.on_error = Signal("error")
        self.on_updated = Signal("updated")
        self.on_set = Signal("set")
        self.on_cleared = Signal("cleared")
        self._signals = {
            s.name: s
            for s in (self.on_ready, self.on_error, self.on_updated, self.on_set, self.on_cleared)
        }

        self._bootstrap = self.pull(on_success=lambda result: self.on_ready.emit())

        if monitor:
            self.start_monitor()

    @classmethod
    def from_config(cls, config, broker=None) -> "Registry":
        """Build a registry with the store and transport named in a Config.

        Args:
            config: Loaded Config.
            broker: Shared MemoryBroker when the memory transport is used.
        """
        return cls(
            create_store(config.store),
            create_transport(config.transport, broker),
            config.registry.namespace,
            key_prefix=config.registry.key_prefix,
            publish_on_store_error=config.registry.publish_on_store_error,
            monitor=config.registry.monitor,
        )

    @property
    def namespace(self) -> str:
        return self._namespace

    @property
    def instance_id(self) -> str:
        return self._instance_id

    @property
    def namespace_key(self) -> str:
        """Store key holding this namespace's fields."""
        return f"{self._key_prefix}{self._namespace}"

    def channel(self, action: str) -> str:
        """Return the broadcast channel for an action in this namespace."""
        return f"{action}:{self._namespace}"

    @property
    def set_channel(self) -> str:
        return self.channel(CHANNEL_CONFIG_SET)

    @property
    def clear_channel(self) -> str:
        return self.channel(CHANNEL_CONFIG_CLEAR)

    @property
    def monitoring(self) -> bool:
        return self._subscriber is not None

    # Notifications

    def on(self, event: str, callback: Callable[..., Any]) -> Subscription:
        """Subscribe to a registry event by name.

        Raises:
            ValueError: If the event name is unknown.
        """
        signal = self._signals.get(event)
        if signal is None:
            raise ValueError(
                f"Unknown event '{event}', expected one of {sorted(self._signals)}"
            )
        return signal.connect(callback)

    def _emit_error(self, error: Exception) -> None:
        logger.error(f"Registry '{self._namespace}' error: {error}")
        self.on_error.emit(error)

    def _emit_set(self, key: str, value: Any, previous: Any) -> None:
        self.on_set.emit(key, value, previous)
        self.on_updated.emit()

    def _emit_cleared(self, key: str) -> None:
        self.on_cleared.emit(key)
        self.on_updated.emit()

    # Background work

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = self._loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background task failed: {error!r}", exc_info=error)
            self.on_error.emit(error)

    async def flush(self) -> None:
        """Wait until every in-flight persistence and broadcast has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _broadcast(self, action: str, *arguments: Any) -> None:
        channel = self.channel(action)
        payload = encode_envelope(
            Envelope(sender=self._instance_id, arguments=list(arguments))
        )
        try:
            published = await self._transport.publish(channel, payload)
        except TransportError as e:
            self._emit_error(e)
            return

        if not published:
            self._emit_error(TransportError(f"Broadcast on {channel} was not accepted"))

    # Bootstrap

    def pull(self, on_success: Callable[[PullResult], Any] | None = None) -> asyncio.Task:
        """Reload the whole namespace from the store.

        The mirror is emptied immediately. Stored values that are not valid
        JSON are skipped.

        Args:
            on_success: Called with the PullResult after a successful load.

        Returns:
            Task resolving to a PullResult. Store failures are reported in the
            result and on the "error" event rather than raised.
        """
        self._mirror = {}
        return self._spawn(self._pull(on_success))

    async def _pull(self, on_success: Callable[[PullResult], Any] | None) -> PullResult:
        try:
            fields = await self._store.fetch_all(self.namespace_key)
        except StoreError as e:
            self._emit_error(e)
            return PullResult(
                status=PullStatus.FAILED, error=str(e), timestamp=datetime.now()
            )

        result = PullResult(status=PullStatus.SUCCESS, timestamp=datetime.now())
        for key, text in fields.items():
            try:
                self._mirror[key] = json.loads(text)
            except (TypeError, ValueError):
                logger.debug(f"Skipping undecodable value for '{key}' in {self.namespace_key}")
                result.skipped.append(key)
                continue
            result.loaded += 1

        logger.info(
            f"Pulled {self.namespace_key}: loaded={result.loaded}, "
            f"skipped={len(result.skipped)}"
        )

        self.on_updated.emit()
        if on_success:
            on_success(result)
        return result

    async def wait_ready(self) -> PullResult:
        """Wait for the bootstrap pull scheduled at construction."""
        return await self._bootstrap

    # Watch registry

    def watch(self, key: str, callback: Callable[[Any], Any]) -> Watch:
        """Call callback whenever key is set or cleared.

        Returns:
            Watch handle; cancel it (or call it) to stop watching.
        """
        return Watch(self, key, callback)

    # Accessors

    def get(self, key: str, default: Any = NOTSET) -> Any:
        """Return the mirrored value of key, or default if it is unset."""
        return self._mirror.get(key, default)

    def snapshot(self) -> dict[str, Any]:
        """Shallow copy of the mirror."""
        return dict(self._mirror)

    def keys(self) -> list[str]:
        return list(self._mirror)

    def __contains__(self, key: object) -> bool:
        return key in self._mirror

    def __len__(self) -> int:
        return len(self._mirror)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._mirror))

    # Writes

    def set(self, key: str, value: Any) -> "Registry":
        """Set key to value and propagate the change.

        The mirror is updated before returning; persistence and broadcast run
        in the background. Setting a key to its current value does nothing.

        Raises:
            ValueError: If value is not JSON-serializable.
        """
        encoded = _serialize(key, value)
        previous = self._mirror.get(key, NOTSET)

        if previous is not NOTSET and _serialize(key, previous) == encoded:
            return self

        value = json.loads(encoded)
        self._mirror[key] = value
        logger.debug(f"Set '{key}' in {self._namespace}")

        self._spawn(self._persist_set(key, value, previous, encoded))
        return self

    async def _persist_set(self, key: str, value: Any, previous: Any, encoded: str) -> None:
        error: StoreError | None = None
        try:
            await self._store.set_field(self.namespace_key, key, encoded)
        except StoreError as e:
            error = e

        if error is None or self.publish_on_store_error:
            await self._broadcast(
                CHANNEL_CONFIG_SET, key, value, None if previous is NOTSET else previous
            )

        if error is not None:
            self._emit_error(error)
            return

        self._emit_set(key, value, previous)

    def clear(self, key: str) -> "Registry":
        """Remove key and propagate the removal. Clearing an unset key is allowed."""
        self._mirror.pop(key, None)
        logger.debug(f"Cleared '{key}' in {self._namespace}")

        self._spawn(self._persist_clear(key))
        return self

    async def _persist_clear(self, key: str) -> None:
        error: StoreError | None = None
        try:
            await self._store.delete_field(self.namespace_key, key)
        except StoreError as e:
            error = e

        if error is None or self.publish_on_store_error:
            await self._broadcast(CHANNEL_CONFIG_CLEAR, key)

        if error is not None:
            self._emit_error(error)
            return

        self._emit_cleared(key)

    # Inbound broadcasts

    def _on_broadcast(self, channel: str, payload: bytes) -> None:
        try:
            envelope = decode_envelope(payload)
        except EnvelopeError as e:
            logger.warning(f"Dropping malformed broadcast on {channel}: {e}")
            return

        if envelope.sender == self._instance_id:
            return

        arguments = envelope.arguments
        if not arguments or not isinstance(arguments[0], str):
            logger.warning(f"Dropping broadcast on {channel} without a key from {envelope.sender}")
            return

        key = arguments[0]

        if channel == self.set_channel:
            if len(arguments) < 2:
                logger.warning(f"Dropping set broadcast for '{key}' without a value")
                return
            # arguments[2] is the sender's previous value, informational only
            value = arguments[1]
            previous = self._mirror.get(key, NOTSET)
            self._mirror[key] = value
            logger.debug(f"Applied remote set of '{key}' from {envelope.sender}")
            self._emit_set(key, value, previous)

        elif channel == self.clear_channel:
            self._mirror.pop(key, None)
            logger.debug(f"Applied remote clear of '{key}' from {envelope.sender}")
            self._emit_cleared(key)

        else:
            logger.warning(f"Ignoring broadcast on unexpected channel {channel}")

    # Monitoring lifecycle

    def start_monitor(self) -> "Registry":
        """Start applying sibling broadcasts. No-op if already monitoring."""
        if self._subscriber is not None:
            return self

        subscriber = self._subscriber = self._transport.subscriber(self._on_broadcast)
        self._spawn(self._start_subscriber(subscriber))
        return self

    async def _start_subscriber(self, subscriber: Subscriber) -> None:
        try:
            await subscriber.start([self.set_channel, self.clear_channel])
        except TransportError as e:
            if self._subscriber is subscriber:
                self._subscriber = None
                self._emit_error(e)
            return

        logger.info(f"Monitoring namespace '{self._namespace}'")

    def stop_monitor(self, on_complete: Callable[[], Any] | None = None) -> "Registry":
        """Stop applying sibling broadcasts. No-op if not monitoring.

        In-flight persistence and broadcasts are not cancelled.

        Args:
            on_complete: Called once the subscriber connection is closed.
        """
        subscriber = self._subscriber
        if subscriber is None:
            return self

        self._subscriber = None
        self._spawn(self._close_subscriber(subscriber, on_complete))
        return self

    async def _close_subscriber(
        self, subscriber: Subscriber, on_complete: Callable[[], Any] | None
    ) -> None:
        await subscriber.close()
        logger.info(f"Stopped monitoring namespace '{self._namespace}'")
        if on_complete:
            on_complete()

    async def close(self) -> None:
        """Stop monitoring, wait for in-flight work, then release connections."""
        self.stop_monitor()
        await self.flush()
        await self._store.close()
        await self._transport.disconnect()

    def __repr__(self) -> str:
        return (
            f"Registry(namespace={self._namespace!r}, keys={len(self._mirror)}, "
            f"monitoring={self.monitoring})"
        )
