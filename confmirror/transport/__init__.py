"""Broadcast transports that carry registry change envelopes."""

from .base import (
    MemoryBroker,
    MemorySubscriber,
    MemoryTransport,
    MessageHandler,
    Subscriber,
    Transport,
    TransportError,
)

__all__ = [
    "MemoryBroker",
    "MemorySubscriber",
    "MemoryTransport",
    "MessageHandler",
    "Subscriber",
    "Transport",
    "TransportError",
    "create_transport",
]


def create_transport(config, broker: MemoryBroker | None = None) -> Transport:
    """Build the transport selected by a TransportConfig.

    Args:
        config: TransportConfig instance.
        broker: Shared broker for the memory backend.

    Raises:
        ValueError: If the backend name is unknown.
    """
    if config.backend == "memory":
        return MemoryTransport(broker)
    if config.backend == "mqtt":
        from .mqtt import MQTTTransport

        return MQTTTransport(config.mqtt)
    raise ValueError(f"Unknown transport backend: {config.backend}")
