"""confmirror - namespaced configuration mirrored across processes.

Each Registry keeps an in-memory copy of a namespace, writes through to a
durable hash store and broadcasts changes so sibling registries converge.
"""

from .codec import Envelope, EnvelopeError, decode_envelope, encode_envelope
from .config import Config, load_config
from .registry import (
    CHANNEL_CONFIG_CLEAR,
    CHANNEL_CONFIG_SET,
    NOTSET,
    PullResult,
    PullStatus,
    Registry,
    Watch,
)
from .signals import Signal, Subscription
from .store import MemoryNamespaceStore, NamespaceStore, SQLiteNamespaceStore, StoreError
from .transport import MemoryBroker, MemoryTransport, Transport, TransportError

__version__ = "0.1.0"

__all__ = [
    "CHANNEL_CONFIG_CLEAR",
    "CHANNEL_CONFIG_SET",
    "NOTSET",
    "Config",
    "Envelope",
    "EnvelopeError",
    "MemoryBroker",
    "MemoryNamespaceStore",
    "MemoryTransport",
    "NamespaceStore",
    "PullResult",
    "PullStatus",
    "Registry",
    "SQLiteNamespaceStore",
    "Signal",
    "StoreError",
    "Subscription",
    "Transport",
    "TransportError",
    "Watch",
    "decode_envelope",
    "encode_envelope",
    "load_config",
]
