"""Durable namespace store interface and in-memory implementation."""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when the durable store cannot complete an operation."""


class NamespaceStore(ABC):
    """Abstract base for hash-like durable storage.

    Each namespace key maps to a hash of field -> serialized value.
    """

    @abstractmethod
    async def fetch_all(self, namespace_key: str) -> dict[str, str]:
        """Fetch every field stored under a namespace key.

        Args:
            namespace_key: Hash key, e.g. "config:global".

        Returns:
            Mapping of field name to stored text. Empty if the key is unknown.

        Raises:
            StoreError: If the store is unreachable.
        """
        pass

    @abstractmethod
    async def set_field(self, namespace_key: str, field: str, value: str) -> None:
        """Write one field.

        Raises:
            StoreError: If the write fails.
        """
        pass

    @abstractmethod
    async def delete_field(self, namespace_key: str, field: str) -> None:
        """Delete one field. Deleting a missing field is not an error.

        Raises:
            StoreError: If the delete fails.
        """
        pass

    async def close(self) -> None:
        """Release any held connection."""
        pass


class MemoryNamespaceStore(NamespaceStore):
    """In-process store for tests and single-process deployments."""

    def __init__(self, initial: dict[str, dict[str, str]] | None = None):
        self._hashes: dict[str, dict[str, str]] = {
            key: dict(fields) for key, fields in (initial or {}).items()
        }

    async def fetch_all(self, namespace_key: str) -> dict[str, str]:
        return dict(self._hashes.get(namespace_key, {}))

    async def set_field(self, namespace_key: str, field: str, value: str) -> None:
        self._hashes.setdefault(namespace_key, {})[field] = value

    async def delete_field(self, namespace_key: str, field: str) -> None:
        fields = self._hashes.get(namespace_key)
        if fields is not None:
            fields.pop(field, None)
            if not fields:
                del self._hashes[namespace_key]
