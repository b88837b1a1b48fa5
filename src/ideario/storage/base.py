"""Abstract persistence and object-storage interfaces for Ideario."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

Filters = dict[str, Any]


@dataclass(frozen=True)
class WriteOp:
    """One write inside an atomic :meth:`PersistenceGateway.commit` batch.

    ``upsert`` inserts or replaces by primary key, so replaying a batch that
    carries the same ids is harmless. ``update`` honours ``expect`` the same
    way :meth:`PersistenceGateway.update` does.
    """

    action: Literal["upsert", "update", "delete"]
    collection: str
    fields: dict[str, Any] = field(default_factory=dict)
    record_id: str | None = None
    expect: Filters | None = None


class PersistenceGateway(ABC):
    """Generic record store addressed by collection name.

    Records are plain dicts. Lookups that miss return ``None`` (or ``False``
    for deletes); store failures raise :class:`ideario.errors.BackendError`.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize database schema and connections."""

    @abstractmethod
    async def close(self) -> None:
        """Close all connections."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        *,
        filters: Filters | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Return records matching all filters.

        A filter value of ``None`` matches NULL; a list, tuple or set matches
        any of its members.
        """

    @abstractmethod
    async def count(self, collection: str, *, filters: Filters | None = None) -> int:
        """Count records matching all filters."""

    @abstractmethod
    async def get(self, collection: str, record_id: str) -> dict[str, Any] | None:
        """Get a record by primary key. Returns None if not found."""

    @abstractmethod
    async def insert(self, collection: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Insert a record. Raises ConflictError on a uniqueness violation."""

    @abstractmethod
    async def upsert(self, collection: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Insert a record or overwrite the one with the same primary key."""

    @abstractmethod
    async def update(
        self,
        collection: str,
        record_id: str,
        fields: dict[str, Any],
        *,
        expect: Filters | None = None,
    ) -> dict[str, Any] | None:
        """Update a record. Returns the updated record or None if not found.

        When ``expect`` is given the write only applies if the stored record
        still matches it; otherwise ConflictError is raised.
        """

    @abstractmethod
    async def delete(self, collection: str, record_id: str) -> bool:
        """Delete a record. Returns True if found and deleted."""

    @abstractmethod
    async def delete_where(self, collection: str, filters: Filters) -> int:
        """Delete every record matching the filters. Returns the number deleted."""

    @abstractmethod
    async def commit(self, operations: Sequence[WriteOp]) -> None:
        """Apply a batch of writes atomically: all of them or none."""


class ObjectStore(ABC):
    """Binary object storage organised in buckets."""

    @abstractmethod
    async def upload_object(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        *,
        upsert: bool = False,
    ) -> None:
        """Store an object. Raises ObjectExistsError if the path is taken and not upsert."""

    @abstractmethod
    async def download_object(self, bucket: str, path: str) -> bytes:
        """Read an object. Raises NotFound if absent."""

    @abstractmethod
    async def delete_object(self, bucket: str, path: str) -> bool:
        """Delete an object. Returns True if it existed."""

    @abstractmethod
    async def object_exists(self, bucket: str, path: str) -> bool:
        """Check whether an object is stored at the path."""

    @abstractmethod
    async def list_objects(self, bucket: str, prefix: str = "") -> list[str]:
        """List object paths in a bucket starting with the prefix."""

    @abstractmethod
    def public_url(self, bucket: str, path: str) -> str:
        """URL under which the object can be fetched."""
