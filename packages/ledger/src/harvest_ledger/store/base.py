"""Contract for the relational store holding ledger records."""

from __future__ import annotations

from collections.abc import Collection as AbstractSet
from contextlib import AbstractAsyncContextManager
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol

from harvest_ledger.errors import NotFoundError, ValidationError

if TYPE_CHECKING:
    from harvest_ledger.store.memory import MemoryStore
    from harvest_ledger.store.rest import RestStore

Record = dict[str, Any]


class LedgerStore(Protocol):
    """Filtered reads and writes on named collections.

    Filters are conjunctive: a scalar value means equality, a list/tuple/set
    means membership. Failures surface as ``StorageError``; a missing record
    on update/delete/increment raises ``NotFoundError``.
    """

    supports_transactions: bool

    async def find(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Record]:
        ...

    async def find_one(self, collection: str, filters: dict[str, Any]) -> Record | None:
        ...

    async def insert(self, collection: str, record: Record) -> Record:
        """Insert and return the stored record with its assigned ``id``."""
        ...

    async def update(self, collection: str, record_id: str, patch: Record) -> Record:
        ...

    async def delete(self, collection: str, record_id: str) -> None:
        ...

    async def increment(
        self,
        collection: str,
        record_id: str,
        deltas: dict[str, Decimal],
        floor_zero: AbstractSet[str] = (),
    ) -> Record:
        """Add ``deltas`` to numeric fields as one server-side arithmetic update.

        Fields named in ``floor_zero`` are clamped at zero after the addition.
        """
        ...

    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Group writes so they commit or roll back together, where supported."""
        ...


def get_store(name: str, **kwargs: Any) -> MemoryStore | RestStore:
    """Resolve a store implementation by name (memory|rest)."""
    kind = (name or "").strip().lower()
    if kind in ("memory", ""):
        from harvest_ledger.store.memory import MemoryStore

        return MemoryStore(**kwargs)
    if kind == "rest":
        from harvest_ledger.store.rest import RestStore

        return RestStore(**kwargs)
    raise ValueError(f"Unknown store '{name}' (expected 'memory' or 'rest').")


async def require(store: LedgerStore, collection: str, record_id: str | None) -> Record:
    """Fetch a referenced record or fail before any write happens."""
    if not record_id:
        raise ValidationError(f"A {collection} reference is required")
    record = await store.find_one(collection, {"id": record_id})
    if record is None:
        raise NotFoundError(collection, record_id)
    return record
