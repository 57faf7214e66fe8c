"""In-process store with atomic increments and rollback transactions."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import AsyncIterator
from collections.abc import Collection as AbstractSet
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import uuid4

import structlog

from harvest_ledger.errors import NotFoundError
from harvest_ledger.models import ZERO, to_decimal
from harvest_ledger.store.base import Record

logger = structlog.get_logger(__name__)


def _matches(record: Record, filters: dict[str, Any] | None) -> bool:
    if not filters:
        return True
    for key, expected in filters.items():
        value = record.get(key)
        if isinstance(expected, list | tuple | set | frozenset):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class MemoryStore:
    """Dict-backed store.

    Every write runs under one lock, so ``increment`` is a true atomic
    read-modify-write. ``transaction()`` serializes callers and restores the
    pre-transaction state if the block raises.
    """

    supports_transactions = True

    def __init__(self, data: dict[str, list[Record]] | None = None):
        self._data: dict[str, dict[str, Record]] = {}
        self._lock = asyncio.Lock()
        self._tx_lock = asyncio.Lock()
        self._tx_owner: asyncio.Task[Any] | None = None
        self._last_created: datetime | None = None
        for collection, records in (data or {}).items():
            for record in records:
                self._put(collection, dict(record))

    def _next_created_at(self) -> str:
        now = datetime.now(UTC)
        if self._last_created is not None and now <= self._last_created:
            now = self._last_created + timedelta(microseconds=1)
        self._last_created = now
        return now.isoformat()

    def _put(self, collection: str, record: Record) -> Record:
        record.setdefault("id", str(uuid4()))
        record.setdefault("created_at", self._next_created_at())
        self._data.setdefault(collection, {})[str(record["id"])] = record
        return record

    def _get(self, collection: str, record_id: str) -> Record:
        try:
            return self._data.get(collection, {})[str(record_id)]
        except KeyError:
            raise NotFoundError(collection, record_id) from None

    async def find(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Record]:
        rows = [
            copy.deepcopy(r)
            for r in self._data.get(collection, {}).values()
            if _matches(r, filters)
        ]
        if order_by:
            rows.sort(key=lambda r: str(r.get(order_by) or ""), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def find_one(self, collection: str, filters: dict[str, Any]) -> Record | None:
        rows = await self.find(collection, filters, limit=1)
        return rows[0] if rows else None

    async def insert(self, collection: str, record: Record) -> Record:
        async with self._write():
            stored = self._put(collection, copy.deepcopy(record))
            return copy.deepcopy(stored)

    async def update(self, collection: str, record_id: str, patch: Record) -> Record:
        async with self._write():
            record = self._get(collection, record_id)
            record.update(copy.deepcopy({k: v for k, v in patch.items() if k != "id"}))
            return copy.deepcopy(record)

    async def delete(self, collection: str, record_id: str) -> None:
        async with self._write():
            self._get(collection, record_id)
            del self._data[collection][str(record_id)]

    async def increment(
        self,
        collection: str,
        record_id: str,
        deltas: dict[str, Decimal],
        floor_zero: AbstractSet[str] = (),
    ) -> Record:
        async with self._write():
            record = self._get(collection, record_id)
            for name, delta in deltas.items():
                value = to_decimal(record.get(name)) + delta
                if name in floor_zero:
                    value = max(ZERO, value)
                record[name] = value
            return copy.deepcopy(record)

    @asynccontextmanager
    async def _write(self) -> AsyncIterator[None]:
        if self._tx_owner is not None and self._tx_owner is asyncio.current_task():
            async with self._lock:
                yield
            return
        async with self._tx_lock, self._lock:
            yield

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        async with self._tx_lock:
            saved = copy.deepcopy(self._data)
            self._tx_owner = asyncio.current_task()
            try:
                yield
            except BaseException:
                self._data = saved
                logger.warning("memory_store_transaction_rolled_back")
                raise
            finally:
                self._tx_owner = None
