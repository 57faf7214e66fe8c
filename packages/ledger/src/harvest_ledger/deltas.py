"""Ordered running-total updates for lifecycle operations.

A lifecycle operation describes its effect on cached running totals as a
``DeltaPlan``. The plan is applied in a fixed entity order (machine, owner,
farmer, dealer), one server-side ``increment`` per entity. When the store
cannot group writes in a transaction and a write fails part way, the applied
deltas and their compensating inverse are logged for manual reconciliation
and the error propagates; nothing is rolled back automatically.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any

import structlog

from harvest_ledger.errors import LedgerError, StorageError
from harvest_ledger.models import ZERO, Collection
from harvest_ledger.store.base import LedgerStore

logger = structlog.get_logger(__name__)

APPLY_ORDER = {
    Collection.MACHINES: 0,
    Collection.OWNERS: 1,
    Collection.FARMERS: 2,
    Collection.DEALERS: 3,
}


@dataclass(frozen=True)
class BalanceDelta:
    collection: Collection
    record_id: str
    field: str
    amount: Decimal
    floor_zero: bool = False

    def inverse(self) -> BalanceDelta:
        return BalanceDelta(self.collection, self.record_id, self.field, -self.amount)

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.collection.value,
            "id": self.record_id,
            "field": self.field,
            "amount": str(self.amount),
        }


@dataclass
class DeltaPlan:
    deltas: list[BalanceDelta] = field(default_factory=list)

    def add(
        self,
        collection: Collection,
        record_id: str | None,
        floor_zero: bool = False,
        **amounts: Decimal,
    ) -> DeltaPlan:
        if record_id is None:
            return self
        for name, amount in amounts.items():
            if amount != ZERO:
                self.deltas.append(
                    BalanceDelta(collection, record_id, name, amount, floor_zero)
                )
        return self

    def extend(self, other: DeltaPlan) -> DeltaPlan:
        self.deltas.extend(other.deltas)
        return self

    def inverse(self) -> DeltaPlan:
        return DeltaPlan([d.inverse() for d in self.deltas])

    def floored(self) -> DeltaPlan:
        """Same deltas, each clamping its field at zero."""
        return DeltaPlan([replace(d, floor_zero=True) for d in self.deltas])

    def __bool__(self) -> bool:
        return bool(self.deltas)

    def grouped(self) -> list[tuple[Collection, str, dict[str, Decimal], set[str]]]:
        """Merge deltas per entity, in apply order."""
        groups: dict[tuple[Collection, str], tuple[dict[str, Decimal], set[str]]] = {}
        for delta in self.deltas:
            amounts, floors = groups.setdefault((delta.collection, delta.record_id), ({}, set()))
            amounts[delta.field] = amounts.get(delta.field, ZERO) + delta.amount
            if delta.floor_zero:
                floors.add(delta.field)
        ordered = sorted(groups.items(), key=lambda item: APPLY_ORDER.get(item[0][0], 99))
        return [
            (collection, record_id, amounts, floors)
            for (collection, record_id), (amounts, floors) in ordered
            if any(a != ZERO for a in amounts.values())
        ]


async def apply_plan(store: LedgerStore, plan: DeltaPlan, operation: str) -> None:
    """Apply a plan's increments in order.

    Callers that want the record write and the increments to commit together
    wrap both in ``store.transaction()``.
    """
    applied: list[tuple[Collection, str, dict[str, Decimal]]] = []
    groups = plan.grouped()
    for collection, record_id, amounts, floors in groups:
        try:
            await store.increment(collection.value, record_id, amounts, floor_zero=floors)
        except Exception as e:
            if not store.supports_transactions:
                logger.error(
                    "delta_plan_partial_failure",
                    operation=operation,
                    failed={"collection": collection.value, "id": record_id},
                    applied=[_describe(*a) for a in applied],
                    compensation=[
                        _describe(c, i, {k: -v for k, v in a.items()}) for c, i, a in applied
                    ],
                    unapplied=[_describe(c, i, a) for c, i, a, _ in groups[len(applied):]],
                    error=str(e),
                )
            if isinstance(e, LedgerError):
                raise
            raise StorageError(f"Balance update failed during {operation}: {e}") from e
        applied.append((collection, record_id, amounts))
        logger.debug(
            "balance_delta_applied",
            operation=operation,
            collection=collection.value,
            id=record_id,
            deltas={k: str(v) for k, v in amounts.items()},
        )


def _describe(
    collection: Collection, record_id: str, amounts: dict[str, Decimal]
) -> dict[str, Any]:
    return {
        "collection": collection.value,
        "id": record_id,
        "deltas": {k: str(v) for k, v in amounts.items()},
    }
