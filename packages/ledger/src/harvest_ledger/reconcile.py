"""Audit stored running totals against a full recomputation.

Running totals on owners, machines, farmers and dealers are a cache of what
``accumulate`` derives from the raw records. This module reports every cached
value that drifted by more than the configured epsilon. Nothing is corrected.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from decimal import Decimal
from typing import Any

import structlog

from harvest_ledger.balances import Balance, Snapshot, accumulate, load_snapshot
from harvest_ledger.config import get_settings
from harvest_ledger.errors import ConsistencyWarning
from harvest_ledger.ledger import net_owner_amount, rental_profit
from harvest_ledger.models import ZERO, PaymentType
from harvest_ledger.store.base import LedgerStore

logger = structlog.get_logger(__name__)


def _sums(pairs: Iterable[tuple[str | None, Decimal]]) -> dict[str | None, Decimal]:
    totals: dict[str | None, Decimal] = defaultdict(lambda: ZERO)
    for key, amount in pairs:
        totals[key] += amount
    return totals


def audit_running_totals(
    snapshot: Snapshot, epsilon: Decimal | None = None
) -> list[ConsistencyWarning]:
    """Compare stored running totals and rental profit caches with recomputed values."""
    if epsilon is None:
        epsilon = get_settings().consistency_epsilon
    sheet = accumulate(snapshot)
    machines = snapshot.machines_by_id
    warnings: list[ConsistencyWarning] = []

    def check(entity: str, record: Any, field: str, recomputed: Decimal) -> None:
        stored = getattr(record, field)
        if abs(stored - recomputed) > epsilon:
            warnings.append(ConsistencyWarning(entity, record.id, field, stored, recomputed))

    machine_pending = _sums(
        (j.machine_id, net_owner_amount(j, machines.get(j.machine_id))) for j in snapshot.jobs
    )
    machine_advances = _sums((a.machine_id, a.amount) for a in snapshot.advances)
    owner_advances = _sums(
        (snapshot.owner_of_machine(a.machine_id), a.amount) for a in snapshot.advances
    )
    # paid counts rental-sourced owner payments too; pending does not
    owner_paid = _sums(
        (p.machine_owner_id, p.amount)
        for p in snapshot.payments
        if p.type == PaymentType.TO_OWNER and p.is_completed
    )

    for machine in snapshot.machines:
        check("machine", machine, "total_amount_pending", machine_pending[machine.id])
        check("machine", machine, "total_advances_given", machine_advances[machine.id])

    for owner in snapshot.owners:
        balance = sheet.owners.get(owner.id, Balance())
        check("owner", owner, "total_amount_pending", balance.net)
        check("owner", owner, "total_amount_paid", owner_paid[owner.id])
        check("owner", owner, "total_advances_given", owner_advances[owner.id])

    for farmer in snapshot.farmers:
        balance = sheet.farmers.get(farmer.id, Balance())
        check("farmer", farmer, "total_amount_pending", balance.net)
        check("farmer", farmer, "total_amount_paid", balance.paid)

    for dealer in snapshot.dealers:
        balance = sheet.dealers.get(dealer.id, Balance())
        check("dealer", dealer, "total_amount_pending", balance.net)
        check("dealer", dealer, "total_amount_paid", balance.paid)

    for rental in snapshot.rentals:
        check("machine_rental", rental, "profit_margin", rental_profit(rental))

    for warning in warnings:
        logger.warning(
            "consistency_warning",
            entity=warning.entity,
            entity_id=warning.entity_id,
            field=warning.field,
            stored=str(warning.stored),
            recomputed=str(warning.recomputed),
        )
    return warnings


async def audit(store: LedgerStore, epsilon: Decimal | None = None) -> list[ConsistencyWarning]:
    snapshot = await load_snapshot(store)
    warnings = audit_running_totals(snapshot, epsilon)
    logger.info("running_totals_audited", warnings=len(warnings))
    return warnings
