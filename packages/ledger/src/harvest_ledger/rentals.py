"""Dealer machine rentals.

A rental charges the dealer ``total_hours_used x hourly_rate_to_dealer`` and
costs the owner ``total_hours_used x hourly_cost_from_owner``. The stored
``profit_margin`` is recomputed on every write but never read back for
reporting. Dealer running totals track the charge net of the advance.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

import structlog

from harvest_ledger.deltas import DeltaPlan, apply_plan
from harvest_ledger.errors import ValidationError
from harvest_ledger.ledger import rental_charge, rental_owner_cost, rental_profit
from harvest_ledger.models import (
    Collection,
    MachineRental,
    RentalStatus,
    parse_amount,
    today_iso,
)
from harvest_ledger.store.base import LedgerStore, require

logger = structlog.get_logger(__name__)

RENTAL_EDITABLE_FIELDS = (
    "dealer_id",
    "machine_id",
    "total_hours_used",
    "hourly_rate_to_dealer",
    "hourly_cost_from_owner",
    "total_amount_charged",
    "total_cost_to_owner",
    "advance_paid",
    "status",
    "start_date",
    "end_date",
)


def price_rental(rental: MachineRental, data: dict[str, Any]) -> MachineRental:
    """Derive charge and owner cost from hours unless given explicitly."""
    charged = parse_amount(data, "total_amount_charged", default=rental_charge(rental))
    cost = parse_amount(data, "total_cost_to_owner", default=rental_owner_cost(rental))
    priced = replace(rental, total_amount_charged=charged, total_cost_to_owner=cost)
    return replace(priced, profit_margin=rental_profit(priced))


def dealer_plan(rental: MachineRental) -> DeltaPlan:
    return DeltaPlan().add(
        Collection.DEALERS,
        rental.dealer_id,
        total_amount_pending=rental.total_amount_charged - rental.advance_paid,
        total_amount_paid=rental.advance_paid,
    )


class RentalManager:
    def __init__(self, store: LedgerStore):
        self._store = store
        self._logger = logger.bind(component="rental_manager")

    @staticmethod
    def _rental_from_input(data: dict[str, Any]) -> MachineRental:
        status = data.get("status") or RentalStatus.ACTIVE
        try:
            status = RentalStatus(status)
        except ValueError:
            raise ValidationError(
                f"status must be 'Active' or 'Completed', got {status!r}"
            ) from None
        rental = MachineRental(
            dealer_id=data.get("dealer_id"),
            machine_id=data.get("machine_id"),
            total_hours_used=parse_amount(data, "total_hours_used"),
            hourly_rate_to_dealer=parse_amount(data, "hourly_rate_to_dealer"),
            hourly_cost_from_owner=parse_amount(data, "hourly_cost_from_owner"),
            advance_paid=parse_amount(data, "advance_paid"),
            status=status,
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
        )
        return price_rental(rental, data)

    async def _check_references(self, rental: MachineRental) -> None:
        await require(self._store, Collection.DEALERS.value, rental.dealer_id)
        await require(self._store, Collection.MACHINES.value, rental.machine_id)

    async def _has_payments(self, rental_id: str) -> bool:
        payments = await self._store.find(
            Collection.RENTAL_PAYMENTS.value, {"rental_id": rental_id}, limit=1
        )
        return bool(payments)

    async def create_rental(self, data: dict[str, Any]) -> dict[str, Any]:
        rental = self._rental_from_input(data)
        await self._check_references(rental)

        async with self._store.transaction():
            stored = await self._store.insert(Collection.RENTALS.value, rental.to_record())
            await apply_plan(self._store, dealer_plan(rental), "create_rental")

        self._logger.info(
            "rental_created",
            rental_id=stored["id"],
            dealer_id=rental.dealer_id,
            machine_id=rental.machine_id,
            total_amount_charged=str(rental.total_amount_charged),
        )
        return stored

    async def update_rental(self, rental_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Edit a rental (usually hours at season end) and re-delta the dealer."""
        unknown = set(patch) - set(RENTAL_EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update rental fields: {', '.join(sorted(unknown))}")

        old = MachineRental.from_record(
            await require(self._store, Collection.RENTALS.value, rental_id)
        )
        merged = {**old.to_record(), **patch}
        # a new rate or hour count reprices unless the total is patched too
        for total, inputs in (
            ("total_amount_charged", ("total_hours_used", "hourly_rate_to_dealer")),
            ("total_cost_to_owner", ("total_hours_used", "hourly_cost_from_owner")),
        ):
            if any(k in patch for k in inputs) and total not in patch:
                merged[total] = None
        new = self._rental_from_input(merged)
        await self._check_references(new)
        # rental payments stay booked on the dealer they were paid by
        if new.dealer_id != old.dealer_id and await self._has_payments(rental_id):
            raise ValidationError(
                f"Rental {rental_id} has rental payments from dealer {old.dealer_id}; "
                "delete those before moving it to another dealer"
            )

        plan = dealer_plan(old).inverse().extend(dealer_plan(new))
        changes = {k: v for k, v in new.to_record().items() if k in RENTAL_EDITABLE_FIELDS}
        changes["profit_margin"] = new.profit_margin

        async with self._store.transaction():
            stored = await self._store.update(Collection.RENTALS.value, rental_id, changes)
            await apply_plan(self._store, plan, "update_rental")

        self._logger.info("rental_updated", rental_id=rental_id, fields=sorted(patch))
        return stored

    async def complete_rental(
        self, rental_id: str, total_hours_used: Any = None, end_date: str | None = None
    ) -> dict[str, Any]:
        """Close the season, optionally recording the final hour meter."""
        patch: dict[str, Any] = {
            "status": RentalStatus.COMPLETED.value,
            "end_date": end_date or today_iso(),
        }
        if total_hours_used is not None:
            patch["total_hours_used"] = total_hours_used
        return await self.update_rental(rental_id, patch)

    async def delete_rental(self, rental_id: str) -> dict[str, Any]:
        rental = MachineRental.from_record(
            await require(self._store, Collection.RENTALS.value, rental_id)
        )
        if await self._has_payments(rental_id):
            raise ValidationError(
                f"Rental {rental_id} has rental payments; delete those first"
            )

        async with self._store.transaction():
            await apply_plan(self._store, dealer_plan(rental).inverse(), "delete_rental")
            await self._store.delete(Collection.RENTALS.value, rental_id)

        self._logger.info("rental_deleted", rental_id=rental_id, dealer_id=rental.dealer_id)
        return {"id": rental_id, "deleted": True}
