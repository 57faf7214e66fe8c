"""Daily expenses and advances recorded against a machine.

An expense is money spent on behalf of the machine's owner and settles part
of what the owner is owed, so it lowers the owner's harvesting pending. An
advance is money pre-paid to the owner, tracked in ``total_advances_given``
on both the machine and its owner.
"""

from __future__ import annotations

from typing import Any

import structlog

from harvest_ledger.deltas import DeltaPlan, apply_plan
from harvest_ledger.errors import ValidationError
from harvest_ledger.models import (
    Collection,
    DailyAdvance,
    DailyExpense,
    Machine,
    parse_amount,
    today_iso,
)
from harvest_ledger.store.base import LedgerStore, require

logger = structlog.get_logger(__name__)

EXPENSE_FIELDS = ("machine_id", "amount", "expense_date", "notes")
ADVANCE_FIELDS = ("machine_id", "amount", "advance_date", "paid_by", "notes")


def expense_plan(expense: DailyExpense, machine: Machine | None) -> DeltaPlan:
    if machine is None:
        return DeltaPlan()
    return DeltaPlan().add(
        Collection.OWNERS, machine.machine_owner_id, total_amount_pending=-expense.amount
    )


def advance_plan(advance: DailyAdvance, machine: Machine | None) -> DeltaPlan:
    plan = DeltaPlan()
    if machine is None:
        return plan
    plan.add(Collection.MACHINES, machine.id, total_advances_given=advance.amount)
    plan.add(Collection.OWNERS, machine.machine_owner_id, total_advances_given=advance.amount)
    return plan


class ExpenseManager:
    """Records daily expenses and advances and their effect on owner totals."""

    def __init__(self, store: LedgerStore):
        self._store = store
        self._logger = logger.bind(component="expense_manager")

    async def _machine(self, machine_id: str | None) -> Machine:
        record = await require(self._store, Collection.MACHINES.value, machine_id)
        return Machine.from_record(record)

    async def _stored_machine(self, machine_id: str | None) -> Machine | None:
        if not machine_id:
            return None
        record = await self._store.find_one(Collection.MACHINES.value, {"id": machine_id})
        return Machine.from_record(record) if record else None

    @staticmethod
    def _check_fields(patch: dict[str, Any], allowed: tuple[str, ...], kind: str) -> None:
        unknown = set(patch) - set(allowed)
        if unknown:
            raise ValidationError(f"Cannot update {kind} fields: {', '.join(sorted(unknown))}")

    # === Expenses ===

    async def create_expense(self, data: dict[str, Any]) -> dict[str, Any]:
        expense = DailyExpense(
            machine_id=data.get("machine_id"),
            amount=parse_amount(data, "amount"),
            expense_date=data.get("expense_date") or today_iso(),
            notes=data.get("notes"),
        )
        machine = await self._machine(expense.machine_id)

        async with self._store.transaction():
            stored = await self._store.insert(Collection.EXPENSES.value, expense.to_record())
            await apply_plan(self._store, expense_plan(expense, machine), "create_expense")

        self._logger.info(
            "expense_created",
            expense_id=stored["id"],
            machine_id=expense.machine_id,
            amount=str(expense.amount),
        )
        return stored

    async def update_expense(self, expense_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        self._check_fields(patch, EXPENSE_FIELDS, "expense")
        old = DailyExpense.from_record(
            await require(self._store, Collection.EXPENSES.value, expense_id)
        )
        merged = {**old.to_record(), **patch}
        merged["amount"] = parse_amount(merged, "amount")
        new = DailyExpense.from_record(merged)
        old_machine = await self._stored_machine(old.machine_id)
        new_machine = await self._machine(new.machine_id)

        plan = expense_plan(old, old_machine).inverse().extend(expense_plan(new, new_machine))
        changes = {k: v for k, v in new.to_record().items() if k in patch}

        async with self._store.transaction():
            stored = await self._store.update(Collection.EXPENSES.value, expense_id, changes)
            await apply_plan(self._store, plan, "update_expense")

        self._logger.info("expense_updated", expense_id=expense_id, fields=sorted(patch))
        return stored

    async def delete_expense(self, expense_id: str) -> dict[str, Any]:
        expense = DailyExpense.from_record(
            await require(self._store, Collection.EXPENSES.value, expense_id)
        )
        machine = await self._stored_machine(expense.machine_id)

        async with self._store.transaction():
            await apply_plan(
                self._store, expense_plan(expense, machine).inverse(), "delete_expense"
            )
            await self._store.delete(Collection.EXPENSES.value, expense_id)

        self._logger.info("expense_deleted", expense_id=expense_id, amount=str(expense.amount))
        return {"id": expense_id, "deleted": True}

    # === Advances ===

    async def create_advance(self, data: dict[str, Any]) -> dict[str, Any]:
        advance = DailyAdvance(
            machine_id=data.get("machine_id"),
            amount=parse_amount(data, "amount"),
            advance_date=data.get("advance_date") or today_iso(),
            paid_by=data.get("paid_by") or "Owner",
            notes=data.get("notes"),
        )
        machine = await self._machine(advance.machine_id)

        async with self._store.transaction():
            stored = await self._store.insert(Collection.ADVANCES.value, advance.to_record())
            await apply_plan(self._store, advance_plan(advance, machine), "create_advance")

        self._logger.info(
            "advance_created",
            advance_id=stored["id"],
            machine_id=advance.machine_id,
            amount=str(advance.amount),
        )
        return stored

    async def update_advance(self, advance_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Edit an advance; only the difference in amount moves the totals."""
        self._check_fields(patch, ADVANCE_FIELDS, "advance")
        old = DailyAdvance.from_record(
            await require(self._store, Collection.ADVANCES.value, advance_id)
        )
        merged = {**old.to_record(), **patch}
        merged["amount"] = parse_amount(merged, "amount")
        new = DailyAdvance.from_record(merged)
        old_machine = await self._stored_machine(old.machine_id)
        new_machine = await self._machine(new.machine_id)

        plan = advance_plan(old, old_machine).inverse().extend(advance_plan(new, new_machine))
        changes = {k: v for k, v in new.to_record().items() if k in patch}

        async with self._store.transaction():
            stored = await self._store.update(Collection.ADVANCES.value, advance_id, changes)
            await apply_plan(self._store, plan, "update_advance")

        self._logger.info("advance_updated", advance_id=advance_id, fields=sorted(patch))
        return stored

    async def delete_advance(self, advance_id: str) -> dict[str, Any]:
        advance = DailyAdvance.from_record(
            await require(self._store, Collection.ADVANCES.value, advance_id)
        )
        machine = await self._stored_machine(advance.machine_id)
        plan = advance_plan(advance, machine).inverse().floored()

        async with self._store.transaction():
            await apply_plan(self._store, plan, "delete_advance")
            await self._store.delete(Collection.ADVANCES.value, advance_id)

        self._logger.info("advance_deleted", advance_id=advance_id, amount=str(advance.amount))
        return {"id": advance_id, "deleted": True}
