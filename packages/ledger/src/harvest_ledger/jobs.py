"""Harvesting job lifecycle: booking, editing and deleting jobs.

Creating a job freezes the owner rate and both net amounts on the job record
and raises the running pending totals of the machine, its owner and the
farmer by those nets. Deleting reverses exactly what creation applied
(``exact`` mode) or, in ``legacy`` mode, replays the older reversal rule:
hours times the machine's *current* owner rate and the farmer's gross total,
each clamped at zero.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Literal

import structlog

from harvest_ledger.config import get_settings
from harvest_ledger.deltas import DeltaPlan, apply_plan
from harvest_ledger.errors import ConsistencyWarning, ValidationError
from harvest_ledger.ledger import (
    gross_farmer_amount,
    gross_owner_amount,
    net_farmer_amount,
    net_owner_amount,
)
from harvest_ledger.models import (
    Collection,
    HarvestingJob,
    Machine,
    parse_amount,
)
from harvest_ledger.store.base import LedgerStore, require

logger = structlog.get_logger(__name__)

ReversalMode = Literal["exact", "legacy"]

# fields that move money when patched
MONEY_FIELDS = (
    "farmer_id",
    "machine_id",
    "hours",
    "rate_per_hour",
    "total_amount",
    "advance_from_farmer",
    "discount_to_farmer",
    "discount_from_owner",
    "owner_rate_per_hour",
)
EDITABLE_FIELDS = MONEY_FIELDS + ("scheduled_date", "status", "notes")


def validate_discounts(job: HarvestingJob, machine: Machine | None) -> None:
    """Both discounts must lie between zero and the gross they reduce."""
    gross_farmer = gross_farmer_amount(job)
    if not 0 <= job.discount_to_farmer <= gross_farmer:
        raise ValidationError(
            f"discount_to_farmer {job.discount_to_farmer} must be between 0 "
            f"and the gross farmer amount {gross_farmer}"
        )
    gross_owner = gross_owner_amount(job, machine)
    if not 0 <= job.discount_from_owner <= gross_owner:
        raise ValidationError(
            f"discount_from_owner {job.discount_from_owner} must be between 0 "
            f"and the gross owner amount {gross_owner}"
        )


def freeze_amounts(job: HarvestingJob, machine: Machine) -> HarvestingJob:
    """Pin the owner rate and computed totals onto the job record."""
    rate = job.owner_rate_per_hour
    if rate is None:
        rate = machine.owner_rate_per_hour
    frozen = replace(job, owner_rate_per_hour=rate)
    frozen = replace(frozen, total_amount=gross_farmer_amount(frozen))
    validate_discounts(frozen, machine)
    return replace(
        frozen,
        net_amount_from_farmer=net_farmer_amount(frozen),
        net_owner_amount=net_owner_amount(frozen, machine),
    )


def booking_plan(job: HarvestingJob, machine: Machine | None) -> DeltaPlan:
    """Running-total increments a job contributes while it exists."""
    if job.owner_rate_per_hour is not None:
        owner_amount = job.net_owner_amount
        farmer_amount = job.net_amount_from_farmer
    else:
        # jobs written before amounts were frozen
        owner_amount = net_owner_amount(job, machine)
        farmer_amount = net_farmer_amount(job)

    plan = DeltaPlan()
    if machine is not None:
        plan.add(Collection.MACHINES, machine.id, total_amount_pending=owner_amount)
        plan.add(Collection.OWNERS, machine.machine_owner_id, total_amount_pending=owner_amount)
    plan.add(
        Collection.FARMERS,
        job.farmer_id,
        total_amount_pending=farmer_amount - job.advance_from_farmer,
        total_amount_paid=job.advance_from_farmer,
    )
    return plan


def legacy_reversal_plan(job: HarvestingJob, machine: Machine | None) -> DeltaPlan:
    """Older reversal rule: current machine rate, gross farmer total."""
    plan = DeltaPlan()
    if machine is not None:
        owner_amount = job.hours * machine.owner_rate_per_hour
        plan.add(
            Collection.MACHINES, machine.id, floor_zero=True, total_amount_pending=-owner_amount
        )
        plan.add(
            Collection.OWNERS,
            machine.machine_owner_id,
            floor_zero=True,
            total_amount_pending=-owner_amount,
        )
    plan.add(
        Collection.FARMERS, job.farmer_id, floor_zero=True, total_amount_pending=-job.total_amount
    )
    return plan


class JobManager:
    """Creates, updates and deletes harvesting jobs and their balance effects."""

    def __init__(self, store: LedgerStore, reversal_mode: ReversalMode | None = None):
        self._store = store
        self._reversal_mode: ReversalMode = reversal_mode or get_settings().job_reversal_mode
        self._logger = logger.bind(component="job_manager")

    @property
    def reversal_mode(self) -> ReversalMode:
        return self._reversal_mode

    async def _machine(self, machine_id: str | None) -> Machine:
        record = await require(self._store, Collection.MACHINES.value, machine_id)
        machine = Machine.from_record(record)
        if machine.machine_owner_id:
            await require(self._store, Collection.OWNERS.value, machine.machine_owner_id)
        return machine

    async def _optional_machine(self, machine_id: str | None) -> Machine | None:
        if not machine_id:
            return None
        record = await self._store.find_one(Collection.MACHINES.value, {"id": machine_id})
        return Machine.from_record(record) if record else None

    @staticmethod
    def _job_from_input(data: dict[str, Any]) -> HarvestingJob:
        rate = data.get("owner_rate_per_hour")
        return HarvestingJob(
            farmer_id=data.get("farmer_id"),
            machine_id=data.get("machine_id"),
            hours=parse_amount(data, "hours"),
            rate_per_hour=parse_amount(data, "rate_per_hour"),
            total_amount=parse_amount(data, "total_amount"),
            advance_from_farmer=parse_amount(data, "advance_from_farmer"),
            discount_to_farmer=parse_amount(data, "discount_to_farmer"),
            discount_from_owner=parse_amount(data, "discount_from_owner"),
            owner_rate_per_hour=None if rate is None else parse_amount(data, "owner_rate_per_hour"),
            scheduled_date=data.get("scheduled_date"),
            status=data.get("status") or "Completed",
            notes=data.get("notes"),
        )

    async def create_job(self, data: dict[str, Any]) -> dict[str, Any]:
        """Book a job and raise machine, owner and farmer pending by its nets.

        The owner rate is always the machine's current rate at booking time.
        """
        job = self._job_from_input({**data, "owner_rate_per_hour": None})
        await require(self._store, Collection.FARMERS.value, job.farmer_id)
        machine = await self._machine(job.machine_id)
        job = freeze_amounts(job, machine)
        plan = booking_plan(job, machine)

        async with self._store.transaction():
            stored = await self._store.insert(Collection.JOBS.value, job.to_record())
            await apply_plan(self._store, plan, "create_job")

        self._logger.info(
            "job_created",
            job_id=stored["id"],
            farmer_id=job.farmer_id,
            machine_id=job.machine_id,
            net_owner_amount=str(job.net_owner_amount),
            net_amount_from_farmer=str(job.net_amount_from_farmer),
        )
        return stored

    async def update_job(self, job_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Edit a job; money changes reverse the old deltas and apply the new ones.

        A new ``hours`` or ``rate_per_hour`` reprices the farmer total to
        hours x rate, unless ``total_amount`` is patched too or the stored
        total was an explicit override (it differed from hours x rate), in
        which case the override stands.
        """
        unknown = set(patch) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update job fields: {', '.join(sorted(unknown))}")

        old = HarvestingJob.from_record(await require(self._store, Collection.JOBS.value, job_id))
        if not any(key in patch for key in MONEY_FIELDS):
            async with self._store.transaction():
                stored = await self._store.update(Collection.JOBS.value, job_id, patch)
            self._logger.info("job_updated", job_id=job_id, fields=sorted(patch))
            return stored

        merged = {**old.to_record(), **patch}
        overridden = old.total_amount != old.hours * old.rate_per_hour
        if (
            ("hours" in patch or "rate_per_hour" in patch)
            and "total_amount" not in patch
            and not overridden
        ):
            merged["total_amount"] = None
        moved = "machine_id" in patch and patch["machine_id"] != old.machine_id
        if moved and "owner_rate_per_hour" not in patch:
            # a new machine brings its own contract rate
            merged["owner_rate_per_hour"] = None
        new = self._job_from_input(merged)

        await require(self._store, Collection.FARMERS.value, new.farmer_id)
        new_machine = await self._machine(new.machine_id)
        old_machine = await self._optional_machine(old.machine_id)
        new = freeze_amounts(new, new_machine)

        plan = booking_plan(old, old_machine).inverse().extend(booking_plan(new, new_machine))
        changes = {
            key: value
            for key, value in new.to_record().items()
            if key in EDITABLE_FIELDS
            or key in ("net_amount_from_farmer", "net_owner_amount")
        }

        async with self._store.transaction():
            stored = await self._store.update(Collection.JOBS.value, job_id, changes)
            await apply_plan(self._store, plan, "update_job")

        self._logger.info(
            "job_updated",
            job_id=job_id,
            fields=sorted(patch),
            net_owner_amount=str(new.net_owner_amount),
            net_amount_from_farmer=str(new.net_amount_from_farmer),
        )
        return stored

    async def delete_job(self, job_id: str) -> dict[str, Any]:
        """Delete a job and back its amounts out of the running totals."""
        job = HarvestingJob.from_record(await require(self._store, Collection.JOBS.value, job_id))
        machine = await self._optional_machine(job.machine_id)
        warnings: list[ConsistencyWarning] = []

        if self._reversal_mode == "legacy":
            plan = legacy_reversal_plan(job, machine)
        else:
            plan = booking_plan(job, machine).inverse()
            warning = self.rate_divergence(job, machine)
            if warning is not None:
                warnings.append(warning)

        if machine is None and job.machine_id:
            self._logger.warning("job_machine_missing", job_id=job_id, machine_id=job.machine_id)

        async with self._store.transaction():
            await apply_plan(self._store, plan, "delete_job")
            await self._store.delete(Collection.JOBS.value, job_id)

        self._logger.info("job_deleted", job_id=job_id, reversal_mode=self._reversal_mode)
        return {"id": job_id, "deleted": True, "warnings": [w.to_dict() for w in warnings]}

    def rate_divergence(
        self, job: HarvestingJob, machine: Machine | None
    ) -> ConsistencyWarning | None:
        """Flag a machine whose owner rate moved since the job was booked."""
        if machine is None or job.owner_rate_per_hour is None:
            return None
        if machine.owner_rate_per_hour == job.owner_rate_per_hour:
            return None
        warning = ConsistencyWarning(
            entity="harvesting_job",
            entity_id=job.id,
            field="owner_rate_per_hour",
            stored=job.owner_rate_per_hour,
            recomputed=machine.owner_rate_per_hour,
        )
        self._logger.warning(
            "consistency_warning",
            entity=warning.entity,
            entity_id=warning.entity_id,
            field=warning.field,
            stored=str(warning.stored),
            recomputed=str(warning.recomputed),
        )
        return warning
