"""Balance accumulation over a closed-world snapshot of transactions.

A ``Snapshot`` holds every record the reports need. ``Snapshot.filtered``
narrows it by machine or village before any sums are taken, joining through
the farmer (jobs) or dealer (rentals) relation. ``accumulate`` folds the
snapshot into per-party ``Balance`` mappings:

- owners: harvesting obligations (net owner amounts) against completed
  harvesting payments plus daily expenses on the owner's machines
- owner_rentals: rental owner costs against completed rental-sourced payments,
  kept in a separate bucket from harvesting
- farmers: net farmer amounts against advances plus completed farmer payments
- dealers: rental charges against rental advances plus rental payments
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any

import structlog

from harvest_ledger.ledger import money, net_farmer_amount, net_owner_amount, owed
from harvest_ledger.models import (
    ZERO,
    BusinessSource,
    Collection,
    DailyAdvance,
    DailyExpense,
    Dealer,
    Farmer,
    HarvestingJob,
    Machine,
    MachineRental,
    Owner,
    Payment,
    PaymentStatus,
    PaymentType,
    RentalPayment,
)
from harvest_ledger.store.base import LedgerStore

logger = structlog.get_logger(__name__)


@dataclass
class Balance:
    """Running position of one party: what it owes (or is owed) and what is settled."""

    owed: Decimal = ZERO
    paid: Decimal = ZERO

    @property
    def net(self) -> Decimal:
        """Unclamped owed - paid; negative means overpaid."""
        return self.owed - self.paid

    @property
    def pending(self) -> Decimal:
        return owed(self.net)

    def to_dict(self) -> dict[str, str]:
        return {
            "owed": str(money(self.owed)),
            "paid": str(money(self.paid)),
            "pending": str(money(self.pending)),
        }


@dataclass(frozen=True)
class SnapshotFilter:
    """Optional dashboard filter; both criteria apply conjunctively."""

    machine_id: str | None = None
    village: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.machine_id and not self.village


@dataclass
class Snapshot:
    owners: list[Owner] = field(default_factory=list)
    machines: list[Machine] = field(default_factory=list)
    farmers: list[Farmer] = field(default_factory=list)
    dealers: list[Dealer] = field(default_factory=list)
    jobs: list[HarvestingJob] = field(default_factory=list)
    rentals: list[MachineRental] = field(default_factory=list)
    payments: list[Payment] = field(default_factory=list)
    rental_payments: list[RentalPayment] = field(default_factory=list)
    expenses: list[DailyExpense] = field(default_factory=list)
    advances: list[DailyAdvance] = field(default_factory=list)

    @classmethod
    def from_records(cls, records: dict[Collection, list[dict[str, Any]]]) -> Snapshot:
        def parse(collection: Collection, record_type: Any) -> list[Any]:
            parsed = []
            for record in records.get(collection, []):
                try:
                    parsed.append(record_type.from_record(record))
                except (TypeError, ValueError) as e:
                    logger.warning(
                        "record_skipped",
                        collection=collection.value,
                        id=record.get("id"),
                        error=str(e),
                    )
            return parsed

        return cls(
            owners=parse(Collection.OWNERS, Owner),
            machines=parse(Collection.MACHINES, Machine),
            farmers=parse(Collection.FARMERS, Farmer),
            dealers=parse(Collection.DEALERS, Dealer),
            jobs=parse(Collection.JOBS, HarvestingJob),
            rentals=parse(Collection.RENTALS, MachineRental),
            payments=parse(Collection.PAYMENTS, Payment),
            rental_payments=parse(Collection.RENTAL_PAYMENTS, RentalPayment),
            expenses=parse(Collection.EXPENSES, DailyExpense),
            advances=parse(Collection.ADVANCES, DailyAdvance),
        )

    @property
    def machines_by_id(self) -> dict[str | None, Machine]:
        return {m.id: m for m in self.machines}

    @property
    def farmers_by_id(self) -> dict[str | None, Farmer]:
        return {f.id: f for f in self.farmers}

    @property
    def dealers_by_id(self) -> dict[str | None, Dealer]:
        return {d.id: d for d in self.dealers}

    def owner_of_machine(self, machine_id: str | None) -> str | None:
        machine = self.machines_by_id.get(machine_id)
        return machine.machine_owner_id if machine else None

    def filtered(self, criteria: SnapshotFilter | None) -> Snapshot:
        """Narrow the transactions to one machine and/or village."""
        if criteria is None or criteria.is_empty:
            return self

        jobs = self.jobs
        rentals = self.rentals
        machines = self.machines
        farmers = self.farmers_by_id
        dealers = self.dealers_by_id

        if criteria.machine_id:
            machines = [m for m in machines if m.id == criteria.machine_id]
            jobs = [j for j in jobs if j.machine_id == criteria.machine_id]
            rentals = [r for r in rentals if r.machine_id == criteria.machine_id]
        if criteria.village:
            jobs = [
                j
                for j in jobs
                if (f := farmers.get(j.farmer_id)) is not None and f.village == criteria.village
            ]
            rentals = [
                r
                for r in rentals
                if (d := dealers.get(r.dealer_id)) is not None
                and d.village_name == criteria.village
            ]

        job_ids = {j.id for j in jobs}
        rental_ids = {r.id for r in rentals}
        job_machine_ids = {j.machine_id for j in jobs}
        job_owner_ids = {self.owner_of_machine(j.machine_id) for j in jobs}
        rental_owner_ids = {self.owner_of_machine(r.machine_id) for r in rentals}

        def keep_payment(p: Payment) -> bool:
            if criteria.machine_id and p.machine_id != criteria.machine_id:
                # a payment naming a kept job needs no machine of its own
                return p.machine_id is None and p.job_id in job_ids
            if p.job_id is not None:
                return p.job_id in job_ids
            if not criteria.village:
                return True
            if p.type == PaymentType.FROM_FARMER:
                farmer = farmers.get(p.farmer_id)
                return farmer is not None and farmer.village == criteria.village
            if p.business_source == BusinessSource.RENTAL:
                return p.machine_owner_id in rental_owner_ids
            return p.machine_owner_id in job_owner_ids

        if criteria.machine_id:
            expenses = [e for e in self.expenses if e.machine_id == criteria.machine_id]
            advances = [a for a in self.advances if a.machine_id == criteria.machine_id]
        else:
            expenses = [e for e in self.expenses if e.machine_id in job_machine_ids]
            advances = [a for a in self.advances if a.machine_id in job_machine_ids]

        return replace(
            self,
            machines=machines,
            jobs=jobs,
            rentals=rentals,
            payments=[p for p in self.payments if keep_payment(p)],
            rental_payments=[rp for rp in self.rental_payments if rp.rental_id in rental_ids],
            expenses=expenses,
            advances=advances,
        )


async def load_snapshot(store: LedgerStore) -> Snapshot:
    """Read every collection the reports need from the store."""
    records: dict[Collection, list[dict[str, Any]]] = {}
    for collection in Collection:
        records[collection] = await store.find(collection.value)
    snapshot = Snapshot.from_records(records)
    logger.debug(
        "snapshot_loaded",
        jobs=len(snapshot.jobs),
        rentals=len(snapshot.rentals),
        payments=len(snapshot.payments),
    )
    return snapshot


@dataclass
class BalanceSheet:
    owners: dict[str, Balance] = field(default_factory=dict)
    owner_rentals: dict[str, Balance] = field(default_factory=dict)
    farmers: dict[str, Balance] = field(default_factory=dict)
    dealers: dict[str, Balance] = field(default_factory=dict)

    @staticmethod
    def total(balances: Iterable[Balance]) -> Balance:
        result = Balance()
        for b in balances:
            result.owed += b.owed
            result.paid += b.paid
        return result

    @staticmethod
    def total_pending(balances: Iterable[Balance]) -> Decimal:
        """Sum of per-party pending amounts, each floored at zero."""
        return sum((b.pending for b in balances), ZERO)

    def to_dict(self) -> dict[str, Any]:
        return {
            "owners": {k: v.to_dict() for k, v in self.owners.items()},
            "ownerRentals": {k: v.to_dict() for k, v in self.owner_rentals.items()},
            "farmers": {k: v.to_dict() for k, v in self.farmers.items()},
            "dealers": {k: v.to_dict() for k, v in self.dealers.items()},
        }


def _is_owner_payment(p: Payment, source: BusinessSource) -> bool:
    return (
        p.type == PaymentType.TO_OWNER
        and p.status == PaymentStatus.COMPLETED
        and p.business_source == source
    )


def accumulate(snapshot: Snapshot) -> BalanceSheet:
    """Fold a snapshot into owner, farmer and dealer balances."""
    machines = snapshot.machines_by_id
    owners: dict[str, Balance] = defaultdict(Balance)
    owner_rentals: dict[str, Balance] = defaultdict(Balance)
    farmers: dict[str, Balance] = defaultdict(Balance)
    dealers: dict[str, Balance] = defaultdict(Balance)
    job_farmers = {j.id: j.farmer_id for j in snapshot.jobs}

    for job in snapshot.jobs:
        machine = machines.get(job.machine_id)
        if machine is not None and machine.machine_owner_id:
            owners[machine.machine_owner_id].owed += net_owner_amount(job, machine)
        if job.farmer_id:
            farmers[job.farmer_id].owed += net_farmer_amount(job)
            farmers[job.farmer_id].paid += job.advance_from_farmer

    for expense in snapshot.expenses:
        owner_id = snapshot.owner_of_machine(expense.machine_id)
        if owner_id:
            owners[owner_id].paid += expense.amount

    for payment in snapshot.payments:
        if payment.type == PaymentType.TO_OWNER:
            owner_id = payment.machine_owner_id or snapshot.owner_of_machine(payment.machine_id)
            if not owner_id:
                continue
            if _is_owner_payment(payment, BusinessSource.HARVESTING):
                owners[owner_id].paid += payment.amount
            elif _is_owner_payment(payment, BusinessSource.RENTAL):
                owner_rentals[owner_id].paid += payment.amount
        elif payment.is_completed:
            farmer_id = payment.farmer_id or job_farmers.get(payment.job_id)
            if farmer_id:
                farmers[farmer_id].paid += payment.amount

    rental_dealers: dict[str | None, str | None] = {}
    for rental in snapshot.rentals:
        rental_dealers[rental.id] = rental.dealer_id
        owner_id = snapshot.owner_of_machine(rental.machine_id)
        if owner_id:
            owner_rentals[owner_id].owed += rental.total_cost_to_owner
        if rental.dealer_id:
            dealers[rental.dealer_id].owed += rental.total_amount_charged
            dealers[rental.dealer_id].paid += rental.advance_paid

    for rental_payment in snapshot.rental_payments:
        if rental_payment.status != PaymentStatus.COMPLETED:
            continue
        dealer_id = rental_dealers.get(rental_payment.rental_id) or rental_payment.dealer_id
        if dealer_id:
            dealers[dealer_id].paid += rental_payment.amount

    return BalanceSheet(
        owners=dict(owners),
        owner_rentals=dict(owner_rentals),
        farmers=dict(farmers),
        dealers=dict(dealers),
    )


def _job_order(job: HarvestingJob) -> tuple[str, str, str]:
    return (job.scheduled_date or "", job.created_at or "", job.id or "")


def classify_jobs(snapshot: Snapshot) -> dict[str, bool]:
    """Map job id -> fully paid by the farmer.

    Payments naming a job count toward that job only. Payments naming just the
    farmer are then spread over that farmer's jobs oldest first, so no payment
    is counted toward two jobs.
    """
    direct: dict[str, Decimal] = defaultdict(lambda: ZERO)
    unattributed: dict[str, Decimal] = defaultdict(lambda: ZERO)
    job_ids = {j.id for j in snapshot.jobs}

    for payment in snapshot.payments:
        if payment.type != PaymentType.FROM_FARMER or not payment.is_completed:
            continue
        if payment.job_id is not None:
            if payment.job_id in job_ids:
                direct[payment.job_id] += payment.amount
        elif payment.farmer_id:
            unattributed[payment.farmer_id] += payment.amount

    completed: dict[str, bool] = {}
    for job in sorted(snapshot.jobs, key=_job_order):
        if job.id is None:
            continue
        shortfall = net_farmer_amount(job) - job.advance_from_farmer - direct[job.id]
        if shortfall > 0 and job.farmer_id:
            applied = min(shortfall, unattributed[job.farmer_id])
            unattributed[job.farmer_id] -= applied
            shortfall -= applied
        completed[job.id] = shortfall <= 0
    return completed
