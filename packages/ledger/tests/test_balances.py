"""Tests for balance accumulation, snapshot filtering and job classification."""

from decimal import Decimal

import pytest

from harvest_ledger.balances import (
    Balance,
    BalanceSheet,
    Snapshot,
    SnapshotFilter,
    accumulate,
    classify_jobs,
    load_snapshot,
)
from harvest_ledger.models import (
    BusinessSource,
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


def _snapshot(**overrides) -> Snapshot:
    base = dict(
        owners=[Owner(id="o1", name="Ravi"), Owner(id="o2", name="Suresh")],
        machines=[
            Machine(id="m1", machine_owner_id="o1", owner_rate_per_hour=Decimal("800")),
            Machine(id="m2", machine_owner_id="o2", owner_rate_per_hour=Decimal("900")),
        ],
        farmers=[
            Farmer(id="f1", name="Anil", village="Rampur"),
            Farmer(id="f2", name="Bhola", village="Sonpur"),
        ],
        dealers=[
            Dealer(id="d1", name="Agro", village_name="Rampur"),
            Dealer(id="d2", name="Kisan", village_name="Sonpur"),
        ],
    )
    base.update(overrides)
    return Snapshot(**base)


def _job(job_id: str, farmer: str, machine: str, hours: str = "5", **kwargs) -> HarvestingJob:
    return HarvestingJob(
        id=job_id,
        farmer_id=farmer,
        machine_id=machine,
        hours=Decimal(hours),
        rate_per_hour=Decimal("1000"),
        **kwargs,
    )


def _farmer_payment(amount: str, farmer: str = "f1", **kwargs) -> Payment:
    return Payment(
        type=PaymentType.FROM_FARMER, farmer_id=farmer, amount=Decimal(amount), **kwargs
    )


def _owner_payment(amount: str, owner: str = "o1", **kwargs) -> Payment:
    return Payment(
        type=PaymentType.TO_OWNER, machine_owner_id=owner, amount=Decimal(amount), **kwargs
    )


class TestBalance:
    def test_pending_is_clamped_but_net_is_not(self):
        balance = Balance(owed=Decimal("100"), paid=Decimal("150"))
        assert balance.net == Decimal("-50")
        assert balance.pending == Decimal("0")

    def test_to_dict_rounds_to_cents(self):
        balance = Balance(owed=Decimal("10.005"), paid=Decimal("0"))
        assert balance.to_dict() == {"owed": "10.01", "paid": "0.00", "pending": "10.01"}

    def test_total_pending_sums_clamped_parties(self):
        balances = [Balance(Decimal("100"), Decimal("150")), Balance(Decimal("80"), Decimal("0"))]
        assert BalanceSheet.total_pending(balances) == Decimal("80")


class TestAccumulateOwners:
    def test_expense_counts_as_paid_without_changing_owed(self):
        snapshot = _snapshot(
            jobs=[_job("j1", "f1", "m1")],
            expenses=[DailyExpense(id="e1", machine_id="m1", amount=Decimal("500"))],
        )
        sheet = accumulate(snapshot)
        assert sheet.owners["o1"].owed == Decimal("4000")
        assert sheet.owners["o1"].paid == Decimal("500")
        assert sheet.owners["o1"].pending == Decimal("3500")

    def test_rental_payments_stay_out_of_harvesting_bucket(self):
        snapshot = _snapshot(
            jobs=[_job("j1", "f1", "m1")],
            rentals=[
                MachineRental(
                    id="r1", dealer_id="d1", machine_id="m1", total_cost_to_owner=Decimal("3000")
                )
            ],
            payments=[
                _owner_payment("1000"),
                _owner_payment("2000", business_source=BusinessSource.RENTAL),
            ],
        )
        sheet = accumulate(snapshot)
        assert sheet.owners["o1"].paid == Decimal("1000")
        assert sheet.owners["o1"].pending == Decimal("3000")
        assert sheet.owner_rentals["o1"].owed == Decimal("3000")
        assert sheet.owner_rentals["o1"].paid == Decimal("2000")

    def test_pending_status_payment_is_ignored(self):
        snapshot = _snapshot(
            jobs=[_job("j1", "f1", "m1")],
            payments=[_owner_payment("4000", status=PaymentStatus.PENDING)],
        )
        assert accumulate(snapshot).owners["o1"].paid == Decimal("0")


class TestAccumulateFarmersAndDealers:
    def test_farmer_paid_includes_advance_and_payments(self):
        snapshot = _snapshot(
            jobs=[_job("j1", "f1", "m1", discount_to_farmer=Decimal("500"),
                       advance_from_farmer=Decimal("1000"))],
            payments=[_farmer_payment("2000")],
        )
        balance = accumulate(snapshot).farmers["f1"]
        assert balance.owed == Decimal("4500")
        assert balance.paid == Decimal("3000")
        assert balance.pending == Decimal("1500")

    def test_payment_without_farmer_falls_back_to_job(self):
        snapshot = _snapshot(
            jobs=[_job("j1", "f1", "m1")],
            payments=[Payment(type=PaymentType.FROM_FARMER, job_id="j1", amount=Decimal("700"))],
        )
        assert accumulate(snapshot).farmers["f1"].paid == Decimal("700")

    def test_dealer_scenario_settles_to_zero(self):
        snapshot = _snapshot(
            rentals=[
                MachineRental(
                    id="r1",
                    dealer_id="d1",
                    machine_id="m1",
                    total_amount_charged=Decimal("15000"),
                    advance_paid=Decimal("5000"),
                )
            ],
            rental_payments=[
                RentalPayment(id="rp1", rental_id="r1", dealer_id="d1", amount=Decimal("10000"))
            ],
        )
        balance = accumulate(snapshot).dealers["d1"]
        assert balance.owed == Decimal("15000")
        assert balance.paid == Decimal("15000")
        assert balance.pending == Decimal("0")


class TestSnapshotFilter:
    def test_empty_filter_returns_same_snapshot(self):
        snapshot = _snapshot()
        assert snapshot.filtered(SnapshotFilter()) is snapshot
        assert snapshot.filtered(None) is snapshot

    def test_machine_filter_narrows_jobs_payments_and_expenses(self):
        snapshot = _snapshot(
            jobs=[_job("j1", "f1", "m1"), _job("j2", "f2", "m2")],
            payments=[
                _farmer_payment("100", machine_id="m1"),
                _farmer_payment("200", farmer="f2", machine_id="m2"),
                _farmer_payment("300", job_id="j1"),
            ],
            expenses=[
                DailyExpense(id="e1", machine_id="m1", amount=Decimal("50")),
                DailyExpense(id="e2", machine_id="m2", amount=Decimal("60")),
            ],
        )
        view = snapshot.filtered(SnapshotFilter(machine_id="m1"))
        assert [j.id for j in view.jobs] == ["j1"]
        assert sorted(p.amount for p in view.payments) == [Decimal("100"), Decimal("300")]
        assert [e.id for e in view.expenses] == ["e1"]

    def test_village_filter_joins_through_farmer_and_dealer(self):
        snapshot = _snapshot(
            jobs=[_job("j1", "f1", "m1"), _job("j2", "f2", "m2")],
            rentals=[
                MachineRental(id="r1", dealer_id="d1", machine_id="m2"),
                MachineRental(id="r2", dealer_id="d2", machine_id="m2"),
            ],
            rental_payments=[
                RentalPayment(id="rp1", rental_id="r1", dealer_id="d1", amount=Decimal("10")),
                RentalPayment(id="rp2", rental_id="r2", dealer_id="d2", amount=Decimal("20")),
            ],
            payments=[_farmer_payment("100"), _farmer_payment("200", farmer="f2")],
        )
        view = snapshot.filtered(SnapshotFilter(village="Rampur"))
        assert [j.id for j in view.jobs] == ["j1"]
        assert [r.id for r in view.rentals] == ["r1"]
        assert [rp.id for rp in view.rental_payments] == ["rp1"]
        assert [p.farmer_id for p in view.payments] == ["f1"]


class TestClassifyJobs:
    def test_direct_payment_completes_its_job(self):
        snapshot = _snapshot(
            jobs=[_job("j1", "f1", "m1"), _job("j2", "f1", "m1")],
            payments=[_farmer_payment("5000", job_id="j2")],
        )
        assert classify_jobs(snapshot) == {"j1": False, "j2": True}

    def test_completion_compares_against_net_amount(self):
        snapshot = _snapshot(
            jobs=[_job("j1", "f1", "m1", discount_to_farmer=Decimal("500"))],
            payments=[_farmer_payment("4500", job_id="j1")],
        )
        assert classify_jobs(snapshot) == {"j1": True}

    def test_unattributed_payment_fills_oldest_job_first(self):
        snapshot = _snapshot(
            jobs=[
                _job("j-new", "f1", "m1", scheduled_date="2024-10-05"),
                _job("j-old", "f1", "m1", scheduled_date="2024-10-01"),
            ],
            payments=[_farmer_payment("7000")],
        )
        assert classify_jobs(snapshot) == {"j-old": True, "j-new": False}

    def test_payment_is_never_counted_twice(self):
        snapshot = _snapshot(
            jobs=[_job("j1", "f1", "m1"), _job("j2", "f1", "m1")],
            payments=[_farmer_payment("5000")],
        )
        assert sum(classify_jobs(snapshot).values()) == 1

    def test_advance_counts_toward_completion(self):
        snapshot = _snapshot(
            jobs=[_job("j1", "f1", "m1", advance_from_farmer=Decimal("5000"))],
        )
        assert classify_jobs(snapshot) == {"j1": True}


class TestLoadSnapshot:
    @pytest.mark.asyncio
    async def test_loads_every_collection(self, store):
        snapshot = await load_snapshot(store)
        assert {o.id for o in snapshot.owners} == {"owner-1", "owner-2"}
        assert snapshot.machines_by_id["machine-1"].owner_rate_per_hour == Decimal("800")
        assert snapshot.jobs == []

    @pytest.mark.asyncio
    async def test_malformed_record_is_skipped(self, store):
        await store.insert("daily_expenses", {"machine_id": "machine-1", "amount": "abc"})
        snapshot = await load_snapshot(store)
        assert snapshot.expenses == []
