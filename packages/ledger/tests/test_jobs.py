"""Tests for the harvesting job lifecycle."""

from decimal import Decimal

import pytest

from harvest_ledger.errors import NotFoundError, ValidationError
from harvest_ledger.expenses import ExpenseManager
from harvest_ledger.jobs import JobManager
from harvest_ledger.payments import PaymentManager
from harvest_ledger.reconcile import audit


@pytest.fixture
def jobs(store):
    return JobManager(store, reversal_mode="exact")


@pytest.fixture
def legacy_jobs(store):
    return JobManager(store, reversal_mode="legacy")


class TestCreateJob:
    @pytest.mark.asyncio
    async def test_freezes_rate_and_net_amounts(self, jobs, job_input):
        job = await jobs.create_job({**job_input, "discount_to_farmer": "500"})

        assert job["owner_rate_per_hour"] == Decimal("800")
        assert job["total_amount"] == Decimal("5000")
        assert job["net_amount_from_farmer"] == Decimal("4500")
        assert job["net_owner_amount"] == Decimal("4000")

    @pytest.mark.asyncio
    async def test_raises_pending_on_machine_owner_and_farmer(self, jobs, job_input, total):
        await jobs.create_job(job_input)

        assert await total("machines", "machine-1") == Decimal("4000")
        assert await total("machine_owners", "owner-1") == Decimal("4000")
        assert await total("farmers", "farmer-1") == Decimal("5000")
        assert await total("machine_owners", "owner-2") == Decimal("0")

    @pytest.mark.asyncio
    async def test_owner_rate_comes_from_the_machine(self, jobs, job_input, total):
        job = await jobs.create_job({**job_input, "owner_rate_per_hour": "500"})

        assert job["owner_rate_per_hour"] == Decimal("800")
        assert job["net_owner_amount"] == Decimal("4000")
        assert await total("machine_owners", "owner-1") == Decimal("4000")

    @pytest.mark.asyncio
    async def test_advance_is_booked_as_paid(self, jobs, job_input, total):
        await jobs.create_job({**job_input, "advance_from_farmer": "1000"})

        assert await total("farmers", "farmer-1") == Decimal("4000")
        assert await total("farmers", "farmer-1", "total_amount_paid") == Decimal("1000")

    @pytest.mark.asyncio
    async def test_farmer_discount_above_gross_is_rejected_without_writes(
        self, store, jobs, job_input, total
    ):
        with pytest.raises(ValidationError, match="discount_to_farmer"):
            await jobs.create_job({**job_input, "discount_to_farmer": "5000.01"})

        assert await store.find("harvesting_jobs") == []
        assert await total("farmers", "farmer-1") == Decimal("0")
        assert await total("machine_owners", "owner-1") == Decimal("0")

    @pytest.mark.asyncio
    async def test_owner_discount_above_gross_is_rejected(self, store, jobs, job_input):
        with pytest.raises(ValidationError, match="discount_from_owner"):
            await jobs.create_job({**job_input, "discount_from_owner": "4001"})
        assert await store.find("harvesting_jobs") == []

    @pytest.mark.asyncio
    async def test_negative_hours_are_rejected(self, jobs, job_input):
        with pytest.raises(ValidationError, match="hours"):
            await jobs.create_job({**job_input, "hours": "-1"})

    @pytest.mark.asyncio
    async def test_non_numeric_rate_is_rejected(self, jobs, job_input):
        with pytest.raises(ValidationError, match="rate_per_hour"):
            await jobs.create_job({**job_input, "rate_per_hour": "lots"})

    @pytest.mark.asyncio
    async def test_unknown_farmer_is_not_found(self, jobs, job_input):
        with pytest.raises(NotFoundError):
            await jobs.create_job({**job_input, "farmer_id": "farmer-404"})

    @pytest.mark.asyncio
    async def test_missing_machine_reference_is_invalid(self, jobs, job_input):
        with pytest.raises(ValidationError):
            await jobs.create_job({**job_input, "machine_id": None})


class TestOwnerScenario:
    @pytest.mark.asyncio
    async def test_expense_reduces_pending_but_not_owed(self, store, jobs, job_input, total):
        await jobs.create_job(job_input)
        await ExpenseManager(store).create_expense({"machine_id": "machine-1", "amount": "500"})

        assert await total("machine_owners", "owner-1") == Decimal("3500")
        # the machine keeps the accrued obligation
        assert await total("machines", "machine-1") == Decimal("4000")


class TestUpdateJob:
    @pytest.mark.asyncio
    async def test_changing_hours_re_deltas(self, jobs, job_input, total):
        job = await jobs.create_job(job_input)
        updated = await jobs.update_job(job["id"], {"hours": "6"})

        assert updated["total_amount"] == Decimal("6000")
        assert updated["net_owner_amount"] == Decimal("4800")
        assert await total("farmers", "farmer-1") == Decimal("6000")
        assert await total("machine_owners", "owner-1") == Decimal("4800")
        assert await total("machines", "machine-1") == Decimal("4800")

    @pytest.mark.asyncio
    async def test_changing_hours_keeps_an_explicit_total(self, store, jobs, job_input, total):
        job = await jobs.create_job({**job_input, "total_amount": "4500"})
        updated = await jobs.update_job(job["id"], {"hours": "6"})

        assert updated["total_amount"] == Decimal("4500")
        assert updated["net_owner_amount"] == Decimal("4800")
        assert await total("farmers", "farmer-1") == Decimal("4500")
        assert await audit(store) == []

    @pytest.mark.asyncio
    async def test_moving_to_another_machine_moves_owner_pending(self, jobs, job_input, total):
        job = await jobs.create_job(job_input)
        updated = await jobs.update_job(job["id"], {"machine_id": "machine-2"})

        assert updated["owner_rate_per_hour"] == Decimal("900")
        assert await total("machine_owners", "owner-1") == Decimal("0")
        assert await total("machines", "machine-1") == Decimal("0")
        assert await total("machine_owners", "owner-2") == Decimal("4500")
        assert await total("farmers", "farmer-1") == Decimal("5000")

    @pytest.mark.asyncio
    async def test_moving_to_another_farmer(self, jobs, job_input, total):
        job = await jobs.create_job(job_input)
        await jobs.update_job(job["id"], {"farmer_id": "farmer-2"})

        assert await total("farmers", "farmer-1") == Decimal("0")
        assert await total("farmers", "farmer-2") == Decimal("5000")

    @pytest.mark.asyncio
    async def test_notes_only_leaves_totals_alone(self, jobs, job_input, total):
        job = await jobs.create_job(job_input)
        updated = await jobs.update_job(job["id"], {"notes": "north field"})

        assert updated["notes"] == "north field"
        assert await total("farmers", "farmer-1") == Decimal("5000")

    @pytest.mark.asyncio
    async def test_unknown_field_is_rejected(self, jobs, job_input):
        job = await jobs.create_job(job_input)
        with pytest.raises(ValidationError, match="net_owner_amount"):
            await jobs.update_job(job["id"], {"net_owner_amount": "1"})

    @pytest.mark.asyncio
    async def test_invalid_discount_leaves_job_untouched(self, store, jobs, job_input, total):
        job = await jobs.create_job(job_input)
        with pytest.raises(ValidationError):
            await jobs.update_job(job["id"], {"discount_to_farmer": "9000"})

        stored = await store.find_one("harvesting_jobs", {"id": job["id"]})
        assert stored["discount_to_farmer"] == Decimal("0")
        assert await total("farmers", "farmer-1") == Decimal("5000")


class TestDeleteJobExact:
    @pytest.mark.asyncio
    async def test_create_then_delete_restores_every_total(self, store, jobs, job_input, total):
        job = await jobs.create_job(
            {**job_input, "discount_to_farmer": "500", "discount_from_owner": "200",
             "advance_from_farmer": "1000"}
        )
        result = await jobs.delete_job(job["id"])

        assert result["deleted"] is True
        assert result["warnings"] == []
        assert await store.find("harvesting_jobs") == []
        for collection, record_id, field in [
            ("machines", "machine-1", "total_amount_pending"),
            ("machine_owners", "owner-1", "total_amount_pending"),
            ("farmers", "farmer-1", "total_amount_pending"),
            ("farmers", "farmer-1", "total_amount_paid"),
        ]:
            assert await total(collection, record_id, field) == Decimal("0")

    @pytest.mark.asyncio
    async def test_rate_change_uses_frozen_rate_and_warns(self, store, jobs, job_input, total):
        job = await jobs.create_job(job_input)
        await store.update("machines", "machine-1", {"owner_rate_per_hour": Decimal("950")})

        result = await jobs.delete_job(job["id"])

        assert await total("machine_owners", "owner-1") == Decimal("0")
        assert await total("machines", "machine-1") == Decimal("0")
        [warning] = result["warnings"]
        assert warning["field"] == "owner_rate_per_hour"
        assert warning["stored"] == "800"
        assert warning["recomputed"] == "950"

    @pytest.mark.asyncio
    async def test_delete_unknown_job(self, jobs):
        with pytest.raises(NotFoundError):
            await jobs.delete_job("job-404")


class TestDeleteJobLegacy:
    @pytest.mark.asyncio
    async def test_unchanged_rate_without_discount_round_trips(
        self, legacy_jobs, job_input, total
    ):
        job = await legacy_jobs.create_job(job_input)
        await legacy_jobs.delete_job(job["id"])

        assert await total("machine_owners", "owner-1") == Decimal("0")
        assert await total("farmers", "farmer-1") == Decimal("0")

    @pytest.mark.asyncio
    async def test_rate_change_reverses_current_rate(self, store, legacy_jobs, job_input, total):
        first = await legacy_jobs.create_job(job_input)
        await legacy_jobs.create_job(job_input)
        await store.update("machines", "machine-1", {"owner_rate_per_hour": Decimal("950")})

        await legacy_jobs.delete_job(first["id"])

        # 8000 booked, 5 x 950 reversed
        assert await total("machine_owners", "owner-1") == Decimal("3250")
        warnings = await audit(store)
        assert any(
            w.entity == "owner" and w.field == "total_amount_pending" for w in warnings
        )

    @pytest.mark.asyncio
    async def test_farmer_side_reverses_gross_and_clamps(
        self, legacy_jobs, job_input, total
    ):
        job = await legacy_jobs.create_job({**job_input, "discount_to_farmer": "500"})
        assert await total("farmers", "farmer-1") == Decimal("4500")

        await legacy_jobs.delete_job(job["id"])

        assert await total("farmers", "farmer-1") == Decimal("0")


class TestConservation:
    @pytest.mark.asyncio
    async def test_owner_pending_matches_recomputation(self, store, jobs, job_input, total):
        payments = PaymentManager(store, notify_payments=False)
        j1 = await jobs.create_job(job_input)
        await jobs.create_job({**job_input, "hours": "3", "discount_from_owner": "100"})
        j3 = await jobs.create_job({**job_input, "hours": "2.5"})
        p1 = await payments.create_payment(
            {"type": "To Machine Owner", "machine_owner_id": "owner-1", "amount": "1500"}
        )
        await payments.create_payment(
            {"type": "To Machine Owner", "machine_owner_id": "owner-1", "amount": "700"}
        )
        await jobs.delete_job(j3["id"])
        await payments.delete_payment(p1["id"])
        await jobs.update_job(j1["id"], {"hours": "4"})

        # open jobs: 4 x 800 + (3 x 800 - 100); paid: 700
        expected = Decimal("3200") + Decimal("2300") - Decimal("700")
        assert abs(await total("machine_owners", "owner-1") - expected) <= Decimal("0.01")
        assert await audit(store) == []
