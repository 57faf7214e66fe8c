"""Pure money calculations for a single job or rental.

All amounts stay full-precision ``Decimal``; rounding to cents happens only
in ``money()`` at presentation time, so sums never compound rounding error.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from harvest_ledger.models import ZERO, HarvestingJob, Machine, MachineRental

CENT = Decimal("0.01")


def money(amount: Decimal, quantize: Decimal = CENT) -> Decimal:
    """Round an amount for presentation."""
    return amount.quantize(quantize, rounding=ROUND_HALF_UP)


def clamp(value: Decimal, low: Decimal, high: Decimal) -> Decimal:
    return max(low, min(value, high))


def owed(amount: Decimal) -> Decimal:
    """Floor a pending balance at zero for outward-facing reports."""
    return max(ZERO, amount)


def gross_farmer_amount(job: HarvestingJob) -> Decimal:
    """Farmer charge before discount; an explicit positive total wins over hours x rate."""
    if job.total_amount and job.total_amount > 0:
        return job.total_amount
    return job.hours * job.rate_per_hour


def net_farmer_amount(job: HarvestingJob) -> Decimal:
    gross = gross_farmer_amount(job)
    return gross - clamp(job.discount_to_farmer, ZERO, gross)


def owner_rate_for(job: HarvestingJob, machine: Machine | None) -> Decimal:
    """Rate the owner is paid for this job: the frozen rate, else the machine's current one."""
    if job.owner_rate_per_hour is not None:
        return job.owner_rate_per_hour
    if machine is None:
        return ZERO
    return machine.owner_rate_per_hour


def gross_owner_amount(job: HarvestingJob, machine: Machine | None) -> Decimal:
    return job.hours * owner_rate_for(job, machine)


def net_owner_amount(job: HarvestingJob, machine: Machine | None) -> Decimal:
    gross = gross_owner_amount(job, machine)
    return gross - clamp(job.discount_from_owner, ZERO, gross)


def rental_profit(rental: MachineRental) -> Decimal:
    """Margin on a rental; the stored ``profit_margin`` cache is ignored."""
    return rental.total_amount_charged - rental.total_cost_to_owner


def rental_charge(rental: MachineRental) -> Decimal:
    return rental.total_hours_used * rental.hourly_rate_to_dealer


def rental_owner_cost(rental: MachineRental) -> Decimal:
    return rental.total_hours_used * rental.hourly_cost_from_owner
