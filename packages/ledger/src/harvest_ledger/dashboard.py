"""Read-only summary report over harvesting and dealer-rental business.

Every figure is recomputed from raw records on each call; stored running
totals are only compared, never used. Filters narrow the snapshot before any
sum is taken. Money is rounded to cents once, when the report is rendered.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import structlog

from harvest_ledger.balances import (
    BalanceSheet,
    Snapshot,
    SnapshotFilter,
    accumulate,
    classify_jobs,
    load_snapshot,
)
from harvest_ledger.config import get_settings
from harvest_ledger.ledger import (
    gross_farmer_amount,
    gross_owner_amount,
    net_owner_amount,
    rental_profit,
)
from harvest_ledger.models import ZERO, RentalStatus, present, sort_key_created
from harvest_ledger.reconcile import audit_running_totals
from harvest_ledger.store.base import LedgerStore

logger = structlog.get_logger(__name__)


def _total(values: Any) -> Decimal:
    return sum(values, ZERO)


def _recent(records: list[Any], limit: int) -> list[dict[str, Any]]:
    rows = [r.to_record() for r in records]
    rows.sort(key=sort_key_created, reverse=True)
    return rows[:limit]


class DashboardAggregator:
    """Builds the dashboard report and the dealer balance list."""

    def __init__(self, store: LedgerStore, recent_limit: int | None = None):
        self._store = store
        self._recent_limit = get_settings().recent_limit if recent_limit is None else recent_limit
        self._logger = logger.bind(component="dashboard")

    async def get_dashboard(
        self, machine_id: str | None = None, village: str | None = None
    ) -> dict[str, Any]:
        criteria = SnapshotFilter(machine_id=machine_id or None, village=village or None)
        snapshot = await load_snapshot(self._store)
        report = build_report(snapshot, criteria, self._recent_limit)
        self._logger.info(
            "dashboard_built",
            machine_id=criteria.machine_id,
            village=criteria.village,
            jobs=report["counts"]["totalJobs"],
            warnings=len(report["warnings"]),
        )
        return report

    async def get_dealer_balances(self) -> list[dict[str, Any]]:
        """Dealers with owed/paid/pending derived from rentals and rental payments."""
        snapshot = await load_snapshot(self._store)
        sheet = accumulate(snapshot)
        result = []
        for dealer in sorted(snapshot.dealers, key=lambda d: d.name):
            balance = sheet.dealers.get(dealer.id)
            owed = balance.owed if balance else ZERO
            paid = balance.paid if balance else ZERO
            result.append(
                present(
                    {
                        **dealer.to_record(),
                        "total_amount_charged": owed,
                        "total_amount_paid": paid,
                        "balance_amount": owed - paid,
                    }
                )
            )
        return result


def build_report(
    snapshot: Snapshot, criteria: SnapshotFilter | None = None, recent_limit: int = 5
) -> dict[str, Any]:
    """Compose the report from a snapshot; missing sums are zero."""
    view = snapshot.filtered(criteria)
    sheet = accumulate(view)
    machines = view.machines_by_id
    completion = classify_jobs(view)

    revenue = _total(gross_farmer_amount(j) for j in view.jobs)
    owner_revenue = _total(gross_owner_amount(j, machines.get(j.machine_id)) for j in view.jobs)
    to_pay_owners = _total(net_owner_amount(j, machines.get(j.machine_id)) for j in view.jobs)
    hours = _total(j.hours for j in view.jobs)
    harvest_profit = revenue - to_pay_owners
    pending_from_farmers = BalanceSheet.total_pending(sheet.farmers.values())
    pending_to_owners = BalanceSheet.total_pending(sheet.owners.values())

    rental_revenue = _total(r.total_amount_charged for r in view.rentals)
    rental_hours = _total(r.total_hours_used for r in view.rentals)
    rental_profit_total = _total(rental_profit(r) for r in view.rentals)
    pending_from_dealers = BalanceSheet.total_pending(sheet.dealers.values())
    rental_pending_to_owners = BalanceSheet.total_pending(sheet.owner_rentals.values())

    completed_jobs = sum(1 for done in completion.values() if done)
    unfiltered = criteria is None or criteria.is_empty

    return {
        "counts": {
            "totalMachineOwners": len(snapshot.owners),
            "totalMachines": len(view.machines),
            "totalFarmers": len(snapshot.farmers),
            "totalDealers": len(snapshot.dealers),
            "totalJobs": len(view.jobs),
            "completedJobs": completed_jobs,
            "pendingJobs": len(completion) - completed_jobs,
            "totalRentals": len(view.rentals),
            "activeRentals": sum(1 for r in view.rentals if r.status == RentalStatus.ACTIVE),
        },
        "harvesting": present(
            {
                "totalRevenue": revenue,
                "ownerRevenue": owner_revenue,
                "totalHours": hours,
                "totalPaidToOwners": BalanceSheet.total(sheet.owners.values()).paid,
                "totalToPayToOwners": to_pay_owners,
                "pendingToOwners": pending_to_owners,
                "pendingFromFarmers": pending_from_farmers,
                "discountAmountToFarmers": _total(j.discount_to_farmer for j in view.jobs),
                "discountFromOwners": _total(j.discount_from_owner for j in view.jobs),
                "expenses": _total(e.amount for e in view.expenses),
                "profit": harvest_profit,
            }
        ),
        "dealerRentals": present(
            {
                "totalRevenue": rental_revenue,
                "totalHours": rental_hours,
                "totalOwnerCost": _total(r.total_cost_to_owner for r in view.rentals),
                "totalProfit": rental_profit_total,
                "totalPaidByDealers": BalanceSheet.total(sheet.dealers.values()).paid,
                "pendingFromDealers": pending_from_dealers,
                "totalPaidToOwners": BalanceSheet.total(sheet.owner_rentals.values()).paid,
                "pendingToOwners": rental_pending_to_owners,
            }
        ),
        "combined": present(
            {
                "totalRevenue": revenue + rental_revenue,
                "totalHours": hours + rental_hours,
                "totalProfit": harvest_profit + rental_profit_total,
                "pendingFromCustomers": pending_from_farmers + pending_from_dealers,
                "pendingToOwners": pending_to_owners + rental_pending_to_owners,
            }
        ),
        "recentJobs": present(_recent(view.jobs, recent_limit)),
        "recentPayments": present(_recent(view.payments, recent_limit)),
        # stored totals cover the whole dataset, so they are only audited unfiltered
        "warnings": [w.to_dict() for w in audit_running_totals(snapshot)] if unfiltered else [],
    }
