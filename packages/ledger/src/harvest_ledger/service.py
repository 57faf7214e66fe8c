"""Operation dispatcher exposing the ledger to an outer request layer.

``LedgerService.execute(operation, arguments)`` runs one named operation and
always returns a plain dict: ``{"success": True, "result": ...}`` or
``{"success": False, "error": {"kind": ..., "message": ...}}``.
"""

import inspect
from typing import Any

import structlog

from harvest_ledger.config import bind_operation
from harvest_ledger.dashboard import DashboardAggregator
from harvest_ledger.errors import LedgerError, StorageError, ValidationError
from harvest_ledger.expenses import ExpenseManager
from harvest_ledger.jobs import JobManager, ReversalMode
from harvest_ledger.models import present
from harvest_ledger.notifications import Notifier
from harvest_ledger.payments import PaymentManager
from harvest_ledger.reconcile import audit
from harvest_ledger.rentals import RentalManager
from harvest_ledger.store.base import LedgerStore

logger = structlog.get_logger(__name__)


class LedgerService:
    """Routes named operations to the lifecycle managers and the dashboard."""

    def __init__(
        self,
        store: LedgerStore,
        notifier: Notifier | None = None,
        reversal_mode: ReversalMode | None = None,
    ):
        self.store = store
        self.jobs = JobManager(store, reversal_mode=reversal_mode)
        self.payments = PaymentManager(store, notifier=notifier, reversal_mode=reversal_mode)
        self.rentals = RentalManager(store)
        self.expenses = ExpenseManager(store)
        self.dashboard = DashboardAggregator(store)
        self._handlers: dict[str, Any] = {
            # Harvesting jobs
            "createJob": self._create_job,
            "updateJob": self._update_job,
            "deleteJob": self._delete_job,
            # Payments
            "createPayment": self._create_payment,
            "updatePayment": self._update_payment,
            "deletePayment": self._delete_payment,
            "createRentalPayment": self._create_rental_payment,
            "deleteRentalPayment": self._delete_rental_payment,
            # Rentals
            "createRental": self._create_rental,
            "updateRental": self._update_rental,
            "completeRental": self._complete_rental,
            "deleteRental": self._delete_rental,
            # Expenses & advances
            "createExpense": self._create_expense,
            "updateExpense": self._update_expense,
            "deleteExpense": self._delete_expense,
            "createAdvance": self._create_advance,
            "updateAdvance": self._update_advance,
            "deleteAdvance": self._delete_advance,
            # Reports
            "getDashboard": self._get_dashboard,
            "getDealerBalances": self._get_dealer_balances,
            "auditRunningTotals": self._audit_running_totals,
        }

    @property
    def operations(self) -> list[str]:
        return sorted(self._handlers)

    async def execute(
        self, operation: str, arguments: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Execute an operation and return the structured result."""
        arguments = arguments or {}
        bind_operation(operation)

        try:
            handler = self._handlers.get(operation)
            if handler is None:
                raise ValidationError(f"Unknown operation: {operation}")
            try:
                inspect.signature(handler).bind(**arguments)
            except TypeError as e:
                raise ValidationError(f"Invalid arguments for {operation}: {e}") from None

            logger.info("executing_operation", args=sorted(arguments))
            result = await handler(**arguments)
            logger.info("operation_executed", success=True)
            return {"success": True, "result": present(result)}
        except LedgerError as e:
            logger.warning("operation_failed", kind=e.kind, error=e.message)
            return {"success": False, "error": e.to_dict()}
        except Exception as e:
            logger.exception("operation_error")
            return {"success": False, "error": StorageError(str(e)).to_dict()}

    # === Job Handlers ===

    async def _create_job(self, **data: Any) -> dict[str, Any]:
        return await self.jobs.create_job(data)

    async def _update_job(self, job_id: str, **patch: Any) -> dict[str, Any]:
        return await self.jobs.update_job(job_id, patch)

    async def _delete_job(self, job_id: str) -> dict[str, Any]:
        return await self.jobs.delete_job(job_id)

    # === Payment Handlers ===

    async def _create_payment(self, **data: Any) -> dict[str, Any]:
        return await self.payments.create_payment(data)

    async def _update_payment(self, payment_id: str, **patch: Any) -> dict[str, Any]:
        return await self.payments.update_payment(payment_id, patch)

    async def _delete_payment(self, payment_id: str) -> dict[str, Any]:
        return await self.payments.delete_payment(payment_id)

    async def _create_rental_payment(self, **data: Any) -> dict[str, Any]:
        return await self.payments.create_rental_payment(data)

    async def _delete_rental_payment(self, payment_id: str) -> dict[str, Any]:
        return await self.payments.delete_rental_payment(payment_id)

    # === Rental Handlers ===

    async def _create_rental(self, **data: Any) -> dict[str, Any]:
        return await self.rentals.create_rental(data)

    async def _update_rental(self, rental_id: str, **patch: Any) -> dict[str, Any]:
        return await self.rentals.update_rental(rental_id, patch)

    async def _complete_rental(
        self, rental_id: str, total_hours_used: Any = None, end_date: str | None = None
    ) -> dict[str, Any]:
        return await self.rentals.complete_rental(rental_id, total_hours_used, end_date)

    async def _delete_rental(self, rental_id: str) -> dict[str, Any]:
        return await self.rentals.delete_rental(rental_id)

    # === Expense & Advance Handlers ===

    async def _create_expense(self, **data: Any) -> dict[str, Any]:
        return await self.expenses.create_expense(data)

    async def _update_expense(self, expense_id: str, **patch: Any) -> dict[str, Any]:
        return await self.expenses.update_expense(expense_id, patch)

    async def _delete_expense(self, expense_id: str) -> dict[str, Any]:
        return await self.expenses.delete_expense(expense_id)

    async def _create_advance(self, **data: Any) -> dict[str, Any]:
        return await self.expenses.create_advance(data)

    async def _update_advance(self, advance_id: str, **patch: Any) -> dict[str, Any]:
        return await self.expenses.update_advance(advance_id, patch)

    async def _delete_advance(self, advance_id: str) -> dict[str, Any]:
        return await self.expenses.delete_advance(advance_id)

    # === Report Handlers ===

    async def _get_dashboard(
        self, machine_id: str | None = None, village: str | None = None
    ) -> dict[str, Any]:
        return await self.dashboard.get_dashboard(machine_id=machine_id, village=village)

    async def _get_dealer_balances(self) -> list[dict[str, Any]]:
        return await self.dashboard.get_dealer_balances()

    async def _audit_running_totals(self) -> list[dict[str, Any]]:
        return [w.to_dict() for w in await audit(self.store)]
