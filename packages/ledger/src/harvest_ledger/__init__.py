"""Harvest Ledger - financial reconciliation engine for a farm-machinery business."""

__version__ = "0.1.0"

from harvest_ledger.balances import Balance, BalanceSheet, Snapshot, SnapshotFilter, accumulate
from harvest_ledger.config import configure_logging, get_settings
from harvest_ledger.dashboard import DashboardAggregator
from harvest_ledger.errors import (
    ConsistencyWarning,
    LedgerError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from harvest_ledger.expenses import ExpenseManager
from harvest_ledger.jobs import JobManager
from harvest_ledger.notifications import Channel, LogNotifier, NotificationResult, Notifier
from harvest_ledger.payments import PaymentManager
from harvest_ledger.reconcile import audit_running_totals
from harvest_ledger.rentals import RentalManager
from harvest_ledger.service import LedgerService
from harvest_ledger.store import LedgerStore, MemoryStore, RestStore, get_store

__all__ = [
    # Version
    "__version__",
    # Service & managers
    "LedgerService",
    "JobManager",
    "PaymentManager",
    "RentalManager",
    "ExpenseManager",
    "DashboardAggregator",
    # Balances
    "Balance",
    "BalanceSheet",
    "Snapshot",
    "SnapshotFilter",
    "accumulate",
    "audit_running_totals",
    # Storage
    "LedgerStore",
    "MemoryStore",
    "RestStore",
    "get_store",
    # Notifications
    "Channel",
    "Notifier",
    "LogNotifier",
    "NotificationResult",
    # Errors
    "LedgerError",
    "ValidationError",
    "NotFoundError",
    "StorageError",
    "ConsistencyWarning",
    # Config
    "get_settings",
    "configure_logging",
]
