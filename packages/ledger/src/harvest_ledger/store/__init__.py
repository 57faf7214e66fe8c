"""Storage collaborators for the harvest ledger."""

from harvest_ledger.store.base import LedgerStore, get_store, require
from harvest_ledger.store.memory import MemoryStore
from harvest_ledger.store.rest import RestStore

__all__ = ["LedgerStore", "MemoryStore", "RestStore", "get_store", "require"]
