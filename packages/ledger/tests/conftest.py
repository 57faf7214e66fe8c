"""Pytest configuration and fixtures."""

import os
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("LEDGER_STORE_URL", "http://localhost:54321/rest/v1")
os.environ.setdefault("LEDGER_STORE_API_KEY", "test-service-key")
os.environ.setdefault("LEDGER_JOB_REVERSAL_MODE", "exact")
os.environ.setdefault("LEDGER_NOTIFY_PAYMENTS", "false")

from harvest_ledger.models import to_decimal  # noqa: E402
from harvest_ledger.store.memory import MemoryStore  # noqa: E402


def seed_records() -> dict[str, list[dict]]:
    """Two owners with one machine each, farmers and dealers in two villages."""
    return {
        "machine_owners": [
            {"id": "owner-1", "name": "Ravi Kumar", "phone": "9000000001",
             "owner_rate_per_hour": Decimal("800")},
            {"id": "owner-2", "name": "Suresh Patil", "phone": "9000000002",
             "owner_rate_per_hour": Decimal("900")},
        ],
        "machines": [
            {"id": "machine-1", "machine_owner_id": "owner-1", "name": "Harvester A",
             "rate_per_hour": Decimal("1000"), "owner_rate_per_hour": Decimal("800")},
            {"id": "machine-2", "machine_owner_id": "owner-2", "name": "Harvester B",
             "rate_per_hour": Decimal("1200"), "owner_rate_per_hour": Decimal("900")},
        ],
        "farmers": [
            {"id": "farmer-1", "name": "Anil", "phone": "9111111111", "village": "Rampur"},
            {"id": "farmer-2", "name": "Bhola", "phone": None, "village": "Sonpur"},
        ],
        "dealers": [
            {"id": "dealer-1", "name": "Agro Traders", "village_name": "Rampur"},
            {"id": "dealer-2", "name": "Kisan Rentals", "village_name": "Sonpur"},
        ],
    }


@pytest.fixture
def store():
    """Memory store seeded with owners, machines, farmers and dealers."""
    return MemoryStore(seed_records())


@pytest.fixture
def empty_store():
    return MemoryStore()


@pytest.fixture
def total(store):
    """Read one running-total field as a Decimal (missing means zero)."""

    async def fetch(collection: str, record_id: str, field: str = "total_amount_pending"):
        record = await store.find_one(collection, {"id": record_id})
        return to_decimal(record.get(field))

    return fetch


@pytest.fixture
def mock_httpx_client():
    """Create a mock httpx AsyncClient."""
    client = AsyncMock()
    client.request = AsyncMock()
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def job_input():
    """5 hours at 1000/h on machine-1 (owner rate 800) for farmer-1."""
    return {
        "farmer_id": "farmer-1",
        "machine_id": "machine-1",
        "hours": "5",
        "rate_per_hour": "1000",
        "scheduled_date": "2024-10-01",
    }
