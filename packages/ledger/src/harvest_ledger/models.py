"""Record types for owners, machines, customers and their transactions.

Records come back from the store as plain dicts; ``from_record`` parses them
into typed dataclasses with ``Decimal`` money and ``to_record`` produces the
dict written back. Missing numeric fields parse as zero.
"""

from dataclasses import asdict, dataclass, fields
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Self

from harvest_ledger.errors import ValidationError

ZERO = Decimal("0")


class Collection(str, Enum):
    """Store collections (tables) used by the engine."""

    OWNERS = "machine_owners"
    MACHINES = "machines"
    FARMERS = "farmers"
    DEALERS = "dealers"
    JOBS = "harvesting_jobs"
    RENTALS = "machine_rentals"
    PAYMENTS = "payments"
    RENTAL_PAYMENTS = "rental_payments"
    EXPENSES = "daily_expenses"
    ADVANCES = "daily_advances"


class PaymentType(str, Enum):
    TO_OWNER = "To Machine Owner"
    FROM_FARMER = "From Farmer"


class BusinessSource(str, Enum):
    HARVESTING = "harvesting"
    RENTAL = "rental"


class PaymentStatus(str, Enum):
    COMPLETED = "Completed"
    PENDING = "Pending"


class RentalStatus(str, Enum):
    ACTIVE = "Active"
    COMPLETED = "Completed"


def to_decimal(value: Any) -> Decimal:
    """Parse a stored numeric value; None and blanks are zero."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Not a numeric amount: {value!r}") from e


class Record:
    """Mixin converting between store dicts and dataclass records."""

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> Self:
        kwargs: dict[str, Any] = {}
        for f in fields(cls):  # type: ignore[arg-type]
            if f.name not in data:
                continue
            value = data[f.name]
            if f.type is Decimal:
                value = to_decimal(value)
            elif f.type == Decimal | None:
                value = None if value is None else to_decimal(value)
            elif isinstance(f.type, type) and issubclass(f.type, Enum):
                value = f.type(value)
            kwargs[f.name] = value
        return cls(**kwargs)

    def to_record(self) -> dict[str, Any]:
        data = asdict(self)  # type: ignore[call-overload]
        # identity and creation time are assigned by the store
        for key in ("id", "created_at"):
            if data.get(key) is None:
                data.pop(key, None)
        return data


@dataclass
class Owner(Record):
    id: str | None = None
    name: str = ""
    phone: str | None = None
    owner_rate_per_hour: Decimal = ZERO
    total_amount_pending: Decimal = ZERO
    total_amount_paid: Decimal = ZERO
    total_advances_given: Decimal = ZERO


@dataclass
class Machine(Record):
    """A machine under contract; rates here may diverge from the owner's nominal rate."""

    id: str | None = None
    machine_owner_id: str | None = None
    name: str = ""
    rate_per_hour: Decimal = ZERO
    owner_rate_per_hour: Decimal = ZERO
    total_amount_pending: Decimal = ZERO
    total_advances_given: Decimal = ZERO


@dataclass
class Farmer(Record):
    id: str | None = None
    name: str = ""
    phone: str | None = None
    village: str | None = None
    total_amount_pending: Decimal = ZERO
    total_amount_paid: Decimal = ZERO


@dataclass
class Dealer(Record):
    id: str | None = None
    name: str = ""
    phone: str | None = None
    village_name: str | None = None
    total_amount_pending: Decimal = ZERO
    total_amount_paid: Decimal = ZERO


@dataclass
class HarvestingJob(Record):
    """A harvesting job booked for a farmer on one machine.

    ``owner_rate_per_hour``, ``net_owner_amount`` and ``net_amount_from_farmer``
    are frozen at creation; they are what a delete reverses.
    """

    id: str | None = None
    farmer_id: str | None = None
    machine_id: str | None = None
    hours: Decimal = ZERO
    rate_per_hour: Decimal = ZERO
    total_amount: Decimal = ZERO
    advance_from_farmer: Decimal = ZERO
    discount_to_farmer: Decimal = ZERO
    discount_from_owner: Decimal = ZERO
    owner_rate_per_hour: Decimal | None = None
    net_amount_from_farmer: Decimal = ZERO
    net_owner_amount: Decimal = ZERO
    scheduled_date: str | None = None
    status: str = "Completed"
    notes: str | None = None
    created_at: str | None = None


@dataclass
class MachineRental(Record):
    id: str | None = None
    dealer_id: str | None = None
    machine_id: str | None = None
    total_hours_used: Decimal = ZERO
    hourly_rate_to_dealer: Decimal = ZERO
    hourly_cost_from_owner: Decimal = ZERO
    total_amount_charged: Decimal = ZERO
    total_cost_to_owner: Decimal = ZERO
    # cache of total_amount_charged - total_cost_to_owner, never trusted
    profit_margin: Decimal = ZERO
    advance_paid: Decimal = ZERO
    status: RentalStatus = RentalStatus.ACTIVE
    start_date: str | None = None
    end_date: str | None = None
    created_at: str | None = None


@dataclass
class Payment(Record):
    """Money moving to an owner or from a farmer; ``amount`` is the net."""

    id: str | None = None
    type: PaymentType = PaymentType.FROM_FARMER
    business_source: BusinessSource = BusinessSource.HARVESTING
    gross_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    amount: Decimal = ZERO
    status: PaymentStatus = PaymentStatus.COMPLETED
    machine_owner_id: str | None = None
    farmer_id: str | None = None
    job_id: str | None = None
    machine_id: str | None = None
    payment_date: str | None = None
    notes: str | None = None
    created_at: str | None = None

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED


@dataclass
class RentalPayment(Record):
    id: str | None = None
    rental_id: str | None = None
    dealer_id: str | None = None
    amount: Decimal = ZERO
    status: PaymentStatus = PaymentStatus.COMPLETED
    payment_date: str | None = None
    created_at: str | None = None


@dataclass
class DailyExpense(Record):
    """Money spent on behalf of a machine's owner; counts as paid to that owner."""

    id: str | None = None
    machine_id: str | None = None
    amount: Decimal = ZERO
    expense_date: str | None = None
    notes: str | None = None
    created_at: str | None = None


@dataclass
class DailyAdvance(Record):
    id: str | None = None
    machine_id: str | None = None
    amount: Decimal = ZERO
    advance_date: str | None = None
    paid_by: str = "Owner"
    notes: str | None = None
    created_at: str | None = None


def today_iso() -> str:
    return date.today().isoformat()


def sort_key_created(record: dict[str, Any]) -> str:
    """Sort key for records by creation time; records without one sort first."""
    value = record.get("created_at")
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value or "")


def parse_amount(data: dict[str, Any], key: str, default: Decimal = ZERO) -> Decimal:
    """Read a non-negative amount from operation input."""
    raw = data.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = to_decimal(raw)
    except ValueError:
        raise ValidationError(f"{key} must be a number, got {raw!r}") from None
    if not value.is_finite():
        raise ValidationError(f"{key} must be a finite number")
    if value < 0:
        raise ValidationError(f"{key} must not be negative")
    return value


def present(value: Any) -> Any:
    """Render records for callers: money rounded to cents as strings, enums as values."""
    if isinstance(value, Decimal):
        return str(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: present(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [present(v) for v in value]
    return value
