"""Error taxonomy for ledger operations.

Every error a caller can observe is a ``LedgerError`` with a stable ``kind``
so that an outer layer can render it as ``{"kind": ..., "message": ...}``.
``ConsistencyWarning`` is never raised by the engine; it is logged and
attached to reports.
"""

from decimal import Decimal
from typing import Any


class LedgerError(Exception):
    """Base exception for ledger operations."""

    kind = "LedgerError"

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the structured error contract."""
        data: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data


class ValidationError(LedgerError):
    """Input rejected before any write (bad discount bounds, negative hours, ...)."""

    kind = "ValidationError"


class NotFoundError(LedgerError):
    """A referenced job, owner, farmer, dealer, machine or payment is absent."""

    kind = "NotFoundError"

    def __init__(self, collection: str, record_id: Any):
        super().__init__(f"{collection} record {record_id} not found")
        self.collection = collection
        self.record_id = record_id


class StorageError(LedgerError):
    """Backing store unreachable or rejected a read/write."""

    kind = "StorageError"

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message, details=details)
        self.status_code = status_code


class ConsistencyWarning(UserWarning):
    """A stored cached total disagrees with its recomputed value."""

    kind = "ConsistencyWarning"

    def __init__(
        self,
        entity: str,
        entity_id: Any,
        field: str,
        stored: Decimal,
        recomputed: Decimal,
    ):
        self.entity = entity
        self.entity_id = entity_id
        self.field = field
        self.stored = stored
        self.recomputed = recomputed
        super().__init__(self.message)

    @property
    def message(self) -> str:
        return (
            f"{self.entity} {self.entity_id} {self.field}: stored {self.stored} "
            f"differs from recomputed {self.recomputed}"
        )

    @property
    def difference(self) -> Decimal:
        return self.stored - self.recomputed

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "entity": self.entity,
            "entity_id": str(self.entity_id),
            "field": self.field,
            "stored": str(self.stored),
            "recomputed": str(self.recomputed),
        }
