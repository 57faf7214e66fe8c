"""PostgREST (Supabase) store client with API-key auth and transport retries."""

import asyncio
from collections.abc import AsyncIterator
from collections.abc import Collection as AbstractSet
from contextlib import asynccontextmanager
from decimal import Decimal
from enum import Enum
from typing import Any

import httpx
import structlog

from harvest_ledger.config import get_settings
from harvest_ledger.errors import NotFoundError, StorageError

logger = structlog.get_logger(__name__)

Record = dict[str, Any]

# raised before the request reached the server; the only ones writes retry
UNSENT_ERRORS = (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)


def _encode(value: Any) -> Any:
    """Make a record JSON-safe; money travels as decimal strings."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _encode(v) for k, v in value.items()}
    if isinstance(value, list | tuple | set | frozenset):
        return [_encode(v) for v in value]
    return value


def _filter_value(value: Any) -> str:
    encoded = _encode(value)
    if isinstance(encoded, list):
        return "in.(" + ",".join(str(v) for v in encoded) + ")"
    if encoded is None:
        return "is.null"
    return f"eq.{encoded}"


class RestStore:
    """Async client for a PostgREST endpoint.

    Multi-statement transactions are not available over PostgREST, so
    ``transaction()`` groups nothing and callers fall back to ordered writes.
    ``increment`` calls the ``increment_balances`` database function so the
    arithmetic happens server-side in one statement.
    """

    supports_transactions = False
    INCREMENT_RPC = "/rpc/increment_balances"

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.store_url).rstrip("/")
        self._api_key = api_key or settings.store_api_key.get_secret_value()
        self._timeout = timeout or settings.store_timeout
        self._max_retries = settings.store_max_retries if max_retries is None else max_retries
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "RestStore":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _get_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }
        if self._api_key:
            headers["apikey"] = self._api_key
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    # === Generic Request Method ===

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        retry_count: int = 0,
    ) -> Any:
        """Make a request, retrying transport failures with exponential backoff.

        Reads retry on any transport error; writes only when the request was
        never sent.
        """
        client = await self._get_client()

        try:
            response = await client.request(
                method=method,
                url=path,
                params=params,
                json=_encode(json) if json is not None else None,
                headers=self._get_headers(),
            )
        except httpx.RequestError as e:
            retryable = method == "GET" or isinstance(e, UNSENT_ERRORS)
            if retryable and retry_count < self._max_retries:
                await asyncio.sleep(2**retry_count)
                return await self._request(method, path, params, json, retry_count + 1)
            raise StorageError(f"Request failed: {e}") from e

        if response.status_code >= 400:
            try:
                error_detail = response.json() if response.content else {}
            except ValueError:
                error_detail = {"raw": response.text[:500] if response.text else "empty response"}
            logger.warning(
                "store_request_failed",
                method=method,
                path=path,
                status_code=response.status_code,
            )
            raise StorageError(
                f"Store error: {response.status_code}",
                status_code=response.status_code,
                details=error_detail,
            )

        return response.json() if response.content else None

    @staticmethod
    def _query(
        filters: dict[str, Any] | None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"select": "*"}
        for key, value in (filters or {}).items():
            params[key] = _filter_value(value)
        if order_by:
            params["order"] = f"{order_by}.{'desc' if descending else 'asc'}"
        if limit is not None:
            params["limit"] = limit
        return params

    @staticmethod
    def _single(result: Any, collection: str, record_id: Any) -> Record:
        if isinstance(result, list):
            if not result:
                raise NotFoundError(collection, record_id)
            result = result[0]
        if not isinstance(result, dict):
            raise StorageError(f"Invalid response format from {collection}")
        return result

    # === LedgerStore ===

    async def find(
        self,
        collection: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Record]:
        result = await self._request(
            "GET", f"/{collection}", params=self._query(filters, order_by, descending, limit)
        )
        return result if isinstance(result, list) else []

    async def find_one(self, collection: str, filters: dict[str, Any]) -> Record | None:
        rows = await self.find(collection, filters, limit=1)
        return rows[0] if rows else None

    async def insert(self, collection: str, record: Record) -> Record:
        result = await self._request("POST", f"/{collection}", json=record)
        return self._single(result, collection, None)

    async def update(self, collection: str, record_id: str, patch: Record) -> Record:
        result = await self._request(
            "PATCH", f"/{collection}", params={"id": f"eq.{record_id}"}, json=patch
        )
        return self._single(result, collection, record_id)

    async def delete(self, collection: str, record_id: str) -> None:
        result = await self._request(
            "DELETE", f"/{collection}", params={"id": f"eq.{record_id}"}
        )
        if isinstance(result, list) and not result:
            raise NotFoundError(collection, record_id)

    async def increment(
        self,
        collection: str,
        record_id: str,
        deltas: dict[str, Decimal],
        floor_zero: AbstractSet[str] = (),
    ) -> Record:
        result = await self._request(
            "POST",
            self.INCREMENT_RPC,
            json={
                "p_table": collection,
                "p_id": record_id,
                "p_deltas": deltas,
                "p_floor_zero": sorted(floor_zero),
            },
        )
        return self._single(result, collection, record_id)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        yield
