import logging
import re
from typing import Any, Dict, List, Optional, Union

import httpx

from .errors import StoreError

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

# PostgREST answers this code when a single row was requested but zero or
# several rows matched.
NOT_SINGLE = "PGRST116"


def _compact(columns: str) -> str:
    # Drop whitespace outside quoted identifiers so multi-line selects
    # with embedded resources can be written readably.
    return re.sub(r'\s+(?=(?:[^"]*"[^"]*")*[^"]*$)', "", columns)


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class Query:
    """Builder for one request against a single table.

    Calls chain the way the JavaScript client reads::

        await store.table("books").select("id").eq("title", t).maybe_single()
    """

    def __init__(self, store: "Store", table: str):
        self.store = store
        self.table = table
        self._method = "GET"
        self._columns: Optional[str] = None
        self._body: Optional[Union[Row, List[Row]]] = None
        self._filters: List[tuple] = []
        self._order: Optional[str] = None
        self._limit: Optional[int] = None

    def select(self, columns: str = "*") -> "Query":
        self._columns = _compact(columns)
        return self

    def insert(self, rows: Union[Row, List[Row]]) -> "Query":
        self._method = "POST"
        self._body = rows if isinstance(rows, list) else [rows]
        if self._columns is None:
            self._columns = "*"
        return self

    def update(self, values: Row) -> "Query":
        self._method = "PATCH"
        self._body = values
        return self

    def delete(self) -> "Query":
        self._method = "DELETE"
        return self

    def eq(self, column: str, value: Any) -> "Query":
        if value is None:
            self._filters.append((column, "is.null"))
        else:
            self._filters.append((column, f"eq.{_format_value(value)}"))
        return self

    def order(self, column: str, desc: bool = False) -> "Query":
        self._order = f"{column}.{'desc' if desc else 'asc'}"
        return self

    def limit(self, count: int) -> "Query":
        self._limit = count
        return self

    def _params(self) -> List[tuple]:
        params = []
        if self._columns is not None:
            params.append(("select", self._columns))
        elif self._method == "GET":
            params.append(("select", "*"))
        params.extend(self._filters)
        if self._order:
            params.append(("order", self._order))
        if self._limit is not None:
            params.append(("limit", str(self._limit)))
        return params

    def _headers(self) -> Dict[str, str]:
        if self._method == "GET":
            return {}
        returning = "representation" if self._columns is not None else "minimal"
        return {"Prefer": f"return={returning}"}

    async def execute(self) -> List[Row]:
        data = await self.store.request(
            self._method,
            self.table,
            params=self._params(),
            json=self._body,
            headers=self._headers(),
        )
        if data is None:
            return []
        return data if isinstance(data, list) else [data]

    async def single(self) -> Row:
        rows = await self.execute()
        if len(rows) != 1:
            raise StoreError(
                f"Expected exactly one row from {self.table}, got {len(rows)}",
                code=NOT_SINGLE,
            )
        return rows[0]

    async def maybe_single(self) -> Optional[Row]:
        rows = await self.execute()
        if len(rows) > 1:
            raise StoreError(
                f"Expected at most one row from {self.table}, got {len(rows)}",
                code=NOT_SINGLE,
            )
        return rows[0] if rows else None


class Store:
    """Table API of the hosted backend (PostgREST under ``/rest/v1``)."""

    def __init__(
        self,
        url: str,
        api_key: str,
        access_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rest_url = f"{url.rstrip('/')}/rest/v1"
        self.api_key = api_key
        self.headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {access_token or api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": "shelfkeeper/0.1",
        }
        self._client = httpx.AsyncClient(
            base_url=self.rest_url, headers=self.headers, transport=transport
        )

    def set_access_token(self, access_token: Optional[str]):
        self._client.headers["Authorization"] = f"Bearer {access_token or self.api_key}"

    def table(self, name: str) -> Query:
        return Query(self, name)

    async def request(
        self,
        method: str,
        table: str,
        params: Optional[List[tuple]] = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        logger.debug("%s %s %s", method, table, params)
        try:
            resp = await self._client.request(
                method, f"/{table}", params=params, json=json, headers=headers
            )
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {table} failed: {e}") from e

        if resp.status_code >= 400:
            raise self._error_from(resp)
        if not resp.content:
            return None
        return resp.json()

    @staticmethod
    def _error_from(resp: httpx.Response) -> StoreError:
        try:
            payload = resp.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            return StoreError(
                resp.text or resp.reason_phrase or "Request failed",
                status_code=resp.status_code,
            )
        return StoreError(
            payload.get("message") or resp.reason_phrase or "Request failed",
            status_code=resp.status_code,
            code=payload.get("code"),
            details=payload.get("details"),
            hint=payload.get("hint"),
        )

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self) -> "Store":
        return self

    async def __aexit__(self, *exc):
        await self.aclose()
