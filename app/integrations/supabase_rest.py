"""Supabase platform integration — PostgREST tables, auth admin, edge functions.

Docs: https://postgrest.org/en/stable/references/api/tables_views.html
"""

import json
import logging
import time
from typing import Any

import httpx

from app.config import ConfigurationError, settings

logger = logging.getLogger(__name__)

_UNSET: Any = object()

# Characters that force a PostgREST value to be double-quoted inside in.() / or=()
_RESERVED = set(',.:()"')


class BackendError(Exception):
    """The hosted backend rejected the request or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class BackendTimeoutError(BackendError):
    """The request exceeded the configured timeout and was aborted."""


def format_value(value: Any) -> str:
    """Render a Python value the way PostgREST expects it in a filter."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def quote_value(value: Any) -> str:
    """Quote a value for use inside a list or logic tree."""
    text = format_value(value)
    if any(ch in _RESERVED for ch in text) or text != text.strip():
        return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'
    return text


def condition(column: str, op: str, value: Any) -> str:
    """Build one `column.op.value` term for an or=(...) group."""
    if op == "in":
        return f"{column}.in.({','.join(quote_value(v) for v in value)})"
    return f"{column}.{op}.{quote_value(value)}"


class TableQuery:
    """Chainable PostgREST read query for a single table."""

    def __init__(self, client: "SupabaseClient", table: str):
        self.client = client
        self.table = table
        self.columns = "*"
        self.want_count = False
        self.filters: list[tuple[str, str]] = []
        self.ordering: list[str] = []
        self.offset: int | None = None
        self.limit: int | None = None

    # ── projection ──

    def select(self, columns: str = "*", count: bool = False) -> "TableQuery":
        # Multi-line projections (embedded resources) are compacted
        self.columns = "".join(columns.split()) or "*"
        self.want_count = count
        return self

    # ── predicates ──

    def _add(self, column: str, op: str, value: str) -> "TableQuery":
        self.filters.append((column, f"{op}.{value}"))
        return self

    def eq(self, column: str, value: Any) -> "TableQuery":
        return self._add(column, "eq", format_value(value))

    def neq(self, column: str, value: Any) -> "TableQuery":
        return self._add(column, "neq", format_value(value))

    def gte(self, column: str, value: Any) -> "TableQuery":
        return self._add(column, "gte", format_value(value))

    def lte(self, column: str, value: Any) -> "TableQuery":
        return self._add(column, "lte", format_value(value))

    def like(self, column: str, pattern: str) -> "TableQuery":
        return self._add(column, "like", pattern)

    def ilike(self, column: str, pattern: str) -> "TableQuery":
        return self._add(column, "ilike", pattern)

    def contains(self, column: str, value: Any) -> "TableQuery":
        if isinstance(value, str):
            return self._add(column, "cs", value)
        return self._add(column, "cs", format_value(value))

    def in_(self, column: str, values: list[Any]) -> "TableQuery":
        return self._add(column, "in", "(" + ",".join(quote_value(v) for v in values) + ")")

    def or_(self, conditions: list[str]) -> "TableQuery":
        self.filters.append(("or", "(" + ",".join(conditions) + ")"))
        return self

    # ── ordering / pagination ──

    def order(self, column: str, ascending: bool = False) -> "TableQuery":
        self.ordering.append(f"{column}.{'asc' if ascending else 'desc'}")
        return self

    def range(self, start: int, end: int) -> "TableQuery":
        """Inclusive row range, as in `range(0, 9)` for the first ten rows."""
        self.offset = max(start, 0)
        self.limit = max(end - start + 1, 0)
        return self

    def build_params(self) -> list[tuple[str, str]]:
        params = [("select", self.columns)]
        params.extend(self.filters)
        if self.ordering:
            params.append(("order", ",".join(self.ordering)))
        if self.limit is not None:
            params.append(("offset", str(self.offset or 0)))
            params.append(("limit", str(self.limit)))
        return params

    async def execute(self) -> dict[str, Any]:
        """Run the query. Returns {"data": [...], "count": int | None}."""
        return await self.client.fetch(self)


class SupabaseClient:
    """Async client for the hosted platform's REST, auth and functions APIs."""

    def __init__(
        self,
        url: str | None = None,
        key: str | None = None,
        timeout: float | None = _UNSET,
    ):
        self.base_url = (url or settings.supabase_url).rstrip("/")
        self._key = key or settings.service_key
        if not self.base_url or not self._key:
            raise ConfigurationError("Supabase URL and API key must be configured")
        self.timeout = settings.request_timeout if timeout is _UNSET else timeout

    def table(self, name: str) -> TableQuery:
        return TableQuery(self, name)

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._key,
            "Authorization": f"Bearer {self._key}",
            "X-Client-Info": "taskora-backend",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: list[tuple[str, str]] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        url = f"{self.base_url}{path}"
        start = time.monotonic()
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.request(
                    method, url, params=params, json=json_body, headers=self._headers(headers),
                )
        except httpx.TimeoutException as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            logger.warning("Supabase timeout | %s %s | %dms", method, path, elapsed_ms)
            raise BackendTimeoutError(f"Request timed out after {elapsed_ms}ms") from e
        except httpx.HTTPError as e:
            logger.error("Supabase transport error | %s %s | %s", method, path, str(e)[:200])
            raise BackendError(str(e) or type(e).__name__) from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        if resp.status_code >= 400:
            message = _error_message(resp)
            logger.warning(
                "Supabase error | %s %s | status=%d | %dms | %s",
                method, path, resp.status_code, elapsed_ms, message[:200],
            )
            raise BackendError(message, status_code=resp.status_code)

        logger.debug("Supabase OK | %s %s | status=%d | %dms", method, path, resp.status_code, elapsed_ms)
        return resp

    async def fetch(self, query: TableQuery) -> dict[str, Any]:
        extra = {"Prefer": "count=exact"} if query.want_count else None
        resp = await self._request(
            "GET", f"/rest/v1/{query.table}", params=query.build_params(), headers=extra,
        )
        data = resp.json() if resp.content else []
        count = _parse_count(resp.headers.get("content-range", "")) if query.want_count else None
        return {"data": data or [], "count": count}

    async def insert(self, table: str, rows: list[dict[str, Any]], select: str = "*") -> list[dict[str, Any]]:
        resp = await self._request(
            "POST", f"/rest/v1/{table}",
            params=[("select", select)],
            json_body=rows,
            headers={"Prefer": "return=representation"},
        )
        return resp.json() if resp.content else []

    async def update(self, table: str, row_id: Any, values: dict[str, Any], select: str = "*") -> list[dict[str, Any]]:
        resp = await self._request(
            "PATCH", f"/rest/v1/{table}",
            params=[("id", f"eq.{format_value(row_id)}"), ("select", select)],
            json_body=values,
            headers={"Prefer": "return=representation"},
        )
        return resp.json() if resp.content else []

    async def delete(self, table: str, row_id: Any) -> None:
        await self._request("DELETE", f"/rest/v1/{table}", params=[("id", f"eq.{format_value(row_id)}")])

    async def admin_update_user(self, user_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        """Update an auth user (e.g. password) with the service-role key."""
        if not settings.supabase_service_role_key and self._key == settings.supabase_anon_key:
            raise ConfigurationError("Service role key is required for auth admin calls")
        resp = await self._request("PUT", f"/auth/v1/admin/users/{user_id}", json_body=attributes)
        return resp.json() if resp.content else {}

    async def invoke_function(self, name: str, body: dict[str, Any]) -> dict[str, Any]:
        """Invoke a platform serverless function and return its JSON body."""
        resp = await self._request("POST", f"/functions/v1/{name}", json_body=body)
        return resp.json() if resp.content else {}


def _parse_count(content_range: str) -> int | None:
    """Extract the total from a `Content-Range: 0-9/123` header."""
    _, _, total = content_range.partition("/")
    return int(total) if total.isdigit() else None


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        for field in ("message", "error_description", "error", "msg"):
            if body.get(field):
                return str(body[field])
    return f"HTTP {resp.status_code}"
