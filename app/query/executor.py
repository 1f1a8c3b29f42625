"""Query Executor — single entry point for reading a collection, optionally cached.

Flow:
  1. use_cache → compute signature, return the cached payload on hit
  2. miss → translate filters, apply ordering and range, request count
  3. success → store under the signature (only when use_cache)
  4. backend failure → result-shaped error, never cached

Writes go through insert/update/delete, which invalidate the table's
cached reads once the backend accepts them.
"""

import logging
import time
from typing import Any

from app.integrations.supabase_rest import BackendError, SupabaseClient
from app.query.cancellation import CancellationToken
from app.query.filters import translate_filters
from app.query.schemas import QueryOptions, QueryResult
from app.services.cache import QueryCache

logger = logging.getLogger(__name__)


class QueryExecutor:
    """Reads and writes against the backend through the query cache."""

    def __init__(self, client: SupabaseClient, cache: QueryCache):
        self.client = client
        self.cache = cache

    def signature(self, table: str, options: QueryOptions) -> str:
        return self.cache.make_signature(table, options.signature_fields())

    async def query(
        self,
        table: str,
        options: QueryOptions | dict[str, Any] | None = None,
        *,
        token: CancellationToken | None = None,
        **overrides: Any,
    ) -> QueryResult:
        opts = _resolve_options(options, overrides)
        signature = self.signature(table, opts) if opts.use_cache else None

        if signature:
            cached = self.cache.get(signature)
            if cached is not None:
                return cached

        if token is not None:
            token.raise_if_cancelled()

        query = self.client.table(table).select(opts.select, count=opts.count)
        translate_filters(query, opts.filters)
        if opts.order_by:
            query.order(opts.order_by, ascending=opts.order_direction == "asc")
        if opts.limit:
            query.range(opts.offset, opts.offset + opts.limit - 1)

        start = time.monotonic()
        try:
            response = await query.execute()
        except BackendError as e:
            logger.error("Query failed | table=%s | %s", table, str(e)[:200])
            return QueryResult(error=str(e) or "Backend request failed")

        if token is not None:
            token.raise_if_cancelled()

        result = QueryResult(rows=response["data"], count=response.get("count"))
        logger.info(
            "Query OK | table=%s | rows=%d | %dms",
            table, len(result.rows), int((time.monotonic() - start) * 1000),
        )
        if signature:
            self.cache.set(signature, result)
        return result

    # ── writes ──

    async def insert(
        self,
        table: str,
        data: dict[str, Any] | list[dict[str, Any]],
        select: str = "*",
        invalidate: bool = True,
    ) -> QueryResult:
        rows = data if isinstance(data, list) else [data]
        try:
            inserted = await self.client.insert(table, rows, select=select)
        except BackendError as e:
            logger.error("Insert failed | table=%s | %s", table, str(e)[:200])
            return QueryResult(error=str(e))
        if invalidate:
            self.cache.invalidate(table)
        return QueryResult(rows=inserted)

    async def update(self, table: str, row_id: Any, values: dict[str, Any], select: str = "*") -> QueryResult:
        try:
            updated = await self.client.update(table, row_id, values, select=select)
        except BackendError as e:
            logger.error("Update failed | table=%s | id=%s | %s", table, row_id, str(e)[:200])
            return QueryResult(error=str(e))
        self.cache.invalidate(table)
        return QueryResult(rows=updated)

    async def delete(self, table: str, row_id: Any) -> QueryResult:
        try:
            await self.client.delete(table, row_id)
        except BackendError as e:
            logger.error("Delete failed | table=%s | id=%s | %s", table, row_id, str(e)[:200])
            return QueryResult(error=str(e))
        self.cache.invalidate(table)
        return QueryResult()


def _resolve_options(options: QueryOptions | dict[str, Any] | None, overrides: dict[str, Any]) -> QueryOptions:
    if isinstance(options, QueryOptions):
        if not overrides:
            return options
        options = options.model_dump()
    merged = {**(options or {}), **overrides}
    return QueryOptions.model_validate(merged)
