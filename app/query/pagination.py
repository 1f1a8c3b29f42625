"""Pagination Controller — page/offset bookkeeping over the Query Executor.

States: idle → loading → loaded | errored. Errored is not terminal; any
further navigation loads again.

Two consumption modes share one controller:
  - discrete paging (go_to_page / next_page / prev_page) replaces rows
  - infinite scroll (load_more) appends the next page's rows

refresh() and set_filters() supersede an in-flight request: its token and
task are cancelled so its result is never applied.
"""

import asyncio
import logging
import math
from typing import Any

from app.config import settings
from app.query.cancellation import QueryCancelled, RequestTracker
from app.query.debounce import Debouncer
from app.query.executor import QueryExecutor
from app.query.schemas import OR_KEY, PaginationInfo, PaginationStatus, QueryOptions

logger = logging.getLogger(__name__)


class PaginationController:
    """Pages through one table with a fixed query configuration."""

    def __init__(
        self,
        executor: QueryExecutor,
        table: str,
        *,
        page_size: int = 10,
        initial_page: int = 1,
        select: str = "*",
        filters: dict[str, Any] | None = None,
        order_by: str = "created_at",
        order_direction: str = "desc",
        use_cache: bool = True,
        want_count: bool = False,
    ):
        self.executor = executor
        self.table = table
        self.page_size = page_size if page_size > 0 else 10
        self.current_page = max(initial_page, 1)
        self.options = QueryOptions(
            select=select,
            filters=filters or {},
            order_by=order_by,
            order_direction=order_direction,
            use_cache=use_cache,
            count=want_count,
        )

        self.rows: list[dict[str, Any]] = []
        self.total_count: int | None = None
        self.has_more = False
        self.status = PaginationStatus.IDLE
        self.error: str | None = None
        self._tracker = RequestTracker()

    @property
    def loading(self) -> bool:
        return self._tracker.in_flight

    @property
    def info(self) -> PaginationInfo:
        offset = (self.current_page - 1) * self.page_size
        total = self.total_count or 0
        return PaginationInfo(
            current_page=self.current_page,
            total_pages=math.ceil(total / self.page_size),
            total_count=total,
            page_size=self.page_size,
            has_next=self.has_more,
            has_prev=self.current_page > 1,
            start_index=offset + 1,
            end_index=min(offset + self.page_size, total),
        )

    # ── navigation ──

    async def load(self) -> bool:
        """Fetch the current page (initial load)."""
        return await self._fetch(self.current_page, append=False)

    async def go_to_page(self, page: int) -> bool:
        if page < 1 or page == self.current_page or self.loading:
            return False
        return await self._fetch(page, append=False)

    async def next_page(self) -> bool:
        if not self.has_more:
            return False
        return await self.go_to_page(self.current_page + 1)

    async def prev_page(self) -> bool:
        return await self.go_to_page(self.current_page - 1)

    async def load_more(self) -> bool:
        """Append the next page's rows (infinite-scroll mode)."""
        if not self.has_more or self.loading:
            return False
        return await self._fetch(self.current_page + 1, append=True)

    async def refresh(self) -> bool:
        """Back to page 1 with accumulated rows discarded."""
        self._tracker.cancel()
        self.current_page = 1
        self.rows = []
        self.has_more = False
        return await self._fetch(1, append=False)

    async def set_filters(self, filters: dict[str, Any] | None) -> bool:
        """Dependency change — new filters restart from page 1."""
        self.options = self.options.model_copy(update={"filters": dict(filters or {})})
        return await self.refresh()

    def close(self):
        """Abandon the in-flight request, if any."""
        self._tracker.cancel()

    # ── internals ──

    async def _fetch(self, page: int, append: bool) -> bool:
        token = self._tracker.begin()
        self.status = PaginationStatus.LOADING
        self.error = None

        offset = (page - 1) * self.page_size
        options = self.options.model_copy(update={"limit": self.page_size, "offset": offset})
        task = asyncio.ensure_future(self.executor.query(self.table, options, token=token))
        self._tracker.attach(task)

        try:
            result = await task
        except (QueryCancelled, asyncio.CancelledError):
            if token.cancelled:
                logger.debug("Pagination fetch superseded | table=%s | page=%d", self.table, page)
                return False
            raise

        if token.cancelled:
            return False

        if not result.ok:
            # Accumulated rows are kept so the caller can still render them
            self.status = PaginationStatus.ERRORED
            self.error = result.error
            logger.warning("Pagination fetch failed | table=%s | page=%d | %s", self.table, page, result.error)
            return False

        page_rows = list(result.rows)
        # current_page advances only on success
        self.rows = self.rows + page_rows if append else page_rows
        self.current_page = page

        if result.count is not None:
            self.total_count = result.count
        if self.options.count and self.total_count is not None:
            self.has_more = offset + len(page_rows) < self.total_count
        else:
            self.has_more = len(page_rows) == self.page_size

        self.status = PaginationStatus.LOADED
        return True


class InfiniteScrollController(PaginationController):
    """Pagination that grows one list as the reader nears the bottom."""

    def __init__(self, executor: QueryExecutor, table: str, *, page_size: int = 20, **kwargs: Any):
        super().__init__(executor, table, page_size=page_size, **kwargs)

    async def on_scroll(self, scroll_top: float, scroll_height: float, client_height: float, threshold: float = 100) -> bool:
        near_bottom = scroll_top + client_height >= scroll_height - threshold
        if near_bottom and self.has_more and not self.loading:
            return await self.load_more()
        return False


def build_search_filters(fields: list[str], text: str) -> dict[str, Any]:
    """ilike %text% over one field, or an OR group over several."""
    text = (text or "").strip()
    if not text or not fields:
        return {}
    pattern = {"operator": "ilike", "value": f"%{text}%"}
    if len(fields) == 1:
        return {fields[0]: pattern}
    return {OR_KEY: [{field: dict(pattern)} for field in fields]}


class SearchPaginationController(PaginationController):
    """Pagination driven by a debounced free-text search box."""

    def __init__(
        self,
        executor: QueryExecutor,
        table: str,
        search_fields: list[str],
        *,
        debounce_ms: int | None = None,
        **kwargs: Any,
    ):
        super().__init__(executor, table, **kwargs)
        self.search_fields = list(search_fields)
        self.search_query = ""
        self.debounced_query = ""
        self._base_filters = dict(self.options.filters)
        delay_ms = settings.search_debounce_ms if debounce_ms is None else debounce_ms
        self._debouncer = Debouncer(delay_ms / 1000, self._apply_search)

    def set_search(self, text: str) -> asyncio.Task:
        """Record a keystroke; the query runs once input settles."""
        self.search_query = text
        return self._debouncer.trigger(text)

    async def _apply_search(self, text: str) -> bool:
        self.debounced_query = text
        filters = {**self._base_filters, **build_search_filters(self.search_fields, text)}
        return await self.set_filters(filters)

    def close(self):
        self._debouncer.cancel()
        super().close()
