"""Pydantic models for the query layer — options, results, pagination info."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

OR_KEY = "_or"


class FilterOperator(str, Enum):
    """Closed set of structured filter operators."""

    EQ = "eq"
    NEQ = "neq"
    GTE = "gte"
    LTE = "lte"
    LIKE = "like"
    ILIKE = "ilike"
    CONTAINS = "cs"
    IN = "in"


_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


def _lenient_bool(v: Any, default: bool) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, int) and v in (0, 1):
        return bool(v)
    if isinstance(v, str):
        text = v.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    if v is not None:
        logger.warning("Unparseable flag, using %s | value=%r", default, v)
    return default


class QueryOptions(BaseModel):
    """Configuration for one collection read.

    Malformed values fall back to defaults instead of failing.
    """

    select: str = "*"
    filters: dict[str, Any] = Field(default_factory=dict)
    order_by: str | None = "created_at"
    order_direction: Literal["asc", "desc"] = "desc"
    limit: int | None = None
    offset: int = 0
    use_cache: bool = True
    count: bool = False

    @field_validator("select", mode="before")
    @classmethod
    def _default_select(cls, v: Any) -> str:
        return v if isinstance(v, str) and v.strip() else "*"

    @field_validator("filters", mode="before")
    @classmethod
    def _default_filters(cls, v: Any) -> dict:
        if v is None:
            return {}
        if not isinstance(v, dict):
            logger.warning("Ignoring non-mapping filters | type=%s", type(v).__name__)
            return {}
        return v

    @field_validator("order_by", mode="before")
    @classmethod
    def _default_order_by(cls, v: Any) -> str | None:
        if v is None or isinstance(v, str):
            return v
        logger.warning("Ignoring non-string order_by | type=%s", type(v).__name__)
        return "created_at"

    @field_validator("use_cache", mode="before")
    @classmethod
    def _default_use_cache(cls, v: Any) -> bool:
        return _lenient_bool(v, True)

    @field_validator("count", mode="before")
    @classmethod
    def _default_count(cls, v: Any) -> bool:
        return _lenient_bool(v, False)

    @field_validator("order_direction", mode="before")
    @classmethod
    def _default_direction(cls, v: Any) -> str:
        v = str(v or "").lower()
        return v if v in ("asc", "desc") else "desc"

    @field_validator("limit", mode="before")
    @classmethod
    def _default_limit(cls, v: Any) -> int | None:
        try:
            v = int(v) if v is not None else None
        except (TypeError, ValueError):
            return None
        return v if v and v > 0 else None

    @field_validator("offset", mode="before")
    @classmethod
    def _default_offset(cls, v: Any) -> int:
        try:
            return max(int(v or 0), 0)
        except (TypeError, ValueError):
            return 0

    def signature_fields(self) -> dict[str, Any]:
        """The fields that identify a query for caching (use_cache excluded)."""
        return self.model_dump(exclude={"use_cache"})


class QueryResult(BaseModel):
    """Rows returned by a query, or the error that prevented them."""

    rows: list[dict[str, Any]] = Field(default_factory=list)
    count: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PlatformStats(BaseModel):
    """Aggregate counts shown on admin dashboards."""

    totalUsers: int = 0
    totalBriefs: int = 0
    totalConversations: int = 0
    totalTickets: int = 0
    totalSubscribers: int = 0


class PaginationStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERRORED = "errored"


class PaginationInfo(BaseModel):
    current_page: int = 1
    total_pages: int = 0
    total_count: int = 0
    page_size: int = 10
    has_next: bool = False
    has_prev: bool = False
    start_index: int = 1
    end_index: int = 0
