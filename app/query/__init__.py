"""Optimized query layer — filter translation, cached execution, accessors, pagination."""

from app.query.accessors import EntityAccessors
from app.query.executor import QueryExecutor
from app.query.pagination import (
    InfiniteScrollController,
    PaginationController,
    SearchPaginationController,
)
from app.query.schemas import QueryOptions, QueryResult

__all__ = [
    "EntityAccessors",
    "InfiniteScrollController",
    "PaginationController",
    "QueryExecutor",
    "QueryOptions",
    "QueryResult",
    "SearchPaginationController",
]
