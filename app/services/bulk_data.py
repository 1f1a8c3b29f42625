"""Bulk Data — batched imports and CSV export for admin tooling.

Import flow:
  1. validate → rows missing required fields, with wrong types or bad
     formats are set aside with their reasons
  2. transform → per-table defaults and timestamps, unknown columns dropped
  3. insert in batches; a rejected batch is retried one row at a time so
     one bad row does not sink its neighbours

Cached reads of the table are invalidated once, after the whole import.
"""

import asyncio
import csv
import io
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

from app.config import settings
from app.query.executor import QueryExecutor
from app.schemas import BulkImportReport, BulkImportSummary, BulkInsertResult

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

VALIDATION_SCHEMAS: dict[str, dict[str, Any]] = {
    "users": {
        "required": ["name", "email"],
        "types": {"name": "string", "email": "string", "userType": "string"},
        "formats": {"email": EMAIL_RE},
    },
    "briefs": {
        "required": ["title", "description"],
        "types": {"title": "string", "description": "string", "price": "number"},
    },
    "blog_posts": {
        "required": ["title", "description"],
        "types": {"title": "string", "description": "string"},
    },
    "support_tickets": {
        "required": ["title", "description"],
        "types": {"title": "string", "description": "string"},
    },
    "newsletter_subscribers": {
        "required": ["email"],
        "types": {"email": "string"},
        "formats": {"email": EMAIL_RE},
    },
    "categories": {
        "required": ["name"],
        "types": {"name": "string"},
    },
    "reviews": {
        "required": ["rating"],
        "types": {"rating": "number"},
    },
}

# Column defaults applied by transform_rows; only these columns are kept
_DEFAULTS: dict[str, dict[str, Any]] = {
    "users": {
        "name": "", "email": "", "userType": "client", "phone": None, "address": None,
        "website": None, "bio": None, "location": None, "searchRadius": 50,
    },
    "briefs": {
        "title": "", "description": "", "category": "other", "price": 0, "deliveryTime": "",
        "serviceType": "online", "type": "service", "userId": None, "images": [],
        "location": None, "radius": 20, "priceType": "total",
    },
    "blog_posts": {
        "type": "article", "title": "", "description": "", "author": "Equipo Taskora",
        "date": None, "image": None, "content": "", "registered_users": [],
    },
    "support_tickets": {
        "title": "", "description": "", "status": "open", "priority": "medium",
        "userId": None, "category": "general",
    },
    "newsletter_subscribers": {"email": "", "status": "active", "source": "bulk_import"},
    "categories": {"name": "", "slug": "", "description": None},
    "reviews": {"briefId": None, "reviewerId": None, "revieweeId": None, "rating": 5, "comment": ""},
}

# Columns every imported row gets regardless of input
_FIXED = {
    "users": {"verificationStatus": "unverified"},
    "briefs": {"status": "active"},
}

BULK_TABLES = frozenset(VALIDATION_SCHEMAS)


class BulkExportError(Exception):
    """The rows to export could not be read."""


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    # CSV cells arrive as text
    try:
        float(value)
    except (TypeError, ValueError):
        return False
    return True


def _type_ok(value: Any, expected: str) -> bool:
    if expected == "number":
        return _is_number(value)
    return isinstance(value, str)


def validate_rows(table: str, rows: list[dict[str, Any]]) -> tuple[list[dict], list[dict]]:
    """Split rows into (valid, errors). Tables without a schema accept everything."""
    schema = VALIDATION_SCHEMAS.get(table, {})
    valid, errors = [], []

    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            errors.append({"index": index, "data": row, "errors": ["Row is not an object"]})
            continue

        problems = [f"Required field: {f}" for f in schema.get("required", []) if _is_blank(row.get(f))]
        for field, expected in schema.get("types", {}).items():
            value = row.get(field)
            if not _is_blank(value) and not _type_ok(value, expected):
                problems.append(f"Wrong type for {field}: expected {expected}, got {type(value).__name__}")
        for field, pattern in schema.get("formats", {}).items():
            value = row.get(field)
            if isinstance(value, str) and value and not pattern.match(value):
                problems.append(f"Invalid format for {field}")

        if problems:
            errors.append({"index": index, "data": row, "errors": problems})
        else:
            valid.append(row)

    return valid, errors


def _slugify(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


def _to_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_int(value: Any, default: int) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _default(value: Any) -> Any:
    return list(value) if isinstance(value, list) else value


def transform_rows(table: str, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Fill per-table defaults and timestamps. Unknown tables pass through unchanged."""
    defaults = _DEFAULTS.get(table)
    if defaults is None:
        return list(rows)

    now = datetime.now(timezone.utc).isoformat()
    out = []
    for row in rows:
        item = {k: _default(v) if _is_blank(row.get(k)) else row[k] for k, v in defaults.items()}
        item.update(_FIXED.get(table, {}))

        if table == "briefs":
            item["price"] = _to_float(item["price"], 0)
        elif table == "reviews":
            item["rating"] = _to_int(item["rating"], 5)
        elif table == "categories" and not item["slug"]:
            item["slug"] = _slugify(item["name"])
        elif table == "blog_posts" and item["date"] is None:
            item["date"] = now

        if table == "newsletter_subscribers":
            item["subscribed_at"] = now
        else:
            item["created_at"] = now
            item["updated_at"] = now
        out.append(item)
    return out


def rows_to_csv(rows: list[dict[str, Any]]) -> str:
    """Header from the first row; nested values as JSON, None as an empty cell."""
    if not rows:
        raise ValueError("No data to export")

    headers = list(rows[0].keys())
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        cells = []
        for h in headers:
            value = row.get(h)
            if value is None:
                cells.append("")
            elif isinstance(value, (dict, list)):
                cells.append(json.dumps(value, separators=(",", ":")))
            else:
                cells.append(value)
        writer.writerow(cells)
    return output.getvalue()


def parse_csv(text: str) -> list[dict[str, str]]:
    """Rows keyed by the header line. Blank lines are skipped; missing cells are ''."""
    reader = csv.reader(io.StringIO(text or ""))
    try:
        headers = [h.strip() for h in next(reader)]
    except StopIteration:
        return []

    rows = []
    for values in reader:
        if not any(v.strip() for v in values):
            continue
        values = [v.strip() for v in values]
        rows.append({h: values[i] if i < len(values) else "" for i, h in enumerate(headers)})
    return rows


class BulkDataService:
    """Batched writes and exports over the Query Executor."""

    def __init__(
        self,
        executor: QueryExecutor,
        batch_size: int | None = None,
        pause_seconds: float | None = None,
    ):
        self.executor = executor
        self.batch_size = batch_size or settings.bulk_batch_size
        self.pause = settings.bulk_batch_pause_seconds if pause_seconds is None else pause_seconds

    async def bulk_insert(
        self,
        table: str,
        rows: list[dict[str, Any]],
        batch_size: int | None = None,
    ) -> BulkInsertResult:
        size = batch_size if batch_size and batch_size > 0 else self.batch_size
        result = BulkInsertResult(total=len(rows))

        for start in range(0, len(rows), size):
            batch = rows[start:start + size]
            inserted = await self.executor.insert(table, batch, invalidate=False)
            if inserted.ok:
                result.success.extend(inserted.rows)
            else:
                logger.warning(
                    "Bulk batch rejected, retrying row by row | table=%s | batch=%d | %s",
                    table, start // size, str(inserted.error)[:200],
                )
                await self._insert_each(table, batch, result)

            result.processed += len(batch)
            if self.pause and result.processed < result.total:
                await asyncio.sleep(self.pause)

        if result.success:
            self.executor.cache.invalidate(table)
        logger.info(
            "Bulk insert done | table=%s | inserted=%d | failed=%d",
            table, len(result.success), len(result.errors),
        )
        return result

    async def _insert_each(self, table: str, batch: list[dict[str, Any]], result: BulkInsertResult):
        for row in batch:
            single = await self.executor.insert(table, [row], invalidate=False)
            if single.ok:
                result.success.append(single.rows[0] if single.rows else row)
            else:
                result.errors.append({"data": row, "error": single.error})

    async def import_rows(
        self,
        table: str,
        rows: list[dict[str, Any]],
        *,
        validate: bool = True,
        transform: bool = True,
        batch_size: int | None = None,
    ) -> BulkImportReport:
        validation_errors: list[dict] = []
        prepared = list(rows)
        if validate:
            prepared, validation_errors = validate_rows(table, prepared)
            if validation_errors:
                logger.warning("Bulk import validation | table=%s | rejected=%d", table, len(validation_errors))
        if transform:
            prepared = transform_rows(table, prepared)

        results = await self.bulk_insert(table, prepared, batch_size=batch_size)
        return BulkImportReport(
            results=results,
            validationErrors=validation_errors,
            summary=BulkImportSummary(
                total=len(rows),
                valid=len(prepared),
                inserted=len(results.success),
                errors=len(results.errors),
                validationErrors=len(validation_errors),
            ),
        )

    async def export_csv(self, table: str, filters: dict[str, Any] | None = None) -> str:
        """Every matching row as CSV.

        Raises BulkExportError when the read fails and ValueError when there
        is nothing to export.
        """
        result = await self.executor.query(table, filters=filters or {}, order_by=None, use_cache=False)
        if not result.ok:
            raise BulkExportError(result.error or "Export failed")
        return rows_to_csv(result.rows)
