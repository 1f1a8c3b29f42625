"""Taskora Backend — FastAPI application entry point.

Serves the transactional endpoints the web client calls (email, password
reset, payment verification) and cached read endpoints over the query layer.
"""

import logging
import time
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import ConfigurationError, settings
from app.database import get_db
from app.dependencies import (
    get_accessors,
    get_bulk_data,
    get_gateway_factory,
    get_mailer,
    get_optional_supabase,
    get_query_cache,
)
from app.integrations.mercadopago import PaymentGatewayError
from app.integrations.supabase_rest import SupabaseClient
from app.query.accessors import EntityAccessors, StatsUnavailable
from app.schemas import (
    BulkImportRequest,
    CacheInvalidateRequest,
    ConfirmPasswordResetRequest,
    PasswordResetRequest,
    SendEmailRequest,
    VerifyPaymentRequest,
)
from app.services.bulk_data import BULK_TABLES, BulkDataService, BulkExportError, parse_csv
from app.services.cache import QueryCache
from app.services.email import EmailDeliveryError, SMTPMailer
from app.services.password_reset import PasswordResetError, PasswordResetService
from app.services.payments import PaymentService, PaymentVerificationError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger("taskora")


# ═══════════════ RATE LIMITER ═══════════════

class RateLimiter:
    """Fixed-window rate limiter by IP."""

    def __init__(self, max_requests: int, window_seconds: int = 60):
        self.max_requests = max_requests
        self.window = window_seconds
        self._hits: dict[str, list[float]] = defaultdict(list)

    def is_limited(self, ip: str) -> bool:
        now = time.monotonic()
        window_start = now - self.window
        self._hits[ip] = [t for t in self._hits[ip] if t > window_start]
        if len(self._hits[ip]) >= self.max_requests:
            return True
        self._hits[ip].append(now)
        return False

    def reset(self):
        self._hits.clear()


rate_limiter = RateLimiter(settings.rate_limit_per_minute)


def _client_ip(request: Request) -> str:
    client_ip = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return client_ip


def _too_many_requests() -> JSONResponse:
    return JSONResponse(status_code=429, content={"error": "Too many requests. Please wait a minute."})


async def _json_body(request: Request) -> dict | None:
    try:
        body = await request.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


# ═══════════════ LIFESPAN ═══════════════

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Taskora backend starting | environment=%s", settings.environment)

    # Initialize database (graceful degradation if unavailable)
    from app.database import close_db, init_db
    db_ok = await init_db()
    logger.info("Database: %s", "connected" if db_ok else "unavailable (continuing without)")

    app.state.query_cache = QueryCache()
    try:
        app.state.supabase = SupabaseClient()
    except ConfigurationError as e:
        app.state.supabase = None
        logger.warning("Supabase: %s (read endpoints disabled)", e)

    yield

    app.state.query_cache.invalidate_all()
    await close_db()
    logger.info("Taskora backend shutting down")


# ═══════════════ APP ═══════════════

app = FastAPI(
    title="Taskora API",
    description="Taskora freelance marketplace API",
    version="2.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["POST", "OPTIONS", "GET"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Configuration error | path=%s | %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"error": str(exc)})


# ═══════════════ ENDPOINTS ═══════════════

@app.get("/health")
async def health():
    return {
        "status": "ok",
        "environment": settings.environment,
        "has_smtp": settings.has_smtp,
        "has_supabase": bool(settings.supabase_url and settings.service_key),
    }


@app.post("/send-email")
async def send_email(request: Request, mailer: SMTPMailer = Depends(get_mailer)):
    if rate_limiter.is_limited(_client_ip(request)):
        return _too_many_requests()

    body = await _json_body(request)
    if body is None:
        return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})
    try:
        email_req = SendEmailRequest.model_validate(body)
    except ValidationError:
        return JSONResponse(status_code=400, content={"error": "Invalid email payload"})
    if not email_req.is_complete():
        return JSONResponse(status_code=400, content={"error": "Missing 'to', 'subject' or 'html'"})

    try:
        message_id = await mailer.send(email_req)
    except ConfigurationError as e:
        return JSONResponse(status_code=500, content={"error": str(e)})
    except EmailDeliveryError as e:
        return JSONResponse(status_code=500, content={"error": str(e) or "Email send failed"})

    return {"ok": True, "messageId": message_id}


@app.post("/auth/request-password-reset")
async def request_password_reset(
    request: Request,
    db: AsyncSession = Depends(get_db),
    supabase: SupabaseClient | None = Depends(get_optional_supabase),
):
    if rate_limiter.is_limited(_client_ip(request)):
        return _too_many_requests()

    body = await _json_body(request)
    if body is None:
        return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})
    try:
        reset_req = PasswordResetRequest.model_validate(body)
    except ValidationError:
        return JSONResponse(status_code=400, content={"error": "Email is required"})

    try:
        await PasswordResetService(db, supabase).request_reset(reset_req.email)
    except PasswordResetError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    except Exception as e:
        logger.error("Password reset request failed | %s", str(e)[:200])
        return JSONResponse(status_code=500, content={"error": "Password reset unavailable"})

    # Same answer whether or not the account exists
    return {"ok": True}


@app.post("/auth/confirm-password-reset")
async def confirm_password_reset(
    request: Request,
    db: AsyncSession = Depends(get_db),
    supabase: SupabaseClient | None = Depends(get_optional_supabase),
):
    body = await _json_body(request)
    if body is None:
        return JSONResponse(status_code=400, content={"error": "Invalid payload"})
    try:
        confirm_req = ConfirmPasswordResetRequest.model_validate(body)
    except ValidationError:
        return JSONResponse(status_code=400, content={"error": "Invalid payload"})

    try:
        await PasswordResetService(db, supabase).confirm_reset(confirm_req.token, confirm_req.password)
    except PasswordResetError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    return {"ok": True}


@app.post("/payments/verify")
async def verify_payment(
    request: Request,
    db: AsyncSession = Depends(get_db),
    cache: QueryCache = Depends(get_query_cache),
    gateway_factory=Depends(get_gateway_factory),
):
    body = await _json_body(request)
    if body is None:
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid JSON body"})
    try:
        payment_req = VerifyPaymentRequest.model_validate(body)
    except ValidationError:
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid payment payload"})

    service = PaymentService(db, gateway_factory=gateway_factory, cache=cache)
    try:
        result = await service.verify(str(payment_req.paymentId), payment_req.userId)
    except (PaymentVerificationError, PaymentGatewayError, ConfigurationError) as e:
        logger.warning("Payment verification rejected | payment=%s | %s", payment_req.paymentId, e)
        return JSONResponse(status_code=400, content={"success": False, "error": str(e)})

    return result.model_dump(exclude_none=True)


# ═══════════════ READ API ═══════════════

@app.get("/api/briefs")
async def list_briefs(
    category: str | None = None,
    search: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(12, ge=1, le=100),
    accessors: EntityAccessors = Depends(get_accessors),
):
    filters = {"category": category} if category else {}
    window = {"limit": page_size, "offset": (page - 1) * page_size, "count": True}
    if search and search.strip():
        result = await accessors.search_briefs(search.strip(), filters=filters, **window)
    else:
        result = await accessors.get_briefs(filters=filters, **window)

    if not result.ok:
        return JSONResponse(status_code=502, content={"error": result.error})

    total = result.count or 0
    return {
        "data": result.rows,
        "count": total,
        "page": page,
        "page_size": page_size,
        "has_more": (page - 1) * page_size + len(result.rows) < total,
    }


@app.get("/api/stats")
async def platform_stats(accessors: EntityAccessors = Depends(get_accessors)):
    try:
        stats = await accessors.get_stats()
    except StatsUnavailable as e:
        return JSONResponse(status_code=502, content={"error": str(e)})
    return stats.model_dump()


@app.get("/api/cache/stats")
async def cache_stats(cache: QueryCache = Depends(get_query_cache)):
    return cache.stats()


@app.post("/api/cache/invalidate")
async def cache_invalidate(request: Request, cache: QueryCache = Depends(get_query_cache)):
    if rate_limiter.is_limited(_client_ip(request)):
        return _too_many_requests()

    body = await _json_body(request) or {}
    try:
        invalidate_req = CacheInvalidateRequest.model_validate(body)
    except ValidationError:
        return JSONResponse(status_code=400, content={"error": "table must be a string"})

    if invalidate_req.table:
        removed = cache.invalidate(invalidate_req.table)
    else:
        removed = cache.stats()["size"]
        cache.invalidate_all()
    return {"ok": True, "invalidated": removed}


# ═══════════════ BULK DATA ═══════════════

@app.post("/api/bulk/{table}")
async def bulk_import(
    table: str,
    request: Request,
    bulk: BulkDataService = Depends(get_bulk_data),
):
    if rate_limiter.is_limited(_client_ip(request)):
        return _too_many_requests()
    if table not in BULK_TABLES:
        return JSONResponse(status_code=400, content={"error": f"Bulk import not supported for {table}"})

    body = await _json_body(request)
    if body is None:
        return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})
    try:
        import_req = BulkImportRequest.model_validate(body)
    except ValidationError:
        return JSONResponse(status_code=400, content={"error": "Invalid bulk import payload"})

    rows = parse_csv(import_req.csv) if import_req.csv else import_req.rows
    if not rows:
        return JSONResponse(status_code=400, content={"error": "No rows to import"})

    report = await bulk.import_rows(
        table,
        rows,
        validate=import_req.validate_rows,
        transform=import_req.transform,
        batch_size=import_req.batch_size,
    )
    return report.model_dump()


@app.get("/api/bulk/{table}/export")
async def bulk_export(table: str, bulk: BulkDataService = Depends(get_bulk_data)):
    if table not in BULK_TABLES:
        return JSONResponse(status_code=400, content={"error": f"Export not supported for {table}"})

    try:
        content = await bulk.export_csv(table)
    except BulkExportError as e:
        return JSONResponse(status_code=502, content={"error": str(e)})
    except ValueError as e:
        return JSONResponse(status_code=404, content={"error": str(e)})

    filename = f"{table}_export_{datetime.now(timezone.utc).date().isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host=settings.host, port=settings.port)
