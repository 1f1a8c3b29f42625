"""FastAPI dependency getters.

Shared services live on app.state. The lifespan creates them; without a
lifespan (e.g. under an ASGI test transport) they are created on first use.
"""

import logging

from fastapi import Depends, Request

from app.config import ConfigurationError
from app.integrations.mercadopago import MercadoPagoClient
from app.integrations.supabase_rest import SupabaseClient
from app.query.accessors import EntityAccessors
from app.query.executor import QueryExecutor
from app.services.bulk_data import BulkDataService
from app.services.cache import QueryCache
from app.services.email import SMTPMailer

logger = logging.getLogger(__name__)


def get_query_cache(request: Request) -> QueryCache:
    cache = getattr(request.app.state, "query_cache", None)
    if cache is None:
        cache = request.app.state.query_cache = QueryCache()
    return cache


def get_supabase(request: Request) -> SupabaseClient:
    """Raises ConfigurationError when the platform is not configured."""
    client = getattr(request.app.state, "supabase", None)
    if client is None:
        client = request.app.state.supabase = SupabaseClient()
    return client


def get_optional_supabase(request: Request) -> SupabaseClient | None:
    try:
        return get_supabase(request)
    except ConfigurationError as e:
        logger.warning("Supabase unavailable | %s", e)
        return None


def get_executor(
    cache: QueryCache = Depends(get_query_cache),
    client: SupabaseClient = Depends(get_supabase),
) -> QueryExecutor:
    return QueryExecutor(client, cache)


def get_accessors(executor: QueryExecutor = Depends(get_executor)) -> EntityAccessors:
    return EntityAccessors(executor)


def get_mailer() -> SMTPMailer:
    return SMTPMailer()


def get_gateway_factory():
    return MercadoPagoClient


def get_bulk_data(executor: QueryExecutor = Depends(get_executor)) -> BulkDataService:
    return BulkDataService(executor)
