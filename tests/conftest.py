"""Shared test fixtures and configuration."""

import os
import uuid
from decimal import Decimal

import pytest

# No real platform, SMTP or gateway credentials during tests
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SUPABASE_URL", "")
os.environ.setdefault("SUPABASE_ANON_KEY", "")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "")
os.environ.setdefault("SMTP_HOST", "")
os.environ.setdefault("MP_ACCESS_TOKEN", "")

from app.database import build_engine  # noqa: E402
from app.integrations.supabase_rest import BackendError, SupabaseClient, TableQuery  # noqa: E402
from app.models import Base, User  # noqa: E402
from app.query.executor import QueryExecutor  # noqa: E402
from app.services.cache import QueryCache  # noqa: E402

SUPABASE_URL = "https://test.supabase.co"


class StubSupabase:
    """Records built queries and answers them from canned per-table responses.

    A response may be an exception instance, which fetch() raises.
    reject_insert, when set, gets each insert's rows and returns an error
    message to fail that insert with.
    """

    def __init__(self):
        self.responses: dict = {}
        self.queries: list[TableQuery] = []
        self.writes: list[tuple] = []
        self.reject_insert = None

    def table(self, name: str) -> TableQuery:
        return TableQuery(self, name)

    async def fetch(self, query: TableQuery) -> dict:
        self.queries.append(query)
        response = self.responses.get(query.table, {"data": [], "count": None})
        if isinstance(response, Exception):
            raise response
        return response

    async def insert(self, table, rows, select="*"):
        self.writes.append(("insert", table, rows))
        if self.reject_insert is not None:
            message = self.reject_insert(rows)
            if message:
                raise BackendError(message, 400)
        return rows

    async def update(self, table, row_id, values, select="*"):
        self.writes.append(("update", table, row_id, values))
        return [{"id": row_id, **values}]

    async def delete(self, table, row_id):
        self.writes.append(("delete", table, row_id))


@pytest.fixture
def stub_client():
    return StubSupabase()


@pytest.fixture
def cache():
    return QueryCache(ttl=300, maxsize=100)


@pytest.fixture
def executor(stub_client, cache):
    return QueryExecutor(stub_client, cache)


@pytest.fixture
def supabase():
    """Real REST client pointed at a fake project — pair with httpx_mock."""
    return SupabaseClient(url=SUPABASE_URL, key="service-key", timeout=5)


@pytest.fixture
async def db_session():
    """Fresh in-memory SQLite database per test."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    engine = build_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
async def user(db_session):
    record = User(
        id=uuid.uuid4(),
        email="ana@example.com",
        name="Ana",
        user_type="provider",
        balance=Decimal("100.00"),
    )
    db_session.add(record)
    await db_session.commit()
    return record


@pytest.fixture
def sample_briefs():
    """Rows shaped like the briefs listing projection."""
    return [
        {
            "id": f"brief-{i}",
            "title": f"Logo design #{i}",
            "description": "Minimal logo for a coffee shop",
            "category": "design" if i % 2 else "development",
            "price": 100 + i,
            "created_at": f"2024-05-{i + 1:02d}T12:00:00Z",
            "userId": "user-1",
        }
        for i in range(25)
    ]
