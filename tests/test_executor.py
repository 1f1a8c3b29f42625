"""Tests for the query executor — caching, query shaping, cancellation, writes."""

import pytest

from app.integrations.supabase_rest import BackendError
from app.query.cancellation import CancellationToken, QueryCancelled
from app.query.schemas import QueryOptions


class TestQueryShaping:
    @pytest.mark.asyncio
    async def test_defaults(self, executor, stub_client):
        await executor.query("briefs")
        query = stub_client.queries[0]
        assert query.columns == "*"
        assert query.ordering == ["created_at.desc"]
        assert query.limit is None
        assert query.want_count is False

    @pytest.mark.asyncio
    async def test_range_from_limit_and_offset(self, executor, stub_client):
        await executor.query("briefs", {"limit": 12, "offset": 24})
        query = stub_client.queries[0]
        assert (query.offset, query.limit) == (24, 12)

    @pytest.mark.asyncio
    async def test_ordering_ascending(self, executor, stub_client):
        await executor.query("categories", order_by="name", order_direction="asc")
        assert stub_client.queries[0].ordering == ["name.asc"]

    @pytest.mark.asyncio
    async def test_no_ordering(self, executor, stub_client):
        await executor.query("categories", order_by=None)
        assert stub_client.queries[0].ordering == []

    @pytest.mark.asyncio
    async def test_filters_translated(self, executor, stub_client):
        await executor.query("briefs", filters={"category": "design", "price": {"operator": "gte", "value": 50}})
        assert stub_client.queries[0].filters == [("category", "eq.design"), ("price", "gte.50")]

    @pytest.mark.asyncio
    async def test_overrides_win(self, executor, stub_client):
        await executor.query("briefs", QueryOptions(limit=5), limit=10)
        assert stub_client.queries[0].limit == 10

    @pytest.mark.asyncio
    async def test_malformed_options_use_defaults(self, executor, stub_client):
        await executor.query("briefs", {"limit": "lots", "order_direction": "sideways", "filters": "x"})
        query = stub_client.queries[0]
        assert query.limit is None
        assert query.ordering == ["created_at.desc"]
        assert query.filters == []

    @pytest.mark.asyncio
    async def test_malformed_flags_and_ordering_use_defaults(self, executor, stub_client, cache):
        result = await executor.query("briefs", order_by=5, use_cache="sometimes", count="maybe")
        assert result.ok
        query = stub_client.queries[0]
        assert query.ordering == ["created_at.desc"]
        assert query.want_count is False
        assert cache.stats()["size"] == 1

    @pytest.mark.asyncio
    async def test_count_requested(self, executor, stub_client):
        stub_client.responses["users"] = {"data": [{"id": "u1"}], "count": 42}
        result = await executor.query("users", count=True, limit=1)
        assert stub_client.queries[0].want_count is True
        assert result.count == 42


class TestCaching:
    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self, executor, stub_client, sample_briefs):
        stub_client.responses["briefs"] = {"data": sample_briefs[:3], "count": None}
        first = await executor.query("briefs", limit=3)
        second = await executor.query("briefs", limit=3)

        assert len(stub_client.queries) == 1
        assert second is first
        assert [r["id"] for r in second.rows] == ["brief-0", "brief-1", "brief-2"]

    @pytest.mark.asyncio
    async def test_different_options_miss(self, executor, stub_client):
        await executor.query("briefs", limit=3)
        await executor.query("briefs", limit=4)
        assert len(stub_client.queries) == 2

    @pytest.mark.asyncio
    async def test_use_cache_false_always_fetches(self, executor, stub_client, cache):
        await executor.query("messages", use_cache=False)
        await executor.query("messages", use_cache=False)
        assert len(stub_client.queries) == 2
        assert cache.stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_use_cache_not_part_of_signature(self, executor, stub_client):
        await executor.query("briefs", limit=3)
        await executor.query("briefs", limit=3, use_cache=True)
        assert len(stub_client.queries) == 1

    @pytest.mark.asyncio
    async def test_errors_not_cached(self, executor, stub_client, cache):
        stub_client.responses["briefs"] = BackendError("permission denied for table briefs", 401)
        result = await executor.query("briefs")

        assert not result.ok
        assert result.rows == []
        assert "permission denied" in result.error
        assert cache.stats()["size"] == 0

        stub_client.responses["briefs"] = {"data": [{"id": "b1"}], "count": None}
        result = await executor.query("briefs")
        assert result.ok
        assert len(stub_client.queries) == 2


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_request(self, executor, stub_client):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(QueryCancelled):
            await executor.query("briefs", token=token)
        assert stub_client.queries == []

    @pytest.mark.asyncio
    async def test_cancelled_during_request_not_cached(self, executor, stub_client, cache):
        token = CancellationToken()
        original_fetch = stub_client.fetch

        async def fetch_then_cancel(query):
            response = await original_fetch(query)
            token.cancel()
            return response

        stub_client.fetch = fetch_then_cancel
        with pytest.raises(QueryCancelled):
            await executor.query("briefs", token=token)
        assert cache.stats()["size"] == 0


class TestWrites:
    @pytest.mark.asyncio
    async def test_insert_invalidates_table(self, executor, stub_client, cache):
        await executor.query("support_tickets")
        await executor.query("users")
        result = await executor.insert("support_tickets", {"title": "Help"})

        assert result.rows == [{"title": "Help"}]
        assert stub_client.writes == [("insert", "support_tickets", [{"title": "Help"}])]
        keys = cache.stats()["keys"]
        assert len(keys) == 1
        assert keys[0].startswith("users:")

    @pytest.mark.asyncio
    async def test_update_invalidates_table(self, executor, cache):
        await executor.query("briefs")
        result = await executor.update("briefs", "b1", {"price": 200})
        assert result.rows == [{"id": "b1", "price": 200}]
        assert cache.stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_delete_invalidates_table(self, executor, cache):
        await executor.query("blog_posts")
        result = await executor.delete("blog_posts", 3)
        assert result.ok
        assert cache.stats()["size"] == 0

    @pytest.mark.asyncio
    async def test_failed_write_keeps_cache(self, executor, stub_client, cache):
        await executor.query("briefs")

        async def reject(*args, **kwargs):
            raise BackendError("violates row-level security policy", 403)

        stub_client.update = reject
        result = await executor.update("briefs", "b1", {"price": 1})
        assert result.error == "violates row-level security policy"
        assert cache.stats()["size"] == 1
