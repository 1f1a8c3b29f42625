"""Per-entity presets over the Query Executor.

Each accessor fixes the column projection and default ordering for its
entity and forwards everything else. Fast-changing entities (messages,
transactions) skip the cache unless the caller asks for it.
"""

import asyncio
import json
import logging
from typing import Any

from app.query.executor import QueryExecutor
from app.query.schemas import OR_KEY, PlatformStats, QueryResult

logger = logging.getLogger(__name__)

USER_COLUMNS = "id,name,email,userType,avatarKey,created_at,verificationStatus"
BRIEF_COLUMNS = """
    id,title,description,category,price,deliveryTime,serviceType,type,created_at,userId,
    author:userId(id,name,userType,avatarKey,location),
    reviews:reviews!briefId(rating)
"""
BRIEF_DETAIL_COLUMNS = """
    id,title,description,category,price,deliveryTime,serviceType,type,created_at,userId,
    author:userId(id,name,userType,avatarKey,location),
    reviews:reviews!briefId(rating),
    applications:applications!briefId(id,status,date)
"""
BRIEF_SEARCH_COLUMNS = """
    id,title,description,category,price,deliveryTime,serviceType,type,created_at,userId,
    author:userId(id,name,userType,avatarKey,location)
"""
CONVERSATION_COLUMNS = "id,participants,lastMessage,createdAt"
MESSAGE_COLUMNS = "id,conversation_id,sender_id,content,type,created_at,read"
CONTRACT_COLUMNS = "id,title,description,price,status,createdAt,providerId,clientId"
TICKET_COLUMNS = "id,title,description,status,priority,created_at,userId"
SUBSCRIBER_COLUMNS = "id,email,subscribed_at,status"
BLOG_COLUMNS = "id,title,description,author,date,image,type,content"
CATEGORY_COLUMNS = "id,name,slug"
REVIEW_COLUMNS = "id,rating,comment,created_at,reviewerId"
TRANSACTION_COLUMNS = "id,amount,type,description,date,status,mp_payment_id"

STATS_SIGNATURE = "stats:general"

# (stats field, table) pairs counted for the dashboard
STATS_TABLES = [
    ("totalUsers", "users"),
    ("totalBriefs", "briefs"),
    ("totalConversations", "conversations"),
    ("totalTickets", "support_tickets"),
    ("totalSubscribers", "newsletter_subscribers"),
]


class StatsUnavailable(Exception):
    """One of the dashboard count queries failed."""


class EntityAccessors:
    """Fixed-configuration reads for each Taskora entity."""

    def __init__(self, executor: QueryExecutor):
        self.executor = executor

    async def _read(self, table: str, preset: dict[str, Any], options: dict[str, Any]) -> QueryResult:
        return await self.executor.query(table, {**preset, **options})

    async def get_users(self, **options: Any) -> QueryResult:
        return await self._read("users", {"select": USER_COLUMNS, "limit": 20}, options)

    async def get_briefs(self, **options: Any) -> QueryResult:
        return await self._read("briefs", {"select": BRIEF_COLUMNS, "limit": 12}, options)

    async def get_briefs_with_details(self, **options: Any) -> QueryResult:
        return await self._read("briefs", {"select": BRIEF_DETAIL_COLUMNS, "limit": 12}, options)

    async def search_briefs(self, search_term: str, **options: Any) -> QueryResult:
        """Case-insensitive match on title OR description, AND-ed with other filters."""
        pattern = f"%{search_term}%"
        filters = {
            **options.pop("filters", {}),
            OR_KEY: [
                {"title": {"operator": "ilike", "value": pattern}},
                {"description": {"operator": "ilike", "value": pattern}},
            ],
        }
        preset = {"select": BRIEF_SEARCH_COLUMNS, "limit": 12, "order_by": "created_at", "order_direction": "desc"}
        return await self._read("briefs", preset, {**options, "filters": filters})

    async def get_conversations(self, user_id: str, **options: Any) -> QueryResult:
        options.pop("filters", None)
        preset = {
            "select": CONVERSATION_COLUMNS,
            "filters": {"participants": {"operator": "cs", "value": json.dumps([{"id": user_id}])}},
            "order_by": "createdAt",
            "limit": 20,
        }
        return await self._read("conversations", preset, options)

    async def get_messages(self, conversation_id: str, **options: Any) -> QueryResult:
        options.pop("filters", None)
        preset = {
            "select": MESSAGE_COLUMNS,
            "filters": {"conversation_id": conversation_id},
            "limit": 50,
            "use_cache": False,
        }
        return await self._read("messages", preset, options)

    async def get_contracts(self, user_id: str, **options: Any) -> QueryResult:
        """Contracts where the user is either provider or client."""
        options.pop("filters", None)
        preset = {
            "select": CONTRACT_COLUMNS,
            "filters": {OR_KEY: [{"providerId": user_id}, {"clientId": user_id}]},
            "order_by": "createdAt",
            "limit": 50,
        }
        return await self._read("contracts", preset, options)

    async def get_support_tickets(self, **options: Any) -> QueryResult:
        return await self._read("support_tickets", {"select": TICKET_COLUMNS, "limit": 15}, options)

    async def get_newsletter_subscribers(self, **options: Any) -> QueryResult:
        preset = {"select": SUBSCRIBER_COLUMNS, "order_by": "subscribed_at", "limit": 25}
        return await self._read("newsletter_subscribers", preset, options)

    async def get_blog_posts(self, **options: Any) -> QueryResult:
        return await self._read("blog_posts", {"select": BLOG_COLUMNS, "order_by": "date", "limit": 10}, options)

    async def get_categories(self, **options: Any) -> QueryResult:
        preset = {"select": CATEGORY_COLUMNS, "order_by": "name", "order_direction": "asc"}
        return await self._read("categories", preset, options)

    async def get_reviews(self, brief_id: str, **options: Any) -> QueryResult:
        options.pop("filters", None)
        preset = {"select": REVIEW_COLUMNS, "filters": {"briefId": brief_id}, "limit": 10}
        return await self._read("reviews", preset, options)

    async def get_transactions(self, user_id: str, **options: Any) -> QueryResult:
        options.pop("filters", None)
        preset = {
            "select": TRANSACTION_COLUMNS,
            "filters": {"userId": user_id},
            "order_by": "date",
            "limit": 20,
            "use_cache": False,
        }
        return await self._read("transactions", preset, options)

    async def get_stats(self) -> PlatformStats:
        """Exact row counts for the dashboard, cached as one payload."""
        cache = self.executor.cache
        cached = cache.get(STATS_SIGNATURE)
        if cached is not None:
            return cached

        results = await asyncio.gather(*(
            self.executor.query(table, select="id", order_by=None, count=True, limit=1, use_cache=False)
            for _, table in STATS_TABLES
        ))
        failed = [r.error for r in results if not r.ok]
        if failed:
            logger.error("Stats query failed | %s", failed[0][:200])
            raise StatsUnavailable(failed[0])

        stats = PlatformStats(**{field: r.count or 0 for (field, _), r in zip(STATS_TABLES, results)})
        cache.set(STATS_SIGNATURE, stats)
        return stats