"""Database connection setup for MongoDB and Redis."""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
import redis.asyncio as redis
from shared.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UniqueIndex:
    """Unique index that only covers documents where ``partial_field`` is a string."""
    name: str
    keys: Tuple[str, ...]
    partial_field: str


# (source, url) and (source, guid) are unique among non-null values; one active
# publication per (article, target); one publication per idempotency key.
UNIQUE_INDEXES: Dict[str, List[UniqueIndex]] = {
    "feed_items": [
        UniqueIndex("uniq_source_url", ("source_id", "url_key"), "url_key"),
        UniqueIndex("uniq_source_guid", ("source_id", "guid"), "guid"),
    ],
    "publications": [
        UniqueIndex("uniq_active_slot", ("active_slot",), "active_slot"),
        UniqueIndex("uniq_idempotency_key", ("idempotency_key",), "idempotency_key"),
    ],
}


async def ensure_indexes(db: AsyncIOMotorDatabase):
    """Create indexes, including the unique ones the dedup and publish guards rely on."""
    for collection_name, indexes in UNIQUE_INDEXES.items():
        collection = db[collection_name]
        for index in indexes:
            await collection.create_index(
                [(key, 1) for key in index.keys],
                unique=True,
                partialFilterExpression={index.partial_field: {"$type": "string"}},
                name=index.name
            )

    # Feed items
    await db.feed_items.create_index([("source_id", 1), ("status", 1)])
    await db.feed_items.create_index("fetched_at")

    # Articles
    await db.articles.create_index([("status", 1), ("created_at", 1)])
    await db.articles.create_index("source_id")

    # Publications
    await db.publications.create_index([("article_id", 1), ("target_key", 1)])
    await db.publications.create_index([("status", 1), ("scheduled_at", 1)])

    # Automation rules
    await db.automation_rules.create_index([("source_id", 1), ("enabled", 1)])
    await db.automation_rules.create_index("trigger.type")


class DatabaseConnection:
    """Manages MongoDB and Redis connections."""

    _mongo_client: Optional[AsyncIOMotorClient] = None
    _redis_client: Optional[redis.Redis] = None
    _db: Optional[AsyncIOMotorDatabase] = None

    @classmethod
    async def init_mongo(cls) -> AsyncIOMotorDatabase:
        """Initialize MongoDB connection."""
        if cls._mongo_client is None:
            cls._mongo_client = AsyncIOMotorClient(settings.mongo_url, tz_aware=True)
            cls._db = cls._mongo_client[settings.mongo_db_name]
            await cls._setup_indexes()
            logger.info(f"Connected to MongoDB database {settings.mongo_db_name}")
        return cls._db

    @classmethod
    async def _setup_indexes(cls):
        """Set up MongoDB indexes."""
        if cls._db is None:
            return
        await ensure_indexes(cls._db)

    @classmethod
    async def get_mongo_db(cls) -> AsyncIOMotorDatabase:
        """Get MongoDB database instance."""
        if cls._db is None:
            await cls.init_mongo()
        return cls._db

    @classmethod
    async def init_redis(cls) -> redis.Redis:
        """Initialize Redis connection."""
        if cls._redis_client is None:
            cls._redis_client = redis.from_url(
                settings.redis_url,
                decode_responses=True
            )
        return cls._redis_client

    @classmethod
    async def get_redis(cls) -> redis.Redis:
        """Get Redis client instance."""
        if cls._redis_client is None:
            await cls.init_redis()
        return cls._redis_client

    @classmethod
    async def close_connections(cls):
        """Close all database connections."""
        if cls._mongo_client:
            cls._mongo_client.close()
            cls._mongo_client = None
            cls._db = None
        if cls._redis_client:
            await cls._redis_client.close()
            cls._redis_client = None


# Convenience functions
async def get_db() -> AsyncIOMotorDatabase:
    """Dependency for getting MongoDB database."""
    return await DatabaseConnection.get_mongo_db()


async def get_redis() -> redis.Redis:
    """Dependency for getting Redis client."""
    return await DatabaseConnection.get_redis()
