"""Feed item repository for the feed_items collection."""
import logging
from datetime import datetime, timedelta
from typing import Optional, List, Dict, Any
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from api.models.feed_item import FeedItemStatus, RawFeedItem
from shared.config import settings
from shared.utils import generate_feed_item_id, get_utc_now, normalize_url

logger = logging.getLogger(__name__)


class FeedItemRepository:
    """Repository for FeedItem persistence."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.feed_items

    async def insert_if_new(
        self,
        source_id: str,
        item: RawFeedItem,
        fetched_at: Optional[datetime] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Insert a feed item unless it collides with an existing one.

        The unique (source_id, url_key) and (source_id, guid) indexes decide;
        returns None when the storage layer reports a duplicate.
        """
        now = get_utc_now()
        document = {
            "_id": generate_feed_item_id(),
            "source_id": source_id,
            "guid": item.guid,
            "url": item.url,
            "url_key": normalize_url(item.url) if item.url else None,
            "title": item.title,
            "content": item.content,
            "published_at": item.published_at,
            "fetched_at": fetched_at or now,
            "status": FeedItemStatus.PENDING.value,
            "article_id": None,
            "claimed_at": None,
            "error_message": None,
            "created_at": now,
            "updated_at": now
        }

        try:
            await self.collection.insert_one(document)
        except DuplicateKeyError:
            return None
        return document

    async def get(self, item_id: str) -> Optional[Dict[str, Any]]:
        """Get a feed item by ID."""
        return await self.collection.find_one({"_id": item_id})

    async def get_many(self, item_ids: List[str]) -> List[Dict[str, Any]]:
        """Get feed items by ID, preserving the requested order."""
        cursor = self.collection.find({"_id": {"$in": item_ids}})
        items = await cursor.to_list(length=len(item_ids))
        by_id = {item["_id"]: item for item in items}
        return [by_id[item_id] for item_id in item_ids if item_id in by_id]

    @staticmethod
    def _claimable() -> Dict[str, Any]:
        """Pending items, plus processing ones whose claim is older than the timeout."""
        stale_before = get_utc_now() - timedelta(seconds=settings.feed_item_claim_timeout)
        return {
            "$or": [
                {"status": FeedItemStatus.PENDING.value},
                {"status": FeedItemStatus.PROCESSING.value, "claimed_at": {"$lte": stale_before}}
            ]
        }

    async def list_pending(self, source_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Items of a source still waiting for an article, oldest first."""
        query = self._claimable()
        query["source_id"] = source_id
        cursor = self.collection.find(query).sort("fetched_at", 1).limit(limit)
        return await cursor.to_list(length=limit)

    async def claim(self, item_id: str) -> Optional[Dict[str, Any]]:
        """Move a claimable item to processing; None if someone else holds it."""
        now = get_utc_now()
        query = self._claimable()
        query["_id"] = item_id
        return await self.collection.find_one_and_update(
            query,
            {
                "$set": {
                    "status": FeedItemStatus.PROCESSING.value,
                    "claimed_at": now,
                    "updated_at": now
                }
            },
            return_document=True
        )

    async def mark_processed(self, item_id: str, article_id: str) -> bool:
        """Mark an item processed with a back-reference to its article."""
        result = await self.collection.update_one(
            {"_id": item_id},
            {
                "$set": {
                    "status": FeedItemStatus.PROCESSED.value,
                    "article_id": article_id,
                    "claimed_at": None,
                    "error_message": None,
                    "updated_at": get_utc_now()
                }
            }
        )
        return result.modified_count > 0

    async def release(self, item_id: str, error_message: Optional[str] = None) -> bool:
        """Return a processing item to pending so a later run can pick it up."""
        result = await self.collection.update_one(
            {"_id": item_id, "status": FeedItemStatus.PROCESSING.value},
            {
                "$set": {
                    "status": FeedItemStatus.PENDING.value,
                    "error_message": error_message,
                    "claimed_at": None,
                    "updated_at": get_utc_now()
                }
            }
        )
        return result.modified_count > 0
