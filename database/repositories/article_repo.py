"""Article repository for CRUD operations on Articles collection."""
from typing import Optional, List, Dict, Any
from motor.motor_asyncio import AsyncIOMotorDatabase

from api.models.article import ArticleStatus
from shared.utils import generate_article_id, get_utc_now, slugify, to_document


class ArticleRepository:
    """Repository for Article CRUD operations."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.articles

    async def create_article(
        self,
        source_id: str,
        title: str,
        content: str,
        status: ArticleStatus,
        feed_item_id: Optional[str] = None,
        excerpt: Optional[str] = None,
        generation: Optional[Dict[str, Any]] = None,
        seo_title: Optional[str] = None,
        seo_description: Optional[str] = None
    ) -> Dict[str, Any]:
        """Create a new article record."""
        now = get_utc_now()

        article = {
            "_id": generate_article_id(),
            "source_id": source_id,
            "feed_item_id": feed_item_id,
            "title": title,
            "content": content,
            "excerpt": excerpt,
            "status": status.value,
            "version": 0,
            "generation": to_document(generation) if generation else None,
            "slug": slugify(title),
            "seo_title": seo_title or title,
            "seo_description": seo_description or excerpt,
            "featured_media_id": None,
            "featured_media_url": None,
            "error_message": None,
            "created_at": now,
            "updated_at": now,
            "published_at": None,
            "auto_publish_requested_at": None
        }

        await self.collection.insert_one(article)
        return article

    async def get_article(self, article_id: str) -> Optional[Dict[str, Any]]:
        """Get an article by ID."""
        return await self.collection.find_one({"_id": article_id})

    async def list_by_status(
        self,
        statuses: List[ArticleStatus],
        limit: int = 10,
        source_ids: Optional[List[str]] = None
    ) -> List[Dict[str, Any]]:
        """Articles in any of the given statuses, oldest first."""
        query: Dict[str, Any] = {"status": {"$in": [s.value for s in statuses]}}
        if source_ids is not None:
            query["source_id"] = {"$in": source_ids}
        cursor = self.collection.find(query).sort("created_at", 1).limit(limit)
        return await cursor.to_list(length=limit)

    async def list_awaiting_auto_publish(self, source_ids: List[str], limit: int = 10) -> List[Dict[str, Any]]:
        """Ready articles of the given sources not yet handed to the publisher, oldest first."""
        cursor = self.collection.find({
            "status": ArticleStatus.READY_TO_PUBLISH.value,
            "source_id": {"$in": source_ids},
            "auto_publish_requested_at": None
        }).sort("created_at", 1).limit(limit)
        return await cursor.to_list(length=limit)

    async def mark_auto_publish_requested(self, article_id: str) -> bool:
        """Record that auto-publishing handed the article off; later outcomes belong to its publication."""
        now = get_utc_now()
        result = await self.collection.update_one(
            {"_id": article_id},
            {"$set": {"auto_publish_requested_at": now, "updated_at": now}}
        )
        return result.modified_count > 0

    async def transition(
        self,
        article_id: str,
        expected_status: ArticleStatus,
        expected_version: int,
        new_status: ArticleStatus,
        fields: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """
        Compare-and-set a status change.

        Only applies when the stored status and version still match what the
        caller read; returns the updated article or None on a mismatch.
        """
        update_fields = dict(fields or {})
        update_fields["status"] = new_status.value
        update_fields["updated_at"] = get_utc_now()

        return await self.collection.find_one_and_update(
            {
                "_id": article_id,
                "status": expected_status.value,
                "version": expected_version
            },
            {
                "$set": to_document(update_fields),
                "$inc": {"version": 1}
            },
            return_document=True
        )
