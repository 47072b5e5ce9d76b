"""Publication repository for the publications collection."""
from datetime import datetime
from typing import Optional, List, Dict, Any, Tuple
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import DuplicateKeyError

from api.models.publication import PublicationStatus
from shared.utils import generate_publication_id, get_utc_now


def active_slot_for(article_id: str, target_key: str) -> str:
    """Key held by the single non-failed publication of an (article, target) pair."""
    return f"{article_id}|{target_key}"


class PublicationRepository:
    """Repository for Publication persistence."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.publications

    async def create_publication(
        self,
        article_id: str,
        target: Dict[str, Any],
        target_key: str,
        status: PublicationStatus,
        content: Dict[str, Any],
        metadata: Dict[str, Any],
        max_retries: int,
        scheduled_at: Optional[datetime] = None,
        idempotency_key: Optional[str] = None,
        exclusive: bool = True
    ) -> Tuple[Dict[str, Any], bool]:
        """
        Create a publication record. Returns (publication, is_new).

        When the unique active-slot or idempotency-key index rejects the
        insert, the record that won is returned instead. A pending record is
        created already claimed by its creator, so sweeps leave it alone.
        """
        now = get_utc_now()
        active_slot = active_slot_for(article_id, target_key) if exclusive else None
        claimed_at = now if status == PublicationStatus.PENDING else None

        publication = {
            "_id": generate_publication_id(),
            "article_id": article_id,
            "target": target,
            "target_key": target_key,
            "status": status.value,
            "retry_count": 0,
            "max_retries": max_retries,
            "external_id": None,
            "external_url": None,
            "scheduled_at": scheduled_at,
            "published_at": None,
            "next_attempt_at": None,
            "content": content,
            "metadata": metadata,
            "error": None,
            "idempotency_key": idempotency_key,
            "active_slot": active_slot,
            "claimed_at": claimed_at,
            "created_at": now,
            "updated_at": now
        }

        try:
            await self.collection.insert_one(publication)
            return publication, True
        except DuplicateKeyError:
            existing = None
            if idempotency_key:
                existing = await self.get_by_idempotency_key(idempotency_key)
            if existing is None and active_slot:
                existing = await self.collection.find_one({"active_slot": active_slot})
            if existing is None:
                raise
            return existing, False

    async def get_publication(self, publication_id: str) -> Optional[Dict[str, Any]]:
        """Get a publication by ID."""
        return await self.collection.find_one({"_id": publication_id})

    async def get_by_idempotency_key(self, idempotency_key: str) -> Optional[Dict[str, Any]]:
        """Get the publication created under an idempotency key."""
        return await self.collection.find_one({"idempotency_key": idempotency_key})

    async def find_active(self, article_id: str, target_key: str) -> Optional[Dict[str, Any]]:
        """Get the non-failed publication for an (article, target) pair, if any."""
        return await self.collection.find_one({
            "article_id": article_id,
            "target_key": target_key,
            "status": {"$ne": PublicationStatus.FAILED.value}
        })

    async def list_publications(
        self,
        article_id: Optional[str] = None,
        status: Optional[PublicationStatus] = None,
        limit: int = 50
    ) -> List[Dict[str, Any]]:
        """List publications, newest first."""
        query: Dict[str, Any] = {}
        if article_id:
            query["article_id"] = article_id
        if status:
            query["status"] = status.value
        cursor = self.collection.find(query).sort("created_at", -1).limit(limit)
        return await cursor.to_list(length=limit)

    async def list_ready(self, now: datetime, claimed_before: datetime, limit: int = 10) -> List[Dict[str, Any]]:
        """
        Pending publications plus scheduled ones whose time has come.

        Records with an attempt in flight are left out unless their claim is
        older than ``claimed_before``.
        """
        cursor = self.collection.find({
            "$and": [
                {
                    "$or": [
                        {"status": PublicationStatus.PENDING.value},
                        {
                            "status": PublicationStatus.SCHEDULED.value,
                            "scheduled_at": {"$lte": now}
                        }
                    ]
                },
                {"$or": [{"claimed_at": None}, {"claimed_at": {"$lte": claimed_before}}]}
            ]
        }).sort("created_at", 1).limit(limit)
        return await cursor.to_list(length=limit)

    async def claim_for_attempt(self, publication_id: str, claimed_before: datetime) -> Optional[Dict[str, Any]]:
        """
        Claim a pending or scheduled publication for one external attempt.

        Succeeds only when nobody holds the record, or the previous claim is
        older than ``claimed_before``. None if the claim lost.
        """
        now = get_utc_now()
        return await self.collection.find_one_and_update(
            {
                "_id": publication_id,
                "status": {"$in": [PublicationStatus.PENDING.value, PublicationStatus.SCHEDULED.value]},
                "$or": [{"claimed_at": None}, {"claimed_at": {"$lte": claimed_before}}]
            },
            {"$set": {"claimed_at": now, "updated_at": now}},
            return_document=True
        )

    async def list_failed_due(self, now: datetime, limit: int = 10) -> List[Dict[str, Any]]:
        """Failed publications whose backoff has elapsed."""
        cursor = self.collection.find({
            "status": PublicationStatus.FAILED.value,
            "next_attempt_at": {"$lte": now}
        }).sort("next_attempt_at", 1).limit(limit)
        return await cursor.to_list(length=limit)

    async def mark_completed(
        self,
        publication_id: str,
        external_id: Optional[str],
        external_url: Optional[str],
        published_at: datetime
    ) -> Optional[Dict[str, Any]]:
        """Record a successful attempt."""
        return await self.collection.find_one_and_update(
            {"_id": publication_id},
            {
                "$set": {
                    "status": PublicationStatus.COMPLETED.value,
                    "external_id": external_id,
                    "external_url": external_url,
                    "published_at": published_at,
                    "next_attempt_at": None,
                    "claimed_at": None,
                    "error": None,
                    "updated_at": get_utc_now()
                }
            },
            return_document=True
        )

    async def mark_failed(
        self,
        publication_id: str,
        error: Dict[str, Any],
        next_attempt_at: Optional[datetime]
    ) -> Optional[Dict[str, Any]]:
        """Record a failed attempt and release the active slot."""
        return await self.collection.find_one_and_update(
            {"_id": publication_id},
            {
                "$set": {
                    "status": PublicationStatus.FAILED.value,
                    "error": error,
                    "active_slot": None,
                    "next_attempt_at": next_attempt_at,
                    "claimed_at": None,
                    "updated_at": get_utc_now()
                },
                "$inc": {"retry_count": 1}
            },
            return_document=True
        )

    async def claim_for_retry(self, publication: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Put a failed publication back to pending for another attempt.

        Retakes the active slot, so a retry never runs next to another
        non-failed publication of the same pair, and claims the record for
        the attempt. None if the claim lost.
        """
        now = get_utc_now()
        try:
            return await self.collection.find_one_and_update(
                {
                    "_id": publication["_id"],
                    "status": PublicationStatus.FAILED.value,
                    "retry_count": publication["retry_count"]
                },
                {
                    "$set": {
                        "status": PublicationStatus.PENDING.value,
                        "active_slot": active_slot_for(publication["article_id"], publication["target_key"]),
                        "claimed_at": now,
                        "updated_at": now
                    }
                },
                return_document=True
            )
        except DuplicateKeyError:
            await self.mark_superseded(publication["_id"])
            return None

    async def mark_superseded(self, publication_id: str) -> bool:
        """Take a failed publication out of the retry sweep; a newer one holds its slot."""
        result = await self.collection.update_one(
            {"_id": publication_id, "status": PublicationStatus.FAILED.value},
            {"$set": {"next_attempt_at": None, "superseded": True, "updated_at": get_utc_now()}}
        )
        return result.modified_count > 0
