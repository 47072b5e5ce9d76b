"""Source snapshot repository."""
from typing import Optional, List, Dict, Any
from motor.motor_asyncio import AsyncIOMotorDatabase

from api.models.source import SourceSnapshot
from shared.utils import get_utc_now


class SourceRepository:
    """Keeps the latest known snapshot of each source."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.collection = db.sources

    async def upsert(self, source: SourceSnapshot) -> SourceSnapshot:
        """Store a source snapshot, replacing any earlier one."""
        now = get_utc_now()
        await self.collection.update_one(
            {"_id": source.id},
            {
                "$set": {
                    "name": source.name,
                    "type": source.type,
                    "status": source.status,
                    "configuration": source.configuration,
                    "updated_at": now
                }
            },
            upsert=True
        )
        return source.model_copy(update={"updated_at": now})

    async def get(self, source_id: str) -> Optional[SourceSnapshot]:
        """Get a source snapshot by ID."""
        document = await self.collection.find_one({"_id": source_id})
        return SourceSnapshot.model_validate(document) if document else None

    async def get_many(self, source_ids: List[str]) -> Dict[str, SourceSnapshot]:
        """Map of source ID to snapshot for the given IDs."""
        if not source_ids:
            return {}
        cursor = self.collection.find({"_id": {"$in": source_ids}})
        documents = await cursor.to_list(length=len(source_ids))
        return {doc["_id"]: SourceSnapshot.model_validate(doc) for doc in documents}

    async def list_sources(self) -> List[SourceSnapshot]:
        """All known source snapshots."""
        cursor = self.collection.find({}).sort("_id", 1)
        documents = await cursor.to_list(length=None)
        return [SourceSnapshot.model_validate(doc) for doc in documents]
