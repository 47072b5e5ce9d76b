"""Deduplicating ingestion of fetched feed items."""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from motor.motor_asyncio import AsyncIOMotorDatabase

from api.models.feed_item import FeedItemModel, RawFeedItem
from api.models.source import AutomationFlags, SourceSnapshot
from api.services.event_bus import EventBus, new_feed_items_detected
from database.repositories.feed_item_repo import FeedItemRepository
from database.repositories.source_repo import SourceRepository
from shared.utils import get_utc_now, normalize_url

logger = logging.getLogger(__name__)


def identity_key(item: RawFeedItem) -> Optional[Tuple[str, str]]:
    """Identity of a raw item: guid when present, otherwise its normalized url."""
    if item.guid:
        return ("guid", item.guid)
    if item.url:
        return ("url", normalize_url(item.url))
    return None


@dataclass
class IngestionReport:
    """Outcome of ingesting one fetched batch."""
    source_id: str
    received: int
    inserted: List[FeedItemModel] = field(default_factory=list)
    unidentifiable: int = 0

    @property
    def skipped(self) -> int:
        return self.received - len(self.inserted)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "received": self.received,
            "inserted": len(self.inserted),
            "skipped": self.skipped,
            "unidentifiable": self.unidentifiable,
            "feed_item_ids": [item.id for item in self.inserted]
        }


class IngestionGate:
    """Turns a raw fetched batch into the set of genuinely new feed items."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.feed_item_repo = FeedItemRepository(db)

    async def ingest(self, source_id: str, raw_items: List[RawFeedItem]) -> IngestionReport:
        """
        Insert each item individually and keep the ones that were new.

        Uniqueness is decided by the storage indexes, so two overlapping
        fetch cycles cannot both insert the same item. A duplicate is a
        silent skip. Items with neither guid nor url are always inserted.
        """
        report = IngestionReport(source_id=source_id, received=len(raw_items))
        fetched_at = get_utc_now()

        for raw in raw_items:
            key = identity_key(raw)
            if key is None:
                report.unidentifiable += 1
                logger.warning(
                    f"Feed item '{raw.title[:60]}' from source {source_id} has no guid or url; "
                    f"it cannot be deduplicated"
                )

            document = await self.feed_item_repo.insert_if_new(source_id, raw, fetched_at)
            if document is None:
                logger.debug(f"Skipping duplicate feed item {key} for source {source_id}")
                continue
            report.inserted.append(FeedItemModel.model_validate(document))

        logger.info(
            f"Ingested {len(report.inserted)}/{report.received} items for source {source_id} "
            f"({report.skipped} duplicates skipped)"
        )
        return report


class SourceIngestionService:
    """Stores the source snapshot, runs the gate and announces what was new."""

    def __init__(self, db: AsyncIOMotorDatabase, event_bus: EventBus):
        self.gate = IngestionGate(db)
        self.source_repo = SourceRepository(db)
        self.event_bus = event_bus

    async def ingest_and_announce(self, source: SourceSnapshot, raw_items: List[RawFeedItem]) -> IngestionReport:
        await self.source_repo.upsert(source)
        report = await self.gate.ingest(source.id, raw_items)

        if report.inserted:
            event = new_feed_items_detected(
                source_id=source.id,
                source_configuration=source.configuration,
                new_feed_items=[item.to_summary().model_dump() for item in report.inserted],
                source_name=source.name,
                source_type=source.type,
                has_auto_generation=AutomationFlags.from_configuration(source.configuration).auto_generate
            )
            await self.event_bus.publish(event)

        return report
