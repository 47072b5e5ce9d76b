"""Sources module: ingestion of fetched feed items."""
from typing import List

from api.admin.base import AdminFacade, UseCase
from api.models.feed_item import FeedItemModel
from api.models.source import SourceSnapshot
from api.schemas.requests import ExecutionOptions, IngestFeedItemsInput, ListPendingFeedItemsInput
from api.services.ingestion import identity_key
from database.repositories.feed_item_repo import FeedItemRepository
from shared.result import Result


def _ingest_warnings(request: IngestFeedItemsInput) -> List[str]:
    warnings = []
    seen = set()
    duplicates = 0
    unidentifiable = 0
    for item in request.items:
        key = identity_key(item)
        if key is None:
            unidentifiable += 1
        elif key in seen:
            duplicates += 1
        else:
            seen.add(key)

    if unidentifiable:
        warnings.append(f"{unidentifiable} item(s) have neither guid nor url and cannot be deduplicated")
    if duplicates:
        warnings.append(f"{duplicates} item(s) repeat an identity already in this batch and will be skipped")
    return warnings


async def _ingest_feed_items(container, request: IngestFeedItemsInput, options: ExecutionOptions) -> Result:
    source = SourceSnapshot(
        id=request.source_id,
        name=request.source_name,
        type=request.source_type,
        status=request.source_status,
        configuration=request.source_configuration
    )
    report = await container.ingestion.ingest_and_announce(source, request.items)
    return Result.ok(report.to_dict())


async def _list_pending_feed_items(container, request: ListPendingFeedItemsInput, options: ExecutionOptions) -> Result:
    documents = await FeedItemRepository(container.db).list_pending(request.source_id, request.limit)
    items = [FeedItemModel.model_validate(doc).model_dump(mode="json") for doc in documents]
    return Result.ok({"source_id": request.source_id, "count": len(items), "items": items})


class SourcesFacade(AdminFacade):
    module = "sources"

    def register_use_cases(self):
        self.register(UseCase(
            name="IngestFeedItems",
            description="Store the genuinely new items of a fetched batch and announce them",
            input_model=IngestFeedItemsInput,
            handler=_ingest_feed_items,
            side_effects=["writes feed_items", "writes sources", "publishes new-feed-items event"],
            idempotent=True,
            risk_level="medium",
            warnings=_ingest_warnings
        ))
        self.register(UseCase(
            name="ListPendingFeedItems",
            description="Feed items of a source still waiting for generation, oldest first",
            input_model=ListPendingFeedItemsInput,
            handler=_list_pending_feed_items,
            idempotent=True
        ))
