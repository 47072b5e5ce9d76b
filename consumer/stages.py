"""Background stage runners that move articles along their lifecycle in batches."""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError

from api.models.article import ArticleStatus
from api.models.publication import PublicationContent, PublicationMetadata, PublicationTarget
from api.models.source import AutomationFlags
from api.services.collaborators import ImageGenerator
from api.services.lifecycle import ArticleLifecycleService, LifecycleStage
from api.services.publisher import PublicationOrchestrator, PublishOptions
from database.repositories.article_repo import ArticleRepository
from database.repositories.source_repo import SourceRepository
from shared.config import settings

logger = logging.getLogger(__name__)


@dataclass
class StageReport:
    """What one pass of a stage runner did."""
    stage: str
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    article_ids: List[str] = field(default_factory=list)


async def _pause(index: int, delay: float):
    if index > 0 and delay > 0:
        await asyncio.sleep(delay)


class ImageStageRunner:
    """Generates featured images for articles waiting in generated_image_draft."""

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        image_generator: ImageGenerator,
        lifecycle: ArticleLifecycleService,
        batch_size: Optional[int] = None,
        item_delay: Optional[float] = None
    ):
        self.article_repo = ArticleRepository(db)
        self.image_generator = image_generator
        self.lifecycle = lifecycle
        self.batch_size = batch_size or settings.image_batch_size
        self.item_delay = settings.image_item_delay if item_delay is None else item_delay

    async def run_once(self) -> StageReport:
        report = StageReport(stage=LifecycleStage.IMAGE.value)
        articles = await self.article_repo.list_by_status([ArticleStatus.GENERATED_IMAGE_DRAFT], self.batch_size)

        for index, article in enumerate(articles):
            await _pause(index, self.item_delay)
            report.processed += 1

            try:
                image = await self.image_generator.generate_image(article["title"], article.get("excerpt"))
                succeeded, error = image.success, image.error
            except Exception as e:
                logger.error(f"Image generation raised for article {article['_id']}: {e}")
                image, succeeded, error = None, False, str(e)

            if succeeded:
                fields = {"featured_media_id": image.media_id, "featured_media_url": image.media_url}
            else:
                fields = {"error_message": error or "Image generation failed"}

            result = await self.lifecycle.advance(article["_id"], LifecycleStage.IMAGE, succeeded, fields)
            if result.success and succeeded:
                report.succeeded += 1
                report.article_ids.append(article["_id"])
            elif result.success:
                report.failed += 1
            else:
                report.skipped += 1
                logger.info(f"Image result for article {article['_id']} not applied: {result.error.message}")

        return report


class PromotionStageRunner:
    """Promotes finished articles to ready_to_publish for sources that auto-publish."""

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        lifecycle: ArticleLifecycleService,
        batch_size: Optional[int] = None
    ):
        self.article_repo = ArticleRepository(db)
        self.source_repo = SourceRepository(db)
        self.lifecycle = lifecycle
        self.batch_size = batch_size or settings.promotion_batch_size

    async def run_once(self) -> StageReport:
        report = StageReport(stage=LifecycleStage.AUTO_PROMOTE.value)
        sources = await self.source_repo.list_sources()
        flags_by_source = {source.id: AutomationFlags.from_configuration(source.configuration) for source in sources}
        source_ids = [source_id for source_id, flags in flags_by_source.items() if flags.auto_publish]
        if not source_ids:
            return report

        articles = await self.article_repo.list_by_status(
            [ArticleStatus.GENERATED, ArticleStatus.GENERATED_WITH_IMAGE],
            self.batch_size,
            source_ids
        )
        for article in articles:
            report.processed += 1
            result = await self.lifecycle.advance(
                article["_id"],
                LifecycleStage.AUTO_PROMOTE,
                flags=flags_by_source[article["source_id"]]
            )
            if result.success:
                report.succeeded += 1
                report.article_ids.append(article["_id"])
            else:
                report.skipped += 1
        return report


class PublishStageRunner:
    """Publishes ready_to_publish articles to their source's configured target."""

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        publisher: PublicationOrchestrator,
        batch_size: Optional[int] = None,
        item_delay: Optional[float] = None
    ):
        self.article_repo = ArticleRepository(db)
        self.source_repo = SourceRepository(db)
        self.publisher = publisher
        self.batch_size = batch_size or settings.publish_batch_size
        self.item_delay = settings.publish_item_delay if item_delay is None else item_delay

    def _target_for(self, source) -> Optional[PublicationTarget]:
        raw = (source.configuration if source else {}).get("publication_target")
        if not raw:
            return None
        try:
            return PublicationTarget.model_validate(raw)
        except ValidationError as e:
            logger.error(f"Source {source.id} has an invalid publication_target: {e}")
            return None

    async def run_once(self) -> StageReport:
        """
        Hand ready articles of sources with a valid target to the publisher.

        Each article is handed off once; retries of its publication belong to
        the publisher's retry sweep, so stuck articles never crowd the batch.
        """
        report = StageReport(stage=LifecycleStage.PUBLISH.value)
        targets = {}
        for source in await self.source_repo.list_sources():
            target = self._target_for(source)
            if target is not None:
                targets[source.id] = target
        if not targets:
            return report

        articles = await self.article_repo.list_awaiting_auto_publish(list(targets), self.batch_size)
        for index, article in enumerate(articles):
            target = targets[article["source_id"]]
            await _pause(index, self.item_delay)
            report.processed += 1
            await self.article_repo.mark_auto_publish_requested(article["_id"])

            result = await self.publisher.publish(
                article_id=article["_id"],
                target=target,
                content=PublicationContent(
                    title=article["title"],
                    content=article["content"],
                    excerpt=article.get("excerpt"),
                    slug=article.get("slug")
                ),
                metadata=PublicationMetadata(featured_media_id=article.get("featured_media_id")),
                options=PublishOptions(idempotency_key=f"auto-publish:{article['_id']}:{target.target_key}")
            )
            if result.success:
                report.succeeded += 1
                report.article_ids.append(article["_id"])
            else:
                report.failed += 1
        return report
