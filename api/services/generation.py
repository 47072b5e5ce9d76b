"""Article generation pipeline: feed item in, article in its initial status out."""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup
from motor.motor_asyncio import AsyncIOMotorDatabase

from api.models.article import GenerationMetadata
from api.models.source import AutomationFlags
from api.services.collaborators import TextGenerator
from api.services.lifecycle import initial_status
from database.repositories.article_repo import ArticleRepository
from database.repositories.feed_item_repo import FeedItemRepository
from database.repositories.source_repo import SourceRepository
from shared.result import ErrorCode, Result
from shared.utils import get_utc_now

logger = logging.getLogger(__name__)


def make_excerpt(content: str, max_length: int = 160) -> str:
    """Plain-text excerpt of (possibly HTML) content."""
    text = " ".join(BeautifulSoup(content or "", "html.parser").get_text(separator=" ").split())
    if len(text) <= max_length:
        return text
    return text[:max_length].rsplit(" ", 1)[0] + "..."


class ArticleGenerator:
    """Turns pending feed items into articles."""

    def __init__(self, db: AsyncIOMotorDatabase, text_generator: TextGenerator):
        self.feed_item_repo = FeedItemRepository(db)
        self.article_repo = ArticleRepository(db)
        self.source_repo = SourceRepository(db)
        self.text_generator = text_generator

    async def generate_for_feed_item(
        self,
        feed_item_id: str,
        flags: Optional[AutomationFlags] = None
    ) -> Result[Dict[str, Any]]:
        """
        Generate one article from a feed item.

        The item is claimed (pending -> processing) first so two runs cannot
        generate it twice. On any failure it goes back to pending for a later
        run, and a claim abandoned by a crashed worker expires after
        ``feed_item_claim_timeout``.
        """
        item = await self.feed_item_repo.claim(feed_item_id)
        if item is None:
            existing = await self.feed_item_repo.get(feed_item_id)
            if existing is None:
                return Result.fail(ErrorCode.NOT_FOUND, f"Feed item {feed_item_id} not found", {"feed_item_id": feed_item_id})
            return Result.fail(
                ErrorCode.INVALID_TRANSITION,
                f"Feed item {feed_item_id} is not pending",
                {"feed_item_id": feed_item_id, "status": existing["status"]}
            )

        try:
            return await self._generate_claimed(item, flags)
        except Exception as e:
            logger.error(f"Generation for feed item {feed_item_id} aborted: {e}")
            await self.feed_item_repo.release(feed_item_id, str(e))
            return Result.fail(ErrorCode.GENERATION_FAILED, str(e), {"feed_item_id": feed_item_id}, retryable=True)

    async def _generate_claimed(
        self,
        item: Dict[str, Any],
        flags: Optional[AutomationFlags]
    ) -> Result[Dict[str, Any]]:
        feed_item_id = item["_id"]
        if flags is None:
            source = await self.source_repo.get(item["source_id"])
            flags = AutomationFlags.from_configuration(source.configuration if source else None)

        generated = await self.text_generator.generate_article(item["title"], item["content"], item.get("url"))
        if not generated.success:
            logger.error(f"Generation failed for feed item {feed_item_id}: {generated.error}")
            await self.feed_item_repo.release(feed_item_id, generated.error)
            return Result.fail(
                ErrorCode.GENERATION_FAILED,
                generated.error or "Text generation failed",
                {"feed_item_id": feed_item_id},
                retryable=True
            )

        metadata = GenerationMetadata(
            prompt=generated.prompt,
            system_prompt=generated.system_prompt,
            model=generated.model,
            prompt_tokens=generated.prompt_tokens,
            completion_tokens=generated.completion_tokens,
            cost=generated.cost,
            duration_ms=generated.duration_ms,
            generated_at=get_utc_now()
        )
        article = await self.article_repo.create_article(
            source_id=item["source_id"],
            feed_item_id=feed_item_id,
            title=generated.title or item["title"],
            content=generated.content,
            status=initial_status(flags),
            excerpt=generated.excerpt or make_excerpt(generated.content),
            generation=metadata.model_dump(),
            seo_title=generated.seo_title,
            seo_description=generated.seo_description
        )
        await self.feed_item_repo.mark_processed(feed_item_id, article["_id"])

        logger.info(f"Generated article {article['_id']} ({article['status']}) from feed item {feed_item_id}")
        return Result.ok(article)

    async def generate_batch(
        self,
        feed_item_ids: List[str],
        flags: Optional[AutomationFlags] = None,
        item_delay: float = 0.0
    ) -> List[Result[Dict[str, Any]]]:
        """Generate sequentially, pausing between items to respect provider limits."""
        results = []
        for index, feed_item_id in enumerate(feed_item_ids):
            if index > 0 and item_delay > 0:
                await asyncio.sleep(item_delay)
            results.append(await self.generate_for_feed_item(feed_item_id, flags))
        return results
