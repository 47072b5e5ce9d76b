"""Publication orchestrator: idempotent, retryable publishing to external platforms."""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from api.models.publication import (
    PublicationContent,
    PublicationMetadata,
    PublicationModel,
    PublicationStatus,
    PublicationTarget,
)
from api.services.collaborators import PublishingClient, PublishResult
from api.services.lifecycle import ArticleLifecycleService, LifecycleStage
from database.repositories.article_repo import ArticleRepository
from database.repositories.publication_repo import PublicationRepository
from shared.config import settings
from shared.result import ErrorCode, Result
from shared.utils import calculate_exponential_backoff, ensure_utc, get_utc_now

logger = logging.getLogger(__name__)


@dataclass
class PublishOptions:
    """Caller options for a publish request."""
    scheduled_at: Optional[datetime] = None
    allow_duplicate: bool = False
    idempotency_key: Optional[str] = None


@dataclass
class PublishOutcome:
    """What a publish request resolved to."""
    publication_id: str
    status: str
    external_id: Optional[str] = None
    external_url: Optional[str] = None
    published_at: Optional[datetime] = None
    scheduled_at: Optional[datetime] = None
    retry_count: int = 0
    deduplicated: bool = False

    @classmethod
    def from_document(cls, publication: Dict[str, Any], deduplicated: bool = False) -> "PublishOutcome":
        return cls(
            publication_id=publication["_id"],
            status=publication["status"],
            external_id=publication.get("external_id"),
            external_url=publication.get("external_url"),
            published_at=publication.get("published_at"),
            scheduled_at=publication.get("scheduled_at"),
            retry_count=publication.get("retry_count", 0),
            deduplicated=deduplicated
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "publication_id": self.publication_id,
            "external_id": self.external_id,
            "external_url": self.external_url,
            "status": self.status,
            "published_at": self.published_at,
            "scheduled_at": self.scheduled_at,
            "retry_count": self.retry_count,
            "deduplicated": self.deduplicated
        }


def _failure_from_document(publication: Dict[str, Any]) -> Result[PublishOutcome]:
    error = publication.get("error") or {}
    retry_eligible = PublicationModel.model_validate(publication).awaits_retry()
    return Result.fail(
        error.get("code", ErrorCode.PUBLISHING_FAILED),
        error.get("message", "Publishing failed"),
        {
            "publication_id": publication["_id"],
            "retry_count": publication.get("retry_count", 0),
            "retry_eligible": retry_eligible
        },
        retryable=retry_eligible
    )


class PublicationOrchestrator:
    """Creates publication records and drives attempts against platform clients."""

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        clients: Dict[str, PublishingClient],
        lifecycle: ArticleLifecycleService,
        supported_platforms: Optional[List[str]] = None,
        max_retries: Optional[int] = None,
        item_delay: Optional[float] = None
    ):
        self.publication_repo = PublicationRepository(db)
        self.article_repo = ArticleRepository(db)
        self.clients = clients
        self.lifecycle = lifecycle
        self.supported_platforms = supported_platforms or settings.supported_platforms
        self.max_retries = settings.publication_max_retries if max_retries is None else max_retries
        self.item_delay = settings.publish_item_delay if item_delay is None else item_delay
        self.claim_timeout = settings.publication_claim_timeout

    def is_supported(self, platform: str) -> bool:
        return platform in self.supported_platforms and platform in self.clients

    async def publish(
        self,
        article_id: str,
        target: PublicationTarget,
        content: PublicationContent,
        metadata: Optional[PublicationMetadata] = None,
        options: Optional[PublishOptions] = None
    ) -> Result[PublishOutcome]:
        """
        Publish an article to a target.

        - A known idempotency key returns the original result, no new attempt.
        - Unsupported platforms are rejected (not retryable).
        - Unless duplicates are allowed, an existing non-failed publication
          for the same (article, target) is returned instead of a new one.
        - Otherwise a pending (or scheduled) record snapshots the content and
          metadata, and pending records are attempted right away.
        """
        options = options or PublishOptions()
        metadata = metadata or PublicationMetadata()

        if options.idempotency_key:
            existing = await self.publication_repo.get_by_idempotency_key(options.idempotency_key)
            if existing is not None:
                if existing["article_id"] != article_id:
                    return Result.fail(
                        ErrorCode.VALIDATION_ERROR,
                        "Idempotency key was already used for a different article",
                        {"idempotency_key": options.idempotency_key}
                    )
                logger.info(f"Idempotency key {options.idempotency_key} replays publication {existing['_id']}")
                return self._result_for(existing, deduplicated=True)

        if not self.is_supported(target.platform):
            return Result.fail(
                ErrorCode.UNSUPPORTED_PLATFORM,
                f"Platform '{target.platform}' is not supported",
                {"platform": target.platform, "supported": list(self.supported_platforms)},
                retryable=False
            )

        article = await self.article_repo.get_article(article_id)
        if article is None:
            return Result.fail(ErrorCode.NOT_FOUND, f"Article {article_id} not found", {"article_id": article_id})

        if not options.allow_duplicate:
            active = await self.publication_repo.find_active(article_id, target.target_key)
            if active is not None:
                logger.info(f"Article {article_id} already has publication {active['_id']} on {target.target_key}")
                return self._result_for(active, deduplicated=True)

        now = get_utc_now()
        scheduled_at = ensure_utc(options.scheduled_at)
        status = PublicationStatus.SCHEDULED if scheduled_at and scheduled_at > now else PublicationStatus.PENDING

        publication, is_new = await self.publication_repo.create_publication(
            article_id=article_id,
            target=target.model_dump(),
            target_key=target.target_key,
            status=status,
            content=content.model_dump(),
            metadata=metadata.model_dump(),
            max_retries=self.max_retries,
            scheduled_at=scheduled_at,
            idempotency_key=options.idempotency_key,
            exclusive=not options.allow_duplicate
        )
        if not is_new:
            # Lost a race against a concurrent request for the same slot or key
            return self._result_for(publication, deduplicated=True)

        if status == PublicationStatus.SCHEDULED:
            logger.info(f"Publication {publication['_id']} scheduled for {scheduled_at.isoformat()}")
            return Result.ok(PublishOutcome.from_document(publication))

        return await self.attempt(publication)

    def _result_for(self, publication: Dict[str, Any], deduplicated: bool) -> Result[PublishOutcome]:
        if publication["status"] == PublicationStatus.FAILED.value:
            return _failure_from_document(publication)
        return Result.ok(PublishOutcome.from_document(publication, deduplicated=deduplicated))

    async def attempt(self, publication: Dict[str, Any]) -> Result[PublishOutcome]:
        """Run one external publish attempt for a stored publication."""
        publication_id = publication["_id"]
        client = self.clients.get(publication["target"]["platform"])

        try:
            result = await client.publish(publication["target"], publication["content"], publication["metadata"])
        except Exception as e:
            logger.error(f"Publishing client raised for publication {publication_id}: {e}")
            result = PublishResult(success=False, error=str(e), error_code=ErrorCode.PUBLISHING_FAILED)

        now = get_utc_now()
        if result.success:
            updated = await self.publication_repo.mark_completed(publication_id, result.external_id, result.external_url, now)
            logger.info(f"Publication {publication_id} completed: {result.external_url}")
            await self._sync_article(publication["article_id"], True, {"published_at": now})
            return Result.ok(PublishOutcome.from_document(updated))

        attempts = publication.get("retry_count", 0) + 1
        retry_eligible = result.retryable and attempts < publication["max_retries"]
        next_attempt_at = None
        if retry_eligible:
            delay = calculate_exponential_backoff(attempts - 1, settings.retry_base_delay, settings.retry_max_delay)
            next_attempt_at = now + timedelta(seconds=delay)

        error = {
            "code": result.error_code or ErrorCode.PUBLISHING_FAILED,
            "message": result.error or "Publishing failed",
            "details": result.details or {},
            "retryable": result.retryable,
            "occurred_at": now
        }
        await self.publication_repo.mark_failed(publication_id, error, next_attempt_at)
        logger.error(
            f"Publication {publication_id} failed (attempt {attempts}/{publication['max_retries']}): {error['message']}"
        )

        if not retry_eligible:
            await self._sync_article(publication["article_id"], False, {"error_message": error["message"]})

        return Result.fail(
            error["code"],
            error["message"],
            {"publication_id": publication_id, "retry_count": attempts, "retry_eligible": retry_eligible},
            retryable=retry_eligible
        )

    async def _sync_article(self, article_id: str, succeeded: bool, fields: Dict[str, Any]):
        result = await self.lifecycle.advance(article_id, LifecycleStage.PUBLISH, succeeded, fields)
        if not result.success:
            # Already published through another target, or moved on concurrently
            logger.debug(f"Article {article_id} not advanced after publication: {result.error.message}")

    async def dispatch_ready(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> List[Result[PublishOutcome]]:
        """
        Attempt pending and due scheduled publications, one at a time.

        Each record is claimed before its attempt, so a publication whose
        attempt is already running elsewhere is not sent twice.
        """
        now = now or get_utc_now()
        claimed_before = self._claim_cutoff()
        documents = await self.publication_repo.list_ready(now, claimed_before, limit or settings.publish_batch_size)

        results = []
        for publication in documents:
            if not PublicationModel.model_validate(publication).is_ready_for_execution(now):
                continue
            claimed = await self.publication_repo.claim_for_attempt(publication["_id"], claimed_before)
            if claimed is None:
                logger.info(f"Skipping publication {publication['_id']}: an attempt is already in flight")
                continue
            if results and self.item_delay > 0:
                await asyncio.sleep(self.item_delay)
            results.append(await self.attempt(claimed))
        return results

    def _claim_cutoff(self) -> datetime:
        return get_utc_now() - timedelta(seconds=self.claim_timeout)

    async def retry_failed(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> List[Result[PublishOutcome]]:
        """Retry failed publications whose backoff has elapsed and that have attempts left."""
        now = now or get_utc_now()
        documents = await self.publication_repo.list_failed_due(now, limit or settings.publish_batch_size)

        results = []
        for publication in documents:
            if not PublicationModel.model_validate(publication).is_retry_eligible():
                continue
            claimed = await self.publication_repo.claim_for_retry(publication)
            if claimed is None:
                logger.info(f"Skipping retry of {publication['_id']}: superseded or already being retried")
                continue
            if results and self.item_delay > 0:
                await asyncio.sleep(self.item_delay)
            results.append(await self.attempt(claimed))
        return results

    async def get_publication(self, publication_id: str) -> Result[Dict[str, Any]]:
        publication = await self.publication_repo.get_publication(publication_id)
        if publication is None:
            return Result.fail(ErrorCode.NOT_FOUND, f"Publication {publication_id} not found", {"publication_id": publication_id})
        return Result.ok(publication)

    async def list_publications(
        self,
        article_id: Optional[str] = None,
        status: Optional[PublicationStatus] = None,
        limit: int = 50
    ) -> List[Dict[str, Any]]:
        return await self.publication_repo.list_publications(article_id, status, limit)
