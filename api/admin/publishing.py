"""Publishing module: publish requests, queries and sweeps."""
from typing import List

from api.admin.base import AdminFacade, UseCase
from api.models.publication import PublicationModel
from api.schemas.requests import (
    ExecutionOptions,
    GetPublicationsInput,
    PublishArticleInput,
    SweepInput,
)
from api.services.publisher import PublishOptions
from shared.result import Result
from shared.utils import ensure_utc, get_utc_now


def _publication_view(document) -> dict:
    return PublicationModel.model_validate(document).model_dump(mode="json")


def _sweep_summary(results: List[Result]) -> dict:
    return {
        "attempted": len(results),
        "succeeded": sum(1 for result in results if result.success),
        "failed": sum(1 for result in results if not result.success),
        "results": [
            result.value.to_dict() if result.success else result.error.to_dict()
            for result in results
        ]
    }


def _publish_warnings(request: PublishArticleInput) -> List[str]:
    warnings = []
    configuration = request.target.configuration
    if request.target.platform == "wordpress" and not (configuration.get("username") and configuration.get("password")):
        warnings.append("WordPress target has no username/password; the site may reject the request")
    if request.scheduled_at is not None and ensure_utc(request.scheduled_at) <= get_utc_now():
        warnings.append("scheduled_at is in the past; the article will be published immediately")
    if request.allow_duplicate:
        warnings.append("allow_duplicate is set; an existing publication on this target will not be reused")
    return warnings


async def _publish_article(container, request: PublishArticleInput, options: ExecutionOptions) -> Result:
    result = await container.publisher.publish(
        article_id=request.article_id,
        target=request.target,
        content=request.content,
        metadata=request.metadata,
        options=PublishOptions(
            scheduled_at=request.scheduled_at,
            allow_duplicate=request.allow_duplicate,
            idempotency_key=request.idempotency_key or options.idempotency_key
        )
    )
    if not result.success:
        return result
    return Result.ok(result.value.to_dict())


async def _get_publications(container, request: GetPublicationsInput, options: ExecutionOptions) -> Result:
    if request.publication_id:
        result = await container.publisher.get_publication(request.publication_id)
        if not result.success:
            return result
        return Result.ok({"count": 1, "publications": [_publication_view(result.value)]})

    documents = await container.publisher.list_publications(request.article_id, request.status, request.limit)
    return Result.ok({
        "count": len(documents),
        "publications": [_publication_view(doc) for doc in documents]
    })


async def _dispatch_scheduled(container, request: SweepInput, options: ExecutionOptions) -> Result:
    results = await container.publisher.dispatch_ready(limit=request.limit)
    return Result.ok(_sweep_summary(results))


async def _retry_failed(container, request: SweepInput, options: ExecutionOptions) -> Result:
    results = await container.publisher.retry_failed(limit=request.limit)
    return Result.ok(_sweep_summary(results))


class PublishingFacade(AdminFacade):
    module = "publishing"

    def register_use_cases(self):
        self.register(UseCase(
            name="PublishArticle",
            description="Publish an article to a target, or schedule it",
            input_model=PublishArticleInput,
            handler=_publish_article,
            side_effects=["calls publishing platform", "writes publications", "writes articles"],
            idempotent=True,
            risk_level="high",
            warnings=_publish_warnings
        ))
        self.register(UseCase(
            name="GetPublications",
            description="One publication by id, or publications filtered by article and status",
            input_model=GetPublicationsInput,
            handler=_get_publications,
            idempotent=True
        ))
        self.register(UseCase(
            name="DispatchScheduledPublications",
            description="Attempt pending publications and scheduled ones that are due",
            input_model=SweepInput,
            handler=_dispatch_scheduled,
            side_effects=["calls publishing platform", "writes publications", "writes articles"],
            risk_level="high"
        ))
        self.register(UseCase(
            name="RetryFailedPublications",
            description="Retry failed publications whose backoff has elapsed",
            input_model=SweepInput,
            handler=_retry_failed,
            side_effects=["calls publishing platform", "writes publications", "writes articles"],
            risk_level="high"
        ))
