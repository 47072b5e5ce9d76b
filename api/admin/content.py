"""Content module: article generation and manual lifecycle steps."""
from api.admin.base import AdminFacade, UseCase
from api.models.article import ArticleModel
from api.schemas.requests import (
    AdvanceArticleInput,
    ExecutionOptions,
    GenerateArticleInput,
    GetArticleInput,
)
from api.services.lifecycle import LifecycleStage
from database.repositories.article_repo import ArticleRepository
from shared.result import ErrorCode, Result


def _article_view(document) -> dict:
    return ArticleModel.model_validate(document).model_dump(mode="json")


async def _generate_article(container, request: GenerateArticleInput, options: ExecutionOptions) -> Result:
    result = await container.generator.generate_for_feed_item(request.feed_item_id)
    if not result.success:
        return result
    return Result.ok(_article_view(result.value))


async def _advance_article(container, request: AdvanceArticleInput, options: ExecutionOptions) -> Result:
    fields = {}
    if request.stage == LifecycleStage.FAIL.value:
        fields["error_message"] = request.reason or "Marked as failed by an operator"

    result = await container.lifecycle.advance(request.article_id, LifecycleStage(request.stage), fields=fields)
    if not result.success:
        return result
    return Result.ok(_article_view(result.value))


async def _get_article(container, request: GetArticleInput, options: ExecutionOptions) -> Result:
    document = await ArticleRepository(container.db).get_article(request.article_id)
    if document is None:
        return Result.fail(ErrorCode.NOT_FOUND, f"Article {request.article_id} not found", {"article_id": request.article_id})
    return Result.ok(_article_view(document))


def _advance_warnings(request: AdvanceArticleInput):
    if request.stage == LifecycleStage.FAIL.value and not request.reason:
        return ["No reason given; the article will be failed with a generic message"]
    return []


class ContentFacade(AdminFacade):
    module = "content"

    def register_use_cases(self):
        self.register(UseCase(
            name="GenerateArticle",
            description="Generate an article from one pending feed item",
            input_model=GenerateArticleInput,
            handler=_generate_article,
            side_effects=["calls text generation", "writes articles", "writes feed_items"],
            risk_level="medium"
        ))
        self.register(UseCase(
            name="AdvanceArticle",
            description="Request an image for, approve or fail an article",
            input_model=AdvanceArticleInput,
            handler=_advance_article,
            side_effects=["writes articles"],
            risk_level="medium",
            warnings=_advance_warnings
        ))
        self.register(UseCase(
            name="GetArticle",
            description="Current state of an article",
            input_model=GetArticleInput,
            handler=_get_article,
            idempotent=True
        ))
