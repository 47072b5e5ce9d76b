"""Article lifecycle state machine.

    draft -> generated -> generated_image_draft -> generated_with_image
          -> ready_to_publish -> published

``failed`` is reachable from every non-terminal status. ``published`` and
``failed`` are terminal. Which transition a stage result leads to depends on
the source's automation flags; ``decide_transition`` is the single place that
decides it.
"""
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from api.models.article import ArticleStatus, MEDIA_BEARING_STATUSES, TERMINAL_STATUSES
from api.models.source import AutomationFlags
from database.repositories.article_repo import ArticleRepository
from database.repositories.source_repo import SourceRepository
from shared.result import ErrorCode, Result

logger = logging.getLogger(__name__)


class LifecycleStage(str, Enum):
    """Stages that move an article between statuses."""
    GENERATE = "generate"
    IMAGE = "image"
    REQUEST_IMAGE = "request_image"
    AUTO_PROMOTE = "auto_promote"
    APPROVE = "approve"
    PUBLISH = "publish"
    FAIL = "fail"


STATUS_ORDER = [
    ArticleStatus.DRAFT,
    ArticleStatus.GENERATED,
    ArticleStatus.GENERATED_IMAGE_DRAFT,
    ArticleStatus.GENERATED_WITH_IMAGE,
    ArticleStatus.READY_TO_PUBLISH,
    ArticleStatus.PUBLISHED,
]


class InvalidTransitionError(Exception):
    """A stage was applied to an article in a status it cannot start from."""

    def __init__(self, current: ArticleStatus, stage: LifecycleStage, reason: str):
        self.current = current
        self.stage = stage
        self.reason = reason
        super().__init__(f"Cannot apply stage '{stage.value}' to status '{current.value}': {reason}")


def is_forward(current: ArticleStatus, target: ArticleStatus) -> bool:
    """True when moving from current to target never revisits an earlier status."""
    if current in TERMINAL_STATUSES:
        return False
    if target == ArticleStatus.FAILED:
        return True
    return STATUS_ORDER.index(target) > STATUS_ORDER.index(current)


def _require(current: ArticleStatus, stage: LifecycleStage, *allowed: ArticleStatus):
    if current not in allowed:
        expected = ", ".join(status.value for status in allowed)
        raise InvalidTransitionError(current, stage, f"expected one of: {expected}")


def _require_success(current: ArticleStatus, stage: LifecycleStage, succeeded: bool):
    if not succeeded:
        raise InvalidTransitionError(current, stage, "stage has no failure outcome")


def _generate(current: ArticleStatus, flags: AutomationFlags, succeeded: bool) -> ArticleStatus:
    _require(current, LifecycleStage.GENERATE, ArticleStatus.DRAFT)
    if not succeeded:
        return ArticleStatus.FAILED
    if flags.auto_image:
        return ArticleStatus.GENERATED_IMAGE_DRAFT
    return ArticleStatus.GENERATED


def _image(current: ArticleStatus, flags: AutomationFlags, succeeded: bool) -> ArticleStatus:
    _require(current, LifecycleStage.IMAGE, ArticleStatus.GENERATED_IMAGE_DRAFT)
    # No downgrade on failure: a retry is a new pipeline run
    if not succeeded:
        return ArticleStatus.FAILED
    if flags.auto_publish:
        return ArticleStatus.READY_TO_PUBLISH
    return ArticleStatus.GENERATED_WITH_IMAGE


def _request_image(current: ArticleStatus, flags: AutomationFlags, succeeded: bool) -> ArticleStatus:
    _require(current, LifecycleStage.REQUEST_IMAGE, ArticleStatus.GENERATED)
    _require_success(current, LifecycleStage.REQUEST_IMAGE, succeeded)
    return ArticleStatus.GENERATED_IMAGE_DRAFT


def _auto_promote(current: ArticleStatus, flags: AutomationFlags, succeeded: bool) -> ArticleStatus:
    _require(current, LifecycleStage.AUTO_PROMOTE, ArticleStatus.GENERATED, ArticleStatus.GENERATED_WITH_IMAGE)
    _require_success(current, LifecycleStage.AUTO_PROMOTE, succeeded)
    if not flags.auto_publish:
        raise InvalidTransitionError(current, LifecycleStage.AUTO_PROMOTE, "auto-publish is disabled")
    return ArticleStatus.READY_TO_PUBLISH


def _approve(current: ArticleStatus, flags: AutomationFlags, succeeded: bool) -> ArticleStatus:
    _require(current, LifecycleStage.APPROVE, ArticleStatus.GENERATED, ArticleStatus.GENERATED_WITH_IMAGE)
    _require_success(current, LifecycleStage.APPROVE, succeeded)
    return ArticleStatus.READY_TO_PUBLISH


def _publish(current: ArticleStatus, flags: AutomationFlags, succeeded: bool) -> ArticleStatus:
    _require(
        current,
        LifecycleStage.PUBLISH,
        ArticleStatus.READY_TO_PUBLISH,
        ArticleStatus.GENERATED_WITH_IMAGE,
        ArticleStatus.GENERATED,
    )
    return ArticleStatus.PUBLISHED if succeeded else ArticleStatus.FAILED


def _fail(current: ArticleStatus, flags: AutomationFlags, succeeded: bool) -> ArticleStatus:
    return ArticleStatus.FAILED


_STAGE_DECIDERS: Dict[LifecycleStage, Callable[[ArticleStatus, AutomationFlags, bool], ArticleStatus]] = {
    LifecycleStage.GENERATE: _generate,
    LifecycleStage.IMAGE: _image,
    LifecycleStage.REQUEST_IMAGE: _request_image,
    LifecycleStage.AUTO_PROMOTE: _auto_promote,
    LifecycleStage.APPROVE: _approve,
    LifecycleStage.PUBLISH: _publish,
    LifecycleStage.FAIL: _fail,
}


def decide_transition(
    current: ArticleStatus,
    flags: AutomationFlags,
    stage: LifecycleStage,
    succeeded: bool = True
) -> ArticleStatus:
    """
    Next status for a stage result, given the current status and automation flags.

    Raises InvalidTransitionError when the stage cannot start from the
    current status (or the flags forbid it).
    """
    current = ArticleStatus(current)
    stage = LifecycleStage(stage)
    if current in TERMINAL_STATUSES:
        raise InvalidTransitionError(current, stage, "status is terminal")

    decider = _STAGE_DECIDERS.get(stage)
    if decider is None:
        raise ValueError(f"Unhandled lifecycle stage: {stage}")
    return decider(current, flags, succeeded)


def initial_status(flags: AutomationFlags) -> ArticleStatus:
    """Status a freshly generated article is created in."""
    return decide_transition(ArticleStatus.DRAFT, flags, LifecycleStage.GENERATE, True)


class ArticleLifecycleService:
    """Applies lifecycle decisions to stored articles with optimistic versioning."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.article_repo = ArticleRepository(db)
        self.source_repo = SourceRepository(db)

    async def flags_for_source(self, source_id: str) -> AutomationFlags:
        """Automation flags of a source; settings defaults when the source is unknown."""
        source = await self.source_repo.get(source_id)
        return AutomationFlags.from_configuration(source.configuration if source else None)

    async def advance(
        self,
        article_id: str,
        stage: LifecycleStage,
        succeeded: bool = True,
        fields: Optional[Dict[str, Any]] = None,
        flags: Optional[AutomationFlags] = None
    ) -> Result[Dict[str, Any]]:
        """Move an article through a stage; the stored (status, version) must not have changed."""
        article = await self.article_repo.get_article(article_id)
        if article is None:
            return Result.fail(ErrorCode.NOT_FOUND, f"Article {article_id} not found", {"article_id": article_id})

        current = ArticleStatus(article["status"])
        if flags is None:
            flags = await self.flags_for_source(article["source_id"])

        try:
            next_status = decide_transition(current, flags, stage, succeeded)
        except InvalidTransitionError as e:
            return Result.fail(
                ErrorCode.INVALID_TRANSITION,
                str(e),
                {"article_id": article_id, "status": current.value, "stage": LifecycleStage(stage).value}
            )

        fields = dict(fields or {})
        sets_media = fields.get("featured_media_id") or fields.get("featured_media_url")
        if sets_media and next_status not in MEDIA_BEARING_STATUSES:
            return Result.fail(
                ErrorCode.INVALID_TRANSITION,
                f"Featured media cannot be attached in status '{next_status.value}'",
                {"article_id": article_id, "status": next_status.value}
            )

        updated = await self.article_repo.transition(
            article_id,
            expected_status=current,
            expected_version=article.get("version", 0),
            new_status=next_status,
            fields=fields
        )
        if updated is None:
            logger.warning(f"Article {article_id} changed while applying '{LifecycleStage(stage).value}'")
            return Result.fail(
                ErrorCode.TRANSITION_CONFLICT,
                "Article was modified concurrently",
                {"article_id": article_id, "expected_status": current.value, "expected_version": article.get("version", 0)}
            )

        logger.info(f"Article {article_id}: {current.value} -> {next_status.value} ({LifecycleStage(stage).value})")
        return Result.ok(updated)
