"""Request schemas for admin use cases."""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field, field_validator

from api.models.automation import Action, Condition, Trigger
from api.models.feed_item import RawFeedItem
from api.models.publication import (
    PublicationContent,
    PublicationMetadata,
    PublicationStatus,
    PublicationTarget,
)


class ExecutionOptions(BaseModel):
    """Options accepted by every facade execution."""
    dry_run: bool = Field(default=False, alias="dryRun")
    idempotency_key: Optional[str] = Field(default=None, alias="idempotencyKey")
    user_id: Optional[str] = Field(default=None, alias="userId")
    request_id: Optional[str] = Field(default=None, alias="requestId")

    class Config:
        populate_by_name = True


class ExecuteRequest(BaseModel):
    """Body of an execute call."""
    input: Dict[str, Any] = Field(default_factory=dict)
    options: ExecutionOptions = Field(default_factory=ExecutionOptions)


# Sources

class IngestFeedItemsInput(BaseModel):
    """A fetched batch for one source."""
    source_id: str = Field(..., min_length=1, alias="sourceId")
    source_name: str = Field(default="", alias="sourceName")
    source_type: str = Field(default="rss", alias="sourceType")
    source_status: str = Field(default="active", alias="sourceStatus")
    source_configuration: Dict[str, Any] = Field(default_factory=dict, alias="sourceConfiguration")
    items: List[RawFeedItem] = Field(..., min_length=1, max_length=500)

    class Config:
        populate_by_name = True


class ListPendingFeedItemsInput(BaseModel):
    source_id: str = Field(..., min_length=1, alias="sourceId")
    limit: int = Field(default=50, ge=1, le=200)

    class Config:
        populate_by_name = True


# Automation

class CreateAutomationRuleInput(BaseModel):
    """Automation rule creation request."""
    source_id: str = Field(..., min_length=1, alias="sourceId")
    name: str = Field(..., min_length=1, max_length=200)
    trigger: Trigger
    conditions: List[Condition] = Field(default_factory=list)
    actions: List[Action] = Field(..., min_length=1)
    is_enabled: bool = Field(default=True, alias="isEnabled")

    class Config:
        populate_by_name = True

    @field_validator("source_id", "name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


class SetAutomationRuleEnabledInput(BaseModel):
    rule_id: str = Field(..., min_length=1, alias="ruleId")
    enabled: bool

    class Config:
        populate_by_name = True


class GetAutomationRulesInput(BaseModel):
    source_id: str = Field(..., min_length=1, alias="sourceId")
    enabled_only: bool = Field(default=False, alias="enabledOnly")

    class Config:
        populate_by_name = True


class TriggerAutomationInput(BaseModel):
    """Manual run of a source's rules over its pending feed items."""
    source_id: str = Field(..., min_length=1, alias="sourceId")
    rule_id: Optional[str] = Field(default=None, alias="ruleId")
    max_items: int = Field(default=3, ge=1, le=50, alias="maxItems")

    class Config:
        populate_by_name = True


# Content

class GenerateArticleInput(BaseModel):
    feed_item_id: str = Field(..., min_length=1, alias="feedItemId")

    class Config:
        populate_by_name = True


class AdvanceArticleInput(BaseModel):
    """Manual lifecycle step on an article."""
    article_id: str = Field(..., min_length=1, alias="articleId")
    stage: Literal["request_image", "approve", "fail"]
    reason: Optional[str] = None

    class Config:
        populate_by_name = True


class GetArticleInput(BaseModel):
    article_id: str = Field(..., min_length=1, alias="articleId")

    class Config:
        populate_by_name = True


# Publishing

class PublishArticleInput(BaseModel):
    """Publish request."""
    article_id: str = Field(..., min_length=1, alias="articleId")
    target: PublicationTarget
    content: PublicationContent
    metadata: PublicationMetadata = Field(default_factory=PublicationMetadata)
    scheduled_at: Optional[datetime] = Field(default=None, alias="scheduledAt")
    allow_duplicate: bool = Field(default=False, alias="allowDuplicate")
    idempotency_key: Optional[str] = Field(default=None, alias="idempotencyKey")

    class Config:
        populate_by_name = True


class GetPublicationsInput(BaseModel):
    publication_id: Optional[str] = Field(default=None, alias="publicationId")
    article_id: Optional[str] = Field(default=None, alias="articleId")
    status: Optional[PublicationStatus] = None
    limit: int = Field(default=50, ge=1, le=200)

    class Config:
        populate_by_name = True


class SweepInput(BaseModel):
    """Batch limit for dispatch and retry sweeps."""
    limit: Optional[int] = Field(default=None, ge=1, le=100)
