"""Publication model definitions."""
from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from shared.utils import ensure_utc


class PublicationStatus(str, Enum):
    """Publication status enumeration."""
    PENDING = "pending"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    FAILED = "failed"


class PublicationTarget(BaseModel):
    """Where a publication goes: platform plus site identity and config."""
    platform: str
    site_id: str = Field(alias="siteId")
    site_url: Optional[str] = Field(default=None, alias="siteUrl")
    configuration: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        populate_by_name = True

    @field_validator("platform")
    @classmethod
    def normalize_platform(cls, v: str) -> str:
        return v.strip().lower()

    @property
    def target_key(self) -> str:
        return f"{self.platform}:{self.site_id}"


class PublicationContent(BaseModel):
    """Content snapshot used for a publish attempt."""
    title: str
    content: str
    excerpt: Optional[str] = None
    slug: Optional[str] = None


class PublicationMetadata(BaseModel):
    """Metadata snapshot used for a publish attempt."""
    categories: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    author: Optional[str] = None
    featured_media_id: Optional[str] = Field(default=None, alias="featuredMediaId")

    class Config:
        populate_by_name = True


class PublicationError(BaseModel):
    """Error stored on a failed publication attempt."""
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    retryable: bool = True
    occurred_at: Optional[datetime] = None


class PublicationModel(BaseModel):
    """Publication model for database representation."""
    id: str = Field(alias="_id")
    article_id: str
    target: PublicationTarget
    target_key: str
    status: PublicationStatus
    retry_count: int = 0
    max_retries: int = 3
    external_id: Optional[str] = None
    external_url: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    content: PublicationContent
    metadata: PublicationMetadata = Field(default_factory=PublicationMetadata)
    error: Optional[PublicationError] = None
    idempotency_key: Optional[str] = None
    active_slot: Optional[str] = None
    claimed_at: Optional[datetime] = None
    superseded: bool = False
    created_at: datetime
    updated_at: datetime

    class Config:
        populate_by_name = True

    def is_retry_eligible(self) -> bool:
        """A failed publication may be retried until it runs out of attempts."""
        return self.status == PublicationStatus.FAILED and self.retry_count < self.max_retries

    def awaits_retry(self) -> bool:
        """Retry-eligible and actually queued for the retry sweep."""
        if not self.is_retry_eligible() or self.next_attempt_at is None:
            return False
        return self.error is None or self.error.retryable

    def is_ready_for_execution(self, now: datetime) -> bool:
        """Pending publications are ready now; scheduled ones once their time has come."""
        if self.status == PublicationStatus.PENDING:
            return True
        if self.status == PublicationStatus.SCHEDULED and self.scheduled_at is not None:
            return ensure_utc(self.scheduled_at) <= ensure_utc(now)
        return False
