"""Feed item model definitions."""
from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator


class FeedItemStatus(str, Enum):
    """Feed item processing status enumeration."""
    PENDING = "pending"
    PROCESSING = "processing"
    PROCESSED = "processed"


class RawFeedItem(BaseModel):
    """An item as fetched from a source, before deduplication."""
    guid: Optional[str] = None
    url: Optional[str] = None
    title: str = ""
    content: str = ""
    published_at: Optional[datetime] = Field(default=None, alias="publishedAt")

    class Config:
        populate_by_name = True

    @field_validator("guid", "url")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat blank identifiers as absent."""
        if v is None:
            return None
        v = v.strip()
        return v or None


class FeedItemSummary(BaseModel):
    """Feed item fields carried by events and automation contexts."""
    id: str
    guid: Optional[str] = None
    title: str = ""
    content: str = ""
    url: Optional[str] = None
    published_at: Optional[datetime] = None
    fetched_at: Optional[datetime] = None


class FeedItemModel(BaseModel):
    """Feed item model for database representation."""
    id: str = Field(alias="_id")
    source_id: str
    guid: Optional[str] = None
    url: Optional[str] = None
    url_key: Optional[str] = None
    title: str = ""
    content: str = ""
    published_at: Optional[datetime] = None
    fetched_at: datetime
    status: FeedItemStatus = FeedItemStatus.PENDING
    article_id: Optional[str] = None
    claimed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        populate_by_name = True

    def to_summary(self) -> FeedItemSummary:
        return FeedItemSummary(
            id=self.id,
            guid=self.guid,
            title=self.title,
            content=self.content,
            url=self.url,
            published_at=self.published_at,
            fetched_at=self.fetched_at,
        )
