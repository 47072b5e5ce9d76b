"""Article model definitions."""
from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field, model_validator


class ArticleStatus(str, Enum):
    """Article lifecycle status enumeration."""
    DRAFT = "draft"
    GENERATED = "generated"
    GENERATED_IMAGE_DRAFT = "generated_image_draft"
    GENERATED_WITH_IMAGE = "generated_with_image"
    READY_TO_PUBLISH = "ready_to_publish"
    PUBLISHED = "published"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({ArticleStatus.PUBLISHED, ArticleStatus.FAILED})

# Statuses an article can only hold after passing through an image stage (or failing)
MEDIA_BEARING_STATUSES = frozenset({
    ArticleStatus.GENERATED_WITH_IMAGE,
    ArticleStatus.READY_TO_PUBLISH,
    ArticleStatus.PUBLISHED,
    ArticleStatus.FAILED,
})


class GenerationMetadata(BaseModel):
    """What produced an article's text, kept for audit and reproducibility."""
    prompt: Optional[str] = None
    system_prompt: Optional[str] = None
    model: Optional[str] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0
    duration_ms: int = 0
    generated_at: Optional[datetime] = None


class ArticleModel(BaseModel):
    """Article model for database representation."""
    id: str = Field(alias="_id")
    source_id: str
    feed_item_id: Optional[str] = None
    title: str
    content: str
    excerpt: Optional[str] = None
    status: ArticleStatus
    version: int = 0
    generation: Optional[GenerationMetadata] = None
    slug: Optional[str] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    featured_media_id: Optional[str] = None
    featured_media_url: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    published_at: Optional[datetime] = None
    auto_publish_requested_at: Optional[datetime] = None

    class Config:
        populate_by_name = True

    @model_validator(mode="after")
    def check_featured_media(self) -> "ArticleModel":
        """Featured media implies the article went through an image stage."""
        has_media = self.featured_media_id is not None or self.featured_media_url is not None
        if has_media and self.status not in MEDIA_BEARING_STATUSES:
            raise ValueError(f"Featured media is not allowed in status {self.status.value}")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
