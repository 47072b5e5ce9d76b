"""Contracts for external collaborators, plus no-op stand-ins used by dry runs."""
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol


@dataclass
class GeneratedText:
    """Result of a text generation call."""
    success: bool
    title: str = ""
    content: str = ""
    excerpt: Optional[str] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    model: Optional[str] = None
    prompt: Optional[str] = None
    system_prompt: Optional[str] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost: float = 0.0
    duration_ms: int = 0
    error: Optional[str] = None


@dataclass
class GeneratedImage:
    """Result of an image generation call."""
    success: bool
    media_url: Optional[str] = None
    media_id: Optional[str] = None
    model: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PublishResult:
    """Result of a publish call to an external platform."""
    success: bool
    external_id: Optional[str] = None
    external_url: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    retryable: bool = True
    details: Optional[Dict[str, Any]] = None


class TextGenerator(Protocol):
    async def generate_article(self, title: str, content: str, source_url: Optional[str] = None) -> GeneratedText:
        ...


class ImageGenerator(Protocol):
    async def generate_image(self, title: str, summary: Optional[str] = None) -> GeneratedImage:
        ...


class PublishingClient(Protocol):
    async def publish(
        self,
        target: Dict[str, Any],
        content: Dict[str, Any],
        metadata: Dict[str, Any]
    ) -> PublishResult:
        ...


def _synthetic_id(prefix: str) -> str:
    return f"dryrun_{prefix}_{uuid.uuid4().hex[:8]}"


class SimulatedTextGenerator:
    """Returns placeholder text without calling any provider."""

    async def generate_article(self, title: str, content: str, source_url: Optional[str] = None) -> GeneratedText:
        return GeneratedText(
            success=True,
            title=title or "Simulated article",
            content=content or "",
            excerpt=(content or "")[:160] or None,
            model="simulated",
            prompt=title
        )


class SimulatedImageGenerator:
    """Returns a synthetic media reference."""

    async def generate_image(self, title: str, summary: Optional[str] = None) -> GeneratedImage:
        media_id = _synthetic_id("media")
        return GeneratedImage(success=True, media_id=media_id, media_url=f"https://dry-run.invalid/{media_id}.png", model="simulated")


class SimulatedPublishingClient:
    """Pretends to publish and hands back synthetic external identifiers."""

    async def publish(
        self,
        target: Dict[str, Any],
        content: Dict[str, Any],
        metadata: Dict[str, Any]
    ) -> PublishResult:
        external_id = _synthetic_id("post")
        site_url = (target.get("site_url") or "https://dry-run.invalid").rstrip("/")
        return PublishResult(success=True, external_id=external_id, external_url=f"{site_url}/?p={external_id}")
