"""HTTP clients for the external collaborators: text, images and WordPress."""
import asyncio
import logging
import time
from typing import Any, Dict, Optional, Tuple

import aiohttp

from api.services.collaborators import GeneratedImage, GeneratedText, PublishResult
from api.services.generation import make_excerpt
from shared.config import settings
from shared.result import ErrorCode

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an expert content writer. Create engaging, well-structured articles that are "
    "informative, readable, and optimized for the target audience. Always maintain factual "
    "accuracy and proper formatting."
)

# USD per 1K tokens
MODEL_COSTS = {
    "gpt-4o": 0.005,
    "gpt-4o-mini": 0.00015,
    "gpt-4-turbo": 0.003,
    "gpt-3.5-turbo": 0.0005,
}

WORDPRESS_ERROR_CODES = {
    401: ErrorCode.AUTHENTICATION_FAILED,
    403: ErrorCode.AUTHORIZATION_FAILED,
    404: ErrorCode.EXTERNAL_ID_NOT_FOUND,
    413: ErrorCode.CONTENT_TOO_LARGE,
    429: ErrorCode.RATE_LIMIT_EXCEEDED,
}


def calculate_cost(tokens: int, model: str) -> float:
    cost_per_1k = MODEL_COSTS.get(model, MODEL_COSTS["gpt-4o-mini"])
    return (tokens / 1000) * cost_per_1k


def split_title(text: str) -> Tuple[Optional[str], str]:
    """Take the first line as the title when it looks like one."""
    lines = text.strip().split("\n")
    first = lines[0].strip()
    if first and (first.startswith("#") or len(first) < 100):
        return first.lstrip("#").strip(), "\n".join(lines[1:]).strip()
    return None, text.strip()


def is_retryable_status(status: int) -> bool:
    return status >= 500 or status in (408, 429)


class TextGenerationClient:
    """Chat-completions client that writes an article from a feed item."""

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[int] = None
    ):
        self.url = url or settings.text_generation_url
        self.api_key = api_key or settings.text_generation_api_key
        self.model = model or settings.text_generation_model
        self.timeout = timeout or settings.http_timeout

    def build_prompt(self, title: str, content: str, source_url: Optional[str] = None) -> str:
        prompt = (
            f"Write an original article based on the following source material.\n\n"
            f"Title: {title}\n\n"
            f"Content:\n{content}\n\n"
        )
        if source_url:
            prompt += f"Source: {source_url}\n\n"
        prompt += "Start with the article title on the first line, followed by the article body."
        return prompt

    async def generate_article(self, title: str, content: str, source_url: Optional[str] = None) -> GeneratedText:
        prompt = self.build_prompt(title, content, source_url)
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt}
            ],
            "max_tokens": 4000,
            "temperature": 0.7
        }
        started = time.monotonic()

        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"Authorization": f"Bearer {self.api_key}"}
            ) as session:
                async with session.post(self.url, json=payload) as response:
                    if response.status >= 400:
                        body = await response.text()
                        return GeneratedText(
                            success=False,
                            prompt=prompt,
                            error=f"HTTP Error {response.status}: {body[:200]}"
                        )
                    data = await response.json()

        except asyncio.TimeoutError:
            return GeneratedText(success=False, prompt=prompt, error=f"Timeout after {self.timeout} seconds")
        except aiohttp.ClientError as e:
            return GeneratedText(success=False, prompt=prompt, error=f"Network error: {str(e)}")
        except Exception as e:
            return GeneratedText(success=False, prompt=prompt, error=f"Unexpected error: {str(e)}")

        choices = data.get("choices") or []
        text = choices[0].get("message", {}).get("content") if choices else None
        if not text:
            return GeneratedText(success=False, prompt=prompt, error="Empty response from text generation")

        generated_title, body = split_title(text)
        usage = data.get("usage") or {}
        model = data.get("model") or self.model
        return GeneratedText(
            success=True,
            title=generated_title or title,
            content=body,
            excerpt=make_excerpt(body),
            seo_title=(generated_title or title)[:60],
            seo_description=make_excerpt(body, max_length=155),
            model=model,
            prompt=prompt,
            system_prompt=SYSTEM_PROMPT,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0),
            cost=calculate_cost(usage.get("total_tokens", 0), self.model),
            duration_ms=int((time.monotonic() - started) * 1000)
        )


class ImageGenerationClient:
    """Image generation client producing a featured image for an article."""

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[int] = None
    ):
        self.url = url or settings.image_generation_url
        self.api_key = api_key or settings.image_generation_api_key
        self.model = model or settings.image_generation_model
        self.timeout = timeout or settings.http_timeout

    async def generate_image(self, title: str, summary: Optional[str] = None) -> GeneratedImage:
        prompt = f"Editorial featured image for an article titled '{title}'."
        if summary:
            prompt += f" Context: {summary}"
        payload = {"model": self.model, "prompt": prompt, "n": 1, "size": "1792x1024"}

        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"Authorization": f"Bearer {self.api_key}"}
            ) as session:
                async with session.post(self.url, json=payload) as response:
                    if response.status >= 400:
                        return GeneratedImage(success=False, model=self.model, error=f"HTTP Error {response.status}")
                    data = await response.json()

        except asyncio.TimeoutError:
            return GeneratedImage(success=False, model=self.model, error=f"Timeout after {self.timeout} seconds")
        except aiohttp.ClientError as e:
            return GeneratedImage(success=False, model=self.model, error=f"Network error: {str(e)}")
        except Exception as e:
            return GeneratedImage(success=False, model=self.model, error=f"Unexpected error: {str(e)}")

        images = data.get("data") or []
        media_url = images[0].get("url") if images else None
        if not media_url:
            return GeneratedImage(success=False, model=self.model, error="Image response contained no URL")
        return GeneratedImage(success=True, media_url=media_url, model=self.model)


class WordPressClient:
    """Publishes posts through the WordPress REST API using basic auth."""

    def __init__(self, timeout: Optional[int] = None):
        self.timeout = timeout or settings.http_timeout

    def build_post(self, content: Dict[str, Any], metadata: Dict[str, Any], configuration: Dict[str, Any]) -> Dict[str, Any]:
        post = {
            "title": content["title"],
            "content": content["content"],
            "status": configuration.get("status", "publish")
        }
        if content.get("excerpt"):
            post["excerpt"] = content["excerpt"]
        if content.get("slug"):
            post["slug"] = content["slug"]
        if metadata.get("categories"):
            post["categories"] = metadata["categories"]
        if metadata.get("tags"):
            post["tags"] = metadata["tags"]
        if metadata.get("featured_media_id"):
            post["featured_media"] = metadata["featured_media_id"]
        author = metadata.get("author") or configuration.get("author")
        if author:
            post["author"] = author
        return post

    async def publish(
        self,
        target: Dict[str, Any],
        content: Dict[str, Any],
        metadata: Dict[str, Any]
    ) -> PublishResult:
        configuration = target.get("configuration") or {}
        site_url = (target.get("site_url") or configuration.get("site_url") or "").rstrip("/")
        if not site_url:
            return PublishResult(
                success=False,
                error="Site URL is required",
                error_code=ErrorCode.VALIDATION_ERROR,
                retryable=False
            )

        auth = None
        if configuration.get("username") and configuration.get("password"):
            auth = aiohttp.BasicAuth(configuration["username"], configuration["password"])

        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                auth=auth
            ) as session:
                async with session.post(
                    f"{site_url}/wp-json/wp/v2/posts",
                    json=self.build_post(content, metadata, configuration)
                ) as response:
                    if response.status >= 400:
                        try:
                            error_data = await response.json()
                        except (aiohttp.ContentTypeError, ValueError):
                            error_data = {}
                        return PublishResult(
                            success=False,
                            error=error_data.get("message") or f"HTTP Error {response.status}",
                            error_code=WORDPRESS_ERROR_CODES.get(response.status, ErrorCode.PUBLISHING_FAILED),
                            retryable=is_retryable_status(response.status),
                            details={"http_status": response.status}
                        )
                    post = await response.json()

        except asyncio.TimeoutError:
            return PublishResult(success=False, error=f"Timeout after {self.timeout} seconds", error_code=ErrorCode.NETWORK_ERROR)
        except aiohttp.ClientError as e:
            return PublishResult(success=False, error=f"Network error: {str(e)}", error_code=ErrorCode.NETWORK_ERROR)
        except Exception as e:
            return PublishResult(success=False, error=f"Unexpected error: {str(e)}", error_code=ErrorCode.PUBLISHING_FAILED)

        logger.info(f"Published post {post.get('id')} to {site_url}")
        return PublishResult(
            success=True,
            external_id=str(post.get("id")),
            external_url=post.get("link")
        )
