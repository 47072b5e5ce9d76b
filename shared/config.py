"""Shared configuration for all services."""
from typing import List
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis Configuration
    redis_url: str = "redis://localhost:6379"
    redis_key_prefix: str = "content_automation"
    idempotency_ttl_seconds: int = 86400

    # MongoDB Configuration
    mongo_url: str = "mongodb://localhost:27017"
    mongo_db_name: str = "content_automation"

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = False

    # Logging
    log_level: str = "INFO"

    # Worker Configuration
    worker_poll_interval: float = 60.0
    image_batch_size: int = 5
    image_item_delay: float = 3.0  # seconds
    promotion_batch_size: int = 20
    publish_batch_size: int = 10
    publish_item_delay: float = 2.0  # seconds
    generation_batch_size: int = 3
    generation_item_delay: float = 2.0  # seconds
    feed_item_claim_timeout: float = 900.0  # seconds before a processing item counts as abandoned

    # Publication
    publication_max_retries: int = 3
    publication_claim_timeout: float = 600.0  # seconds before an unfinished attempt may be taken over
    retry_base_delay: float = 60.0
    retry_max_delay: float = 3600.0
    supported_platforms: List[str] = ["wordpress"]

    # Automation defaults, used when a source does not configure a flag
    default_auto_generate: bool = True
    default_auto_image: bool = False
    default_auto_publish: bool = False

    # External collaborators
    http_timeout: int = 60
    text_generation_url: str = "https://api.openai.com/v1/chat/completions"
    text_generation_api_key: str = ""
    text_generation_model: str = "gpt-4o-mini"
    image_generation_url: str = "https://api.openai.com/v1/images/generations"
    image_generation_api_key: str = ""
    image_generation_model: str = "dall-e-3"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
