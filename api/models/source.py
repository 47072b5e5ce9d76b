"""Source snapshot and automation flag definitions."""
from typing import Any, Dict, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from shared.config import settings


class SourceSnapshot(BaseModel):
    """The parts of a source the automation core needs to see."""
    id: str = Field(alias="_id")
    name: str = ""
    type: str = "rss"
    status: str = "active"
    configuration: Dict[str, Any] = Field(default_factory=dict)
    updated_at: Optional[datetime] = None

    class Config:
        populate_by_name = True


class AutomationFlags(BaseModel):
    """Automation switches that drive article lifecycle decisions."""
    auto_generate: bool = True
    auto_image: bool = False
    auto_publish: bool = False

    class Config:
        frozen = True

    @classmethod
    def from_configuration(cls, configuration: Optional[Dict[str, Any]]) -> "AutomationFlags":
        """Read flags from a source configuration, falling back to settings."""
        configuration = configuration or {}
        return cls(
            auto_generate=bool(configuration.get("auto_generate", settings.default_auto_generate)),
            auto_image=bool(configuration.get("auto_image", settings.default_auto_image)),
            auto_publish=bool(configuration.get("auto_publish", settings.default_auto_publish)),
        )
