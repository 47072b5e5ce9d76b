# Admin facades module
from typing import Dict, Optional

from .automation import AutomationFacade
from .base import AdminFacade, UseCase
from .content import ContentFacade
from .idempotency import IdempotencyStore
from .publishing import PublishingFacade
from .sources import SourcesFacade

FACADE_CLASSES = [SourcesFacade, AutomationFacade, ContentFacade, PublishingFacade]


def build_facades(container, idempotency_store: Optional[IdempotencyStore] = None) -> Dict[str, AdminFacade]:
    """One facade per module, keyed by module name."""
    return {cls.module: cls(container, idempotency_store) for cls in FACADE_CLASSES}


__all__ = [
    "AdminFacade",
    "AutomationFacade",
    "ContentFacade",
    "IdempotencyStore",
    "PublishingFacade",
    "SourcesFacade",
    "UseCase",
    "build_facades"
]
