# Models module
from .article import ArticleModel, ArticleStatus
from .feed_item import FeedItemModel, FeedItemStatus, RawFeedItem
from .publication import PublicationModel, PublicationStatus, PublicationTarget
from .source import AutomationFlags, SourceSnapshot
from .automation import AutomationContext, AutomationRule

__all__ = [
    "ArticleModel",
    "ArticleStatus",
    "FeedItemModel",
    "FeedItemStatus",
    "RawFeedItem",
    "PublicationModel",
    "PublicationStatus",
    "PublicationTarget",
    "AutomationFlags",
    "SourceSnapshot",
    "AutomationContext",
    "AutomationRule"
]
