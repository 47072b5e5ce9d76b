"""Wires services together over one database, event bus and set of collaborators."""
import logging
from typing import Dict, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from api.services.automation import (
    ActionExecutor,
    ContentAutomationService,
    NewFeedItemsHandler,
    ScheduledAutomationDriver,
)
from api.services.collaborators import (
    ImageGenerator,
    PublishingClient,
    SimulatedImageGenerator,
    SimulatedPublishingClient,
    SimulatedTextGenerator,
    TextGenerator,
)
from api.services.event_bus import NEW_FEED_ITEMS_DETECTED, EventBus, get_event_bus
from api.services.generation import ArticleGenerator
from api.services.ingestion import SourceIngestionService
from api.services.lifecycle import ArticleLifecycleService
from api.services.publisher import PublicationOrchestrator
from api.services.rule_engine import RuleEngine
from database.dry_run import DryRunDatabase

logger = logging.getLogger(__name__)


class ServiceContainer:
    """All services of one execution mode (real or simulated)."""

    def __init__(
        self,
        db: AsyncIOMotorDatabase,
        event_bus: EventBus,
        text_generator: TextGenerator,
        image_generator: ImageGenerator,
        publishing_clients: Dict[str, PublishingClient],
        simulated: bool = False
    ):
        self.db = db
        self.event_bus = event_bus
        self.text_generator = text_generator
        self.image_generator = image_generator
        self.publishing_clients = publishing_clients
        self.is_simulated = simulated

        # Simulated runs skip backpressure delays; nothing external is called
        item_delay = 0.0 if simulated else None

        self.lifecycle = ArticleLifecycleService(db)
        self.generator = ArticleGenerator(db, text_generator)
        self.rule_engine = RuleEngine(db)
        self.executor = ActionExecutor(self.generator, event_bus, item_delay=item_delay)
        self.automation = ContentAutomationService(self.rule_engine, self.executor)
        self.scheduled_automation = ScheduledAutomationDriver(db, self.automation)
        self.ingestion = SourceIngestionService(db, event_bus)
        self.publisher = PublicationOrchestrator(db, publishing_clients, self.lifecycle, item_delay=item_delay)

        self.new_items_handler = NewFeedItemsHandler(self.automation, db)
        event_bus.subscribe(NEW_FEED_ITEMS_DETECTED, self.new_items_handler)

    def simulated(self) -> "ServiceContainer":
        """Same wiring over a write-staging database, no-op collaborators and a private bus."""
        return ServiceContainer(
            db=DryRunDatabase(self.db),
            event_bus=EventBus(),
            text_generator=SimulatedTextGenerator(),
            image_generator=SimulatedImageGenerator(),
            publishing_clients={platform: SimulatedPublishingClient() for platform in self.publishing_clients},
            simulated=True
        )

    def close(self):
        """Detach from the event bus."""
        self.event_bus.unsubscribe(NEW_FEED_ITEMS_DETECTED, self.new_items_handler)


def build_container(
    db: AsyncIOMotorDatabase,
    event_bus: Optional[EventBus] = None,
    text_generator: Optional[TextGenerator] = None,
    image_generator: Optional[ImageGenerator] = None,
    publishing_clients: Optional[Dict[str, PublishingClient]] = None
) -> ServiceContainer:
    """Production wiring: process-wide bus and HTTP collaborators unless overridden."""
    from consumer.clients import ImageGenerationClient, TextGenerationClient, WordPressClient

    return ServiceContainer(
        db=db,
        event_bus=event_bus or get_event_bus(),
        text_generator=text_generator or TextGenerationClient(),
        image_generator=image_generator or ImageGenerationClient(),
        publishing_clients=publishing_clients or {"wordpress": WordPressClient()}
    )
