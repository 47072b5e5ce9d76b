"""Worker process that drives scheduled automation and the article pipeline stages."""
import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from api.container import ServiceContainer
from consumer.stages import ImageStageRunner, PromotionStageRunner, PublishStageRunner
from shared.config import settings

logger = logging.getLogger(__name__)


class StageWorker:
    """Polls storage and advances whatever is due, one step at a time."""

    def __init__(
        self,
        container: ServiceContainer,
        worker_id: str = "worker-1",
        poll_interval: Optional[float] = None
    ):
        self.container = container
        self.worker_id = worker_id
        self.poll_interval = settings.worker_poll_interval if poll_interval is None else poll_interval
        self.running = True

        self.image_runner = ImageStageRunner(container.db, container.image_generator, container.lifecycle)
        self.promotion_runner = PromotionStageRunner(container.db, container.lifecycle)
        self.publish_runner = PublishStageRunner(container.db, container.publisher)

    @property
    def steps(self) -> List[Tuple[str, Callable[[], Awaitable[Any]]]]:
        return [
            ("scheduled_automation", self.container.scheduled_automation.run_once),
            ("image", self.image_runner.run_once),
            ("auto_promote", self.promotion_runner.run_once),
            ("publish", self.publish_runner.run_once),
            ("dispatch_scheduled", self.container.publisher.dispatch_ready),
            ("retry_failed", self.container.publisher.retry_failed),
        ]

    async def start(self):
        """Start the worker loop."""
        logger.info(f"Worker {self.worker_id} starting...")

        while self.running:
            await self.run_cycle()
            if self.running:
                await asyncio.sleep(self.poll_interval)

    async def stop(self):
        """Stop the worker gracefully."""
        logger.info(f"Worker {self.worker_id} stopping...")
        self.running = False

    async def run_cycle(self) -> List[str]:
        """Run every step once; a failing step does not stop the ones after it."""
        failed_steps = []
        for name, step in self.steps:
            if not self.running:
                break
            try:
                await step()
            except Exception as e:
                logger.error(f"Worker {self.worker_id} step {name} failed: {e}")
                failed_steps.append(name)
        return failed_steps
