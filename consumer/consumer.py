"""Pipeline worker entry point."""
import asyncio
import signal
import os
import logging
from api.container import build_container
from consumer.worker import StageWorker
from database.connection import DatabaseConnection
from shared.config import settings

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def install_signal_handlers(worker: StageWorker):
    """Stop the worker after the current step on SIGTERM/SIGINT."""
    loop = asyncio.get_running_loop()

    def request_stop(sig: signal.Signals):
        logger.info(f"Received {sig.name}, finishing current step")
        asyncio.create_task(worker.stop())

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, request_stop, sig)


async def main():
    """Run scheduled automation and the article stages until stopped."""
    worker_id = os.getenv("WORKER_ID", f"worker-{os.getpid()}")
    db = await DatabaseConnection.init_mongo()

    # Shares the process-wide event bus, so new-item automation runs in-process
    container = build_container(db)
    worker = StageWorker(container, worker_id)
    install_signal_handlers(worker)

    logger.info(
        f"Worker {worker_id} polling every {worker.poll_interval}s "
        f"(platforms: {', '.join(settings.supported_platforms)})"
    )

    try:
        await worker.start()
    except Exception as e:
        logger.error(f"Worker {worker_id} crashed: {e}")
        raise
    finally:
        container.close()
        await DatabaseConnection.close_connections()
        logger.info(f"Worker {worker_id} shut down")


if __name__ == "__main__":
    asyncio.run(main())
