"""Process entry point running the delivery and cleanup jobs."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from .config import get_settings
from .jobs import PeriodicJob, run_cleanup_job, run_delivery_job
from .logging_handlers import configure_logging
from .notifications.delivery import NotificationDeliveryService
from .notifications.push import HttpPushProvider
from .repository import TaskflowRepository

logger = logging.getLogger(__name__)


async def serve() -> None:
    """Run the background jobs until cancelled."""

    settings = get_settings()
    repository = TaskflowRepository(
        settings.database_path, max_batch_ops=settings.store_max_batch_ops
    )
    await repository.initialize()
    provider = HttpPushProvider(settings)
    service = NotificationDeliveryService(repository, provider, settings)

    jobs = [
        PeriodicJob(
            "deliver-notifications",
            timedelta(minutes=settings.delivery_interval_minutes),
            lambda: run_delivery_job(service),
        ),
        PeriodicJob(
            "cleanup-notifications",
            timedelta(days=1),
            lambda: run_cleanup_job(service),
        ),
    ]
    for job in jobs:
        job.start()

    try:
        await asyncio.Event().wait()
    finally:
        for job in jobs:
            await job.stop()
        await provider.aclose()
        await repository.close()


def main() -> None:
    """Configure logging and run the jobs."""

    configure_logging(get_settings())
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":  # pragma: no cover - manual invocation
    main()
