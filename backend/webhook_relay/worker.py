"""
Standalone worker process.

Consumes the event queue without serving HTTP:

    python -m webhook_relay.worker
"""

import asyncio
import signal

import structlog

from .container import build_container
from .core.config import Settings, get_settings
from .core.logging import configure_logging

logger = structlog.get_logger()


async def run_worker(settings: Settings) -> None:
    """Run the worker pool until SIGINT or SIGTERM."""
    container = await build_container(settings)
    pool = container.worker_pool

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(pool.stop()))

    logger.info(
        "Worker process started",
        pool_size=settings.WORKER_POOL_SIZE,
        concurrency=settings.WORKER_CONCURRENCY,
        queue=settings.queue_key,
    )
    try:
        await pool.run()
    finally:
        await container.close()
        logger.info("Worker process stopped")


def main() -> None:
    settings = get_settings()
    configure_logging(settings)
    asyncio.run(run_worker(settings))


if __name__ == "__main__":
    main()
