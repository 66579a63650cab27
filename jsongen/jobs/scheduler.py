"""Periodic backup trigger for the worker dispatcher."""

import asyncio

import structlog

from jsongen.jobs.dispatcher import WorkerDispatcher

logger = structlog.get_logger(__name__)


async def run_periodic_drain(dispatcher: WorkerDispatcher, interval_s: float) -> None:
    """Call dispatcher.drain every interval_s seconds until cancelled.

    Catches jobs the eager trigger missed (process restarts, notify disabled,
    more pending jobs than one batch). A failing drain is logged and the loop
    keeps going.
    """
    logger.info("periodic_drain_started", interval_s=interval_s)
    while True:
        try:
            await asyncio.sleep(interval_s)
            summary = await dispatcher.drain()
            if summary.processed_jobs:
                logger.info(
                    "periodic_drain_complete",
                    processed_jobs=summary.processed_jobs,
                    successful=summary.successful,
                    failed=summary.failed,
                )
        except asyncio.CancelledError:
            logger.info("periodic_drain_stopped")
            raise
        except Exception as e:
            logger.error("periodic_drain_failed", error=str(e), error_type=type(e).__name__)
