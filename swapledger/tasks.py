from __future__ import annotations

import asyncio
import logging

from swapledger import timelocks as tl
from swapledger.config import SessionLocal, settings
from swapledger.observers import CancellationObserver
from swapledger.webhooks import fire_webhook_event

logger = logging.getLogger(__name__)


def run_cancellation_sweep() -> dict:
    """Run a single sweep in its own session, then notify about each opened window.

    Returns counts by category.
    """
    observer = CancellationObserver()
    session = SessionLocal()
    try:
        with session.begin():
            result = observer.sweep(session)
    finally:
        session.close()

    for record in result["cancellable"]:
        fire_webhook_event(
            record,
            "escrow.cancellable",
            {"schedule": tl.schedule(tl.from_hex(record.timelocks))},
        )
    return {key: len(records) for key, records in result.items()}


async def background_sweep_loop() -> None:
    """Periodically look for escrows whose cancellation window opened."""
    interval = settings.sweep_interval_seconds
    logger.info("Background cancellation sweep started (interval=%ds)", interval)
    while True:
        await asyncio.sleep(interval)
        try:
            counts = run_cancellation_sweep()
            if counts["cancellable"]:
                logger.info("Background sweep found %d cancellable escrow(s)", counts["cancellable"])
        except Exception:
            logger.exception("Error in background cancellation sweep")
