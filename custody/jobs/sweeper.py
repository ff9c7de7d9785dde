import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from fastapi.concurrency import run_in_threadpool

from custody.settings import settings
from custody.dependencies import get_retention_service, get_sweeper

logger = logging.getLogger(__name__)


async def run_sweeps(now: datetime) -> Dict[str, Any]:
    """One pass of every periodic job. Each job's failure is isolated."""
    summary: Dict[str, Any] = {}
    interval = timedelta(seconds=settings.sweep_interval_seconds)
    sweeper = get_sweeper()

    try:
        expired = await sweeper.expire_share_codes(now)
        summary["share_codes_expired"] = expired.processed
    except Exception as e:
        logger.error(f"Share code expiry sweep failed: {e}", exc_info=True)

    try:
        warned = await sweeper.notify_expiring_codes(now, interval=interval)
        summary["expiry_warnings_sent"] = warned.notified
    except Exception as e:
        logger.error(f"Expiry warning sweep failed: {e}", exc_info=True)

    try:
        report = await run_in_threadpool(get_retention_service().purge_expired_credentials, now)
        summary["credentials_checked"] = report.checked
        summary["credentials_deleted"] = report.deleted
        summary["credential_errors"] = report.errors
    except Exception as e:
        logger.error(f"Credential retention sweep failed: {e}", exc_info=True)

    return summary


async def sweep_worker(shutdown_event: asyncio.Event):
    """
    Background worker for share-code expiry, expiry warnings and credential retention.
    Runs every sweep_interval_seconds, respecting shutdown event.
    """
    logger.info("Starting custody sweep worker")

    while not shutdown_event.is_set():
        summary = await run_sweeps(datetime.now(timezone.utc))
        logger.info(f"Sweep complete: {summary}")

        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=settings.sweep_interval_seconds)
        except asyncio.TimeoutError:
            continue

    logger.info("Custody sweep worker stopped")
