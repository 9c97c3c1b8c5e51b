"""Location resolution and ledger cycles (Taskiq cron)."""

import logging
from datetime import timedelta

from src.core.config import settings
from src.core.tasks.broker import broker
from src.location.ledger import NotificationLedgerStore
from src.location.resolver import LocationResolver

logger = logging.getLogger(__name__)


@broker.task(schedule=[{"cron": "* * * * *"}])  # Every minute
async def generate_location_queries() -> dict:
    """Phase A: search query markers for tasks without locations."""
    try:
        return await LocationResolver().generate_search_queries()
    except Exception as e:
        logger.exception("Search query generation cycle failed")
        return {"error": str(e)}


@broker.task(schedule=[{"cron": "45 * * * *"}])  # Hourly at :45
async def purge_notification_ledger() -> int:
    """Reap ledger rows past retention, including those of deleted tasks."""
    try:
        return await NotificationLedgerStore().purge_older_than(
            timedelta(hours=settings.ledger_retention_hours)
        )
    except Exception:
        logger.exception("Ledger janitor failed")
        return 0
