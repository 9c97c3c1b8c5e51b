"""Notification pipeline cycles (Taskiq cron)."""

import logging
from datetime import timedelta

from src.core.config import settings
from src.core.tasks.broker import broker
from src.pipeline.collaborator import LLMDecisionCollaborator
from src.pipeline.processor import NotificationProcessor
from src.pipeline.store import NotificationStore

logger = logging.getLogger(__name__)


def _build_processor() -> NotificationProcessor:
    return NotificationProcessor(LLMDecisionCollaborator())


@broker.task(schedule=[{"cron": "* * * * *"}])  # Every minute
async def process_notification_batch() -> dict:
    """Turn the newest unprocessed notifications into task actions."""
    try:
        report = await _build_processor().run_batch()
    except Exception as e:
        logger.exception("Notification batch cycle failed")
        return {"error": str(e)}
    return report.to_dict()


@broker.task(schedule=[{"cron": "15 * * * *"}])  # Hourly at :15
async def purge_processed_notifications() -> int:
    """Retention janitor for notifications already turned into actions."""
    try:
        return await NotificationStore().purge_processed(
            older_than=timedelta(hours=settings.processed_notification_retention_hours)
        )
    except Exception:
        logger.exception("Processed notification purge failed")
        return 0
