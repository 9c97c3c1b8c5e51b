"""Taskiq broker + scheduler for the background cycles.

Worker:    taskiq worker src.core.tasks.broker:broker src.core.tasks.pipeline_tasks src.core.tasks.location_tasks
Scheduler: taskiq scheduler src.core.tasks.broker:scheduler src.core.tasks.pipeline_tasks src.core.tasks.location_tasks
"""

import logging

from taskiq import TaskiqEvents, TaskiqScheduler, TaskiqState
from taskiq.schedule_sources import LabelScheduleSource
from taskiq_redis import ListQueueBroker

from src.core.config import settings

broker = ListQueueBroker(url=settings.redis_url, queue_name="memento:cycles")

scheduler = TaskiqScheduler(
    broker=broker,
    sources=[LabelScheduleSource(broker)],
)


@broker.on_event(TaskiqEvents.WORKER_STARTUP)
async def _configure_worker_logging(state: TaskiqState) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
