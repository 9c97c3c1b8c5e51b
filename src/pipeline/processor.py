"""Notification batch cycle: fetch → assemble context → decide → apply.

Each notification is handled independently; one bad decision or one failed
call never stops the rest of the batch. Failures leave the notification
unprocessed so the next cycle retries it.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from src.core.config import settings
from src.core.exceptions import (
    ConfigurationMissing,
    DecisionTimeout,
    TaskNotFound,
    TransientIOError,
    ValidationFailure,
)
from src.core.models.notification import Notification
from src.core.schemas.decision import (
    TARGETED_ACTIONS,
    DecisionInput,
    DecisionResult,
    TaskAction,
)
from src.pipeline.collaborator import DecisionCollaborator
from src.pipeline.context import ContextAssembler
from src.pipeline.executor import ActionExecutor, ActionResult
from src.pipeline.store import NotificationStore
from src.tasks.store import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class BatchReport:
    fetched: int = 0
    results: list[ActionResult] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)  # notification id -> error kind
    anomalies: int = 0

    @property
    def processed(self) -> int:
        return len(self.results)

    def to_dict(self) -> dict[str, Any]:
        counts: dict[str, int] = {}
        for r in self.results:
            counts[r.action] = counts.get(r.action, 0) + 1
        return {
            "fetched": self.fetched,
            "processed": self.processed,
            "actions": counts,
            "failed": len(self.failures),
            "failures": self.failures,
            "anomalies": self.anomalies,
        }


def validate_decision(
    decision_input: DecisionInput, raw: DecisionResult | dict[str, Any]
) -> tuple[TaskAction, int]:
    """Check structural integrity of a collaborator reply.

    Returns the action to apply and the number of extra actions discarded.
    """
    try:
        result = raw if isinstance(raw, DecisionResult) else DecisionResult.model_validate(raw)
    except ValidationError as e:
        raise ValidationFailure(f"Malformed decision: {e.error_count()} errors") from e

    if not result.actions:
        raise ValidationFailure("Decision contained no action")

    action = result.actions[0]
    extra = len(result.actions) - 1
    if extra:
        logger.warning(
            "Decision for notification %s returned %d actions; applying %s, discarding %s",
            decision_input.notification.id,
            len(result.actions),
            action.action,
            [a.action for a in result.actions[1:]],
        )

    if isinstance(action, TARGETED_ACTIONS):
        if action.target_task_id not in decision_input.known_task_ids():
            raise ValidationFailure(
                f"{action.action} targets task {action.target_task_id} not present in context"
            )
    return action, extra


class NotificationProcessor:
    def __init__(
        self,
        collaborator: DecisionCollaborator,
        *,
        notifications: NotificationStore | None = None,
        tasks: TaskStore | None = None,
        assembler: ContextAssembler | None = None,
        executor: ActionExecutor | None = None,
        decision_timeout: float | None = None,
        concurrency: int | None = None,
    ):
        self._collaborator = collaborator
        self._notifications = notifications or NotificationStore()
        self._tasks = tasks or TaskStore()
        self._assembler = assembler or ContextAssembler(self._notifications, self._tasks)
        self._executor = executor or ActionExecutor(self._tasks, self._notifications)
        self._timeout = decision_timeout or settings.decision_timeout_seconds
        self._concurrency = concurrency or settings.notification_concurrency

    async def run_batch(self, batch_size: int | None = None) -> BatchReport:
        report = BatchReport()
        batch = await self._notifications.unprocessed(batch_size or settings.notification_batch_size)
        report.fetched = len(batch)
        if not batch:
            logger.debug("No unprocessed notifications")
            return report

        inputs = await self._assembler.assemble(batch)
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _one(notification: Notification, decision_input: DecisionInput) -> None:
            async with semaphore:
                await self._process_one(notification, decision_input, report)

        await asyncio.gather(*[_one(n, i) for n, i in zip(batch, inputs, strict=True)])

        logger.info("Notification batch complete: %s", report.to_dict())
        return report

    async def _process_one(
        self, notification: Notification, decision_input: DecisionInput, report: BatchReport
    ) -> None:
        key = str(notification.id)
        try:
            raw = await self._decide(decision_input)
            action, extra = validate_decision(decision_input, raw)
            report.anomalies += extra
            report.results.append(await self._executor.apply(notification, action))
        except ConfigurationMissing as e:
            logger.warning("Decision collaborator unavailable: %s", e)
            report.failures[key] = e.kind
        except ValidationFailure as e:
            logger.warning("Anomaly for notification %s: %s", notification.id, e)
            report.anomalies += 1
            report.failures[key] = e.kind
        except TaskNotFound as e:
            logger.warning("Notification %s: %s, will retry", notification.id, e)
            report.failures[key] = e.kind
        except TransientIOError as e:
            logger.warning("Notification %s: transient failure: %s", notification.id, e)
            report.failures[key] = e.kind
        except SQLAlchemyError as e:
            logger.error("Notification %s: database error: %s", notification.id, e)
            report.failures[key] = TransientIOError.kind
        except Exception:
            logger.exception("Notification %s: decision failed", notification.id)
            report.failures[key] = TransientIOError.kind

    async def _decide(self, decision_input: DecisionInput) -> DecisionResult | dict[str, Any]:
        try:
            return await asyncio.wait_for(
                self._collaborator.decide(decision_input), timeout=self._timeout
            )
        except TimeoutError as e:
            raise DecisionTimeout(
                f"Decision timed out after {self._timeout}s for {decision_input.notification.id}"
            ) from e
