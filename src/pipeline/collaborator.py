"""Decision collaborator: maps one notification plus context to one task action.

The host treats the collaborator as an opaque strategy: anything implementing
``DecisionCollaborator`` can be injected (the LLM one below in production,
scripted fakes in tests). Whatever it returns is validated by the processor.
"""

import logging
from typing import Protocol

from src.core.config import settings
from src.core.llm.clients import generate_structured
from src.core.observability import observe
from src.core.schemas.decision import DecisionInput, DecisionResult

logger = logging.getLogger(__name__)

DECISION_SYSTEM_PROMPT = """\
You are a task management assistant. You receive ONE phone notification together
with context and decide what should happen to the user's task list.

Return exactly one action:
- create: a new, explicit, direct action request the USER must do.
- edit: the notification updates an existing task (time changed, details added,
  "don't buy milk, buy eggs"). Use the id of that task.
- delete: an existing task was cancelled.
- complete: an existing task is done ("done shopping").
- ignore: not task-worthy, or an exact duplicate with no new information.

Duplicate detection comes first:
- Compare with existing_tasks_from_source and recent_pending_tasks.
- Same subject, same person/entity, same timeframe means the same task.
- Prefer edit over create when a similar task exists and the notification adds
  or changes information. Prefer ignore over create for plain reminders of an
  existing task.
- Read recent_context: earlier notifications from the same app may show this
  one modifies or cancels something already captured.

Most notifications must be ignored:
- system and device status (battery, updates, connectivity, storage, logins)
- message counters and badges ("49 messages from 2 chats", "New message from X")
- questions asked by others ("When is the deadline?")
- social media engagement (likes, follows, comments)
- past tense or already completed actions
- other people's needs ("she has to call the dentist")
- news, weather, prices, scores, promotions, FYI
- greetings, acknowledgements and casual chat

Rules:
- edit, delete and complete MUST use a task id that appears in the context.
  Never invent ids.
- Titles under 60 characters. category is one of general, meetings, finance,
  shopping, communication, health. priority is low, medium or high.
- due_date only when the notification states a deadline (ISO 8601)."""


class DecisionCollaborator(Protocol):
    """Strategy interface: one decision input in, one action out."""

    async def decide(self, decision_input: DecisionInput) -> DecisionResult: ...


class LLMDecisionCollaborator:
    """Decision collaborator backed by an LLM with structured output."""

    def __init__(self, model: str | None = None):
        self.model = model or settings.decision_model

    @observe(name="notification_decision")
    async def decide(self, decision_input: DecisionInput) -> DecisionResult:
        prompt = build_decision_prompt(decision_input)
        result = await generate_structured(
            self.model,
            DECISION_SYSTEM_PROMPT,
            prompt,
            DecisionResult,
            max_tokens=1024,
        )
        logger.debug(
            "Decision for notification %s: %s",
            decision_input.notification.id,
            [a.action for a in result.actions],
        )
        return result


def build_decision_prompt(decision_input: DecisionInput) -> str:
    n = decision_input.notification
    payload = decision_input.model_dump_json(
        indent=2,
        include={"recent_context", "existing_tasks_from_source", "recent_pending_tasks"},
    )
    return (
        f"NOTIFICATION\n"
        f"app: {n.source_app}\n"
        f"title: {n.title}\n"
        f"body: {n.content}\n"
        f"received: {n.timestamp.isoformat()}\n\n"
        f"CONTEXT (JSON)\n{payload}\n\n"
        "Check for duplicates first, then decide the single action."
    )
