"""Search query generation: turns a task into a short places keyword."""

import logging
from typing import Protocol

from pydantic import BaseModel, Field

from src.core.config import settings
from src.core.llm.clients import generate_structured
from src.core.models.task import Task
from src.core.observability import observe

logger = logging.getLogger(__name__)

QUERY_SYSTEM_PROMPT = """\
You generate the best Google Places search keyword for a task.

Rules:
- 1-4 words, a place type rather than an action.
- If the task names a specific business or location, KEEP that name.
- No verbs ("buy", "get", "go to"), no quantities, no items to purchase.
- Preserve proper nouns and brand names.
- If the task does not involve visiting a physical place (calls, emails,
  payments online, reading), set is_physical_place to false.

Examples:
- "buy groceries at Lidl" -> "Lidl supermarket"
- "get coffee from Starbucks" -> "Starbucks"
- "go to Cloudflight office" -> "Cloudflight office"
- "pick up prescription" -> "pharmacy"
- "go to office" -> "office"
- "reply to Anna's email" -> not a physical place"""


class SearchQuery(BaseModel):
    search_query: str = Field(default="", max_length=80)
    is_physical_place: bool = True


class SearchQueryGenerator(Protocol):
    async def generate(self, task: Task) -> str | None:
        """Places keyword for ``task``, or None when no physical place applies."""
        ...


class LLMSearchQueryGenerator:
    def __init__(self, model: str | None = None):
        self.model = model or settings.query_model

    @observe(name="search_query_generation")
    async def generate(self, task: Task) -> str | None:
        prompt = (
            f'Task: "{task.title}"\n'
            f'Description: "{task.description or "N/A"}"\n'
            f"Category: {task.category.value if task.category else 'N/A'}"
        )
        result = await generate_structured(
            self.model, QUERY_SYSTEM_PROMPT, prompt, SearchQuery, max_tokens=200
        )
        query = result.search_query.strip()
        if not result.is_physical_place or not query:
            logger.debug("Task %s has no physical place", task.id)
            return None
        return query
