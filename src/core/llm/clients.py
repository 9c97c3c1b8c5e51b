from typing import Any, TypeVar

import instructor
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI
from pydantic import BaseModel

from src.core.config import settings
from src.core.exceptions import ConfigurationMissing

ModelT = TypeVar("ModelT", bound=BaseModel)


def get_anthropic_client() -> AsyncAnthropic:
    return AsyncAnthropic(api_key=settings.anthropic_api_key)


def get_openai_client() -> AsyncOpenAI:
    return AsyncOpenAI(api_key=settings.openai_api_key)


def get_instructor_anthropic():
    """Instructor-wrapped Anthropic client for structured output."""
    return instructor.from_anthropic(get_anthropic_client())


def get_instructor_openai():
    """Instructor-wrapped OpenAI client for structured output."""
    return instructor.from_openai(get_openai_client())


def ensure_configured(model: str) -> None:
    """Raise ConfigurationMissing when the provider key for ``model`` is unset."""
    if model.startswith("gpt-"):
        if not settings.openai_api_key:
            raise ConfigurationMissing("OPENAI_API_KEY is not set")
    elif model.startswith("claude-"):
        if not settings.anthropic_api_key:
            raise ConfigurationMissing("ANTHROPIC_API_KEY is not set")
    else:
        raise ConfigurationMissing(f"Unknown model prefix: {model}")


async def generate_structured(
    model: str,
    system: str,
    prompt: str,
    response_model: type[ModelT],
    *,
    max_tokens: int = 1024,
    max_retries: int = 2,
) -> ModelT:
    """Structured LLM call: routes to the correct SDK based on model ID.

    Supports OpenAI (gpt-*) and Anthropic (claude-*) models. The reply is
    validated against ``response_model`` by instructor.
    """
    ensure_configured(model)

    if model.startswith("gpt-"):
        client = get_instructor_openai()
        return await client.chat.completions.create(
            model=model,
            max_completion_tokens=max_tokens,
            response_model=response_model,
            max_retries=max_retries,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
        )

    client = get_instructor_anthropic()
    return await client.messages.create(
        model=model,
        max_tokens=max_tokens,
        response_model=response_model,
        max_retries=max_retries,
        system=_cached_system(system),
        messages=[{"role": "user", "content": prompt}],
    )


def _cached_system(system: str) -> list[dict[str, Any]]:
    """System prompt as a single block marked for prompt caching."""
    return [{"type": "text", "text": system, "cache_control": {"type": "ephemeral"}}]
