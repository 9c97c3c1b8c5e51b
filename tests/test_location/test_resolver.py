"""Tests for two-phase location resolution."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.exceptions import ConfigurationMissing, PlacesSearchError
from src.core.models.task_location import (
    NO_RESULTS,
    PENDING_LOCATION_SYNC,
    SEARCH_QUERY_GENERATED,
)
from src.location.resolver import LocationResolver

LAT, LNG = 48.2085, 16.3721


def _generator(query="pharmacy") -> MagicMock:
    generator = MagicMock()
    generator.generate = AsyncMock(return_value=query)
    return generator


def _places(result=None, side_effect=None) -> MagicMock:
    places = MagicMock()
    places.search_nearby = AsyncMock(return_value=result or [], side_effect=side_effect)
    return places


def _resolver(location_store, task_store, generator=None, places=None) -> LocationResolver:
    return LocationResolver(
        locations=location_store,
        tasks=task_store,
        query_generator=generator or _generator(),
        places=places or _places(),
    )


# --- Phase A ---


@pytest.mark.asyncio
async def test_phase_a_writes_marker_and_flags_task(location_store, task_store):
    task = await task_store.create(title="Buy medicine")
    generator = _generator("pharmacy")

    stats = await _resolver(location_store, task_store, generator).generate_search_queries()

    assert stats["generated"] == 1
    [marker] = await location_store.for_task(task.id)
    assert marker.place_id == PENDING_LOCATION_SYNC
    assert marker.name == SEARCH_QUERY_GENERATED
    assert marker.address == "pharmacy"
    assert marker.is_marker
    assert (await task_store.get(task.id)).location_dependent is True


@pytest.mark.asyncio
async def test_phase_a_skips_completed_deleted_and_located(location_store, task_store):
    done = await task_store.create(title="Done")
    await task_store.complete(done.id)
    gone = await task_store.create(title="Gone")
    await task_store.soft_delete(gone.id)
    located = await task_store.create(title="Already has marker")
    await location_store.add_query_marker(located.id, "bakery")
    generator = _generator()

    stats = await _resolver(location_store, task_store, generator).generate_search_queries()

    assert stats["processed"] == 0
    generator.generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_phase_a_no_physical_place(location_store, task_store):
    task = await task_store.create(title="Reply to Anna's email")

    stats = await _resolver(location_store, task_store, _generator(None)).generate_search_queries()

    assert stats["no_place"] == 1
    [marker] = await location_store.for_task(task.id)
    assert marker.place_id == NO_RESULTS
    assert (await task_store.get(task.id)).location_dependent is False


@pytest.mark.asyncio
async def test_phase_a_generator_failure_leaves_task_untouched(location_store, task_store):
    task = await task_store.create(title="Buy medicine")
    generator = MagicMock()
    generator.generate = AsyncMock(side_effect=RuntimeError("rate limited"))

    stats = await _resolver(location_store, task_store, generator).generate_search_queries()

    assert stats["failed"] == 1
    assert await location_store.for_task(task.id) == []


@pytest.mark.asyncio
async def test_phase_a_generator_timeout(location_store, task_store, monkeypatch):
    from src.core.config import settings

    monkeypatch.setattr(settings, "query_generation_timeout_seconds", 0.05)
    task = await task_store.create(title="Buy medicine")

    async def slow(_task):
        await asyncio.sleep(5)

    generator = MagicMock()
    generator.generate = slow

    stats = await _resolver(location_store, task_store, generator).generate_search_queries()

    assert stats["failed"] == 1
    assert await location_store.for_task(task.id) == []


@pytest.mark.asyncio
async def test_phase_a_stops_when_unconfigured(location_store, task_store):
    await task_store.create(title="One")
    await task_store.create(title="Two")
    generator = MagicMock()
    generator.generate = AsyncMock(side_effect=ConfigurationMissing("ANTHROPIC_API_KEY is not set"))

    stats = await _resolver(location_store, task_store, generator).generate_search_queries()

    assert generator.generate.await_count == 1
    assert stats["generated"] == 0


@pytest.mark.asyncio
async def test_phase_a_default_batch_is_five(location_store, task_store):
    for i in range(7):
        await task_store.create(title=f"Errand {i}")

    stats = await _resolver(location_store, task_store).generate_search_queries()

    assert stats["processed"] == 5
    assert stats["generated"] == 5
    assert len(await location_store.tasks_without_locations()) == 2


# --- Phase B ---


@pytest.mark.asyncio
async def test_phase_b_resolves_marker_to_top_places(location_store, task_store, make_place):
    task = await task_store.create(title="Buy medicine")
    await location_store.add_query_marker(task.id, "pharmacy")
    places = _places([make_place(i) for i in range(1, 13)])

    resolved = await _resolver(location_store, task_store, places=places).resolve_pending(LAT, LNG)

    assert resolved == 1
    places.search_nearby.assert_awaited_once_with(LAT, LNG, "pharmacy", radius=2000)
    rows = await location_store.for_task(task.id)
    assert len(rows) == 10
    assert not any(r.is_marker for r in rows)
    assert rows[0].place_id == "place-1"
    assert abs(rows[0].distance_meters - 111) <= 1
    assert rows[0].rating == 4.2
    assert rows[0].is_open is True
    assert await location_store.pending_markers() == []


@pytest.mark.asyncio
async def test_phase_b_zero_results_writes_terminal_marker(location_store, task_store):
    task = await task_store.create(title="Visit unicorn stable")
    await location_store.add_query_marker(task.id, "unicorn stable")
    generator = _generator()
    resolver = _resolver(location_store, task_store, generator, _places([]))

    assert await resolver.resolve_pending(LAT, LNG) == 1

    [marker] = await location_store.for_task(task.id)
    assert marker.place_id == NO_RESULTS

    # Terminal: never asked again
    await resolver.generate_search_queries()
    generator.generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_phase_b_failure_leaves_task_for_retry(location_store, task_store):
    task = await task_store.create(title="Buy medicine")
    await location_store.add_query_marker(task.id, "pharmacy")
    generator = _generator("pharmacy")
    resolver = _resolver(
        location_store,
        task_store,
        generator,
        _places(side_effect=PlacesSearchError("Places API returned OVER_QUERY_LIMIT")),
    )

    assert await resolver.resolve_pending(LAT, LNG) == 0
    assert await location_store.for_task(task.id) == []

    # Next Phase A regenerates the query
    await resolver.generate_search_queries()
    generator.generate.assert_awaited_once()
    [marker] = await location_store.for_task(task.id)
    assert marker.place_id == PENDING_LOCATION_SYNC


@pytest.mark.asyncio
async def test_phase_b_unconfigured_restores_marker(location_store, task_store):
    task = await task_store.create(title="Buy medicine")
    await location_store.add_query_marker(task.id, "pharmacy")
    resolver = _resolver(
        location_store,
        task_store,
        places=_places(side_effect=ConfigurationMissing("GOOGLE_MAPS_API_KEY is not set")),
    )

    assert await resolver.resolve_pending(LAT, LNG) == 0
    [marker] = await location_store.for_task(task.id)
    assert marker.place_id == PENDING_LOCATION_SYNC
    assert marker.address == "pharmacy"


@pytest.mark.asyncio
async def test_marker_claimed_once(location_store, task_store):
    task = await task_store.create(title="Buy medicine")
    await location_store.add_query_marker(task.id, "pharmacy")
    [marker] = await location_store.pending_markers()

    assert await location_store.claim_marker(marker.id) is True
    assert await location_store.claim_marker(marker.id) is False


@pytest.mark.asyncio
async def test_marker_insert_guarded(location_store, task_store):
    task = await task_store.create(title="Buy medicine")

    assert await location_store.add_query_marker(task.id, "pharmacy") is True
    assert await location_store.add_query_marker(task.id, "drugstore") is False
    assert await location_store.add_no_results_marker(task.id) is False
    assert len(await location_store.for_task(task.id)) == 1


@pytest.mark.asyncio
async def test_phase_b_no_markers(location_store, task_store):
    places = _places()
    resolved = await _resolver(location_store, task_store, places=places).resolve_pending(LAT, LNG)

    assert resolved == 0
    places.search_nearby.assert_not_awaited()


@pytest.mark.asyncio
async def test_phase_b_unexpected_error_skips_only_that_marker(
    location_store, task_store, make_place
):
    broken = await task_store.create(title="Buy medicine")
    await location_store.add_query_marker(broken.id, "pharmacy")
    fine = await task_store.create(title="Buy bread")
    await location_store.add_query_marker(fine.id, "bakery")

    async def search_nearby(lat, lng, query, *, radius):
        if query == "pharmacy":
            raise AttributeError("'NoneType' object has no attribute 'get'")
        return [make_place(1, name="Bakery")]

    places = MagicMock()
    places.search_nearby = AsyncMock(side_effect=search_nearby)

    resolved = await _resolver(location_store, task_store, places=places).resolve_pending(LAT, LNG)

    assert resolved == 1
    assert places.search_nearby.await_count == 2
    assert await location_store.for_task(broken.id) == []
    [row] = await location_store.for_task(fine.id)
    assert row.name == "Bakery"
