"""Tests for the proximity engine, the cooldown ledger and position reports."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.exceptions import ValidationFailure
from src.core.models.enums import AlertType, TaskPriority
from src.core.schemas.alerts import ProximityAlert
from src.core.schemas.places import PlaceResult
from src.location.alert_queue import InMemoryAlertQueue
from src.location.ledger import NotificationLedgerStore
from src.location.proximity import ProximityEngine, format_alert_body
from src.location.resolver import LocationResolver
from src.location.store import LocationStore
from src.location.sync import PositionReportHandler, validate_position
from src.tasks.store import TaskStore

LAT, LNG = 48.2085, 16.3721
# 0.00045 degrees of latitude is about 50 m
FIFTY_METRES = 0.00045


def _place(name: str, lat_offset: float, place_id: str | None = None, **kwargs) -> PlaceResult:
    return PlaceResult(
        name=name,
        address=f"{name} street",
        lat=kwargs.pop("lat", LAT + lat_offset),
        lng=kwargs.pop("lng", LNG),
        place_id=place_id or name.lower().replace(" ", "-"),
    )


async def _task_with_places(task_store, location_store, title, places, **task_kwargs):
    task = await task_store.create(title=title, **task_kwargs)
    await location_store.replace_locations(task.id, places, [0] * len(places))
    return task


def _engine(location_store, ledger_store, queue=None) -> ProximityEngine:
    return ProximityEngine(
        queue or InMemoryAlertQueue(),
        locations=location_store,
        ledger=ledger_store,
        radius_meters=100,
        cooldown=timedelta(minutes=60),
        queue_ttl=timedelta(minutes=10),
    )


def test_format_alert_body():
    assert format_alert_body(50, "Apotheke Zum Hirschen") == "You're 50 m from Apotheke Zum Hirschen"


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_ledger_cooldown(ledger_store, task_store):
    task = await task_store.create(title="Buy medicine")
    now = datetime.now(UTC)
    cooldown = timedelta(minutes=60)

    assert await ledger_store.try_mark_sent(task.id, cooldown=cooldown, now=now) == 1
    assert (
        await ledger_store.try_mark_sent(
            task.id, cooldown=cooldown, now=now + timedelta(minutes=10)
        )
        is None
    )
    assert (
        await ledger_store.try_mark_sent(
            task.id, cooldown=cooldown, now=now + timedelta(minutes=61)
        )
        == 2
    )

    row = await ledger_store.get(task.id, AlertType.location)
    assert row.notification_count == 2
    assert row.last_sent_time == now + timedelta(minutes=61)


@pytest.mark.asyncio
async def test_ledger_recently_sent(ledger_store, task_store):
    sent = await task_store.create(title="Sent")
    other = await task_store.create(title="Other")
    now = datetime.now(UTC)
    cooldown = timedelta(minutes=60)
    await ledger_store.try_mark_sent(sent.id, cooldown=cooldown, now=now)

    assert await ledger_store.recently_sent_task_ids(
        [sent.id, other.id], cooldown=cooldown, now=now + timedelta(minutes=5)
    ) == {sent.id}
    assert (
        await ledger_store.recently_sent_task_ids(
            [sent.id], cooldown=cooldown, now=now + timedelta(minutes=90)
        )
        == set()
    )
    assert await ledger_store.recently_sent_task_ids([], cooldown=cooldown) == set()


@pytest.mark.asyncio
async def test_ledger_purge(ledger_store, task_store):
    old = await task_store.create(title="Old")
    fresh = await task_store.create(title="Fresh")
    now = datetime.now(UTC)
    await ledger_store.try_mark_sent(old.id, cooldown=timedelta(minutes=60), now=now - timedelta(hours=30))
    await ledger_store.try_mark_sent(fresh.id, cooldown=timedelta(minutes=60), now=now)

    assert await ledger_store.purge_older_than(timedelta(hours=24), now=now) == 1
    assert await ledger_store.get(old.id) is None
    assert await ledger_store.get(fresh.id) is not None


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_alert_within_radius_then_cooldown(location_store, ledger_store, task_store):
    task = await _task_with_places(
        task_store,
        location_store,
        "Buy medicine",
        [_place("Apotheke", FIFTY_METRES)],
        priority=TaskPriority.high,
    )
    queue = InMemoryAlertQueue()
    engine = _engine(location_store, ledger_store, queue)
    now = datetime.now(UTC)

    stats = await engine.run(LAT, LNG, now=now)

    assert stats["updated"] == 1
    assert stats["alerts_enqueued"] == 1
    [alert] = await queue.drain()
    assert alert.task_id == str(task.id)
    assert alert.title == "Buy medicine"
    assert alert.distance == 50
    assert alert.body == "You're 50 m from Apotheke"
    assert alert.priority == "high"
    assert alert.location_name == "Apotheke"

    [row] = await location_store.for_task(task.id)
    assert row.distance_meters == 50

    # Ten minutes later: still cooling down
    stats = await engine.run(LAT, LNG, now=now + timedelta(minutes=10))
    assert stats["alerts_enqueued"] == 0
    assert await queue.drain() == []

    # After the cooldown: a second alert, count incremented
    stats = await engine.run(LAT, LNG, now=now + timedelta(minutes=61))
    assert stats["alerts_enqueued"] == 1
    assert (await ledger_store.get(task.id)).notification_count == 2


@pytest.mark.asyncio
async def test_out_of_range_updates_distance_only(location_store, ledger_store, task_store):
    task = await _task_with_places(
        task_store, location_store, "Buy bread", [_place("Bakery", 0.0015)]
    )
    queue = InMemoryAlertQueue()

    stats = await _engine(location_store, ledger_store, queue).run(LAT, LNG)

    assert stats == {"updated": 1, "alerts_enqueued": 0, "purged": 0}
    [row] = await location_store.for_task(task.id)
    assert 160 <= row.distance_meters <= 170
    assert await ledger_store.get(task.id) is None


@pytest.mark.asyncio
async def test_one_alert_per_task_nearest_place(location_store, ledger_store, task_store):
    await _task_with_places(
        task_store,
        location_store,
        "Buy medicine",
        [_place("Far pharmacy", 0.0007), _place("Near pharmacy", FIFTY_METRES)],
    )
    queue = InMemoryAlertQueue()

    stats = await _engine(location_store, ledger_store, queue).run(LAT, LNG)

    assert stats["alerts_enqueued"] == 1
    [alert] = await queue.drain()
    assert alert.location_name == "Near pharmacy"


@pytest.mark.asyncio
async def test_exact_position_is_not_an_alert(location_store, ledger_store, task_store):
    await _task_with_places(task_store, location_store, "Buy bread", [_place("Bakery", 0.0)])

    stats = await _engine(location_store, ledger_store).run(LAT, LNG)

    assert stats["alerts_enqueued"] == 0


@pytest.mark.asyncio
async def test_markers_and_null_island_ignored(location_store, ledger_store, task_store):
    pending = await task_store.create(title="Buy medicine")
    await location_store.add_query_marker(pending.id, "pharmacy")
    nothing = await task_store.create(title="Visit unicorn stable")
    await location_store.add_no_results_marker(nothing.id, "unicorn stable")
    await _task_with_places(
        task_store, location_store, "Broken", [_place("Nowhere", 0.0, lat=0.0, lng=0.0)]
    )

    stats = await _engine(location_store, ledger_store).run(0.0002, 0.0002)

    assert stats["updated"] == 0
    assert stats["alerts_enqueued"] == 0


@pytest.mark.asyncio
async def test_completed_and_deleted_tasks_ignored(location_store, ledger_store, task_store):
    done = await _task_with_places(
        task_store, location_store, "Done", [_place("Shop A", FIFTY_METRES)]
    )
    await task_store.complete(done.id)
    gone = await _task_with_places(
        task_store, location_store, "Gone", [_place("Shop B", FIFTY_METRES)]
    )
    await task_store.soft_delete(gone.id)

    stats = await _engine(location_store, ledger_store).run(LAT, LNG)

    assert stats == {"updated": 0, "alerts_enqueued": 0, "purged": 0}


@pytest.mark.asyncio
async def test_run_purges_stale_queue_entries(location_store, ledger_store):
    queue = InMemoryAlertQueue()
    now = datetime.now(UTC)
    await queue.enqueue(
        ProximityAlert(
            task_id="t1",
            title="Old",
            body="You're 40 m from X",
            distance=40,
            location_name="X",
            timestamp=now - timedelta(minutes=11),
        )
    )

    stats = await _engine(location_store, ledger_store, queue).run(LAT, LNG, now=now)

    assert stats["purged"] == 1
    assert await queue.size() == 0


@pytest.mark.asyncio
async def test_ledger_denial_skips_enqueue(location_store, task_store):
    await _task_with_places(
        task_store, location_store, "Buy medicine", [_place("Apotheke", FIFTY_METRES)]
    )
    ledger = MagicMock()
    ledger.recently_sent_task_ids = AsyncMock(return_value=set())
    ledger.try_mark_sent = AsyncMock(return_value=None)
    queue = InMemoryAlertQueue()

    stats = await _engine(location_store, ledger, queue).run(LAT, LNG)

    assert stats["alerts_enqueued"] == 0
    ledger.try_mark_sent.assert_awaited_once()
    assert await queue.size() == 0


@pytest.mark.asyncio
async def test_update_distances_counts_matched_rows(location_store, task_store):
    task = await _task_with_places(
        task_store, location_store, "Buy bread", [_place("Bakery", FIFTY_METRES)]
    )
    [row] = await location_store.for_task(task.id)

    assert await location_store.update_distances({row.id: 42, row.id + 1000: 7}) == 1
    assert await location_store.update_distances({row.id + 1000: 7}) == 0
    [row] = await location_store.for_task(task.id)
    assert row.distance_meters == 42


@pytest.mark.asyncio
async def test_concurrent_runs_send_one_alert(file_session_factory):
    tasks = TaskStore(file_session_factory)
    locations = LocationStore(file_session_factory)
    ledger = NotificationLedgerStore(file_session_factory)
    task = await _task_with_places(
        tasks, locations, "Buy medicine", [_place("Apotheke", FIFTY_METRES)]
    )
    queue = InMemoryAlertQueue()
    engine = _engine(locations, ledger, queue)
    now = datetime.now(UTC)

    results = await asyncio.gather(
        engine.run(LAT, LNG, now=now),
        engine.run(LAT, LNG, now=now),
    )

    assert sorted(r["alerts_enqueued"] for r in results) == [0, 1]
    assert await queue.size() == 1
    assert (await ledger.get(task.id)).notification_count == 1


# ---------------------------------------------------------------------------
# Position reports
# ---------------------------------------------------------------------------


def test_validate_position():
    validate_position(90, -180)
    with pytest.raises(ValidationFailure):
        validate_position(91, 0)
    with pytest.raises(ValidationFailure):
        validate_position(0, 180.5)


@pytest.mark.asyncio
async def test_position_report_resolves_then_alerts(
    location_store, ledger_store, task_store, make_place
):
    task = await task_store.create(title="Buy medicine")
    await location_store.add_query_marker(task.id, "pharmacy")
    places = MagicMock()
    # index 1 shifted back to ~50 m north of the reported position
    places.search_nearby = AsyncMock(return_value=[make_place(1, lat=LAT - 0.00066)])
    resolver = LocationResolver(
        locations=location_store,
        tasks=task_store,
        query_generator=MagicMock(),
        places=places,
    )
    queue = InMemoryAlertQueue()
    handler = PositionReportHandler(resolver, _engine(location_store, ledger_store, queue))

    result = await handler.handle(LAT, LNG)

    assert result == {"resolved": 1, "updated": 1, "alerts_enqueued": 1}
    [alert] = await queue.drain()
    assert alert.task_id == str(task.id)
    assert alert.distance == 38

    # Second report: nothing left to resolve, alert cooling down
    assert await handler.handle(LAT, LNG) == {"resolved": 0, "updated": 1, "alerts_enqueued": 0}


@pytest.mark.asyncio
async def test_position_report_rejects_bad_coordinates(location_store, ledger_store, task_store):
    resolver = MagicMock()
    resolver.resolve_pending = AsyncMock()
    handler = PositionReportHandler(resolver, _engine(location_store, ledger_store))

    with pytest.raises(ValidationFailure):
        await handler.handle(123.0, 0.0)
    resolver.resolve_pending.assert_not_awaited()


@pytest.mark.asyncio
async def test_position_report_places_crash_keeps_other_alerts(
    location_store, ledger_store, task_store
):
    broken = await task_store.create(title="Buy medicine")
    await location_store.add_query_marker(broken.id, "pharmacy")
    nearby = await _task_with_places(
        task_store, location_store, "Buy bread", [_place("Bakery", FIFTY_METRES)]
    )
    places = MagicMock()
    places.search_nearby = AsyncMock(
        side_effect=AttributeError("'NoneType' object has no attribute 'get'")
    )
    resolver = LocationResolver(
        locations=location_store,
        tasks=task_store,
        query_generator=MagicMock(),
        places=places,
    )
    queue = InMemoryAlertQueue()
    handler = PositionReportHandler(resolver, _engine(location_store, ledger_store, queue))

    result = await handler.handle(LAT, LNG)

    assert result == {"resolved": 0, "updated": 1, "alerts_enqueued": 1}
    [alert] = await queue.drain()
    assert alert.task_id == str(nearby.id)
    # Claimed marker is gone, so the next query generation cycle picks the task up again
    assert await location_store.for_task(broken.id) == []
    assert broken.id in {t.id for t in await location_store.tasks_without_locations()}


@pytest.mark.asyncio
async def test_position_report_resolver_failure_still_runs_proximity(
    location_store, ledger_store, task_store
):
    await _task_with_places(
        task_store, location_store, "Buy bread", [_place("Bakery", FIFTY_METRES)]
    )
    resolver = MagicMock()
    resolver.resolve_pending = AsyncMock(side_effect=OSError("database unavailable"))
    handler = PositionReportHandler(resolver, _engine(location_store, ledger_store))

    result = await handler.handle(LAT, LNG)

    assert result == {"resolved": 0, "updated": 1, "alerts_enqueued": 1}
