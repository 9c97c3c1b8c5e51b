"""Location resolver: two-phase task → place resolution.

Phase A (background): ask the query generator for a places keyword and park
it in a PENDING_LOCATION_SYNC marker. Phase B (position report): claim each
marker and search around the reported position.
"""

import asyncio
import logging

from src.core.config import settings
from src.core.exceptions import ConfigurationMissing, PlacesSearchError
from src.location.geo import haversine_meters
from src.location.places import GooglePlacesClient, PlacesClient
from src.location.query_generator import LLMSearchQueryGenerator, SearchQueryGenerator
from src.location.store import LocationStore
from src.tasks.store import TaskStore

logger = logging.getLogger(__name__)


class LocationResolver:
    def __init__(
        self,
        *,
        locations: LocationStore | None = None,
        tasks: TaskStore | None = None,
        query_generator: SearchQueryGenerator | None = None,
        places: PlacesClient | None = None,
    ):
        self._locations = locations or LocationStore()
        self._tasks = tasks or TaskStore()
        self._query_generator = query_generator or LLMSearchQueryGenerator()
        self._places = places or GooglePlacesClient()

    async def generate_search_queries(self, limit: int | None = None) -> dict[str, int]:
        """Phase A: attach a search query marker to tasks lacking locations."""
        stats = {"processed": 0, "generated": 0, "no_place": 0, "failed": 0}
        tasks = await self._locations.tasks_without_locations(
            limit or settings.query_generation_batch_size
        )
        if not tasks:
            logger.debug("No tasks need a search query")
            return stats

        timeout = settings.query_generation_timeout_seconds
        for task in tasks:
            stats["processed"] += 1
            try:
                query = await asyncio.wait_for(self._query_generator.generate(task), timeout)
            except ConfigurationMissing as e:
                logger.warning("Search query generation disabled: %s", e)
                stats["failed"] += 1
                break
            except TimeoutError:
                logger.warning("Search query generation timed out for task %s", task.id)
                stats["failed"] += 1
                continue
            except Exception as e:
                logger.error("Search query generation failed for task %s: %s", task.id, e)
                stats["failed"] += 1
                continue

            if not query:
                await self._locations.add_no_results_marker(task.id)
                stats["no_place"] += 1
                continue

            if await self._locations.add_query_marker(task.id, query):
                await self._tasks.mark_location_dependent(task.id)
                stats["generated"] += 1
                logger.info("Search query %r generated for task %s", query, task.id)

        logger.info("Search query generation: %s", stats)
        return stats

    async def resolve_pending(self, lat: float, lng: float) -> int:
        """Phase B: resolve every pending marker around ``lat,lng``.

        Returns the number of markers this call resolved (places or NO_RESULTS).
        """
        markers = await self._locations.pending_markers()
        if not markers:
            return 0

        radius = settings.places_radius_meters
        max_results = settings.places_max_results
        resolved = 0

        for marker in markers:
            if not await self._locations.claim_marker(marker.id):
                logger.debug("Marker %s already claimed", marker.id)
                continue
            task_id = marker.task_id
            query = marker.address

            if await self._locations.has_resolved_locations(task_id):
                logger.debug("Task %s already has locations, marker dropped", task_id)
                continue

            try:
                places = await self._places.search_nearby(lat, lng, query, radius=radius)
            except ConfigurationMissing as e:
                logger.warning("Places search disabled: %s", e)
                await self._locations.add_query_marker(task_id, query)
                break
            except PlacesSearchError as e:
                # Task stays without locations; Phase A regenerates the query.
                logger.warning("Places search failed for task %s (%r): %s", task_id, query, e)
                continue
            except Exception:
                logger.exception("Places search crashed for task %s (%r)", task_id, query)
                continue

            if not places:
                await self._locations.add_no_results_marker(task_id, query)
                logger.info("No places for task %s (%r)", task_id, query)
                resolved += 1
                continue

            top = places[:max_results]
            try:
                distances = [round(haversine_meters(lat, lng, p.lat, p.lng)) for p in top]
                stored = await self._locations.replace_locations(task_id, top, distances)
            except Exception:
                logger.exception("Storing places failed for task %s (%r)", task_id, query)
                continue
            resolved += 1
            logger.info(
                "Task %s resolved to %d places for %r (nearest %d m)",
                task_id,
                stored,
                query,
                min(distances),
            )

        return resolved
