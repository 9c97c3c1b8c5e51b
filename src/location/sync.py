"""Position report handler: Phase B resolution, then proximity."""

import asyncio
import logging
from datetime import datetime

from src.core.exceptions import ValidationFailure
from src.location.proximity import ProximityEngine
from src.location.resolver import LocationResolver

logger = logging.getLogger(__name__)


def validate_position(lat: float, lng: float) -> None:
    if not -90 <= lat <= 90 or not -180 <= lng <= 180:
        raise ValidationFailure(f"Invalid coordinates: {lat},{lng}")


class PositionReportHandler:
    """Serialises position reports within the process."""

    def __init__(self, resolver: LocationResolver, engine: ProximityEngine):
        self._resolver = resolver
        self._engine = engine
        self._lock = asyncio.Lock()

    async def handle(
        self, lat: float, lng: float, *, now: datetime | None = None
    ) -> dict[str, int]:
        validate_position(lat, lng)
        async with self._lock:
            try:
                resolved = await self._resolver.resolve_pending(lat, lng)
            except Exception:
                # Proximity still runs on the locations already resolved.
                logger.exception("Location resolution failed for %.5f,%.5f", lat, lng)
                resolved = 0
            proximity = await self._engine.run(lat, lng, now=now)

        logger.info(
            "Position report %.5f,%.5f: resolved=%d updated=%d alerts=%d",
            lat,
            lng,
            resolved,
            proximity["updated"],
            proximity["alerts_enqueued"],
        )
        return {
            "resolved": resolved,
            "updated": proximity["updated"],
            "alerts_enqueued": proximity["alerts_enqueued"],
        }
