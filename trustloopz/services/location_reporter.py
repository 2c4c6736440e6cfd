"""Posts location samples for a trip and parses the route status reply."""
from __future__ import annotations

import logging

from pydantic import ValidationError

from ..api.client import TripApiClient
from ..models import LocationSample, RouteStatus

log = logging.getLogger(__name__)


class LocationReporter:
    def __init__(self, client: TripApiClient) -> None:
        self.client = client

    async def report(self, trip_id: int, sample: LocationSample) -> RouteStatus | None:
        """Send one sample. Returns the route status if the server sent one.

        Raises NetworkError/ApiError on failure; callers decide how to surface
        them. A malformed ``routeStatus`` is logged and treated as absent.
        """
        result = await self.client.post_location(trip_id, sample.latitude, sample.longitude)
        log.debug(f"[Location] trip {trip_id} update sent: {result}")

        if not isinstance(result, dict):
            return None
        raw = result.get("routeStatus")
        if raw is None:
            return None
        try:
            return RouteStatus.model_validate(raw)
        except ValidationError as e:
            log.warning(f"[Location] trip {trip_id}: dropping malformed routeStatus {raw!r}: {e}")
            return None
