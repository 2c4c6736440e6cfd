"""Route deviation state transitions."""
from __future__ import annotations

from ..models import DeviationState, RouteStatus


def evaluate(previous: DeviationState | None, status: RouteStatus | None) -> DeviationState | None:
    """Return the deviation state after a location report.

    A missing status leaves the previous state alone; being on route clears it;
    being off route always reports the distance from this response, even when it
    is smaller than the last one seen (responses may arrive out of order).
    """
    if status is None:
        return previous
    if status.is_on_route:
        return None
    return DeviationState(is_deviated=True, distance_km=status.distance_from_route_km)
