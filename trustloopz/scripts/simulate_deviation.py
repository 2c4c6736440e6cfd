#!/usr/bin/env python
"""
Report a single location for a trip and print the route status.

Usage:
    python -m trustloopz.scripts.simulate_deviation 37 47.683210 -122.102622
    python -m trustloopz.scripts.simulate_deviation 37 47.683210 -122.102622 --dry-run
"""
from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import UTC, datetime

from ..api.client import TripApiClient
from ..config import settings
from ..exceptions import TrustLoopzError
from ..models import LocationSample
from ..services.location_reporter import LocationReporter


async def simulate(trip_id: int, latitude: float, longitude: float, dry_run: bool = False) -> int:
    sample = LocationSample(latitude=latitude, longitude=longitude, captured_at=datetime.now(UTC))
    print(f"Simulating route deviation for trip {trip_id}")
    print(f"Using test coordinates: {sample.latitude}, {sample.longitude}")

    if dry_run:
        print(f"\n[DRY RUN] Would POST to {settings.API_BASE_URL}/api/trips/{trip_id}/location")
        return 0

    client = TripApiClient()
    try:
        status = await LocationReporter(client).report(trip_id, sample)
    except TrustLoopzError as e:
        print(f"FAILED: {e}")
        return 1
    finally:
        await client.close()

    if status is not None and not status.is_on_route:
        print("DEVIATION DETECTED!")
        print(f"Distance from route: {status.distance_from_route_km:.2f}km")
    else:
        print("No deviation detected or unexpected response")
    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Post one off-route location for a trip"
    )
    parser.add_argument("trip_id", type=int, help="Trip ID to report for")
    parser.add_argument("latitude", type=float, help="Latitude to report")
    parser.add_argument("longitude", type=float, help="Longitude to report")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be sent without actually sending"
    )

    args = parser.parse_args()
    logging.basicConfig(level=settings.LOG_LEVEL)

    raise SystemExit(asyncio.run(
        simulate(args.trip_id, args.latitude, args.longitude, args.dry_run)
    ))


if __name__ == "__main__":
    main()
