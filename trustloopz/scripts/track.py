#!/usr/bin/env python
"""
Run a tracking session for a trip, replaying coordinates from a file.

The file holds one "latitude,longitude" pair per line.

Usage:
    python -m trustloopz.scripts.track 37 5 route.csv
    python -m trustloopz.scripts.track 37 5 route.csv --interval 2 --no-realtime
    python -m trustloopz.scripts.track 37 5 route.csv --dry-run
"""
from __future__ import annotations

import argparse
import asyncio
import logging

from ..api.client import TripApiClient
from ..config import settings
from ..messaging.apns import get_notification_backend
from ..messaging.toast import LogToaster
from ..realtime.bridge import RealtimeEventBridge
from ..services.geolocation import GeolocationWatcher, ReplayPositionSource
from ..services.location_reporter import LocationReporter
from ..services.notifications import NotificationDispatcher
from ..services.preferences import PreferenceStore
from ..services.registry import SubscriptionRegistry
from ..services.scheduler import get_poller, stop_poller
from ..services.tracking import TripTracker

log = logging.getLogger(__name__)


def read_points(path: str) -> list[tuple[float, float]]:
    points = []
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                lat, lon = (float(part) for part in line.split(",")[:2])
            except ValueError:
                log.warning(f"Skipping line {lineno}: {line!r}")
                continue
            points.append((lat, lon))
    return points


async def run(trip_id: int, user_id: int, points: list[tuple[float, float]], interval: float,
              realtime: bool = True, dry_run: bool = False) -> None:
    if dry_run:
        print(f"\n[DRY RUN] Would replay {len(points)} points for trip {trip_id} as user {user_id}")
        for lat, lon in points:
            print(f"  {lat:.6f}, {lon:.6f}")
        return

    toaster = LogToaster()
    registry = SubscriptionRegistry()
    client = TripApiClient()
    dispatcher = NotificationDispatcher(
        toaster=toaster,
        store=PreferenceStore(settings.PREFERENCES_FILE),
        scheduler=get_poller(),
        backend=get_notification_backend(),
    )
    tracker = TripTracker(
        trip_id=trip_id,
        watcher=GeolocationWatcher(ReplayPositionSource(points, interval=interval)),
        reporter=LocationReporter(client),
        dispatcher=dispatcher,
        toaster=toaster,
        registry=registry,
        bridge=RealtimeEventBridge(registry) if realtime else None,
        user_id=user_id,
    )

    try:
        tracker.set_active(True)
        await asyncio.sleep(len(points) * interval)
        await tracker.drain()
    finally:
        tracker.set_active(False)
        registry.close_all()
        stop_poller()
        await client.close()

    if tracker.deviation is not None:
        print(f"Ended off route: {tracker.deviation.distance_km:.2f}km from the planned route")
    else:
        print("Ended on route")


def main():
    parser = argparse.ArgumentParser(
        description="Replay a coordinate file as a live tracking session"
    )
    parser.add_argument("trip_id", type=int, help="Trip ID to track")
    parser.add_argument("user_id", type=int, help="User ID for the realtime channel")
    parser.add_argument("points", help="File with one 'latitude,longitude' per line")
    parser.add_argument("--interval", type=float, default=1.0, help="Seconds between samples")
    parser.add_argument("--no-realtime", action="store_true", help="Do not open the WebSocket channel")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be replayed without contacting the server"
    )

    args = parser.parse_args()
    logging.basicConfig(level=settings.LOG_LEVEL)

    asyncio.run(
        run(args.trip_id, args.user_id, read_points(args.points), args.interval,
            realtime=not args.no_realtime, dry_run=args.dry_run)
    )


if __name__ == "__main__":
    main()
