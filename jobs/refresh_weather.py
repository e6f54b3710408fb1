"""Job that pulls the latest oracle readings for every configured location."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Iterable

import httpx
from dotenv import load_dotenv

from insurance.model import WeatherSnapshot, utcnow
from insurance.sources.open_meteo import fetch_open_meteo_snapshot
from jobs.config import LOCATIONS, LocationConfig, iter_locations
from storage.backends import DUCKDB_BACKEND, open_store
from storage.base import WeatherSnapshotStore

load_dotenv()

logger = logging.getLogger(__name__)


def seed_weather_snapshots(
    store: WeatherSnapshotStore, locations: Iterable[LocationConfig] | None = None
) -> int:
    """Store the demo reading for each location that has no snapshot yet."""

    seeded = 0
    now = utcnow()
    for location in locations if locations is not None else LOCATIONS:
        if store.get_weather_snapshot(location.key) is not None:
            continue
        store.put_weather_snapshot(
            WeatherSnapshot(location=location.key, last_updated=now, **location.seed)
        )
        seeded += 1
    if seeded:
        logger.info("Seeded %s demo weather snapshots.", seeded)
    return seeded


def _resolve_locations() -> tuple[LocationConfig, ...]:
    requested = os.getenv("REFRESH_LOCATIONS")
    if requested:
        keys = [key.strip() for key in requested.split(",") if key.strip()]
        selected = tuple(iter_locations(keys))
        if selected:
            return selected
        logger.warning(
            "REFRESH_LOCATIONS=%s did not match any configured locations; falling back to all.",
            requested,
        )
    return LOCATIONS


async def refresh_weather_async(
    store: WeatherSnapshotStore, locations: Iterable[LocationConfig] | None = None
) -> int:
    """Fetch and store a snapshot per location. Returns the number refreshed."""

    locations = tuple(locations) if locations is not None else _resolve_locations()
    refreshed = 0
    for location in locations:
        logger.info("Fetching weather for %s (%s)...", location.name, location.key)
        try:
            snapshot = await fetch_open_meteo_snapshot(location)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Weather refresh failed for %s: %s. Skipping.", location.key, exc)
            continue
        store.put_weather_snapshot(snapshot)
        logger.info(
            "Stored %s: %s°C, %smm/30d, %s dry days, wind %skm/h.",
            location.key,
            snapshot.temperature,
            snapshot.rainfall_30d,
            snapshot.days_without_rain,
            snapshot.wind_speed,
        )
        refreshed += 1
    return refreshed


def main(locations: Iterable[LocationConfig] | None = None) -> int:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    store = open_store(default=DUCKDB_BACKEND)
    try:
        refreshed = asyncio.run(refresh_weather_async(store, locations))
    finally:
        store.close()
    logger.info("Weather refresh finished (locations refreshed=%s).", refreshed)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
