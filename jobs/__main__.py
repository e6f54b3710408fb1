"""Command-line entrypoint for batch jobs and manual oracle updates."""

from __future__ import annotations

import argparse
import logging
import os
from typing import Iterable

from insurance.errors import InsuranceError
from insurance.lifecycle import PolicyLifecycleManager
from jobs.config import LOCATIONS, LocationConfig, iter_locations
from jobs.refresh_weather import main as run_refresh_weather
from jobs.sweep import main as run_sweep
from storage.backends import DUCKDB_BACKEND, open_store

# Oracle update commands -> snapshot fields they overwrite, in argument order
UPDATE_COMMANDS: dict[str, tuple[str, ...]] = {
    "temp": ("temperature",),
    "rain": ("rainfall_24h", "rainfall_30d"),
    "drought": ("days_without_rain",),
    "wind": ("wind_speed",),
}


def _format_location(location: LocationConfig) -> str:
    return (
        f"{location.key}: name='{location.name}' "
        f"lat={location.latitude} lon={location.longitude}"
    )


def _resolve_locations_from_cli(keys: Iterable[str] | None) -> tuple[LocationConfig, ...]:
    if not keys:
        return tuple()
    locations = tuple(iter_locations(keys))
    unknown = set(keys) - {location.key for location in locations}
    if unknown:
        raise SystemExit(f"Unknown location keys: {', '.join(sorted(unknown))}")
    return locations


def _parse_update(command: str, values: list[str]) -> dict[str, float | int]:
    fields = UPDATE_COMMANDS[command]
    if len(values) != len(fields):
        raise SystemExit(
            f"'{command}' expects {len(fields)} value(s): {', '.join(fields)}"
        )
    changes: dict[str, float | int] = {}
    for name, raw in zip(fields, values):
        try:
            changes[name] = int(raw) if name == "days_without_rain" else float(raw)
        except ValueError:
            raise SystemExit(f"Invalid value for {name}: {raw!r}") from None
    return changes


def _update_weather(location: str, command: str, values: list[str]) -> int:
    changes = _parse_update(command, values)
    store = open_store(default=DUCKDB_BACKEND)
    try:
        manager = PolicyLifecycleManager.for_store(store)
        try:
            snapshot = manager.update_weather_snapshot(location, changes)
        except InsuranceError as exc:
            raise SystemExit(str(exc)) from exc
    finally:
        store.close()
    print(
        f"{snapshot.location}: temperature={snapshot.temperature}°C "
        f"rainfall_24h={snapshot.rainfall_24h}mm rainfall_30d={snapshot.rainfall_30d}mm "
        f"days_without_rain={snapshot.days_without_rain} wind_speed={snapshot.wind_speed}km/h "
        f"last_updated={snapshot.last_updated.isoformat()}"
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Weather insurance job runner")
    parser.add_argument(
        "--log-level",
        help="Override LOG_LEVEL for this invocation (e.g. DEBUG, INFO)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list-locations", help="Show configured insurable locations")

    refresh_parser = subparsers.add_parser(
        "refresh-weather", help="Fetch the latest oracle readings into the store"
    )
    refresh_parser.add_argument(
        "--locations",
        help="Comma-separated list of location keys to refresh (defaults to all configured)",
    )

    update_parser = subparsers.add_parser(
        "update-weather", help="Manually overwrite readings for one location"
    )
    update_parser.add_argument("location", help="Location key (e.g. london)")
    update_parser.add_argument("metric", choices=sorted(UPDATE_COMMANDS))
    update_parser.add_argument(
        "values",
        nargs="+",
        help="temp <°C> | rain <24h mm> <30d mm> | drought <days> | wind <km/h>",
    )

    subparsers.add_parser(
        "sweep", help="Expire lapsed policies and check the rest for eligibility"
    )

    args = parser.parse_args(argv)
    if args.log_level:
        os.environ["LOG_LEVEL"] = args.log_level
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

    if args.command == "list-locations":
        for location in LOCATIONS:
            print(_format_location(location))
        return 0

    if args.command == "refresh-weather":
        keys = [item.strip() for item in (args.locations or "").split(",") if item.strip()]
        locations = _resolve_locations_from_cli(keys)
        return run_refresh_weather(locations or None)

    if args.command == "update-weather":
        return _update_weather(args.location, args.metric, args.values)

    if args.command == "sweep":
        return run_sweep()

    parser.error("Unknown command")
    return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
