"""Static configuration for insurable locations, event types and durations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

# Dashboard pricing formula; not an actuarial model.
PREMIUM_RATE = 0.05
PREMIUM_PERIOD_DAYS = 30


@dataclass(frozen=True)
class LocationConfig:
    """An insurable location and the oracle coordinates used to observe it."""

    key: str
    name: str
    latitude: float
    longitude: float
    seed: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class EventTypeOption:
    id: str
    name: str
    unit: str


@dataclass(frozen=True)
class DurationOption:
    days: int
    name: str


LOCATIONS: tuple[LocationConfig, ...] = (
    LocationConfig(
        key="new-york",
        name="New York, USA",
        latitude=40.7128,
        longitude=-74.006,
        seed={
            "temperature": 24,
            "rainfall_24h": 22,
            "rainfall_30d": 85,
            "days_without_rain": 0,
            "humidity": 78,
            "wind_speed": 8,
            "forecast": "Partly cloudy",
        },
    ),
    LocationConfig(
        key="london",
        name="London, UK",
        latitude=51.5072,
        longitude=-0.1276,
        seed={
            "temperature": 18,
            "rainfall_24h": 5,
            "rainfall_30d": 65,
            "days_without_rain": 0,
            "humidity": 82,
            "wind_speed": 15,
            "forecast": "Light rain",
        },
    ),
    LocationConfig(
        key="tokyo",
        name="Tokyo, Japan",
        latitude=35.6762,
        longitude=139.6503,
        seed={
            "temperature": 28,
            "rainfall_24h": 0,
            "rainfall_30d": 45,
            "days_without_rain": 3,
            "humidity": 70,
            "wind_speed": 10,
            "forecast": "Sunny",
        },
    ),
    LocationConfig(
        key="sydney",
        name="Sydney, Australia",
        latitude=-33.8688,
        longitude=151.2093,
        seed={
            "temperature": 26,
            "rainfall_24h": 0,
            "rainfall_30d": 20,
            "days_without_rain": 10,
            "humidity": 75,
            "wind_speed": 18,
            "forecast": "Mostly sunny",
        },
    ),
    LocationConfig(
        key="mumbai",
        name="Mumbai, India",
        latitude=19.076,
        longitude=72.8777,
        seed={
            "temperature": 32,
            "rainfall_24h": 0,
            "rainfall_30d": 0,
            "days_without_rain": 32,
            "humidity": 65,
            "wind_speed": 12,
            "forecast": "Clear sky",
        },
    ),
)

LOCATION_KEYS: frozenset[str] = frozenset(location.key for location in LOCATIONS)

EVENT_TYPES: tuple[EventTypeOption, ...] = (
    EventTypeOption(id="rainfall", name="Excessive Rainfall", unit="mm"),
    EventTypeOption(id="drought", name="Drought", unit="days"),
    EventTypeOption(id="heatwave", name="Heatwave", unit="°C"),
    EventTypeOption(id="storm", name="Storm", unit="km/h"),
)

POLICY_DURATIONS: tuple[DurationOption, ...] = tuple(
    DurationOption(days=days, name=f"{days} Days") for days in (30, 60, 90, 180, 365)
)


def get_location_by_key(key: str) -> LocationConfig | None:
    for location in LOCATIONS:
        if location.key == key:
            return location
    return None


def iter_locations(keys: Iterable[str] | None = None) -> Iterable[LocationConfig]:
    if keys is None:
        return LOCATIONS
    selected = []
    for key in keys:
        location = get_location_by_key(key)
        if location:
            selected.append(location)
    return tuple(selected)


def quote_premium(coverage: float, duration: int) -> float:
    """Premium charged for ``coverage`` over ``duration`` days."""
    return round(coverage * PREMIUM_RATE * (duration / PREMIUM_PERIOD_DAYS), 3)


def options_payload() -> dict[str, list[dict[str, Any]]]:
    return {
        "locations": [{"id": location.key, "name": location.name} for location in LOCATIONS],
        "weatherEventTypes": [
            {"id": option.id, "name": option.name, "unit": option.unit} for option in EVENT_TYPES
        ],
        "policyDurations": [
            {"days": option.days, "name": option.name} for option in POLICY_DURATIONS
        ],
    }


__all__ = [
    "DurationOption",
    "EVENT_TYPES",
    "EventTypeOption",
    "LOCATIONS",
    "LOCATION_KEYS",
    "LocationConfig",
    "POLICY_DURATIONS",
    "get_location_by_key",
    "iter_locations",
    "options_payload",
    "quote_premium",
]
