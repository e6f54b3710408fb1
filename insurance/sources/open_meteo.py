"""Open-Meteo weather oracle.

Turns Open-Meteo forecast API responses into ``WeatherSnapshot`` records:
current conditions plus a 30-day daily precipitation history, from which the
rolling rainfall totals and the dry-spell length are derived.
"""

from __future__ import annotations

import logging
import math
import os
from datetime import datetime
from typing import Any, Mapping, Sequence

from insurance.common import fetch_json
from insurance.model import WeatherSnapshot, utcnow
from jobs.config import LocationConfig

OPEN_METEO_BASE_URL = "https://api.open-meteo.com/v1/forecast"
OPEN_METEO_URL_ENV = "OPEN_METEO_BASE_URL"

HISTORY_DAYS = 30
# Days with less precipitation than this count as dry.
DRY_DAY_THRESHOLD_MM = 0.1

CURRENT_FIELDS = ("temperature_2m", "relative_humidity_2m", "wind_speed_10m", "weather_code")

# WMO weather interpretation codes -> forecast label
WMO_LABELS: Mapping[int, str] = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Fog",
    48: "Depositing rime fog",
    51: "Light drizzle",
    53: "Drizzle",
    55: "Dense drizzle",
    61: "Light rain",
    63: "Rain",
    65: "Heavy rain",
    66: "Freezing rain",
    67: "Heavy freezing rain",
    71: "Light snow",
    73: "Snow",
    75: "Heavy snow",
    77: "Snow grains",
    80: "Rain showers",
    81: "Heavy rain showers",
    82: "Violent rain showers",
    85: "Snow showers",
    86: "Heavy snow showers",
    95: "Thunderstorm",
    96: "Thunderstorm with hail",
    99: "Thunderstorm with heavy hail",
}

logger = logging.getLogger(__name__)


def _coerce_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(numeric) or math.isinf(numeric):
        return None
    return numeric


def _daily_precipitation(payload: Mapping[str, Any]) -> list[float]:
    daily = payload.get("daily")
    if not isinstance(daily, Mapping):
        return []
    values = daily.get("precipitation_sum")
    if not isinstance(values, list):
        return []
    # Missing days are treated as dry rather than dropped so the window stays aligned.
    return [_coerce_float(value) or 0.0 for value in values]


def count_dry_days(precipitation: Sequence[float]) -> int:
    """Length of the trailing run of dry days, most recent day last."""
    dry = 0
    for amount in reversed(precipitation):
        if amount >= DRY_DAY_THRESHOLD_MM:
            break
        dry += 1
    return dry


def forecast_label(code: Any) -> str:
    numeric = _coerce_float(code)
    if numeric is None:
        return "Unknown"
    return WMO_LABELS.get(int(numeric), "Unknown")


def normalize_open_meteo(
    location: str,
    payload: Mapping[str, Any],
    *,
    fetched_at: datetime | None = None,
) -> WeatherSnapshot:
    """Build a snapshot from an Open-Meteo forecast response."""

    current = payload.get("current")
    if not isinstance(current, Mapping):
        raise ValueError(f"Open-Meteo response for {location!r} has no current conditions")

    temperature = _coerce_float(current.get("temperature_2m"))
    if temperature is None:
        raise ValueError(f"Open-Meteo response for {location!r} has no temperature")

    precipitation = _daily_precipitation(payload)
    window = precipitation[-HISTORY_DAYS:]
    humidity = _coerce_float(current.get("relative_humidity_2m")) or 0.0
    wind_speed = _coerce_float(current.get("wind_speed_10m")) or 0.0

    return WeatherSnapshot(
        location=location,
        temperature=temperature,
        rainfall_24h=round(precipitation[-1], 2) if precipitation else 0.0,
        rainfall_30d=round(sum(window), 2),
        days_without_rain=count_dry_days(precipitation),
        humidity=min(max(humidity, 0.0), 100.0),
        wind_speed=max(wind_speed, 0.0),
        forecast=forecast_label(current.get("weather_code")),
        last_updated=fetched_at or utcnow(),
    )


async def fetch_open_meteo_snapshot(
    location: LocationConfig,
    *,
    base_url: str | None = None,
    params: Mapping[str, Any] | None = None,
) -> WeatherSnapshot:
    """Fetch current conditions for a configured location and normalize them."""

    request_params: dict[str, Any] = {
        "latitude": location.latitude,
        "longitude": location.longitude,
        "current": ",".join(CURRENT_FIELDS),
        "daily": "precipitation_sum",
        "past_days": HISTORY_DAYS,
        "forecast_days": 1,
        "wind_speed_unit": "kmh",
        "timezone": "UTC",
    }
    if params:
        request_params.update(params)

    url = base_url or os.getenv(OPEN_METEO_URL_ENV) or OPEN_METEO_BASE_URL
    logger.debug("Requesting Open-Meteo conditions for %s.", location.key)
    payload = await fetch_json(url, params=request_params)
    if not isinstance(payload, Mapping):
        raise ValueError(f"Unexpected Open-Meteo payload for {location.key!r}")
    return normalize_open_meteo(location.key, payload)


__all__ = [
    "DRY_DAY_THRESHOLD_MM",
    "HISTORY_DAYS",
    "OPEN_METEO_BASE_URL",
    "count_dry_days",
    "fetch_open_meteo_snapshot",
    "forecast_label",
    "normalize_open_meteo",
]
