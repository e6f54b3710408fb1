from datetime import datetime, timedelta, UTC

import pytest

from insurance.eligibility import (
    TemperatureBandRule,
    ThresholdRule,
    evaluate,
    format_measure,
)
from insurance.errors import UnknownCategoryError, ValidationError
from insurance.model import EventType, Policy, WeatherSnapshot

START = datetime(2025, 1, 1, tzinfo=UTC)


def make_policy(event_type, threshold, location="mumbai", policy_id=1):
    return Policy(
        id=policy_id,
        wallet_address="0xABC",
        location=location,
        event_type=event_type,
        threshold=threshold,
        coverage=1000,
        premium=50,
        duration=30,
        start_date=START,
        end_date=START + timedelta(days=30),
    )


def make_snapshot(location="mumbai", **readings):
    values = {
        "temperature": 32,
        "rainfall_24h": 0,
        "rainfall_30d": 0,
        "days_without_rain": 32,
        "humidity": 65,
        "wind_speed": 12,
        "forecast": "Clear sky",
    }
    values.update(readings)
    return WeatherSnapshot(location=location, last_updated=START, **values)


@pytest.mark.parametrize(
    "event_type, readings, threshold, expected_reason",
    [
        (
            "rainfall",
            {"rainfall_30d": 120},
            100,
            "Rainfall threshold exceeded: 120mm (threshold: 100mm)",
        ),
        (
            "drought",
            {"days_without_rain": 32},
            30,
            "Days without rain exceeded: 32 days (threshold: 30 days)",
        ),
        (
            "heatwave",
            {"temperature": 36.5},
            35,
            "Temperature threshold exceeded: 36.5°C (threshold: 35°C)",
        ),
        (
            "storm",
            {"wind_speed": 80},
            60,
            "Wind speed threshold exceeded: 80km/h (threshold: 60km/h)",
        ),
    ],
)
def test_threshold_exceeded_reports_reason(event_type, readings, threshold, expected_reason):
    result = evaluate(make_policy(event_type, threshold), make_snapshot(**readings))

    assert result.is_eligible is True
    assert result.reason == expected_reason


@pytest.mark.parametrize(
    "event_type, metric",
    [
        ("rainfall", "rainfall_30d"),
        ("drought", "days_without_rain"),
        ("heatwave", "temperature"),
        ("storm", "wind_speed"),
    ],
)
def test_threshold_is_inclusive(event_type, metric):
    policy = make_policy(event_type, 40)

    at_threshold = evaluate(policy, make_snapshot(**{metric: 40}))
    below_threshold = evaluate(policy, make_snapshot(**{metric: 39}))

    assert at_threshold.is_eligible is True
    assert at_threshold.observed_value == pytest.approx(40)
    assert below_threshold.is_eligible is False
    assert below_threshold.reason == ""
    assert below_threshold.observed_value == pytest.approx(39)


def test_only_the_event_metric_is_considered():
    # Heavy wind must not trigger a rainfall policy.
    policy = make_policy("rainfall", 100)
    snapshot = make_snapshot(rainfall_30d=10, wind_speed=200, temperature=50)

    assert evaluate(policy, snapshot).is_eligible is False


def test_evaluate_is_repeatable():
    policy = make_policy("drought", 30)
    snapshot = make_snapshot()

    assert evaluate(policy, snapshot) == evaluate(policy, snapshot)


def test_unknown_event_type_is_rejected():
    policy = make_policy("hail", 10)

    with pytest.raises(UnknownCategoryError) as excinfo:
        evaluate(policy, make_snapshot())

    assert excinfo.value.code == "WI_UNKNOWN_CATEGORY"
    assert excinfo.value.policy_id == 1
    assert "hail" in excinfo.value.message


def test_snapshot_for_other_location_is_rejected():
    with pytest.raises(ValidationError):
        evaluate(make_policy("drought", 30), make_snapshot(location="london"))


def test_threshold_rule_exposes_metric():
    assert ThresholdRule(EventType.STORM, 60).metric == "wind_speed"


@pytest.mark.parametrize(
    "temperature, eligible, reason",
    [
        (-5, True, "Temperature below insured range: -5°C (range: 0°C to 30°C)"),
        (0, False, ""),
        (30, False, ""),
        (31.5, True, "Temperature above insured range: 31.5°C (range: 0°C to 30°C)"),
    ],
)
def test_temperature_band_rule(temperature, eligible, reason):
    rule = TemperatureBandRule(min_temperature=0, max_temperature=30)

    result = rule.evaluate(make_snapshot(temperature=temperature))

    assert result.is_eligible is eligible
    assert result.reason == reason


def test_temperature_band_pays_twice_the_premium():
    assert TemperatureBandRule(0, 30).insured_amount(25) == pytest.approx(50)


def test_temperature_band_rejects_inverted_range():
    with pytest.raises(ValidationError):
        TemperatureBandRule(min_temperature=40, max_temperature=10)


def test_format_measure_drops_trailing_zero():
    assert format_measure(120.0) == "120"
    assert format_measure(12.5) == "12.5"
