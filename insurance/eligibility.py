"""Eligibility rules mapping a weather snapshot onto a payout decision.

Two independent rule families live here:

* ``ThresholdRule`` backs the off-chain policies: a single metric selected by
  the policy's event type must meet or exceed the policy threshold.
* ``TemperatureBandRule`` mirrors the on-chain contract: a payout triggers
  when the temperature leaves an insured band.

They share the ``EligibilityRule`` interface but are deliberately not merged.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Mapping

from insurance.errors import UnknownCategoryError, ValidationError
from insurance.model import EligibilityResult, EventType, Policy, WeatherSnapshot

# Event type -> (snapshot attribute, reason template)
THRESHOLD_METRICS: Mapping[EventType, tuple[str, str]] = {
    EventType.RAINFALL: (
        "rainfall_30d",
        "Rainfall threshold exceeded: {value}mm (threshold: {threshold}mm)",
    ),
    EventType.DROUGHT: (
        "days_without_rain",
        "Days without rain exceeded: {value} days (threshold: {threshold} days)",
    ),
    EventType.HEATWAVE: (
        "temperature",
        "Temperature threshold exceeded: {value}°C (threshold: {threshold}°C)",
    ),
    EventType.STORM: (
        "wind_speed",
        "Wind speed threshold exceeded: {value}km/h (threshold: {threshold}km/h)",
    ),
}

# The contract insures twice the premium paid.
BAND_PAYOUT_MULTIPLIER = 2


def format_measure(value: float) -> str:
    """Render a reading the way the dashboard shows it (``120``, ``12.5``)."""
    number = float(value)
    if number.is_integer():
        return str(int(number))
    return str(number)


class EligibilityRule(ABC):
    """A payout trigger evaluated against one weather snapshot."""

    @abstractmethod
    def evaluate(self, snapshot: WeatherSnapshot) -> EligibilityResult:
        raise NotImplementedError


@dataclass(frozen=True)
class ThresholdRule(EligibilityRule):
    event_type: EventType
    threshold: float

    @property
    def metric(self) -> str:
        return THRESHOLD_METRICS[self.event_type][0]

    def evaluate(self, snapshot: WeatherSnapshot) -> EligibilityResult:
        attribute, template = THRESHOLD_METRICS[self.event_type]
        observed = float(getattr(snapshot, attribute))
        if observed >= self.threshold:
            reason = template.format(
                value=format_measure(observed),
                threshold=format_measure(self.threshold),
            )
            return EligibilityResult(is_eligible=True, reason=reason, observed_value=observed)
        return EligibilityResult(is_eligible=False, reason="", observed_value=observed)


@dataclass(frozen=True)
class TemperatureBandRule(EligibilityRule):
    """Pays out when the temperature falls strictly outside ``[min, max]``."""

    min_temperature: float
    max_temperature: float

    def __post_init__(self) -> None:
        if self.min_temperature > self.max_temperature:
            raise ValidationError(
                message="Minimum temperature must not exceed maximum temperature",
                details={
                    "minTemperature": self.min_temperature,
                    "maxTemperature": self.max_temperature,
                },
            )

    def insured_amount(self, premium: float) -> float:
        return premium * BAND_PAYOUT_MULTIPLIER

    def evaluate(self, snapshot: WeatherSnapshot) -> EligibilityResult:
        observed = float(snapshot.temperature)
        band = (
            f"(range: {format_measure(self.min_temperature)}°C to "
            f"{format_measure(self.max_temperature)}°C)"
        )
        if observed < self.min_temperature:
            reason = f"Temperature below insured range: {format_measure(observed)}°C {band}"
        elif observed > self.max_temperature:
            reason = f"Temperature above insured range: {format_measure(observed)}°C {band}"
        else:
            return EligibilityResult(is_eligible=False, reason="", observed_value=observed)
        return EligibilityResult(is_eligible=True, reason=reason, observed_value=observed)


def resolve_event_type(event_type: str, *, policy_id: int | None = None) -> EventType:
    try:
        return EventType(event_type)
    except ValueError as exc:
        raise UnknownCategoryError(
            message=f"Unknown event type '{event_type}'",
            details={
                "eventType": event_type,
                "supported": [member.value for member in EventType],
            },
            policy_id=policy_id,
        ) from exc


def rule_for_policy(policy: Policy) -> ThresholdRule:
    event_type = resolve_event_type(policy.event_type, policy_id=policy.id)
    return ThresholdRule(event_type=event_type, threshold=policy.threshold)


def evaluate(policy: Policy, snapshot: WeatherSnapshot) -> EligibilityResult:
    """Decide whether ``snapshot`` satisfies ``policy``'s payout trigger.

    Pure and repeatable. The caller is responsible for loading the snapshot
    that belongs to the policy's location.
    """

    if snapshot.location != policy.location:
        raise ValidationError(
            message="Weather snapshot does not match the policy location",
            details={"policyLocation": policy.location, "snapshotLocation": snapshot.location},
            policy_id=policy.id,
        )
    return rule_for_policy(policy).evaluate(snapshot)


__all__ = [
    "BAND_PAYOUT_MULTIPLIER",
    "EligibilityRule",
    "TemperatureBandRule",
    "THRESHOLD_METRICS",
    "ThresholdRule",
    "evaluate",
    "format_measure",
    "resolve_event_type",
    "rule_for_policy",
]
