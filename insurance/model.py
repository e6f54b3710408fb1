"""Canonical records for policies, weather snapshots and the transaction log."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(UTC)


def _camel(name: str) -> str:
    # rainfall_24h -> rainfall24h, days_without_rain -> daysWithoutRain
    head, *tail = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in tail)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class EventType(StrEnum):
    RAINFALL = "rainfall"
    DROUGHT = "drought"
    HEATWAVE = "heatwave"
    STORM = "storm"


class PolicyStatus(StrEnum):
    ACTIVE = "active"
    CLAIM_ELIGIBLE = "claim_eligible"
    CLAIMED = "claimed"
    EXPIRED = "expired"


class TransactionType(StrEnum):
    POLICY_CREATED = "policy_created"
    CLAIM_PAID = "claim_paid"


# Forward-only lifecycle; claimed and expired are terminal.
ALLOWED_TRANSITIONS: dict[PolicyStatus, frozenset[PolicyStatus]] = {
    PolicyStatus.ACTIVE: frozenset({PolicyStatus.CLAIM_ELIGIBLE, PolicyStatus.EXPIRED}),
    PolicyStatus.CLAIM_ELIGIBLE: frozenset({PolicyStatus.CLAIMED, PolicyStatus.EXPIRED}),
    PolicyStatus.CLAIMED: frozenset(),
    PolicyStatus.EXPIRED: frozenset(),
}


def can_transition(current: PolicyStatus, target: PolicyStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class _Record(BaseModel):
    """Stored entity. Immutable; stores hand out new instances on change."""

    model_config = ConfigDict(
        alias_generator=_camel,
        populate_by_name=True,
        frozen=True,
        str_strip_whitespace=True,
    )


class _Payload(BaseModel):
    """Caller-supplied input validated before it reaches a store."""

    model_config = ConfigDict(
        alias_generator=_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class WeatherSnapshot(_Record):
    """Latest oracle reading for a single location."""

    location: str = Field(..., min_length=1, description="Location key (e.g. 'london').")
    temperature: float = Field(0.0, description="Air temperature in °C.")
    rainfall_24h: float = Field(0.0, ge=0, description="Rainfall over the last 24 hours (mm).")
    rainfall_30d: float = Field(0.0, ge=0, description="Rainfall over the last 30 days (mm).")
    days_without_rain: int = Field(0, ge=0, description="Consecutive dry days.")
    humidity: float = Field(0.0, ge=0, le=100, description="Relative humidity (%).")
    wind_speed: float = Field(0.0, ge=0, description="Wind speed (km/h).")
    forecast: str = Field("", description="Free-text forecast label.")
    last_updated: UtcDatetime = Field(default_factory=utcnow)


class WeatherSnapshotPatch(_Payload):
    """Reading fields an oracle update may overwrite."""

    model_config = ConfigDict(extra="forbid")

    temperature: Optional[float] = None
    rainfall_24h: Optional[float] = Field(None, ge=0)
    rainfall_30d: Optional[float] = Field(None, ge=0)
    days_without_rain: Optional[int] = Field(None, ge=0)
    humidity: Optional[float] = Field(None, ge=0, le=100)
    wind_speed: Optional[float] = Field(None, ge=0)
    forecast: Optional[str] = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class Policy(_Record):
    """A purchased parametric cover."""

    id: int
    wallet_address: str = Field(..., min_length=1)
    location: str
    event_type: str = Field(..., description="One of the EventType values.")
    threshold: float
    coverage: float = Field(..., description="Payout amount on a successful claim.")
    premium: float = Field(..., description="Amount paid to acquire the policy.")
    duration: int = Field(..., description="Cover length in days.")
    start_date: UtcDatetime
    end_date: UtcDatetime
    status: PolicyStatus = PolicyStatus.ACTIVE
    current_value: float = 0.0
    tx_hash: Optional[str] = None

    def owned_by(self, wallet_address: str) -> bool:
        return self.wallet_address.lower() == wallet_address.strip().lower()


class PolicyCreate(_Payload):
    """Fields accepted when a policy is purchased.

    ``status`` and ``currentValue`` sent by older clients are ignored: a new
    policy is always ``active`` with a zero current value. ``endDate`` is
    likewise recomputed from ``startDate`` and ``duration``.
    """

    wallet_address: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)
    event_type: str = Field(..., min_length=1)
    threshold: float
    coverage: float = Field(..., gt=0)
    premium: float = Field(..., ge=0)
    duration: int = Field(..., gt=0)
    start_date: Optional[UtcDatetime] = None
    end_date: Optional[UtcDatetime] = None
    tx_hash: Optional[str] = None


class PolicyPatch(_Payload):
    """The only policy fields that may change after creation."""

    model_config = ConfigDict(extra="forbid")

    status: Optional[PolicyStatus] = None
    current_value: Optional[float] = None
    tx_hash: Optional[str] = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class Transaction(_Record):
    """Append-only money movement tied to a wallet."""

    id: int
    wallet_address: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1, description="e.g. 'policy_created', 'claim_paid'.")
    amount: float
    tx_hash: Optional[str] = None
    timestamp: UtcDatetime
    policy_id: Optional[int] = None
    details: Optional[dict[str, Any]] = None


class TransactionCreate(_Payload):
    wallet_address: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    amount: float
    tx_hash: Optional[str] = None
    timestamp: Optional[UtcDatetime] = None
    policy_id: Optional[int] = None
    details: Optional[dict[str, Any]] = None


class EligibilityResult(_Record):
    is_eligible: bool
    reason: str
    observed_value: float


class EligibilityCheck(_Record):
    """Outcome of checking a stored policy against its location's snapshot."""

    policy_id: int
    is_eligible: bool
    reason: str
    weather_data: WeatherSnapshot
    status: PolicyStatus


class ClaimResult(_Record):
    success: bool
    policy: Policy
    transaction: Transaction


__all__ = [
    "ALLOWED_TRANSITIONS",
    "ClaimResult",
    "EligibilityCheck",
    "EligibilityResult",
    "EventType",
    "Policy",
    "PolicyCreate",
    "PolicyPatch",
    "PolicyStatus",
    "Transaction",
    "TransactionCreate",
    "TransactionType",
    "WeatherSnapshot",
    "WeatherSnapshotPatch",
    "can_transition",
    "utcnow",
]
