"""Policy lifecycle: purchase, eligibility checks, claim payouts and expiry.

``PolicyLifecycleManager`` is the only writer of ``Policy.status`` and the
only appender to the transaction log. Every status change goes through the
store's compare-and-swap, so concurrent requests can never pay a policy out
twice or move it backwards.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Mapping, TypeVar

import pydantic

from insurance.eligibility import evaluate, resolve_event_type
from insurance.errors import NotFoundError, StateConflictError, ValidationError
from insurance.model import (
    ClaimResult,
    EligibilityCheck,
    Policy,
    PolicyCreate,
    PolicyPatch,
    PolicyStatus,
    Transaction,
    TransactionCreate,
    TransactionType,
    WeatherSnapshot,
    WeatherSnapshotPatch,
    can_transition,
    utcnow,
)
from jobs.config import LOCATION_KEYS
from storage.base import InsuranceStore, PolicyStore, TransactionLog, WeatherSnapshotStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
PayloadT = TypeVar("PayloadT", bound=pydantic.BaseModel)

CLAIM_PAYOUT_REASON = "Claim payout for policy"

# Statuses a caller may set directly; the rest belong to check and payout.
PATCHABLE_STATUSES = frozenset({PolicyStatus.EXPIRED})
CLOSED_STATUSES = frozenset({PolicyStatus.CLAIMED, PolicyStatus.EXPIRED})


def _parse(model: type[PayloadT], data: PayloadT | Mapping[str, Any]) -> PayloadT:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        errors = exc.errors(include_url=False, include_context=False, include_input=False)
        raise ValidationError(
            message=f"Invalid {model.__name__} payload",
            details={"errors": errors},
        ) from exc


def _require_wallet(wallet_address: str) -> str:
    if not wallet_address or not wallet_address.strip():
        raise ValidationError(message="Wallet address is required")
    return wallet_address


class PolicyLifecycleManager:
    """Orchestrates the policy state machine over injected stores."""

    def __init__(
        self,
        policies: PolicyStore,
        snapshots: WeatherSnapshotStore,
        transactions: TransactionLog,
        *,
        known_locations: Iterable[str] | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._policies = policies
        self._snapshots = snapshots
        self._transactions = transactions
        self._known_locations = frozenset(
            LOCATION_KEYS if known_locations is None else known_locations
        )
        self._clock = clock

    @classmethod
    def for_store(cls, store: InsuranceStore, **kwargs: Any) -> "PolicyLifecycleManager":
        return cls(store, store, store, **kwargs)

    # Policies -----------------------------------------------------------
    def list_policies(self, wallet_address: str) -> list[Policy]:
        return self._policies.list_policies(_require_wallet(wallet_address))

    def get_policy(self, policy_id: int) -> Policy:
        policy = self._policies.get_policy(policy_id)
        if policy is None:
            raise NotFoundError(message="Policy not found", policy_id=policy_id)
        return policy

    def create_policy(self, data: PolicyCreate | Mapping[str, Any]) -> Policy:
        request = _parse(PolicyCreate, data)
        if request.location not in self._known_locations:
            raise ValidationError(
                message=f"Unknown location '{request.location}'",
                details={"location": request.location, "supported": sorted(self._known_locations)},
            )
        resolve_event_type(request.event_type)

        now = self._clock()
        start_date = request.start_date or now
        policy = self._policies.create_policy(
            {
                "wallet_address": request.wallet_address,
                "location": request.location,
                "event_type": request.event_type,
                "threshold": request.threshold,
                "coverage": request.coverage,
                "premium": request.premium,
                "duration": request.duration,
                "start_date": start_date,
                "end_date": start_date + timedelta(days=request.duration),
                "status": PolicyStatus.ACTIVE,
                "current_value": 0.0,
                "tx_hash": request.tx_hash,
            }
        )
        self._transactions.append_transaction(
            {
                "wallet_address": policy.wallet_address,
                "type": TransactionType.POLICY_CREATED.value,
                "amount": policy.premium,
                "tx_hash": policy.tx_hash,
                "timestamp": now,
                "policy_id": policy.id,
                "details": {
                    "location": policy.location,
                    "eventType": policy.event_type,
                    "threshold": policy.threshold,
                    "coverage": policy.coverage,
                    "duration": policy.duration,
                },
            }
        )
        logger.info(
            "Created policy %s for %s (%s at %s, threshold=%s).",
            policy.id,
            policy.wallet_address,
            policy.event_type,
            policy.location,
            policy.threshold,
        )
        return policy

    def update_policy(self, policy_id: int, data: PolicyPatch | Mapping[str, Any]) -> Policy:
        """Apply a validated patch.

        The only status a patch may set is ``expired``; ``claim_eligible`` and
        ``claimed`` are reached through ``check_eligibility`` and
        ``claim_payout``. Closed policies accept no further changes.
        """

        changes = _parse(PolicyPatch, data).changes()
        current = self.get_policy(policy_id)
        target = changes.pop("status", None)
        if target == current.status:
            target = None

        if current.status in CLOSED_STATUSES and (changes or target is not None):
            raise StateConflictError(
                message=f"Policy is '{current.status}' and can no longer be changed",
                details={"status": current.status.value, "fields": sorted(changes)},
                policy_id=policy_id,
            )

        if target is not None and (
            target not in PATCHABLE_STATUSES or not can_transition(current.status, target)
        ):
            raise StateConflictError(
                message=f"Cannot move policy from '{current.status}' to '{target}'",
                details={"status": current.status.value, "requested": PolicyStatus(target).value},
                policy_id=policy_id,
            )

        if target is None and not changes:
            return current

        # Guarded on the status read above so a concurrent claim or expiry wins.
        updated = self._policies.transition_policy(
            policy_id,
            expected=(current.status,),
            status=target or current.status,
            **changes,
        )
        if updated is None:
            raise StateConflictError(
                message="Policy status changed concurrently; retry the update",
                policy_id=policy_id,
            )
        if target is not None:
            logger.info("Policy %s moved from %s to %s by update.", policy_id, current.status, target)
        return updated

    # Lifecycle ----------------------------------------------------------
    def check_eligibility(self, policy_id: int) -> EligibilityCheck:
        """Evaluate a policy against the latest reading for its location.

        Only an ``active`` policy is promoted to ``claim_eligible``; checking a
        policy in any other state is a read with no side effects.
        """

        policy = self.get_policy(policy_id)
        snapshot = self._snapshots.get_weather_snapshot(policy.location)
        if snapshot is None:
            raise NotFoundError(
                message="Weather data not found for this location",
                details={"location": policy.location},
                policy_id=policy_id,
            )

        result = evaluate(policy, snapshot)
        status = policy.status
        if result.is_eligible and policy.status == PolicyStatus.ACTIVE:
            updated = self._policies.transition_policy(
                policy_id,
                expected=(PolicyStatus.ACTIVE,),
                status=PolicyStatus.CLAIM_ELIGIBLE,
                current_value=result.observed_value,
            )
            if updated is not None:
                status = updated.status
                logger.info("Policy %s is now claim eligible: %s", policy_id, result.reason)
            else:
                latest = self._policies.get_policy(policy_id)
                status = latest.status if latest is not None else status
                logger.info(
                    "Policy %s left 'active' before it could be marked eligible (now %s).",
                    policy_id,
                    status,
                )

        return EligibilityCheck(
            policy_id=policy_id,
            is_eligible=result.is_eligible,
            reason=result.reason,
            weather_data=snapshot,
            status=status,
        )

    def claim_payout(self, policy_id: int, tx_hash: str | None) -> ClaimResult:
        """Mark an eligible policy as paid and record the payout.

        ``tx_hash`` identifies the ledger transfer the caller already submitted.
        """

        policy = self.get_policy(policy_id)
        if policy.status != PolicyStatus.CLAIM_ELIGIBLE:
            logger.warning("Rejected payout for policy %s in status %s.", policy_id, policy.status)
            raise StateConflictError(
                message="Policy is not eligible for claim payout",
                details={"status": policy.status.value},
                policy_id=policy_id,
            )
        if not tx_hash or not tx_hash.strip():
            raise ValidationError(message="Transaction hash is required", policy_id=policy_id)

        claimed = self._policies.transition_policy(
            policy_id,
            expected=(PolicyStatus.CLAIM_ELIGIBLE,),
            status=PolicyStatus.CLAIMED,
            tx_hash=tx_hash.strip(),
        )
        if claimed is None:
            logger.warning("Concurrent payout for policy %s lost the race.", policy_id)
            raise StateConflictError(
                message="Policy is not eligible for claim payout",
                policy_id=policy_id,
            )

        transaction = self._transactions.append_transaction(
            {
                "wallet_address": policy.wallet_address,
                "type": TransactionType.CLAIM_PAID.value,
                "amount": policy.coverage,
                "tx_hash": claimed.tx_hash,
                "timestamp": self._clock(),
                "policy_id": policy_id,
                "details": {
                    "reason": CLAIM_PAYOUT_REASON,
                    "policy": policy.model_dump(mode="json", by_alias=True),
                },
            }
        )
        logger.info(
            "Paid %s to %s for policy %s (tx %s).",
            policy.coverage,
            policy.wallet_address,
            policy_id,
            claimed.tx_hash,
        )
        return ClaimResult(success=True, policy=claimed, transaction=transaction)

    def expire_due_policies(self, now: datetime | None = None) -> list[Policy]:
        """Expire open policies whose cover ended; ``claimed`` is never touched."""

        now = now or self._clock()
        open_statuses = (PolicyStatus.ACTIVE, PolicyStatus.CLAIM_ELIGIBLE)
        expired: list[Policy] = []
        for policy in self._policies.iter_policies(open_statuses):
            if policy.end_date > now:
                continue
            updated = self._policies.transition_policy(
                policy.id, expected=open_statuses, status=PolicyStatus.EXPIRED
            )
            if updated is None:
                continue
            logger.info("Policy %s expired (ended %s).", policy.id, policy.end_date.isoformat())
            expired.append(updated)
        return expired

    # Transactions -------------------------------------------------------
    def list_transactions(self, wallet_address: str) -> list[Transaction]:
        return self._transactions.list_transactions(_require_wallet(wallet_address))

    def create_transaction(self, data: TransactionCreate | Mapping[str, Any]) -> Transaction:
        request = _parse(TransactionCreate, data)
        values = request.model_dump()
        values["timestamp"] = request.timestamp or self._clock()
        return self._transactions.append_transaction(values)

    # Weather snapshots --------------------------------------------------
    def get_weather_snapshot(self, location: str) -> WeatherSnapshot:
        snapshot = self._snapshots.get_weather_snapshot(location)
        if snapshot is None:
            raise NotFoundError(
                message="Weather data not found for this location",
                details={"location": location},
            )
        return snapshot

    def list_weather_snapshots(self) -> list[WeatherSnapshot]:
        return self._snapshots.list_weather_snapshots()

    def update_weather_snapshot(
        self, location: str, data: WeatherSnapshotPatch | Mapping[str, Any]
    ) -> WeatherSnapshot:
        changes = _parse(WeatherSnapshotPatch, data).changes()
        snapshot = self._snapshots.update_weather_snapshot(location, changes)
        if snapshot is None:
            raise NotFoundError(
                message="Weather data not found for this location",
                details={"location": location},
            )
        return snapshot


__all__ = ["CLAIM_PAYOUT_REASON", "PolicyLifecycleManager"]
