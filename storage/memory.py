"""In-process reference store. Nothing survives a restart."""

from __future__ import annotations

import itertools
import threading
from typing import Any, Collection, Iterable, Mapping

from insurance.model import Policy, PolicyStatus, Transaction, WeatherSnapshot, utcnow


class InMemoryStore:
    """Dict-backed implementation of the policy, snapshot and transaction stores.

    A single lock serialises writers so ``transition_policy`` behaves as a
    compare-and-swap when request handlers run on multiple threads.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._policies: dict[int, Policy] = {}
        self._transactions: dict[int, Transaction] = {}
        self._snapshots: dict[str, WeatherSnapshot] = {}
        self._policy_ids = itertools.count(1)
        self._transaction_ids = itertools.count(1)

    def close(self) -> None:
        pass

    # Policies -----------------------------------------------------------
    def create_policy(self, values: Mapping[str, Any]) -> Policy:
        with self._lock:
            policy = Policy(id=next(self._policy_ids), **values)
            self._policies[policy.id] = policy
            return policy

    def get_policy(self, policy_id: int) -> Policy | None:
        return self._policies.get(policy_id)

    def list_policies(self, wallet_address: str) -> list[Policy]:
        with self._lock:
            policies = list(self._policies.values())
        return [policy for policy in policies if policy.owned_by(wallet_address)]

    def iter_policies(self, statuses: Iterable[PolicyStatus] | None = None) -> list[Policy]:
        with self._lock:
            policies = list(self._policies.values())
        if statuses is None:
            return policies
        wanted = set(statuses)
        return [policy for policy in policies if policy.status in wanted]

    def update_policy(self, policy_id: int, changes: Mapping[str, Any]) -> Policy | None:
        with self._lock:
            policy = self._policies.get(policy_id)
            if policy is None:
                return None
            updated = policy.model_copy(update=dict(changes))
            self._policies[policy_id] = updated
            return updated

    def transition_policy(
        self,
        policy_id: int,
        *,
        expected: Collection[PolicyStatus],
        status: PolicyStatus,
        **changes: Any,
    ) -> Policy | None:
        with self._lock:
            policy = self._policies.get(policy_id)
            if policy is None or policy.status not in expected:
                return None
            updated = policy.model_copy(update={**changes, "status": status})
            self._policies[policy_id] = updated
            return updated

    # Weather snapshots --------------------------------------------------
    def put_weather_snapshot(self, snapshot: WeatherSnapshot) -> WeatherSnapshot:
        with self._lock:
            self._snapshots[snapshot.location] = snapshot
            return snapshot

    def get_weather_snapshot(self, location: str) -> WeatherSnapshot | None:
        return self._snapshots.get(location)

    def list_weather_snapshots(self) -> list[WeatherSnapshot]:
        with self._lock:
            return list(self._snapshots.values())

    def update_weather_snapshot(
        self, location: str, changes: Mapping[str, Any]
    ) -> WeatherSnapshot | None:
        with self._lock:
            snapshot = self._snapshots.get(location)
            if snapshot is None:
                return None
            updated = snapshot.model_copy(update={**changes, "last_updated": utcnow()})
            self._snapshots[location] = updated
            return updated

    # Transactions -------------------------------------------------------
    def append_transaction(self, values: Mapping[str, Any]) -> Transaction:
        with self._lock:
            transaction = Transaction(id=next(self._transaction_ids), **values)
            self._transactions[transaction.id] = transaction
            return transaction

    def get_transaction(self, transaction_id: int) -> Transaction | None:
        return self._transactions.get(transaction_id)

    def list_transactions(self, wallet_address: str) -> list[Transaction]:
        needle = wallet_address.strip().lower()
        with self._lock:
            transactions = list(self._transactions.values())
        matches = [tx for tx in transactions if tx.wallet_address.lower() == needle]
        return sorted(matches, key=lambda tx: (tx.timestamp, tx.id), reverse=True)


__all__ = ["InMemoryStore"]
