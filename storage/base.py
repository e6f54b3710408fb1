"""Store contracts consumed by the policy lifecycle manager."""

from __future__ import annotations

from typing import Any, Collection, Iterable, Mapping, Protocol

from insurance.model import Policy, PolicyStatus, Transaction, WeatherSnapshot


class PolicyStore(Protocol):
    def create_policy(self, values: Mapping[str, Any]) -> Policy:
        """Persist a new policy, assigning the next id."""

    def get_policy(self, policy_id: int) -> Policy | None: ...

    def list_policies(self, wallet_address: str) -> list[Policy]:
        """Policies owned by ``wallet_address`` (case-insensitive)."""

    def iter_policies(self, statuses: Iterable[PolicyStatus] | None = None) -> list[Policy]: ...

    def update_policy(self, policy_id: int, changes: Mapping[str, Any]) -> Policy | None:
        """Merge ``changes`` into the policy; ``None`` when it does not exist."""

    def transition_policy(
        self,
        policy_id: int,
        *,
        expected: Collection[PolicyStatus],
        status: PolicyStatus,
        **changes: Any,
    ) -> Policy | None:
        """Atomically move a policy to ``status`` if it is currently in ``expected``.

        Returns the updated policy, or ``None`` when the policy is missing or
        another writer moved it first.
        """


class WeatherSnapshotStore(Protocol):
    def put_weather_snapshot(self, snapshot: WeatherSnapshot) -> WeatherSnapshot:
        """Create or overwrite the snapshot for ``snapshot.location``."""

    def get_weather_snapshot(self, location: str) -> WeatherSnapshot | None: ...

    def list_weather_snapshots(self) -> list[WeatherSnapshot]: ...

    def update_weather_snapshot(
        self, location: str, changes: Mapping[str, Any]
    ) -> WeatherSnapshot | None:
        """Merge readings and refresh ``last_updated``; ``None`` if absent."""


class TransactionLog(Protocol):
    def append_transaction(self, values: Mapping[str, Any]) -> Transaction: ...

    def get_transaction(self, transaction_id: int) -> Transaction | None: ...

    def list_transactions(self, wallet_address: str) -> list[Transaction]:
        """Transactions for a wallet, most recent first."""


class InsuranceStore(PolicyStore, WeatherSnapshotStore, TransactionLog, Protocol):
    """A single backend that fulfils all three contracts."""

    def close(self) -> None: ...


__all__ = ["InsuranceStore", "PolicyStore", "TransactionLog", "WeatherSnapshotStore"]
