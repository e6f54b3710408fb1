import threading
from datetime import datetime, timedelta, UTC

import pytest

from insurance.errors import NotFoundError, StateConflictError, UnknownCategoryError, ValidationError
from insurance.lifecycle import CLAIM_PAYOUT_REASON, PolicyLifecycleManager
from insurance.model import PolicyStatus, WeatherSnapshot
from jobs.refresh_weather import seed_weather_snapshots
from jobs.sweep import run_sweep
from storage.db import DuckDBStore
from storage.memory import InMemoryStore

NOW = datetime(2025, 6, 1, 12, tzinfo=UTC)
WALLET = "0xAbC123"


@pytest.fixture()
def store():
    store = InMemoryStore()
    seed_weather_snapshots(store)
    return store


@pytest.fixture()
def manager(store):
    return PolicyLifecycleManager.for_store(store, clock=lambda: NOW)


def buy(manager, **overrides):
    payload = {
        "walletAddress": WALLET,
        "location": "mumbai",
        "eventType": "drought",
        "threshold": 30,
        "coverage": 1000,
        "premium": 50,
        "duration": 30,
        "txHash": "0xpurchase",
    }
    payload.update(overrides)
    return manager.create_policy(payload)


def test_create_policy_starts_active_and_logs_purchase(manager, store):
    policy = buy(manager, status="claimed", currentValue=99)

    assert policy.status == PolicyStatus.ACTIVE
    assert policy.current_value == 0
    assert policy.start_date == NOW
    assert policy.end_date == NOW + timedelta(days=30)

    transactions = manager.list_transactions(WALLET)
    assert len(transactions) == 1
    assert transactions[0].type == "policy_created"
    assert transactions[0].amount == pytest.approx(50)
    assert transactions[0].policy_id == policy.id


def test_create_policy_rejects_unknown_location(manager):
    with pytest.raises(ValidationError):
        buy(manager, location="atlantis")


def test_create_policy_rejects_unknown_event_type(manager):
    with pytest.raises(UnknownCategoryError):
        buy(manager, eventType="hail")


def test_create_policy_requires_positive_coverage(manager):
    with pytest.raises(ValidationError) as excinfo:
        buy(manager, coverage=0)

    assert excinfo.value.details["errors"]


def test_drought_policy_full_lifecycle(manager):
    policy = buy(manager)

    check = manager.check_eligibility(policy.id)
    assert check.is_eligible is True
    assert check.status == PolicyStatus.CLAIM_ELIGIBLE
    assert check.reason == "Days without rain exceeded: 32 days (threshold: 30 days)"
    assert check.weather_data.location == "mumbai"
    assert manager.get_policy(policy.id).current_value == pytest.approx(32)

    result = manager.claim_payout(policy.id, "0xpayout")
    assert result.success is True
    assert result.policy.status == PolicyStatus.CLAIMED
    assert result.policy.tx_hash == "0xpayout"
    assert result.transaction.type == "claim_paid"
    assert result.transaction.amount == pytest.approx(1000)
    assert result.transaction.details["reason"] == CLAIM_PAYOUT_REASON
    assert result.transaction.details["policy"]["id"] == policy.id

    history = manager.list_transactions(WALLET.lower())
    assert [tx.type for tx in history] == ["claim_paid", "policy_created"]


def test_check_below_threshold_leaves_policy_active(manager):
    policy = buy(manager, location="london", eventType="rainfall", threshold=100)

    check = manager.check_eligibility(policy.id)

    assert check.is_eligible is False
    assert check.reason == ""
    assert check.status == PolicyStatus.ACTIVE
    assert manager.get_policy(policy.id).status == PolicyStatus.ACTIVE


def test_claiming_active_policy_is_a_conflict(manager):
    policy = buy(manager, location="london", eventType="rainfall", threshold=100)

    with pytest.raises(StateConflictError):
        manager.claim_payout(policy.id, "0xpayout")

    assert manager.get_policy(policy.id).status == PolicyStatus.ACTIVE


def test_second_claim_is_rejected_without_new_transaction(manager):
    policy = buy(manager)
    manager.check_eligibility(policy.id)
    manager.claim_payout(policy.id, "0xpayout")

    with pytest.raises(StateConflictError):
        manager.claim_payout(policy.id, "0xpayout-again")

    paid = [tx for tx in manager.list_transactions(WALLET) if tx.type == "claim_paid"]
    assert len(paid) == 1
    assert manager.get_policy(policy.id).tx_hash == "0xpayout"


def test_claim_requires_tx_hash(manager):
    policy = buy(manager)
    manager.check_eligibility(policy.id)

    with pytest.raises(ValidationError):
        manager.claim_payout(policy.id, "  ")

    assert manager.get_policy(policy.id).status == PolicyStatus.CLAIM_ELIGIBLE


@pytest.fixture(params=["memory", "duckdb"])
def shared_manager(request, tmp_path):
    if request.param == "memory":
        store = InMemoryStore()
    else:
        store = DuckDBStore.open(tmp_path / "claims.duckdb")
    seed_weather_snapshots(store)
    yield PolicyLifecycleManager.for_store(store, clock=lambda: NOW)
    store.close()


def test_concurrent_claims_pay_once(shared_manager):
    manager = shared_manager
    policy = buy(manager)
    manager.check_eligibility(policy.id)
    barrier = threading.Barrier(8)
    outcomes = []

    def attempt(index):
        barrier.wait()
        try:
            manager.claim_payout(policy.id, f"0xpayout{index}")
        except StateConflictError:
            outcomes.append("conflict")
        else:
            outcomes.append("paid")

    threads = [threading.Thread(target=attempt, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("paid") == 1
    assert outcomes.count("conflict") == 7
    paid = [tx for tx in manager.list_transactions(WALLET) if tx.type == "claim_paid"]
    assert len(paid) == 1


@pytest.mark.parametrize("status", ["claim_eligible", "claimed", "expired"])
def test_check_on_non_active_policy_does_not_change_status(manager, status):
    policy = buy(manager)
    if status == "expired":
        manager.update_policy(policy.id, {"status": "expired"})
    else:
        manager.check_eligibility(policy.id)
    if status == "claimed":
        manager.claim_payout(policy.id, "0xpayout")
    before = manager.get_policy(policy.id)

    check = manager.check_eligibility(policy.id)

    assert check.is_eligible is True
    assert check.status == PolicyStatus(status)
    assert manager.get_policy(policy.id) == before


def test_check_without_snapshot_is_not_found(store):
    manager = PolicyLifecycleManager.for_store(store, known_locations={"nowhere"})
    policy = buy(manager, location="nowhere")

    with pytest.raises(NotFoundError):
        manager.check_eligibility(policy.id)


def test_missing_policy_is_not_found(manager):
    with pytest.raises(NotFoundError):
        manager.get_policy(404)
    with pytest.raises(NotFoundError):
        manager.check_eligibility(404)
    with pytest.raises(NotFoundError):
        manager.claim_payout(404, "0xpayout")


def test_update_policy_only_moves_forward(manager):
    policy = buy(manager)
    manager.update_policy(policy.id, {"status": "expired"})

    with pytest.raises(StateConflictError):
        manager.update_policy(policy.id, {"status": "active"})


def test_update_policy_rejects_immutable_fields(manager):
    policy = buy(manager)

    with pytest.raises(ValidationError):
        manager.update_policy(policy.id, {"coverage": 1_000_000})

    assert manager.get_policy(policy.id).coverage == pytest.approx(1000)


def test_update_policy_sets_current_value(manager):
    policy = buy(manager)

    updated = manager.update_policy(policy.id, {"currentValue": 12.5})

    assert updated.current_value == pytest.approx(12.5)
    assert updated.status == PolicyStatus.ACTIVE


def test_expire_skips_claimed_and_future_policies(manager):
    claimed = buy(manager)
    manager.check_eligibility(claimed.id)
    manager.claim_payout(claimed.id, "0xpayout")
    lapsed = buy(manager, location="london", eventType="rainfall", threshold=100)
    running = buy(manager, location="london", eventType="rainfall", threshold=100, duration=365)

    expired = manager.expire_due_policies(NOW + timedelta(days=31))

    assert [policy.id for policy in expired] == [lapsed.id]
    assert manager.get_policy(claimed.id).status == PolicyStatus.CLAIMED
    assert manager.get_policy(running.id).status == PolicyStatus.ACTIVE


def test_expired_policy_cannot_be_claimed(manager):
    policy = buy(manager)
    manager.check_eligibility(policy.id)
    manager.expire_due_policies(NOW + timedelta(days=30))

    with pytest.raises(StateConflictError):
        manager.claim_payout(policy.id, "0xpayout")


def test_update_weather_snapshot_feeds_next_check(manager):
    policy = buy(manager, location="london", eventType="storm", threshold=60)
    assert manager.check_eligibility(policy.id).is_eligible is False

    snapshot = manager.update_weather_snapshot("london", {"windSpeed": 75})
    check = manager.check_eligibility(policy.id)

    assert isinstance(snapshot, WeatherSnapshot)
    assert check.is_eligible is True
    assert check.reason == "Wind speed threshold exceeded: 75km/h (threshold: 60km/h)"


def test_update_weather_snapshot_for_unknown_location(manager):
    with pytest.raises(NotFoundError) as excinfo:
        manager.update_weather_snapshot("atlantis", {"temperature": 20})

    assert excinfo.value.message == "Weather data not found for this location"


def test_sweep_expires_then_checks(manager, store):
    lapsed = buy(manager, location="london", eventType="rainfall", threshold=100)
    open_drought = buy(manager, duration=365)
    quiet = buy(manager, location="london", eventType="rainfall", threshold=100, duration=365)

    summary = run_sweep(manager, store, now=NOW + timedelta(days=45))

    assert summary.expired == [lapsed.id]
    assert summary.eligible == [open_drought.id]
    assert summary.checked == 2
    assert manager.get_policy(quiet.id).status == PolicyStatus.ACTIVE


def test_list_requires_wallet(manager):
    with pytest.raises(ValidationError):
        manager.list_policies(" ")


@pytest.mark.parametrize("status", ["claim_eligible", "claimed"])
def test_update_policy_cannot_skip_check_or_payout(manager, status):
    policy = buy(manager, location="london", eventType="rainfall", threshold=100)

    with pytest.raises(StateConflictError):
        manager.update_policy(policy.id, {"status": status})

    assert manager.get_policy(policy.id).status == PolicyStatus.ACTIVE
    with pytest.raises(StateConflictError):
        manager.claim_payout(policy.id, "0xpayout")
    assert [tx.type for tx in manager.list_transactions(WALLET)] == ["policy_created"]


def test_update_policy_cannot_mark_eligible_policy_claimed(manager):
    policy = buy(manager)
    manager.check_eligibility(policy.id)

    with pytest.raises(StateConflictError):
        manager.update_policy(policy.id, {"status": "claimed", "txHash": "0xforged"})

    assert manager.get_policy(policy.id).status == PolicyStatus.CLAIM_ELIGIBLE


def test_update_policy_can_expire_eligible_policy(manager):
    policy = buy(manager)
    manager.check_eligibility(policy.id)

    updated = manager.update_policy(policy.id, {"status": "expired"})

    assert updated.status == PolicyStatus.EXPIRED


def test_claimed_policy_refuses_patches(manager):
    policy = buy(manager)
    manager.check_eligibility(policy.id)
    manager.claim_payout(policy.id, "0xpayout")

    with pytest.raises(StateConflictError):
        manager.update_policy(policy.id, {"txHash": "0xforged"})
    with pytest.raises(StateConflictError):
        manager.update_policy(policy.id, {"currentValue": 0})

    claimed = manager.get_policy(policy.id)
    assert claimed.tx_hash == "0xpayout"
    assert claimed.current_value == pytest.approx(32)


def test_expired_policy_refuses_patches(manager):
    policy = buy(manager)
    manager.update_policy(policy.id, {"status": "expired"})

    with pytest.raises(StateConflictError):
        manager.update_policy(policy.id, {"currentValue": 5})

    assert manager.update_policy(policy.id, {"status": "expired"}).status == PolicyStatus.EXPIRED
