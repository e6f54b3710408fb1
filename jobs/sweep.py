"""Scheduled pass over open policies: expire the lapsed, check the rest."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime

from dotenv import load_dotenv

from insurance.errors import NotFoundError, UnknownCategoryError
from insurance.lifecycle import PolicyLifecycleManager
from insurance.model import PolicyStatus
from storage.backends import DUCKDB_BACKEND, open_store
from storage.base import PolicyStore

load_dotenv()

logger = logging.getLogger(__name__)


@dataclass
class SweepSummary:
    expired: list[int] = field(default_factory=list)
    eligible: list[int] = field(default_factory=list)
    checked: int = 0
    skipped: int = 0


def run_sweep(
    manager: PolicyLifecycleManager,
    policies: PolicyStore,
    *,
    now: datetime | None = None,
) -> SweepSummary:
    summary = SweepSummary()
    summary.expired = [policy.id for policy in manager.expire_due_policies(now)]

    for policy in policies.iter_policies((PolicyStatus.ACTIVE,)):
        try:
            check = manager.check_eligibility(policy.id)
        except (NotFoundError, UnknownCategoryError) as exc:
            logger.warning("Skipping policy %s: %s", policy.id, exc)
            summary.skipped += 1
            continue
        summary.checked += 1
        if check.status == PolicyStatus.CLAIM_ELIGIBLE:
            summary.eligible.append(policy.id)

    logger.info(
        "Sweep complete: %s expired, %s checked, %s newly eligible, %s skipped.",
        len(summary.expired),
        summary.checked,
        len(summary.eligible),
        summary.skipped,
    )
    return summary


def main() -> int:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    store = open_store(default=DUCKDB_BACKEND)
    try:
        run_sweep(PolicyLifecycleManager.for_store(store), store)
    finally:
        store.close()
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
