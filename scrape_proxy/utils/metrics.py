"""
Metrics computation for the credential pool.

This module provides:
- Per-tier quota usage and remaining quota
- Eligibility breakdown (cooling down, exhausted, at capacity)
- Queue depth, for the /stats endpoint
"""

from __future__ import annotations

from collections.abc import Collection
from typing import Optional

from scrape_proxy.core.ledger import CredentialLedger
from scrape_proxy.core.models import CredentialState, PoolSummary




# ==== POOL SUMMARY COMPUTATION ==== #

def compute_pool_summary(
    ledger: CredentialLedger,
    pool_ids: Collection[str],
    queue_depth: int = 0,
    now: Optional[float] = None,
) -> PoolSummary:
    """
    Compute a pool summary from current ledger state.

    Credentials persisted but no longer configured are left out: only
    ids in pool_ids count.

    Args:
        ledger: Shared credential ledger
        pool_ids: Ids of the selectable pool
        queue_depth: Current pending queue length
        now: Epoch seconds (defaults to the ledger clock)

    Returns:
        PoolSummary with aggregate counts
    """
    now = ledger.now() if now is None else now
    rows = [s for s in ledger.states() if s.id in pool_ids]

    premium = [s for s in rows if s.tier == "premium"]
    free = [s for s in rows if s.tier == "free"]

    def remaining(states: list[CredentialState]) -> int:
        return sum(max(0, ledger.quota_ceiling(s.tier) - s.used_calls) for s in states)

    return PoolSummary(
        total_credentials=len(rows),
        premium_credentials=len(premium),
        free_credentials=len(free),
        eligible=sum(1 for s in rows if ledger.is_eligible(s, now)),
        cooling_down=sum(1 for s in rows if ledger.in_cooldown(s, now)),
        quota_exhausted=sum(
            1 for s in rows if s.used_calls >= ledger.quota_ceiling(s.tier)
        ),
        at_capacity=sum(
            1 for s in rows if s.active_requests >= ledger.max_concurrency
        ),
        active_requests=sum(s.active_requests for s in rows),
        premium_calls_used=sum(s.used_calls for s in premium),
        free_calls_used=sum(s.used_calls for s in free),
        premium_quota_remaining=remaining(premium),
        free_quota_remaining=remaining(free),
        queue_depth=queue_depth,
    )
