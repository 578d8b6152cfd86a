"""
Credential ledger: quota, concurrency and cooldown state per credential.

This module implements:
- Startup reconciliation of configured ids with persisted records
- Atomic per-credential mutations (check-and-charge, release, cooldown, reset)
- Best-effort write-through persistence after every mutation
- Full snapshots for periodic flushing

Every mutation runs under the credential's own asyncio.Lock, so two
dispatches charging the same credential can never both pass the quota or
concurrency check for a single remaining slot. Different credentials never
contend with each other.
"""

from __future__ import annotations

import asyncio
import calendar
import time
from collections.abc import Callable
from datetime import datetime
from typing import Optional

import msgspec

from scrape_proxy.config.constants import STORE_INDEX_SUFFIX, Tier
from scrape_proxy.core.errors import ConcurrencyExceeded, QuotaExceeded
from scrape_proxy.core.models import (
    CredentialState,
    PoolConfig,
    new_credential_state,
    utc_now,
)
from scrape_proxy.core.store import CredentialStore
from scrape_proxy.utils.logging import get_logger, mask_credential

logger = get_logger(__name__)




# ==== CREDENTIAL LEDGER ==== #

class CredentialLedger:
    """
    Process-wide credential state shared by all concurrent dispatches.

    Callers never touch CredentialState records directly: reads return
    copies and writes go through the atomic operations below.

    Attributes:
        config: Pool configuration (ceilings, concurrency cap, cooldown)
        _store: Durable key-value store
        _clock: Epoch-seconds clock used for cooldowns
        _states: Live credential records keyed by id
        _locks: One lock per credential id
        loaded: Whether load() has completed
    """

    def __init__(
        self,
        config: PoolConfig,
        store: CredentialStore,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self._store = store
        self._clock = clock
        self._states: dict[str, CredentialState] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self.loaded = False




    # --► KEYS & POLICY

    def _key(self, credential_id: str) -> str:
        return f"{self.config.store_key_prefix}{credential_id}"

    @property
    def _index_key(self) -> str:
        return f"{self.config.store_key_prefix}{STORE_INDEX_SUFFIX}"

    def quota_ceiling(self, tier: Tier) -> int:
        """Quota ceiling for a tier (configurable policy constant)."""
        return self.config.quota_ceiling(tier)

    @property
    def max_concurrency(self) -> int:
        return self.config.max_concurrency

    def now(self) -> float:
        return self._clock()

    def in_cooldown(self, state: CredentialState, now: Optional[float] = None) -> bool:
        """True while now < cooldown_until."""
        if state.cooldown_until is None:
            return False

        current = self._clock() if now is None else now
        return current < state.cooldown_until

    def is_eligible(self, state: CredentialState, now: Optional[float] = None) -> bool:
        """Not cooling down, under quota and under the concurrency cap."""
        return (
            not self.in_cooldown(state, now)
            and state.used_calls < self.quota_ceiling(state.tier)
            and state.active_requests < self.max_concurrency
        )

    def eligible(self, credential_id: str, now: Optional[float] = None) -> bool:
        """is_eligible() against the live record, without copying it."""
        state = self._states.get(credential_id)
        return state is not None and self.is_eligible(state, now)




    # --► LOADING

    async def load(self, now: Optional[datetime] = None) -> None:
        """
        Load every credential from the durable store.

        Reconciliation rules:
        - configured ids and previously persisted ids are unioned
        - unseen configured ids start fresh in the current period
        - persisted ids missing from configuration are kept (never
          deleted) but are not part of the selectable pool
        - tier and reset day always follow configuration
        - active_requests is zeroed, nothing is in flight after a restart

        Args:
            now: Current time (defaults to UTC now)

        Raises:
            Store read errors and undecodable records propagate; the
            service must not start on a ledger it cannot trust.
        """
        now = now or utc_now()
        specs = {spec.id: spec for spec in self.config.credentials}

        raw_index = await self._store.get(self._index_key)
        persisted_ids: list[str] = (
            msgspec.json.decode(raw_index, type=list[str]) if raw_index else []
        )

        all_ids = list(specs) + [i for i in persisted_ids if i not in specs]
        fresh: dict[str, str] = {}

        for credential_id in all_ids:
            raw = await self._store.get(self._key(credential_id))
            spec = specs.get(credential_id)

            if raw is None:
                if spec is None:
                    logger.warning(
                        "Indexed credential %s has no stored record; skipping",
                        mask_credential(credential_id),
                    )
                    continue

                state = new_credential_state(spec, now)
                fresh[self._key(credential_id)] = self._encode(state)
                logger.info(
                    "New credential detected: %s (%s)",
                    mask_credential(credential_id),
                    spec.tier,
                )
            else:
                state = msgspec.json.decode(raw, type=CredentialState)

                if spec is not None:
                    state.tier = spec.tier
                    state.reset_day = spec.reset_day
                else:
                    logger.warning(
                        "Credential %s is persisted but no longer configured; kept out of the pool",
                        mask_credential(credential_id),
                    )

                if state.active_requests:
                    logger.info(
                        "Clearing %s stale in-flight requests on %s",
                        state.active_requests,
                        mask_credential(credential_id),
                    )
                    state.active_requests = 0

            self._states[credential_id] = state
            self._locks.setdefault(credential_id, asyncio.Lock())

        if fresh:
            await self._store.set_many(fresh)

        await self._store.set(
            self._index_key,
            msgspec.json.encode(list(self._states)).decode(),
        )

        self.loaded = True
        logger.info(
            "Ledger loaded: %s credentials (%s new)",
            len(self._states),
            len(fresh),
        )




    # --► READS

    def __contains__(self, credential_id: object) -> bool:
        return credential_id in self._states

    def get(self, credential_id: str) -> CredentialState:
        """Copy of one credential's current state."""
        return msgspec.structs.replace(self._states[credential_id])

    def states(self) -> list[CredentialState]:
        """Copies of every loaded credential's state."""
        return [msgspec.structs.replace(s) for s in self._states.values()]




    # --► PERSISTENCE

    @staticmethod
    def _encode(state: CredentialState) -> str:
        return msgspec.json.encode(state).decode()

    async def _write(self, state: CredentialState) -> None:
        try:
            await self._store.set(self._key(state.id), self._encode(state))
        except Exception as exc:
            logger.warning(
                "Failed to persist credential %s: %s: %s",
                mask_credential(state.id),
                type(exc).__name__,
                str(exc)[:200],
            )

    async def persist(self, credential_id: str) -> None:
        """
        Write one credential's current state to the durable store.

        Store failures are logged and swallowed; they never fail the
        request being served.
        """
        async with self._locks[credential_id]:
            await self._write(self._states[credential_id])

    async def snapshot_all(self) -> None:
        """Flush every credential in one batched write."""
        items = {self._key(cid): self._encode(s) for cid, s in self._states.items()}

        try:
            await self._store.set_many(items)
        except Exception as exc:
            logger.warning(
                "Ledger snapshot failed: %s: %s",
                type(exc).__name__,
                str(exc)[:200],
            )
            return

        logger.debug("Ledger snapshot written (%s credentials)", len(items))




    # --► ATOMIC MUTATIONS

    async def try_charge(self, credential_id: str, cost: int, url: str = "") -> CredentialState:
        """
        Check quota and concurrency, then charge cost and take a slot.

        The check and the charge happen under the credential lock, so at
        most max_concurrency charges can be in flight at once and no
        charge is accepted once used_calls has reached the ceiling.

        Args:
            credential_id: Credential to charge
            cost: Quota units to add
            url: Target URL, for error reporting

        Returns:
            Copy of the state after the charge

        Raises:
            QuotaExceeded: used_calls already at or over the ceiling
            ConcurrencyExceeded: active_requests already at the cap
        """
        async with self._locks[credential_id]:
            state = self._states[credential_id]
            ceiling = self.quota_ceiling(state.tier)

            if state.used_calls >= ceiling:
                raise QuotaExceeded(url, credential_id, f"{state.used_calls}/{ceiling} calls used")

            if state.active_requests >= self.max_concurrency:
                raise ConcurrencyExceeded(
                    url,
                    credential_id,
                    f"{state.active_requests}/{self.max_concurrency} requests in flight",
                )

            state.used_calls += cost
            state.active_requests += 1
            await self._write(state)
            return msgspec.structs.replace(state)

    async def release(self, credential_id: str) -> CredentialState:
        """Give back one in-flight slot (never below zero)."""
        async with self._locks[credential_id]:
            state = self._states[credential_id]
            state.active_requests = max(0, state.active_requests - 1)
            await self._write(state)
            return msgspec.structs.replace(state)

    async def cool_down(self, credential_id: str, seconds: Optional[float] = None) -> float:
        """
        Make a credential ineligible for a while.

        Returns:
            The cooldown_until timestamp that was set
        """
        duration = self.config.cooldown_seconds if seconds is None else seconds

        async with self._locks[credential_id]:
            state = self._states[credential_id]
            state.cooldown_until = self._clock() + duration
            await self._write(state)
            logger.warning(
                "Credential %s rate limited; cooling down for %ss",
                mask_credential(credential_id),
                duration,
            )
            return state.cooldown_until

    async def reset_if_due(self, credential_id: str, now: Optional[datetime] = None) -> bool:
        """
        Reset a credential's quota on its reset day, once per period.

        A reset fires when today is the credential's reset day (clamped to
        the last day of short months) and the stored period differs from
        the current (month, year). Resetting twice in one period is a no-op.

        Returns:
            True if the credential was reset
        """
        now = now or utc_now()

        async with self._locks[credential_id]:
            state = self._states[credential_id]
            last_day = calendar.monthrange(now.year, now.month)[1]
            reset_day = min(state.reset_day, last_day)

            if now.day != reset_day:
                return False

            if (state.period_month, state.period_year) == (now.month, now.year):
                return False

            state.used_calls = 0
            state.active_requests = 0
            state.cooldown_until = None
            state.period_month = now.month
            state.period_year = now.year
            await self._write(state)

        logger.info(
            "Quota reset for %s (period %s/%s)",
            mask_credential(credential_id),
            now.month,
            now.year,
        )
        return True
