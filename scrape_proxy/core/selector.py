"""
Credential selection over the prioritized pool.

Premium credentials are always preferred over free ones. Within a tier the
pick is uniformly random among eligible credentials, so load spreads across
keys instead of piling onto whichever id sorts first.
"""

from __future__ import annotations

import random
from collections.abc import Collection, Sequence
from typing import Optional

from scrape_proxy.core.ledger import CredentialLedger
from scrape_proxy.core.models import PoolConfig




# ==== CREDENTIAL SELECTOR ==== #

class CredentialSelector:
    """
    Chooses an eligible credential for the next ladder run.

    Eligibility is re-read from the ledger on every call and never cached.
    Selection does not reserve anything: the ledger's check-and-charge is
    the authority, so a credential picked here may still be rejected by
    the ladder if another dispatch takes the last slot first.

    Attributes:
        ledger: Shared credential ledger
        premium_ids: Configured premium credential ids
        free_ids: Configured free credential ids
        _rng: Random source for the uniform pick
    """

    def __init__(
        self,
        ledger: CredentialLedger,
        premium_ids: Sequence[str],
        free_ids: Sequence[str],
        rng: Optional[random.Random] = None,
    ) -> None:
        self.ledger = ledger
        self.premium_ids = list(premium_ids)
        self.free_ids = list(free_ids)
        self._rng = rng or random.Random()

    @classmethod
    def from_config(
        cls,
        ledger: CredentialLedger,
        config: PoolConfig,
        rng: Optional[random.Random] = None,
    ) -> CredentialSelector:
        return cls(ledger, config.ids_for("premium"), config.ids_for("free"), rng)

    @property
    def pool_empty(self) -> bool:
        """True when no credential is configured at all."""
        return not self.premium_ids and not self.free_ids

    @property
    def pool_size(self) -> int:
        return len(self.premium_ids) + len(self.free_ids)

    def _pick(self, ids: Sequence[str], exclude: Collection[str], now: float) -> Optional[str]:
        # Reservoir sampling: uniform among eligible ids in one pass.
        choice: Optional[str] = None
        seen = 0

        for credential_id in ids:
            if credential_id in exclude or not self.ledger.eligible(credential_id, now):
                continue

            seen += 1
            if self._rng.randrange(seen) == 0:
                choice = credential_id

        return choice

    def available_slots(self) -> int:
        """Free in-flight slots summed over every eligible pooled credential."""
        now = self.ledger.now()
        total = 0

        for credential_id in (*self.premium_ids, *self.free_ids):
            if self.ledger.eligible(credential_id, now):
                state = self.ledger.get(credential_id)
                total += self.ledger.max_concurrency - state.active_requests

        return total

    def select(self, exclude: Collection[str] = ()) -> Optional[str]:
        """
        Return an eligible credential id, premium first, or None.

        Args:
            exclude: Credential ids already tried by the current dispatch

        Returns:
            Credential id, or None if nothing in the pool qualifies
        """
        now = self.ledger.now()
        return (
            self._pick(self.premium_ids, exclude, now)
            or self._pick(self.free_ids, exclude, now)
        )
