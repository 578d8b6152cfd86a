"""Tests for the credential ledger."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from datetime import UTC, datetime

import msgspec
import pytest

from scrape_proxy.core.errors import ConcurrencyExceeded, QuotaExceeded
from scrape_proxy.core.ledger import CredentialLedger
from scrape_proxy.core.models import CredentialSpec, CredentialState, PoolConfig
from scrape_proxy.core.store import MemoryCredentialStore

PREFIX = "scrape_proxy:credential:"
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


class _Clock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class _YieldingStore(MemoryCredentialStore):
    """Store that suspends on every write, like a real network store."""

    async def set(self, key: str, value: str) -> None:
        await asyncio.sleep(0)
        await super().set(key, value)


class _BrokenWriteStore(MemoryCredentialStore):
    async def set(self, key: str, value: str) -> None:
        raise ConnectionError("store down")

    async def set_many(self, items: Mapping[str, str]) -> None:
        raise ConnectionError("store down")


class _BrokenReadStore(MemoryCredentialStore):
    async def get(self, key: str) -> str | None:
        raise ConnectionError("store down")


def _config(**overrides: object) -> PoolConfig:
    base: dict[str, object] = {
        "credentials": [
            CredentialSpec(id="prem-1", tier="premium", reset_day=19),
            CredentialSpec(id="free-1", tier="free", reset_day=1),
        ],
    }
    base.update(overrides)
    return PoolConfig(**base)  # type: ignore[arg-type]


def _encode(state: CredentialState) -> str:
    return msgspec.json.encode(state).decode()


@pytest.mark.asyncio
async def test_load_initializes_unseen_credentials() -> None:
    store = MemoryCredentialStore()
    ledger = CredentialLedger(_config(), store)
    await ledger.load(NOW)

    state = ledger.get("prem-1")
    assert state.used_calls == 0
    assert state.active_requests == 0
    assert state.cooldown_until is None
    assert (state.period_month, state.period_year) == (10, 2026)
    assert ledger.loaded

    # Fresh records and the id index are written through.
    assert f"{PREFIX}prem-1" in store.data
    assert msgspec.json.decode(store.data[f"{PREFIX}__index__"]) == ["prem-1", "free-1"]


@pytest.mark.asyncio
async def test_load_resumes_persisted_counts() -> None:
    """A restart keeps spent quota and cooldown, but not in-flight counts."""
    persisted = CredentialState(
        id="free-1",
        tier="premium",  # stale tier; configuration wins
        reset_day=7,
        used_calls=321,
        period_month=10,
        period_year=2026,
        active_requests=4,
        cooldown_until=1_000_060.0,
    )
    store = MemoryCredentialStore({f"{PREFIX}free-1": _encode(persisted)})
    ledger = CredentialLedger(_config(), store)
    await ledger.load(NOW)

    state = ledger.get("free-1")
    assert state.used_calls == 321
    assert state.cooldown_until == 1_000_060.0
    assert state.active_requests == 0
    assert state.tier == "free"
    assert state.reset_day == 1


@pytest.mark.asyncio
async def test_load_keeps_persisted_ids_missing_from_config() -> None:
    orphan = CredentialState(id="retired", tier="free", reset_day=1, used_calls=10)
    store = MemoryCredentialStore(
        {
            f"{PREFIX}__index__": '["retired","prem-1"]',
            f"{PREFIX}retired": _encode(orphan),
        }
    )
    ledger = CredentialLedger(_config(), store)
    await ledger.load(NOW)

    assert "retired" in ledger
    assert ledger.get("retired").used_calls == 10
    index = msgspec.json.decode(store.data[f"{PREFIX}__index__"])
    assert set(index) == {"prem-1", "free-1", "retired"}


@pytest.mark.asyncio
async def test_credential_named_index_does_not_clobber_the_id_index() -> None:
    store = MemoryCredentialStore()
    config = _config(credentials=[CredentialSpec(id="index", tier="free")])
    ledger = CredentialLedger(config, store)
    await ledger.load(NOW)
    await ledger.try_charge("index", 3)

    restarted = CredentialLedger(config, store)
    await restarted.load(NOW)

    assert restarted.get("index").used_calls == 3
    assert msgspec.json.decode(store.data[f"{PREFIX}__index__"]) == ["index"]


@pytest.mark.asyncio
async def test_load_propagates_store_read_errors() -> None:
    ledger = CredentialLedger(_config(), _BrokenReadStore())
    with pytest.raises(ConnectionError):
        await ledger.load(NOW)
    assert not ledger.loaded


@pytest.mark.asyncio
async def test_get_returns_copy() -> None:
    ledger = CredentialLedger(_config(), MemoryCredentialStore())
    await ledger.load(NOW)

    copy = ledger.get("prem-1")
    copy.used_calls = 999
    assert ledger.get("prem-1").used_calls == 0


@pytest.mark.asyncio
async def test_try_charge_adds_cost_and_takes_slot() -> None:
    store = MemoryCredentialStore()
    ledger = CredentialLedger(_config(), store)
    await ledger.load(NOW)

    state = await ledger.try_charge("free-1", 5)
    assert state.used_calls == 5
    assert state.active_requests == 1

    stored = msgspec.json.decode(store.data[f"{PREFIX}free-1"], type=CredentialState)
    assert stored.used_calls == 5

    state = await ledger.release("free-1")
    assert state.active_requests == 0


@pytest.mark.asyncio
async def test_try_charge_rejects_at_ceiling() -> None:
    ledger = CredentialLedger(_config(free_quota=10), MemoryCredentialStore())
    await ledger.load(NOW)

    # Under the ceiling a charge may overshoot it (soft invariant).
    state = await ledger.try_charge("free-1", 12)
    await ledger.release("free-1")
    assert state.used_calls == 12

    with pytest.raises(QuotaExceeded):
        await ledger.try_charge("free-1", 1)
    assert ledger.get("free-1").used_calls == 12
    assert ledger.get("free-1").active_requests == 0


@pytest.mark.asyncio
async def test_try_charge_rejects_at_concurrency_cap() -> None:
    ledger = CredentialLedger(_config(max_concurrency=2), MemoryCredentialStore())
    await ledger.load(NOW)

    await ledger.try_charge("prem-1", 1)
    await ledger.try_charge("prem-1", 1)
    with pytest.raises(ConcurrencyExceeded):
        await ledger.try_charge("prem-1", 1)

    assert ledger.get("prem-1").used_calls == 2
    assert ledger.get("prem-1").active_requests == 2


@pytest.mark.asyncio
async def test_concurrent_charges_never_exceed_cap() -> None:
    """Many dispatches racing for one credential get at most max_concurrency slots."""
    ledger = CredentialLedger(_config(max_concurrency=3), _YieldingStore())
    await ledger.load(NOW)

    results = await asyncio.gather(
        *(ledger.try_charge("prem-1", 1) for _ in range(20)),
        return_exceptions=True,
    )

    granted = [r for r in results if isinstance(r, CredentialState)]
    rejected = [r for r in results if isinstance(r, ConcurrencyExceeded)]
    assert len(granted) == 3
    assert len(rejected) == 17
    assert ledger.get("prem-1").active_requests == 3
    assert ledger.get("prem-1").used_calls == 3


@pytest.mark.asyncio
async def test_release_never_goes_negative() -> None:
    ledger = CredentialLedger(_config(), MemoryCredentialStore())
    await ledger.load(NOW)

    state = await ledger.release("prem-1")
    assert state.active_requests == 0


@pytest.mark.asyncio
async def test_cool_down_makes_credential_ineligible_until_expiry() -> None:
    clock = _Clock()
    ledger = CredentialLedger(_config(), MemoryCredentialStore(), clock=clock)
    await ledger.load(NOW)

    until = await ledger.cool_down("prem-1")
    assert until == clock.now + 60
    assert not ledger.eligible("prem-1")

    clock.now += 59
    assert not ledger.eligible("prem-1")
    clock.now += 1
    assert ledger.eligible("prem-1")


@pytest.mark.asyncio
async def test_store_write_failures_are_swallowed() -> None:
    """Mutations still apply in memory when the store cannot be written."""
    config = _config()
    store = _BrokenWriteStore()
    ledger = CredentialLedger(config, MemoryCredentialStore())
    await ledger.load(NOW)
    ledger._store = store

    state = await ledger.try_charge("prem-1", 1)
    assert state.used_calls == 1
    await ledger.release("prem-1")
    await ledger.cool_down("prem-1")
    await ledger.persist("prem-1")
    await ledger.snapshot_all()

    assert ledger.get("prem-1").cooldown_until is not None


@pytest.mark.asyncio
async def test_reset_fires_once_per_period() -> None:
    persisted = CredentialState(
        id="prem-1",
        tier="premium",
        reset_day=19,
        used_calls=5_000,
        period_month=9,
        period_year=2026,
        cooldown_until=2_000_000.0,
    )
    store = MemoryCredentialStore({f"{PREFIX}prem-1": _encode(persisted)})
    ledger = CredentialLedger(_config(), store)
    await ledger.load(NOW)

    assert await ledger.reset_if_due("prem-1", NOW)
    state = ledger.get("prem-1")
    assert state.used_calls == 0
    assert state.cooldown_until is None
    assert (state.period_month, state.period_year) == (10, 2026)

    await ledger.try_charge("prem-1", 3)
    assert not await ledger.reset_if_due("prem-1", NOW)
    assert ledger.get("prem-1").used_calls == 3


@pytest.mark.asyncio
async def test_reset_waits_for_reset_day() -> None:
    persisted = CredentialState(
        id="free-1", tier="free", reset_day=1, used_calls=900, period_month=9, period_year=2026
    )
    store = MemoryCredentialStore({f"{PREFIX}free-1": _encode(persisted)})
    ledger = CredentialLedger(_config(), store)
    await ledger.load(NOW)

    assert not await ledger.reset_if_due("free-1", NOW)
    assert ledger.get("free-1").used_calls == 900


@pytest.mark.asyncio
async def test_reset_day_clamps_to_short_month() -> None:
    """A reset day of 31 still fires on the last day of February."""
    config = _config(credentials=[CredentialSpec(id="k", tier="free", reset_day=31)])
    persisted = CredentialState(
        id="k", tier="free", reset_day=31, used_calls=50, period_month=1, period_year=2026
    )
    store = MemoryCredentialStore({f"{PREFIX}k": _encode(persisted)})
    ledger = CredentialLedger(config, store)
    await ledger.load(NOW)

    assert not await ledger.reset_if_due("k", datetime(2026, 2, 27, tzinfo=UTC))
    assert await ledger.reset_if_due("k", datetime(2026, 2, 28, tzinfo=UTC))
    assert ledger.get("k").used_calls == 0


@pytest.mark.asyncio
async def test_snapshot_all_writes_every_record() -> None:
    store = MemoryCredentialStore()
    ledger = CredentialLedger(_config(), store)
    await ledger.load(NOW)
    store.data.clear()

    await ledger.snapshot_all()
    assert {f"{PREFIX}prem-1", f"{PREFIX}free-1"} <= set(store.data)
