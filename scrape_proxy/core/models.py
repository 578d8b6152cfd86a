"""
Core data models and type definitions for the scrape proxy.

This module defines:
- Configuration structures (PoolConfig, CredentialSpec)
- Persisted credential state (CredentialState)
- Ladder steps and the default cost ladder
- Request and outcome types (PendingRequest, FetchOutcome, PoolSummary)
- Shared runtime context (ProxyContext)
- Utility functions for model creation
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, TypedDict

import msgspec

from scrape_proxy.config.constants import (
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_CREDENTIAL_PARAM,
    DEFAULT_FLUSH_INTERVAL_SECONDS,
    DEFAULT_FREE_QUOTA,
    DEFAULT_HTTPX_TIMEOUT_SECONDS,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_PREMIUM_QUOTA,
    DEFAULT_REDIS_URL,
    DEFAULT_RESET_DAY,
    DEFAULT_RESET_INTERVAL_SECONDS,
    DEFAULT_SCRAPE_ENDPOINT,
    DEFAULT_STORE_FILE,
    DEFAULT_STORE_KEY_PREFIX,
    Source,
    StoreBackend,
    Tier,
)

if TYPE_CHECKING:
    import httpx

    from scrape_proxy.core.ledger import CredentialLedger
    from scrape_proxy.core.store import CredentialStore
    from scrape_proxy.pipelines.dispatcher import Dispatcher
    from scrape_proxy.pipelines.maintenance import Maintenance




# ==== CONFIGURATION MODELS ==== #

class CredentialSpec(msgspec.Struct, frozen=True):
    """
    Configured identity of one pooled credential.

    Attributes:
        id: Opaque credential (API key) string
        tier: Cost tier deciding quota ceiling and selection priority
        reset_day: Day of month on which the quota resets
    """

    id: str
    tier: Tier
    reset_day: int = DEFAULT_RESET_DAY




class PoolConfig(msgspec.Struct, omit_defaults=True):
    """
    Runtime configuration for the credential pool and its collaborators.

    Attributes:
        credentials: Configured credentials (premium and free)
        free_quota: Quota ceiling for free credentials
        premium_quota: Quota ceiling for premium credentials
        max_concurrency: Maximum in-flight ladder steps per credential
        cooldown_seconds: Cooldown applied after an outbound 429
        httpx_timeout_seconds: Timeout for every outbound request
        scrape_endpoint: Scraping backend URL
        credential_param: Query parameter carrying the credential
        fallback_endpoint: Alternate backend URL (None disables fallback)
        fallback_token: Token passed to the alternate backend
        fallback_launch: JSON launch options passed to the alternate backend
        store_backend: Durable store implementation
        redis_url: Redis connection URL for the redis backend
        store_key_prefix: Key prefix for persisted credential records
        store_file_path: JSON file for the file backend
        pending_queue_max: Pending queue bound (0 keeps it unbounded)
        reset_interval_seconds: Quota reset check cadence
        flush_interval_seconds: Ledger flush and queue drain cadence
    """

    credentials: list[CredentialSpec] = msgspec.field(default_factory=list)
    free_quota: int = DEFAULT_FREE_QUOTA
    premium_quota: int = DEFAULT_PREMIUM_QUOTA
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS
    httpx_timeout_seconds: int = DEFAULT_HTTPX_TIMEOUT_SECONDS
    scrape_endpoint: str = DEFAULT_SCRAPE_ENDPOINT
    credential_param: str = DEFAULT_CREDENTIAL_PARAM
    fallback_endpoint: str | None = None
    fallback_token: str = ""
    fallback_launch: str = "{}"
    store_backend: StoreBackend = "memory"
    redis_url: str = DEFAULT_REDIS_URL
    store_key_prefix: str = DEFAULT_STORE_KEY_PREFIX
    store_file_path: Path = Path(DEFAULT_STORE_FILE)
    pending_queue_max: int = 0
    reset_interval_seconds: int = DEFAULT_RESET_INTERVAL_SECONDS
    flush_interval_seconds: int = DEFAULT_FLUSH_INTERVAL_SECONDS

    def quota_ceiling(self, tier: Tier) -> int:
        """Return the quota ceiling for a credential tier."""
        return self.premium_quota if tier == "premium" else self.free_quota

    def ids_for(self, tier: Tier) -> list[str]:
        """Return configured credential ids of one tier, in config order."""
        return [c.id for c in self.credentials if c.tier == tier]




# ==== LEDGER MODELS ==== #

class CredentialState(msgspec.Struct):
    """
    Quota, concurrency and cooldown state of one credential.

    This is the record persisted to the durable store. Only the ledger
    mutates it; everyone else works on copies.

    Attributes:
        id: Credential id
        tier: Cost tier
        reset_day: Day of month on which the quota resets
        used_calls: Calls charged in the current billing period
        period_month: Month the used_calls count belongs to
        period_year: Year the used_calls count belongs to
        active_requests: In-flight ladder steps using this credential
        cooldown_until: Epoch seconds until which the credential is ineligible
    """

    id: str
    tier: Tier
    reset_day: int
    used_calls: int = 0
    period_month: int = 1
    period_year: int = 1970
    active_requests: int = 0
    cooldown_until: float | None = None




class LadderStep(msgspec.Struct, frozen=True):
    """
    One parameter variant of a scraping backend call.

    Attributes:
        name: Short step name used in logs and outcomes
        params: Extra query parameters sent to the scraping backend
        cost: Quota charged to the credential before the call
    """

    name: str
    params: dict[str, str]
    cost: int


DEFAULT_LADDER: tuple[LadderStep, ...] = (
    LadderStep(name="basic", params={}, cost=1),
    LadderStep(name="geo", params={"country_code": "us"}, cost=1),
    LadderStep(name="render", params={"render": "true"}, cost=5),
    LadderStep(name="premium", params={"premium": "true"}, cost=10),
)
"""Steps attempted in order for one credential, cheapest first."""




# ==== REQUEST & OUTCOME MODELS ==== #

class UpstreamBody(msgspec.Struct, frozen=True):
    """Raw body returned by one successful outbound call, never re-decoded."""

    body: bytes
    content_type: str | None = None




class FetchOutcome(TypedDict):
    """
    Successful fetch handed back to the inbound caller.

    Attributes:
        url: Target URL
        body: Upstream response bytes, passed through untouched
        content_type: Upstream content type, if any
        source: Which path produced the body
        credential_id: Credential used (credential source only)
        step: Ladder step that succeeded (credential source only)
    """

    url: str
    body: bytes
    content_type: str | None
    source: Source
    credential_id: str | None
    step: str | None




class PoolSummary(TypedDict):
    """
    Point-in-time view of the credential pool.

    Attributes:
        total_credentials: Credentials in the selectable pool
        premium_credentials: Premium credentials in the pool
        free_credentials: Free credentials in the pool
        eligible: Credentials the selector could pick right now
        cooling_down: Credentials inside a rate-limit cooldown
        quota_exhausted: Credentials at or over their ceiling
        at_capacity: Credentials at the in-flight cap
        active_requests: In-flight ladder steps across the pool
        premium_calls_used: Calls charged to premium credentials this period
        free_calls_used: Calls charged to free credentials this period
        premium_quota_remaining: Remaining premium calls (never negative)
        free_quota_remaining: Remaining free calls (never negative)
        queue_depth: Requests waiting in the pending queue
    """

    total_credentials: int
    premium_credentials: int
    free_credentials: int
    eligible: int
    cooling_down: int
    quota_exhausted: int
    at_capacity: int
    active_requests: int
    premium_calls_used: int
    free_calls_used: int
    premium_quota_remaining: int
    free_quota_remaining: int
    queue_depth: int




@dataclass
class PendingRequest:
    """
    Inbound fetch waiting for a credential.

    The future is the handle back to the original caller: it is resolved
    with a FetchOutcome or a terminal DispatchFailed. seq is the arrival
    order assigned by the pending queue on first enqueue.
    """

    url: str
    future: asyncio.Future[FetchOutcome] = field(
        default_factory=lambda: asyncio.get_running_loop().create_future(),
    )
    enqueued_at: str | None = None
    seq: int | None = None




# ==== UTILITY FUNCTIONS ==== #

def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


def new_credential_state(spec: CredentialSpec, now: datetime) -> CredentialState:
    """
    Create a fresh credential record for the current billing period.

    Args:
        spec: Configured credential identity
        now: Current time, used to stamp the period

    Returns:
        CredentialState with zeroed counters and no cooldown
    """
    return CredentialState(
        id=spec.id,
        tier=spec.tier,
        reset_day=spec.reset_day,
        period_month=now.month,
        period_year=now.year,
    )


def make_outcome(
    url: str,
    body: bytes,
    source: Source,
    *,
    content_type: str | None = None,
    credential_id: str | None = None,
    step: str | None = None,
) -> FetchOutcome:
    """Build a FetchOutcome."""
    return FetchOutcome(
        url=url,
        body=body,
        content_type=content_type,
        source=source,
        credential_id=credential_id,
        step=step,
    )




# ==== RUNTIME CONTEXT ==== #

@dataclass
class ProxyContext:
    """
    Shared resources of a running proxy.

    Attributes:
        config: Pool configuration
        store: Durable store behind the ledger
        http_client: Shared async HTTP client for every outbound call
        ledger: Credential ledger
        dispatcher: Request dispatcher (selector and queue hang off it)
        maintenance: Periodic maintenance runner
    """

    config: PoolConfig
    store: CredentialStore
    http_client: httpx.AsyncClient
    ledger: CredentialLedger
    dispatcher: Dispatcher
    maintenance: Maintenance
