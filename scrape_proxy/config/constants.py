"""
Configuration constants and type aliases for the scrape proxy.

This module defines:
- Type literals for credential tiers and outcome sources
- Default quota, concurrency and cooldown policy values
- Default outbound endpoints and store settings
- Maintenance cadences
"""

from __future__ import annotations

from typing import Literal

# ==== TYPE DEFINITIONS ==== #

Tier = Literal["free", "premium"]
"""
Credential cost tier.

- 'premium': Large quota, always selected before free credentials
- 'free': Small quota, used once every premium credential is ineligible
"""


Source = Literal["direct", "credential", "fallback"]
"""
Where a successful response came from.

- 'direct': Plain GET against the target without any credential
- 'credential': Scraping backend, via one pooled credential
- 'fallback': Alternate scraping backend (pool empty by configuration)
"""


StoreBackend = Literal["memory", "redis", "file"]
"""Durable store implementation backing the credential ledger."""




# ==== QUOTA & CONCURRENCY POLICY ==== #

DEFAULT_FREE_QUOTA: int = 1_000
"""Calls per billing period for a free credential."""

DEFAULT_PREMIUM_QUOTA: int = 250_000
"""Calls per billing period for a premium credential."""

DEFAULT_MAX_CONCURRENCY: int = 5
"""Maximum in-flight ladder steps per credential."""

DEFAULT_COOLDOWN_SECONDS: int = 60
"""How long a rate-limited credential stays ineligible."""

DEFAULT_RESET_DAY: int = 1
"""Day of month on which a credential's quota resets, unless configured."""




# ==== HTTP CLIENT DEFAULTS ==== #

DEFAULT_HTTPX_TIMEOUT_SECONDS: int = 30
"""Default timeout for outbound requests in seconds."""

DEFAULT_SCRAPE_ENDPOINT: str = "https://api.scraperapi.com/"
"""Scraping backend queried with a pooled credential."""

DEFAULT_CREDENTIAL_PARAM: str = "api_key"
"""Query parameter carrying the credential on scraping backend calls."""

RATE_LIMIT_STATUS: int = 429
"""Outbound status that puts a credential into cooldown."""




# ==== STORE DEFAULTS ==== #

DEFAULT_REDIS_URL: str = "redis://localhost:6379/0"
DEFAULT_STORE_KEY_PREFIX: str = "scrape_proxy:credential:"
DEFAULT_STORE_FILE: str = "data/credentials.json"

STORE_INDEX_SUFFIX: str = "__index__"
"""Key suffix of the persisted id index; reserved, never a credential id."""




# ==== MAINTENANCE CADENCE ==== #

DEFAULT_RESET_INTERVAL_SECONDS: int = 3_600
"""Quota reset check cadence (hourly is enough granularity)."""

DEFAULT_FLUSH_INTERVAL_SECONDS: int = 60
"""Full ledger flush and queue drain cadence."""
