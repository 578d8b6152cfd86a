"""
Environment-based configuration loading with validation.

This module provides:
- Environment variable parsing with defaults
- Configuration value clamping for safety
- Credential pool loading from env lists or a JSON file
- PoolConfig construction from environment
"""

from __future__ import annotations

import json
import os
from pathlib import Path

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
    STORE_INDEX_SUFFIX,
    Tier,
)
from scrape_proxy.core.models import CredentialSpec, PoolConfig

STORE_BACKENDS = ("memory", "redis", "file")

# ==== ENVIRONMENT VARIABLE HELPERS ==== #

def _env_int(name: str, default: int) -> int:
    """
    Read integer from environment variable with fallback.

    Args:
        name: Environment variable name
        default: Default value if variable not set

    Returns:
        Integer value from environment or default

    Note:
        Raises ValueError if environment value cannot be parsed as int.
    """
    value = os.getenv(name)

    if value is None or not value.strip():
        return default

    return int(value)




def _clamp(value: int, lower: int, upper: int) -> int:
    """
    Clamp integer value to safe range.

    Example:
        _clamp(150, 1, 64) -> 64
        _clamp(0, 1, 31) -> 1
    """
    return max(lower, min(upper, value))




def _env_list(name: str) -> list[str]:
    """Read a comma-separated list, dropping blanks and duplicates (order kept)."""
    raw = os.getenv(name, "")
    seen: dict[str, None] = {}

    for item in raw.split(","):
        item = item.strip()
        if item:
            seen.setdefault(item, None)

    return list(seen)




def _env_reset_days(name: str) -> dict[str, int]:
    """
    Parse per-credential reset days.

    Format:
        CREDENTIAL_RESET_DAYS="key-a:5,key-b:17"
    """
    days: dict[str, int] = {}

    for item in _env_list(name):
        credential_id, sep, day = item.rpartition(":")
        if not sep or not credential_id:
            msg = f"{name}: expected id:day, got {item!r}"
            raise ValueError(msg)
        days[credential_id] = _clamp(int(day), 1, 31)

    return days




# ==== CREDENTIAL LOADERS ==== #

def _check_reserved(specs: dict[str, CredentialSpec]) -> list[CredentialSpec]:
    """Reject the id reserved for the store index key."""
    if STORE_INDEX_SUFFIX in specs:
        msg = f"credential id {STORE_INDEX_SUFFIX!r} is reserved"
        raise ValueError(msg)

    return list(specs.values())




def load_credentials_from_json(path: Path, default_reset_day: int = DEFAULT_RESET_DAY) -> list[CredentialSpec]:
    """
    Load credential pool from JSON file.

    Expected JSON structure:
        {
            "premium": [{"id": "key-a", "reset_day": 5}],
            "free": [{"id": "key-b"}, "key-c"]
        }

    Entries may be bare id strings; reset_day defaults to
    default_reset_day. Ids listed twice keep their first occurrence.

    Raises:
        FileNotFoundError: If path does not exist
        json.JSONDecodeError: If file is not valid JSON
        KeyError: If an object entry has no id
        ValueError: If an id is the reserved index name
    """
    raw = json.loads(path.read_text(encoding="utf-8"))
    specs: dict[str, CredentialSpec] = {}
    tiers: tuple[Tier, ...] = ("premium", "free")

    for tier in tiers:
        for entry in raw.get(tier, []):
            if isinstance(entry, str):
                credential_id, reset_day = entry, default_reset_day
            else:
                credential_id = entry["id"]
                reset_day = int(entry.get("reset_day", default_reset_day))

            specs.setdefault(
                credential_id,
                CredentialSpec(id=credential_id, tier=tier, reset_day=_clamp(reset_day, 1, 31)),
            )

    return _check_reserved(specs)




def load_credentials_from_env(default_reset_day: int = DEFAULT_RESET_DAY) -> list[CredentialSpec]:
    """
    Load credential pool from PREMIUM_CREDENTIALS and FREE_CREDENTIALS.

    An id present in both lists is treated as premium.
    """
    reset_days = _env_reset_days("CREDENTIAL_RESET_DAYS")
    specs: dict[str, CredentialSpec] = {}
    tiers: tuple[Tier, ...] = ("premium", "free")

    for tier in tiers:
        for credential_id in _env_list(f"{tier.upper()}_CREDENTIALS"):
            specs.setdefault(
                credential_id,
                CredentialSpec(
                    id=credential_id,
                    tier=tier,
                    reset_day=reset_days.get(credential_id, default_reset_day),
                ),
            )

    return _check_reserved(specs)




# ==== CONFIGURATION LOADER ==== #

def load_pool_config() -> PoolConfig:
    """
    Load pool configuration from environment variables.

    Environment Variables:
        PREMIUM_CREDENTIALS / FREE_CREDENTIALS: Comma-separated ids
        CREDENTIAL_RESET_DAYS: Per-id reset days (id:day,...)
        CREDENTIALS_CONFIG_PATH: JSON credential file (overrides the lists)
        DEFAULT_RESET_DAY: Reset day for ids without one (clamped 1-31)
        FREE_QUOTA / PREMIUM_QUOTA: Quota ceilings per tier
        MAX_CONCURRENCY_PER_CREDENTIAL: In-flight cap (clamped 1-64)
        COOLDOWN_SECONDS: Rate-limit cooldown (clamped 1-3600)
        HTTPX_TIMEOUT_SECONDS: Outbound timeout (clamped 5-120)
        SCRAPE_ENDPOINT / SCRAPE_CREDENTIAL_PARAM: Scraping backend
        FALLBACK_ENDPOINT / FALLBACK_TOKEN / FALLBACK_LAUNCH: Fallback backend
        STORE_BACKEND: memory, redis or file
        REDIS_URL / STORE_KEY_PREFIX / STORE_FILE_PATH: Store settings
        PENDING_QUEUE_MAX: Queue bound, 0 for unbounded (clamped 0-100000)
        RESET_INTERVAL_SECONDS / FLUSH_INTERVAL_SECONDS: Maintenance cadence

    Returns:
        PoolConfig with validated configuration values

    Raises:
        ValueError: Unparseable numbers or an unknown store backend
    """
    # --► CREDENTIAL POOL
    default_reset_day = _clamp(_env_int("DEFAULT_RESET_DAY", DEFAULT_RESET_DAY), 1, 31)
    credentials_path_env = os.getenv("CREDENTIALS_CONFIG_PATH")

    if credentials_path_env:
        credentials = load_credentials_from_json(
            Path(credentials_path_env).resolve(),
            default_reset_day,
        )
    else:
        credentials = load_credentials_from_env(default_reset_day)

    # --► QUOTA & CONCURRENCY POLICY
    free_quota = max(1, _env_int("FREE_QUOTA", DEFAULT_FREE_QUOTA))
    premium_quota = max(1, _env_int("PREMIUM_QUOTA", DEFAULT_PREMIUM_QUOTA))
    max_concurrency = _clamp(
        _env_int("MAX_CONCURRENCY_PER_CREDENTIAL", DEFAULT_MAX_CONCURRENCY),
        1,
        64,
    )
    cooldown_seconds = _clamp(
        _env_int("COOLDOWN_SECONDS", DEFAULT_COOLDOWN_SECONDS),
        1,
        3_600,
    )

    # --► OUTBOUND
    httpx_timeout_seconds = _clamp(
        _env_int("HTTPX_TIMEOUT_SECONDS", DEFAULT_HTTPX_TIMEOUT_SECONDS),
        5,
        120,
    )

    # --► STORE
    store_backend = os.getenv("STORE_BACKEND", "memory").lower()
    if store_backend not in STORE_BACKENDS:
        msg = f"STORE_BACKEND must be one of {STORE_BACKENDS}, got {store_backend!r}"
        raise ValueError(msg)

    # --► CONSTRUCT POOLCONFIG
    return PoolConfig(
        credentials=credentials,
        free_quota=free_quota,
        premium_quota=premium_quota,
        max_concurrency=max_concurrency,
        cooldown_seconds=cooldown_seconds,
        httpx_timeout_seconds=httpx_timeout_seconds,
        scrape_endpoint=os.getenv("SCRAPE_ENDPOINT", DEFAULT_SCRAPE_ENDPOINT),
        credential_param=os.getenv("SCRAPE_CREDENTIAL_PARAM", DEFAULT_CREDENTIAL_PARAM),
        fallback_endpoint=os.getenv("FALLBACK_ENDPOINT") or None,
        fallback_token=os.getenv("FALLBACK_TOKEN", ""),
        fallback_launch=os.getenv("FALLBACK_LAUNCH", "{}"),
        store_backend=store_backend,  # type: ignore[arg-type]
        redis_url=os.getenv("REDIS_URL", DEFAULT_REDIS_URL),
        store_key_prefix=os.getenv("STORE_KEY_PREFIX", DEFAULT_STORE_KEY_PREFIX),
        store_file_path=Path(os.getenv("STORE_FILE_PATH", DEFAULT_STORE_FILE)).resolve(),
        pending_queue_max=_clamp(_env_int("PENDING_QUEUE_MAX", 0), 0, 100_000),
        reset_interval_seconds=max(
            60, _env_int("RESET_INTERVAL_SECONDS", DEFAULT_RESET_INTERVAL_SECONDS)
        ),
        flush_interval_seconds=max(
            5, _env_int("FLUSH_INTERVAL_SECONDS", DEFAULT_FLUSH_INTERVAL_SECONDS)
        ),
    )
