"""
Durable key-value stores backing the credential ledger.

This module provides:
- The CredentialStore protocol (get, set, batched set)
- An in-memory store for development and tests
- A JSON-file store for single-host deployments
- A Redis store using redis.asyncio with pipelined snapshots
- A factory choosing the backend from PoolConfig
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from pathlib import Path
from typing import Optional, Protocol

import msgspec
import redis.asyncio as aioredis

from scrape_proxy.core.models import PoolConfig
from scrape_proxy.utils.logging import get_logger

logger = get_logger(__name__)




# ==== STORE PROTOCOL ==== #

class CredentialStore(Protocol):
    """Key-value store holding one encoded record per credential."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def set_many(self, items: Mapping[str, str]) -> None: ...

    async def close(self) -> None: ...




# ==== IN-MEMORY STORE ==== #

class MemoryCredentialStore:
    """Process-local store; state does not survive a restart."""

    def __init__(self, initial: Optional[Mapping[str, str]] = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    async def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> None:
        self.data[key] = value

    async def set_many(self, items: Mapping[str, str]) -> None:
        self.data.update(items)

    async def close(self) -> None:
        return None




# ==== JSON FILE STORE ==== #

class FileCredentialStore:
    """
    Store keeping every key in one JSON object on disk.

    The whole file is rewritten on each write. Writes are serialized
    with an asyncio lock and the blocking file I/O runs in a worker
    thread so the event loop is never stalled.

    Attributes:
        path: JSON file location
        _data: In-memory mirror of the file contents
        _loaded: Whether the file has been read yet
        _lock: Serializes read-modify-write of the file
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._data: dict[str, str] = {}
        self._loaded = False
        self._lock = asyncio.Lock()

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return

        if self.path.exists():
            raw = await asyncio.to_thread(self.path.read_bytes)
            if raw.strip():
                self._data = msgspec.json.decode(raw, type=dict[str, str])

        self._loaded = True

    def _write(self, payload: bytes) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_bytes(payload)
        tmp_path.replace(self.path)

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            await self._ensure_loaded()
            return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        await self.set_many({key: value})

    async def set_many(self, items: Mapping[str, str]) -> None:
        async with self._lock:
            await self._ensure_loaded()
            self._data.update(items)
            payload = msgspec.json.encode(self._data)
            await asyncio.to_thread(self._write, payload)

    async def close(self) -> None:
        return None




# ==== REDIS STORE ==== #

class RedisCredentialStore:
    """
    Redis-backed store.

    Single writes use SET; snapshots go through a non-transactional
    pipeline so a full flush costs one round trip.
    """

    def __init__(self, client: aioredis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisCredentialStore:
        """Create a store from a redis:// URL with decoded string responses."""
        client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client)

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str) -> None:
        await self._client.set(key, value)

    async def set_many(self, items: Mapping[str, str]) -> None:
        if not items:
            return

        async with self._client.pipeline(transaction=False) as pipe:
            for key, value in items.items():
                pipe.set(key, value)
            await pipe.execute()

    async def close(self) -> None:
        await self._client.aclose()




# ==== FACTORY ==== #

def make_store(config: PoolConfig) -> CredentialStore:
    """
    Build the durable store selected by configuration.

    Args:
        config: Pool configuration

    Returns:
        Store instance for config.store_backend

    Raises:
        ValueError: If the backend name is unknown
    """
    if config.store_backend == "redis":
        logger.info("Using Redis credential store")
        return RedisCredentialStore.from_url(config.redis_url)

    if config.store_backend == "file":
        logger.info("Using file credential store at %s", config.store_file_path)
        return FileCredentialStore(config.store_file_path)

    if config.store_backend == "memory":
        logger.warning("Using in-memory credential store; quota usage will not survive restarts")
        return MemoryCredentialStore()

    msg = f"Unknown store backend: {config.store_backend}"
    raise ValueError(msg)
