"""Tests for durable credential stores."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from scrape_proxy.core.models import PoolConfig
from scrape_proxy.core.store import (
    FileCredentialStore,
    MemoryCredentialStore,
    RedisCredentialStore,
    make_store,
)


class _FakePipeline:
    def __init__(self, redis: _FakeRedis) -> None:
        self._redis = redis
        self._pending: list[tuple[str, str]] = []

    async def __aenter__(self) -> _FakePipeline:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None

    def set(self, key: str, value: str) -> _FakePipeline:
        self._pending.append((key, value))
        return self

    async def execute(self) -> list[bool]:
        self._redis.pipeline_batches.append(list(self._pending))
        for key, value in self._pending:
            self._redis.data[key] = value
        return [True] * len(self._pending)


class _FakeRedis:
    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.pipeline_batches: list[list[tuple[str, str]]] = []
        self.closed = False
        self.transaction: bool | None = None

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str) -> bool:
        self.data[key] = value
        return True

    def pipeline(self, transaction: bool = True) -> _FakePipeline:
        self.transaction = transaction
        return _FakePipeline(self)

    async def aclose(self) -> None:
        self.closed = True


@pytest.mark.asyncio
async def test_memory_store_roundtrip() -> None:
    store = MemoryCredentialStore()
    assert await store.get("missing") is None

    await store.set("a", "1")
    await store.set_many({"b": "2", "c": "3"})
    assert await store.get("a") == "1"
    assert store.data == {"a": "1", "b": "2", "c": "3"}


@pytest.mark.asyncio
async def test_file_store_survives_reopen(tmp_path: Path) -> None:
    """A second store on the same file sees the first store's writes."""
    path = tmp_path / "nested" / "credentials.json"

    first = FileCredentialStore(path)
    await first.set("k1", "v1")
    await first.set_many({"k2": "v2"})
    assert path.exists()

    second = FileCredentialStore(path)
    assert await second.get("k1") == "v1"
    assert await second.get("k2") == "v2"
    assert await second.get("k3") is None


@pytest.mark.asyncio
async def test_redis_store_uses_pipeline_for_batches() -> None:
    fake = _FakeRedis()
    store = RedisCredentialStore(fake)  # type: ignore[arg-type]

    await store.set("single", "x")
    await store.set_many({"a": "1", "b": "2"})
    await store.set_many({})

    assert await store.get("single") == "x"
    assert fake.data["a"] == "1"
    assert fake.pipeline_batches == [[("a", "1"), ("b", "2")]]
    assert fake.transaction is False

    await store.close()
    assert fake.closed


def test_make_store_selects_backend(tmp_path: Path) -> None:
    assert isinstance(make_store(PoolConfig()), MemoryCredentialStore)

    file_store = make_store(
        PoolConfig(store_backend="file", store_file_path=tmp_path / "c.json")
    )
    assert isinstance(file_store, FileCredentialStore)

    redis_store = make_store(PoolConfig(store_backend="redis"))
    assert isinstance(redis_store, RedisCredentialStore)
