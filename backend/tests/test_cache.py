"""
Tests for the list cache.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from app.services import cache as cache_module
from app.services.cache import MemoryCacheStore, account_prefix, ad_sets_key, ads_key, campaigns_key


def test_keys_share_the_account_prefix():
    prefix = account_prefix("acc-1")
    assert campaigns_key("acc-1").startswith(prefix)
    assert ad_sets_key("acc-1", ":c1").startswith(prefix)
    assert ads_key("acc-1", ":s1").startswith(prefix)
    assert not campaigns_key("acc-10").startswith(prefix)


@pytest.mark.asyncio
async def test_memory_store_get_set_invalidate():
    store = MemoryCacheStore(default_ttl=60)
    await store.set("k", {"items": [1, 2]})

    assert await store.get("k") == {"items": [1, 2]}
    await store.invalidate("k")
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_memory_store_expires_entries(monkeypatch):
    now = [1000.0]
    monkeypatch.setattr(cache_module, "time", SimpleNamespace(monotonic=lambda: now[0]))
    store = MemoryCacheStore(default_ttl=60)

    await store.set("k", "v")
    now[0] += 59
    assert await store.get("k") == "v"
    now[0] += 2
    assert await store.get("k") is None


@pytest.mark.asyncio
async def test_invalidate_prefix_only_touches_one_account():
    store = MemoryCacheStore()
    await store.set(campaigns_key("a", ":1"), 1)
    await store.set(ads_key("a", ":s:1"), 2)
    await store.set(campaigns_key("b", ":1"), 3)

    removed = await store.invalidate_prefix(account_prefix("a"))

    assert removed == 2
    assert await store.get(campaigns_key("b", ":1")) == 3
