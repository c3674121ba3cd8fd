"""Tests for the load/save contract over both catalog stores."""

from __future__ import annotations

import asyncio

import pytest

from conftest import InMemoryRemote, sample_catalog
from storyteller.domain.catalog import Book, Catalog
from storyteller.errors import TransientIOError
from storyteller.services.local_cache import DEVICE_ID_FILENAME
from storyteller.services.remote_store import RemoteCatalogStore
from storyteller.services.sync import LoadSource, SynchronizationService


def legacy_catalog() -> Catalog:
    return Catalog(books=[Book(id="legacy-book", title="Migrated")])


@pytest.mark.asyncio
async def test_without_remote_the_local_cache_is_used(local_sync, local_cache):
    cached = sample_catalog()
    await local_cache.put(cached)

    assert await local_sync.load_catalog() == cached
    assert local_sync.status().last_load_source is LoadSource.LOCAL
    assert local_sync.status().remote_configured is False


@pytest.mark.asyncio
async def test_remote_catalog_wins_and_is_mirrored_locally(local_cache, store_config):
    remote = InMemoryRemote()
    shared = sample_catalog()
    remote.rows["public-library"] = shared.to_document()
    sync = SynchronizationService(remote, local_cache, store_config)

    loaded = await sync.load_catalog()

    assert loaded == shared
    assert await local_cache.get() == shared
    assert sync.status().last_load_source is LoadSource.REMOTE


@pytest.mark.asyncio
async def test_legacy_key_is_migrated_once_and_idempotently(local_cache, store_config):
    store_config.legacy_key = "device-123"
    remote = InMemoryRemote()
    legacy = legacy_catalog()
    remote.rows["device-123"] = legacy.to_document()
    sync = SynchronizationService(remote, local_cache, store_config)

    first = await sync.load_catalog()

    assert first == legacy
    assert remote.rows["public-library"] == legacy.to_remote_document()
    assert sync.status().last_load_source is LoadSource.LEGACY

    second = await sync.load_catalog()

    assert second == first
    assert remote.put_calls == ["public-library"]
    assert sync.status().last_load_source is LoadSource.REMOTE


@pytest.mark.asyncio
async def test_legacy_key_falls_back_to_recorded_device_id(local_cache, store_config):
    local_cache.path.parent.mkdir(parents=True)
    (local_cache.path.parent / DEVICE_ID_FILENAME).write_text("device-9", encoding="utf-8")
    remote = InMemoryRemote()
    remote.rows["device-9"] = legacy_catalog().to_document()
    sync = SynchronizationService(remote, local_cache, store_config)

    loaded = await sync.load_catalog()

    assert loaded.books[0].id == "legacy-book"
    assert remote.get_calls == ["public-library", "device-9"]


@pytest.mark.asyncio
async def test_legacy_key_equal_to_current_is_not_read_twice(local_cache, store_config):
    store_config.legacy_key = store_config.current_key
    remote = InMemoryRemote()
    sync = SynchronizationService(remote, local_cache, store_config)

    loaded = await sync.load_catalog()

    assert loaded.is_empty
    assert remote.get_calls == ["public-library"]
    assert sync.status().last_load_source is LoadSource.EMPTY


@pytest.mark.asyncio
async def test_save_then_load_round_trips(local_cache, store_config):
    remote = InMemoryRemote()
    sync = SynchronizationService(remote, local_cache, store_config)
    catalog = sample_catalog()

    await sync.save_catalog(catalog)
    loaded = await sync.load_catalog()

    assert loaded == catalog
    assert loaded is not catalog


@pytest.mark.asyncio
async def test_three_consecutive_timeouts_fall_back_to_local(local_cache, store_config):
    store_config.read_timeout_seconds = 0.01
    cached = sample_catalog()
    await local_cache.put(cached)
    remote = RemoteCatalogStore(None, store_config)
    attempts = []

    async def hang(key):
        attempts.append(key)
        await asyncio.sleep(1)

    remote._fetch = hang
    sync = SynchronizationService(remote, local_cache, store_config)

    loaded = await sync.load_catalog()

    assert loaded == cached
    assert len(attempts) == 3
    status = sync.status()
    assert status.last_load_source is LoadSource.LOCAL
    assert "timed out" in status.last_error


@pytest.mark.asyncio
async def test_save_failure_is_swallowed_but_recorded(local_cache, store_config):
    remote = InMemoryRemote()
    remote.fail_with = TransientIOError("write timed out")
    sync = SynchronizationService(remote, local_cache, store_config)
    catalog = sample_catalog()

    await sync.save_catalog(catalog)

    assert await local_cache.get() == catalog
    assert sync.status().last_error == "write timed out"


@pytest.mark.asyncio
async def test_probe_without_remote(local_sync):
    info = await local_sync.probe()

    assert info.connected is False
    assert "not configured" in info.message
