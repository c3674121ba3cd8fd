"""Single load/save contract over the remote store and the local cache."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from storyteller.config.settings import CatalogStoreConfig
from storyteller.domain.catalog import Catalog
from storyteller.services.local_cache import LocalCacheStore
from storyteller.services.remote_store import ConnectionInfo, RemoteCatalogStore
from storyteller.telemetry import record_sync_failure

logger = logging.getLogger(__name__)


class LoadSource(str, Enum):
    REMOTE = "remote"
    LEGACY = "legacy"
    LOCAL = "local"
    EMPTY = "empty"


@dataclass(frozen=True)
class SyncStatus:
    remote_configured: bool
    current_key: str
    last_load_source: LoadSource | None
    last_error: str | None


class SynchronizationService:
    """Compose the remote and local stores into one source of truth.

    Reads prefer the shared row, migrate a legacy row on first sight and fall
    back to the local mirror on any remote failure. Writes always land locally
    first; remote write failures are logged and counted, never raised.
    """

    def __init__(
        self,
        remote: RemoteCatalogStore | None,
        local: LocalCacheStore,
        config: CatalogStoreConfig,
    ) -> None:
        self._remote = remote
        self._local = local
        self._config = config
        self._last_source: LoadSource | None = None
        self._last_error: str | None = None

    @property
    def remote_configured(self) -> bool:
        return self._remote is not None

    async def load_catalog(self) -> Catalog:
        if self._remote is None:
            logger.warning("Remote catalog store not configured; using local cache only.")
            return await self._load_local()

        current_key = self._config.current_key
        try:
            catalog = await self._remote.get(current_key)
            if catalog is not None and not catalog.is_empty:
                await self._mirror_locally(catalog)
                return self._loaded(catalog, LoadSource.REMOTE)

            legacy_key = await self._legacy_key()
            if legacy_key and legacy_key != current_key:
                legacy = await self._remote.get(legacy_key)
                if legacy is not None and not legacy.is_empty:
                    logger.info(
                        "Migrating catalog from legacy key=%s to key=%s (%d books)",
                        legacy_key,
                        current_key,
                        len(legacy.books),
                    )
                    await self._remote.put(current_key, legacy)
                    await self._mirror_locally(legacy)
                    return self._loaded(legacy, LoadSource.LEGACY)
        except Exception as exc:
            self._record_failure("load", exc)
            return await self._load_local()

        return self._loaded(Catalog.empty(), LoadSource.EMPTY)

    async def save_catalog(self, catalog: Catalog) -> None:
        try:
            await self._local.put(catalog)
        except OSError as exc:
            logger.error("Failed to write local catalog cache: %s", exc)
            record_sync_failure("local_save")

        if self._remote is None:
            return
        try:
            await self._remote.put(self._config.current_key, catalog)
        except Exception as exc:
            self._record_failure("save", exc)
        else:
            self._last_error = None

    async def probe(self) -> ConnectionInfo:
        if self._remote is None:
            return ConnectionInfo(connected=False, message="Remote catalog store not configured")
        return await self._remote.probe()

    async def clear_local_cache(self) -> None:
        await self._local.clear()

    def status(self) -> SyncStatus:
        return SyncStatus(
            remote_configured=self.remote_configured,
            current_key=self._config.current_key,
            last_load_source=self._last_source,
            last_error=self._last_error,
        )

    async def _legacy_key(self) -> str | None:
        if self._config.legacy_key:
            return self._config.legacy_key
        return await self._local.legacy_device_id()

    async def _load_local(self) -> Catalog:
        catalog = await self._local.get()
        self._last_source = LoadSource.LOCAL
        return catalog

    async def _mirror_locally(self, catalog: Catalog) -> None:
        try:
            await self._local.put(catalog)
        except OSError as exc:
            logger.warning("Could not mirror remote catalog locally: %s", exc)

    def _loaded(self, catalog: Catalog, source: LoadSource) -> Catalog:
        self._last_source = source
        self._last_error = None
        logger.info("Loaded catalog from %s (%d books)", source.value, len(catalog.books))
        return catalog

    def _record_failure(self, operation: str, exc: Exception) -> None:
        self._last_error = str(exc)
        record_sync_failure(operation)
        logger.error("Catalog %s against remote store failed: %s", operation, exc)


__all__ = ["LoadSource", "SyncStatus", "SynchronizationService"]
