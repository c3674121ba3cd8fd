"""Durable on-disk mirror of the catalog.

The whole catalog lives under one root key (``<directory>/<root_key>.json``)
and is replaced atomically, so an interrupted write leaves the previous copy
intact instead of half a library.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from fastapi.concurrency import run_in_threadpool

from storyteller.config.settings import LocalCacheConfig
from storyteller.domain.catalog import Catalog
from storyteller.errors import CatalogFormatError

logger = logging.getLogger(__name__)

DEVICE_ID_FILENAME = "device_id"


class LocalCacheStore:
    """Read/write the catalog blob kept on this machine."""

    def __init__(self, config: LocalCacheConfig) -> None:
        self._directory = Path(config.directory)
        self._path = self._directory / f"{config.root_key}.json"

    @property
    def path(self) -> Path:
        return self._path

    async def get(self) -> Catalog:
        """Return the cached catalog; an absent or unreadable cache is empty."""

        return await run_in_threadpool(self._read)

    async def put(self, catalog: Catalog) -> None:
        document = catalog.to_document()
        await run_in_threadpool(self._write, document)

    async def clear(self) -> None:
        """Remove the cached catalog. Missing files are not an error."""

        await run_in_threadpool(self._path.unlink, missing_ok=True)
        logger.info("Cleared local catalog cache at %s", self._path)

    async def legacy_device_id(self) -> str | None:
        """Device identifier recorded by the old per-device storage scheme."""

        return await run_in_threadpool(self._read_device_id)

    def _read(self) -> Catalog:
        if not self._path.exists():
            return Catalog.empty()
        try:
            with self._path.open("r", encoding="utf-8") as cache_file:
                payload = json.load(cache_file)
            return Catalog.from_document(payload)
        except (OSError, json.JSONDecodeError, CatalogFormatError) as exc:
            logger.warning("Local catalog cache unreadable at %s: %s", self._path, exc)
            return Catalog.empty()

    def _write(self, document: dict) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self._path.stem}-", suffix=".tmp", dir=self._directory
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp_file:
                json.dump(document, tmp_file, ensure_ascii=False, separators=(",", ":"))
                tmp_file.flush()
                os.fsync(tmp_file.fileno())
            os.replace(tmp_path, self._path)
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)

    def _read_device_id(self) -> str | None:
        device_path = self._directory / DEVICE_ID_FILENAME
        try:
            value = device_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Could not read legacy device id at %s: %s", device_path, exc)
            return None
        return value or None


__all__ = ["LocalCacheStore", "DEVICE_ID_FILENAME"]
