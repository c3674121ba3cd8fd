"""Typed client for the shared catalog table in the relational store.

Each row holds one whole catalog keyed by a sync key. Every call runs under a
hard timeout and a bounded linear-backoff retry that only applies to
connectivity-class failures.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storyteller.config.settings import CatalogStoreConfig
from storyteller.domain.catalog import Catalog
from storyteller.errors import CatalogFormatError, RemoteStoreError, TransientIOError
from storyteller.models.library import LibraryRow, utc_now
from storyteller.services.resilience import with_retry, with_timeout

logger = logging.getLogger(__name__)

_TRANSIENT_DB_ERRORS = (
    OperationalError,
    InterfaceError,
    DisconnectionError,
    PoolTimeoutError,
    OSError,
)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass(frozen=True)
class ConnectionInfo:
    """Result of a connectivity probe."""

    connected: bool
    message: str
    latency_ms: int | None = None


def classify_error(exc: BaseException, label: str) -> Exception:
    """Map driver exceptions onto the retryable / non-retryable taxonomy."""

    transient = isinstance(exc, _TRANSIENT_DB_ERRORS) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    )
    if transient:
        return TransientIOError(f"{label} failed: {exc}")
    return RemoteStoreError(f"{label} failed: {exc}")


class RemoteCatalogStore:
    """Read, upsert and probe catalog rows with timeout + retry."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: CatalogStoreConfig,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._config = config
        self._sleep = sleep

    async def get(self, key: str) -> Catalog | None:
        """Return the catalog stored under ``key``; ``None`` when the row is absent.

        A row whose payload cannot be parsed yields an empty catalog so one
        corrupt write cannot lock every client out.
        """

        label = f"Catalog load ({key})"
        row = await with_retry(
            lambda: with_timeout(
                lambda: self._fetch(key),
                self._config.read_timeout_seconds,
                label,
            ),
            attempts=self._config.read_attempts,
            backoff_seconds=self._config.backoff_seconds,
            label=label,
            sleep=self._sleep,
        )
        if row is None:
            return None

        try:
            return Catalog.from_document(row)
        except CatalogFormatError as exc:
            logger.warning("Ignoring malformed catalog under key=%s: %s", key, exc)
            return Catalog.empty()

    async def put(self, key: str, catalog: Catalog) -> None:
        """Insert or replace the whole catalog row for ``key``."""

        # Snapshot before the first suspension point so later edits cannot leak in.
        document = catalog.to_remote_document()
        label = f"Catalog save ({key})"
        await with_retry(
            lambda: with_timeout(
                lambda: self._upsert(key, document),
                self._config.write_timeout_seconds,
                label,
            ),
            attempts=self._config.write_attempts,
            backoff_seconds=self._config.backoff_seconds,
            label=label,
            sleep=self._sleep,
        )
        logger.info("Saved catalog key=%s books=%d", key, len(document["books"]))

    async def probe(self) -> ConnectionInfo:
        """Run a ``SELECT ... LIMIT 1`` and report reachability and latency."""

        started = time.perf_counter()
        try:
            await with_timeout(
                self._select_any,
                self._config.probe_timeout_seconds,
                "Catalog connection check",
            )
        except (TransientIOError, RemoteStoreError) as exc:
            return ConnectionInfo(connected=False, message=str(exc))

        latency_ms = round((time.perf_counter() - started) * 1000)
        return ConnectionInfo(connected=True, message="Connected", latency_ms=latency_ms)

    async def _fetch(self, key: str) -> Any | None:
        label = f"Catalog load ({key})"
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(LibraryRow.catalog).where(LibraryRow.key == key)
                )
                row = result.first()
        except (SQLAlchemyError, OSError) as exc:
            raise classify_error(exc, label) from exc
        return None if row is None else row[0]

    async def _upsert(self, key: str, document: dict[str, Any]) -> None:
        label = f"Catalog save ({key})"
        values = {"key": key, "catalog": document, "updated_at": utc_now()}
        try:
            async with self._session_factory() as session:
                insert = _UPSERT_DIALECTS.get(session.bind.dialect.name)
                if insert is None:
                    await session.merge(LibraryRow(**values))
                else:
                    statement = insert(LibraryRow).values(**values)
                    statement = statement.on_conflict_do_update(
                        index_elements=[LibraryRow.key],
                        set_={
                            "catalog": statement.excluded.catalog,
                            "updated_at": statement.excluded.updated_at,
                        },
                    )
                    await session.execute(statement)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise classify_error(exc, label) from exc

    async def _select_any(self) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(select(LibraryRow.key).limit(1))
        except (SQLAlchemyError, OSError) as exc:
            raise classify_error(exc, "Catalog connection check") from exc


__all__ = ["ConnectionInfo", "RemoteCatalogStore", "classify_error"]
