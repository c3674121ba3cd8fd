"""Explicit wiring of the services behind the HTTP surface."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from storyteller.config.settings import Settings
from storyteller.database import (
    create_engine,
    create_session_factory,
    dispose_engine,
    init_models,
)
from storyteller.services.generation import GenerationOrchestrator
from storyteller.services.insights import ChapterInsightsService
from storyteller.services.library import LibraryState
from storyteller.services.llm_client import BedrockLlmClient
from storyteller.services.local_cache import LocalCacheStore
from storyteller.services.remote_store import RemoteCatalogStore
from storyteller.services.repair import PublishRepairService
from storyteller.services.storage import S3ObjectStorage
from storyteller.services.sync import SynchronizationService
from storyteller.services.synthesis import PollySynthesisService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    sync: SynchronizationService
    library: LibraryState
    orchestrator: GenerationOrchestrator
    storage: Optional[S3ObjectStorage] = None
    engine: Optional[AsyncEngine] = None

    async def startup(self) -> None:
        if self.engine is not None:
            try:
                await init_models(self.engine)
            except (SQLAlchemyError, OSError) as exc:
                logger.error("Could not prepare catalog tables: %s", exc)
        await self.library.load()

    async def shutdown(self) -> None:
        await self.orchestrator.shutdown()
        if self.engine is not None:
            await dispose_engine(self.engine)


def build_services(settings: Settings) -> ServiceContainer:
    """Construct every service from configuration; nothing is created at import time."""

    engine = None
    remote = None
    if settings.database.configured:
        engine = create_engine(settings.database, echo=settings.debug)
        remote = RemoteCatalogStore(create_session_factory(engine), settings.catalog)
    else:
        logger.warning("No relational store configured; the catalog stays on this machine.")

    sync = SynchronizationService(remote, LocalCacheStore(settings.cache), settings.catalog)

    storage = None
    repair = None
    if settings.s3.configured:
        storage = S3ObjectStorage(settings.s3)
        repair = PublishRepairService(storage)
    else:
        logger.warning("No S3 bucket configured; narration generation is disabled.")

    insights = ChapterInsightsService(BedrockLlmClient(settings.bedrock))
    library = LibraryState(sync, insights=insights, repair=repair)
    orchestrator = GenerationOrchestrator(
        settings.generation,
        PollySynthesisService(settings.polly),
        storage,
        library,
        folder_name=settings.s3.folder_name,
    )
    return ServiceContainer(
        settings=settings,
        sync=sync,
        library=library,
        orchestrator=orchestrator,
        storage=storage,
        engine=engine,
    )


__all__ = ["ServiceContainer", "build_services"]
