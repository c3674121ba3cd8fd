"""Shared fakes and catalog builders for the test suite."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

import numpy as np
import pytest

from storyteller.config.settings import CatalogStoreConfig, GenerationConfig, LocalCacheConfig
from storyteller.domain.catalog import Book, Catalog, Chapter, Segment, SegmentLocator
from storyteller.services.library import LibraryState
from storyteller.services.local_cache import LocalCacheStore
from storyteller.services.storage import ObjectNotFoundError, ObjectStream, StorageError
from storyteller.services.sync import SynchronizationService
from storyteller.services.synthesis import SynthesisResult

CDN_PREFIX = "https://cdn.example.com/"


def sine_pcm(seconds: float, sample_rate: int, channels: int = 1, frequency: float = 440.0) -> bytes:
    """Interleaved 16-bit sine tone."""

    t = np.arange(int(seconds * sample_rate)) / sample_rate
    tone = (np.sin(2 * np.pi * frequency * t) * 12000).astype("<i2")
    return np.repeat(tone, channels).tobytes()


def sample_catalog() -> Catalog:
    return Catalog(
        books=[
            Book(
                id="book-1",
                title="The Long Road",
                author="A. Writer",
                chapters=[
                    Chapter(
                        id="chapter-1",
                        title="Departure",
                        segments=[
                            Segment(id="seg-1", title="Opening", content="Hello world", voice_name="A"),
                            Segment(id="seg-2", title="Second", content="It was late.", voice_name="B"),
                        ],
                    )
                ],
            )
        ]
    )


SEG_1 = SegmentLocator("book-1", "chapter-1", "seg-1")
SEG_2 = SegmentLocator("book-1", "chapter-1", "seg-2")


class FakeSynthesizer:
    """Returns a short tone. Call ``i`` waits on ``gates[i]`` when one is given."""

    def __init__(
        self,
        *,
        gates: Optional[dict[int, asyncio.Event]] = None,
        blocked_texts: Optional[dict[str, asyncio.Event]] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
    ) -> None:
        self.calls: list[tuple[str, Optional[str]]] = []
        self.gates = gates or {}
        self.blocked_texts = blocked_texts or {}
        self.delay = delay
        self.error = error

    async def synthesize(self, text: str, voice_id: Optional[str] = None) -> SynthesisResult:
        index = len(self.calls)
        self.calls.append((text, voice_id))
        gate = self.gates.get(index) or self.blocked_texts.get(text)
        if gate is not None:
            await gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return SynthesisResult(
            samples=sine_pcm(0.2, 16000),
            sample_rate=16000,
            channels=1,
            voice_id=voice_id or "Joanna",
        )


class FakeStorage:
    """In-memory object storage with per-object publish failures."""

    def __init__(self, failing: tuple[str, ...] = ()) -> None:
        self.failing = set(failing)
        self.folders: list[str] = []
        self.uploads: list[tuple[str, bytes, str]] = []
        self.granted: list[str] = []
        self.objects: dict[str, bytes] = {}

    async def resolve_or_create_folder(self, name: str) -> str:
        self.folders.append(name)
        return f"{name}/"

    async def upload(
        self,
        data: bytes,
        filename: str,
        mime_type: str,
        parent_folder_id: Optional[str] = None,
    ) -> str:
        object_id = f"{parent_folder_id or ''}{filename}"
        self.uploads.append((object_id, data, mime_type))
        self.objects[object_id] = data
        return object_id

    async def grant_public_read(self, object_id: str) -> None:
        if object_id in self.failing:
            raise StorageError(f"Access denied for {object_id}")
        self.granted.append(object_id)

    def public_url(self, object_id: str) -> str:
        return f"{CDN_PREFIX}{object_id}"

    def object_id_from_url(self, url: str) -> Optional[str]:
        if url.startswith(CDN_PREFIX):
            return url[len(CDN_PREFIX) :]
        return None

    async def stream_content(self, object_id: str) -> ObjectStream:
        if object_id not in self.objects:
            raise ObjectNotFoundError(f"Object not found: {object_id}")
        data = self.objects[object_id]

        async def chunks() -> AsyncIterator[bytes]:
            for start in range(0, len(data), 1024):
                yield data[start : start + 1024]

        return ObjectStream(
            object_id=object_id,
            content_type="audio/mpeg",
            content_length=len(data),
            chunks=chunks(),
        )


class InMemoryRemote:
    """Remote catalog store double keeping documents per key."""

    def __init__(self) -> None:
        self.rows: dict[str, dict] = {}
        self.get_calls: list[str] = []
        self.put_calls: list[str] = []
        self.fail_with: Optional[Exception] = None

    async def get(self, key: str) -> Optional[Catalog]:
        self.get_calls.append(key)
        if self.fail_with is not None:
            raise self.fail_with
        document = self.rows.get(key)
        return None if document is None else Catalog.from_document(document)

    async def put(self, key: str, catalog: Catalog) -> None:
        self.put_calls.append(key)
        if self.fail_with is not None:
            raise self.fail_with
        self.rows[key] = catalog.to_remote_document()

    async def probe(self):
        raise AssertionError("probe not expected")


@pytest.fixture
def cache_config(tmp_path) -> LocalCacheConfig:
    return LocalCacheConfig(directory=str(tmp_path / "cache"), root_key="test_library")


@pytest.fixture
def local_cache(cache_config) -> LocalCacheStore:
    return LocalCacheStore(cache_config)


@pytest.fixture
def store_config() -> CatalogStoreConfig:
    return CatalogStoreConfig(
        current_key="public-library",
        legacy_key=None,
        read_timeout_seconds=1.0,
        write_timeout_seconds=1.0,
        probe_timeout_seconds=1.0,
        backoff_seconds=0.0,
    )


@pytest.fixture
def local_sync(local_cache, store_config) -> SynchronizationService:
    return SynchronizationService(None, local_cache, store_config)


@pytest.fixture
def library(local_sync) -> LibraryState:
    return LibraryState(local_sync)


@pytest.fixture
def fast_generation() -> GenerationConfig:
    return GenerationConfig(tick_interval_seconds=0.01, timeout_seconds=5.0)
