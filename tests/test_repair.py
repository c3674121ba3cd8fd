"""Tests for batch re-publication of stored narrations."""

from __future__ import annotations

import asyncio

import pytest

from conftest import CDN_PREFIX, FakeStorage
from storyteller.domain.catalog import Book, Catalog, Chapter, Segment, SegmentLocator
from storyteller.services.library import LibraryState
from storyteller.services.repair import PublishRepairService


def catalog_with(segments: list[Segment]) -> Catalog:
    return Catalog(books=[Book(id="b", chapters=[Chapter(id="c", segments=segments)])])


@pytest.mark.asyncio
async def test_partial_failures_are_aggregated():
    segments = [Segment(id=f"s{i}", object_id=f"narrations/{i}.mp3") for i in range(5)]
    catalog = catalog_with(segments)
    storage = FakeStorage(failing=("narrations/1.mp3", "narrations/3.mp3"))

    report = await PublishRepairService(storage).repair_all(catalog)

    assert report.repaired == 3
    assert report.failed == 2
    assert report.first_error == "Access denied for narrations/1.mp3"
    urls = {segment.id: segment.public_url for segment in catalog.books[0].chapters[0].segments}
    assert urls == {
        "s0": f"{CDN_PREFIX}narrations/0.mp3",
        "s1": None,
        "s2": f"{CDN_PREFIX}narrations/2.mp3",
        "s3": None,
        "s4": f"{CDN_PREFIX}narrations/4.mp3",
    }


@pytest.mark.asyncio
async def test_object_id_is_recovered_from_legacy_url_and_inline_audio_dropped():
    segment = Segment(
        id="legacy",
        public_url=f"{CDN_PREFIX}narrations/old.mp3",
        audio_base64="AAAA",
    )
    catalog = catalog_with([segment, Segment(id="text-only", content="no audio yet")])
    storage = FakeStorage()

    report = await PublishRepairService(storage).repair_all(catalog)

    assert report.repaired == 1
    assert storage.granted == ["narrations/old.mp3"]
    assert segment.object_id == "narrations/old.mp3"
    assert segment.audio_base64 is None


@pytest.mark.asyncio
async def test_catalog_untouched_until_batch_completes():
    segments = [Segment(id="a", object_id="a.mp3"), Segment(id="b", object_id="b.mp3")]
    catalog = catalog_with(segments)
    seen_during_batch = []

    class ObservingStorage(FakeStorage):
        async def grant_public_read(self, object_id):
            seen_during_batch.append([s.public_url for s in segments])
            await super().grant_public_read(object_id)

    await PublishRepairService(ObservingStorage()).repair_all(catalog)

    assert seen_during_batch == [[None, None], [None, None]]
    assert all(segment.public_url for segment in segments)


@pytest.mark.asyncio
async def test_library_repair_persists_once(local_sync, local_cache):
    library = LibraryState(local_sync, repair=PublishRepairService(FakeStorage()))
    await library.replace(catalog_with([Segment(id="s", object_id="s.mp3")]))

    report = await library.repair()

    cached = await local_cache.get()
    assert report.repaired == 1
    assert cached.books[0].chapters[0].segments[0].public_url == f"{CDN_PREFIX}s.mp3"


@pytest.mark.asyncio
async def test_segment_edited_during_batch_stays_without_audio(local_sync):
    granting = asyncio.Event()
    release = asyncio.Event()

    class SlowStorage(FakeStorage):
        async def grant_public_read(self, object_id):
            granting.set()
            await release.wait()
            await super().grant_public_read(object_id)

    library = LibraryState(local_sync, repair=PublishRepairService(SlowStorage()))
    await library.replace(
        catalog_with(
            [
                Segment(id="s", content="Hello world", object_id="narrations/old.mp3"),
                Segment(id="t", content="Untouched", object_id="narrations/t.mp3"),
            ]
        )
    )
    edited = SegmentLocator("b", "c", "s")
    untouched = SegmentLocator("b", "c", "t")

    repair = asyncio.create_task(library.repair())
    await granting.wait()
    segment, stale = library.edit_segment(edited, content="Hello there")
    release.set()
    report = await repair

    assert stale is True
    assert segment.content == "Hello there"
    assert segment.playback_reference() is None
    assert report.repaired == 1
    assert report.failed == 0
    assert library.find_segment(untouched).public_url == f"{CDN_PREFIX}narrations/t.mp3"
