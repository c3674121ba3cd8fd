"""HTTP surface tests driving the app through FastAPI's TestClient."""

from __future__ import annotations

import json
import time

import pytest
from fastapi.testclient import TestClient

from conftest import CDN_PREFIX, FakeStorage, FakeSynthesizer
from storyteller.config.settings import Settings
from storyteller.container import ServiceContainer
from storyteller.main import create_app
from storyteller.services.generation import GenerationOrchestrator
from storyteller.services.insights import ChapterInsightsService
from storyteller.services.library import LibraryState
from storyteller.services.repair import PublishRepairService

LEGACY_LIBRARY = [
    {
        "id": "book-1",
        "title": "The Long Road",
        "author": "A. Writer",
        "chapters": [
            {
                "id": "chapter-1",
                "title": "Departure",
                "parts": [
                    {
                        "id": "seg-1",
                        "title": "Opening",
                        "content": "Hello world",
                        "voiceName": "A",
                        "driveFileId": "old-file",
                        "isGenerating": True,
                    },
                    {
                        "id": "seg-2",
                        "title": "Second",
                        "content": "It was late.",
                        "voiceName": "B",
                    },
                ],
            }
        ],
    }
]

SEGMENT_PATH = "book-1/chapter-1/seg-1"


class InsightsLlm:
    available = True

    async def invoke(self, *, system_prompt, user_prompt, max_tokens=None, temperature=None):
        return json.dumps({"summary": "Leaving home.", "questions": ["Why?", "Where?", "When?"]})


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def client(tmp_path, local_sync, fast_generation, storage):
    settings = Settings(
        log_file=str(tmp_path / "logs" / "app.log"),
        generation_log_file=str(tmp_path / "logs" / "generation.log"),
    )
    library = LibraryState(
        local_sync,
        insights=ChapterInsightsService(InsightsLlm()),
        repair=PublishRepairService(storage),
    )
    orchestrator = GenerationOrchestrator(
        fast_generation, FakeSynthesizer(), storage, library, folder_name="narrations"
    )
    services = ServiceContainer(
        settings=settings,
        sync=local_sync,
        library=library,
        orchestrator=orchestrator,
        storage=storage,
    )
    app = create_app(settings, services=services, configure_logging=False)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def seeded(client):
    response = client.put("/library", json=LEGACY_LIBRARY)
    assert response.status_code == 200
    return client


def _wait_for_terminal(client, path: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"/narration/{path}").json()
        if body["status"] != "generating" or time.monotonic() > deadline:
            return body
        time.sleep(0.02)


def test_health_reports_wiring(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["catalogLoaded"] is True
    assert body["remoteConfigured"] is False
    assert body["storageConfigured"] is True
    assert body["activeRuns"] == 0
    assert response.headers["X-Request-ID"]


def test_request_id_is_echoed(client):
    response = client.get("/", headers={"X-Request-ID": "abc123"})

    assert response.headers["X-Request-ID"] == "abc123"


def test_legacy_list_is_upgraded_on_replace(seeded):
    document = seeded.get("/library").json()

    assert document["version"] == 1
    segment = document["books"][0]["chapters"][0]["segments"][0]
    assert segment["objectId"] == "old-file"
    assert segment["status"] == "idle"
    assert "driveFileId" not in segment


def test_malformed_library_is_rejected(client):
    response = client.put("/library", json="not a library")

    assert response.status_code == 422


def test_book_chapter_segment_editing(client):
    book = client.post("/library/books", json={"title": "Night Train", "author": "B"}).json()
    chapter = client.post(f"/library/books/{book['id']}/chapters", json={"title": "One"}).json()
    segment = client.post(
        f"/library/books/{book['id']}/chapters/{chapter['id']}/segments",
        json={"title": "Intro", "content": "All aboard.", "voiceName": "Joanna"},
    ).json()

    renamed = client.patch(f"/library/books/{book['id']}", json={"title": "Day Train"})
    assert renamed.status_code == 200
    assert renamed.json()["title"] == "Day Train"
    assert renamed.json()["author"] == "B"

    library = client.get("/library").json()
    stored = library["books"][0]["chapters"][0]["segments"][0]
    assert stored["voiceName"] == "Joanna"
    assert stored["id"] == segment["id"]

    segment_path = f"/library/books/{book['id']}/chapters/{chapter['id']}/segments/{segment['id']}"
    assert client.delete(segment_path).status_code == 204
    assert client.delete(segment_path).status_code == 404
    assert client.delete(f"/library/books/{book['id']}").status_code == 204
    assert client.get("/library").json()["books"] == []


def test_unknown_records_are_not_found(seeded):
    assert seeded.patch("/library/books/missing", json={"title": "x"}).status_code == 404
    assert seeded.post("/narration/book-1/chapter-1/missing").status_code == 404
    assert seeded.get("/narration/book-1/missing/seg-1").status_code == 404


def test_narration_run_publishes_and_streams(seeded, storage):
    started = seeded.post(f"/narration/{SEGMENT_PATH}")

    assert started.status_code == 202
    assert started.json()["status"] == "generating"
    assert started.json()["active"] is True
    assert "publicUrl" not in started.json() or started.json()["publicUrl"] is None

    finished = _wait_for_terminal(seeded, SEGMENT_PATH)

    assert finished["status"] == "ready"
    assert finished["progress"] == 100
    assert finished["active"] is False
    assert finished["publicUrl"] == f"{CDN_PREFIX}{finished['objectId']}"
    assert storage.granted == [finished["objectId"]]

    media = seeded.get(f"/media/{finished['objectId']}")
    assert media.status_code == 200
    assert media.headers["content-type"] == "audio/mpeg"
    assert media.content == storage.objects[finished["objectId"]]


def test_editing_text_resets_published_audio(seeded):
    seeded.post(f"/narration/{SEGMENT_PATH}")
    assert _wait_for_terminal(seeded, SEGMENT_PATH)["status"] == "ready"

    response = seeded.patch(
        "/library/books/book-1/chapters/chapter-1/segments/seg-1",
        json={"content": "Hello there"},
    )

    assert response.status_code == 200
    segment = response.json()
    assert segment["status"] == "idle"
    assert "publicUrl" not in segment
    assert "objectId" not in segment


def test_renaming_keeps_published_audio(seeded):
    seeded.post(f"/narration/{SEGMENT_PATH}")
    assert _wait_for_terminal(seeded, SEGMENT_PATH)["status"] == "ready"

    segment = seeded.patch(
        "/library/books/book-1/chapters/chapter-1/segments/seg-1",
        json={"title": "Prologue"},
    ).json()

    assert segment["status"] == "ready"
    assert segment["publicUrl"].startswith(CDN_PREFIX)


def test_cancel_without_active_run_conflicts(seeded):
    response = seeded.delete(f"/narration/{SEGMENT_PATH}")

    assert response.status_code == 409


def test_repair_republishes_stored_objects(seeded, storage):
    response = seeded.post("/narration/repair")

    assert response.status_code == 200
    assert response.json() == {"repaired": 1, "failed": 0, "firstError": None}
    assert storage.granted == ["old-file"]
    segment = seeded.get(f"/narration/{SEGMENT_PATH}").json()
    assert segment["publicUrl"] == f"{CDN_PREFIX}old-file"


def test_chapter_insights(seeded):
    response = seeded.post("/library/books/book-1/chapters/chapter-1/insights")

    assert response.status_code == 200
    chapter = response.json()
    assert chapter["insights"] == {"summary": "Leaving home.", "questions": ["Why?", "Where?", "When?"]}
    assert chapter["analyzing"] is False


def test_sync_status_without_remote(client):
    body = client.get("/library/status").json()

    assert body["remoteConfigured"] is False
    assert body["currentKey"] == "public-library"
    assert body["lastLoadSource"] == "local"
    assert body["connection"]["connected"] is False


def test_cache_clear(seeded, local_cache):
    assert local_cache.path.exists()

    response = seeded.post("/library/cache/clear")

    assert response.status_code == 200
    assert not local_cache.path.exists()


def test_missing_media_is_not_found(client):
    assert client.get("/media/narrations/nothing.mp3").status_code == 404


@pytest.mark.parametrize(
    "object_id",
    ["private/backup.json", "narrations", "narrations/", "narrations/../private/backup.json"],
)
def test_media_outside_the_narration_folder_is_refused(client, storage, object_id):
    storage.objects[object_id] = b"secret"

    response = client.get(f"/media/{object_id}")

    assert response.status_code == 404
    assert response.content != b"secret"


def test_metrics_exposes_request_counters(client):
    client.get("/health")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "http_requests_total" in response.text
