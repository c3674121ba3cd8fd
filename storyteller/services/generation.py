"""Narration runs: text to a published, publicly playable MP3.

Each segment has at most one active run. A run is an ``asyncio.Task`` tracked
by a :class:`RunToken` in a per-segment map; starting a new run swaps the
token and cancels the old task in the same synchronous step, so there is no
suspension point at which two runs both believe they own the segment.

A run that finds its token superseded after resuming discards its result and
never touches the segment again. Every other exit (success, failure, user
cancellation, timeout) leaves the segment in a terminal status with the ticker
stopped and the token cleared.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
import unicodedata
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol
from uuid import uuid4

from fastapi.concurrency import run_in_threadpool

from storyteller.config.settings import GenerationConfig
from storyteller.domain.catalog import GenerationStatus, SegmentLocator
from storyteller.errors import DataValidationError, GenerationCanceled, GenerationTimedOut
from storyteller.services import codec
from storyteller.services.library import LibraryState
from storyteller.services.synthesis import SynthesisResult
from storyteller.telemetry import observe_generation

logger = logging.getLogger(__name__)

NOT_CONFIGURED_MESSAGE = (
    "Narration storage is not configured. Set S3_BUCKET_NAME to publish audio."
)
_MAX_STEM_LENGTH = 120
_UNSAFE_CHARACTERS = re.compile(r"[^A-Za-z0-9._-]+")


class Synthesizer(Protocol):
    async def synthesize(self, text: str, voice_id: str | None = None) -> SynthesisResult: ...


class NarrationStorage(Protocol):
    async def resolve_or_create_folder(self, name: str) -> str: ...

    async def upload(
        self, data: bytes, filename: str, mime_type: str, parent_folder_id: str | None = None
    ) -> str: ...

    async def grant_public_read(self, object_id: str) -> None: ...

    def public_url(self, object_id: str) -> str: ...


class _Superseded(Exception):
    """Internal signal: the run no longer owns its segment."""


@dataclass(eq=False)
class RunToken:
    run_id: str
    locator: SegmentLocator
    started_at: float
    task: Optional[asyncio.Task] = None
    upload_started: asyncio.Event = field(default_factory=asyncio.Event)
    started: bool = False
    user_canceled: bool = False
    interrupted: bool = False


@dataclass(frozen=True)
class GenerationOutcome:
    segment_id: str
    status: Optional[GenerationStatus]
    error: Optional[str] = None
    object_id: Optional[str] = None
    public_url: Optional[str] = None
    superseded: bool = False


@dataclass(frozen=True)
class _RunRequest:
    text: str
    voice_id: Optional[str]
    filename: str


def narration_filename(
    book_title: str,
    chapter_title: str,
    segment_title: str,
    segment_id: str,
) -> str:
    """Build ``<safe titles>-<8 hex>.mp3``; a new suffix on every call."""

    stem = "-".join(part for part in (book_title, chapter_title, segment_title) if part)
    ascii_stem = unicodedata.normalize("NFKD", stem).encode("ascii", "ignore").decode("ascii")
    safe = _UNSAFE_CHARACTERS.sub("_", ascii_stem).strip("._-")[:_MAX_STEM_LENGTH]
    if not safe:
        safe = f"narration-{segment_id}"
    return f"{safe}-{uuid4().hex[:8]}.mp3"


class GenerationOrchestrator:
    """Drives one narration run per segment through synthesis, encoding and upload."""

    def __init__(
        self,
        config: GenerationConfig,
        synthesizer: Synthesizer,
        storage: Optional[NarrationStorage],
        library: LibraryState,
        *,
        folder_name: str = "narrations",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._synthesizer = synthesizer
        self._storage = storage
        self._library = library
        self._folder_name = folder_name
        self._clock = clock
        self._runs: dict[str, RunToken] = {}
        self._tasks: set[asyncio.Task] = set()

    @property
    def storage_configured(self) -> bool:
        return self._storage is not None

    def active_runs(self) -> list[str]:
        return list(self._runs)

    def is_running(self, segment_id: str) -> bool:
        return segment_id in self._runs

    def start(self, locator: SegmentLocator) -> asyncio.Task:
        """Begin a run for the segment, superseding any run already in flight."""

        book, chapter, segment = self._library.locate(locator)
        self.discard(locator.segment_id)

        if self._storage is None:
            segment.status = GenerationStatus.ERROR
            segment.progress = 0.0
            segment.error = NOT_CONFIGURED_MESSAGE
            logger.warning("Refusing narration for %s: %s", segment.id, NOT_CONFIGURED_MESSAGE)
            return self._spawn(self._refuse(locator))

        request = _RunRequest(
            text=segment.content,
            voice_id=segment.voice_name or None,
            filename=narration_filename(book.title, chapter.title, segment.title, segment.id),
        )
        token = RunToken(
            run_id=uuid4().hex,
            locator=locator,
            started_at=self._clock(),
        )
        segment.clear_playback()
        segment.status = GenerationStatus.GENERATING
        segment.progress = self._config.initial_progress
        segment.error = None

        self._runs[locator.segment_id] = token
        token.task = self._spawn(self._run(token, request))
        logger.info("Narration run %s started for segment %s", token.run_id, segment.id)
        return token.task

    async def generate(self, locator: SegmentLocator) -> GenerationOutcome:
        """Start a run and wait for it; cancelling the caller leaves the run going."""

        task = self.start(locator)
        return await asyncio.shield(task)

    def cancel(self, segment_id: str) -> bool:
        """User cancellation: the run ends as ``canceled``."""

        token = self._runs.get(segment_id)
        if token is None or token.task is None:
            return False
        token.user_canceled = True
        self._interrupt(token)
        logger.info("Narration run %s cancel requested", token.run_id)
        return True

    def discard(self, segment_id: str) -> bool:
        """Silently supersede the active run; it will not mutate the segment."""

        token = self._runs.pop(segment_id, None)
        if token is None:
            return False
        self._interrupt(token)
        logger.info("Narration run %s superseded", token.run_id)
        return True

    async def shutdown(self) -> None:
        for segment_id in list(self._runs):
            self.cancel(segment_id)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _interrupt(self, token: RunToken) -> None:
        # An unstarted task would die before its cleanup runs; it checks the
        # token on entry instead.
        if token.started and token.task is not None and not token.interrupted:
            token.interrupted = True
            token.task.cancel()

    def _is_current(self, token: RunToken) -> bool:
        return self._runs.get(token.locator.segment_id) is token

    def _ensure_current(self, token: RunToken) -> None:
        if not self._is_current(token):
            raise _Superseded()

    def _patch(self, token: RunToken, **changes) -> None:
        if self._is_current(token):
            self._library.update_segment(token.locator, **changes)

    async def _refuse(self, locator: SegmentLocator) -> GenerationOutcome:
        await self._library.persist()
        observe_generation(GenerationStatus.ERROR.value, 0.0)
        return GenerationOutcome(
            segment_id=locator.segment_id,
            status=GenerationStatus.ERROR,
            error=NOT_CONFIGURED_MESSAGE,
        )

    async def _tick(self, token: RunToken) -> None:
        progress = self._config.initial_progress
        while True:
            await asyncio.sleep(self._config.tick_interval_seconds)
            if token.upload_started.is_set() or not self._is_current(token):
                return
            progress = min(self._config.tick_ceiling, progress + self._config.tick_step)
            self._patch(token, progress=progress)

    @staticmethod
    async def _drain(ticker: asyncio.Task) -> None:
        try:
            await asyncio.wait([ticker])
        except asyncio.CancelledError:
            # The run has already settled; there is nothing left to stop.
            asyncio.current_task().uncancel()

    async def _produce(self, token: RunToken, request: _RunRequest) -> tuple[str, str]:
        storage = self._storage
        self._ensure_current(token)
        if token.user_canceled:
            raise GenerationCanceled()
        synthesis = await self._synthesizer.synthesize(request.text, request.voice_id)
        self._ensure_current(token)

        audio = await run_in_threadpool(
            codec.encode,
            synthesis.samples,
            synthesis.sample_rate,
            synthesis.channels,
            bitrate_kbps=self._config.bitrate_kbps,
        )
        info = await run_in_threadpool(codec.probe, audio)
        if info.frames == 0:
            raise DataValidationError("Encoder produced no audio frames.")
        self._ensure_current(token)

        token.upload_started.set()
        self._patch(token, progress=self._config.upload_checkpoint)

        folder_id = await storage.resolve_or_create_folder(self._folder_name)
        object_id = await storage.upload(
            audio, request.filename, codec.MP3_MEDIA_TYPE, folder_id
        )
        self._ensure_current(token)
        await storage.grant_public_read(object_id)
        self._ensure_current(token)
        logger.info(
            "Narration run %s uploaded %s (%.1fs of audio)",
            token.run_id,
            object_id,
            info.duration_seconds,
        )
        return object_id, storage.public_url(object_id)

    async def _run(self, token: RunToken, request: _RunRequest) -> GenerationOutcome:
        segment_id = token.locator.segment_id
        token.started = True
        ticker = asyncio.create_task(self._tick(token))
        deadline = asyncio.timeout(self._config.timeout_seconds)
        status: Optional[GenerationStatus] = None
        error: Optional[str] = None
        object_id = public_url = None

        try:
            async with deadline:
                object_id, public_url = await self._produce(token, request)
            status = GenerationStatus.READY
        except TimeoutError as exc:
            if deadline.expired():
                status, error = GenerationStatus.TIMED_OUT, str(GenerationTimedOut())
            else:
                status, error = GenerationStatus.ERROR, str(exc) or "Narration request timed out."
        except GenerationCanceled as exc:
            status, error = GenerationStatus.CANCELED, str(exc)
        except asyncio.CancelledError:
            # Cancellation is ours to absorb; the outcome is reported instead.
            asyncio.current_task().uncancel()
            if token.user_canceled:
                status, error = GenerationStatus.CANCELED, str(GenerationCanceled())
        except _Superseded:
            pass
        except Exception as exc:
            logger.exception("Narration run %s failed", token.run_id)
            status, error = GenerationStatus.ERROR, str(exc) or exc.__class__.__name__

        # Settle and release the token before the next suspension point so a
        # late cancel finds nothing to interrupt.
        ticker.cancel()
        superseded = status is None or not self._is_current(token)
        if not superseded:
            segment = self._library.find_segment(token.locator)
            if segment is not None:
                if status is GenerationStatus.READY:
                    segment.attach_durable(object_id, public_url)
                    segment.progress = 100.0
                    segment.error = None
                else:
                    segment.progress = 0.0
                    segment.error = error
                segment.status = status
            self._runs.pop(segment_id, None)
        await self._drain(ticker)

        duration = self._clock() - token.started_at
        outcome_label = "superseded" if superseded else status.value
        observe_generation(outcome_label, duration)
        if superseded:
            logger.info("Narration run %s discarded after %.2fs", token.run_id, duration)
            return GenerationOutcome(segment_id=segment_id, status=None, superseded=True)

        if status is GenerationStatus.READY:
            logger.info("Narration run %s ready in %.2fs", token.run_id, duration)
        elif status is GenerationStatus.ERROR:
            logger.error("Narration run %s failed after %.2fs: %s", token.run_id, duration, error)
        else:
            logger.info("Narration run %s %s: %s", token.run_id, status.value, error)

        await self._library.persist()
        return GenerationOutcome(
            segment_id=segment_id,
            status=status,
            error=error,
            object_id=object_id,
            public_url=public_url,
        )


__all__ = [
    "GenerationOrchestrator",
    "GenerationOutcome",
    "NOT_CONFIGURED_MESSAGE",
    "RunToken",
    "narration_filename",
]
