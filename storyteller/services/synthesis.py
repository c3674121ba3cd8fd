"""Amazon Polly speech synthesis returning raw PCM."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

from storyteller.config.settings import PollyConfig
from storyteller.errors import DataValidationError, StorytellerError
from storyteller.services.aws import create_boto3_client

logger = logging.getLogger(__name__)

_SENTENCE_END = re.compile(r"(?<=[.!?。！？])\s+")
_REJECTED_INPUT_CODES = {
    "InvalidSampleRateException",
    "TextLengthExceededException",
    "ValidationException",
    "EngineNotSupportedException",
    "LanguageNotSupportedException",
}


@dataclass(frozen=True)
class SynthesisResult:
    """Raw little-endian 16-bit PCM from the speech service."""

    samples: bytes
    sample_rate: int
    channels: int
    voice_id: str


class SynthesisError(DataValidationError):
    """Raised when the speech service rejects the text or voice."""


class SynthesisUnavailable(StorytellerError):
    """Raised when the speech service cannot be reached or fails."""


def split_text(text: str, limit: int) -> list[str]:
    """Split ``text`` into request-sized chunks, preferring sentence boundaries."""

    chunks: list[str] = []
    current = ""
    for sentence in _SENTENCE_END.split(text.strip()):
        while len(sentence) > limit:
            cut = sentence.rfind(" ", 0, limit)
            if cut <= 0:
                cut = limit
            head, sentence = sentence[:cut].strip(), sentence[cut:].strip()
            if current:
                chunks.append(current)
                current = ""
            chunks.append(head)
        if not sentence:
            continue
        candidate = f"{current} {sentence}" if current else sentence
        if len(candidate) > limit:
            chunks.append(current)
            current = sentence
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


class PollySynthesisService:
    """Turn text into mono PCM with Amazon Polly."""

    channels = 1

    def __init__(self, config: PollyConfig, client: Any | None = None) -> None:
        self._config = config
        self._client = client or create_boto3_client("polly", region_name=config.region)

    @property
    def default_voice_id(self) -> str:
        return self._config.default_voice_id

    async def synthesize(self, text: str, voice_id: str | None = None) -> SynthesisResult:
        if not text or not text.strip():
            raise SynthesisError("Cannot narrate an empty segment.")
        voice = voice_id or self._config.default_voice_id

        pcm = bytearray()
        for chunk in split_text(text, self._config.max_characters):
            pcm.extend(await self._synthesize_chunk(chunk, voice))

        return SynthesisResult(
            samples=bytes(pcm),
            sample_rate=self._config.sample_rate,
            channels=self.channels,
            voice_id=voice,
        )

    async def _synthesize_chunk(self, text: str, voice_id: str) -> bytes:
        try:
            response: dict[str, Any] = await run_in_threadpool(
                self._client.synthesize_speech,
                Text=text,
                TextType="text",
                VoiceId=voice_id,
                Engine=self._config.engine,
                OutputFormat="pcm",
                SampleRate=str(self._config.sample_rate),
            )
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code in _REJECTED_INPUT_CODES:
                raise SynthesisError(f"Voice '{voice_id}' rejected the request: {exc}") from exc
            logger.exception("Polly synth failed for voice '%s'", voice_id)
            raise SynthesisUnavailable(f"Failed to synthesize speech: {exc}") from exc
        except BotoCoreError as exc:
            logger.exception("Polly synth failed for voice '%s'", voice_id)
            raise SynthesisUnavailable(f"Failed to synthesize speech: {exc}") from exc

        audio_stream = response.get("AudioStream")
        if audio_stream is None:
            raise SynthesisUnavailable("Polly returned no audio stream.")
        pcm_bytes = await run_in_threadpool(audio_stream.read)
        if not pcm_bytes:
            raise SynthesisUnavailable("Polly returned an empty audio stream.")
        if len(pcm_bytes) % 2:
            pcm_bytes = pcm_bytes[:-1]
        return pcm_bytes


__all__ = [
    "PollySynthesisService",
    "SynthesisError",
    "SynthesisResult",
    "SynthesisUnavailable",
    "split_text",
]
