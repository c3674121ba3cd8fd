"""PCM to MP3 conversion for narration uploads.

Synthesised speech arrives as raw little-endian 16-bit PCM. Before it is
published it is compressed into an MPEG-1/2 Layer III stream with LAME, one
block of ``SAMPLES_PER_BLOCK`` frames at a time, and the encoder is flushed at
the end so the trailing granules are not lost.

``probe`` walks the resulting frame headers without decoding audio. It is used
to sanity-check an encoding before upload and to measure stream length.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Union

import lameenc
import numpy as np

from storyteller.errors import DataValidationError

SAMPLES_PER_BLOCK = 1152
SAMPLE_WIDTH = 2
ENCODER_DELAY = 576
MP3_MEDIA_TYPE = "audio/mpeg"

PcmInput = Union[bytes, bytearray, memoryview, np.ndarray, Sequence[int]]


class DecodeError(DataValidationError):
    """Raised when the PCM buffer is not a whole number of 16-bit samples."""


class UnsupportedChannelCount(DataValidationError):
    """Raised for channel layouts other than mono or stereo."""


@dataclass(frozen=True)
class Mp3Info:
    """Frame-level summary of an MPEG audio stream."""

    frames: int
    sample_rate: int
    channels: int
    samples_per_frame: int

    @property
    def samples(self) -> int:
        """Decoded samples per channel, including encoder padding."""
        return self.frames * self.samples_per_frame

    @property
    def duration_seconds(self) -> float:
        if not self.sample_rate:
            return 0.0
        return self.samples / self.sample_rate


def _as_samples(pcm: PcmInput) -> np.ndarray:
    if isinstance(pcm, (bytes, bytearray, memoryview)):
        raw = bytes(pcm)
        if len(raw) % SAMPLE_WIDTH:
            raise DecodeError(
                f"PCM buffer of {len(raw)} bytes is not a multiple of {SAMPLE_WIDTH}."
            )
        return np.frombuffer(raw, dtype="<i2")
    return np.asarray(pcm, dtype=np.int16).reshape(-1)


def _frame(samples: np.ndarray, channels: int) -> np.ndarray:
    """Group interleaved samples into (frames, channels), zero-padding a short tail."""

    remainder = samples.size % channels
    if remainder:
        samples = np.concatenate(
            [samples, np.zeros(channels - remainder, dtype=np.int16)]
        )
    return samples.reshape(-1, channels)


def encode(
    pcm: PcmInput,
    sample_rate: int,
    channels: int = 1,
    *,
    bitrate_kbps: int = 128,
    quality: int = 2,
) -> bytes:
    """Encode 16-bit PCM into MP3 bytes.

    Every call builds its own encoder so concurrent runs never share state.
    """

    if channels not in (1, 2):
        raise UnsupportedChannelCount(f"Unsupported channel count: {channels}.")
    if sample_rate <= 0:
        raise DataValidationError(f"Invalid sample rate: {sample_rate}.")

    frames = _frame(_as_samples(pcm), channels)

    encoder = lameenc.Encoder()
    encoder.set_bit_rate(bitrate_kbps)
    encoder.set_in_sample_rate(sample_rate)
    encoder.set_channels(channels)
    encoder.set_quality(quality)

    chunks: list[bytes] = []
    for start in range(0, len(frames), SAMPLES_PER_BLOCK):
        block = np.ascontiguousarray(frames[start : start + SAMPLES_PER_BLOCK])
        encoded = encoder.encode(block.astype("<i2").tobytes())
        if encoded:
            chunks.append(bytes(encoded))

    residual = encoder.flush()
    if residual:
        chunks.append(bytes(residual))
    return b"".join(chunks)


# Layer III tables indexed by header fields.
_BITRATES_V1 = (0, 32, 40, 48, 56, 64, 80, 96, 112, 128, 160, 192, 224, 256, 320)
_BITRATES_V2 = (0, 8, 16, 24, 32, 40, 48, 56, 64, 80, 96, 112, 128, 144, 160)
_SAMPLE_RATES = {
    3: (44100, 48000, 32000),  # MPEG-1
    2: (22050, 24000, 16000),  # MPEG-2
    0: (11025, 12000, 8000),  # MPEG-2.5
}


def _skip_id3(data: bytes) -> int:
    if len(data) < 10 or data[:3] != b"ID3":
        return 0
    size = 0
    for byte in data[6:10]:
        size = (size << 7) | (byte & 0x7F)
    return 10 + size


def _parse_header(data: bytes, offset: int) -> tuple[int, int, int, int] | None:
    """Return (frame_length, sample_rate, channels, samples_per_frame) or None."""

    if offset + 4 > len(data):
        return None
    b0, b1, b2, b3 = data[offset : offset + 4]
    if b0 != 0xFF or (b1 & 0xE0) != 0xE0:
        return None
    version = (b1 >> 3) & 0x03
    layer = (b1 >> 1) & 0x03
    bitrate_index = (b2 >> 4) & 0x0F
    rate_index = (b2 >> 2) & 0x03
    if version == 1 or layer != 1 or bitrate_index in (0, 15) or rate_index == 3:
        return None

    padding = (b2 >> 1) & 0x01
    sample_rate = _SAMPLE_RATES[version][rate_index]
    if version == 3:
        bitrate = _BITRATES_V1[bitrate_index] * 1000
        samples_per_frame = 1152
        frame_length = 144 * bitrate // sample_rate + padding
    else:
        bitrate = _BITRATES_V2[bitrate_index] * 1000
        samples_per_frame = 576
        frame_length = 72 * bitrate // sample_rate + padding
    channels = 1 if (b3 >> 6) & 0x03 == 3 else 2
    return frame_length, sample_rate, channels, samples_per_frame


def probe(data: bytes) -> Mp3Info:
    """Count audio frames in an MP3 stream, ignoring tags and the Xing/Info frame."""

    offset = _skip_id3(data)
    frames = 0
    sample_rate = channels = samples_per_frame = 0
    first = True
    while offset < len(data):
        header = _parse_header(data, offset)
        if header is None:
            offset += 1
            continue
        frame_length, sample_rate, channels, samples_per_frame = header
        frame = data[offset : offset + frame_length]
        is_tag_frame = first and (b"Xing" in frame or b"Info" in frame)
        if not is_tag_frame:
            frames += 1
        first = False
        offset += frame_length

    return Mp3Info(
        frames=frames,
        sample_rate=sample_rate,
        channels=channels,
        samples_per_frame=samples_per_frame,
    )


__all__ = [
    "DecodeError",
    "ENCODER_DELAY",
    "MP3_MEDIA_TYPE",
    "Mp3Info",
    "SAMPLES_PER_BLOCK",
    "UnsupportedChannelCount",
    "encode",
    "probe",
]
