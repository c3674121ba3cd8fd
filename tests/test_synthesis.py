"""Tests for Polly synthesis and request chunking."""

from __future__ import annotations

import io

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import ANY, Stubber

from conftest import sine_pcm
from storyteller.config.settings import PollyConfig
from storyteller.services.synthesis import (
    PollySynthesisService,
    SynthesisError,
    SynthesisUnavailable,
    split_text,
)


@pytest.fixture
def polly_client():
    return boto3.client(
        "polly",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


def _audio(data: bytes) -> dict:
    return {
        "AudioStream": StreamingBody(io.BytesIO(data), len(data)),
        "ContentType": "audio/pcm",
        "RequestCharacters": 1,
    }


@pytest.mark.asyncio
async def test_synthesize_requests_pcm_for_the_given_voice(polly_client):
    pcm = sine_pcm(0.1, 16000)
    service = PollySynthesisService(PollyConfig(), client=polly_client)

    with Stubber(polly_client) as stubber:
        stubber.add_response(
            "synthesize_speech",
            _audio(pcm),
            {
                "Text": "Hello world",
                "TextType": "text",
                "VoiceId": "Matthew",
                "Engine": "neural",
                "OutputFormat": "pcm",
                "SampleRate": "16000",
            },
        )

        result = await service.synthesize("Hello world", "Matthew")

    assert result.samples == pcm
    assert result.sample_rate == 16000
    assert result.channels == 1
    assert result.voice_id == "Matthew"


@pytest.mark.asyncio
async def test_long_text_is_synthesized_in_chunks(polly_client):
    sentence = "The river ran quietly past the sleeping town. "
    text = sentence * 6
    service = PollySynthesisService(PollyConfig(max_characters=100), client=polly_client)
    expected_chunks = split_text(text, 100)

    with Stubber(polly_client) as stubber:
        for index, chunk in enumerate(expected_chunks):
            stubber.add_response(
                "synthesize_speech",
                _audio(bytes([index]) * 4),
                {
                    "Text": chunk,
                    "TextType": "text",
                    "VoiceId": "Joanna",
                    "Engine": ANY,
                    "OutputFormat": "pcm",
                    "SampleRate": "16000",
                },
            )

        result = await service.synthesize(text)
        stubber.assert_no_pending_responses()

    assert len(expected_chunks) > 1
    assert result.samples == b"".join(bytes([i]) * 4 for i in range(len(expected_chunks)))
    assert result.voice_id == "Joanna"


@pytest.mark.asyncio
async def test_odd_trailing_byte_is_dropped(polly_client):
    service = PollySynthesisService(PollyConfig(), client=polly_client)

    with Stubber(polly_client) as stubber:
        stubber.add_response("synthesize_speech", _audio(b"\x01\x02\x03"))

        result = await service.synthesize("Hi.")

    assert result.samples == b"\x01\x02"


@pytest.mark.asyncio
async def test_empty_text_is_rejected_without_a_request(polly_client):
    service = PollySynthesisService(PollyConfig(), client=polly_client)

    with Stubber(polly_client):
        with pytest.raises(SynthesisError):
            await service.synthesize("   ")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("ValidationException", SynthesisError),
        ("TextLengthExceededException", SynthesisError),
        ("ServiceFailureException", SynthesisUnavailable),
        ("ThrottlingException", SynthesisUnavailable),
    ],
)
async def test_service_errors_are_classified(polly_client, code, expected):
    service = PollySynthesisService(PollyConfig(), client=polly_client)

    with Stubber(polly_client) as stubber:
        stubber.add_client_error("synthesize_speech", service_error_code=code, http_status_code=400)

        with pytest.raises(expected):
            await service.synthesize("Hello world", "Nobody")


def test_split_text_keeps_short_text_whole():
    assert split_text("  One sentence.  ", 100) == ["One sentence."]


def test_split_text_prefers_sentence_boundaries():
    text = "First sentence here. Second sentence here. Third sentence here."

    chunks = split_text(text, 45)

    assert chunks == [
        "First sentence here. Second sentence here.",
        "Third sentence here.",
    ]


def test_split_text_hard_splits_long_sentences():
    text = "word " * 60

    chunks = split_text(text, 50)

    assert all(0 < len(chunk) <= 50 for chunk in chunks)
    assert " ".join(chunks).split() == text.split()
