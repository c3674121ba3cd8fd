"""Bedrock ``converse`` client used for chapter insights."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi.concurrency import run_in_threadpool

from storyteller.config.settings import BedrockConfig
from storyteller.errors import StorytellerError
from storyteller.services.aws import create_boto3_client

logger = logging.getLogger(__name__)


class LlmInvocationError(StorytellerError):
    """Raised when the Bedrock invocation fails."""


def split_api_key(secret: Optional[str]) -> tuple[str, str] | None:
    """Turn ``BEDROCK_API_KEY`` (``access:secret``, optionally base64) into a key pair."""

    if not secret:
        return None
    raw = secret.strip()
    try:
        decoded = base64.b64decode(raw, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        decoded = raw
    printable = "".join(ch for ch in decoded if ch.isprintable())
    access_key, separator, secret_key = printable.partition(":")
    if not separator or not access_key or not secret_key:
        return None
    return access_key, secret_key


def _response_text(response: dict[str, Any]) -> str:
    blocks = response.get("output", {}).get("message", {}).get("content", [])
    return "\n".join(block["text"] for block in blocks if block.get("text")).strip()


class BedrockLlmClient:
    """Single-turn prompts against the configured Bedrock model."""

    def __init__(self, config: BedrockConfig, client: Any | None = None) -> None:
        self._config = config
        self._client = client
        if client is None:
            self._client = self._build_client(config)

    @staticmethod
    def _build_client(config: BedrockConfig) -> Any | None:
        keys = split_api_key(config.api_key.get_secret_value()) if config.api_key else None
        access_key, secret_key = keys if keys else (None, None)
        try:
            return create_boto3_client(
                "bedrock-runtime",
                region_name=config.region,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
            )
        except BotoCoreError as exc:
            logger.warning("Could not initialise Bedrock client: %s", exc)
            return None

    @property
    def available(self) -> bool:
        return self._client is not None and bool(self._config.model_id)

    async def invoke(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str | None:
        """Send one user turn and return the joined text blocks, or None if unavailable."""

        if not self.available:
            return None

        request = {
            "modelId": self._config.model_id,
            "system": [{"text": system_prompt}],
            "messages": [{"role": "user", "content": [{"text": user_prompt}]}],
            "inferenceConfig": {
                "maxTokens": max_tokens or self._config.max_tokens,
                "temperature": self._config.temperature if temperature is None else temperature,
                "topP": self._config.top_p,
            },
        }
        try:
            response = await run_in_threadpool(lambda: self._client.converse(**request))
        except (BotoCoreError, ClientError) as exc:
            raise LlmInvocationError(str(exc)) from exc

        usage = response.get("usage") or {}
        logger.debug(
            "Bedrock %s stop=%s tokens in=%s out=%s",
            self._config.model_id,
            response.get("stopReason"),
            usage.get("inputTokens"),
            usage.get("outputTokens"),
        )
        return _response_text(response) or None


__all__ = ["BedrockLlmClient", "LlmInvocationError", "split_api_key"]
