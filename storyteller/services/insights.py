"""Chapter summaries and discussion questions generated with Bedrock."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from storyteller.domain.catalog import ChapterInsights
from storyteller.errors import DataValidationError, StorytellerError
from storyteller.services.llm_client import BedrockLlmClient, LlmInvocationError

logger = logging.getLogger(__name__)

QUESTION_COUNT = 3
MAX_CHAPTER_CHARACTERS = 30000

SYSTEM_PROMPT = (
    "You are a literary assistant. You MUST write the summary and the questions "
    "in the SAME LANGUAGE as the provided text. Respond only with a JSON object "
    'of the form {"summary": string, "questions": [string, string, string]}.'
)


class InsightsError(StorytellerError):
    """Raised when chapter insights cannot be produced."""


class InsightsResponse(BaseModel):
    summary: str
    questions: list[str] = Field(default_factory=list)

    model_config = {"extra": "ignore"}

    @field_validator("summary")
    @classmethod
    def _require_summary(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("summary must not be empty")
        return value

    @field_validator("questions")
    @classmethod
    def _clean_questions(cls, value: list[str]) -> list[str]:
        return [question.strip() for question in value if question and question.strip()]

    @classmethod
    def from_json(cls, payload: str) -> "InsightsResponse":
        cleaned = _clean_json_payload(payload)
        try:
            data: Any = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise InsightsError(f"Insights response was not JSON: {exc}") from exc
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise InsightsError(f"Insights response did not match the contract: {exc}") from exc


def _clean_json_payload(payload: str) -> str:
    """Strip Markdown code fences and keep the outermost JSON object."""

    cleaned = (payload or "").strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    cleaned = cleaned.strip()

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        cleaned = cleaned[start : end + 1]
    return cleaned


def build_prompt(chapter_title: str, text: str) -> str:
    return (
        f'Analyze chapter "{chapter_title}".\n\n'
        "IMPORTANT: Respond in the same language as the input text.\n"
        "Return concise output with:\n"
        "1) summary\n"
        f"2) exactly {QUESTION_COUNT} discussion questions\n\n"
        f"CHAPTER TEXT:\n{text[:MAX_CHAPTER_CHARACTERS]}"
    )


class ChapterInsightsService:
    def __init__(self, llm: Optional[BedrockLlmClient]) -> None:
        self._llm = llm

    async def analyze(self, chapter_title: str, text: str) -> ChapterInsights:
        if not text.strip():
            raise DataValidationError("Chapter has no text to analyze.")
        if self._llm is None or not self._llm.available:
            raise InsightsError("Insights model is not configured.")

        try:
            raw = await self._llm.invoke(
                system_prompt=SYSTEM_PROMPT,
                user_prompt=build_prompt(chapter_title, text),
            )
        except LlmInvocationError as exc:
            raise InsightsError(f"Insights request failed: {exc}") from exc
        if not raw:
            raise InsightsError("Insights model returned no content.")

        response = InsightsResponse.from_json(raw)
        if len(response.questions) < QUESTION_COUNT:
            raise InsightsError(
                f"Expected {QUESTION_COUNT} questions, got {len(response.questions)}."
            )
        logger.info("Generated insights for chapter '%s'", chapter_title)
        return ChapterInsights(
            summary=response.summary,
            questions=response.questions[:QUESTION_COUNT],
        )


__all__ = [
    "ChapterInsightsService",
    "InsightsError",
    "InsightsResponse",
    "build_prompt",
]
