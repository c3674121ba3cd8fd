"""Exception taxonomy shared by the storage, sync and generation layers."""

from __future__ import annotations


class StorytellerError(RuntimeError):
    """Base class for errors raised by the narration backend."""


class TransientIOError(StorytellerError):
    """Timeout or connectivity failure; safe to retry."""


class DataValidationError(StorytellerError):
    """Malformed payload or missing configuration; never retried."""


class CatalogFormatError(DataValidationError):
    """Raised when a serialized catalog cannot be parsed."""


class ConfigurationError(DataValidationError):
    """Raised when a required backend is not configured."""


class RemoteStoreError(StorytellerError):
    """Non-transient failure reported by the relational store."""


class NotFoundError(StorytellerError, LookupError):
    """Raised when a book, chapter or segment does not exist."""


class GenerationInterrupted(StorytellerError):
    """Base for runs that stopped without failing."""

    message: str = "Narration stopped."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


class GenerationCanceled(GenerationInterrupted):
    message = "Narration was canceled. Click re-generate to start again."


class GenerationTimedOut(GenerationInterrupted):
    message = "Narration took too long and was stopped. Click re-generate to retry."


__all__ = [
    "StorytellerError",
    "TransientIOError",
    "DataValidationError",
    "CatalogFormatError",
    "ConfigurationError",
    "RemoteStoreError",
    "NotFoundError",
    "GenerationInterrupted",
    "GenerationCanceled",
    "GenerationTimedOut",
]
