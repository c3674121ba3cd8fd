"""Domain types for the narration library."""

from .catalog import (
    CATALOG_VERSION,
    Book,
    Catalog,
    Chapter,
    ChapterInsights,
    GenerationStatus,
    PlaybackKind,
    PlaybackReference,
    Segment,
    SegmentLocator,
    make_id,
)

__all__ = [
    "CATALOG_VERSION",
    "Book",
    "Catalog",
    "Chapter",
    "ChapterInsights",
    "GenerationStatus",
    "PlaybackKind",
    "PlaybackReference",
    "Segment",
    "SegmentLocator",
    "make_id",
]
