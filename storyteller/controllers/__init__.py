"""FastAPI routers acting as controllers in the MVC architecture."""

from . import library, media, narration

__all__ = ["library", "media", "narration"]
