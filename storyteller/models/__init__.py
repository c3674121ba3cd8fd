"""SQLAlchemy models."""

from .base import Base
from .library import LibraryRow  # noqa: F401

__all__ = ["Base", "LibraryRow"]
