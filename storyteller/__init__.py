"""Narration generation and shared library backend."""

__version__ = "1.0.0"
