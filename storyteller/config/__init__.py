"""Configuration models."""

from .settings import (
    BedrockConfig,
    CatalogStoreConfig,
    DatabaseConfig,
    GenerationConfig,
    LocalCacheConfig,
    PollyConfig,
    S3Config,
    Settings,
)

__all__ = [
    "BedrockConfig",
    "CatalogStoreConfig",
    "DatabaseConfig",
    "GenerationConfig",
    "LocalCacheConfig",
    "PollyConfig",
    "S3Config",
    "Settings",
]
