from typing import Optional
from urllib.parse import quote_plus

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseSettings):
    """Relational store configuration for the shared catalog."""

    dsn: Optional[str] = Field(
        default=None,
        description="Full SQLAlchemy async URL; overrides the discrete fields.",
    )
    host: Optional[str] = None
    port: int = 5432
    username: str = "postgres"
    password: SecretStr = Field(default=SecretStr("postgres"))
    database: str = "storyteller"
    serverless: bool = Field(
        default=True,
        description="If true, disable connection pooling so serverless DBs can pause.",
    )

    @property
    def configured(self) -> bool:
        """Whether a remote catalog store is available at all."""
        return bool(self.dsn or self.host)

    @property
    def url(self) -> str:
        """Get database URL"""
        if self.dsn:
            return self.dsn
        username = quote_plus(self.username)
        password = quote_plus(self.password.get_secret_value())
        return (
            "postgresql+asyncpg://"
            f"{username}:{password}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )


class CatalogStoreConfig(BaseSettings):
    """Keys, timeouts and retry policy for catalog synchronization."""

    current_key: str = "public-library"
    legacy_key: Optional[str] = None
    read_timeout_seconds: float = Field(default=20.0, gt=0)
    write_timeout_seconds: float = Field(default=15.0, gt=0)
    probe_timeout_seconds: float = Field(default=10.0, gt=0)
    read_attempts: int = Field(default=3, ge=1)
    write_attempts: int = Field(default=2, ge=1)
    backoff_seconds: float = Field(default=0.5, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="CATALOG_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class LocalCacheConfig(BaseSettings):
    """On-disk mirror of the catalog."""

    directory: str = ".cache/library"
    root_key: str = "storyteller_library"

    model_config = SettingsConfigDict(
        env_prefix="CACHE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class S3Config(BaseSettings):
    """S3 configuration"""

    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    region: str = "us-east-1"
    bucket_name: Optional[str] = None
    endpoint_url: Optional[str] = None
    folder_name: str = "narrations"

    @property
    def configured(self) -> bool:
        """Whether narrations have somewhere durable to be published."""
        return bool(self.bucket_name)

    model_config = SettingsConfigDict(
        env_prefix="S3_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class PollyConfig(BaseSettings):
    """Amazon Polly configuration."""

    region: str = "us-east-1"
    default_voice_id: str = "Joanna"
    engine: str = "neural"
    sample_rate: int = 16000
    max_characters: int = Field(default=3000, ge=100)

    model_config = SettingsConfigDict(
        env_prefix="POLLY_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class BedrockConfig(BaseSettings):
    """Amazon Bedrock configuration."""

    region: str = Field(
        default="us-east-1",
        validation_alias="BEDROCK_REGION",
    )
    model_id: str = Field(
        default="amazon.nova-micro-v1:0",
        validation_alias="BEDROCK_MODEL_ID",
    )
    max_tokens: int = Field(
        default=600,
        validation_alias="BEDROCK_MAX_TOKENS",
        ge=1,
        le=4096,
    )
    temperature: float = Field(
        default=0.3,
        validation_alias="BEDROCK_TEMPERATURE",
        ge=0.0,
        le=1.0,
    )
    top_p: float = Field(
        default=0.9,
        validation_alias="BEDROCK_TOP_P",
        ge=0.0,
        le=1.0,
    )
    api_key: SecretStr | None = Field(
        default=None,
        validation_alias="BEDROCK_API_KEY",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )


class GenerationConfig(BaseSettings):
    """Narration run policy."""

    timeout_seconds: float = Field(default=120.0, gt=0)
    tick_interval_seconds: float = Field(default=0.45, gt=0)
    tick_step: float = Field(default=7.0, gt=0)
    tick_ceiling: float = Field(default=92.0, gt=0, lt=95)
    initial_progress: float = Field(default=2.0, gt=0)
    upload_checkpoint: float = Field(default=96.0, gt=0, lt=100)
    bitrate_kbps: int = Field(default=128, ge=32, le=320)

    model_config = SettingsConfigDict(
        env_prefix="GENERATION_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class Settings(BaseSettings):
    """Application settings"""

    app_name: str = "Storyteller Narration Backend"
    app_version: str = "1.0.0"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000
    log_file: str = "logs/app.log"
    generation_log_file: str = "logs/generation.log"

    # Database
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    # Catalog synchronization
    catalog: CatalogStoreConfig = Field(default_factory=CatalogStoreConfig)

    # Local cache
    cache: LocalCacheConfig = Field(default_factory=LocalCacheConfig)

    # S3
    s3: S3Config = Field(default_factory=S3Config)

    # Polly
    polly: PollyConfig = Field(default_factory=PollyConfig)

    # Bedrock
    bedrock: BedrockConfig = Field(default_factory=BedrockConfig)

    # Generation
    generation: GenerationConfig = Field(default_factory=GenerationConfig)

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )
